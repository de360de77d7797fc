from datetime import datetime, timedelta
from typing import Optional

from .errors import InvalidTransitionError
from .roles import GamePhase, ResolutionState
from .state import EventRecord, EventType, Game, Winner

VALID_TRANSITIONS: dict[GamePhase, list[GamePhase]] = {
    GamePhase.LOBBY: [GamePhase.NIGHT],
    GamePhase.NIGHT: [GamePhase.DAY, GamePhase.FINISHED],
    GamePhase.DAY: [GamePhase.COUNCIL, GamePhase.FINISHED],
    GamePhase.COUNCIL: [GamePhase.NIGHT, GamePhase.FINISHED],
    GamePhase.FINISHED: [],
}

_NEXT_PHASE: dict[GamePhase, GamePhase] = {
    GamePhase.LOBBY: GamePhase.NIGHT,
    GamePhase.NIGHT: GamePhase.DAY,
    GamePhase.DAY: GamePhase.COUNCIL,
    GamePhase.COUNCIL: GamePhase.NIGHT,
}


def next_phase_after(phase: GamePhase) -> GamePhase:
    """Return the phase that normally follows ``phase``."""
    try:
        return _NEXT_PHASE[phase]
    except KeyError:
        raise InvalidTransitionError(f"No phase follows '{phase.value}'") from None


def can_transition(from_phase: GamePhase, to_phase: GamePhase) -> bool:
    return to_phase in VALID_TRANSITIONS.get(from_phase, [])


def advance_game(
    game: Game,
    to_phase: GamePhase,
    now: Optional[datetime] = None,
    winner: Optional[Winner] = None,
) -> tuple[Game, list[EventRecord]]:
    """Move a game record to its next phase.

    Bumps ``phase_seq``, reopens the resolution, increments the day counter
    when a council hands over to the night and schedules the deadline in
    auto mode. Finishing the game clears pending triggers.

    Args:
        game: Current game record (not mutated)
        to_phase: Target phase
        now: Clock reading used for the deadline
        winner: Winner to record when finishing

    Returns:
        Tuple of (new game record, transition events)

    Raises:
        InvalidTransitionError: if the transition is not allowed
    """
    if not can_transition(game.phase, to_phase):
        raise InvalidTransitionError(
            f"Cannot go from '{game.phase.value}' to '{to_phase.value}'"
        )

    now = now or datetime.now()
    from_phase = game.phase
    new_game = game.model_copy(deep=True)
    new_game.phase = to_phase
    new_game.phase_seq = game.phase_seq + 1
    new_game.resolution = ResolutionState.OPEN
    new_game.council_eliminated_id = None

    if from_phase == GamePhase.COUNCIL and to_phase == GamePhase.NIGHT:
        new_game.day_count = game.day_count + 1

    duration = game.settings.phase_durations.for_phase(to_phase)
    if game.settings.auto_mode and to_phase.is_playable and duration:
        new_game.phase_ends_at = now + timedelta(seconds=duration)
    else:
        new_game.phase_ends_at = None

    events = [
        EventRecord(
            game_id=game.id,
            event_type=EventType.PHASE_CHANGED,
            phase=to_phase,
            phase_seq=new_game.phase_seq,
            data={
                "from": from_phase.value,
                "to": to_phase.value,
                "day": new_game.day_count + 1,
            },
            created_at=now,
        )
    ]

    if to_phase == GamePhase.FINISHED:
        new_game.winner = winner
        new_game.pending_triggers = []
        events.append(
            EventRecord(
                game_id=game.id,
                event_type=EventType.GAME_ENDED,
                phase=to_phase,
                phase_seq=new_game.phase_seq,
                data={
                    "winner": winner.team.value if winner else None,
                    "player_ids": winner.player_ids if winner else [],
                    "reason": winner.reason if winner else "",
                },
                created_at=now,
            )
        )

    return new_game, events
