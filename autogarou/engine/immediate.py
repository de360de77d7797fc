"""Powers applied on submission instead of in a batch resolution."""

from datetime import datetime, timedelta
from typing import Optional

from .cascade import CascadeContext, apply_cascade, public_report
from .effects import ResolutionContext, get_effect
from .errors import InvalidTransitionError
from .night import night_reveal_seq
from .phases import next_phase_after
from .roles import EffectKind, GamePhase, ResolutionState, TriggerKind
from .state import (
    ActionRecord,
    ImmediateOutcome,
    PhaseSnapshot,
    ResolutionDraft,
)
from .victory import VictoryContext, evaluate_victory


def _resolve_immediate(
    snapshot: PhaseSnapshot,
    action: ActionRecord,
    effect: EffectKind,
    reveal_at_seq: Optional[int],
    resolved_trigger_ids: list[str],
    now: Optional[datetime],
) -> tuple[ResolutionDraft, ImmediateOutcome]:
    game = snapshot.game
    if not game.phase.is_playable:
        raise InvalidTransitionError(f"Game {game.id} is not in a playable phase")
    now = now or datetime.now()

    scoped = snapshot.model_copy(update={"actions": [action]})
    ctx = ResolutionContext(snapshot=scoped)
    players, events = get_effect(effect).apply(scoped.player_map(), ctx)

    remaining = [t for t in game.pending_triggers if t.id not in resolved_trigger_ids]
    cascade = apply_cascade(
        players,
        ctx.candidates,
        CascadeContext(
            game_id=game.id,
            phase=game.phase,
            phase_seq=game.phase_seq,
            catalog=snapshot.catalog,
            power_uses=snapshot.power_uses,
            reveal_at_seq=reveal_at_seq,
            trigger_expires_at=now + timedelta(seconds=game.settings.revenge_timeout_seconds),
            pending_triggers=remaining,
        ),
    )
    events.extend(cascade.events)

    blocking = [t for t in remaining if t.kind.blocks_victory]
    blocking += [t for t in cascade.pending_triggers if t.kind.blocks_victory]

    winner = None
    next_phase = None
    finalized = False
    awaiting = game.resolution == ResolutionState.AWAITING_TRIGGERS
    if not blocking and (cascade.deaths or awaiting):
        context = None
        if game.phase == GamePhase.COUNCIL:
            context = VictoryContext(
                eliminated_player_id=game.council_eliminated_id,
                council_number=game.day_count + 1,
            )
        winner = evaluate_victory(cascade.players.values(), snapshot.catalog, context)

    if not blocking and awaiting:
        finalized = True
        next_phase = GamePhase.FINISHED if winner else next_phase_after(game.phase)
    elif winner is not None:
        next_phase = GamePhase.FINISHED

    draft = ResolutionDraft(
        players=list(cascade.players.values()),
        applications=ctx.applications,
        events=events,
        new_triggers=cascade.pending_triggers,
        resolved_trigger_ids=resolved_trigger_ids,
        deaths=cascade.deaths,
    )
    outcome = ImmediateOutcome(
        game_id=game.id,
        phase_seq=game.phase_seq,
        power_id=action.power_id,
        actor_id=action.player_id,
        deaths=[public_report(d, reveal_at_seq is None) for d in cascade.deaths],
        pending_triggers=[t for t in cascade.pending_triggers if t.kind.blocks_victory],
        winner=winner,
        next_phase=next_phase,
        phase_finalized=finalized,
    )
    return draft, outcome


def resolve_silent_kill(
    snapshot: PhaseSnapshot, action: ActionRecord, now: Optional[datetime] = None
) -> tuple[ResolutionDraft, ImmediateOutcome]:
    """Apply a silent kill right away.

    The victim's death is public; its cause and author are withheld and the
    role follows the night reveal policy.
    """
    return _resolve_immediate(
        snapshot,
        action,
        EffectKind.SILENT_KILL,
        reveal_at_seq=night_reveal_seq(snapshot),
        resolved_trigger_ids=[],
        now=now,
    )


def resolve_revenge_shot(
    snapshot: PhaseSnapshot, action: ActionRecord, now: Optional[datetime] = None
) -> tuple[ResolutionDraft, ImmediateOutcome]:
    """Apply the revenge shot of a dead player with a pending trigger.

    Consumes the shooter's ``AWAITING_REVENGE`` trigger. When it was the last
    blocking trigger of a phase awaiting triggers, the victory check runs and
    the phase is finalized.
    """
    resolved = [
        t.id
        for t in snapshot.game.pending_triggers
        if t.kind == TriggerKind.AWAITING_REVENGE and t.player_id == action.player_id
    ]
    reveal = None if snapshot.game.phase.is_daytime else night_reveal_seq(snapshot)
    return _resolve_immediate(
        snapshot,
        action,
        EffectKind.REVENGE_SHOT,
        reveal_at_seq=reveal,
        resolved_trigger_ids=resolved,
        now=now,
    )
