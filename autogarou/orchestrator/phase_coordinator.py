"""Phase coordination.

``PhaseCoordinator`` is the single entry point for submissions and
resolutions. A phase sequence is resolved exactly once: concurrent callers
race on the store's compare-and-swap and all but one get ``AlreadyResolved``.
Batch resolutions and immediate powers of a game are serialized on a per-game
lock, so they always see each other's committed effects.
"""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel

from autogarou.engine.council import resolve_council
from autogarou.engine.effects import apply_model_transforms
from autogarou.engine.errors import EngineIntegrityError, InvalidTransitionError, StalePhaseError
from autogarou.engine.immediate import resolve_revenge_shot, resolve_silent_kill
from autogarou.engine.ledger import ActionLedger
from autogarou.engine.night import resolve_night
from autogarou.engine.phases import advance_game, next_phase_after
from autogarou.engine.roles import (
    EffectKind,
    EventVisibility,
    GamePhase,
    ResolutionState,
    TriggerKind,
)
from autogarou.engine.setup import create_game_records
from autogarou.engine.state import (
    AlreadyResolved,
    CouncilOutcome,
    DeathReport,
    EventRecord,
    EventType,
    Game,
    GameSettings,
    NightOutcome,
    NotReady,
    PhaseAdvance,
    PhaseStatus,
    Player,
    ResolutionDraft,
    ResolutionResult,
    RoleCatalog,
    SubmissionResult,
    Transformation,
    TriggersSkipped,
    Winner,
)
from autogarou.engine.victory import VictoryContext, evaluate_victory
from autogarou.io.logging import GameLogLevel, GameLogger, create_game_logger
from autogarou.io.store import GameStore, InMemoryGameStore, StoreCommit
from autogarou.orchestrator.bots import BotAutopilot

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[[str, dict[str, Any]], None]

# Operator-only details withheld from broadcasts
PRIVATE_OUTCOME_FIELDS = {"wolf_target_id", "attack_prevented_by", "transformations"}


def public_outcome(outcome: BaseModel) -> dict[str, Any]:
    """Serialize an outcome for all clients of a game."""
    hidden = PRIVATE_OUTCOME_FIELDS & set(type(outcome).model_fields)
    return outcome.model_dump(mode="json", exclude=hidden)


class PhaseCoordinator:
    def __init__(
        self,
        store: Optional[GameStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
        on_outcome: Optional[OutcomeCallback] = None,
        log_level: GameLogLevel = GameLogLevel.STANDARD,
        output_path: Optional[Path] = None,
        enable_console_logging: bool = False,
        enable_file_logging: bool = False,
    ):
        self.store = store or InMemoryGameStore()
        self.clock = clock or datetime.now
        self.ledger = ActionLedger(self.store, clock=self.clock)
        self.autopilot = BotAutopilot(self.store, self.ledger)
        self._on_outcome = on_outcome

        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

        self._log_level = log_level
        self._output_path = output_path
        self._enable_console_logging = enable_console_logging
        self._enable_file_logging = enable_file_logging
        self._game_loggers: dict[str, GameLogger] = {}

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def set_outcome_callback(self, callback: Optional[OutcomeCallback]) -> None:
        self._on_outcome = callback

    def _lock(self, game_id: str) -> threading.RLock:
        with self._locks_guard:
            if game_id not in self._locks:
                self._locks[game_id] = threading.RLock()
            return self._locks[game_id]

    def game_logger(self, game_id: str) -> GameLogger:
        if game_id not in self._game_loggers:
            self._game_loggers[game_id] = create_game_logger(
                game_id=game_id,
                log_level=self._log_level,
                output_path=self._output_path,
                enable_console=self._enable_console_logging,
                enable_file=self._enable_file_logging,
            )
        return self._game_loggers[game_id]

    def _publish(self, game_id: str, outcome: BaseModel) -> None:
        if self._on_outcome is None:
            return
        try:
            self._on_outcome(game_id, public_outcome(outcome))
        except Exception as e:
            logger.warning(f"Outcome callback error: {e}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_game(self, game_id: str) -> Game:
        return self.store.get_game(game_id)

    def get_players(self, game_id: str) -> list[Player]:
        return self.store.get_players(game_id)

    def get_catalog(self, game_id: str) -> RoleCatalog:
        return self.store.get_catalog(game_id)

    def status(self, game_id: str) -> PhaseStatus:
        """Return how many required participants have acted in the current phase."""
        game = self.store.get_game(game_id)
        catalog = self.store.get_catalog(game_id)
        alive = [p for p in self.store.get_players(game_id) if p.is_alive]

        required_ids: set[str] = set()
        acted_ids: set[str] = set()
        if game.phase == GamePhase.NIGHT:
            required_ids = {p.id for p in alive if catalog.holds_effect(p, EffectKind.WOLF_ATTACK)}
            for action in self.ledger.query(game_id, game.phase_seq):
                power = catalog.power(action.power_id)
                if power is not None and power.effect == EffectKind.WOLF_ATTACK:
                    acted_ids.add(action.player_id)
        elif game.phase == GamePhase.COUNCIL:
            required_ids = {p.id for p in alive}
            acted_ids = {v.voter_id for v in self.ledger.query_votes(game_id, game.phase_seq)}

        submitted = len(acted_ids & required_ids)
        required = len(required_ids)
        return PhaseStatus(
            game_id=game_id,
            phase=game.phase,
            phase_seq=game.phase_seq,
            resolution=game.resolution,
            submitted=submitted,
            required=required,
            can_resolve=(
                game.phase.is_playable
                and game.resolution == ResolutionState.OPEN
                and submitted >= required
            ),
            pending_triggers=len(game.blocking_triggers()),
            phase_ends_at=game.phase_ends_at,
        )

    def events(
        self,
        game_id: str,
        viewer_id: Optional[str] = None,
        privileged: bool = False,
    ) -> list[EventRecord]:
        """Return the event feed as seen by ``viewer_id`` (or by the operator)."""
        game = self.store.get_game(game_id)
        records = self.store.list_events(game_id)
        if privileged:
            return records
        return [
            e.redacted(game.phase_seq)
            for e in records
            if e.is_visible_to(viewer_id)
        ]

    def public_players(self, game_id: str) -> list[dict[str, Any]]:
        """Players as everyone sees them: roles only once revealed by a death."""
        revealed: dict[str, str] = {}
        for event in self.events(game_id):
            if event.event_type in (EventType.PLAYER_KILLED, EventType.PLAYER_ELIMINATED):
                if event.target_id and "role" in event.data:
                    revealed[event.target_id] = event.data["role"]
        return [
            {
                "id": p.id,
                "name": p.name,
                "seat_number": p.seat_number,
                "is_alive": p.is_alive,
                "is_bot": p.is_bot,
                "role": revealed.get(p.id),
            }
            for p in self.store.get_players(game_id)
        ]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_game(
        self,
        player_names: Optional[list[str]] = None,
        settings: Optional[GameSettings] = None,
        catalog: Optional[RoleCatalog] = None,
    ) -> Game:
        settings = settings or GameSettings()
        game, players, catalog = create_game_records(settings, player_names, catalog)
        self.store.create_game(game, players, catalog)
        self.game_logger(game.id)
        logger.info(f"Created game {game.id} with {len(players)} players")
        return self.store.get_game(game.id)

    def start_game(self, game_id: str) -> PhaseAdvance:
        """Leave the lobby and open the first night."""
        with self._lock(game_id):
            game = self.store.get_game(game_id)
            if game.phase != GamePhase.LOBBY:
                raise InvalidTransitionError(f"Game {game_id} has already started")
            if not self.store.begin_resolution(game_id, game.phase_seq):
                raise StalePhaseError(game_id, game.phase_seq, self.store.get_game(game_id).phase_seq)
            try:
                players = self.store.get_players(game_id)
                started = EventRecord(
                    game_id=game_id,
                    event_type=EventType.GAME_STARTED,
                    phase=GamePhase.LOBBY,
                    phase_seq=game.phase_seq,
                    data={
                        "player_count": len(players),
                        "roles": game.settings.role_distribution,
                    },
                    created_at=self.clock(),
                )
                new_game, events = advance_game(game, GamePhase.NIGHT, self.clock())
                self.store.commit(
                    StoreCommit(
                        game_id=game_id,
                        expected_seq=game.phase_seq,
                        game=new_game,
                        events=[started, *events],
                    )
                )
            except Exception:
                self.store.abort_resolution(game_id, game.phase_seq)
                raise

        game_logger = self.game_logger(game_id)
        game_logger.log_game_start(game.settings, players)
        game_logger.log_phase_change(new_game.phase_seq, new_game.phase.value, len(players))

        advance = PhaseAdvance(
            game_id=game_id,
            phase_seq=game.phase_seq,
            from_phase=GamePhase.LOBBY,
            to_phase=GamePhase.NIGHT,
        )
        self._publish(game_id, advance)
        return advance

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    def submit_action(
        self,
        game_id: str,
        phase_seq: int,
        player_id: str,
        power_id: str,
        target_ids: Optional[list[str]] = None,
    ) -> SubmissionResult:
        """Record an action, or apply it right away for immediate powers."""
        power = self.store.get_catalog(game_id).power(power_id)
        if power is not None and power.effect.is_immediate:
            result = self._submit_immediate(game_id, phase_seq, player_id, power_id, target_ids)
        else:
            result = self.ledger.submit(game_id, phase_seq, player_id, power_id, target_ids)

        self.game_logger(game_id).log_submission(
            player_id,
            power_id,
            list(target_ids or []),
            result.accepted,
            result.reason.value if result.reason else None,
        )
        return result

    def submit_vote(
        self,
        game_id: str,
        phase_seq: int,
        voter_id: str,
        target_id: Optional[str] = None,
        double: bool = False,
        anonymous: bool = False,
    ) -> SubmissionResult:
        result = self.ledger.submit_vote(game_id, phase_seq, voter_id, target_id, double, anonymous)

        players = {p.id: p for p in self.store.get_players(game_id)}
        voter = players.get(voter_id)
        target = players.get(target_id) if target_id else None
        self.game_logger(game_id).log_vote(
            voter_id,
            voter.name if voter else voter_id,
            target_id,
            target.name if target else None,
            accepted=result.accepted,
            reason=result.reason.value if result.reason else None,
        )
        return result

    def _submit_immediate(
        self,
        game_id: str,
        phase_seq: int,
        player_id: str,
        power_id: str,
        target_ids: Optional[list[str]],
    ) -> SubmissionResult:
        with self._lock(game_id):
            result, record = self.ledger.validate(game_id, phase_seq, player_id, power_id, target_ids)
            if record is None:
                return result

            snapshot = self.store.snapshot(game_id)
            game = snapshot.game
            now = self.clock()
            power = snapshot.catalog.power(power_id)
            try:
                if power.effect == EffectKind.SILENT_KILL:
                    draft, outcome = resolve_silent_kill(snapshot, record, now)
                else:
                    draft, outcome = resolve_revenge_shot(snapshot, record, now)

                new_game, players, events, transformations = self._conclude(
                    game,
                    {p.id: p for p in draft.players},
                    draft,
                    outcome.winner,
                    outcome.next_phase,
                    hold_state=game.resolution,
                    now=now,
                    council_eliminated_id=game.council_eliminated_id,
                )
                self.store.commit(
                    StoreCommit(
                        game_id=game_id,
                        expected_seq=game.phase_seq,
                        expected_states=[game.resolution],
                        game=new_game,
                        players=list(players.values()),
                        applications=draft.applications,
                        events=events,
                    )
                )
            except EngineIntegrityError as e:
                self._report_integrity_error(game_id, game.phase_seq, e)
                raise

        if transformations:
            outcome = outcome.model_copy(update={"transformations": transformations})
        self._after_commit(game_id, outcome, draft.deaths, events, players, new_game)
        return SubmissionResult(accepted=True, message=f"'{power_id}' applied", outcome=outcome)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(
        self,
        game_id: str,
        phase_seq: Optional[int] = None,
        force: bool = False,
    ) -> ResolutionResult:
        """Resolve the current phase exactly once.

        Args:
            game_id: Game to resolve
            phase_seq: Phase sequence the caller believes is current
                       (defaults to the current one)
            force: Resolve even if not every required participant acted

        Returns:
            The phase outcome, ``AlreadyResolved`` if another caller won (or
            the sequence is stale), or ``NotReady``.

        Raises:
            GameNotFoundError: unknown game
            EngineIntegrityError: rules-composition fault; nothing is persisted
        """
        game = self.store.get_game(game_id)
        seq = game.phase_seq if phase_seq is None else phase_seq

        if game.phase == GamePhase.LOBBY:
            return NotReady(game_id=game_id, reason="game_not_started")
        if seq != game.phase_seq or game.resolution != ResolutionState.OPEN or game.is_over:
            return AlreadyResolved(game_id=game_id, phase_seq=seq, current_phase_seq=game.phase_seq)

        if game.settings.bot_autopilot:
            if game.phase == GamePhase.COUNCIL:
                self.autopilot.fill_council_votes(game_id, seq)
            elif game.phase == GamePhase.NIGHT:
                self.autopilot.fill_night_actions(game_id, seq)

        if not force:
            status = self.status(game_id)
            # Another caller may have committed this phase since the first read
            if status.phase_seq != seq or status.resolution != ResolutionState.OPEN:
                return AlreadyResolved(
                    game_id=game_id, phase_seq=seq, current_phase_seq=status.phase_seq
                )
            if not status.can_resolve:
                return NotReady(
                    game_id=game_id,
                    reason="incomplete_participation",
                    submitted=status.submitted,
                    required=status.required,
                )

        return self._resolve_once(game_id, seq)

    def _resolve_once(
        self, game_id: str, seq: int, skip_attack: bool = False
    ) -> Union[NightOutcome, CouncilOutcome, PhaseAdvance, AlreadyResolved]:
        with self._lock(game_id):
            if not self.store.begin_resolution(game_id, seq):
                current = self.store.get_game(game_id)
                return AlreadyResolved(
                    game_id=game_id, phase_seq=seq, current_phase_seq=current.phase_seq
                )
            try:
                outcome, deaths, events, players, new_game = self._run_resolution(
                    game_id, seq, skip_attack
                )
            except EngineIntegrityError as e:
                self.store.abort_resolution(game_id, seq)
                self._report_integrity_error(game_id, seq, e)
                raise
            except Exception:
                self.store.abort_resolution(game_id, seq)
                raise

        self._after_commit(game_id, outcome, deaths, events, players, new_game)
        return outcome

    def _run_resolution(self, game_id: str, seq: int, skip_attack: bool = False):
        snapshot = self.store.snapshot(game_id)
        game = snapshot.game
        now = self.clock()

        eliminated_id = None
        if game.phase == GamePhase.NIGHT:
            draft, outcome = resolve_night(snapshot, now, skip_attack=skip_attack)
        elif game.phase == GamePhase.COUNCIL:
            draft, outcome = resolve_council(snapshot, now)
            eliminated_id = outcome.eliminated.player_id if outcome.eliminated else None
        else:
            draft = ResolutionDraft(players=snapshot.players)
            outcome = PhaseAdvance(
                game_id=game_id,
                phase_seq=seq,
                from_phase=game.phase,
                to_phase=next_phase_after(game.phase),
            )

        next_phase = outcome.to_phase if isinstance(outcome, PhaseAdvance) else outcome.next_phase
        new_game, players, events, transformations = self._conclude(
            game,
            {p.id: p for p in draft.players},
            draft,
            outcome.winner,
            next_phase,
            hold_state=ResolutionState.AWAITING_TRIGGERS,
            now=now,
            council_eliminated_id=eliminated_id,
        )
        self.store.commit(
            StoreCommit(
                game_id=game_id,
                expected_seq=seq,
                game=new_game,
                players=list(players.values()),
                applications=draft.applications,
                events=events,
            )
        )
        if transformations:
            outcome = outcome.model_copy(
                update={"transformations": [*outcome.transformations, *transformations]}
            )
        return outcome, draft.deaths, events, players, new_game

    def _conclude(
        self,
        game: Game,
        players: dict[str, Player],
        draft: ResolutionDraft,
        winner: Optional[Winner],
        next_phase: Optional[GamePhase],
        hold_state: ResolutionState,
        now: datetime,
        council_eliminated_id: Optional[str] = None,
    ) -> tuple[Game, dict[str, Player], list[EventRecord], list[Transformation]]:
        """Fold a draft into the game record and move to ``next_phase`` if any.

        With no next phase the game stays on its sequence in ``hold_state``.
        Entering a night applies the deferred model transformations.
        """
        new_game = game.model_copy(deep=True)
        new_game.pending_triggers = [
            t for t in game.pending_triggers if t.id not in draft.resolved_trigger_ids
        ] + list(draft.new_triggers)
        new_game.council_eliminated_id = council_eliminated_id
        events = list(draft.events)
        transformations: list[Transformation] = []

        if next_phase is None:
            new_game.resolution = hold_state
            return new_game, players, events, transformations

        new_game, transition_events = advance_game(new_game, next_phase, now, winner)
        events.extend(transition_events)

        if next_phase == GamePhase.NIGHT and new_game.transform_triggers():
            catalog = self.store.get_catalog(game.id)
            players, transformations, transform_events, consumed = apply_model_transforms(
                players,
                new_game.transform_triggers(),
                catalog,
                game.id,
                new_game.phase_seq,
                now,
            )
            new_game.pending_triggers = [
                t for t in new_game.pending_triggers if t.id not in consumed
            ]
            events.extend(transform_events)

        return new_game, players, events, transformations

    def _report_integrity_error(self, game_id: str, phase_seq: int, error: Exception) -> None:
        logger.error(f"Resolution of game {game_id} phase {phase_seq} aborted: {error}")
        self.game_logger(game_id).log_error(
            str(error),
            "EngineIntegrityError",
            {"phase_seq": phase_seq},
        )

    def _after_commit(
        self,
        game_id: str,
        outcome: BaseModel,
        deaths: list[DeathReport],
        events: list[EventRecord],
        players: dict[str, Player],
        new_game: Game,
    ) -> None:
        game_logger = self.game_logger(game_id)
        for event in events:
            game_logger.log_event(event, players)
        for report in deaths:
            game_logger.log_death(report)

        if isinstance(outcome, CouncilOutcome):
            game_logger.log_vote_result(
                outcome.vote_counts,
                outcome.eliminated.name if outcome.eliminated else None,
                tie=outcome.tie,
                immunity_used=outcome.immunity_used,
            )
        game_logger.log_resolution(
            getattr(outcome, "kind", type(outcome).__name__),
            getattr(outcome, "phase_seq", new_game.phase_seq),
        )
        for trigger in new_game.blocking_triggers():
            game_logger.log_trigger(trigger.kind.value, trigger.player_id, "awaiting")

        if new_game.winner is not None and new_game.is_over:
            survivors = [p for p in players.values() if p.is_alive]
            game_logger.log_game_end(new_game.winner, new_game.day_count + 1, survivors)
            self.autopilot.forget(game_id)
        elif any(e.event_type == EventType.PHASE_CHANGED for e in events):
            alive = sum(1 for p in players.values() if p.is_alive)
            game_logger.log_phase_change(new_game.phase_seq, new_game.phase.value, alive)

        self._publish(game_id, outcome)

        if new_game.settings.bot_autopilot and not new_game.is_over:
            self._fire_bot_revenge_shots(game_id)

    def _fire_bot_revenge_shots(self, game_id: str) -> None:
        for shooter_id, power_id, target_id in self.autopilot.pending_revenge_shots(game_id):
            game = self.store.get_game(game_id)
            if game.is_over:
                return
            result = self.submit_action(game_id, game.phase_seq, shooter_id, power_id, [target_id])
            if not result.accepted:
                logger.debug(f"Bot revenge shot by {shooter_id} rejected: {result.message}")

    # ------------------------------------------------------------------
    # Operator controls
    # ------------------------------------------------------------------

    def skip_night_attack(
        self, game_id: str, phase_seq: Optional[int] = None
    ) -> Union[NightOutcome, AlreadyResolved]:
        """Operator bypass: end the night without the wolves' attack.

        The pack's attack and the life potion answering it are discarded. Bonds,
        model choices, swaps, inspections, protections and the death potion
        still resolve, and so does the death cascade and victory check.
        """
        game = self.store.get_game(game_id)
        seq = game.phase_seq if phase_seq is None else phase_seq
        if game.phase != GamePhase.NIGHT:
            raise InvalidTransitionError(f"Game {game_id} is not in a night phase")
        return self._resolve_once(game_id, seq, skip_attack=True)

    def skip_pending_triggers(
        self, game_id: str, player_id: Optional[str] = None
    ) -> TriggersSkipped:
        """Give up awaited revenge shots (all of them, or one player's).

        When no blocking trigger remains the victory check runs, and a phase
        awaiting triggers is finalized.
        """
        with self._lock(game_id):
            game = self.store.get_game(game_id)
            skipped = [
                t for t in game.blocking_triggers()
                if player_id is None or t.player_id == player_id
            ]
            if not skipped:
                return TriggersSkipped(game_id=game_id, phase_seq=game.phase_seq)

            now = self.clock()
            players = {p.id: p for p in self.store.get_players(game_id)}
            catalog = self.store.get_catalog(game_id)
            skipped_ids = {t.id for t in skipped}
            remaining = [t for t in game.blocking_triggers() if t.id not in skipped_ids]

            winner = None
            next_phase = None
            finalized = False
            if not remaining:
                context = None
                if game.phase == GamePhase.COUNCIL:
                    context = VictoryContext(
                        eliminated_player_id=game.council_eliminated_id,
                        council_number=game.day_count + 1,
                    )
                winner = evaluate_victory(players.values(), catalog, context)
                if game.resolution == ResolutionState.AWAITING_TRIGGERS:
                    finalized = True
                    next_phase = GamePhase.FINISHED if winner else next_phase_after(game.phase)
                elif winner is not None:
                    next_phase = GamePhase.FINISHED

            events = [
                EventRecord(
                    game_id=game_id,
                    event_type=EventType.REVENGE_SKIPPED,
                    phase=game.phase,
                    phase_seq=game.phase_seq,
                    actor_id=t.player_id,
                    visibility=EventVisibility.PUBLIC,
                    created_at=now,
                )
                for t in skipped
            ]
            draft = ResolutionDraft(
                players=list(players.values()),
                events=events,
                resolved_trigger_ids=list(skipped_ids),
            )
            new_game, players, events, transformations = self._conclude(
                game,
                players,
                draft,
                winner,
                next_phase,
                hold_state=game.resolution,
                now=now,
                council_eliminated_id=game.council_eliminated_id,
            )
            self.store.commit(
                StoreCommit(
                    game_id=game_id,
                    expected_seq=game.phase_seq,
                    expected_states=[game.resolution],
                    game=new_game,
                    players=list(players.values()),
                    events=events,
                )
            )

        game_logger = self.game_logger(game_id)
        for trigger in skipped:
            game_logger.log_trigger(trigger.kind.value, trigger.player_id, "skipped")

        outcome = TriggersSkipped(
            game_id=game_id,
            phase_seq=game.phase_seq,
            skipped_player_ids=[t.player_id for t in skipped],
            winner=winner,
            next_phase=next_phase,
            phase_finalized=finalized,
        )
        self._after_commit(game_id, outcome, [], events, players, new_game)
        return outcome

    def tick(self, now: Optional[datetime] = None) -> list[BaseModel]:
        """Timer entry point: expire revenge waits and resolve overdue auto-mode phases."""
        now = now or self.clock()
        results: list[BaseModel] = []
        for game in self.store.list_games():
            if not game.phase.is_playable:
                continue

            for trigger in game.blocking_triggers():
                if trigger.kind != TriggerKind.AWAITING_REVENGE:
                    continue
                if trigger.expires_at is not None and trigger.expires_at <= now:
                    results.append(self.skip_pending_triggers(game.id, trigger.player_id))

            current = self.store.get_game(game.id)
            if (
                current.settings.auto_mode
                and current.phase.is_playable
                and current.resolution == ResolutionState.OPEN
                and current.phase_ends_at is not None
                and current.phase_ends_at <= now
            ):
                results.append(self.resolve(current.id, current.phase_seq, force=True))
        return results

