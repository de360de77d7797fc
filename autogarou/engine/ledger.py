"""Submission-time validation and storage of actions and votes."""

import logging
from datetime import datetime
from typing import Callable, Optional

from .errors import StalePhaseError
from .roles import (
    EffectKind,
    GamePhase,
    RejectionReason,
    ResolutionState,
    Team,
    TriggerKind,
)
from .state import (
    ActionRecord,
    Game,
    Player,
    PowerDefinition,
    RoleCatalog,
    SubmissionResult,
    VoteRecord,
)

logger = logging.getLogger(__name__)


class ActionLedger:
    """Validates submissions and upserts them into the store.

    A resubmission for the same (game, phase_seq, player, power) replaces the
    previous record; so does a new vote by the same voter. Rejections are
    returned as values, never raised.
    """

    def __init__(self, store, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or datetime.now

    def validate(
        self,
        game_id: str,
        phase_seq: int,
        player_id: str,
        power_id: str,
        target_ids: Optional[list[str]] = None,
    ) -> tuple[SubmissionResult, Optional[ActionRecord]]:
        """Check an action against the current game state without storing it.

        Raises:
            GameNotFoundError: unknown game
            PlayerNotFoundError: unknown acting player
        """
        target_ids = list(target_ids or [])
        game = self.store.get_game(game_id)
        catalog = self.store.get_catalog(game_id)
        players = {p.id: p for p in self.store.get_players(game_id)}
        actor = self.store.get_player(game_id, player_id)

        if game.phase_seq != phase_seq:
            return _reject(RejectionReason.STALE_PHASE, f"Phase {phase_seq} is closed"), None
        if not game.phase.is_playable:
            return _reject(RejectionReason.WRONG_PHASE, f"Game is in phase '{game.phase.value}'"), None

        power = catalog.power(power_id)
        if power is None or not catalog.holds_power(actor, power_id):
            return _reject(RejectionReason.POWER_NOT_HELD, f"{actor.name} does not hold '{power_id}'"), None

        if power.effect == EffectKind.REVENGE_SHOT:
            if actor.is_alive:
                return _reject(RejectionReason.WRONG_PHASE, "Revenge shots are fired on death"), None
            if not _awaits_revenge(game, actor.id):
                return _reject(RejectionReason.NOT_ALIVE, f"{actor.name} is dead"), None
        else:
            if not actor.is_alive:
                return _reject(RejectionReason.NOT_ALIVE, f"{actor.name} is dead"), None
            if game.resolution != ResolutionState.OPEN:
                return _reject(RejectionReason.STALE_PHASE, f"Phase {phase_seq} is being resolved"), None
            if not power.timing.allows(game.phase):
                return _reject(
                    RejectionReason.WRONG_PHASE,
                    f"'{power.id}' cannot be used during '{game.phase.value}'",
                ), None
            if power.first_night_only and (game.phase != GamePhase.NIGHT or game.night_number != 1):
                return _reject(RejectionReason.WRONG_PHASE, f"'{power.id}' is only usable the first night"), None

        use = self._power_use(game_id, actor.id, power.id)
        if power.is_exhausted(use.count if use else 0):
            return _reject(RejectionReason.POWER_EXHAUSTED, f"'{power.id}' has no uses left"), None

        problem = _check_targets(game, catalog, actor, power, target_ids, players, use)
        if problem:
            return _reject(RejectionReason.INVALID_TARGET, problem), None

        record = ActionRecord(
            game_id=game_id,
            phase_seq=phase_seq,
            player_id=actor.id,
            power_id=power.id,
            target_ids=target_ids,
            submitted_at=self.clock(),
        )
        return SubmissionResult.ok(), record

    def submit(
        self,
        game_id: str,
        phase_seq: int,
        player_id: str,
        power_id: str,
        target_ids: Optional[list[str]] = None,
    ) -> SubmissionResult:
        """Validate and upsert a batch-resolved action."""
        result, record = self.validate(game_id, phase_seq, player_id, power_id, target_ids)
        if record is None:
            logger.debug("Rejected %s from %s: %s", power_id, player_id, result.message)
            return result
        try:
            self.store.upsert_action(record)
        except StalePhaseError as e:
            return _reject(RejectionReason.STALE_PHASE, str(e))
        return SubmissionResult.ok(f"'{power_id}' recorded")

    def submit_vote(
        self,
        game_id: str,
        phase_seq: int,
        voter_id: str,
        target_id: Optional[str] = None,
        double: bool = False,
        anonymous: bool = False,
    ) -> SubmissionResult:
        """Validate and upsert a council vote. ``target_id=None`` abstains."""
        game = self.store.get_game(game_id)
        catalog = self.store.get_catalog(game_id)
        voter = self.store.get_player(game_id, voter_id)

        if game.phase_seq != phase_seq:
            return _reject(RejectionReason.STALE_PHASE, f"Phase {phase_seq} is closed")
        if game.phase != GamePhase.COUNCIL:
            return _reject(RejectionReason.WRONG_PHASE, "Votes are only cast during the council")
        if game.resolution != ResolutionState.OPEN:
            return _reject(RejectionReason.STALE_PHASE, f"Phase {phase_seq} is being resolved")
        if not voter.is_alive:
            return _reject(RejectionReason.NOT_ALIVE, f"{voter.name} is dead")

        if target_id is not None:
            players = {p.id: p for p in self.store.get_players(game_id)}
            target = players.get(target_id)
            if target is None or not target.is_alive:
                return _reject(RejectionReason.INVALID_TARGET, "Vote target must be an alive player")
            if target.id == voter.id:
                return _reject(RejectionReason.INVALID_TARGET, "Players cannot vote for themselves")

        for requested, effect in ((double, EffectKind.DOUBLE_VOTE), (anonymous, EffectKind.ANONYMOUS_VOTE)):
            if not requested:
                continue
            power = catalog.holds_effect(voter, effect)
            if power is None:
                return _reject(RejectionReason.POWER_NOT_HELD, f"{voter.name} has no '{effect.value}' power")
            use = self._power_use(game_id, voter.id, power.id)
            if power.is_exhausted(use.count if use else 0):
                return _reject(RejectionReason.POWER_EXHAUSTED, f"'{power.id}' has no uses left")

        record = VoteRecord(
            game_id=game_id,
            phase_seq=phase_seq,
            voter_id=voter.id,
            target_id=target_id,
            weight=2 if double else 1,
            anonymous=anonymous,
            submitted_at=self.clock(),
        )
        try:
            self.store.upsert_vote(record)
        except StalePhaseError as e:
            return _reject(RejectionReason.STALE_PHASE, str(e))
        return SubmissionResult.ok("Vote recorded")

    def query(self, game_id: str, phase_seq: int, power_id: Optional[str] = None) -> list[ActionRecord]:
        actions = self.store.list_actions(game_id, phase_seq)
        if power_id is not None:
            actions = [a for a in actions if a.power_id == power_id]
        return actions

    def query_votes(self, game_id: str, phase_seq: int) -> list[VoteRecord]:
        return self.store.list_votes(game_id, phase_seq)

    def _power_use(self, game_id: str, player_id: str, power_id: str):
        for record in self.store.list_power_uses(game_id):
            if record.player_id == player_id and record.power_id == power_id:
                return record
        return None


def _reject(reason: RejectionReason, message: str) -> SubmissionResult:
    return SubmissionResult.rejected(reason, message)


def _awaits_revenge(game: Game, player_id: str) -> bool:
    return any(
        t.kind == TriggerKind.AWAITING_REVENGE and t.player_id == player_id
        for t in game.pending_triggers
    )


def _check_targets(
    game: Game,
    catalog: RoleCatalog,
    actor: Player,
    power: PowerDefinition,
    target_ids: list[str],
    players: dict[str, Player],
    use,
) -> Optional[str]:
    """Return a message describing the first target problem, or None."""
    if power.target_count == 0:
        if len(target_ids) > 1:
            return f"'{power.id}' takes at most one target"
    elif len(target_ids) != power.target_count:
        return f"'{power.id}' needs {power.target_count} target(s)"

    if len(set(target_ids)) != len(target_ids):
        return "Targets must be distinct"

    for target_id in target_ids:
        target = players.get(target_id)
        if target is None or not target.is_alive:
            return "Targets must be alive players"
        if target.id == actor.id:
            self_allowed = power.allow_self
            if power.effect == EffectKind.PROTECT:
                self_allowed = self_allowed and game.settings.rule_variants.protector_can_self_protect
            if not self_allowed:
                return f"'{power.id}' cannot target its holder"
        if power.effect == EffectKind.WOLF_ATTACK and catalog.team_of(target) == Team.WOLVES:
            return "The pack cannot attack one of its own"
        if power.effect == EffectKind.ROLE_SWAP and catalog.team_of(target) == Team.WOLVES:
            return "Wolves cannot have their role swapped"

    if power.no_repeat_target and use is not None and use.last_night == game.night_number - 1:
        if set(target_ids) & set(use.last_target_ids):
            return "Cannot target the same player two nights in a row"

    return None
