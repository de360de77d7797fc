"""Transitive consequences of deaths.

``apply_cascade`` is shared by every death source (night batch, council vote,
silent kill, revenge shot). It runs a fixed-point loop over the queued deaths:

1. Bonded pair: the surviving partner dies of grief.
2. Model transformation: players whose model died get a deferred
   ``MODEL_TRANSFORM`` trigger, applied at the start of the next night.
3. Revenge shot: a dying holder of an unused revenge power gets an
   ``AWAITING_REVENGE`` trigger that blocks the victory verdict.
"""

import sys
from collections import deque
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .errors import EngineIntegrityError
from .roles import DeathCause, EffectKind, GamePhase, TriggerKind
from .state import (
    DeathReport,
    EventRecord,
    EventType,
    PendingTrigger,
    Player,
    PowerUseRecord,
    RoleCatalog,
)

NEVER_REVEALED = sys.maxsize


class DeathCandidate(BaseModel):
    player_id: str
    cause: DeathCause
    actor_id: Optional[str] = None


class CascadeContext(BaseModel):
    """Read-only inputs a cascade pass needs besides the players.

    Attributes:
        reveal_at_seq: Phase sequence from which the victims' roles are public
            (None = immediately, ``NEVER_REVEALED`` = never)
        trigger_expires_at: Deadline stamped on revenge triggers
    """

    game_id: str
    phase: GamePhase
    phase_seq: int
    catalog: RoleCatalog
    power_uses: list[PowerUseRecord] = Field(default_factory=list)
    reveal_at_seq: Optional[int] = None
    trigger_expires_at: Optional[datetime] = None
    pending_triggers: list[PendingTrigger] = Field(default_factory=list)

    def uses_of(self, player_id: str, power_id: str) -> int:
        for record in self.power_uses:
            if record.player_id == player_id and record.power_id == power_id:
                return record.count
        return 0


class CascadeResult(BaseModel):
    players: dict[str, Player]
    deaths: list[DeathReport] = Field(default_factory=list)
    extra_deaths: list[DeathReport] = Field(default_factory=list)
    pending_triggers: list[PendingTrigger] = Field(default_factory=list)
    events: list[EventRecord] = Field(default_factory=list)


def apply_cascade(
    players: dict[str, Player],
    new_deaths: list[DeathCandidate],
    context: CascadeContext,
) -> CascadeResult:
    """Kill ``new_deaths`` and everything they drag along.

    Args:
        players: Current players keyed by id (not mutated)
        new_deaths: Direct deaths, in resolution order
        context: Catalog, usage counters and visibility policy

    Returns:
        CascadeResult with the updated players, every death in order, the
        consequential deaths, new pending triggers and one death event each.

    Raises:
        EngineIntegrityError: unknown victim or broken bonded-pair invariant
    """
    working = {pid: p.model_copy(deep=True) for pid, p in players.items()}
    direct_ids = {c.player_id for c in new_deaths}
    queue = deque(new_deaths)

    deaths: list[DeathReport] = []
    extra: list[DeathReport] = []
    triggers: list[PendingTrigger] = []
    events: list[EventRecord] = []
    known_triggers = {(t.kind, t.player_id) for t in context.pending_triggers}

    while queue:
        candidate = queue.popleft()
        victim = working.get(candidate.player_id)
        if victim is None:
            raise EngineIntegrityError(f"Death of unknown player '{candidate.player_id}'")
        if not victim.is_alive:
            # First recorded cause wins
            continue

        victim.kill(candidate.cause, context.phase_seq)
        role = context.catalog.role(victim.role_id)
        report = DeathReport(
            player_id=victim.id,
            name=victim.name,
            cause=candidate.cause,
            role=role.id,
            team=role.team,
            revealed=context.reveal_at_seq is None,
        )
        deaths.append(report)
        if candidate.player_id not in direct_ids:
            extra.append(report)
        events.append(_death_event(victim, role.id, role.team.value, candidate, context))

        partner_id = victim.bonded_partner_id
        if partner_id:
            partner = working.get(partner_id)
            if partner is not None and partner.is_alive:
                queue.append(
                    DeathCandidate(player_id=partner.id, cause=DeathCause.GRIEF, actor_id=victim.id)
                )

        for other in working.values():
            if other.model_player_id != victim.id or not other.is_alive or other.transformed:
                continue
            key = (TriggerKind.MODEL_TRANSFORM, other.id)
            if key in known_triggers:
                continue
            known_triggers.add(key)
            triggers.append(
                PendingTrigger(
                    kind=TriggerKind.MODEL_TRANSFORM,
                    player_id=other.id,
                    source_player_id=victim.id,
                    phase_seq=context.phase_seq,
                )
            )

        revenge = context.catalog.holds_effect(victim, EffectKind.REVENGE_SHOT)
        if revenge is not None and not revenge.is_exhausted(context.uses_of(victim.id, revenge.id)):
            key = (TriggerKind.AWAITING_REVENGE, victim.id)
            if key not in known_triggers:
                known_triggers.add(key)
                triggers.append(
                    PendingTrigger(
                        kind=TriggerKind.AWAITING_REVENGE,
                        player_id=victim.id,
                        source_player_id=candidate.actor_id,
                        phase_seq=context.phase_seq,
                        expires_at=context.trigger_expires_at,
                    )
                )
                events.append(
                    EventRecord(
                        game_id=context.game_id,
                        event_type=EventType.REVENGE_AWAITED,
                        phase=context.phase,
                        phase_seq=context.phase_seq,
                        actor_id=victim.id,
                        data={"power": revenge.id},
                    )
                )

    verify_player_invariants(working)

    return CascadeResult(
        players=working,
        deaths=deaths,
        extra_deaths=extra,
        pending_triggers=triggers,
        events=events,
    )


def _death_event(
    victim: Player,
    role_id: str,
    team: str,
    candidate: DeathCandidate,
    context: CascadeContext,
) -> EventRecord:
    event_type = EventType.PLAYER_ELIMINATED if candidate.cause == DeathCause.VOTE else EventType.PLAYER_KILLED
    return EventRecord(
        game_id=context.game_id,
        event_type=event_type,
        phase=context.phase,
        phase_seq=context.phase_seq,
        actor_id=candidate.actor_id,
        target_id=victim.id,
        data={
            "name": victim.name,
            "cause": candidate.cause.value,
            "role": role_id,
            "team": team,
        },
        mystery=candidate.cause.is_mystery,
        reveal_at_seq=context.reveal_at_seq,
    )


def verify_player_invariants(players: dict[str, Player]) -> None:
    """Raise EngineIntegrityError if the player set is not self-consistent."""
    for player in players.values():
        if player.is_alive and player.death_cause is not None:
            raise EngineIntegrityError(f"Alive player {player.id} has a death cause")
        if not player.is_alive and player.death_cause is None:
            raise EngineIntegrityError(f"Dead player {player.id} has no death cause")

        if player.bonded_partner_id is None:
            continue
        partner = players.get(player.bonded_partner_id)
        if partner is None:
            raise EngineIntegrityError(f"Player {player.id} is bonded to an unknown player")
        if partner.bonded_partner_id != player.id:
            raise EngineIntegrityError(f"Bond between {player.id} and {partner.id} is not mutual")
        if player.is_alive and not partner.is_alive:
            raise EngineIntegrityError(
                f"Alive player {player.id} has a dead bonded partner {partner.id}"
            )


def public_report(report: DeathReport, revealed: bool) -> DeathReport:
    """Strip hidden information from a death report before broadcasting it."""
    update: dict = {"revealed": revealed}
    if report.cause is not None and report.cause.is_mystery:
        update["cause"] = None
    if not revealed:
        update["role"] = None
        update["team"] = None
    return report.model_copy(update=update)
