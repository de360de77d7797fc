"""Council vote resolution."""

from datetime import datetime, timedelta
from typing import Optional

from .cascade import CascadeContext, DeathCandidate, apply_cascade, public_report
from .effects import COUNCIL_EFFECT_ORDER, ResolutionContext, apply_effects
from .errors import InvalidTransitionError
from .roles import DeathCause, EffectKind, GamePhase
from .state import (
    CouncilOutcome,
    EventType,
    PhaseSnapshot,
    Player,
    ResolutionDraft,
    VoteDetail,
    VoteRecord,
)
from .victory import VictoryContext, evaluate_victory


def tally_votes(
    votes: list[VoteRecord],
    players: dict[str, Player],
    ctx: ResolutionContext,
) -> tuple[dict[str, int], list[VoteDetail]]:
    """Count the votes of alive voters for alive targets.

    Abstentions (no target) are not counted. A requested double vote or
    anonymous vote only applies when the voter holds an unused matching power;
    the power is consumed only when the vote is counted.
    """
    counts: dict[str, int] = {}
    details: list[VoteDetail] = []

    for vote in sorted(votes, key=lambda v: (v.submitted_at, v.voter_id)):
        voter = players.get(vote.voter_id)
        if voter is None or not voter.is_alive:
            continue
        target = players.get(vote.target_id) if vote.target_id else None
        if target is None or not target.is_alive:
            continue

        weight = 1
        if vote.weight > 1:
            power = ctx.catalog.holds_effect(voter, EffectKind.DOUBLE_VOTE)
            if power is not None and ctx.usable_power(players, voter.id, power.id):
                weight = 2
                ctx.record_use(voter, power, [target.id])

        anonymous = False
        if vote.anonymous:
            power = ctx.catalog.holds_effect(voter, EffectKind.ANONYMOUS_VOTE)
            if power is not None and ctx.usable_power(players, voter.id, power.id):
                anonymous = True
                ctx.record_use(voter, power, [target.id])

        counts[target.id] = counts.get(target.id, 0) + weight
        details.append(
            VoteDetail(
                voter_id=voter.id,
                target_id=target.id,
                weight=weight,
                anonymous=anonymous,
            )
        )

    return counts, details


def resolve_council(
    snapshot: PhaseSnapshot, now: Optional[datetime] = None
) -> tuple[ResolutionDraft, CouncilOutcome]:
    """Resolve the council vote of the snapshot's phase.

    A tie (or no counted vote) eliminates nobody. A single plurality target
    holding an armed immunity survives and the immunity is consumed.
    Otherwise the target is eliminated with role and team revealed, the death
    cascade runs and victory is evaluated unless a revenge shot is pending.

    Raises:
        InvalidTransitionError: if the game is not in a council
        EngineIntegrityError: if the cascade breaks an invariant
    """
    game = snapshot.game
    if game.phase != GamePhase.COUNCIL:
        raise InvalidTransitionError(f"Game {game.id} is not in a council phase")
    now = now or datetime.now()

    ctx = ResolutionContext(snapshot=snapshot)
    players = snapshot.player_map()
    counts, details = tally_votes(snapshot.votes, players, ctx)

    events = []
    tie = False
    no_votes = not counts
    target_id = None
    if counts:
        top = max(counts.values())
        leaders = sorted(pid for pid, count in counts.items() if count == top)
        if len(leaders) > 1:
            tie = True
        else:
            target_id = leaders[0]

    if target_id is not None:
        ctx.council_target_id = target_id
        players, produced = apply_effects(COUNCIL_EFFECT_ORDER, players, ctx)
        events.extend(produced)

    eliminated_id = target_id if target_id is not None and not ctx.immunity_used else None

    events.append(
        ctx.event(
            EventType.VOTE_RESULT,
            target_id=eliminated_id,
            data={
                "counts": counts,
                "votes": [
                    {"voter_id": None if d.anonymous else d.voter_id, "target_id": d.target_id, "weight": d.weight}
                    for d in details
                ],
                "tie": tie,
                "no_votes": no_votes,
                "immunity_used": ctx.immunity_used,
            },
        )
    )

    candidates = []
    if eliminated_id is not None:
        candidates.append(DeathCandidate(player_id=eliminated_id, cause=DeathCause.VOTE))

    cascade = apply_cascade(
        players,
        candidates,
        CascadeContext(
            game_id=game.id,
            phase=game.phase,
            phase_seq=game.phase_seq,
            catalog=snapshot.catalog,
            power_uses=snapshot.power_uses,
            reveal_at_seq=None,
            trigger_expires_at=now + timedelta(seconds=game.settings.revenge_timeout_seconds),
            pending_triggers=game.pending_triggers,
        ),
    )
    events.extend(cascade.events)

    blocking = game.blocking_triggers() + [t for t in cascade.pending_triggers if t.kind.blocks_victory]
    winner = None
    next_phase = None
    if not blocking:
        winner = evaluate_victory(
            cascade.players.values(),
            snapshot.catalog,
            VictoryContext(eliminated_player_id=eliminated_id, council_number=game.day_count + 1),
        )
        next_phase = GamePhase.FINISHED if winner else GamePhase.NIGHT

    eliminated = None
    for report in cascade.deaths:
        if report.player_id == eliminated_id:
            eliminated = report
            break

    draft = ResolutionDraft(
        players=list(cascade.players.values()),
        applications=ctx.applications,
        events=events,
        new_triggers=cascade.pending_triggers,
        deaths=cascade.deaths,
    )
    outcome = CouncilOutcome(
        game_id=game.id,
        phase_seq=game.phase_seq,
        vote_counts=counts,
        vote_details=[
            d.model_copy(update={"voter_id": None}) if d.anonymous else d for d in details
        ],
        eliminated=eliminated,
        deaths=[public_report(d, True) for d in cascade.deaths],
        tie=tie,
        immunity_used=ctx.immunity_used,
        no_votes=no_votes,
        pending_triggers=[t for t in cascade.pending_triggers if t.kind.blocks_victory],
        winner=winner,
        next_phase=next_phase,
    )
    return draft, outcome
