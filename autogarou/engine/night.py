"""Batch resolution of a night."""

from datetime import datetime, timedelta
from typing import Optional

from .cascade import (
    NEVER_REVEALED,
    CascadeContext,
    DeathCandidate,
    apply_cascade,
    public_report,
)
from .effects import NIGHT_EFFECT_ORDER, ResolutionContext, apply_effects
from .errors import InvalidTransitionError
from .roles import DeathCause, EffectKind, EventVisibility, GamePhase
from .state import (
    EventType,
    NightOutcome,
    PhaseSnapshot,
    ResolutionDraft,
)
from .victory import evaluate_victory

# Actions an operator night bypass throws away.
SKIPPED_BY_OPERATOR = (EffectKind.WOLF_ATTACK, EffectKind.LIFE_SAVE)


def night_reveal_seq(snapshot: PhaseSnapshot) -> int:
    """Phase sequence from which a night victim's role is public."""
    if snapshot.game.settings.rule_variants.reveal_night_roles_at_day:
        return snapshot.game.phase_seq + 1
    return NEVER_REVEALED


def collect_night_deaths(ctx: ResolutionContext) -> list[DeathCandidate]:
    """Turn the effects' bookkeeping into direct death candidates.

    The wolves' victim comes first, then poisoned players; a player in both
    keeps the first cause.
    """
    candidates: list[DeathCandidate] = []
    victim_id = ctx.wolf_target_id
    if victim_id is not None:
        protected = victim_id in ctx.protected_ids
        if protected and ctx.life_saved and ctx.rules.protect_and_save_kills:
            dies = True
        else:
            dies = not (protected or ctx.life_saved)
        if dies:
            ctx.attack_prevented_by = None
            candidates.append(DeathCandidate(player_id=victim_id, cause=DeathCause.DEVOURED))

    seen = {c.player_id for c in candidates}
    for candidate in ctx.candidates:
        if candidate.player_id in seen:
            continue
        seen.add(candidate.player_id)
        candidates.append(candidate)
    return candidates


def resolve_night(
    snapshot: PhaseSnapshot,
    now: Optional[datetime] = None,
    skip_attack: bool = False,
) -> tuple[ResolutionDraft, NightOutcome]:
    """Resolve every pending night action of the snapshot's phase.

    Effects apply in registry order (bond, model, swap, inspect, wolf attack,
    protect, death potion, life potion), then the death cascade runs and the
    victory check follows unless a revenge shot is pending.

    Args:
        snapshot: Consistent read of the game at the night's phase_seq
        now: Clock reading for trigger deadlines
        skip_attack: Discard the wolf attack and the life potion that
                     answers it; every other action still applies

    Returns:
        Tuple of (draft to commit, outcome to broadcast)

    Raises:
        InvalidTransitionError: if the game is not in a night
        EngineIntegrityError: if the cascade breaks an invariant
    """
    game = snapshot.game
    if game.phase != GamePhase.NIGHT:
        raise InvalidTransitionError(f"Game {game.id} is not in a night phase")
    now = now or datetime.now()

    ctx = ResolutionContext(snapshot=snapshot)
    events = []
    if skip_attack:
        ctx.discarded = set(SKIPPED_BY_OPERATOR)
        discarded = sum(len(snapshot.actions_with_effect(kind)) for kind in ctx.discarded)
        events.append(ctx.event(EventType.NIGHT_SKIPPED, data={"discarded_actions": discarded}))
    players, produced = apply_effects(NIGHT_EFFECT_ORDER, snapshot.player_map(), ctx)
    events.extend(produced)
    candidates = collect_night_deaths(ctx)

    if ctx.attack_prevented_by is not None and ctx.wolf_target_id is not None:
        events.append(
            ctx.event(
                EventType.ATTACK_PREVENTED,
                target_id=ctx.wolf_target_id,
                data={"by": ctx.attack_prevented_by.value},
                visibility=EventVisibility.SECRET,
            )
        )

    reveal_seq = night_reveal_seq(snapshot)
    cascade = apply_cascade(
        players,
        candidates,
        CascadeContext(
            game_id=game.id,
            phase=game.phase,
            phase_seq=game.phase_seq,
            catalog=snapshot.catalog,
            power_uses=snapshot.power_uses,
            reveal_at_seq=reveal_seq,
            trigger_expires_at=now + timedelta(seconds=game.settings.revenge_timeout_seconds),
            pending_triggers=game.pending_triggers,
        ),
    )
    events.extend(cascade.events)
    if not cascade.deaths:
        events.append(ctx.event(EventType.NO_DEATH))

    blocking = game.blocking_triggers() + [t for t in cascade.pending_triggers if t.kind.blocks_victory]
    winner = None
    next_phase = None
    if not blocking:
        winner = evaluate_victory(cascade.players.values(), snapshot.catalog)
        next_phase = GamePhase.FINISHED if winner else GamePhase.DAY

    revealed = next_phase is not None and reveal_seq != NEVER_REVEALED
    draft = ResolutionDraft(
        players=list(cascade.players.values()),
        applications=ctx.applications,
        events=events,
        new_triggers=cascade.pending_triggers,
        deaths=cascade.deaths,
        transformations=ctx.transformations,
    )
    outcome = NightOutcome(
        game_id=game.id,
        phase_seq=game.phase_seq,
        deaths=[public_report(d, revealed) for d in cascade.deaths],
        transformations=ctx.transformations,
        wolf_target_id=ctx.wolf_target_id,
        attack_tied=ctx.attack_tied,
        attack_prevented_by=ctx.attack_prevented_by,
        no_action=not snapshot.actions,
        skipped=skip_attack,
        pending_triggers=[t for t in cascade.pending_triggers if t.kind.blocks_victory],
        winner=winner,
        next_phase=next_phase,
    )
    return draft, outcome
