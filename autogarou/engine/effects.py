"""Effect registry.

Each power carries a tagged ``EffectKind``; the resolvers compose the
registered effects in a fixed order. Effects re-validate their actions at
resolution time (actor alive, power held and not exhausted, targets alive),
so an action made stale by an earlier effect in the same batch is silently
dropped rather than applied.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .cascade import DeathCandidate
from .roles import (
    DeathCause,
    EffectKind,
    EventVisibility,
    GamePhase,
    Team,
    TriggerKind,
)
from .state import (
    ActionRecord,
    EventRecord,
    EventType,
    PendingTrigger,
    PhaseSnapshot,
    Player,
    PowerApplication,
    PowerDefinition,
    RoleCatalog,
    RuleVariants,
    Transformation,
)


@dataclass
class ResolutionContext:
    """Mutable scratchpad shared by the effects of one resolution pass."""

    snapshot: PhaseSnapshot
    applications: list[PowerApplication] = field(default_factory=list)
    transformations: list[Transformation] = field(default_factory=list)
    candidates: list[DeathCandidate] = field(default_factory=list)
    protected_ids: set[str] = field(default_factory=set)
    wolf_target_id: Optional[str] = None
    wolf_voter_ids: list[str] = field(default_factory=list)
    attack_tied: bool = False
    attack_prevented_by: Optional[EffectKind] = None
    life_saved: bool = False
    council_target_id: Optional[str] = None
    immunity_used: bool = False
    discarded: set[EffectKind] = field(default_factory=set)

    @property
    def catalog(self) -> RoleCatalog:
        return self.snapshot.catalog

    @property
    def rules(self) -> RuleVariants:
        return self.snapshot.game.settings.rule_variants

    @property
    def phase_seq(self) -> int:
        return self.snapshot.game.phase_seq

    @property
    def night_number(self) -> int:
        return self.snapshot.game.night_number

    def actions_for(self, effect: EffectKind) -> list[ActionRecord]:
        if effect in self.discarded:
            return []
        actions = self.snapshot.actions_with_effect(effect)
        return sorted(actions, key=lambda a: (a.submitted_at, a.player_id))

    def uses_so_far(self, player_id: str, power_id: str) -> int:
        applied = sum(
            1 for a in self.applications if a.player_id == player_id and a.power_id == power_id
        )
        return self.snapshot.uses_of(player_id, power_id) + applied

    def usable_power(
        self,
        players: dict[str, Player],
        player_id: str,
        power_id: str,
        require_alive: bool = True,
    ) -> Optional[tuple[Player, PowerDefinition]]:
        actor = players.get(player_id)
        if actor is None or (require_alive and not actor.is_alive):
            return None
        power = self.catalog.power(power_id)
        if power is None or not self.catalog.holds_power(actor, power_id):
            return None
        if power.is_exhausted(self.uses_so_far(actor.id, power.id)):
            return None
        if power.first_night_only and self.night_number != 1:
            return None
        return actor, power

    def record_use(self, actor: Player, power: PowerDefinition, target_ids: list[str]) -> None:
        self.applications.append(
            PowerApplication(
                player_id=actor.id,
                power_id=power.id,
                target_ids=list(target_ids),
                phase_seq=self.phase_seq,
                night_number=self.night_number if self.snapshot.game.phase == GamePhase.NIGHT else None,
            )
        )

    def event(
        self,
        event_type: EventType,
        actor_id: Optional[str] = None,
        target_id: Optional[str] = None,
        data: Optional[dict[str, Any]] = None,
        visibility: EventVisibility = EventVisibility.PUBLIC,
        visible_to: Optional[list[str]] = None,
    ) -> EventRecord:
        return EventRecord(
            game_id=self.snapshot.game.id,
            event_type=event_type,
            phase=self.snapshot.game.phase,
            phase_seq=self.phase_seq,
            actor_id=actor_id,
            target_id=target_id,
            data=data or {},
            visibility=visibility,
            visible_to=visible_to or [],
        )


def _alive(players: dict[str, Player], player_id: Optional[str]) -> Optional[Player]:
    if player_id is None:
        return None
    player = players.get(player_id)
    if player is None or not player.is_alive:
        return None
    return player


def _copy(players: dict[str, Player]) -> dict[str, Player]:
    return {pid: p.model_copy(deep=True) for pid, p in players.items()}


class Effect:
    """Base class for registered effects."""

    kind: EffectKind

    def apply(
        self, players: dict[str, Player], ctx: ResolutionContext
    ) -> tuple[dict[str, Player], list[EventRecord]]:
        raise NotImplementedError


class BondEffect(Effect):
    kind = EffectKind.BOND

    def apply(self, players, ctx):
        players = _copy(players)
        events = []
        for action in ctx.actions_for(self.kind):
            usable = ctx.usable_power(players, action.player_id, action.power_id)
            if usable is None or len(set(action.target_ids)) != 2:
                continue
            actor, power = usable
            first, second = (_alive(players, pid) for pid in action.target_ids)
            if first is None or second is None:
                continue
            if first.bonded_partner_id or second.bonded_partner_id:
                continue
            if not power.allow_self and actor.id in (first.id, second.id):
                continue
            first.bonded_partner_id = second.id
            second.bonded_partner_id = first.id
            ctx.record_use(actor, power, [first.id, second.id])
            events.append(
                ctx.event(
                    EventType.LOVERS_BONDED,
                    actor_id=actor.id,
                    data={"player_ids": [first.id, second.id]},
                    visibility=EventVisibility.PRIVATE,
                    visible_to=sorted({actor.id, first.id, second.id}),
                )
            )
        return players, events


class ModelTransformEffect(Effect):
    """Designates the model; the transformation itself is deferred."""

    kind = EffectKind.MODEL_TRANSFORM

    def apply(self, players, ctx):
        players = _copy(players)
        events = []
        for action in ctx.actions_for(self.kind):
            usable = ctx.usable_power(players, action.player_id, action.power_id)
            if usable is None:
                continue
            actor, power = usable
            model = _alive(players, action.target_id)
            if model is None or model.id == actor.id or actor.model_player_id:
                continue
            actor.model_player_id = model.id
            ctx.record_use(actor, power, [model.id])
            events.append(
                ctx.event(
                    EventType.MODEL_CHOSEN,
                    actor_id=actor.id,
                    target_id=model.id,
                    visibility=EventVisibility.PRIVATE,
                    visible_to=[actor.id],
                )
            )
        return players, events


class RoleSwapEffect(Effect):
    kind = EffectKind.ROLE_SWAP

    def apply(self, players, ctx):
        players = _copy(players)
        events = []
        for action in ctx.actions_for(self.kind):
            usable = ctx.usable_power(players, action.player_id, action.power_id)
            if usable is None or len(set(action.target_ids)) != 2:
                continue
            actor, power = usable
            first, second = (_alive(players, pid) for pid in action.target_ids)
            if first is None or second is None or actor.id in (first.id, second.id):
                continue
            if Team.WOLVES in (ctx.catalog.team_of(first), ctx.catalog.team_of(second)):
                continue
            first_role, second_role = first.role_id, second.role_id
            first.role_id, second.role_id = second_role, first_role
            ctx.transformations.append(
                Transformation(player_id=first.id, from_role=first_role, to_role=second_role, kind=self.kind)
            )
            ctx.transformations.append(
                Transformation(player_id=second.id, from_role=second_role, to_role=first_role, kind=self.kind)
            )
            ctx.record_use(actor, power, [first.id, second.id])
            events.append(
                ctx.event(
                    EventType.ROLES_SWAPPED,
                    actor_id=actor.id,
                    data={"player_ids": [first.id, second.id]},
                    visibility=EventVisibility.PRIVATE,
                    visible_to=sorted({actor.id, first.id, second.id}),
                )
            )
        return players, events


class InspectEffect(Effect):
    kind = EffectKind.INSPECT

    def apply(self, players, ctx):
        events = []
        for action in ctx.actions_for(self.kind):
            usable = ctx.usable_power(players, action.player_id, action.power_id)
            if usable is None:
                continue
            actor, power = usable
            target = _alive(players, action.target_id)
            if target is None or target.id == actor.id:
                continue
            role = ctx.catalog.role(target.role_id)
            ctx.record_use(actor, power, [target.id])
            events.append(
                ctx.event(
                    EventType.ROLE_INSPECTED,
                    actor_id=actor.id,
                    target_id=target.id,
                    data={"role": role.id, "team": role.team.value},
                    visibility=EventVisibility.PRIVATE,
                    visible_to=[actor.id],
                )
            )
        return players, events


class WolfAttackEffect(Effect):
    """Plurality of the pack's votes. A tie means no attack."""

    kind = EffectKind.WOLF_ATTACK

    def apply(self, players, ctx):
        tally: dict[str, int] = {}
        voters: list[str] = []
        for action in ctx.actions_for(self.kind):
            usable = ctx.usable_power(players, action.player_id, action.power_id)
            if usable is None:
                continue
            target = _alive(players, action.target_id)
            if target is None or ctx.catalog.team_of(target) == Team.WOLVES:
                continue
            tally[target.id] = tally.get(target.id, 0) + 1
            voters.append(action.player_id)
            actor, power = usable
            ctx.record_use(actor, power, [target.id])

        if not tally:
            return players, []

        ctx.wolf_voter_ids = voters
        top = max(tally.values())
        leaders = sorted(pid for pid, count in tally.items() if count == top)
        if len(leaders) > 1:
            ctx.attack_tied = True
            return players, [
                ctx.event(
                    EventType.WOLF_ATTACK_TIED,
                    data={"votes": tally, "tied": leaders},
                    visibility=EventVisibility.PRIVATE,
                    visible_to=sorted(set(voters)),
                )
            ]

        ctx.wolf_target_id = leaders[0]
        return players, [
            ctx.event(
                EventType.WOLF_ATTACK,
                target_id=ctx.wolf_target_id,
                data={"votes": tally},
                visibility=EventVisibility.PRIVATE,
                visible_to=sorted(set(voters)),
            )
        ]


class ProtectEffect(Effect):
    kind = EffectKind.PROTECT

    def apply(self, players, ctx):
        events = []
        for action in ctx.actions_for(self.kind):
            usable = ctx.usable_power(players, action.player_id, action.power_id)
            if usable is None:
                continue
            actor, power = usable
            target = _alive(players, action.target_id)
            if target is None:
                continue
            if target.id == actor.id and not (power.allow_self and ctx.rules.protector_can_self_protect):
                continue
            if power.no_repeat_target:
                last = ctx.snapshot.power_use(actor.id, power.id)
                if (
                    last is not None
                    and last.last_night == ctx.night_number - 1
                    and target.id in last.last_target_ids
                ):
                    continue
            ctx.protected_ids.add(target.id)
            ctx.record_use(actor, power, [target.id])
            if target.id == ctx.wolf_target_id and ctx.attack_prevented_by is None:
                ctx.attack_prevented_by = self.kind
            events.append(
                ctx.event(
                    EventType.PLAYER_PROTECTED,
                    actor_id=actor.id,
                    target_id=target.id,
                    visibility=EventVisibility.PRIVATE,
                    visible_to=[actor.id],
                )
            )
        return players, events


class DeathDealEffect(Effect):
    kind = EffectKind.DEATH_DEAL

    def apply(self, players, ctx):
        events = []
        savers = {a.player_id for a in ctx.actions_for(EffectKind.LIFE_SAVE)}
        for action in ctx.actions_for(self.kind):
            if not ctx.rules.witch_can_use_both_potions and action.player_id in savers:
                continue
            usable = ctx.usable_power(players, action.player_id, action.power_id)
            if usable is None:
                continue
            actor, power = usable
            target = _alive(players, action.target_id)
            if target is None or (target.id == actor.id and not power.allow_self):
                continue
            ctx.candidates.append(
                DeathCandidate(player_id=target.id, cause=DeathCause.POISONED, actor_id=actor.id)
            )
            ctx.record_use(actor, power, [target.id])
            events.append(
                ctx.event(
                    EventType.DEATH_POTION,
                    actor_id=actor.id,
                    target_id=target.id,
                    visibility=EventVisibility.SECRET,
                    visible_to=[actor.id],
                )
            )
        return players, events


class LifeSaveEffect(Effect):
    """Saves the wolves' victim. Only consumed when there is a victim to save.

    A victim already protected needs no potion, unless ``protect_and_save_kills``
    is on: then the potion is spent and the double save kills the victim.
    """

    kind = EffectKind.LIFE_SAVE

    def apply(self, players, ctx):
        events = []
        victim_id = ctx.wolf_target_id
        if victim_id is None:
            return players, events
        if victim_id in ctx.protected_ids and not ctx.rules.protect_and_save_kills:
            return players, events
        for action in ctx.actions_for(self.kind):
            if action.target_id not in (None, victim_id):
                continue
            usable = ctx.usable_power(players, action.player_id, action.power_id)
            if usable is None:
                continue
            actor, power = usable
            if victim_id == actor.id and not power.allow_self:
                continue
            ctx.life_saved = True
            if ctx.attack_prevented_by is None:
                ctx.attack_prevented_by = self.kind
            ctx.record_use(actor, power, [victim_id])
            events.append(
                ctx.event(
                    EventType.LIFE_POTION,
                    actor_id=actor.id,
                    target_id=victim_id,
                    visibility=EventVisibility.SECRET,
                    visible_to=[actor.id],
                )
            )
            break
        return players, events


class ImmunityEffect(Effect):
    """Nullifies a council elimination once. Armed by an action in the council phase."""

    kind = EffectKind.IMMUNITY

    def apply(self, players, ctx):
        target_id = ctx.council_target_id
        if target_id is None:
            return players, []
        for action in ctx.actions_for(self.kind):
            if action.player_id != target_id:
                continue
            usable = ctx.usable_power(players, action.player_id, action.power_id)
            if usable is None:
                continue
            actor, power = usable
            ctx.immunity_used = True
            ctx.record_use(actor, power, [])
            return players, [
                ctx.event(
                    EventType.IMMUNITY_USED,
                    actor_id=actor.id,
                    target_id=actor.id,
                    data={"name": actor.name},
                )
            ]
        return players, []


class SilentKillEffect(Effect):
    """Applied on submission. The death is public, its cause and author are not."""

    kind = EffectKind.SILENT_KILL

    def apply(self, players, ctx):
        events = []
        for action in ctx.actions_for(self.kind):
            usable = ctx.usable_power(players, action.player_id, action.power_id)
            if usable is None:
                continue
            actor, power = usable
            target = _alive(players, action.target_id)
            if target is None or target.id == actor.id:
                continue
            ctx.candidates.append(
                DeathCandidate(player_id=target.id, cause=DeathCause.ASSASSINATED, actor_id=actor.id)
            )
            ctx.record_use(actor, power, [target.id])
            events.append(
                ctx.event(
                    EventType.POWER_USED,
                    actor_id=actor.id,
                    target_id=target.id,
                    data={"power": power.id, "secret": True},
                    visibility=EventVisibility.SECRET,
                    visible_to=[actor.id],
                )
            )
        return players, events


class RevengeShotEffect(Effect):
    """The dying holder of a revenge power takes someone with them."""

    kind = EffectKind.REVENGE_SHOT

    def apply(self, players, ctx):
        events = []
        for action in ctx.actions_for(self.kind):
            usable = ctx.usable_power(players, action.player_id, action.power_id, require_alive=False)
            if usable is None:
                continue
            actor, power = usable
            target = _alive(players, action.target_id)
            if actor.is_alive or target is None or target.id == actor.id:
                continue
            ctx.candidates.append(
                DeathCandidate(player_id=target.id, cause=DeathCause.HUNTER_SHOT, actor_id=actor.id)
            )
            ctx.record_use(actor, power, [target.id])
            events.append(
                ctx.event(
                    EventType.HUNTER_SHOT,
                    actor_id=actor.id,
                    target_id=target.id,
                    data={"hunter": actor.name, "target": target.name},
                )
            )
        return players, events


EFFECT_REGISTRY: dict[EffectKind, Effect] = {}

NIGHT_EFFECT_ORDER: list[EffectKind] = [
    EffectKind.BOND,
    EffectKind.MODEL_TRANSFORM,
    EffectKind.ROLE_SWAP,
    EffectKind.INSPECT,
    EffectKind.WOLF_ATTACK,
    EffectKind.PROTECT,
    EffectKind.DEATH_DEAL,
    EffectKind.LIFE_SAVE,
]

COUNCIL_EFFECT_ORDER: list[EffectKind] = [EffectKind.IMMUNITY]


def register_effect(effect: Effect) -> Effect:
    """Register (or replace) the effect handling ``effect.kind``."""
    EFFECT_REGISTRY[effect.kind] = effect
    return effect


def get_effect(kind: EffectKind) -> Effect:
    return EFFECT_REGISTRY[kind]


def apply_effects(
    order: list[EffectKind], players: dict[str, Player], ctx: ResolutionContext
) -> tuple[dict[str, Player], list[EventRecord]]:
    """Compose the registered effects in ``order``."""
    events: list[EventRecord] = []
    for kind in order:
        effect = EFFECT_REGISTRY.get(kind)
        if effect is None:
            continue
        players, produced = effect.apply(players, ctx)
        events.extend(produced)
    return players, events


def apply_model_transforms(
    players: dict[str, Player],
    triggers: list[PendingTrigger],
    catalog: RoleCatalog,
    game_id: str,
    phase_seq: int,
    now: Optional[datetime] = None,
) -> tuple[dict[str, Player], list[Transformation], list[EventRecord], list[str]]:
    """Apply deferred model transformations at the start of a night.

    Returns:
        (players, transformations, events, consumed trigger ids)
    """
    players = _copy(players)
    transformations: list[Transformation] = []
    events: list[EventRecord] = []
    consumed: list[str] = []
    now = now or datetime.now()

    for trigger in triggers:
        if trigger.kind != TriggerKind.MODEL_TRANSFORM:
            continue
        consumed.append(trigger.id)
        child = players.get(trigger.player_id)
        if child is None or not child.is_alive or child.transformed:
            continue
        power = catalog.holds_effect(child, EffectKind.MODEL_TRANSFORM)
        target_role = (power.params.get("transform_to") if power else None) or "loup_garou"
        from_role = child.role_id
        child.role_id = target_role
        child.transformed = True
        transformations.append(
            Transformation(
                player_id=child.id,
                from_role=from_role,
                to_role=target_role,
                kind=EffectKind.MODEL_TRANSFORM,
            )
        )
        pack = [
            p.id
            for p in players.values()
            if p.is_alive and catalog.team_of(p) == catalog.role(target_role).team
        ]
        events.append(
            EventRecord(
                game_id=game_id,
                event_type=EventType.PLAYER_TRANSFORMED,
                phase=GamePhase.NIGHT,
                phase_seq=phase_seq,
                target_id=child.id,
                data={"from_role": from_role, "to_role": target_role},
                visibility=EventVisibility.PRIVATE,
                visible_to=sorted(set(pack) | {child.id}),
                created_at=now,
            )
        )
    return players, transformations, events, consumed


for _effect in (
    BondEffect(),
    ModelTransformEffect(),
    RoleSwapEffect(),
    InspectEffect(),
    WolfAttackEffect(),
    ProtectEffect(),
    DeathDealEffect(),
    LifeSaveEffect(),
    ImmunityEffect(),
    SilentKillEffect(),
    RevengeShotEffect(),
):
    register_effect(_effect)
