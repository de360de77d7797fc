from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import EngineIntegrityError
from .roles import (
    DeathCause,
    EffectKind,
    EventVisibility,
    GamePhase,
    PowerTiming,
    RejectionReason,
    ResolutionState,
    SoloWinCondition,
    Team,
    TriggerKind,
)


def _short_id() -> str:
    return str(uuid4())[:8]


# =============================================================================
# Roles and powers
# =============================================================================


class PowerDefinition(BaseModel):
    """A power a role (or a grant) gives to its holder.

    Attributes:
        id: Unique power identifier (e.g. "potion_vie")
        role_id: Owning role, None for granted powers
        effect: Tagged effect variant applied by the resolvers
        max_uses: Usage cap per game (0 = unlimited)
        timing: Window during which the power may be submitted
        target_count: Number of targets the power expects (0 = optional single target)
        allow_self: Whether the holder may target themselves
        first_night_only: Only usable during the first night
        no_repeat_target: Cannot target the same player on consecutive nights
        params: Effect-specific parameters
    """

    id: str
    name: str
    role_id: Optional[str] = None
    effect: EffectKind
    max_uses: int = Field(default=0, ge=0)
    timing: PowerTiming = PowerTiming.NIGHT
    target_count: int = Field(default=1, ge=0, le=2)
    allow_self: bool = False
    first_night_only: bool = False
    no_repeat_target: bool = False
    params: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    def is_exhausted(self, uses: int) -> bool:
        return self.max_uses > 0 and uses >= self.max_uses


class Role(BaseModel):
    id: str
    name: str
    team: Team
    powers: list[PowerDefinition] = Field(default_factory=list)
    solo_win_condition: Optional[SoloWinCondition] = None

    model_config = ConfigDict(frozen=True)

    def power_with_effect(self, effect: EffectKind) -> Optional[PowerDefinition]:
        for power in self.powers:
            if power.effect == effect:
                return power
        return None


class RoleCatalog(BaseModel):
    """Roles and granted powers available in one game."""

    roles: dict[str, Role] = Field(default_factory=dict)
    granted_powers: dict[str, PowerDefinition] = Field(default_factory=dict)

    def role(self, role_id: str) -> Role:
        try:
            return self.roles[role_id]
        except KeyError:
            raise EngineIntegrityError(f"Unknown role '{role_id}'") from None

    def team_of(self, player: "Player") -> Team:
        return self.role(player.role_id).team

    def power(self, power_id: str) -> Optional[PowerDefinition]:
        if power_id in self.granted_powers:
            return self.granted_powers[power_id]
        for role in self.roles.values():
            for power in role.powers:
                if power.id == power_id:
                    return power
        return None

    def powers_for(self, player: "Player") -> list[PowerDefinition]:
        powers = list(self.role(player.role_id).powers)
        for power_id in player.granted_powers:
            granted = self.granted_powers.get(power_id)
            if granted is not None:
                powers.append(granted)
        return powers

    def holds_power(self, player: "Player", power_id: str) -> bool:
        return any(p.id == power_id for p in self.powers_for(player))

    def holds_effect(self, player: "Player", effect: EffectKind) -> Optional[PowerDefinition]:
        for power in self.powers_for(player):
            if power.effect == effect:
                return power
        return None

    def powers_with_effect(self, effect: EffectKind) -> list[PowerDefinition]:
        found = [p for r in self.roles.values() for p in r.powers if p.effect == effect]
        found += [p for p in self.granted_powers.values() if p.effect == effect]
        unique: dict[str, PowerDefinition] = {}
        for power in found:
            unique.setdefault(power.id, power)
        return list(unique.values())


# =============================================================================
# Players and games
# =============================================================================


class Player(BaseModel):
    """Represents a player in a game.

    Players are never removed; dead players stay for history and attribution.

    Attributes:
        id: Unique identifier for the player
        name: Display name
        role_id: Current role (changes on role swap or transformation)
        is_alive: Whether the player is still alive
        death_cause: Cause of death, set once
        bonded_partner_id: Partner set by the bonding power
        model_player_id: Model designated by the "copies a model" role
        transformed: Whether the role changed in place after the model died
        granted_powers: Power ids granted by external collaborators (shop)
        is_bot: Driven by the bot autopilot
    """

    id: str = Field(default_factory=_short_id)
    name: str
    role_id: str
    seat_number: int = Field(default=1, ge=1)
    is_alive: bool = True
    death_cause: Optional[DeathCause] = None
    death_phase_seq: Optional[int] = None
    bonded_partner_id: Optional[str] = None
    model_player_id: Optional[str] = None
    transformed: bool = False
    granted_powers: list[str] = Field(default_factory=list)
    is_bot: bool = False

    def kill(self, cause: DeathCause, phase_seq: int) -> None:
        if not self.is_alive or self.death_cause is not None:
            raise EngineIntegrityError(f"Player {self.id} is already dead")
        self.is_alive = False
        self.death_cause = cause
        self.death_phase_seq = phase_seq


class PhaseDurations(BaseModel):
    """Phase durations in seconds, used when auto mode schedules deadlines."""

    nuit: int = Field(default=120, gt=0)
    jour: int = Field(default=300, gt=0)
    conseil: int = Field(default=180, gt=0)

    def for_phase(self, phase: GamePhase) -> Optional[int]:
        return getattr(self, phase.value, None)


class RuleVariants(BaseModel):
    """Configurable rule variants.

    Different play groups resolve a few edge cases differently.
    """

    protect_and_save_kills: bool = Field(
        default=False,
        description="If the protector and the life potion cover the same victim, the victim still dies",
    )
    witch_can_use_both_potions: bool = Field(
        default=True,
        description="Whether both potions may be used in the same night",
    )
    protector_can_self_protect: bool = Field(
        default=True,
        description="Whether the protector may protect themselves",
    )
    reveal_night_roles_at_day: bool = Field(
        default=True,
        description="Reveal the role of night victims once the day starts",
    )


DEFAULT_ROLE_DISTRIBUTION: dict[str, int] = {
    "loup_garou": 2,
    "voyante": 1,
    "sorciere": 1,
    "chasseur": 1,
    "salvateur": 1,
    "cupidon": 1,
    "villageois": 1,
}

MIN_PLAYERS = 6
MAX_PLAYERS = 20


class GameSettings(BaseModel):
    """Settings for one game instance.

    Attributes:
        role_distribution: Role id -> number of players with that role
        auto_mode: Schedule phase deadlines for timer-initiated resolution
        phase_durations: Durations used in auto mode
        revenge_timeout_seconds: How long a revenge shot may be awaited
        bot_autopilot: Let bot players vote and shoot automatically
        rule_variants: Rule customizations
        random_seed: Optional seed for reproducible role assignment and bots
    """

    role_distribution: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_ROLE_DISTRIBUTION)
    )
    auto_mode: bool = False
    phase_durations: PhaseDurations = Field(default_factory=PhaseDurations)
    revenge_timeout_seconds: int = Field(default=90, gt=0)
    bot_autopilot: bool = True
    rule_variants: RuleVariants = Field(default_factory=RuleVariants)
    random_seed: Optional[int] = None

    @field_validator("role_distribution")
    @classmethod
    def validate_distribution(cls, v: dict[str, int]) -> dict[str, int]:
        if any(count < 0 for count in v.values()):
            raise ValueError("Role counts must be positive")
        total = sum(v.values())
        if not MIN_PLAYERS <= total <= MAX_PLAYERS:
            raise ValueError(
                f"Role distribution must cover {MIN_PLAYERS}-{MAX_PLAYERS} players, got {total}"
            )
        return v

    @property
    def player_count(self) -> int:
        return sum(self.role_distribution.values())


class PendingTrigger(BaseModel):
    """A deferred consequence of a death awaiting resolution."""

    id: str = Field(default_factory=_short_id)
    kind: TriggerKind
    player_id: str
    source_player_id: Optional[str] = None
    phase_seq: int
    created_at: datetime = Field(default_factory=datetime.now)
    expires_at: Optional[datetime] = None


class Winner(BaseModel):
    team: Team
    player_ids: list[str] = Field(default_factory=list)
    reason: str = ""


class Game(BaseModel):
    """Versioned game record.

    ``phase_seq`` strictly increases on every phase transition; resolutions
    compare-and-swap on it.
    """

    id: str = Field(default_factory=_short_id)
    phase: GamePhase = GamePhase.LOBBY
    phase_seq: int = Field(default=0, ge=0)
    resolution: ResolutionState = ResolutionState.OPEN
    day_count: int = Field(default=0, ge=0)
    phase_ends_at: Optional[datetime] = None
    settings: GameSettings = Field(default_factory=GameSettings)
    pending_triggers: list[PendingTrigger] = Field(default_factory=list)
    winner: Optional[Winner] = None
    council_eliminated_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def night_number(self) -> int:
        return self.day_count + 1

    @property
    def is_over(self) -> bool:
        return self.phase == GamePhase.FINISHED

    def blocking_triggers(self) -> list[PendingTrigger]:
        return [t for t in self.pending_triggers if t.kind.blocks_victory]

    def transform_triggers(self) -> list[PendingTrigger]:
        return [t for t in self.pending_triggers if t.kind == TriggerKind.MODEL_TRANSFORM]


# =============================================================================
# Ledger records
# =============================================================================


class ActionRecord(BaseModel):
    """Pending action, unique per (game, phase_seq, player, power)."""

    game_id: str
    phase_seq: int
    player_id: str
    power_id: str
    target_ids: list[str] = Field(default_factory=list)
    submitted_at: datetime = Field(default_factory=datetime.now)

    @property
    def key(self) -> tuple[str, int, str, str]:
        return (self.game_id, self.phase_seq, self.player_id, self.power_id)

    @property
    def target_id(self) -> Optional[str]:
        return self.target_ids[0] if self.target_ids else None


class VoteRecord(BaseModel):
    """Council vote, unique per (game, phase_seq, voter)."""

    game_id: str
    phase_seq: int
    voter_id: str
    target_id: Optional[str] = None
    weight: int = Field(default=1, ge=1, le=2)
    anonymous: bool = False
    submitted_at: datetime = Field(default_factory=datetime.now)

    @property
    def key(self) -> tuple[str, int, str]:
        return (self.game_id, self.phase_seq, self.voter_id)


class PowerUseRecord(BaseModel):
    """Usage counter per (game, player, power). Never decremented."""

    game_id: str
    player_id: str
    power_id: str
    count: int = Field(default=0, ge=0)
    last_target_ids: list[str] = Field(default_factory=list)
    last_phase_seq: Optional[int] = None
    last_night: Optional[int] = None


class PowerApplication(BaseModel):
    """One successful application of a power, merged into PowerUseRecord on commit."""

    player_id: str
    power_id: str
    target_ids: list[str] = Field(default_factory=list)
    phase_seq: int
    night_number: Optional[int] = None


# =============================================================================
# Events
# =============================================================================


class EventType(str, Enum):
    GAME_STARTED = "game_started"
    PHASE_CHANGED = "phase_changed"
    POWER_USED = "power_used"
    WOLF_ATTACK = "wolf_attack"
    WOLF_ATTACK_TIED = "wolf_attack_tied"
    PLAYER_PROTECTED = "player_protected"
    ATTACK_PREVENTED = "attack_prevented"
    LIFE_POTION = "witch_life_potion"
    DEATH_POTION = "witch_death_potion"
    LOVERS_BONDED = "lovers_bonded"
    MODEL_CHOSEN = "model_chosen"
    PLAYER_TRANSFORMED = "player_transformed"
    ROLES_SWAPPED = "roles_swapped"
    ROLE_INSPECTED = "role_inspected"
    PLAYER_KILLED = "player_killed"
    PLAYER_ELIMINATED = "player_eliminated"
    VOTE_RESULT = "vote_result"
    IMMUNITY_USED = "immunity_used"
    HUNTER_SHOT = "hunter_shot"
    REVENGE_AWAITED = "revenge_awaited"
    REVENGE_SKIPPED = "revenge_skipped"
    NIGHT_SKIPPED = "night_skipped"
    NO_DEATH = "no_death"
    GAME_ENDED = "game_ended"


class EventRecord(BaseModel):
    """Append-only, immutable log entry.

    Secret events are only visible to privileged readers and ``visible_to``.
    Mystery events are public but their cause and actor are withheld.
    """

    id: str = Field(default_factory=_short_id)
    game_id: str
    sequence: int = 0
    event_type: EventType
    phase: GamePhase
    phase_seq: int
    actor_id: Optional[str] = None
    target_id: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
    visibility: EventVisibility = EventVisibility.PUBLIC
    visible_to: list[str] = Field(default_factory=list)
    mystery: bool = False
    reveal_at_seq: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.now)

    model_config = ConfigDict(frozen=True)

    def is_visible_to(self, viewer_id: Optional[str], privileged: bool = False) -> bool:
        if privileged or self.visibility == EventVisibility.PUBLIC:
            return True
        return viewer_id is not None and viewer_id in self.visible_to

    def redacted(self, current_seq: int) -> "EventRecord":
        """Public rendition: hide mystery causes and unrevealed roles."""
        data = dict(self.data)
        update: dict[str, Any] = {}
        if self.mystery:
            data.pop("cause", None)
            update["actor_id"] = None
        if self.reveal_at_seq is not None and current_seq < self.reveal_at_seq:
            data.pop("role", None)
            data.pop("team", None)
        update["data"] = data
        return self.model_copy(update=update)


# =============================================================================
# Snapshots, drafts and outcomes
# =============================================================================


class PhaseSnapshot(BaseModel):
    """Single consistent read a resolver computes from."""

    game: Game
    players: list[Player]
    catalog: RoleCatalog
    actions: list[ActionRecord] = Field(default_factory=list)
    votes: list[VoteRecord] = Field(default_factory=list)
    power_uses: list[PowerUseRecord] = Field(default_factory=list)

    def player_map(self) -> dict[str, Player]:
        """Working copies keyed by id, in seat order."""
        return {p.id: p.model_copy(deep=True) for p in self.players}

    def get_player(self, player_id: str) -> Optional[Player]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def uses_of(self, player_id: str, power_id: str) -> int:
        record = self.power_use(player_id, power_id)
        return record.count if record else 0

    def power_use(self, player_id: str, power_id: str) -> Optional[PowerUseRecord]:
        for record in self.power_uses:
            if record.player_id == player_id and record.power_id == power_id:
                return record
        return None

    def actions_with_effect(self, effect: EffectKind) -> list[ActionRecord]:
        power_ids = {p.id for p in self.catalog.powers_with_effect(effect)}
        return [a for a in self.actions if a.power_id in power_ids]


class DeathReport(BaseModel):
    player_id: str
    name: str
    cause: Optional[DeathCause] = None
    role: Optional[str] = None
    team: Optional[Team] = None
    revealed: bool = False


class Transformation(BaseModel):
    player_id: str
    from_role: str
    to_role: str
    kind: EffectKind


class ResolutionDraft(BaseModel):
    """Everything a resolution wants persisted, applied atomically by the store."""

    players: list[Player] = Field(default_factory=list)
    applications: list[PowerApplication] = Field(default_factory=list)
    events: list[EventRecord] = Field(default_factory=list)
    new_triggers: list[PendingTrigger] = Field(default_factory=list)
    resolved_trigger_ids: list[str] = Field(default_factory=list)
    deaths: list[DeathReport] = Field(default_factory=list)
    transformations: list[Transformation] = Field(default_factory=list)


class VoteDetail(BaseModel):
    voter_id: Optional[str] = None
    target_id: str
    weight: int = 1
    anonymous: bool = False


class NightOutcome(BaseModel):
    kind: Literal["night"] = "night"
    game_id: str
    phase_seq: int
    deaths: list[DeathReport] = Field(default_factory=list)
    transformations: list[Transformation] = Field(default_factory=list)
    wolf_target_id: Optional[str] = None
    attack_tied: bool = False
    attack_prevented_by: Optional[EffectKind] = None
    no_action: bool = False
    skipped: bool = False
    pending_triggers: list[PendingTrigger] = Field(default_factory=list)
    winner: Optional[Winner] = None
    next_phase: Optional[GamePhase] = None


class CouncilOutcome(BaseModel):
    kind: Literal["council"] = "council"
    game_id: str
    phase_seq: int
    vote_counts: dict[str, int] = Field(default_factory=dict)
    vote_details: list[VoteDetail] = Field(default_factory=list)
    eliminated: Optional[DeathReport] = None
    deaths: list[DeathReport] = Field(default_factory=list)
    transformations: list[Transformation] = Field(default_factory=list)
    tie: bool = False
    immunity_used: bool = False
    no_votes: bool = False
    pending_triggers: list[PendingTrigger] = Field(default_factory=list)
    winner: Optional[Winner] = None
    next_phase: Optional[GamePhase] = None


class ImmediateOutcome(BaseModel):
    """Result of a power applied on submission (silent kill, revenge shot)."""

    kind: Literal["immediate"] = "immediate"
    game_id: str
    phase_seq: int
    power_id: str
    actor_id: str
    deaths: list[DeathReport] = Field(default_factory=list)
    transformations: list[Transformation] = Field(default_factory=list)
    pending_triggers: list[PendingTrigger] = Field(default_factory=list)
    winner: Optional[Winner] = None
    next_phase: Optional[GamePhase] = None
    phase_finalized: bool = False


class TriggersSkipped(BaseModel):
    """Result of an operator (or timer) skipping awaited revenge shots."""

    kind: Literal["triggers_skipped"] = "triggers_skipped"
    game_id: str
    phase_seq: int
    skipped_player_ids: list[str] = Field(default_factory=list)
    winner: Optional[Winner] = None
    next_phase: Optional[GamePhase] = None
    phase_finalized: bool = False


class PhaseAdvance(BaseModel):
    kind: Literal["advance"] = "advance"
    game_id: str
    phase_seq: int
    from_phase: GamePhase
    to_phase: GamePhase
    transformations: list[Transformation] = Field(default_factory=list)
    winner: Optional[Winner] = None


class AlreadyResolved(BaseModel):
    kind: Literal["already_resolved"] = "already_resolved"
    game_id: str
    phase_seq: int
    current_phase_seq: int


class NotReady(BaseModel):
    kind: Literal["not_ready"] = "not_ready"
    game_id: str
    reason: str
    submitted: int = 0
    required: int = 0


ResolutionResult = Union[
    NightOutcome,
    CouncilOutcome,
    ImmediateOutcome,
    TriggersSkipped,
    PhaseAdvance,
    AlreadyResolved,
    NotReady,
]


class SubmissionResult(BaseModel):
    accepted: bool
    reason: Optional[RejectionReason] = None
    message: str = ""
    outcome: Optional[ImmediateOutcome] = None

    @classmethod
    def ok(cls, message: str = "") -> "SubmissionResult":
        return cls(accepted=True, message=message)

    @classmethod
    def rejected(cls, reason: RejectionReason, message: str = "") -> "SubmissionResult":
        return cls(accepted=False, reason=reason, message=message)


class PhaseStatus(BaseModel):
    """Operator view of "N/M acted"."""

    game_id: str
    phase: GamePhase
    phase_seq: int
    resolution: ResolutionState
    submitted: int
    required: int
    can_resolve: bool
    pending_triggers: int = 0
    phase_ends_at: Optional[datetime] = None
