from enum import Enum


class Team(str, Enum):
    """Win-condition membership."""

    VILLAGE = "village"
    WOLVES = "loups"
    SOLO = "solo"


class GamePhase(str, Enum):
    """Game phases."""

    LOBBY = "lobby"
    NIGHT = "nuit"
    DAY = "jour"
    COUNCIL = "conseil"
    FINISHED = "terminee"

    @property
    def is_daytime(self) -> bool:
        return self in {GamePhase.DAY, GamePhase.COUNCIL}

    @property
    def is_playable(self) -> bool:
        return self in {GamePhase.NIGHT, GamePhase.DAY, GamePhase.COUNCIL}


class PowerTiming(str, Enum):
    """Window during which a power may be submitted."""

    NIGHT = "nuit"
    DAY = "jour"
    ANY = "any"

    def allows(self, phase: GamePhase) -> bool:
        if not phase.is_playable:
            return False
        if self == PowerTiming.ANY:
            return True
        if self == PowerTiming.NIGHT:
            return phase == GamePhase.NIGHT
        return phase.is_daytime


class EffectKind(str, Enum):
    """Tagged effect variants a power can carry."""

    WOLF_ATTACK = "wolf_attack"
    PROTECT = "protect"
    LIFE_SAVE = "life_save"
    DEATH_DEAL = "death_deal"
    BOND = "bond"
    MODEL_TRANSFORM = "model_transform"
    ROLE_SWAP = "role_swap"
    INSPECT = "inspect"
    REVENGE_SHOT = "revenge_shot"
    SILENT_KILL = "silent_kill"
    IMMUNITY = "immunity"
    DOUBLE_VOTE = "double_vote"
    ANONYMOUS_VOTE = "anonymous_vote"

    @property
    def is_immediate(self) -> bool:
        """True for effects applied on submission instead of in the batch pass."""
        return self in {EffectKind.REVENGE_SHOT, EffectKind.SILENT_KILL}

    @property
    def is_vote_modifier(self) -> bool:
        return self in {EffectKind.DOUBLE_VOTE, EffectKind.ANONYMOUS_VOTE}


class DeathCause(str, Enum):
    """Recorded cause of a death. Values are the persisted death reasons."""

    DEVOURED = "devore"
    POISONED = "empoisonne"
    ASSASSINATED = "assassine"
    HUNTER_SHOT = "chasseur"
    GRIEF = "chagrin"
    VOTE = "vote"

    @property
    def is_mystery(self) -> bool:
        """Deaths whose cause is withheld from the public feed."""
        return self == DeathCause.ASSASSINATED


class SoloWinCondition(str, Enum):
    LAST_STANDING = "last_standing"
    FIRST_COUNCIL_ELIMINATION = "first_council_elimination"


class TriggerKind(str, Enum):
    """Deferred consequences of a death."""

    AWAITING_REVENGE = "awaiting_revenge"
    MODEL_TRANSFORM = "model_transform"

    @property
    def blocks_victory(self) -> bool:
        return self == TriggerKind.AWAITING_REVENGE


class ResolutionState(str, Enum):
    """Lifecycle of the current phase sequence."""

    OPEN = "open"
    RESOLVING = "resolving"
    AWAITING_TRIGGERS = "awaiting_triggers"


class EventVisibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    SECRET = "secret"


class RejectionReason(str, Enum):
    NOT_ALIVE = "not_alive"
    WRONG_PHASE = "wrong_phase"
    POWER_EXHAUSTED = "power_exhausted"
    INVALID_TARGET = "invalid_target"
    STALE_PHASE = "stale_phase"
    POWER_NOT_HELD = "power_not_held"


WOLF_ROLE_ID = "loup_garou"
VILLAGER_ROLE_ID = "villageois"
