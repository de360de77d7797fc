"""Night action and council vote resolution engine."""

from autogarou.engine.cascade import (
    CascadeContext,
    CascadeResult,
    DeathCandidate,
    apply_cascade,
    verify_player_invariants,
)
from autogarou.engine.catalog import default_role_catalog, get_role_composition
from autogarou.engine.council import resolve_council
from autogarou.engine.effects import EFFECT_REGISTRY, Effect, register_effect
from autogarou.engine.errors import (
    AutoGarouError,
    EngineIntegrityError,
    GameNotFoundError,
    InvalidTransitionError,
    PlayerNotFoundError,
    StalePhaseError,
)
from autogarou.engine.immediate import resolve_revenge_shot, resolve_silent_kill
from autogarou.engine.ledger import ActionLedger
from autogarou.engine.night import resolve_night
from autogarou.engine.phases import VALID_TRANSITIONS, advance_game, next_phase_after
from autogarou.engine.roles import (
    DeathCause,
    EffectKind,
    GamePhase,
    RejectionReason,
    ResolutionState,
    Team,
    TriggerKind,
)
from autogarou.engine.setup import create_game_records
from autogarou.engine.state import (
    ActionRecord,
    CouncilOutcome,
    EventRecord,
    Game,
    GameSettings,
    NightOutcome,
    PhaseSnapshot,
    Player,
    RoleCatalog,
    RuleVariants,
    SubmissionResult,
    VoteRecord,
    Winner,
)
from autogarou.engine.victory import VictoryContext, evaluate_victory

__all__ = [
    "EFFECT_REGISTRY",
    "VALID_TRANSITIONS",
    "ActionLedger",
    "ActionRecord",
    "AutoGarouError",
    "CascadeContext",
    "CascadeResult",
    "CouncilOutcome",
    "DeathCandidate",
    "DeathCause",
    "Effect",
    "EffectKind",
    "EngineIntegrityError",
    "EventRecord",
    "Game",
    "GameNotFoundError",
    "GamePhase",
    "GameSettings",
    "InvalidTransitionError",
    "NightOutcome",
    "PhaseSnapshot",
    "Player",
    "PlayerNotFoundError",
    "RejectionReason",
    "ResolutionState",
    "RoleCatalog",
    "RuleVariants",
    "StalePhaseError",
    "SubmissionResult",
    "Team",
    "TriggerKind",
    "VictoryContext",
    "VoteRecord",
    "Winner",
    "advance_game",
    "apply_cascade",
    "create_game_records",
    "default_role_catalog",
    "evaluate_victory",
    "get_role_composition",
    "next_phase_after",
    "register_effect",
    "resolve_council",
    "resolve_night",
    "resolve_revenge_shot",
    "resolve_silent_kill",
    "verify_player_invariants",
]
