"""Phase coordination for AutoGarou."""

from autogarou.orchestrator.bots import BotAutopilot
from autogarou.orchestrator.phase_coordinator import (
    OutcomeCallback,
    PhaseCoordinator,
    public_outcome,
)

__all__ = [
    "BotAutopilot",
    "OutcomeCallback",
    "PhaseCoordinator",
    "public_outcome",
]
