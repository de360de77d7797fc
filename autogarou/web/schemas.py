from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from autogarou.engine.roles import RejectionReason
from autogarou.engine.state import GameSettings


class CreateGameRequest(BaseModel):
    player_names: Optional[List[str]] = None
    settings: Optional[GameSettings] = None
    start: bool = False


class ActionSubmitRequest(BaseModel):
    phase_seq: int = Field(ge=0)
    player_id: str
    power_id: str
    target_ids: List[str] = Field(default_factory=list)


class VoteSubmitRequest(BaseModel):
    phase_seq: int = Field(ge=0)
    voter_id: str
    target_id: Optional[str] = None
    double: bool = False
    anonymous: bool = False


class ResolveRequest(BaseModel):
    phase_seq: Optional[int] = None
    force: bool = False


class SkipNightRequest(BaseModel):
    phase_seq: Optional[int] = None


class SkipTriggersRequest(BaseModel):
    player_id: Optional[str] = None


class SubmissionResponse(BaseModel):
    accepted: bool
    reason: Optional[RejectionReason] = Field(
        default=None,
        description=(
            "not_alive, wrong_phase, power_exhausted, invalid_target or stale_phase; "
            "power_not_held when the player's role and grants lack the power"
        ),
    )
    message: str = ""
    outcome: Optional[Dict[str, Any]] = None


class GameStateResponse(BaseModel):
    game_id: str
    phase: str
    phase_seq: int
    resolution: str
    day_count: int
    phase_ends_at: Optional[str] = None
    players: List[Dict[str, Any]]
    pending_revenge: List[str] = Field(default_factory=list)
    winner: Optional[Dict[str, Any]] = None


class EventResponse(BaseModel):
    sequence: int
    event_type: str
    phase: str
    phase_seq: int
    actor_id: Optional[str] = None
    target_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    visibility: str
    created_at: str


class WSMessageType(str, Enum):
    CONNECTED = "connected"
    OUTCOME = "outcome"
    ERROR = "error"


class WSMessage(BaseModel):
    type: WSMessageType
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[str] = None
