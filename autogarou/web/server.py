import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from autogarou.config.game_rules import load_game_settings
from autogarou.engine.errors import (
    EngineIntegrityError,
    GameNotFoundError,
    InvalidTransitionError,
    PlayerNotFoundError,
    StalePhaseError,
)
from autogarou.engine.roles import TriggerKind
from autogarou.engine.state import EventRecord, GameSettings, SubmissionResult
from autogarou.orchestrator.phase_coordinator import PhaseCoordinator, public_outcome
from autogarou.web.schemas import (
    ActionSubmitRequest,
    CreateGameRequest,
    EventResponse,
    GameStateResponse,
    ResolveRequest,
    SkipNightRequest,
    SkipTriggersRequest,
    SubmissionResponse,
    VoteSubmitRequest,
    WSMessage,
    WSMessageType,
)

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = 1.0


class ConnectionManager:
    def __init__(self):
        self._connections: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, game_id: str) -> None:
        await websocket.accept()
        async with self._lock:
            if game_id not in self._connections:
                self._connections[game_id] = set()
            self._connections[game_id].add(websocket)

    async def disconnect(self, websocket: WebSocket, game_id: str) -> None:
        async with self._lock:
            if game_id in self._connections:
                self._connections[game_id].discard(websocket)
                if not self._connections[game_id]:
                    del self._connections[game_id]

    async def broadcast(self, game_id: str, message: WSMessage) -> None:
        async with self._lock:
            connections = self._connections.get(game_id, set()).copy()

        data = message.model_dump(mode="json")
        data["timestamp"] = datetime.now().isoformat()

        for websocket in connections:
            try:
                await websocket.send_json(data)
            except Exception as e:
                logger.error(f"WebSocket send error: {e}")

    async def send_to(self, websocket: WebSocket, message: WSMessage) -> None:
        data = message.model_dump(mode="json")
        data["timestamp"] = datetime.now().isoformat()
        try:
            await websocket.send_json(data)
        except Exception as e:
            logger.error(f"WebSocket send error: {e}")


def _submission_response(result: SubmissionResult) -> SubmissionResponse:
    return SubmissionResponse(
        accepted=result.accepted,
        reason=result.reason,
        message=result.message,
        outcome=public_outcome(result.outcome) if result.outcome else None,
    )


def _event_response(event: EventRecord) -> EventResponse:
    return EventResponse(
        sequence=event.sequence,
        event_type=event.event_type.value,
        phase=event.phase.value,
        phase_seq=event.phase_seq,
        actor_id=event.actor_id,
        target_id=event.target_id,
        data=event.data,
        visibility=event.visibility.value,
        created_at=event.created_at.isoformat(),
    )


def _game_state(coordinator: PhaseCoordinator, game_id: str) -> GameStateResponse:
    game = coordinator.get_game(game_id)
    return GameStateResponse(
        game_id=game.id,
        phase=game.phase.value,
        phase_seq=game.phase_seq,
        resolution=game.resolution.value,
        day_count=game.day_count,
        phase_ends_at=game.phase_ends_at.isoformat() if game.phase_ends_at else None,
        players=coordinator.public_players(game_id),
        pending_revenge=[
            t.player_id
            for t in game.pending_triggers
            if t.kind == TriggerKind.AWAITING_REVENGE
        ],
        winner=game.winner.model_dump(mode="json") if game.winner else None,
    )


def create_app(
    coordinator: Optional[PhaseCoordinator] = None,
    default_settings: Optional[GameSettings] = None,
    tick_interval: Optional[float] = DEFAULT_TICK_INTERVAL,
) -> FastAPI:
    """Build the HTTP/WebSocket boundary around a coordinator.

    Args:
        coordinator: Coordinator to expose (a fresh in-memory one by default)
        default_settings: Settings for games created without explicit settings
        tick_interval: Seconds between timer ticks, None disables the ticker
    """
    coordinator = coordinator or PhaseCoordinator()
    ws_manager = ConnectionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        loop = asyncio.get_running_loop()

        def forward_outcome(game_id: str, outcome: Dict[str, Any]) -> None:
            message = WSMessage(type=WSMessageType.OUTCOME, data=outcome)
            asyncio.run_coroutine_threadsafe(ws_manager.broadcast(game_id, message), loop)

        coordinator.set_outcome_callback(forward_outcome)

        ticker = None
        if tick_interval:
            ticker = asyncio.create_task(_run_ticker(coordinator, tick_interval))
        yield
        if ticker is not None:
            ticker.cancel()
        coordinator.set_outcome_callback(None)

    app = FastAPI(
        title="AutoGarou API",
        description="Night action and council vote resolution for Loup-Garou games",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.coordinator = coordinator
    app.state.default_settings = default_settings or GameSettings()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GameNotFoundError)
    @app.exception_handler(PlayerNotFoundError)
    async def not_found_handler(request: Request, exc: Exception):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidTransitionError)
    @app.exception_handler(StalePhaseError)
    async def conflict_handler(request: Request, exc: Exception):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(EngineIntegrityError)
    async def integrity_handler(request: Request, exc: EngineIntegrityError):
        logger.error(f"Engine integrity error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.get("/api/health")
    def health_check():
        return {"status": "ok", "timestamp": datetime.now().isoformat()}

    @app.post("/api/games", response_model=GameStateResponse)
    def create_game(request: CreateGameRequest):
        settings = request.settings or app.state.default_settings
        try:
            game = coordinator.create_game(request.player_names, settings)
        except ValueError as e:
            return JSONResponse(status_code=422, content={"detail": str(e)})
        if request.start:
            coordinator.start_game(game.id)
        return _game_state(coordinator, game.id)

    @app.get("/api/games")
    def list_games():
        return {
            "games": [
                {"game_id": g.id, "phase": g.phase.value, "phase_seq": g.phase_seq}
                for g in coordinator.store.list_games()
            ]
        }

    @app.get("/api/games/{game_id}", response_model=GameStateResponse)
    def get_game(game_id: str):
        return _game_state(coordinator, game_id)

    @app.post("/api/games/{game_id}/start")
    def start_game(game_id: str):
        return public_outcome(coordinator.start_game(game_id))

    @app.post("/api/games/{game_id}/actions", response_model=SubmissionResponse)
    def submit_action(game_id: str, action: ActionSubmitRequest):
        result = coordinator.submit_action(
            game_id,
            action.phase_seq,
            action.player_id,
            action.power_id,
            action.target_ids,
        )
        return _submission_response(result)

    @app.post("/api/games/{game_id}/votes", response_model=SubmissionResponse)
    def submit_vote(game_id: str, vote: VoteSubmitRequest):
        result = coordinator.submit_vote(
            game_id,
            vote.phase_seq,
            vote.voter_id,
            vote.target_id,
            double=vote.double,
            anonymous=vote.anonymous,
        )
        return _submission_response(result)

    @app.post("/api/games/{game_id}/resolve")
    def resolve(game_id: str, request: Optional[ResolveRequest] = None):
        request = request or ResolveRequest()
        outcome = coordinator.resolve(game_id, request.phase_seq, force=request.force)
        return public_outcome(outcome)

    @app.post("/api/games/{game_id}/skip-night")
    def skip_night(game_id: str, request: Optional[SkipNightRequest] = None):
        request = request or SkipNightRequest()
        return public_outcome(coordinator.skip_night_attack(game_id, request.phase_seq))

    @app.post("/api/games/{game_id}/triggers/skip")
    def skip_triggers(game_id: str, request: Optional[SkipTriggersRequest] = None):
        request = request or SkipTriggersRequest()
        return public_outcome(coordinator.skip_pending_triggers(game_id, request.player_id))

    @app.get("/api/games/{game_id}/status")
    def get_status(game_id: str):
        return coordinator.status(game_id).model_dump(mode="json")

    @app.get("/api/games/{game_id}/events", response_model=List[EventResponse])
    def get_events(
        game_id: str,
        viewer_id: Optional[str] = None,
        privileged: bool = False,
        start: int = 0,
    ):
        events = coordinator.events(game_id, viewer_id=viewer_id, privileged=privileged)
        return [_event_response(e) for e in events if e.sequence >= start]

    @app.websocket("/ws/games/{game_id}")
    async def game_websocket(websocket: WebSocket, game_id: str):
        try:
            state = _game_state(coordinator, game_id)
        except GameNotFoundError:
            await websocket.close(code=4004, reason="Game not found")
            return

        await ws_manager.connect(websocket, game_id)
        try:
            await ws_manager.send_to(websocket, WSMessage(
                type=WSMessageType.CONNECTED,
                data=state.model_dump(mode="json"),
            ))
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected for game {game_id}")
        finally:
            await ws_manager.disconnect(websocket, game_id)

    return app


async def _run_ticker(coordinator: PhaseCoordinator, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(coordinator.tick)
        except EngineIntegrityError as e:
            logger.error(f"Timer tick aborted a resolution: {e}")
        except Exception as e:
            logger.warning(f"Timer tick error: {e}")


def run_server(
    host: str = "0.0.0.0",
    port: int = 8000,
    config_path: Optional[Path] = None,
) -> None:
    """
    Start the API server.

    Args:
        host: Host to bind to.
        port: Port for the API server.
        config_path: Path to game config YAML file. If None, searches default paths.
    """
    import uvicorn

    settings = load_game_settings(config_path)
    app = create_app(default_settings=settings)

    logger.info(f"API server starting on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="info")
