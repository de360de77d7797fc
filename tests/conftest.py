"""Shared fixtures and builders for the AutoGarou tests."""

from datetime import datetime, timedelta
from typing import Optional

import pytest

from autogarou.engine.catalog import default_role_catalog
from autogarou.engine.roles import GamePhase
from autogarou.engine.state import (
    ActionRecord,
    Game,
    GameSettings,
    PendingTrigger,
    PhaseSnapshot,
    Player,
    PowerUseRecord,
    RoleCatalog,
    RuleVariants,
    VoteRecord,
)
from autogarou.orchestrator.phase_coordinator import PhaseCoordinator

GAME_ID = "g1"
BASE_TIME = datetime(2024, 1, 1, 20, 0, 0)


class FakeClock:
    """Deterministic clock; every reading advances by one millisecond."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(milliseconds=1)
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_players(roles: dict[str, str], **overrides: dict) -> dict[str, Player]:
    """Build players from ``{player_id: role_id}`` in seat order.

    ``overrides`` maps a player id to extra Player fields.
    """
    players = {}
    for seat, (player_id, role_id) in enumerate(roles.items(), start=1):
        fields = {"id": player_id, "name": player_id.upper(), "role_id": role_id, "seat_number": seat}
        fields.update(overrides.get(player_id, {}))
        players[player_id] = Player(**fields)
    return players


def bond(players: dict[str, Player], first: str, second: str) -> None:
    players[first].bonded_partner_id = second
    players[second].bonded_partner_id = first


def make_settings(rules: Optional[RuleVariants] = None, **fields) -> GameSettings:
    fields.setdefault("bot_autopilot", False)
    return GameSettings(rule_variants=rules or RuleVariants(), **fields)


def make_game(
    phase: GamePhase = GamePhase.NIGHT,
    phase_seq: int = 1,
    day_count: int = 0,
    settings: Optional[GameSettings] = None,
    pending_triggers: Optional[list[PendingTrigger]] = None,
    **fields,
) -> Game:
    return Game(
        id=GAME_ID,
        phase=phase,
        phase_seq=phase_seq,
        day_count=day_count,
        settings=settings or make_settings(),
        pending_triggers=pending_triggers or [],
        **fields,
    )


def action(player_id: str, power_id: str, *targets: str, phase_seq: int = 1, order: int = 0) -> ActionRecord:
    return ActionRecord(
        game_id=GAME_ID,
        phase_seq=phase_seq,
        player_id=player_id,
        power_id=power_id,
        target_ids=list(targets),
        submitted_at=BASE_TIME + timedelta(seconds=order),
    )


def vote(
    voter_id: str,
    target_id: Optional[str],
    phase_seq: int = 3,
    weight: int = 1,
    anonymous: bool = False,
    order: int = 0,
) -> VoteRecord:
    return VoteRecord(
        game_id=GAME_ID,
        phase_seq=phase_seq,
        voter_id=voter_id,
        target_id=target_id,
        weight=weight,
        anonymous=anonymous,
        submitted_at=BASE_TIME + timedelta(seconds=order),
    )


def power_use(player_id: str, power_id: str, count: int = 1, **fields) -> PowerUseRecord:
    return PowerUseRecord(game_id=GAME_ID, player_id=player_id, power_id=power_id, count=count, **fields)


def make_snapshot(
    players: dict[str, Player],
    game: Optional[Game] = None,
    actions: Optional[list[ActionRecord]] = None,
    votes: Optional[list[VoteRecord]] = None,
    power_uses: Optional[list[PowerUseRecord]] = None,
    catalog: Optional[RoleCatalog] = None,
) -> PhaseSnapshot:
    return PhaseSnapshot(
        game=game or make_game(),
        players=list(players.values()),
        catalog=catalog or default_role_catalog(),
        actions=actions or [],
        votes=votes or [],
        power_uses=power_uses or [],
    )


def seed_game(
    coordinator: PhaseCoordinator,
    players: dict[str, Player],
    game: Optional[Game] = None,
) -> Game:
    """Put a hand-built game straight into the coordinator's store."""
    game = game or make_game()
    coordinator.store.create_game(game, list(players.values()), default_role_catalog())
    return coordinator.get_game(game.id)


@pytest.fixture
def catalog() -> RoleCatalog:
    return default_role_catalog()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def coordinator(clock: FakeClock) -> PhaseCoordinator:
    return PhaseCoordinator(clock=clock)


@pytest.fixture
def village() -> dict[str, Player]:
    """Two wolves against a full village."""
    return make_players({
        "w1": "loup_garou",
        "w2": "loup_garou",
        "seer": "voyante",
        "witch": "sorciere",
        "hunter": "chasseur",
        "guard": "salvateur",
        "cupid": "cupidon",
        "v1": "villageois",
        "v2": "villageois",
    })
