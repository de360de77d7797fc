"""Game state store.

The store is the only shared mutable state. ``begin_resolution`` is the
compare-and-swap that lets exactly one resolution win a phase sequence, and
``commit`` applies everything a resolution produced in one step.
"""

import threading
from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from autogarou.engine.errors import GameNotFoundError, PlayerNotFoundError, StalePhaseError
from autogarou.engine.roles import ResolutionState
from autogarou.engine.state import (
    ActionRecord,
    EventRecord,
    Game,
    PhaseSnapshot,
    Player,
    PowerApplication,
    PowerUseRecord,
    RoleCatalog,
    VoteRecord,
)


class StoreCommit(BaseModel):
    """Atomic write set of one resolution.

    Attributes:
        expected_seq: Phase sequence the resolution read from
        expected_states: Resolution states the game may be in at commit time
        game: New game record
        players: Players to replace (by id)
        applications: Successful power applications to merge into usage counters
        events: Events to append
    """

    game_id: str
    expected_seq: int
    expected_states: list[ResolutionState] = Field(
        default_factory=lambda: [ResolutionState.RESOLVING]
    )
    game: Game
    players: list[Player] = Field(default_factory=list)
    applications: list[PowerApplication] = Field(default_factory=list)
    events: list[EventRecord] = Field(default_factory=list)


class GameStore(ABC):
    """Storage interface used by the ledger and the coordinator."""

    @abstractmethod
    def create_game(self, game: Game, players: list[Player], catalog: RoleCatalog) -> None:
        ...

    @abstractmethod
    def restore(
        self,
        game: Game,
        players: list[Player],
        catalog: RoleCatalog,
        actions: list[ActionRecord],
        votes: list[VoteRecord],
        power_uses: list[PowerUseRecord],
        events: list[EventRecord],
    ) -> None:
        """Load a previously saved game, replacing any game with the same id."""

    @abstractmethod
    def get_game(self, game_id: str) -> Game:
        ...

    @abstractmethod
    def list_games(self) -> list[Game]:
        ...

    @abstractmethod
    def get_players(self, game_id: str) -> list[Player]:
        ...

    @abstractmethod
    def get_catalog(self, game_id: str) -> RoleCatalog:
        ...

    @abstractmethod
    def upsert_action(self, record: ActionRecord) -> None:
        """Insert or replace an action; raises StalePhaseError if the phase moved on."""

    @abstractmethod
    def list_actions(self, game_id: str, phase_seq: int) -> list[ActionRecord]:
        ...

    @abstractmethod
    def upsert_vote(self, record: VoteRecord) -> None:
        """Insert or replace a vote; raises StalePhaseError if the phase moved on."""

    @abstractmethod
    def list_votes(self, game_id: str, phase_seq: int) -> list[VoteRecord]:
        ...

    @abstractmethod
    def list_power_uses(self, game_id: str) -> list[PowerUseRecord]:
        ...

    @abstractmethod
    def list_events(self, game_id: str) -> list[EventRecord]:
        ...

    @abstractmethod
    def snapshot(self, game_id: str) -> PhaseSnapshot:
        """Consistent read of the game at its current phase sequence."""

    @abstractmethod
    def begin_resolution(self, game_id: str, expected_seq: int) -> bool:
        """Atomically move ``open`` to ``resolving`` if ``phase_seq`` matches."""

    @abstractmethod
    def abort_resolution(self, game_id: str, expected_seq: int) -> None:
        """Release a ``resolving`` game back to ``open`` without writing anything."""

    @abstractmethod
    def commit(self, commit: StoreCommit) -> Game:
        """Apply a resolution atomically; raises StalePhaseError on a lost race."""

    def get_player(self, game_id: str, player_id: str) -> Player:
        for player in self.get_players(game_id):
            if player.id == player_id:
                return player
        raise PlayerNotFoundError(game_id, player_id)


class InMemoryGameStore(GameStore):
    """Thread-safe in-process store."""

    def __init__(self):
        self._lock = threading.RLock()
        self._games: dict[str, Game] = {}
        self._players: dict[str, dict[str, Player]] = {}
        self._catalogs: dict[str, RoleCatalog] = {}
        self._actions: dict[str, dict[tuple, ActionRecord]] = {}
        self._votes: dict[str, dict[tuple, VoteRecord]] = {}
        self._power_uses: dict[str, dict[tuple[str, str], PowerUseRecord]] = {}
        self._events: dict[str, list[EventRecord]] = {}

    def _require(self, game_id: str) -> Game:
        game = self._games.get(game_id)
        if game is None:
            raise GameNotFoundError(game_id)
        return game

    def _check_open(self, game_id: str, phase_seq: int) -> None:
        game = self._require(game_id)
        if game.phase_seq != phase_seq or game.resolution != ResolutionState.OPEN:
            raise StalePhaseError(game_id, phase_seq, game.phase_seq)

    def create_game(self, game: Game, players: list[Player], catalog: RoleCatalog) -> None:
        with self._lock:
            self._games[game.id] = game.model_copy(deep=True)
            self._players[game.id] = {p.id: p.model_copy(deep=True) for p in players}
            self._catalogs[game.id] = catalog.model_copy(deep=True)
            self._actions[game.id] = {}
            self._votes[game.id] = {}
            self._power_uses[game.id] = {}
            self._events[game.id] = []

    def restore(
        self,
        game: Game,
        players: list[Player],
        catalog: RoleCatalog,
        actions: list[ActionRecord],
        votes: list[VoteRecord],
        power_uses: list[PowerUseRecord],
        events: list[EventRecord],
    ) -> None:
        with self._lock:
            self.create_game(game, players, catalog)
            self._actions[game.id] = {a.key: a for a in actions}
            self._votes[game.id] = {v.key: v for v in votes}
            self._power_uses[game.id] = {(u.player_id, u.power_id): u for u in power_uses}
            self._events[game.id] = list(events)

    def get_game(self, game_id: str) -> Game:
        with self._lock:
            return self._require(game_id).model_copy(deep=True)

    def list_games(self) -> list[Game]:
        with self._lock:
            return [g.model_copy(deep=True) for g in self._games.values()]

    def get_players(self, game_id: str) -> list[Player]:
        with self._lock:
            self._require(game_id)
            players = sorted(self._players[game_id].values(), key=lambda p: p.seat_number)
            return [p.model_copy(deep=True) for p in players]

    def get_catalog(self, game_id: str) -> RoleCatalog:
        with self._lock:
            self._require(game_id)
            return self._catalogs[game_id]

    def upsert_action(self, record: ActionRecord) -> None:
        with self._lock:
            self._check_open(record.game_id, record.phase_seq)
            self._actions[record.game_id][record.key] = record

    def list_actions(self, game_id: str, phase_seq: int) -> list[ActionRecord]:
        with self._lock:
            self._require(game_id)
            return [a for a in self._actions[game_id].values() if a.phase_seq == phase_seq]

    def upsert_vote(self, record: VoteRecord) -> None:
        with self._lock:
            self._check_open(record.game_id, record.phase_seq)
            self._votes[record.game_id][record.key] = record

    def list_votes(self, game_id: str, phase_seq: int) -> list[VoteRecord]:
        with self._lock:
            self._require(game_id)
            return [v for v in self._votes[game_id].values() if v.phase_seq == phase_seq]

    def list_power_uses(self, game_id: str) -> list[PowerUseRecord]:
        with self._lock:
            self._require(game_id)
            return [u.model_copy(deep=True) for u in self._power_uses[game_id].values()]

    def list_events(self, game_id: str) -> list[EventRecord]:
        with self._lock:
            self._require(game_id)
            return list(self._events[game_id])

    def snapshot(self, game_id: str) -> PhaseSnapshot:
        with self._lock:
            game = self.get_game(game_id)
            return PhaseSnapshot(
                game=game,
                players=self.get_players(game_id),
                catalog=self._catalogs[game_id],
                actions=self.list_actions(game_id, game.phase_seq),
                votes=self.list_votes(game_id, game.phase_seq),
                power_uses=self.list_power_uses(game_id),
            )

    def begin_resolution(self, game_id: str, expected_seq: int) -> bool:
        with self._lock:
            game = self._require(game_id)
            if game.phase_seq != expected_seq or game.resolution != ResolutionState.OPEN:
                return False
            self._games[game_id] = game.model_copy(update={"resolution": ResolutionState.RESOLVING})
            return True

    def abort_resolution(self, game_id: str, expected_seq: int) -> None:
        with self._lock:
            game = self._require(game_id)
            if game.phase_seq == expected_seq and game.resolution == ResolutionState.RESOLVING:
                self._games[game_id] = game.model_copy(update={"resolution": ResolutionState.OPEN})

    def commit(self, commit: StoreCommit) -> Game:
        with self._lock:
            current = self._require(commit.game_id)
            if current.phase_seq != commit.expected_seq or current.resolution not in commit.expected_states:
                raise StalePhaseError(commit.game_id, commit.expected_seq, current.phase_seq)

            # Build everything first, then swap in
            players = dict(self._players[commit.game_id])
            for player in commit.players:
                players[player.id] = player.model_copy(deep=True)

            uses = dict(self._power_uses[commit.game_id])
            for application in commit.applications:
                key = (application.player_id, application.power_id)
                previous = uses.get(key)
                count = previous.count if previous else 0
                uses[key] = PowerUseRecord(
                    game_id=commit.game_id,
                    player_id=application.player_id,
                    power_id=application.power_id,
                    count=count + 1,
                    last_target_ids=list(application.target_ids),
                    last_phase_seq=application.phase_seq,
                    last_night=application.night_number,
                )

            events = list(self._events[commit.game_id])
            for event in commit.events:
                events.append(event.model_copy(update={"sequence": len(events) + 1}))

            self._players[commit.game_id] = players
            self._power_uses[commit.game_id] = uses
            self._events[commit.game_id] = events
            self._games[commit.game_id] = commit.game.model_copy(deep=True)
            return commit.game.model_copy(deep=True)
