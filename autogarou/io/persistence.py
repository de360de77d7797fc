import json
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, Field

from autogarou.engine.state import (
    ActionRecord,
    EventRecord,
    Game,
    Player,
    PowerUseRecord,
    RoleCatalog,
    VoteRecord,
)
from autogarou.io.store import GameStore


class GameSnapshot(BaseModel):
    """Everything needed to restore a game into a store."""

    game: Game
    players: list[Player]
    catalog: RoleCatalog
    actions: list[ActionRecord] = Field(default_factory=list)
    votes: list[VoteRecord] = Field(default_factory=list)
    power_uses: list[PowerUseRecord] = Field(default_factory=list)
    events: list[EventRecord] = Field(default_factory=list)
    saved_at: datetime = Field(default_factory=datetime.now)

    def get_player(self, player_id: str) -> Optional[Player]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None


def capture_snapshot(store: GameStore, game_id: str) -> GameSnapshot:
    """Read a full game out of a store. Pending actions of the current phase are kept."""
    phase = store.snapshot(game_id)
    return GameSnapshot(
        game=phase.game,
        players=phase.players,
        catalog=phase.catalog,
        actions=phase.actions,
        votes=phase.votes,
        power_uses=phase.power_uses,
        events=store.list_events(game_id),
    )


def restore_snapshot(store: GameStore, snapshot: GameSnapshot) -> Game:
    store.restore(
        game=snapshot.game,
        players=snapshot.players,
        catalog=snapshot.catalog,
        actions=snapshot.actions,
        votes=snapshot.votes,
        power_uses=snapshot.power_uses,
        events=snapshot.events,
    )
    return store.get_game(snapshot.game.id)


def save_snapshot(snapshot: GameSnapshot, path: Union[str, Path]) -> None:
    path = Path(path)
    _save_file(snapshot.model_dump(mode="json"), path)


def load_snapshot(path: Union[str, Path]) -> GameSnapshot:
    path = Path(path)
    data = _load_file(path)
    return GameSnapshot(**data)


def _load_file(path: Path) -> dict:
    suffix = path.suffix.lower()
    content = path.read_text(encoding="utf-8")

    if suffix in (".yaml", ".yml"):
        return yaml.safe_load(content)
    elif suffix == ".json":
        return json.loads(content)
    else:
        raise ValueError(f"Unsupported file format: {suffix}. Use .yaml, .yml, or .json")


def _save_file(data: dict, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    suffix = path.suffix.lower()

    if suffix in (".yaml", ".yml"):
        content = yaml.safe_dump(data, default_flow_style=False, allow_unicode=True)
    elif suffix == ".json":
        content = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    else:
        raise ValueError(f"Unsupported file format: {suffix}. Use .yaml, .yml, or .json")

    path.write_text(content, encoding="utf-8")
