import random
from typing import Optional

from .catalog import default_role_catalog, get_role_composition
from .state import Game, GameSettings, Player, RoleCatalog

BOT_PREFIX = "🤖"


def is_bot_name(name: str) -> bool:
    return name.startswith(BOT_PREFIX)


def create_game_records(
    settings: GameSettings,
    player_names: Optional[list[str]] = None,
    catalog: Optional[RoleCatalog] = None,
) -> tuple[Game, list[Player], RoleCatalog]:
    """Create a lobby game with shuffled roles.

    Args:
        settings: Game settings (role distribution, seed, ...)
        player_names: Optional list of player names. If not provided,
                      defaults to bot names "🤖 Bot 1" through "🤖 Bot N".
        catalog: Role catalog, defaults to the standard one

    Returns:
        Tuple of (game, players, catalog)

    Raises:
        ValueError: wrong number of names or unknown role in the distribution
    """
    catalog = catalog or default_role_catalog()
    count = settings.player_count

    if player_names is None:
        player_names = [f"{BOT_PREFIX} Bot {i}" for i in range(1, count + 1)]

    if len(player_names) != count:
        raise ValueError(f"Expected {count} player names, got {len(player_names)}")

    unknown = [role_id for role_id in settings.role_distribution if role_id not in catalog.roles]
    if unknown:
        raise ValueError(f"Unknown roles in distribution: {', '.join(sorted(unknown))}")

    roles = get_role_composition(settings.role_distribution)
    rng = random.Random(settings.random_seed)
    rng.shuffle(roles)

    players = [
        Player(name=name, role_id=role_id, seat_number=i, is_bot=is_bot_name(name))
        for i, (name, role_id) in enumerate(zip(player_names, roles), start=1)
    ]
    game = Game(settings=settings)
    return game, players, catalog
