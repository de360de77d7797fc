"""Victory evaluation.

Order: solo conditions, then village (no wolf alive), then wolves (wolves at
least as many as everyone else alive).
"""

from typing import Iterable, Optional

from pydantic import BaseModel

from .roles import SoloWinCondition, Team
from .state import Player, RoleCatalog, Winner


class VictoryContext(BaseModel):
    """Council facts some solo conditions depend on."""

    eliminated_player_id: Optional[str] = None
    council_number: Optional[int] = None


def evaluate_victory(
    players: Iterable[Player],
    catalog: RoleCatalog,
    context: Optional[VictoryContext] = None,
) -> Optional[Winner]:
    """Return the winner, or None while the game goes on.

    Args:
        players: Every player of the game, dead ones included
        catalog: Role catalog used to map roles to teams
        context: Council elimination facts, when evaluating after a council

    Returns:
        Winner if a team (or solo player) has won, None otherwise
    """
    everyone = list(players)
    alive = [p for p in everyone if p.is_alive]

    if len(alive) == 1:
        survivor = alive[0]
        role = catalog.role(survivor.role_id)
        if role.team == Team.SOLO and role.solo_win_condition == SoloWinCondition.LAST_STANDING:
            return Winner(team=Team.SOLO, player_ids=[survivor.id], reason="last_standing")

    if context is not None and context.eliminated_player_id and context.council_number == 1:
        for player in everyone:
            if player.id != context.eliminated_player_id:
                continue
            role = catalog.role(player.role_id)
            if role.solo_win_condition == SoloWinCondition.FIRST_COUNCIL_ELIMINATION:
                return Winner(
                    team=Team.SOLO,
                    player_ids=[player.id],
                    reason="first_council_elimination",
                )

    wolves = [p for p in alive if catalog.team_of(p) == Team.WOLVES]
    others = [p for p in alive if catalog.team_of(p) != Team.WOLVES]

    if not wolves:
        village = [p.id for p in everyone if catalog.team_of(p) == Team.VILLAGE]
        return Winner(team=Team.VILLAGE, player_ids=village, reason="no_wolves_alive")

    if len(wolves) >= len(others):
        pack = [p.id for p in everyone if catalog.team_of(p) == Team.WOLVES]
        return Winner(team=Team.WOLVES, player_ids=pack, reason="wolves_outnumber")

    return None
