from .roles import (
    WOLF_ROLE_ID,
    EffectKind,
    PowerTiming,
    SoloWinCondition,
    Team,
)
from .state import PowerDefinition, Role, RoleCatalog


def _power(role_id: str, power_id: str, name: str, effect: EffectKind, **kwargs) -> PowerDefinition:
    return PowerDefinition(id=power_id, name=name, role_id=role_id, effect=effect, **kwargs)


def _wolf_attack(role_id: str) -> PowerDefinition:
    return _power(role_id, "devorer", "Dévorer", EffectKind.WOLF_ATTACK)


DEFAULT_ROLES: list[Role] = [
    Role(id="villageois", name="Villageois", team=Team.VILLAGE),
    Role(
        id=WOLF_ROLE_ID,
        name="Loup-Garou",
        team=Team.WOLVES,
        powers=[_wolf_attack(WOLF_ROLE_ID)],
    ),
    Role(
        id="voyante",
        name="Voyante",
        team=Team.VILLAGE,
        powers=[_power("voyante", "voir_role", "Voir un rôle", EffectKind.INSPECT)],
    ),
    Role(
        id="sorciere",
        name="Sorcière",
        team=Team.VILLAGE,
        powers=[
            _power(
                "sorciere", "potion_vie", "Potion de vie", EffectKind.LIFE_SAVE,
                max_uses=1, target_count=0, allow_self=True,
            ),
            _power("sorciere", "potion_mort", "Potion de mort", EffectKind.DEATH_DEAL, max_uses=1),
        ],
    ),
    Role(
        id="chasseur",
        name="Chasseur",
        team=Team.VILLAGE,
        powers=[
            _power(
                "chasseur", "tir_mortel", "Tir mortel", EffectKind.REVENGE_SHOT,
                max_uses=1, timing=PowerTiming.ANY,
            ),
        ],
    ),
    Role(
        id="cupidon",
        name="Cupidon",
        team=Team.VILLAGE,
        powers=[
            _power(
                "cupidon", "lien_amoureux", "Lien amoureux", EffectKind.BOND,
                max_uses=1, target_count=2, allow_self=True, first_night_only=True,
            ),
        ],
    ),
    Role(
        id="salvateur",
        name="Salvateur",
        team=Team.VILLAGE,
        powers=[
            _power(
                "salvateur", "proteger", "Protéger", EffectKind.PROTECT,
                allow_self=True, no_repeat_target=True,
            ),
        ],
    ),
    Role(
        id="enfant_sauvage",
        name="Enfant Sauvage",
        team=Team.VILLAGE,
        powers=[
            _power(
                "enfant_sauvage", "choisir_modele", "Choisir un modèle", EffectKind.MODEL_TRANSFORM,
                max_uses=1, first_night_only=True, params={"transform_to": WOLF_ROLE_ID},
            ),
        ],
    ),
    Role(
        id="trublion",
        name="Trublion",
        team=Team.VILLAGE,
        powers=[
            _power(
                "trublion", "echanger_roles", "Échanger deux rôles", EffectKind.ROLE_SWAP,
                max_uses=1, target_count=2,
            ),
        ],
    ),
    Role(
        id="assassin",
        name="Assassin",
        team=Team.SOLO,
        solo_win_condition=SoloWinCondition.LAST_STANDING,
        powers=[
            _power(
                "assassin", "assassiner", "Assassiner", EffectKind.SILENT_KILL,
                max_uses=1, timing=PowerTiming.ANY,
            ),
        ],
    ),
    Role(
        id="loup_blanc",
        name="Loup Blanc",
        team=Team.SOLO,
        solo_win_condition=SoloWinCondition.LAST_STANDING,
        powers=[_wolf_attack("loup_blanc")],
    ),
    Role(
        id="ange",
        name="Ange",
        team=Team.SOLO,
        solo_win_condition=SoloWinCondition.FIRST_COUNCIL_ELIMINATION,
    ),
]

GRANTED_POWERS: list[PowerDefinition] = [
    PowerDefinition(
        id="double_vote", name="Double vote", effect=EffectKind.DOUBLE_VOTE,
        max_uses=1, timing=PowerTiming.DAY, target_count=0,
    ),
    PowerDefinition(
        id="vote_anonyme", name="Vote anonyme", effect=EffectKind.ANONYMOUS_VOTE,
        max_uses=1, timing=PowerTiming.DAY, target_count=0,
    ),
    PowerDefinition(
        id="immunite", name="Immunité", effect=EffectKind.IMMUNITY,
        max_uses=1, timing=PowerTiming.DAY, target_count=0,
    ),
]


def default_role_catalog() -> RoleCatalog:
    """Return the standard role catalog with the shop-granted powers."""
    return RoleCatalog(
        roles={role.id: role for role in DEFAULT_ROLES},
        granted_powers={power.id: power for power in GRANTED_POWERS},
    )


def get_role_composition(distribution: dict[str, int]) -> list[str]:
    """Expand a role distribution into a flat list of role ids."""
    composition: list[str] = []
    for role_id, count in distribution.items():
        composition.extend([role_id] * count)
    return composition
