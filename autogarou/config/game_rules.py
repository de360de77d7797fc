"""Game settings configuration with YAML file support.

Lookup order for the configuration file:
1. Explicit path passed by the caller
2. ``AUTOGAROU_CONFIG`` environment variable
3. ``./autogarou_config.yaml``
4. ``~/.config/autogarou/autogarou_config.yaml``

Without a file, defaults are used. Keys missing from the file keep their
default values.
"""

import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml

from autogarou.engine.state import GameSettings, RuleVariants

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "AUTOGAROU_CONFIG"
DEFAULT_CONFIG_FILENAME = "autogarou_config.yaml"


def default_config_paths() -> list[Path]:
    return [
        Path.cwd() / DEFAULT_CONFIG_FILENAME,
        Path.home() / ".config" / "autogarou" / DEFAULT_CONFIG_FILENAME,
    ]


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file; an unreadable file falls back to defaults."""
    if not path.exists():
        return {}

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.warning(f"Ignoring invalid configuration file {path}: {e}")
        return {}

    if not isinstance(data, dict):
        return {}
    return data


def find_config_file(config_path: Optional[Path] = None) -> Optional[Path]:
    """Find the configuration file.

    Args:
        config_path: Explicit path to configuration file

    Returns:
        Path to configuration file if found, None otherwise
    """
    if config_path:
        config_path = Path(config_path)
        return config_path if config_path.exists() else None

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        path = Path(env_path).expanduser()
        if path.exists():
            return path
        logger.warning(f"{CONFIG_ENV_VAR} points to missing file {path}")

    for path in default_config_paths():
        if path.exists():
            return path

    return None


def load_rule_variants(config_path: Optional[Path] = None) -> RuleVariants:
    """Load rule variants from configuration file or use defaults."""
    found_path = find_config_file(config_path)
    if not found_path:
        return RuleVariants()

    rule_data = _load_yaml_file(found_path).get("rule_variants") or {}
    return RuleVariants(**rule_data)


def load_game_settings(config_path: Optional[Path] = None) -> GameSettings:
    """Load game settings from file or use defaults.

    Args:
        config_path: Optional explicit path to configuration file

    Returns:
        GameSettings instance with loaded or default values

    Raises:
        pydantic.ValidationError: if the file holds invalid values
    """
    found_path = find_config_file(config_path)
    if not found_path:
        return GameSettings()

    config_data = _load_yaml_file(found_path)

    settings_data: dict[str, Any] = {}
    for key in (
        "role_distribution",
        "auto_mode",
        "phase_durations",
        "revenge_timeout_seconds",
        "bot_autopilot",
        "random_seed",
    ):
        if key in config_data and config_data[key] is not None:
            settings_data[key] = config_data[key]

    settings_data["rule_variants"] = load_rule_variants(found_path)

    return GameSettings(**settings_data)


def save_default_config(path: Path) -> None:
    """Save the default configuration to a YAML file."""
    defaults = GameSettings()
    config_dict = {
        "role_distribution": defaults.role_distribution,
        "auto_mode": defaults.auto_mode,
        "phase_durations": defaults.phase_durations.model_dump(),
        "revenge_timeout_seconds": defaults.revenge_timeout_seconds,
        "bot_autopilot": defaults.bot_autopilot,
        "random_seed": defaults.random_seed,
        "rule_variants": defaults.rule_variants.model_dump(),
    }

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False, allow_unicode=True)


def get_config_template() -> str:
    """Get a YAML configuration template with comments."""
    return """# AutoGarou Game Configuration
# ============================
# All values shown are defaults - only specify values you want to change.

# Number of players per role (6 to 20 players in total)
role_distribution:
  loup_garou: 2
  voyante: 1
  sorciere: 1
  chasseur: 1
  salvateur: 1
  cupidon: 1
  villageois: 1

# Schedule phase deadlines and resolve automatically when they pass
auto_mode: false

# Phase durations in seconds (used in auto mode)
phase_durations:
  nuit: 120
  jour: 300
  conseil: 180

# How long a dying hunter may take to fire before the shot is skipped
revenge_timeout_seconds: 90

# Let bot players (names starting with the robot emoji) vote and shoot
bot_autopilot: true

# Random seed for reproducible role assignment and bot choices (null for random)
random_seed: null

rule_variants:
  # If the protector and the life potion cover the same victim, the victim still dies
  protect_and_save_kills: false

  # Whether the witch may use both potions in the same night
  witch_can_use_both_potions: true

  # Whether the protector may protect themselves
  protector_can_self_protect: true

  # Reveal the role of night victims once the day starts
  reveal_night_roles_at_day: true
"""
