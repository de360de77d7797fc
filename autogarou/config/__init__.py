"""Configuration for AutoGarou."""

from autogarou.config.game_rules import (
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG_FILENAME,
    default_config_paths,
    find_config_file,
    get_config_template,
    load_game_settings,
    load_rule_variants,
    save_default_config,
)

__all__ = [
    "CONFIG_ENV_VAR",
    "DEFAULT_CONFIG_FILENAME",
    "default_config_paths",
    "find_config_file",
    "get_config_template",
    "load_game_settings",
    "load_rule_variants",
    "save_default_config",
]
