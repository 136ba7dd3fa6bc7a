"""Utilities package for the Ingredient Library."""

from .config import (
    CONFIG_PRESETS,
    DEFAULT_TABLE_CONFIG,
    Config,
    TableConfig,
    get_preset,
    merge_config,
    validate_config,
)

__all__ = [
    "CONFIG_PRESETS",
    "DEFAULT_TABLE_CONFIG",
    "Config",
    "TableConfig",
    "get_preset",
    "merge_config",
    "validate_config",
]
