# PATH: config/__init__.py
"""
Configuration loading utilities for KEEPER.
"""

from pathlib import Path
from typing import Any, Dict

import yaml
from dotenv import load_dotenv

from core.exceptions import ConfigError
from config.schema import (
    ConstantProductSettings,
    KeeperConfig,
    KickSettings,
    OneInchSettings,
    PoolConfig,
    PriceOrigin,
    RetrySettings,
    SettlementSettings,
    TakeSettings,
    UniswapV3Settings,
    VenueSettings,
    parse_config,
)

CONFIG_DIR = Path(__file__).parent


def load_yaml(path: str | Path) -> Dict[str, Any]:
    """
    Load a YAML configuration file.

    Args:
        path: Absolute path, or a file name inside the config directory

    Returns:
        Parsed YAML as dict
    """
    filepath = Path(path)
    if not filepath.is_absolute() and not filepath.exists():
        filepath = CONFIG_DIR / filepath
    if not filepath.exists():
        raise ConfigError("Config file not found", errors=[f"missing config file: {path}"])

    with open(filepath, "r", encoding="utf-8") as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError("Config file is not valid YAML", errors=[f"invalid yaml: {e}"]) from e


def load_config(path: str | Path) -> KeeperConfig:
    """
    Load and validate the keeper configuration.

    Environment variables from a .env file are loaded first so ${VAR}
    placeholders resolve.

    Raises:
        ConfigError: File missing, unparsable, or any field invalid
    """
    load_dotenv()
    return parse_config(load_yaml(path))


__all__ = [
    "ConstantProductSettings",
    "KeeperConfig",
    "KickSettings",
    "OneInchSettings",
    "PoolConfig",
    "PriceOrigin",
    "RetrySettings",
    "SettlementSettings",
    "TakeSettings",
    "UniswapV3Settings",
    "VenueSettings",
    "load_config",
    "load_yaml",
    "parse_config",
]
