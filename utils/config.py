"""
Configuration loading for the launch sniper.

The run configuration lives in a YAML file (``bot_config.yaml`` next to
``main.py`` unless ``BOT_CONFIG_PATH`` says otherwise) and is validated into
:class:`models.bot_config.BotConfig`. Process-level settings stay in the
environment and are read as module constants by each service.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

import yaml  # type: ignore

from models.bot_config import BotConfig
from utils.exceptions import ConfigError


def default_config_path() -> str:
    base_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
    return os.getenv("BOT_CONFIG_PATH", os.path.join(base_dir, "bot_config.yaml"))


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load the raw YAML mapping.

    :returns: A dictionary representing the configuration. Missing files
        yield an empty dictionary.
    """
    config_path = path or default_config_path()
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"{config_path}: se esperaba un mapeo YAML")
        return data
    return {}


def load_bot_config(path: Optional[str] = None) -> BotConfig:
    """Load and validate the run configuration.

    :raises ConfigError: if the file is missing or a field is invalid.
    """
    raw = load_config(path)
    if not raw:
        raise ConfigError(f"Configuración vacía o inexistente: {path or default_config_path()}")
    try:
        return BotConfig.model_validate(raw)
    except ValueError as e:
        raise ConfigError(str(e)) from e
