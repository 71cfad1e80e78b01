"""Configuration loading utilities for the BrandHive server.

This module handles layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable BRANDHIVE_CONFIG
3. Fallback to "config.yaml"

It also supports overrides from environment variables with prefix
``BRANDHIVE__`` (e.g., BRANDHIVE__DATA__ROOT=/srv/brandhive).
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "BRANDHIVE__"
ENV_CONFIG_PATH = "BRANDHIVE_CONFIG"
DEFAULT_CONFIG_PATH = "config.yaml"

DEFAULTS: Dict[str, Any] = {
    "data": {"root": "data"},
    "memory": {"use_jsonl": False},
    "llm": {"model_dir": "models", "model_path": ""},
    "server": {"cors_origins": ["*"]},
}


def _coerce(value: str) -> Any:
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    try:
        return float(value) if "." in value else int(value)
    except ValueError:
        return value


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix BRANDHIVE__."""
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        # e.g., BRANDHIVE__LLM__MODEL_PATH -> cfg["llm"]["model_path"]
        parts = key[len(ENV_PREFIX):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        sub[parts[-1]] = _coerce(value)
    return cfg


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load YAML configuration for the server.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``BRANDHIVE_CONFIG`` is consulted. As a last
        resort ``config.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Parsed configuration dictionary with environment overrides applied.
    """
    if path is None:
        path = os.environ.get(ENV_CONFIG_PATH, DEFAULT_CONFIG_PATH)

    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("Config file not found at %s. Using defaults.", path_obj)
        return _apply_env_overrides(copy.deepcopy(DEFAULTS))

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RuntimeError(f"Failed to parse config file {path_obj}: {e}") from e

    if not isinstance(cfg, dict):
        raise RuntimeError(f"Invalid config format in {path_obj}, expected dict.")

    return _apply_env_overrides(cfg)
