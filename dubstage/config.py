"""
Configuration
=============

Plain nested dict loaded from config.yaml and merged over DEFAULT_CONFIG.
Consumers read it with config.get("section", {}).get("key", default).
"""

import copy
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

DEFAULT_CONFIG: dict = {
    "paths": {
        "state_dir": "./state",
    },
    "queues": {
        "redis_url": "redis://localhost:6379/0",
        "channel_prefix": "dubbing:",
    },
    "engine": {
        "request_timeout_sec": 3600,
    },
    "orchestrator": {
        "persist_progress": True,
    },
    "logging": {
        "level": "INFO",
    },
}


def _merge(base: dict, override: dict) -> dict:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def load_config(path: "Optional[str | Path]" = None) -> dict:
    """Load configuration, falling back to defaults when the file is missing"""
    config = copy.deepcopy(DEFAULT_CONFIG)
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            _merge(config, yaml.safe_load(f) or {})
    return config
