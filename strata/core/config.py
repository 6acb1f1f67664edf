"""Centralized configuration loading for strata.

This module provides utilities for loading and accessing configuration from strata.json
with support for environment variable fallbacks and default values.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

DEFAULT_CONFIG_PATH = "strata.json"


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from JSON file.

    Returns empty dict if file doesn't exist or is invalid.

    Args:
        config_path: Path to config file (default: $STRATA_CONFIG or "strata.json")

    Returns:
        Configuration dictionary, or empty dict if file not found/invalid
    """
    if config_path is None:
        config_path = os.environ.get("STRATA_CONFIG", DEFAULT_CONFIG_PATH)
    path = Path(config_path)

    if not path.exists():
        return {}

    try:
        with open(path, "r") as f:
            return json.load(f)
    except (json.JSONDecodeError, IOError):
        # Return empty dict on error, allowing code to use defaults
        return {}


def get_config_value(
    keys: List[str], default: Any = None, config: Optional[Dict[str, Any]] = None
) -> Any:
    """Get nested configuration value with fallback to environment variable.

    Supports key paths like ["policy", "max_writers"] or ["network", "service_port"].
    Also checks environment variables as fallback (e.g., STRATA_POLICY_MAX_WRITERS
    for policy.max_writers).

    Args:
        keys: List of keys to traverse (e.g., ["probes", "http_path"])
        default: Default value if key not found
        config: Optional config dict (uses load_config() if not provided)

    Returns:
        Configuration value, or default if not found
    """
    if config is None:
        config = load_config()

    value = config
    for key in keys:
        if isinstance(value, dict):
            value = value.get(key)
            if value is None:
                break
        else:
            value = None
            break

    if value is not None:
        return value

    env_key = "STRATA_" + "_".join(k.upper() for k in keys)
    env_value = os.environ.get(env_key)
    if env_value is not None:
        return env_value

    return default


def get_int_config_value(
    keys: List[str], default: int, config: Optional[Dict[str, Any]] = None
) -> int:
    """Same as get_config_value, coerced to int (env vars arrive as strings).

    Raises:
        ValueError: If the configured value is not an integer
    """
    value = get_config_value(keys, default=default, config=config)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Config value {'.'.join(keys)} must be an integer, got {value!r}")
