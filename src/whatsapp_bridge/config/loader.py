"""
Bridge Configuration Loader

Loads configuration from YAML files with environment variable interpolation,
then applies the bridge's environment variable overrides.

Environment Variable Interpolation:
- ${VAR_NAME} - Required variable, raises error if not set
- ${VAR_NAME:-default} - Optional variable with default value

Environment Overrides (applied last):
    PORT, LOG_LEVEL, SEND_MODE, AUTH_PATH, ENGINE_HTTP_URL, ENGINE_WS_URL,
    N8N_WEBHOOK_URL, HF_ACCESS_TOKEN, SUPABASE_URL, SUPABASE_KEY
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from .schema import BridgeConfig

logger = logging.getLogger(__name__)

# Pattern for environment variable substitution: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')

# env var -> (section, key)
ENV_OVERRIDES = {
    "PORT": ("server", "port"),
    "SEND_MODE": ("server", "send_mode"),
    "LOG_LEVEL": ("logging", "level"),
    "AUTH_PATH": ("session", "auth_path"),
    "ENGINE_HTTP_URL": ("session", "engine_http_url"),
    "ENGINE_WS_URL": ("session", "engine_ws_url"),
    "N8N_WEBHOOK_URL": ("webhook", "url"),
    "HF_ACCESS_TOKEN": ("webhook", "token"),
    "SUPABASE_URL": ("supabase", "url"),
    "SUPABASE_KEY": ("supabase", "key"),
}


def interpolate_env_vars(value: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """
    Recursively interpolate environment variables in configuration values.

    Supports:
    - ${VAR_NAME} - Required, raises KeyError if not set
    - ${VAR_NAME:-default} - Optional with default value
    """
    environ = os.environ if environ is None else environ

    if isinstance(value, str):
        def replace_env_var(match):
            var_name = match.group(1)
            default_value = match.group(2)

            env_value = environ.get(var_name)

            if env_value is not None:
                return env_value
            elif default_value is not None:
                return default_value
            else:
                raise KeyError(
                    f"Environment variable '{var_name}' is required but not set. "
                    f"Set it or provide a default: ${{{var_name}:-default}}"
                )

        return ENV_VAR_PATTERN.sub(replace_env_var, value)

    elif isinstance(value, dict):
        return {k: interpolate_env_vars(v, environ) for k, v in value.items()}

    elif isinstance(value, list):
        return [interpolate_env_vars(item, environ) for item in value]

    else:
        return value


def apply_env_overrides(raw_config: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Overlay the bridge's environment variables onto a raw config dict."""
    environ = os.environ if environ is None else environ

    for var_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var_name)
        if value:
            raw_config.setdefault(section, {})
            raw_config[section][key] = value

    return raw_config


def load_config_from_file(
    config_path: Union[str, Path],
    interpolate: bool = True,
    environ: Optional[Mapping[str, str]] = None,
) -> BridgeConfig:
    """
    Load bridge configuration from a YAML file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        KeyError: If required environment variable is not set
        ValueError: If a value is invalid (e.g. an unknown send_mode)
        yaml.YAMLError: If YAML is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raw_config = {}

    if interpolate:
        try:
            raw_config = interpolate_env_vars(raw_config, environ)
        except KeyError as e:
            logger.error(f"Configuration error: {e}")
            raise

    return BridgeConfig.from_dict(apply_env_overrides(raw_config, environ))


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> BridgeConfig:
    """
    Load bridge configuration with sensible defaults.

    Search order for configuration:
    1. Explicit config_path if provided
    2. bridge.yaml in current directory
    3. config/bridge.yaml in current directory
    4. Defaults + environment
    """
    if config_path:
        return load_config_from_file(config_path, environ=environ)

    cwd = Path.cwd()
    for path in (cwd / "bridge.yaml", cwd / "config" / "bridge.yaml"):
        if path.exists():
            logger.info(f"Found configuration at {path}")
            return load_config_from_file(path, environ=environ)

    logger.info("No bridge.yaml found, using defaults and environment")
    return BridgeConfig.from_dict(apply_env_overrides({}, environ))
