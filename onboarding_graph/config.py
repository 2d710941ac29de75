"""
SERVICE CONFIGURATION
Defaults, overlaid by an optional YAML file, overlaid by ONBOARDING_* env vars.
"""
import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger("Onboarding.Config")


class ConfigError(Exception):
    """Raised when a configuration value cannot be parsed."""
    pass


@dataclass
class OnboardingConfig:
    max_retries: int = 3
    session_timeout_seconds: float = 24 * 60 * 60.0
    discriminator_field: str = "business_type"
    default_discriminator: str = "individual"
    requirements_path: Optional[str] = None
    storage_path: Optional[str] = None
    log_level: str = "INFO"
    event_history_limit: int = 500


# env var -> (field, parser)
ENV_OVERRIDES = {
    "ONBOARDING_MAX_RETRIES": ("max_retries", int),
    "ONBOARDING_SESSION_TIMEOUT": ("session_timeout_seconds", float),
    "ONBOARDING_DISCRIMINATOR_FIELD": ("discriminator_field", str),
    "ONBOARDING_DEFAULT_DISCRIMINATOR": ("default_discriminator", str),
    "ONBOARDING_REQUIREMENTS_PATH": ("requirements_path", str),
    "ONBOARDING_STORAGE_PATH": ("storage_path", str),
    "ONBOARDING_LOG_LEVEL": ("log_level", str),
}


def _coerce(name: str, raw: Any, parser) -> Any:
    try:
        return parser(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {raw!r} ({e})")


def load_config(path: Optional[str] = None, env: Optional[Dict[str, str]] = None) -> OnboardingConfig:
    """
    Build the effective configuration.

    Args:
        path: Optional YAML file; a missing file falls back to defaults
        env: Environment mapping (defaults to os.environ)
    """
    config = OnboardingConfig()
    known = {f.name: f for f in fields(OnboardingConfig)}

    if path:
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning(f"Config not found: {path}. Using defaults.")
            data = {}
        for key, value in data.get("onboarding", data).items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key: {key}")
                continue
            default = getattr(OnboardingConfig, key, None)
            parser = type(default) if default is not None else str
            setattr(config, key, value if value is None else _coerce(key, value, parser))

    env = os.environ if env is None else env
    for var, (name, parser) in ENV_OVERRIDES.items():
        if env.get(var):
            setattr(config, name, _coerce(var, env[var], parser))
            logger.info(f"{var} override: {name}={getattr(config, name)!r}")

    if config.max_retries < 0:
        raise ConfigError(f"max_retries must be >= 0, got {config.max_retries}")
    return config
