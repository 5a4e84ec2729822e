"""FastAPI dependencies and configuration loading."""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import ValidationError

from trustsync.errors import ConfigurationError
from trustsync.models.config import AppConfig
from trustsync.services.status_service import StatusService
from trustsync.services.yaml_service import YAMLService

logger = logging.getLogger("trustsync")

CONFIG_PATH_ENV = "TRUSTSYNC_CONFIG"
DEFAULT_CONFIG_PATH = "config.yaml"

# Environment variable -> config key path
ENV_OVERRIDES: Dict[str, Tuple[str, ...]] = {
    "TRUSTSYNC_MODE": ("mode",),
    "STEP_CA_CONTAINER_NAME": ("discovery", "container_name"),
    "STEP_CA_URL": ("discovery", "ca_url"),
    "STEP_CA_FINGERPRINT": ("discovery", "fingerprint"),
    "STEP_CA_BOOTSTRAP_TIMEOUT": ("discovery", "bootstrap_timeout_seconds"),
    "DOCKER_HOST": ("runtime", "docker_host"),
    "CRON_ENABLED": ("triggers", "sweep_enabled"),
    "TRUSTSYNC_SWEEP_INTERVAL": ("triggers", "sweep_interval_seconds"),
    "CERT_USER": ("host", "user"),
    "DOCKER_CONTEXT": ("host", "context"),
    "TRUSTSYNC_LOG_LEVEL": ("logging", "level"),
}


def apply_env_overrides(data: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    """
    Overlay environment variables onto raw configuration data.

    Empty variables are ignored. Values are validated later by the
    pydantic models.

    Args:
        data: Configuration mapping (not modified)
        environ: Environment to read

    Returns:
        New mapping with overrides applied
    """
    merged = {key: dict(value) if isinstance(value, dict) else value for key, value in data.items()}
    for variable, path in ENV_OVERRIDES.items():
        value = environ.get(variable)
        if not value:
            continue
        section = merged
        for key in path[:-1]:
            section = section.setdefault(key, {})
        section[path[-1]] = value
    return merged


def load_config(config_path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """
    Load configuration from YAML (if present) and the environment.

    Args:
        config_path: YAML file; defaults to ``$TRUSTSYNC_CONFIG`` or ``config.yaml``
        environ: Environment; defaults to ``os.environ``

    Returns:
        Application configuration

    Raises:
        ConfigurationError: If the file or the resulting values are invalid
    """
    environ = os.environ if environ is None else environ
    path = config_path or Path(environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)

    data: Dict[str, Any] = {}
    if path.exists():
        try:
            data = YAMLService.load_yaml(path)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Cannot load configuration from {path}: {e}") from e

    try:
        return AppConfig(**apply_env_overrides(data, environ))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


@lru_cache
def get_config() -> AppConfig:
    """
    Get application configuration.

    Returns:
        Application configuration
    """
    return load_config()


@lru_cache
def get_status_service() -> StatusService:
    """
    Get the process-wide status registry.

    Returns:
        Status service
    """
    return StatusService()
