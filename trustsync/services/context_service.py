"""Operator identity and active runtime context for the host trust variant."""

import getpass
import hashlib
import json
import logging
import os
from pathlib import Path
from typing import NamedTuple, Optional

from trustsync.models.config import HostSettings

logger = logging.getLogger("trustsync")

DEFAULT_CONTEXT = "default"
DEFAULT_DOCKER_HOST = "unix:///var/run/docker.sock"


class RuntimeContext(NamedTuple):
    """Snapshot of which runtime the operator is currently pointed at."""

    user: str
    context: str
    docker_host: Optional[str]


class ContextService:
    """Reads the operator's docker CLI configuration."""

    def __init__(self, settings: HostSettings):
        self.settings = settings
        base = settings.docker_config_dir or os.environ.get("DOCKER_CONFIG") or "~/.docker"
        self.config_dir = Path(base).expanduser()

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.json"

    def current_user(self) -> str:
        """
        Operator name used in host trust record names.

        Returns:
            Configured user, else ``CERT_USER``, else the login name
        """
        return self.settings.user or os.environ.get("CERT_USER") or getpass.getuser()

    def current_context(self) -> str:
        """
        Active docker context.

        A configured or ``DOCKER_CONTEXT`` value wins over the
        ``currentContext`` entry of ``config.json``; missing or unreadable
        configuration means ``default``.
        """
        forced = self.settings.context or os.environ.get("DOCKER_CONTEXT")
        if forced:
            return forced

        try:
            data = json.loads(self.config_file.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return DEFAULT_CONTEXT
        except (OSError, ValueError) as e:
            logger.warning(f"Cannot read docker config {self.config_file}: {e}, assuming '{DEFAULT_CONTEXT}' context")
            return DEFAULT_CONTEXT

        context = data.get("currentContext") if isinstance(data, dict) else None
        return context or DEFAULT_CONTEXT

    def docker_host_for(self, context: str) -> Optional[str]:
        """
        Runtime endpoint for a named context.

        Args:
            context: Context name

        Returns:
            ``Endpoints.docker.Host`` from the context metadata, or None to
            use the environment defaults (``DOCKER_HOST`` or local socket)
        """
        if context == DEFAULT_CONTEXT:
            return None

        digest = hashlib.sha256(context.encode("utf-8")).hexdigest()
        meta_file = self.config_dir / "contexts" / "meta" / digest / "meta.json"
        try:
            meta = json.loads(meta_file.read_text(encoding="utf-8"))
            host = meta["Endpoints"]["docker"]["Host"]
        except FileNotFoundError:
            logger.warning(f"No metadata for docker context '{context}' at {meta_file}")
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Cannot read docker context '{context}' metadata: {e}")
            return None
        return host or None

    def snapshot(self) -> RuntimeContext:
        context = self.current_context()
        return RuntimeContext(user=self.current_user(), context=context, docker_host=self.docker_host_for(context))

    def config_mtime(self) -> Optional[float]:
        """Modification time of ``config.json``, None if it does not exist."""
        try:
            return self.config_file.stat().st_mtime
        except OSError:
            return None
