"""CA and container runtime data models."""

from datetime import datetime
from typing import Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field

CA_PORT = 9000


class ContainerInfo(BaseModel):
    """Runtime view of a single container."""

    id: str
    name: str
    labels: Dict[str, str] = Field(default_factory=dict)
    env: List[str] = Field(default_factory=list)
    ports: List[int] = Field(default_factory=list)
    status: str = "unknown"

    class Config:
        """Pydantic config."""

        frozen = True

    @property
    def running(self) -> bool:
        return self.status == "running"

    @property
    def env_dict(self) -> Dict[str, str]:
        """Environment as a mapping; entries without ``=`` map to an empty string."""
        result = {}
        for entry in self.env:
            key, _, value = entry.partition("=")
            result[key] = value
        return result

    def has_env_prefix(self, prefix: str) -> bool:
        return any(entry.startswith(prefix) for entry in self.env)

    def publishes_port(self, port: int) -> bool:
        return port in self.ports


class ContainerEvent(BaseModel):
    """A lifecycle event from the runtime event stream."""

    action: str
    container_id: str
    name: str = ""
    time: Optional[datetime] = None


class CAEndpoint(BaseModel):
    """Resolved identity of the certificate authority for one pass."""

    container_id: Optional[str] = None
    display_name: str
    base_url: str
    fingerprint: Optional[str] = None
    root_certificate: Optional[str] = None

    class Config:
        """Pydantic config."""

        frozen = True

    @classmethod
    def from_container(cls, container_id: str, name: str) -> "CAEndpoint":
        """
        Build an endpoint for a discovered CA container.

        Args:
            container_id: Runtime identifier of the CA container
            name: Container name, reachable on the shared network

        Returns:
            Endpoint with ``https://<name>:9000`` as base URL
        """
        return cls(container_id=container_id, display_name=name, base_url=f"https://{name}:{CA_PORT}")

    @classmethod
    def from_override(cls, url: str, fingerprint: str) -> "CAEndpoint":
        """Build an endpoint from explicitly configured URL and fingerprint."""
        base_url = url.rstrip("/")
        host = urlparse(base_url).hostname or base_url
        return cls(container_id=None, display_name=host, base_url=base_url, fingerprint=fingerprint)

    def with_fingerprint(self, fingerprint: str) -> "CAEndpoint":
        return self.model_copy(update={"fingerprint": fingerprint})

    def with_root_certificate(self, pem: str) -> "CAEndpoint":
        return self.model_copy(update={"root_certificate": pem})

    @property
    def health_url(self) -> str:
        return f"{self.base_url}/health"
