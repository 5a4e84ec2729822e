"""Application configuration models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class RunMode(str, Enum):
    """Which trust variant the process runs."""

    CONTAINER = "container"
    HOST = "host"


class CertificateSource(str, Enum):
    """Which CA certificate is installed on targets."""

    INTERMEDIATE = "intermediate"
    ROOT = "root"


class AppSettings(BaseModel):
    """Application settings."""

    title: str = "step-ca trustsync"
    version: str = "1.0.0"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8080


class DiscoveryConfig(BaseModel):
    """How the CA is located.

    When both ``ca_url`` and ``fingerprint`` are set, discovery and the
    readiness gate are bypassed entirely.
    """

    container_name: Optional[str] = None
    ca_url: Optional[str] = None
    fingerprint: Optional[str] = None
    bootstrap_timeout_seconds: int = Field(default=300, gt=0)
    readiness_interval_seconds: float = Field(default=5, gt=0)
    request_timeout_seconds: float = Field(default=5, gt=0)

    @property
    def has_override(self) -> bool:
        """Whether an explicit URL and fingerprint were both supplied."""
        return bool(self.ca_url) and bool(self.fingerprint)


class RuntimeSettings(BaseModel):
    """Container runtime connection settings."""

    docker_host: Optional[str] = None
    timeout_seconds: int = Field(default=30, gt=0)


class TriggerSettings(BaseModel):
    """Reconciliation trigger settings (container mode)."""

    event_stream_enabled: bool = True
    sweep_enabled: bool = True
    sweep_interval_seconds: int = Field(default=21600, gt=0)
    worker_count: int = Field(default=4, ge=1)
    queue_size: int = Field(default=256, ge=1)
    opt_in_variable: str = "STEP_CA_TRUST"


class TrustSettings(BaseModel):
    """How certificates are placed on targets."""

    certificate_source: CertificateSource = CertificateSource.INTERMEDIATE
    package: str = "ca-certificates"
    container_file_name: str = "step-ca-intermediate.crt"
    responsiveness_attempts: int = Field(default=30, ge=1)
    responsiveness_interval_seconds: float = Field(default=2, gt=0)
    verify: bool = True


class HostSettings(BaseModel):
    """Host trust variant settings."""

    user: Optional[str] = None
    context: Optional[str] = None
    record_prefix: str = "step-ca-intermediate"
    docker_config_dir: Optional[str] = None
    context_poll_seconds: float = Field(default=10, gt=0)
    sweep_interval_seconds: int = Field(default=30, gt=0)
    use_sudo: bool = True


class BootstrapSettings(BaseModel):
    """Self-trust performed once at startup in container mode."""

    enabled: bool = True
    file_name: str = "step-ca-root.crt"


class LoggingSettings(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


class AppConfig(BaseModel):
    """Main application configuration."""

    mode: RunMode = RunMode.CONTAINER
    app: AppSettings = AppSettings()
    discovery: DiscoveryConfig = DiscoveryConfig()
    runtime: RuntimeSettings = RuntimeSettings()
    triggers: TriggerSettings = TriggerSettings()
    trust: TrustSettings = TrustSettings()
    host: HostSettings = HostSettings()
    bootstrap: BootstrapSettings = BootstrapSettings()
    logging: LoggingSettings = LoggingSettings()
