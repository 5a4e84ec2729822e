"""Trust target and convergence result models."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class TargetKind(str, Enum):
    """Kinds of trust targets."""

    CONTAINER = "container"
    HOST = "host"


class ConvergenceStatus(str, Enum):
    """Final state of one convergence attempt."""

    CONVERGED = "converged"
    SKIPPED = "skipped"
    FAILED = "failed"
    UNKNOWN_OS = "unknown_os"


class ConvergenceStep(str, Enum):
    """Steps of the convergence procedure, in execution order."""

    RUNNING_CHECK = "running_check"
    RESPONSIVENESS = "responsiveness"
    OS_DETECTION = "os_detection"
    CERTIFICATE = "certificate"
    PACKAGE_INSTALL = "package_install"
    PLACE_CERTIFICATE = "place_certificate"
    TRUST_UPDATE = "trust_update"
    VERIFY = "verify"
    DONE = "done"


class TrustTarget(BaseModel):
    """A container or host that should trust the CA."""

    id: str
    display_name: str
    kind: TargetKind
    identity_key: str
    user: Optional[str] = None
    context: Optional[str] = None

    class Config:
        """Pydantic config."""

        frozen = True

    @classmethod
    def for_container(cls, container_id: str, name: str) -> "TrustTarget":
        return cls(id=container_id, display_name=name, kind=TargetKind.CONTAINER, identity_key=container_id)

    @classmethod
    def for_host(cls, hostname: str, user: str, context: str) -> "TrustTarget":
        return cls(
            id=f"host:{hostname}",
            display_name=hostname,
            kind=TargetKind.HOST,
            identity_key=f"{user}-{context}",
            user=user,
            context=context,
        )

    def __str__(self) -> str:
        return f"{self.kind.value} {self.display_name} ({self.id[:12]})"


class ConvergenceOutcome(BaseModel):
    """Reported result of converging one target."""

    target_id: str
    target_name: str
    status: ConvergenceStatus
    step: ConvergenceStep
    reason: Optional[str] = None
    os_family: Optional[str] = None
    certificate_path: Optional[str] = None
    verified: Optional[bool] = None
    finished_at: datetime = Field(default_factory=datetime.now)

    @property
    def ok(self) -> bool:
        return self.status in (ConvergenceStatus.CONVERGED, ConvergenceStatus.SKIPPED)


class PassReport(BaseModel):
    """Summary of one reconciliation pass."""

    trigger: str
    started_at: datetime = Field(default_factory=datetime.now)
    endpoint: Optional[str] = None
    targets: List[str] = Field(default_factory=list)
    skipped_reason: Optional[str] = None
