"""Data models for trustsync."""

from .ca import CAEndpoint, ContainerEvent, ContainerInfo
from .config import AppConfig, DiscoveryConfig, RunMode
from .os_profile import OSProfile
from .target import (
    ConvergenceOutcome,
    ConvergenceStatus,
    ConvergenceStep,
    PassReport,
    TargetKind,
    TrustTarget,
)

__all__ = [
    "CAEndpoint",
    "ContainerEvent",
    "ContainerInfo",
    "AppConfig",
    "DiscoveryConfig",
    "RunMode",
    "OSProfile",
    "ConvergenceOutcome",
    "ConvergenceStatus",
    "ConvergenceStep",
    "PassReport",
    "TargetKind",
    "TrustTarget",
]
