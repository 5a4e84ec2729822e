"""Exception types raised by the reconciliation engine."""

from typing import Optional


class TrustSyncError(Exception):
    """Base class for all trustsync errors."""


class ConfigurationError(TrustSyncError):
    """Unrecoverable configuration problem detected at startup."""


class RuntimeUnavailable(TrustSyncError):
    """The container runtime socket/endpoint cannot be reached."""


class CANotFound(TrustSyncError):
    """No container could be identified as the step-ca instance."""


class ReadinessTimeout(TrustSyncError):
    """The CA was discovered but never became ready within the budget."""

    def __init__(self, base_url: str, attempts: int):
        self.base_url = base_url
        self.attempts = attempts
        super().__init__(f"step-ca at {base_url} not ready after {attempts} attempts")


class AcquisitionFailed(TrustSyncError):
    """Neither the primary nor the fallback credential method succeeded."""


class UnknownOS(TrustSyncError):
    """The operating system family of a target could not be detected."""

    def __init__(self, target: str):
        self.target = target
        super().__init__(f"Could not detect OS for {target}")


class ConvergenceFailed(TrustSyncError):
    """A required convergence step failed for a single target."""

    def __init__(self, step: str, reason: str, target: Optional[str] = None):
        self.step = step
        self.reason = reason
        self.target = target
        prefix = f"{target}: " if target else ""
        super().__init__(f"{prefix}{step} failed: {reason}")
