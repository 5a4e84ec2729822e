"""Service layer: discovery, readiness, credentials, convergence and triggers."""

from .bootstrap import BootstrapService
from .ca_resolver import CAResolver
from .context_service import ContextService
from .credentials import CredentialAcquirer
from .engine import ReconciliationService
from .readiness import ReadinessGate
from .reconciler import Reconciler
from .runtime_client import RuntimeClient, RuntimeHandle
from .status_service import StatusService
from .trust_applicator import TrustApplicator
from .yaml_service import YAMLService

__all__ = [
    "YAMLService",
    "RuntimeClient",
    "RuntimeHandle",
    "CAResolver",
    "ReadinessGate",
    "CredentialAcquirer",
    "TrustApplicator",
    "ContextService",
    "Reconciler",
    "BootstrapService",
    "StatusService",
    "ReconciliationService",
]
