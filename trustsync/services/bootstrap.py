"""One-time self-trust at startup: install the CA root into the local trust store."""

import logging
import socket

from trustsync.errors import ConvergenceFailed
from trustsync.models.config import BootstrapSettings
from trustsync.models.target import ConvergenceOutcome, ConvergenceStep, TargetKind, TrustTarget
from trustsync.services.reconciler import Reconciler
from trustsync.services.target_shell import LocalShell

logger = logging.getLogger("trustsync")


class BootstrapService:
    """Make this process trust the CA before any target work starts."""

    def __init__(self, reconciler: Reconciler, settings: BootstrapSettings):
        self.reconciler = reconciler
        self.settings = settings

    @staticmethod
    def self_target() -> TrustTarget:
        hostname = socket.gethostname()
        return TrustTarget(id="self", display_name=hostname, kind=TargetKind.HOST, identity_key="self")

    def run(self) -> ConvergenceOutcome:
        """
        Resolve the CA, wait for readiness and trust its root certificate.

        Returns:
            Outcome of installing the root into the local trust store

        Raises:
            ReadinessTimeout: If the CA did not become ready in the bootstrap budget
            CANotFound: If no CA container exists
            AcquisitionFailed: If the root certificate could not be obtained
            ConvergenceFailed: If the local trust store could not be updated
        """
        reconciler = self.reconciler
        timeout = reconciler.config.discovery.bootstrap_timeout_seconds
        logger.info(f"Bootstrapping trust in step-ca (timeout: {timeout}s)")

        endpoint = reconciler.resolve_endpoint(wait=True, timeout_seconds=timeout)
        root = reconciler.credentials.get_root_certificate(endpoint)
        endpoint = endpoint.with_root_certificate(root)
        logger.info(f"step-ca fingerprint: {endpoint.fingerprint}")

        shell = LocalShell(use_sudo=reconciler.config.host.use_sudo)
        outcome = reconciler.applicator.converge(
            self.self_target(), endpoint, certificate=root, file_name=self.settings.file_name, shell=shell
        )
        reconciler.status.record_bootstrap(outcome)
        if not outcome.ok:
            raise ConvergenceFailed(outcome.step.value, outcome.reason or outcome.status.value, "local trust store")
        if outcome.step == ConvergenceStep.DONE:
            logger.info(f"step-ca root installed locally as {outcome.certificate_path}")
        return outcome
