"""Reconciliation passes: resolve the CA, enumerate targets, queue convergence."""

import logging
import socket
from typing import Callable, List, Optional

import httpx

from trustsync.errors import AcquisitionFailed, CANotFound, ReadinessTimeout, RuntimeUnavailable
from trustsync.models.ca import CAEndpoint, ContainerInfo
from trustsync.models.config import AppConfig, RunMode
from trustsync.models.target import ConvergenceOutcome, PassReport, TargetKind, TrustTarget
from trustsync.services.ca_resolver import CAResolver
from trustsync.services.context_service import ContextService, RuntimeContext
from trustsync.services.credentials import CredentialAcquirer
from trustsync.services.readiness import IN_CONTAINER_BASE_URL, ReadinessGate, build_ca_http_client, exec_fetch
from trustsync.services.runtime_client import RuntimeHandle
from trustsync.services.status_service import StatusService
from trustsync.services.target_shell import ContainerShell, LocalShell, TargetShell
from trustsync.services.trust_applicator import TrustApplicator
from trustsync.services.work_queue import ConvergenceQueue, WorkItem
from trustsync.utils.validators import is_truthy

logger = logging.getLogger("trustsync")


class Reconciler:
    """Shared engine behind every trigger.

    A pass re-resolves the CA endpoint from scratch, then queues every
    target (or the given subset) for convergence. Failures that prevent
    endpoint resolution skip the pass; they never propagate to triggers.
    """

    def __init__(
        self,
        config: AppConfig,
        runtime: RuntimeHandle,
        status: StatusService,
        http_client: Optional[httpx.Client] = None,
        sleep: Optional[Callable[[float], bool]] = None,
        context_service: Optional[ContextService] = None,
        hostname: Optional[str] = None,
    ):
        """
        Initialize reconciler.

        Args:
            config: Application configuration
            runtime: Runtime handle shared with the triggers
            status: Status registry receiving pass reports and outcomes
            http_client: Client for the CA API (TLS verification disabled)
            sleep: Interruptible wait used by every bounded poll
            context_service: Operator context reader (host mode)
            hostname: Name reported for the host target
        """
        self.config = config
        self.runtime = runtime
        self.status = status
        self.http = http_client or build_ca_http_client(config.discovery)
        self.context_service = context_service or ContextService(config.host)
        self.hostname = hostname or socket.gethostname()

        self.resolver = CAResolver(runtime, config.discovery)
        self.gate = ReadinessGate(config.discovery, self.http, sleep)
        self.credentials = CredentialAcquirer(runtime, self.http)
        self.applicator = TrustApplicator(self.credentials, config.trust, config.host, self.shell_for, sleep)
        self.queue = ConvergenceQueue(self.handle, config.triggers.worker_count, config.triggers.queue_size)
        self.context: Optional[RuntimeContext] = None

    @property
    def host_mode(self) -> bool:
        return self.config.mode == RunMode.HOST

    def shell_for(self, target: TrustTarget) -> TargetShell:
        if target.kind == TargetKind.HOST:
            return LocalShell(use_sudo=self.config.host.use_sudo)
        return ContainerShell(self.runtime, target.id)

    def refresh_context(self) -> RuntimeContext:
        """
        Re-read the operator's context and follow its runtime endpoint.

        Returns:
            The current context snapshot
        """
        snapshot = self.context_service.snapshot()
        if self.context is None or snapshot != self.context:
            logger.info(f"Using docker context '{snapshot.context}' for user {snapshot.user}")
        self.context = snapshot
        self.runtime.rebind(snapshot.docker_host or self.config.runtime.docker_host)
        return snapshot

    def find_ca_container(self) -> Optional[ContainerInfo]:
        return self.resolver.resolve_container()

    def resolve_endpoint(self, wait: bool = True, timeout_seconds: Optional[int] = None) -> CAEndpoint:
        """
        Resolve the CA for one pass.

        An explicitly configured URL and fingerprint bypass discovery and
        readiness entirely.

        Args:
            wait: Gate on readiness before acquiring the fingerprint
            timeout_seconds: Readiness budget; defaults to the bootstrap timeout

        Returns:
            Endpoint with fingerprint

        Raises:
            CANotFound: If no container could be identified as the CA
            ReadinessTimeout: If the CA never became ready
            AcquisitionFailed: If no fingerprint could be obtained
            RuntimeUnavailable: If the runtime cannot be queried
        """
        discovery = self.config.discovery
        if discovery.has_override:
            endpoint = CAEndpoint.from_override(discovery.ca_url, discovery.fingerprint)
            logger.info(f"Using configured step-ca {endpoint.base_url}, skipping discovery")
            return endpoint

        container = self.resolver.resolve_container()
        if container is None:
            raise CANotFound("No step-ca container found")

        endpoint = CAEndpoint.from_container(container.id, container.name)
        logger.info(f"Found step-ca container: {container.name} ({container.id[:12]})")

        if wait:
            if self.host_mode:
                fetch = exec_fetch(self.runtime, container.id, discovery.request_timeout_seconds)
                self.gate.wait_until_ready(IN_CONTAINER_BASE_URL, timeout_seconds, fetch)
            else:
                self.gate.wait_until_ready(endpoint.base_url, timeout_seconds)

        return endpoint.with_fingerprint(self.credentials.get_fingerprint(endpoint))

    def is_opted_in(self, container: ContainerInfo) -> bool:
        return is_truthy(container.env_dict.get(self.config.triggers.opt_in_variable, ""))

    def host_target(self) -> TrustTarget:
        context = self.context or self.refresh_context()
        return TrustTarget.for_host(self.hostname, context.user, context.context)

    def target_for(self, container_id: str) -> Optional[TrustTarget]:
        """
        Build a target for a single container if it is running and opted in.

        Returns:
            Target, or None if the container is gone, stopped or not opted in
        """
        info = self.runtime.inspect(container_id)
        if info is None or not info.running or not self.is_opted_in(info):
            return None
        return TrustTarget.for_container(info.id, info.name)

    def enumerate_targets(self, endpoint: Optional[CAEndpoint] = None) -> List[TrustTarget]:
        """
        List every target that should trust the CA.

        Args:
            endpoint: Current CA; its own container is never a target

        Returns:
            The host target in host mode, else all running opted-in containers
        """
        if self.host_mode:
            return [self.host_target()]

        ca_id = endpoint.container_id if endpoint else None
        targets = [
            TrustTarget.for_container(c.id, c.name)
            for c in self.runtime.list_containers()
            if c.running and c.id != ca_id and self.is_opted_in(c)
        ]
        logger.debug(f"Found {len(targets)} container(s) with {self.config.triggers.opt_in_variable} enabled")
        return targets

    def run_pass(
        self, trigger: str, targets: Optional[List[TrustTarget]] = None, wait: bool = True
    ) -> PassReport:
        """
        Run one reconciliation pass.

        Args:
            trigger: Name of the trigger, for logs and reports
            targets: Subset to converge; all targets if None
            wait: Gate on CA readiness first

        Returns:
            Report of what was queued, or why the pass was skipped
        """
        report = PassReport(trigger=trigger)
        try:
            if self.host_mode:
                self.refresh_context()
            endpoint = self.resolve_endpoint(wait=wait)
            if targets is None:
                targets = self.enumerate_targets(endpoint)
                removed = self.status.prune_outcomes(target.id for target in targets)
                if removed:
                    logger.debug(f"Dropped status of {removed} target(s) no longer present")
        except CANotFound as e:
            logger.warning(f"Pass '{trigger}' skipped: {e}")
            report.skipped_reason = str(e)
        except (RuntimeUnavailable, ReadinessTimeout, AcquisitionFailed) as e:
            logger.error(f"Pass '{trigger}' skipped, will retry on next trigger: {e}")
            report.skipped_reason = str(e)
        else:
            report.endpoint = endpoint.display_name
            for target in targets:
                if self.queue.submit(WorkItem(target, endpoint, trigger)):
                    report.targets.append(target.display_name)
            logger.info(f"Pass '{trigger}' queued {len(report.targets)} target(s) against {endpoint.display_name}")

        self.status.record_pass(report)
        return report

    def handle(self, item: WorkItem) -> ConvergenceOutcome:
        """Queue handler: converge one target and record the outcome."""
        outcome = self.applicator.converge(item.target, item.endpoint)
        self.status.record_outcome(outcome)
        return outcome

    def close(self) -> None:
        self.queue.stop()
        self.runtime.close()
        self.http.close()
