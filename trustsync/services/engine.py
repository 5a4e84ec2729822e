"""Lifecycle of the reconciliation engine: bootstrap, triggers, shutdown."""

import logging
import threading
from typing import Callable, List, Optional

from trustsync.errors import TrustSyncError
from trustsync.models.config import AppConfig, RunMode
from trustsync.services.bootstrap import BootstrapService
from trustsync.services.context_service import ContextService
from trustsync.services.reconciler import Reconciler
from trustsync.services.runtime_client import RuntimeClient, RuntimeHandle
from trustsync.services.status_service import StatusService
from trustsync.services.triggers import ContextWatcher, EventTrigger, SweepTrigger, Trigger

logger = logging.getLogger("trustsync")


class ReconciliationService:
    """Owns the reconciler, the worker pool and every trigger.

    ``start`` returns immediately; bootstrap and trigger startup happen on
    a background thread so the status API is served meanwhile.
    """

    def __init__(
        self,
        config: AppConfig,
        status: Optional[StatusService] = None,
        connect: Optional[Callable[[Optional[str]], RuntimeClient]] = None,
        reconciler: Optional[Reconciler] = None,
    ):
        """
        Initialize service.

        Args:
            config: Application configuration
            status: Status registry; a new one is created if None
            connect: Runtime client factory (daemon URL -> client)
            reconciler: Pre-built reconciler, mainly for tests
        """
        self.config = config
        self.status = status or StatusService()
        self._stop_event = threading.Event()
        self.context_service = ContextService(config.host)

        if reconciler is None:
            connect = connect or (lambda url: RuntimeClient.connect(config.runtime, url))
            runtime = RuntimeHandle(connect, config.runtime.docker_host)
            reconciler = Reconciler(
                config,
                runtime,
                self.status,
                sleep=self._stop_event.wait,
                context_service=self.context_service,
            )
        self.reconciler = reconciler
        self.triggers: List[Trigger] = []
        self._startup: Optional[threading.Thread] = None

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def build_triggers(self) -> List[Trigger]:
        """Create the triggers enabled for the configured mode."""
        config = self.config
        triggers: List[Trigger] = []

        events = None
        if config.triggers.event_stream_enabled:
            events = EventTrigger(self.reconciler, self._stop_event)
            triggers.append(events)

        if config.mode == RunMode.HOST:
            interval = config.host.sweep_interval_seconds
        else:
            interval = config.triggers.sweep_interval_seconds
        if config.triggers.sweep_enabled:
            triggers.append(SweepTrigger(self.reconciler, interval, stop_event=self._stop_event))

        if config.mode == RunMode.HOST:
            callbacks = [lambda context: self.reconciler.run_pass("context-change")]
            if events is not None:
                callbacks.insert(0, lambda context: events.restart())
            triggers.append(
                ContextWatcher(self.context_service, config.host.context_poll_seconds, callbacks, self._stop_event)
            )
        return triggers

    def start(self) -> None:
        """Start workers, then bootstrap and triggers in the background."""
        self.status.mark_started(self.config.mode.value)
        self.reconciler.queue.start()
        self._startup = threading.Thread(target=self._run_startup, name="trustsync-startup", daemon=True)
        self._startup.start()

    def _run_startup(self) -> None:
        if self.config.mode == RunMode.CONTAINER and self.config.bootstrap.enabled:
            self.bootstrap()
        if self.stopping:
            return

        self.triggers = self.build_triggers()
        for trigger in self.triggers:
            trigger.start()
            self.status.set_trigger(trigger.name, True)
        logger.info(f"Reconciliation engine running in {self.config.mode.value} mode")

    def bootstrap(self) -> bool:
        """
        Trust the CA locally before serving targets.

        Returns:
            True if bootstrap succeeded; failures are logged, not raised
        """
        try:
            BootstrapService(self.reconciler, self.config.bootstrap).run()
            return True
        except TrustSyncError as e:
            logger.warning(f"Bootstrap failed, continuing without local trust: {e}")
            return False

    def stop(self) -> None:
        """Stop triggers, let in-flight convergence finish and release resources."""
        logger.info("Stopping reconciliation engine")
        self._stop_event.set()
        for trigger in self.triggers:
            trigger.stop()
            self.status.set_trigger(trigger.name, False)
        if self._startup is not None:
            self._startup.join(timeout=10)
        self.reconciler.close()
