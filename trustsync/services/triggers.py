"""Reconciliation triggers: runtime events, periodic sweep, context changes."""

import logging
import threading
from typing import Callable, List, Optional

from trustsync.errors import RuntimeUnavailable, TrustSyncError
from trustsync.models.ca import ContainerEvent
from trustsync.services.context_service import ContextService
from trustsync.services.reconciler import Reconciler
from trustsync.services.runtime_client import EventStream

logger = logging.getLogger("trustsync")

START_EVENT_FILTERS = {"type": "container", "event": "start"}
RECONNECT_DELAY_SECONDS = 5


class Trigger:
    """Base class for a trigger running on its own daemon thread."""

    name = "trigger"

    def __init__(self, stop_event: Optional[threading.Event] = None):
        self._stop_event = stop_event or threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the trigger thread."""
        if self.running:
            return
        self._thread = threading.Thread(target=self._guarded_run, name=f"trigger-{self.name}", daemon=True)
        self._thread.start()
        logger.info(f"Trigger '{self.name}' started")

    def stop(self, timeout: Optional[float] = 10) -> None:
        """Signal the trigger to stop and wait for its thread."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            logger.info(f"Trigger '{self.name}' stopped")

    def wait(self, seconds: float) -> bool:
        """Sleep unless stopped; returns True when stop was requested."""
        return self._stop_event.wait(timeout=seconds)

    def _guarded_run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run()
                return
            except Exception as e:
                logger.exception(f"Trigger '{self.name}' crashed, restarting: {e}")
                self.wait(RECONNECT_DELAY_SECONDS)

    def run(self) -> None:
        raise NotImplementedError


class EventTrigger(Trigger):
    """Reacts to container start events.

    A restart of the CA container re-converges every target; the start of
    an opted-in container converges that container only.
    """

    name = "events"

    def __init__(self, reconciler: Reconciler, stop_event: Optional[threading.Event] = None):
        super().__init__(stop_event)
        self.reconciler = reconciler
        self._stream: Optional[EventStream] = None
        self._lock = threading.Lock()

    def stop(self, timeout: Optional[float] = 10) -> None:
        self._stop_event.set()
        self._close_stream()
        super().stop(timeout)

    def restart(self) -> None:
        """Re-subscribe, e.g. after the runtime endpoint changed."""
        logger.info("Re-subscribing to container events")
        self._close_stream()

    def _close_stream(self) -> None:
        with self._lock:
            stream, self._stream = self._stream, None
        if stream is not None:
            stream.close()

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                stream = self.reconciler.runtime.stream_events(START_EVENT_FILTERS)
            except RuntimeUnavailable as e:
                logger.warning(f"Cannot subscribe to container events: {e}, retrying in {RECONNECT_DELAY_SECONDS}s")
                self.wait(RECONNECT_DELAY_SECONDS)
                continue

            with self._lock:
                self._stream = stream
            if self._stop_event.is_set():
                stream.close()
                return

            logger.info("Monitoring container start events")
            ended = False
            try:
                for event in stream:
                    if self._stop_event.is_set():
                        break
                    self.handle(event)
                else:
                    ended = not stream.closed
            except RuntimeUnavailable as e:
                logger.warning(f"{e}, reconnecting in {RECONNECT_DELAY_SECONDS}s")
                self.wait(RECONNECT_DELAY_SECONDS)
            finally:
                stream.close()

            if ended:
                logger.warning(f"Container event stream ended, reconnecting in {RECONNECT_DELAY_SECONDS}s")
                self.wait(RECONNECT_DELAY_SECONDS)

    def handle(self, event: ContainerEvent) -> None:
        """
        Dispatch one start event.

        Args:
            event: Container event from the runtime
        """
        if event.action != "start":
            return

        try:
            ca = self.reconciler.find_ca_container()
            if ca is not None and ca.id == event.container_id:
                logger.info(f"step-ca container {ca.name} started, waiting for readiness before updating targets")
                self.reconciler.run_pass("ca-restart")
                return

            if self.reconciler.host_mode:
                return

            target = self.reconciler.target_for(event.container_id)
            if target is None:
                return
            logger.info(f"Container {target.display_name} started with trust enabled")
            self.reconciler.run_pass("container-start", targets=[target])
        except TrustSyncError as e:
            logger.warning(f"Ignoring start event for {event.name or event.container_id[:12]}: {e}")


class SweepTrigger(Trigger):
    """Runs a full pass every ``interval_seconds``."""

    name = "sweep"

    def __init__(
        self,
        reconciler: Reconciler,
        interval_seconds: float,
        run_immediately: bool = True,
        stop_event: Optional[threading.Event] = None,
    ):
        super().__init__(stop_event)
        self.reconciler = reconciler
        self.interval_seconds = interval_seconds
        self.run_immediately = run_immediately

    def run(self) -> None:
        if self.run_immediately:
            self.reconciler.run_pass("startup")
        while not self.wait(self.interval_seconds):
            logger.info("Periodic trust sweep")
            self.reconciler.run_pass("sweep")


class ContextWatcher(Trigger):
    """Host mode: notices when the operator switches runtime context.

    The docker config file is polled every ``poll_seconds`` and only
    re-parsed when its modification time changed.
    """

    name = "context"

    def __init__(
        self,
        context_service: ContextService,
        poll_seconds: float,
        on_change: List[Callable[[str], None]],
        stop_event: Optional[threading.Event] = None,
    ):
        super().__init__(stop_event)
        self.context_service = context_service
        self.poll_seconds = poll_seconds
        self.on_change = on_change
        self.current: Optional[str] = None
        self._mtime: Optional[float] = None

    def check(self) -> bool:
        """
        Compare the active context with the last one seen.

        Returns:
            True if the context changed (callbacks have been invoked)
        """
        mtime = self.context_service.config_mtime()
        if self.current is not None and mtime == self._mtime:
            return False
        self._mtime = mtime

        context = self.context_service.current_context()
        if self.current is None:
            self.current = context
            logger.info(f"Initial docker context: {context}")
            return False
        if context == self.current:
            return False

        logger.info(f"Context changed: {self.current} -> {context}")
        self.current = context
        for callback in self.on_change:
            callback(context)
        return True

    def run(self) -> None:
        self.check()
        while not self.wait(self.poll_seconds):
            self.check()
