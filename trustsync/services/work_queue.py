"""Bounded convergence queue consumed by a fixed pool of worker threads."""

import logging
import queue
import threading
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from trustsync.models.ca import CAEndpoint
from trustsync.models.target import TrustTarget

logger = logging.getLogger("trustsync")

_SHUTDOWN = None


class WorkItem(NamedTuple):
    """One target to converge against one resolved CA."""

    target: TrustTarget
    endpoint: CAEndpoint
    trigger: str

    @property
    def key(self) -> Tuple[str, str]:
        """Coalescing key: the container id, or the user and context of the host."""
        return self.target.kind.value, self.target.identity_key


class ConvergenceQueue:
    """Work queue shared by all triggers.

    The queue carries keys; the item for a key is looked up when a worker
    dequeues it. Submitting for a key that is still waiting replaces the
    waiting item, so workers always converge against the newest endpoint.
    A target that is currently being converged may be queued again;
    convergence is idempotent.
    """

    def __init__(self, handler: Callable[[WorkItem], None], worker_count: int = 4, maxsize: int = 256):
        """
        Initialize queue.

        Args:
            handler: Called on a worker thread for each item
            worker_count: Number of worker threads
            maxsize: Queue capacity; submissions beyond it are dropped
        """
        self.handler = handler
        self.worker_count = worker_count
        self._queue: "queue.Queue[Optional[Tuple[str, str]]]" = queue.Queue(maxsize=maxsize)
        self._pending: Dict[Tuple[str, str], WorkItem] = {}
        self._lock = threading.Lock()
        self._stopping = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def start(self) -> None:
        """Start the worker threads."""
        if self.running:
            return
        self._stopping.clear()
        self._threads = [
            threading.Thread(target=self._work, name=f"convergence-worker-{n}", daemon=True)
            for n in range(1, self.worker_count + 1)
        ]
        for thread in self._threads:
            thread.start()
        logger.info(f"Convergence queue started with {self.worker_count} worker(s)")

    def submit(self, item: WorkItem) -> bool:
        """
        Queue a target for convergence.

        Returns:
            True if the item is (or already was) queued, False if it was dropped
        """
        if self._stopping.is_set():
            logger.debug(f"Queue stopping, dropping {item.target}")
            return False

        key = item.key
        with self._lock:
            if key in self._pending:
                logger.debug(f"{item.target} already queued, replacing with newer item ({item.trigger})")
                self._pending[key] = item
                return True
            try:
                self._queue.put_nowait(key)
            except queue.Full:
                logger.warning(f"Convergence queue full, dropping {item.target} ({item.trigger})")
                return False
            self._pending[key] = item
        return True

    def join(self) -> None:
        """Block until every submitted item has been processed."""
        self._queue.join()

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop accepting work, discard queued items and wait for in-flight ones.

        Args:
            timeout: Per-thread join timeout; None waits for completion
        """
        self._stopping.set()
        discarded = 0
        with self._lock:
            while True:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    break
                self._queue.task_done()
                discarded += 1
            self._pending.clear()
        if discarded:
            logger.info(f"Discarded {discarded} queued convergence item(s) on shutdown")

        for _ in self._threads:
            self._queue.put(_SHUTDOWN)
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        logger.info("Convergence queue stopped")

    def _work(self) -> None:
        while True:
            key = self._queue.get()
            try:
                if key is _SHUTDOWN:
                    return
                with self._lock:
                    item = self._pending.pop(key, None)
                if item is not None:
                    self._process(item)
            finally:
                self._queue.task_done()

    def _process(self, item: WorkItem) -> None:
        try:
            self.handler(item)
        except Exception as e:
            logger.exception(f"Unexpected error converging {item.target} ({item.trigger}): {e}")
