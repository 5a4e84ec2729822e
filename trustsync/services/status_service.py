"""In-memory record of reconciliation activity for the status API."""

import threading
from collections import deque
from datetime import datetime
from typing import Deque, Dict, Iterable, List, Optional

from trustsync.models.target import ConvergenceOutcome, PassReport


class StatusService:
    """Thread-safe registry of recent passes and the last outcome per target."""

    def __init__(self, history_size: int = 50):
        self._lock = threading.Lock()
        self._passes: Deque[PassReport] = deque(maxlen=history_size)
        self._outcomes: Dict[str, ConvergenceOutcome] = {}
        self._triggers: Dict[str, bool] = {}
        self.mode: Optional[str] = None
        self.started_at: Optional[datetime] = None
        self.bootstrap: Optional[ConvergenceOutcome] = None

    def mark_started(self, mode: str) -> None:
        with self._lock:
            self.mode = mode
            self.started_at = datetime.now()

    def set_trigger(self, name: str, running: bool) -> None:
        with self._lock:
            self._triggers[name] = running

    def record_pass(self, report: PassReport) -> None:
        with self._lock:
            self._passes.append(report)

    def record_outcome(self, outcome: ConvergenceOutcome) -> None:
        with self._lock:
            self._outcomes[outcome.target_id] = outcome

    def prune_outcomes(self, current_ids: Iterable[str]) -> int:
        """
        Forget outcomes of targets that are no longer enumerated.

        Args:
            current_ids: Ids of every target found by the latest full pass

        Returns:
            Number of outcomes removed
        """
        keep = set(current_ids)
        with self._lock:
            stale = [target_id for target_id in self._outcomes if target_id not in keep]
            for target_id in stale:
                del self._outcomes[target_id]
        return len(stale)

    def record_bootstrap(self, outcome: ConvergenceOutcome) -> None:
        with self._lock:
            self.bootstrap = outcome

    def last_outcome(self, target_id: str) -> Optional[ConvergenceOutcome]:
        with self._lock:
            return self._outcomes.get(target_id)

    def recent_passes(self) -> List[PassReport]:
        with self._lock:
            return list(self._passes)

    def snapshot(self) -> dict:
        """
        Get a JSON-serializable view of the current state.

        Returns:
            Dictionary with mode, triggers, recent passes and outcomes
        """
        with self._lock:
            return {
                "mode": self.mode,
                "started_at": self.started_at.isoformat() if self.started_at else None,
                "triggers": dict(self._triggers),
                "bootstrap": self.bootstrap.model_dump(mode="json") if self.bootstrap else None,
                "passes": [report.model_dump(mode="json") for report in reversed(self._passes)],
                "targets": [outcome.model_dump(mode="json") for outcome in self._outcomes.values()],
            }
