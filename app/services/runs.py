# =============================================================================
# Run Registry — In-Process Tracking of Report Runs
# =============================================================================
#
# POST /reports returns immediately with a run_id. The run itself
# executes as a background task; this registry is how later requests
# find it again to poll progress or to cancel.
#
# Bounded: when more than max_runs records are held, the oldest FINISHED
# runs are dropped first. Active runs are never evicted.
#
# Shared across request handlers and background tasks, so guarded by a
# threading.Lock.
# =============================================================================

from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import UTC, datetime

from app.agents.orchestrator import ReportOrchestrator, RunOutcome, RunStatus

logger = logging.getLogger(__name__)


@dataclass
class RunRecord:
    run_id: str
    company_name: str
    orchestrator: ReportOrchestrator
    status: RunStatus = RunStatus.PENDING
    outcome: RunOutcome | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None


class RunRegistry:
    def __init__(self, max_runs: int = 100) -> None:
        self.max_runs = max_runs
        self._runs: OrderedDict[str, RunRecord] = OrderedDict()
        self._lock = threading.Lock()

    def create(self, orchestrator: ReportOrchestrator, company_name: str = "") -> RunRecord:
        record = RunRecord(
            run_id=str(uuid.uuid4()),
            company_name=company_name,
            orchestrator=orchestrator,
        )
        with self._lock:
            self._runs[record.run_id] = record
            self._evict_locked()
        return record

    def get(self, run_id: str) -> RunRecord | None:
        with self._lock:
            return self._runs.get(run_id)

    def mark_running(self, run_id: str) -> None:
        with self._lock:
            record = self._runs.get(run_id)
            if record is not None and not record.status.is_terminal:
                record.status = RunStatus.RUNNING

    def finish(self, run_id: str, outcome: RunOutcome) -> None:
        with self._lock:
            record = self._runs.get(run_id)
            if record is None:
                return
            record.outcome = outcome
            record.status = outcome.status
            record.finished_at = datetime.now(UTC)

    def cancel(self, run_id: str) -> RunRecord | None:
        """Request cancellation. Returns None for an unknown run."""
        record = self.get(run_id)
        if record is None:
            return None
        if not record.status.is_terminal:
            record.orchestrator.cancel()
        return record

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for r in self._runs.values() if not r.status.is_terminal)

    def _evict_locked(self) -> None:
        if len(self._runs) <= self.max_runs:
            return
        for run_id in [r.run_id for r in self._runs.values() if r.status.is_terminal]:
            if len(self._runs) <= self.max_runs:
                break
            del self._runs[run_id]
            logger.debug("Evicted finished run %s from registry", run_id)
