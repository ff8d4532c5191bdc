"""
Cycle Orchestrator
One pass over every (document type, threshold) pair.

Single-flight within the process: a trigger that arrives while a cycle is
running is rejected immediately instead of queueing. Batches cut off by
the cycle deadline or interrupted by a store failure are carried to the
next trigger with their original reference date, since eligibility is an
exact-date match.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from expiry_alerts.exceptions import CycleAlreadyRunning, PersistenceError
from expiry_alerts.models.employee import DocumentType
from expiry_alerts.services.dedup import DedupFlagStore
from expiry_alerts.services.dispatcher import BatchDispatcher, BatchResult, EmployeeError
from expiry_alerts.services.thresholds import iter_threshold_pairs

logger = logging.getLogger(__name__)

BatchKey = Tuple[DocumentType, int, date]


class CycleState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class CycleSummary:
    started_at: datetime
    today: date
    finished_at: Optional[datetime] = None
    notifications_sent: int = 0
    notifications_failed: int = 0
    skipped: int = 0
    errors_by_employee: Dict[str, List[str]] = field(default_factory=dict)
    batch_errors: List[str] = field(default_factory=list)
    batches: List[BatchResult] = field(default_factory=list)
    carried_over: List[dict] = field(default_factory=list)
    rejected: bool = False

    def add(self, result: BatchResult) -> None:
        self.batches.append(result)
        self.notifications_sent += result.sent
        self.notifications_failed += result.failed
        self.skipped += result.skipped
        for error in result.errors:
            self._employee_error(error)

    def _employee_error(self, error: EmployeeError) -> None:
        self.errors_by_employee.setdefault(error.employee_id, []).append(error.error)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "today": self.today.isoformat(),
            "rejected": self.rejected,
            "notificationsSent": self.notifications_sent,
            "notificationsFailed": self.notifications_failed,
            "skipped": self.skipped,
            "errorsByEmployee": self.errors_by_employee,
            "batchErrors": self.batch_errors,
            "batches": [b.to_dict() for b in self.batches if b.eligible or b.aborted],
            "carriedOver": self.carried_over,
        }


class CycleOrchestrator:
    """Top-level entry point for a notification cycle"""

    def __init__(
        self,
        dispatcher: BatchDispatcher,
        flag_store: DedupFlagStore,
        cycle_timeout: Optional[float] = None,
        today: Callable[[], date] = lambda: datetime.utcnow().date(),
        clock: Callable[[], float] = time.monotonic
    ):
        self.dispatcher = dispatcher
        self.flag_store = flag_store
        self.cycle_timeout = cycle_timeout
        self._today = today
        self._clock = clock
        self._lock = asyncio.Lock()
        self._carryover: List[BatchKey] = []
        self.last_summary: Optional[CycleSummary] = None

    @property
    def state(self) -> CycleState:
        return CycleState.RUNNING if self._lock.locked() else CycleState.IDLE

    @property
    def pending_batches(self) -> List[BatchKey]:
        return list(self._carryover)

    async def trigger(self) -> CycleSummary:
        """Run a cycle, or return a rejected summary if one is already running"""
        try:
            return await self.run_cycle()
        except CycleAlreadyRunning:
            logger.warning("[Cycle] Trigger rejected: a cycle is already running")
            return CycleSummary(started_at=datetime.utcnow(), today=self._today(), rejected=True)

    async def run_scheduled(self) -> None:
        """Scheduler entry point; infrastructure failures are logged"""
        try:
            await self.trigger()
        except PersistenceError as e:
            logger.error(f"[Cycle] Scheduled cycle failed: {e.message}")

    async def run_cycle(self) -> CycleSummary:
        if self._lock.locked():
            raise CycleAlreadyRunning()

        async with self._lock:
            today = self._today()
            summary = CycleSummary(started_at=datetime.utcnow(), today=today)
            logger.info(f"[Cycle] Starting notification cycle for {today.isoformat()}")

            await self.flag_store.ping()

            deadline = self._clock() + self.cycle_timeout if self.cycle_timeout else None
            work = self._plan(today)
            self._carryover = []

            for index, (document_type, threshold_days, reference_date) in enumerate(work):
                if deadline is not None and self._clock() >= deadline:
                    self._carryover.extend(work[index:])
                    logger.warning(f"[Cycle] Deadline reached; {len(work) - index} batch(es) carried over")
                    break

                try:
                    result = await self.dispatcher.dispatch(
                        document_type, threshold_days, reference_date, today=today, deadline=deadline
                    )
                except PersistenceError as e:
                    logger.error(f"[Cycle] {document_type.value} {threshold_days}-day batch failed: {e.message}")
                    summary.batch_errors.append(f"{document_type.value}/{threshold_days}: {e.message}")
                    self._carryover.append((document_type, threshold_days, reference_date))
                    continue

                summary.add(result)
                if result.incomplete or result.aborted:
                    self._carryover.append((document_type, threshold_days, reference_date))

            summary.carried_over = [
                {"document_type": d.value, "threshold_days": n, "reference_date": r.isoformat()}
                for d, n, r in self._carryover
            ]
            summary.finished_at = datetime.utcnow()
            self.last_summary = summary
            logger.info(
                f"[Cycle] Completed: {summary.notifications_sent} sent, "
                f"{summary.notifications_failed} failed, {summary.skipped} skipped"
            )
            return summary

    def _plan(self, today: date) -> List[BatchKey]:
        """Carried-over batches first, then every pair for today"""
        # Drop carry-overs whose document has already expired
        work = [
            (d, n, ref) for d, n, ref in self._carryover
            if ref != today and ref + timedelta(days=n) >= today
        ]
        work.extend((document_type, threshold_days, today) for document_type, threshold_days in iter_threshold_pairs())
        return work
