"""
Batch Dispatcher
Sends the alerts for one (document type, threshold) pair.

Per employee, strictly in sequence:
    claim -> pending audit record -> throttled send -> sent/failed
A failed send leaves the flag unset and releases the claim so the next
cycle retries. One employee's failure never stops the batch; a store
failure does, and the employees not yet handled are reported as skipped.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field, asdict
from datetime import date
from enum import Enum
from typing import Callable, List, Optional

from email_validator import EmailNotValidError, validate_email

from expiry_alerts.exceptions import EmailDeliveryError, PermanentSendFailure, PersistenceError
from expiry_alerts.models.employee import Employee, DocumentType
from expiry_alerts.models.notification import NotificationCategory
from expiry_alerts.services.audit import NotificationAuditStore
from expiry_alerts.services.dedup import DedupFlagStore
from expiry_alerts.services.email import EmailService
from expiry_alerts.services.rate_limiter import RateLimiter
from expiry_alerts.services.thresholds import THRESHOLDS, days_remaining, severity_for_threshold

logger = logging.getLogger(__name__)


def _checked_address(address: str) -> str:
    try:
        return validate_email(address, check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise PermanentSendFailure(f"Invalid recipient address '{address}': {e}", recipient=address) from e


class Outcome(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class EmployeeError:
    employee_id: str
    error: str
    permanent: bool = False


@dataclass
class BatchResult:
    document_type: str
    threshold_days: int
    reference_date: str
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[EmployeeError] = field(default_factory=list)
    skipped_employees: List[str] = field(default_factory=list)
    aborted: bool = False
    incomplete: bool = False

    @property
    def eligible(self) -> int:
        return self.sent + self.failed + self.skipped

    def skip(self, employees: List[Employee]) -> None:
        self.skipped += len(employees)
        self.skipped_employees.extend(e.employee_id for e in employees)

    def to_dict(self) -> dict:
        return asdict(self)


class BatchDispatcher:
    """Rate-limited sender for a single threshold batch"""

    def __init__(
        self,
        flag_store: DedupFlagStore,
        audit_store: NotificationAuditStore,
        email_service: EmailService,
        rate_limiter: RateLimiter,
        send_timeout: float = 10.0,
        recipient_override: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.flag_store = flag_store
        self.audit_store = audit_store
        self.email_service = email_service
        self.rate_limiter = rate_limiter
        self.send_timeout = send_timeout
        self.recipient_override = recipient_override
        self._clock = clock

    async def dispatch(
        self,
        document_type: DocumentType,
        threshold_days: int,
        reference_date: date,
        today: Optional[date] = None,
        deadline: Optional[float] = None
    ) -> BatchResult:
        """
        Notify every eligible employee for one threshold.

        `reference_date` selects employees (expiry == reference_date + N);
        `today` drives the days-remaining copy and differs only for
        batches carried over from an earlier cycle. Raises PersistenceError
        only when the eligible set cannot be read.
        """
        document_type = DocumentType(document_type)
        today = today or reference_date
        result = BatchResult(document_type.value, threshold_days, reference_date.isoformat())

        employees = await self.flag_store.find_eligible(document_type, threshold_days, reference_date)
        if not employees:
            return result
        logger.info(f"[Dispatch] {len(employees)} employee(s) due for {document_type.value} {threshold_days}-day alert")

        for index, employee in enumerate(employees):
            if deadline is not None and self._clock() >= deadline:
                result.incomplete = True
                result.skip(employees[index:])
                logger.warning(
                    f"[Dispatch] Cycle deadline reached; {len(employees) - index} {document_type.value} "
                    f"{threshold_days}-day alert(s) left for the next run"
                )
                break

            try:
                outcome, error = await self._notify(employee, document_type, threshold_days, today)
            except PersistenceError as e:
                logger.error(f"[Dispatch] Store failure at {employee.employee_id}, aborting batch: {e}")
                result.aborted = True
                result.errors.append(EmployeeError(employee.employee_id, str(e)))
                result.skip(employees[index:])
                break
            except Exception as e:
                logger.exception(f"[Dispatch] Unexpected error notifying {employee.employee_id}")
                outcome, error = Outcome.FAILED, EmployeeError(employee.employee_id, f"{type(e).__name__}: {e}")
                await self._release_quietly(employee, document_type, threshold_days)

            if outcome is Outcome.SENT:
                result.sent += 1
            elif outcome is Outcome.FAILED:
                result.failed += 1
                result.errors.append(error)
            else:
                result.skip([employee])

        logger.info(
            f"[Dispatch] {document_type.value} {threshold_days}-day batch done: "
            f"{result.sent} sent, {result.failed} failed, {result.skipped} skipped"
        )
        return result

    async def _notify(self, employee: Employee, document_type: DocumentType, threshold_days: int, today: date):
        if not await self.flag_store.claim(employee.employee_id, document_type, threshold_days):
            logger.info(f"[Dispatch] {employee.employee_id} already claimed for {document_type.value} {threshold_days}")
            return Outcome.SKIPPED, None

        severity = severity_for_threshold(threshold_days)
        expiry = employee.expiry_for(document_type)
        remaining = days_remaining(today, expiry)
        rendered = self.email_service.render_document_expiry(
            employee_name=employee.name,
            employee_id=employee.employee_id,
            document_type=document_type,
            expiry_date=expiry,
            days_remaining=remaining,
            urgency=THRESHOLDS[document_type].label_for(threshold_days).value,
            severity=severity,
        )
        recipient = (self.recipient_override or employee.email or "").strip()

        try:
            record = await self.audit_store.create(
                title=rendered.subject,
                message=rendered.text,
                severity=severity,
                recipient=recipient,
                category=NotificationCategory.VISA if document_type is DocumentType.VISA else NotificationCategory.DOCUMENT,
                employee_id=employee.employee_id,
                document_type=document_type.value,
                threshold_days=threshold_days,
            )
        except PersistenceError:
            await self._release_quietly(employee, document_type, threshold_days)
            raise

        try:
            if not recipient:
                raise PermanentSendFailure("No recipient address")
            recipient = _checked_address(recipient)
            await self.rate_limiter.wait()
            await asyncio.wait_for(
                self.email_service.send_email(recipient, rendered.subject, rendered.html, rendered.text),
                timeout=self.send_timeout
            )
        except (EmailDeliveryError, asyncio.TimeoutError) as e:
            message = str(e) or f"Send timed out after {self.send_timeout}s"
            permanent = getattr(e, "permanent", False)
            logger.warning(
                f"[Dispatch] {'Permanent' if permanent else 'Transient'} failure for "
                f"{employee.employee_id} ({recipient or 'no address'}): {message}"
            )
            return await self._fail(record, employee, document_type, threshold_days, message, permanent)
        except Exception as e:
            logger.exception(f"[Dispatch] Unexpected send error for {employee.employee_id}")
            message = f"{type(e).__name__}: {e}"
            return await self._fail(record, employee, document_type, threshold_days, message)

        # Audit first, flag second: a set flag always has a sent record
        try:
            await self.audit_store.mark_sent(record.id)
            await self.flag_store.mark_sent(employee.employee_id, document_type, threshold_days, str(record.id))
        except PersistenceError as e:
            raise PersistenceError(
                f"Delivered to {recipient} but not recorded: {e.message}", operation="record_delivery"
            ) from e
        return Outcome.SENT, None

    async def _fail(self, record, employee, document_type, threshold_days, message, permanent=False):
        await self.audit_store.mark_failed(record.id, message)
        await self.flag_store.release(employee.employee_id, document_type, threshold_days)
        return Outcome.FAILED, EmployeeError(employee.employee_id, message, permanent)

    async def _release_quietly(self, employee: Employee, document_type: DocumentType, threshold_days: int) -> None:
        try:
            await self.flag_store.release(employee.employee_id, document_type, threshold_days)
        except PersistenceError as e:
            # The claim lease expires on its own
            logger.error(f"[Dispatch] Could not release claim for {employee.employee_id}: {e}")
