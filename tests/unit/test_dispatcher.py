"""
Batch dispatcher tests with in-memory stores
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

import pytest
from bson import ObjectId

from conftest import TODAY, FakeEmailService, midnight
from expiry_alerts.exceptions import PermanentSendFailure, PersistenceError
from expiry_alerts.models.employee import DocumentType, EXPIRY_FIELDS
from expiry_alerts.models.notification import NotificationCategory, NotificationStatus, Severity
from expiry_alerts.services.dispatcher import BatchDispatcher
from expiry_alerts.services.rate_limiter import RateLimiter


@dataclass
class StubEmployee:
    employee_id: str
    name: str
    email: Optional[str]
    visa_expiry_date: Optional[datetime] = None
    passport_expiry_date: Optional[datetime] = None
    labour_card_expiry_date: Optional[datetime] = None

    def expiry_for(self, document_type):
        return getattr(self, EXPIRY_FIELDS[DocumentType(document_type)])


class MemoryFlagStore:

    def __init__(self, employees):
        self.employees = employees
        self.flags = set()
        self.claims = set()
        self.released = []
        self.refuse = set()
        self.fail_claim_at = None
        self.claim_calls = 0

    async def ping(self):
        pass

    async def find_eligible(self, document_type, threshold_days, today):
        target = today + timedelta(days=threshold_days)
        return [
            e for e in self.employees
            if e.expiry_for(document_type) and e.expiry_for(document_type).date() == target
            and (e.employee_id, DocumentType(document_type), threshold_days) not in self.flags
        ]

    async def claim(self, employee_id, document_type, threshold_days):
        self.claim_calls += 1
        if self.fail_claim_at is not None and self.claim_calls >= self.fail_claim_at:
            raise PersistenceError("connection lost", operation="claim")
        key = (employee_id, DocumentType(document_type), threshold_days)
        if employee_id in self.refuse or key in self.claims:
            return False
        self.claims.add(key)
        return True

    async def mark_sent(self, employee_id, document_type, threshold_days, notification_id=None):
        key = (employee_id, DocumentType(document_type), threshold_days)
        changed = key not in self.flags
        self.flags.add(key)
        return changed

    async def release(self, employee_id, document_type, threshold_days):
        self.released.append(employee_id)
        self.claims.discard((employee_id, DocumentType(document_type), threshold_days))


@dataclass
class MemoryRecord:
    id: ObjectId
    title: str
    recipient: str
    type: Severity
    category: NotificationCategory
    employee_id: str
    status: NotificationStatus = NotificationStatus.PENDING
    error_message: Optional[str] = None


class MemoryAuditStore:

    def __init__(self):
        self.records: Dict[ObjectId, MemoryRecord] = {}
        self.fail_mark_sent = False

    async def create(self, title, message, severity, recipient, category, employee_id=None,
                     document_type=None, threshold_days=None):
        record = MemoryRecord(ObjectId(), title, recipient, severity, category, employee_id)
        self.records[record.id] = record
        return record

    async def mark_sent(self, record_id, sent_at=None):
        if self.fail_mark_sent:
            raise PersistenceError("write concern timeout")
        self.records[record_id].status = NotificationStatus.SENT

    async def mark_failed(self, record_id, error_message):
        self.records[record_id].status = NotificationStatus.FAILED
        self.records[record_id].error_message = error_message

    def by_employee(self, employee_id):
        return [r for r in self.records.values() if r.employee_id == employee_id]


def make_staff(count, days=7, start=1):
    return [
        StubEmployee(
            employee_id=f"EMP{i:03d}",
            name=f"Worker {i}",
            email=f"emp{i:03d}@company.com",
            visa_expiry_date=midnight(TODAY + timedelta(days=days)),
        )
        for i in range(start, start + count)
    ]


@pytest.fixture
def build(test_settings, clock):
    def _build(employees, **kwargs):
        flags = MemoryFlagStore(employees)
        audit = MemoryAuditStore()
        email = FakeEmailService(test_settings, clock)
        dispatcher = BatchDispatcher(
            flag_store=flags,
            audit_store=audit,
            email_service=email,
            rate_limiter=RateLimiter(1.0, clock=clock, sleep=clock.sleep),
            clock=clock,
            **kwargs
        )
        return dispatcher, flags, audit, email
    return _build


async def test_sends_to_every_eligible_employee(build):
    dispatcher, flags, audit, email = build(make_staff(3))

    result = await dispatcher.dispatch(DocumentType.VISA, 7, TODAY)

    assert (result.sent, result.failed, result.skipped) == (3, 0, 0)
    assert len(flags.flags) == 3
    assert all(r.status is NotificationStatus.SENT for r in audit.records.values())
    assert all(r.type is Severity.ERROR for r in audit.records.values())
    assert all(r.category is NotificationCategory.VISA for r in audit.records.values())
    assert email.sent[0]["subject"] == "VISA EXPIRY CRITICAL: Worker 1 - 7 Days Remaining"


async def test_only_exact_threshold_matches(build):
    staff = make_staff(1, days=7) + make_staff(1, days=8, start=2)
    dispatcher, _, _, email = build(staff)

    result = await dispatcher.dispatch(DocumentType.VISA, 7, TODAY)

    assert result.sent == 1
    assert [m["to"] for m in email.sent] == ["emp001@company.com"]


async def test_passport_batch_uses_document_category(build):
    staff = [StubEmployee("EMP001", "Worker 1", "emp001@company.com",
                          passport_expiry_date=midnight(TODAY + timedelta(days=30)))]
    dispatcher, _, audit, email = build(staff)

    await dispatcher.dispatch(DocumentType.PASSPORT, 30, TODAY)

    record = next(iter(audit.records.values()))
    assert record.category is NotificationCategory.DOCUMENT
    assert record.type is Severity.INFO
    assert email.sent[0]["subject"].startswith("PASSPORT EXPIRY WARNING")


async def test_one_failure_does_not_stop_the_batch(build, transient_failure):
    dispatcher, flags, audit, email = build(make_staff(3))
    email.fail_for("emp002@company.com", transient_failure)

    result = await dispatcher.dispatch(DocumentType.VISA, 7, TODAY)

    assert (result.sent, result.failed) == (2, 1)
    assert result.errors[0].employee_id == "EMP002"
    assert result.errors[0].permanent is False
    assert ("EMP002", DocumentType.VISA, 7) not in flags.flags
    assert ("EMP003", DocumentType.VISA, 7) in flags.flags
    assert flags.released == ["EMP002"]
    failed = audit.by_employee("EMP002")[0]
    assert failed.status is NotificationStatus.FAILED
    assert "Connection reset" in failed.error_message


async def test_missing_address_is_a_permanent_failure(build):
    staff = make_staff(1)
    staff[0].email = None
    dispatcher, flags, audit, email = build(staff)

    result = await dispatcher.dispatch(DocumentType.VISA, 7, TODAY)

    assert result.failed == 1
    assert result.errors[0].permanent is True
    assert email.attempts == []
    assert audit.by_employee("EMP001")[0].status is NotificationStatus.FAILED
    assert flags.flags == set()


async def test_malformed_address_fails_only_that_employee(build):
    staff = make_staff(2)
    staff[0].email = "n/a"
    dispatcher, flags, audit, email = build(staff)

    result = await dispatcher.dispatch(DocumentType.VISA, 7, TODAY)

    assert (result.sent, result.failed) == (1, 1)
    assert result.errors[0].employee_id == "EMP001"
    assert result.errors[0].permanent is True
    assert "Invalid recipient address 'n/a'" in result.errors[0].error
    assert [m["to"] for m in email.sent] == ["emp002@company.com"]
    assert audit.by_employee("EMP001")[0].status is NotificationStatus.FAILED
    assert "EMP001" in flags.released


async def test_permanent_provider_rejection_is_reported(build):
    dispatcher, _, _, email = build(make_staff(1))
    email.fail_for("emp001@company.com", PermanentSendFailure("550 mailbox unavailable"))

    result = await dispatcher.dispatch(DocumentType.VISA, 7, TODAY)

    assert result.errors[0].permanent is True


async def test_refused_claim_is_skipped(build):
    dispatcher, flags, audit, email = build(make_staff(2))
    flags.refuse.add("EMP001")

    result = await dispatcher.dispatch(DocumentType.VISA, 7, TODAY)

    assert (result.sent, result.skipped) == (1, 1)
    assert result.skipped_employees == ["EMP001"]
    assert audit.by_employee("EMP001") == []
    assert [m["to"] for m in email.sent] == ["emp002@company.com"]


async def test_sends_are_spaced_by_the_rate_limit(build, clock):
    dispatcher, _, _, email = build(make_staff(25))
    start = clock()

    result = await dispatcher.dispatch(DocumentType.VISA, 7, TODAY)

    assert result.sent + result.failed == 25
    assert clock() - start >= 24
    times = [m["at"] for m in email.sent]
    assert all(b - a >= 1.0 for a, b in zip(times, times[1:]))


async def test_store_failure_aborts_and_skips_the_rest(build):
    dispatcher, flags, audit, email = build(make_staff(10))
    flags.fail_claim_at = 4

    result = await dispatcher.dispatch(DocumentType.VISA, 7, TODAY)

    assert result.aborted is True
    assert result.sent == 3
    assert result.skipped == 7
    assert result.skipped_employees[0] == "EMP004"
    assert len(email.sent) == 3
    assert len(flags.flags) == 3
    assert len(audit.records) == 3


async def test_unrecorded_delivery_aborts_the_batch(build):
    dispatcher, flags, audit, email = build(make_staff(2))
    audit.fail_mark_sent = True

    result = await dispatcher.dispatch(DocumentType.VISA, 7, TODAY)

    assert result.aborted is True
    assert "not recorded" in result.errors[0].error
    assert result.skipped == 2
    assert len(email.sent) == 1
    assert flags.flags == set()


async def test_deadline_leaves_the_rest_for_later(build, clock):
    dispatcher, _, _, email = build(make_staff(5))

    result = await dispatcher.dispatch(DocumentType.VISA, 7, TODAY, deadline=clock() + 2.5)

    assert result.incomplete is True
    assert result.sent == 4
    assert result.skipped_employees == ["EMP005"]


async def test_send_timeout_counts_as_failure(build, test_settings):
    class SlowEmail(FakeEmailService):
        async def send_email(self, *args, **kwargs):
            await asyncio.sleep(5)

    dispatcher, flags, audit, _ = build(make_staff(1), send_timeout=0.01)
    dispatcher.email_service = SlowEmail(test_settings)

    result = await dispatcher.dispatch(DocumentType.VISA, 7, TODAY)

    assert result.failed == 1
    assert "timed out" in result.errors[0].error
    assert flags.released == ["EMP001"]
    assert audit.by_employee("EMP001")[0].status is NotificationStatus.FAILED


async def test_unexpected_error_is_isolated(build):
    dispatcher, flags, audit, email = build(make_staff(2))
    email.fail_for("emp001@company.com", RuntimeError("smtp library bug"))

    result = await dispatcher.dispatch(DocumentType.VISA, 7, TODAY)

    assert (result.sent, result.failed) == (1, 1)
    assert "RuntimeError" in result.errors[0].error
    assert flags.released == ["EMP001"]
    assert audit.by_employee("EMP001")[0].status is NotificationStatus.FAILED


async def test_recipient_override(build):
    dispatcher, _, audit, email = build(make_staff(2), recipient_override="hr@company.com")

    await dispatcher.dispatch(DocumentType.VISA, 7, TODAY)

    assert [m["to"] for m in email.sent] == ["hr@company.com", "hr@company.com"]
    assert all(r.recipient == "hr@company.com" for r in audit.records.values())


async def test_carried_over_batch_reports_current_days(build):
    reference = TODAY - timedelta(days=1)
    staff = [StubEmployee("EMP001", "Worker 1", "emp001@company.com",
                          visa_expiry_date=midnight(reference + timedelta(days=7)))]
    dispatcher, _, _, email = build(staff)

    result = await dispatcher.dispatch(DocumentType.VISA, 7, reference, today=TODAY)

    assert result.reference_date == reference.isoformat()
    assert email.sent[0]["subject"].endswith("6 Days Remaining")


async def test_empty_batch(build):
    dispatcher, _, _, email = build([])
    result = await dispatcher.dispatch(DocumentType.VISA, 60, TODAY)
    assert result.eligible == 0
    assert email.sent == []
