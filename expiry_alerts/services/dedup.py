"""
Dedup Flag Store
Selects employees due for an alert and records that it went out.

Two layers guard against duplicate sends:
  * `Employee.sent_flags[<type>_<days>]`, the flag dashboards read;
  * the `sent_notifications` ledger, whose unique index turns the insert
    into an atomic claim across processes.
A claim is taken before sending and released on failure. Flags are set
only after a confirmed delivery. The ledger, not the flag, decides
whether an alert went out; `reset()` clears both.
"""
import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from pymongo.errors import DuplicateKeyError, PyMongoError

from expiry_alerts.exceptions import PersistenceError
from expiry_alerts.models.employee import Employee, DocumentType, EXPIRY_FIELDS, flag_key
from expiry_alerts.models.sent_notification import SentNotification, ClaimStatus
from expiry_alerts.services.thresholds import iter_threshold_pairs

logger = logging.getLogger(__name__)


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min)


class DedupFlagStore:
    """Mongo-backed flag store"""

    def __init__(self, claim_lease_seconds: int = 900):
        self.claim_lease = timedelta(seconds=claim_lease_seconds)

    @staticmethod
    def _key(employee_id: str, document_type: DocumentType, threshold_days: int) -> dict:
        return {
            "employee_id": employee_id,
            "document_type": DocumentType(document_type).value,
            "threshold_days": threshold_days,
        }

    async def ping(self) -> None:
        try:
            await Employee.get_motor_collection().find_one({}, {"_id": 1})
        except PyMongoError as e:
            raise PersistenceError(f"Employee store unreachable: {e}", operation="ping") from e

    async def find_eligible(
        self,
        document_type: DocumentType,
        threshold_days: int,
        today: date
    ) -> List[Employee]:
        """Active employees whose document expires exactly `threshold_days` from today and not yet notified"""
        target = _day_start(today + timedelta(days=threshold_days))
        field = EXPIRY_FIELDS[DocumentType(document_type)]
        query = {
            "is_active": True,
            field: {"$gte": target, "$lt": target + timedelta(days=1)},
            f"sent_flags.{flag_key(document_type, threshold_days)}": {"$ne": True},
        }
        try:
            raw_rows = await Employee.get_motor_collection().find(query).sort("employee_id", 1).to_list(length=None)
        except PyMongoError as e:
            raise PersistenceError(f"Eligible employee lookup failed: {e}", operation="find_eligible") from e

        employees, rejected = Employee.parse_rows(raw_rows)
        if rejected:
            # Rows owned by the CRUD side; skip them and keep the batch going
            logger.error(f"[Dedup] Skipping unreadable employee row(s): {', '.join(rejected)}")
        return employees

    async def claim(self, employee_id: str, document_type: DocumentType, threshold_days: int) -> bool:
        """Take the exclusive right to send this alert; False if someone else holds or sent it"""
        key = self._key(employee_id, document_type, threshold_days)
        now = datetime.utcnow()
        try:
            await SentNotification(**key, claimed_at=now).insert()
            return True
        except DuplicateKeyError:
            pass
        except PyMongoError as e:
            raise PersistenceError(f"Claim failed: {e}", operation="claim") from e

        collection = SentNotification.get_motor_collection()
        try:
            existing = await collection.find_one(key)
            if existing and existing.get("status") == ClaimStatus.SENT.value:
                # Ledger says delivered but the flag was never written
                await self._set_flag(employee_id, document_type, threshold_days, now)
                return False

            result = await collection.update_one(
                {**key, "status": ClaimStatus.CLAIMED.value, "claimed_at": {"$lt": now - self.claim_lease}},
                {"$set": {"claimed_at": now}}
            )
        except PyMongoError as e:
            raise PersistenceError(f"Claim takeover failed: {e}", operation="claim") from e

        if result.modified_count == 1:
            logger.warning(f"[Dedup] Took over stale claim {key}")
            return True
        return False

    async def mark_sent(
        self,
        employee_id: str,
        document_type: DocumentType,
        threshold_days: int,
        notification_id: Optional[str] = None
    ) -> bool:
        """Record a confirmed delivery. Returns False when the flag was already set."""
        key = self._key(employee_id, document_type, threshold_days)
        now = datetime.utcnow()
        try:
            await SentNotification.get_motor_collection().update_one(
                key,
                {"$set": {"status": ClaimStatus.SENT.value, "sent_at": now, "notification_id": notification_id}},
                upsert=True
            )
            changed = await self._set_flag(employee_id, document_type, threshold_days, now)
        except PyMongoError as e:
            raise PersistenceError(f"Marking sent failed: {e}", operation="mark_sent") from e

        if not changed:
            logger.warning(f"[Dedup] Flag {flag_key(document_type, threshold_days)} already set for {employee_id}")
        return changed

    async def _set_flag(self, employee_id: str, document_type: DocumentType, threshold_days: int, now: datetime) -> bool:
        field = f"sent_flags.{flag_key(document_type, threshold_days)}"
        result = await Employee.get_motor_collection().update_one(
            {"employee_id": employee_id, field: {"$ne": True}},
            {"$set": {field: True, "updated_at": now}}
        )
        return result.modified_count == 1

    async def release(self, employee_id: str, document_type: DocumentType, threshold_days: int) -> None:
        """Drop an unfulfilled claim so the next cycle retries"""
        key = self._key(employee_id, document_type, threshold_days)
        try:
            await SentNotification.get_motor_collection().delete_one(
                {**key, "status": ClaimStatus.CLAIMED.value}
            )
        except PyMongoError as e:
            raise PersistenceError(f"Releasing claim failed: {e}", operation="release") from e

    async def is_sent(self, employee_id: str, document_type: DocumentType, threshold_days: int) -> bool:
        employee = await Employee.find_one(Employee.employee_id == employee_id)
        return bool(employee and employee.has_sent(document_type, threshold_days))

    async def reset(
        self,
        employee_id: Optional[str] = None,
        document_type: Optional[DocumentType] = None,
        threshold_days: Optional[int] = None
    ) -> dict:
        """
        Forget that alerts were sent so the next matching cycle sends again.

        The ledger is the dedup key: clearing `sent_flags` alone is undone
        by the next `claim`, which re-sets the flag from a `sent` ledger row.
        Filters narrow the reset; none given resets everything. Rows with a
        live claim are left alone.
        """
        pairs = [
            (d, n) for d, n in iter_threshold_pairs()
            if (document_type is None or d == DocumentType(document_type))
            and (threshold_days is None or n == threshold_days)
        ]
        if not pairs:
            return {"ledger_rows": 0, "employees": 0}

        ledger_query = {"status": ClaimStatus.SENT.value}
        employee_query = {}
        if employee_id is not None:
            ledger_query["employee_id"] = employee_id
            employee_query["employee_id"] = employee_id
        if document_type is not None:
            ledger_query["document_type"] = DocumentType(document_type).value
        if threshold_days is not None:
            ledger_query["threshold_days"] = threshold_days

        fields = [f"sent_flags.{flag_key(d, n)}" for d, n in pairs]
        employee_query["$or"] = [{f: {"$exists": True}} for f in fields]
        try:
            ledger = await SentNotification.get_motor_collection().delete_many(ledger_query)
            flags = await Employee.get_motor_collection().update_many(
                employee_query,
                {"$unset": {f: "" for f in fields}, "$set": {"updated_at": datetime.utcnow()}}
            )
        except PyMongoError as e:
            raise PersistenceError(f"Resetting sent flags failed: {e}", operation="reset") from e

        logger.warning(
            f"[Dedup] Reset {ledger.deleted_count} ledger row(s) and flags on {flags.modified_count} employee(s) "
            f"(employee={employee_id or '*'}, type={DocumentType(document_type).value if document_type else '*'}, "
            f"days={threshold_days if threshold_days is not None else '*'})"
        )
        return {"ledger_rows": ledger.deleted_count, "employees": flags.modified_count}
