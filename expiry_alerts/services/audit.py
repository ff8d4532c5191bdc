"""
Notification Audit Store
pending -> sent | failed, terminal once reached.
"""
import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple

from beanie import PydanticObjectId
from pymongo.errors import PyMongoError

from expiry_alerts.exceptions import InvalidStatusTransition, PersistenceError
from expiry_alerts.models.notification import (
    NotificationRecord,
    NotificationCategory,
    NotificationStatus,
    NotificationStats,
    Severity,
    TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)


class NotificationAuditStore:
    """Mongo-backed audit trail of every alert attempt"""

    async def create(
        self,
        title: str,
        message: str,
        severity: Severity,
        recipient: str,
        category: NotificationCategory,
        employee_id: Optional[str] = None,
        document_type: Optional[str] = None,
        threshold_days: Optional[int] = None
    ) -> NotificationRecord:
        record = NotificationRecord(
            title=title,
            message=message,
            type=severity,
            recipient=recipient,
            category=category,
            status=NotificationStatus.PENDING,
            employee_id=employee_id,
            document_type=document_type,
            threshold_days=threshold_days,
        )
        try:
            await record.insert()
        except PyMongoError as e:
            raise PersistenceError(f"Creating notification record failed: {e}", operation="audit.create") from e
        return record

    async def _transition(self, record_id, target: NotificationStatus, fields: dict) -> None:
        record_id = PydanticObjectId(str(record_id))
        try:
            result = await NotificationRecord.get_motor_collection().update_one(
                {"_id": record_id, "status": NotificationStatus.PENDING.value},
                {"$set": {"status": target.value, **fields}}
            )
        except PyMongoError as e:
            raise PersistenceError(f"Updating notification {record_id} failed: {e}", operation=f"audit.{target.value}") from e
        if result.modified_count != 1:
            raise InvalidStatusTransition(str(record_id), target.value)

    async def mark_sent(self, record_id, sent_at: Optional[datetime] = None) -> None:
        await self._transition(record_id, NotificationStatus.SENT, {"sent_at": sent_at or datetime.utcnow()})

    async def mark_failed(self, record_id, error_message: str) -> None:
        await self._transition(record_id, NotificationStatus.FAILED, {"error_message": error_message})

    async def get(self, record_id) -> Optional[NotificationRecord]:
        return await NotificationRecord.get(PydanticObjectId(str(record_id)))

    # ------------------------------------------------------------------
    # Dashboard reads
    # ------------------------------------------------------------------

    async def _count(self, query: dict) -> int:
        try:
            return await NotificationRecord.find(query).count()
        except PyMongoError as e:
            raise PersistenceError(f"Counting notifications failed: {e}", operation="audit.count") from e

    async def count_by_status(self) -> Dict[str, int]:
        return {s.value: await self._count({"status": s.value}) for s in NotificationStatus}

    async def count_by_category(self) -> Dict[str, int]:
        return {c.value: await self._count({"category": c.value}) for c in NotificationCategory}

    async def count_between(self, start: datetime, end: Optional[datetime] = None) -> int:
        window = {"$gte": start}
        if end is not None:
            window["$lt"] = end
        return await self._count({"created_at": window})

    async def stats(self, today: Optional[date] = None) -> NotificationStats:
        today = today or datetime.utcnow().date()
        day_start = datetime.combine(today, time.min)
        by_status = await self.count_by_status()
        return NotificationStats(
            total=sum(by_status.values()),
            sent=by_status[NotificationStatus.SENT.value],
            pending=by_status[NotificationStatus.PENDING.value],
            failed=by_status[NotificationStatus.FAILED.value],
            today=await self.count_between(day_start),
            this_week=await self.count_between(day_start - timedelta(days=7)),
            by_category=await self.count_by_category(),
        )

    async def list(
        self,
        page: int = 1,
        limit: int = 50,
        status: Optional[NotificationStatus] = None,
        category: Optional[NotificationCategory] = None,
        severity: Optional[Severity] = None,
        search: Optional[str] = None
    ) -> Tuple[List[NotificationRecord], int]:
        """Newest first, with the total count of the filtered set"""
        query = {}
        if status:
            query["status"] = NotificationStatus(status).value
        if category:
            query["category"] = NotificationCategory(category).value
        if severity:
            query["type"] = Severity(severity).value
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [{"title": pattern}, {"message": pattern}, {"recipient": pattern}]

        offset = (max(page, 1) - 1) * limit
        try:
            total = await NotificationRecord.find(query).count()
            records = await NotificationRecord.find(query).sort("-created_at").skip(offset).limit(limit).to_list()
        except PyMongoError as e:
            raise PersistenceError(f"Listing notifications failed: {e}", operation="audit.list") from e
        return records, total

    async def cleanup(self, older_than_days: int = 30) -> int:
        """Delete terminal records older than the retention window; pending ones stay"""
        cutoff = datetime.utcnow() - timedelta(days=older_than_days)
        try:
            result = await NotificationRecord.get_motor_collection().delete_many({
                "created_at": {"$lt": cutoff},
                "status": {"$in": [s.value for s in TERMINAL_STATUSES]},
            })
        except PyMongoError as e:
            raise PersistenceError(f"Notification cleanup failed: {e}", operation="audit.cleanup") from e
        logger.info(f"[Audit] Cleaned up {result.deleted_count} notifications older than {older_than_days} days")
        return result.deleted_count
