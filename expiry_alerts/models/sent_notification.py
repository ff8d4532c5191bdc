from datetime import datetime
from enum import Enum
from typing import Optional

import pymongo
from beanie import Document
from pydantic import Field
from pymongo import IndexModel


class ClaimStatus(str, Enum):
    CLAIMED = "claimed"
    SENT = "sent"


class SentNotification(Document):
    """
    Dedup ledger: one row per (employee, document type, threshold).

    The unique index makes the insert itself the claim, so two cycles in
    separate processes cannot both send the same alert.
    """
    employee_id: str
    document_type: str
    threshold_days: int
    status: ClaimStatus = ClaimStatus.CLAIMED
    claimed_at: datetime = Field(default_factory=datetime.utcnow)
    sent_at: Optional[datetime] = None
    notification_id: Optional[str] = None

    class Settings:
        name = "sent_notifications"
        indexes = [
            IndexModel(
                [
                    ("employee_id", pymongo.ASCENDING),
                    ("document_type", pymongo.ASCENDING),
                    ("threshold_days", pymongo.ASCENDING),
                ],
                name="uq_employee_document_threshold",
                unique=True,
            ),
        ]
