from beanie import Document
from datetime import datetime
from typing import Optional, List
from enum import Enum
from pydantic import BaseModel, Field


class Severity(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    INFO = "info"


class NotificationCategory(str, Enum):
    VISA = "visa"
    DOCUMENT = "document"
    SYSTEM = "system"
    APPROVAL = "approval"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


TERMINAL_STATUSES = (NotificationStatus.SENT, NotificationStatus.FAILED)


class NotificationRecord(Document):
    """Audit row for one outbound alert; a retry creates a new record"""
    title: str
    message: str
    type: Severity
    recipient: str
    category: NotificationCategory
    status: NotificationStatus = NotificationStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.utcnow)
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None

    # Dispatch context
    employee_id: Optional[str] = None
    document_type: Optional[str] = None
    threshold_days: Optional[int] = None

    class Settings:
        name = "notifications"
        indexes = [
            "status",
            "category",
            "created_at",
        ]


class NotificationListResponse(BaseModel):
    total: int
    page: int
    limit: int
    notifications: List[NotificationRecord]


class NotificationStats(BaseModel):
    total: int = 0
    sent: int = 0
    pending: int = 0
    failed: int = 0
    today: int = 0
    this_week: int = 0
    by_category: dict = Field(default_factory=lambda: {c.value: 0 for c in NotificationCategory})
