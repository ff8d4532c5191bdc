"""
Notification Routes
Audit trail listing, counts and retention cleanup
"""
from fastapi import APIRouter, Depends, Query
from typing import Optional

from expiry_alerts.container import EngineContainer, get_container
from expiry_alerts.models.notification import (
    NotificationCategory,
    NotificationListResponse,
    NotificationStats,
    NotificationStatus,
    Severity,
)

router = APIRouter()


@router.get("/", response_model=NotificationListResponse)
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    status: Optional[NotificationStatus] = None,
    category: Optional[NotificationCategory] = None,
    severity: Optional[Severity] = None,
    search: Optional[str] = None,
    container: EngineContainer = Depends(get_container)
):
    """Newest first; failed records are the operator's follow-up list"""
    records, total = await container.audit_store.list(
        page=page, limit=limit, status=status, category=category, severity=severity, search=search
    )
    return {"total": total, "page": page, "limit": limit, "notifications": records}


@router.get("/stats", response_model=NotificationStats)
async def notification_stats(container: EngineContainer = Depends(get_container)):
    return await container.audit_store.stats()


@router.delete("/cleanup")
async def cleanup_notifications(
    older_than_days: Optional[int] = Query(None, ge=1),
    container: EngineContainer = Depends(get_container)
):
    """Delete sent/failed records past the retention window"""
    days = older_than_days or container.config.NOTIFICATION_RETENTION_DAYS
    deleted = await container.audit_store.cleanup(days)
    return {"message": f"Cleaned up {deleted} notifications", "deleted": deleted, "older_than_days": days}
