"""
Custom Exceptions
=================

Send failures are split by whether the next scheduled cycle should retry
them. Persistence failures abort the step that hit them.
"""
from typing import Any, Dict, Optional


class ExpiryAlertsError(Exception):
    """Base exception for the expiry alert engine"""

    status_code = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Delivery Errors
# ============================================

class EmailDeliveryError(ExpiryAlertsError):
    """Email could not be delivered"""

    permanent = False

    def __init__(self, message: str, recipient: Optional[str] = None):
        super().__init__(
            message,
            code="EMAIL_DELIVERY_FAILED",
            details={"recipient": recipient} if recipient else None
        )


class TransientSendFailure(EmailDeliveryError):
    """Network or provider hiccup; retried on the next cycle"""


class PermanentSendFailure(EmailDeliveryError):
    """Recipient rejected or missing; needs an operator"""

    permanent = True


# ============================================
# Storage Errors
# ============================================

class PersistenceError(ExpiryAlertsError):
    """Store unreachable or a write did not go through"""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(
            message,
            code="PERSISTENCE_FAILURE",
            details={"operation": operation} if operation else None
        )


class InvalidStatusTransition(ExpiryAlertsError):
    """Audit record already reached a terminal status"""

    status_code = 409

    def __init__(self, record_id: str, target: str):
        super().__init__(
            f"Notification '{record_id}' cannot move to '{target}'",
            code="INVALID_STATUS_TRANSITION",
            details={"record_id": record_id, "target": target}
        )


# ============================================
# Aggregation / Cycle Errors
# ============================================

class ViewRefreshError(ExpiryAlertsError):
    """One aggregate view failed to rebuild"""

    def __init__(self, view_name: str, reason: str):
        super().__init__(
            f"Refresh of '{view_name}' failed: {reason}",
            code="VIEW_REFRESH_FAILED",
            details={"view": view_name}
        )


class UnknownViewError(ExpiryAlertsError):
    """No aggregate view registered under this name"""

    status_code = 404

    def __init__(self, view_name: str):
        super().__init__(
            f"Aggregate view '{view_name}' not found",
            code="VIEW_NOT_FOUND",
            details={"view": view_name}
        )


class CycleAlreadyRunning(ExpiryAlertsError):
    """A cycle is already in progress in this process"""

    status_code = 409

    def __init__(self):
        super().__init__("Notification cycle already running", code="CYCLE_RUNNING")
