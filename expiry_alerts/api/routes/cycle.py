"""
Cycle Routes
Trigger endpoint for cron or manual runs, plus live counts
"""
from fastapi import APIRouter, Depends, Query
from typing import Optional

from expiry_alerts.container import EngineContainer, get_container
from expiry_alerts.models.employee import DocumentType

router = APIRouter()


@router.post("/cycle")
async def run_cycle(container: EngineContainer = Depends(get_container)):
    """
    Run one full notification cycle.

    Per-employee failures are reported in the summary with a 200; only a
    store outage produces a 500.
    """
    summary = await container.orchestrator.trigger()
    return summary.to_dict()


@router.get("/cycle/status")
async def cycle_status(container: EngineContainer = Depends(get_container)):
    """Current orchestrator state and the last summary"""
    orchestrator = container.orchestrator
    last = orchestrator.last_summary
    return {
        "state": orchestrator.state.value,
        "pending_batches": [
            {"document_type": d.value, "threshold_days": n, "reference_date": r.isoformat()}
            for d, n, r in orchestrator.pending_batches
        ],
        "last_summary": last.to_dict() if last else None,
    }


@router.get("/stats")
async def get_stats(container: EngineContainer = Depends(get_container)):
    """Notification and document-expiry counts; never sends anything"""
    notification_stats = await container.audit_store.stats()
    document_stats = await container.refresher.document_stats()
    return {
        "notifications": notification_stats.model_dump(),
        **document_stats,
    }


@router.post("/flags/reset")
async def reset_flags(
    employee_id: Optional[str] = None,
    document_type: Optional[DocumentType] = None,
    threshold_days: Optional[int] = Query(None, ge=1),
    container: EngineContainer = Depends(get_container)
):
    """
    Clear sent flags and their ledger rows so matching alerts go out again,
    e.g. after a document renewal. No filters resets every employee.
    """
    result = await container.flag_store.reset(employee_id, document_type, threshold_days)
    return {"message": "Sent flags reset", **result}
