"""
Aggregate View Routes
Manual refresh and read access to the dashboard snapshots
"""
from fastapi import APIRouter, Depends, HTTPException, Query

from expiry_alerts.container import EngineContainer, get_container
from expiry_alerts.models.employee import DocumentType

router = APIRouter()


@router.get("/")
async def list_views(container: EngineContainer = Depends(get_container)):
    return {"views": container.refresher.view_names()}


@router.post("/refresh")
async def refresh_all_views(container: EngineContainer = Depends(get_container)):
    """Refresh every view; per-view failures are reported, not raised"""
    results = await container.refresher.refresh_all()
    return {
        "message": "Aggregate view refresh completed",
        "results": [{"view": name, **outcome} for name, outcome in results.items()],
    }


@router.get("/expiring")
async def expiring_documents(
    days: int = Query(30, ge=0),
    document_type: DocumentType = DocumentType.VISA,
    container: EngineContainer = Depends(get_container)
):
    """Employees with a document expiring within `days`, from the monitoring snapshot"""
    rows = await container.refresher.expiring_documents(days, document_type)
    return {"total": len(rows), "employees": rows}


@router.post("/{view_name}/refresh")
async def refresh_view(view_name: str, container: EngineContainer = Depends(get_container)):
    rows = await container.refresher.refresh(view_name)
    return {"view": view_name, "status": "success", "rows": rows}


@router.get("/{view_name}")
async def get_view(view_name: str, container: EngineContainer = Depends(get_container)):
    snapshot = await container.refresher.get(view_name)
    if not snapshot:
        raise HTTPException(status_code=404, detail=f"View '{view_name}' has not been refreshed yet")
    return {
        "view": snapshot.view_name,
        "row_count": snapshot.row_count,
        "refreshed_at": snapshot.refreshed_at,
        "rows": snapshot.rows,
    }
