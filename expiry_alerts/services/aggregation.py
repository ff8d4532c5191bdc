"""
Aggregation Refresher
Rebuilds the read-optimised dashboard snapshots from the employee rows.

Each view is stored as a single document and swapped with one
`replace_one`, so a reader sees either the previous or the new snapshot
in full. Rows are built in a fixed order; refreshing unchanged data
yields the same rows.

A single document is capped at 16 MB by MongoDB. A view whose encoded
snapshot passes MAX_SNAPSHOT_BYTES fails its refresh and keeps the
previous snapshot; visa_expiry_monitoring, the widest view, reaches the
cap at roughly 35,000 active employees.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, List, Optional

import bson

from expiry_alerts.exceptions import UnknownViewError, ViewRefreshError
from expiry_alerts.models.employee import Employee, DocumentType
from expiry_alerts.models.snapshot import AggregateSnapshot
from expiry_alerts.services.thresholds import evaluate, days_remaining

logger = logging.getLogger(__name__)

TRACKED_DOCUMENT_TYPES = ["passport", "visa", "labour_card", "contract", "other"]
EXPIRING_SOON_DAYS = 30
# Below MongoDB's 16 MB document cap, leaving room for the wire envelope
MAX_SNAPSHOT_BYTES = 15 * 1024 * 1024


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.date().isoformat() if value else None


def _is_active(employee: Employee) -> bool:
    return employee.is_active and employee.status == "active"


def _expires_within(expiry: Optional[datetime], today: date, days: int) -> bool:
    return expiry is not None and expiry.date() <= today + timedelta(days=days)


# Upload folder prefixes that name the same company
FOLDER_ALIASES = {
    "EMP_COMPANY_DOCS": "COMPANY_DOCUMENTS",
    "Company Documents": "COMPANY_DOCUMENTS",
    "CUBS_TECH": "CUBS",
    "AL_ASHBAL_AJMAN": "AL ASHBAL AJMAN",
}
FOLDER_DISPLAY_NAMES = {
    "COMPANY_DOCUMENTS": "Company Documents",
    "CUBS TECH": "CUBS",
    "ASHBAL_AL_KHALEEJ": "ASHBAL AL KHALEEJ",
    "FLUID_ENGINEERING": "FLUID",
    "RUKIN_AL_ASHBAL": "RUKIN",
    "GOLDEN_CUBS": "GOLDEN CUBS",
    "EMP_ALHT": "AL HANA TOURS & TRAVELS",
    "AL HANA TOURS and TRAVELS": "AL HANA TOURS & TRAVELS",
}
IGNORED_FOLDERS = {"FINAL_TEST"}


def folder_display_name(prefix: str) -> str:
    return FOLDER_DISPLAY_NAMES.get(prefix, prefix.replace("_", " "))


def build_company_document_folders(employees: List[Employee], today: date) -> List[dict]:
    folders: Dict[str, dict] = {}
    for employee in employees:
        for document in employee.documents:
            if not document.file_path:
                continue
            raw_prefix = document.file_path.split("/", 1)[0]
            if raw_prefix in IGNORED_FOLDERS:
                continue
            prefix = FOLDER_ALIASES.get(raw_prefix, raw_prefix)
            folder = folders.setdefault(prefix, {"count": 0, "last": None})
            folder["count"] += 1
            if folder["last"] is None or document.uploaded_at > folder["last"]:
                folder["last"] = document.uploaded_at
    return [
        {
            "company_prefix": prefix,
            "display_name": folder_display_name(prefix),
            "document_count": folders[prefix]["count"],
            "last_modified": folders[prefix]["last"].isoformat() if folders[prefix]["last"] else None,
        }
        for prefix in sorted(folders)
    ]


def build_employee_counts_by_company(employees: List[Employee], today: date) -> List[dict]:
    counts = defaultdict(lambda: {"total": 0, "active": 0, "inactive": 0})
    for employee in employees:
        bucket = counts[employee.company_name]
        bucket["total"] += 1
        bucket["active" if _is_active(employee) else "inactive"] += 1
    return [{"company_name": company, **counts[company]} for company in sorted(counts)]


def build_employee_document_summary(employees: List[Employee], today: date) -> List[dict]:
    rows = []
    for employee in sorted(employees, key=lambda e: e.employee_id):
        documents = [d for d in employee.documents if d.is_active]
        by_type = {t: 0 for t in TRACKED_DOCUMENT_TYPES}
        for document in documents:
            kind = document.document_type if document.document_type in by_type else "other"
            by_type[kind] += 1
        last_upload = max((d.uploaded_at for d in documents), default=None)
        rows.append({
            "employee_id": employee.employee_id,
            "employee_name": employee.name,
            "company_name": employee.company_name,
            "is_active": employee.is_active,
            "total_documents": len(documents),
            **{f"{t}_documents": n for t, n in by_type.items()},
            "document_types": sorted({d.document_type for d in documents}),
            "last_document_upload": last_upload.isoformat() if last_upload else None,
        })
    return rows


def build_company_statistics(employees: List[Employee], today: date) -> List[dict]:
    companies: Dict[str, List[Employee]] = defaultdict(list)
    for employee in employees:
        companies[employee.company_name].append(employee)

    rows = []
    for company in sorted(companies):
        members = companies[company]
        joined = [e.joining_date for e in members if e.joining_date]
        active = sum(1 for e in members if _is_active(e))
        rows.append({
            "company_name": company,
            "total_employees": len(members),
            "active_employees": active,
            "inactive_employees": len(members) - active,
            "employees_with_expiring_visa_30d": sum(1 for e in members if _expires_within(e.visa_expiry_date, today, 30)),
            "employees_with_expiring_visa_60d": sum(1 for e in members if _expires_within(e.visa_expiry_date, today, 60)),
            "employees_with_expiring_passport_60d": sum(1 for e in members if _expires_within(e.passport_expiry_date, today, 60)),
            "employees_with_expiring_labour_card_60d": sum(1 for e in members if _expires_within(e.labour_card_expiry_date, today, 60)),
            "nationality_count": len({e.nationality for e in members if e.nationality}),
            "trade_count": len({e.trade for e in members if e.trade}),
            "earliest_joining_date": _iso(min(joined)) if joined else None,
            "latest_joining_date": _iso(max(joined)) if joined else None,
            "stats_date": today.isoformat(),
        })
    return rows


def build_visa_expiry_monitoring(employees: List[Employee], today: date) -> List[dict]:
    rows = []
    for employee in sorted(employees, key=lambda e: e.employee_id):
        if not _is_active(employee):
            continue
        if not any(employee.expiry_for(t) for t in DocumentType):
            continue
        row = {
            "employee_id": employee.employee_id,
            "employee_name": employee.name,
            "company_name": employee.company_name,
            "email": employee.email,
            "check_date": today.isoformat(),
        }
        for document_type in DocumentType:
            expiry = employee.expiry_for(document_type)
            evaluation = evaluate(document_type, today, expiry)
            row[f"{document_type.value}_expiry_date"] = _iso(expiry)
            row[f"days_until_{document_type.value}_expiry"] = evaluation.days_remaining
            row[f"{document_type.value}_alert_level"] = evaluation.level.value
        rows.append(row)
    return rows


@dataclass(frozen=True)
class ViewDefinition:
    name: str
    build: Callable[[List[Employee], date], List[dict]]
    description: str


VIEWS: Dict[str, ViewDefinition] = {
    view.name: view for view in [
        ViewDefinition("company_document_folders", build_company_document_folders,
                       "Uploaded document count and last upload per company folder"),
        ViewDefinition("employee_counts_by_company", build_employee_counts_by_company,
                       "Active/inactive headcount per company"),
        ViewDefinition("employee_document_summary", build_employee_document_summary,
                       "Uploaded documents per employee by type"),
        ViewDefinition("company_statistics", build_company_statistics,
                       "Per-company headcount and expiring-document counts"),
        ViewDefinition("visa_expiry_monitoring", build_visa_expiry_monitoring,
                       "Days remaining and alert level per active employee"),
    ]
}


class AggregationRefresher:
    """Rebuilds and serves the aggregate snapshots"""

    def __init__(self, today: Callable[[], date] = lambda: datetime.utcnow().date()):
        self._today = today

    @staticmethod
    def view_names() -> List[str]:
        return list(VIEWS)

    def _view(self, name: str) -> ViewDefinition:
        if name not in VIEWS:
            raise UnknownViewError(name)
        return VIEWS[name]

    async def refresh(self, name: str, today: Optional[date] = None) -> int:
        """Rebuild one view and swap it in; returns the row count"""
        view = self._view(name)
        today = today or self._today()
        try:
            raw_rows = await Employee.get_motor_collection().find({}).to_list(length=None)
            employees, rejected = Employee.parse_rows(raw_rows)
            if rejected:
                logger.error(f"[Refresh] {name}: skipping unreadable employee row(s): {', '.join(rejected)}")
            rows = view.build(employees, today)
            snapshot = {
                "view_name": name,
                "rows": rows,
                "row_count": len(rows),
                "reference_date": datetime.combine(today, time.min),
                "refreshed_at": datetime.utcnow(),
            }
            size = len(bson.encode(snapshot))
        except Exception as e:
            raise ViewRefreshError(name, f"{type(e).__name__}: {e}") from e

        if size > MAX_SNAPSHOT_BYTES:
            # Previous snapshot stays in place
            raise ViewRefreshError(
                name, f"snapshot of {len(rows)} rows is {size} bytes, over the {MAX_SNAPSHOT_BYTES}-byte document limit"
            )

        try:
            await AggregateSnapshot.get_motor_collection().replace_one({"view_name": name}, snapshot, upsert=True)
        except Exception as e:
            raise ViewRefreshError(name, f"{type(e).__name__}: {e}") from e
        logger.info(f"[Refresh] {name}: {len(rows)} rows")
        return len(rows)

    async def refresh_all(self, today: Optional[date] = None) -> Dict[str, dict]:
        """Refresh every view; one failure does not stop the others"""
        results = {}
        for name in VIEWS:
            try:
                results[name] = {"status": "success", "rows": await self.refresh(name, today)}
            except ViewRefreshError as e:
                logger.warning(f"[Refresh] {e.message}")
                results[name] = {"status": "error", "error": e.message}
        return results

    async def run_scheduled(self, name: str) -> None:
        """Scheduler entry point; failures are logged and retried next interval"""
        try:
            await self.refresh(name)
        except ViewRefreshError as e:
            logger.error(f"[Refresh] Scheduled refresh failed: {e.message}")

    async def get(self, name: str) -> Optional[AggregateSnapshot]:
        self._view(name)
        return await AggregateSnapshot.find_one(AggregateSnapshot.view_name == name)

    async def expiring_documents(self, days_threshold: int = 30, document_type: DocumentType = DocumentType.VISA) -> List[dict]:
        """Employees whose document expires within `days_threshold`, most urgent first"""
        document_type = DocumentType(document_type)
        snapshot = await self.get("visa_expiry_monitoring")
        if snapshot is None:
            return []

        key = document_type.value
        matches = [
            {
                "employee_id": row["employee_id"],
                "employee_name": row["employee_name"],
                "company_name": row["company_name"],
                "document_type": key,
                "expiry_date": row[f"{key}_expiry_date"],
                "days_remaining": row[f"days_until_{key}_expiry"],
                "alert_level": row[f"{key}_alert_level"],
            }
            for row in snapshot.rows
            if row.get(f"days_until_{key}_expiry") is not None and row[f"days_until_{key}_expiry"] <= days_threshold
        ]
        return sorted(matches, key=lambda r: (r["days_remaining"], r["employee_id"]))

    async def document_stats(self, today: Optional[date] = None) -> dict:
        """Live counts from the employee rows, for GET /stats"""
        today = today or self._today()
        raw_rows = await Employee.get_motor_collection().find({"is_active": True}).to_list(length=None)
        employees, _ = Employee.parse_rows(raw_rows)
        stats = {}
        for document_type in DocumentType:
            remaining = [days_remaining(today, e.expiry_for(document_type)) for e in employees]
            remaining = [d for d in remaining if d is not None]
            stats[document_type.value] = {
                "total": len(remaining),
                "expiring_soon": sum(1 for d in remaining if 0 <= d <= EXPIRING_SOON_DAYS),
                "expired": sum(1 for d in remaining if d < 0),
            }
        flagged = sum(sum(1 for v in e.sent_flags.values() if v) for e in employees)
        return {"active_employees": len(employees), "documents": stats, "notifications_flagged": flagged}
