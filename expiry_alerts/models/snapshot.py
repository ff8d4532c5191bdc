from beanie import Document
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import Field


class AggregateSnapshot(Document):
    """
    Precomputed dashboard view. One document per view, replaced whole on
    every refresh and never patched in place.
    """
    view_name: str
    rows: List[Dict[str, Any]] = []
    row_count: int = 0
    reference_date: Optional[datetime] = None
    refreshed_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "aggregate_snapshots"
        indexes = [
            "view_name",
        ]
