"""
Employee Model
Employee rows as read by the expiry alert engine.

The CRUD screens own these documents; this engine only reads them and
sets per-threshold sent flags.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, Field, ValidationError
from beanie import Document


class DocumentType(str, Enum):
    VISA = "visa"
    PASSPORT = "passport"
    LABOUR_CARD = "labour_card"


# Employee field holding the expiry date of each document type
EXPIRY_FIELDS: Dict[DocumentType, str] = {
    DocumentType.VISA: "visa_expiry_date",
    DocumentType.PASSPORT: "passport_expiry_date",
    DocumentType.LABOUR_CARD: "labour_card_expiry_date",
}


def flag_key(document_type: DocumentType, threshold_days: int) -> str:
    """Key inside `Employee.sent_flags`, e.g. "visa_7" """
    return f"{DocumentType(document_type).value}_{threshold_days}"


class EmployeeDocument(BaseModel):
    """Employee uploaded document"""
    title: str = ""
    document_type: str  # 'visa', 'passport', 'labour_card', 'contract', 'other'
    file_path: str = ""
    uploaded_at: datetime = Field(default_factory=datetime.utcnow)
    is_active: bool = True


class Employee(Document):
    """Employee document model"""

    # Basic Information
    employee_id: str
    name: str
    email: Optional[str] = None  # validated at send time; CRUD rows may hold junk
    company_name: str = "Unassigned"
    nationality: Optional[str] = None
    trade: Optional[str] = None
    joining_date: Optional[datetime] = None

    # Status
    is_active: bool = True
    status: str = "active"  # active, inactive

    # Document expiry dates (stored as midnight UTC)
    visa_expiry_date: Optional[datetime] = None
    passport_expiry_date: Optional[datetime] = None
    labour_card_expiry_date: Optional[datetime] = None

    # Sent flags keyed by flag_key(); cleared only by DedupFlagStore.reset()
    sent_flags: Dict[str, bool] = Field(default_factory=dict)

    documents: List[EmployeeDocument] = []

    # Metadata
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "employees"
        indexes = [
            "employee_id",
            "company_name",
            "visa_expiry_date",
            "passport_expiry_date",
            "labour_card_expiry_date",
        ]

    class Config:
        json_schema_extra = {
            "example": {
                "employee_id": "EMP001",
                "name": "John Doe",
                "email": "john.doe@company.com",
                "company_name": "CUBS",
                "visa_expiry_date": "2026-12-01",
                "passport_expiry_date": "2029-03-15",
                "sent_flags": {"visa_60": True},
            }
        }

    def expiry_for(self, document_type: DocumentType) -> Optional[datetime]:
        return getattr(self, EXPIRY_FIELDS[DocumentType(document_type)])

    def has_sent(self, document_type: DocumentType, threshold_days: int) -> bool:
        return bool(self.sent_flags.get(flag_key(document_type, threshold_days)))

    @classmethod
    def parse_rows(cls, rows: List[dict]) -> Tuple[List["Employee"], List[str]]:
        """Validate raw rows one at a time; returns (employees, ids of unreadable rows)"""
        employees, rejected = [], []
        for row in rows:
            try:
                employees.append(cls.model_validate(row))
            except ValidationError:
                rejected.append(str(row.get("employee_id") or row.get("_id")))
        return employees, rejected
