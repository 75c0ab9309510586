"""
Pydantic models for candidate bills and extraction results.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional
from datetime import date
from decimal import Decimal
from enum import Enum


class SourceKind(str, Enum):
    """Where a candidate bill came from."""
    EMAIL = "email"
    PDF = "pdf"
    COMBINED = "combined"  # Result of merging an email and a PDF candidate


class BillSource(BaseModel):
    """Origin of a candidate bill."""
    kind: SourceKind
    message_id: Optional[str] = None
    attachment_id: Optional[str] = None
    file_name: Optional[str] = None

    class Config:
        frozen = True


class FieldProvenance(BaseModel):
    """How one field of a bill was extracted."""
    method: str
    confidence: float = Field(ge=0.0, le=1.0)

    class Config:
        frozen = True


class CandidateBill(BaseModel):
    """
    One extraction attempt's structured bill.

    Immutable once produced. Known fields are typed; anything else a pattern
    extracts goes into `extras`.
    """
    id: str
    vendor: Optional[str] = None
    amount: Decimal
    currency: str
    bill_date: Optional[date] = None
    due_date: Optional[date] = None
    account_number: Optional[str] = None
    invoice_number: Optional[str] = None
    category: Optional[str] = None
    source: BillSource
    extraction_method: str
    language: str = "en"
    confidence: float = Field(ge=0.0, le=1.0)
    provenance: Dict[str, FieldProvenance] = Field(default_factory=dict)
    extras: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True

    @field_validator("amount")
    @classmethod
    def amount_must_be_positive(cls, v: Decimal) -> Decimal:
        if v is None or v <= 0:
            raise ValueError("amount must be greater than zero")
        return v

    @field_validator("currency")
    @classmethod
    def currency_must_be_set(cls, v: str) -> str:
        v = (v or "").strip().upper()
        if not v:
            raise ValueError("currency must not be empty")
        return v

    @property
    def is_merged(self) -> bool:
        return self.source.kind == SourceKind.COMBINED


# Fields of CandidateBill that hold extracted bill data (merge and mapping operate on these)
BILL_DATA_FIELDS = [
    "vendor",
    "amount",
    "currency",
    "bill_date",
    "due_date",
    "account_number",
    "invoice_number",
    "category",
    "extraction_method",
    "language",
]


class ExtractionResult(BaseModel):
    """Outcome of one strategy, or of the whole orchestrator run."""
    success: bool
    candidate_bills: List[CandidateBill] = Field(default_factory=list)
    confidence: float = 0.0
    error: Optional[str] = None
    error_code: Optional[str] = None
    strategy: Optional[str] = None


class FieldMapping(BaseModel):
    """A user's mapping of an extracted field to one of their own fields."""
    source_field_name: str
    target_field_name: str
    data_type: str = "text"
    field_id: Optional[str] = None
