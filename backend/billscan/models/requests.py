"""
Pydantic models for the extraction API.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime

from billscan.models.bill import CandidateBill, ExtractionResult


class EmailExtractionRequest(BaseModel):
    """A decoded email to extract a bill from."""
    message_id: str
    sender_address: str = ""
    subject: str = ""
    body_text: str = ""
    received_at: Optional[datetime] = None
    language_hint: Optional[str] = None
    is_trusted_source: bool = False
    user_id: Optional[str] = None  # Map the result onto this user's fields


class DocumentExtractionRequest(BaseModel):
    """Text of a document (e.g. a PDF attachment) to extract a bill from."""
    file_name: str
    raw_text: str = Field(min_length=1)
    message_id: Optional[str] = None
    attachment_id: Optional[str] = None
    language_hint: Optional[str] = None
    is_trusted_source: bool = False
    user_id: Optional[str] = None


class ExtractionResponse(BaseModel):
    """Extraction result plus, when a user was given, the user-field view of each bill."""
    result: ExtractionResult
    user_fields: Optional[Dict[str, Dict[str, Any]]] = None


class DeduplicationRequest(BaseModel):
    bills: List[CandidateBill]


class DeduplicationResponse(BaseModel):
    bills: List[CandidateBill]
    input_count: int
    output_count: int
