"""
Extraction API router: bills from emails and documents, and deduplication.
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import Any, Dict, Optional
import logging

from billscan.models.bill import ExtractionResult
from billscan.models.context import DocumentContext, EmailContext
from billscan.models.requests import (
    DeduplicationRequest,
    DeduplicationResponse,
    DocumentExtractionRequest,
    EmailExtractionRequest,
    ExtractionResponse,
)
from billscan.services.deduplication import deduplicate
from billscan.services.extractor import BillExtractor
from billscan.services.field_mapping import FieldMappingService

router = APIRouter(prefix="/extract", tags=["extract"])
logger = logging.getLogger(__name__)


def get_bill_extractor() -> BillExtractor:
    return BillExtractor()


def get_field_mapping_service() -> FieldMappingService:
    return FieldMappingService()


def map_user_fields(
    result: ExtractionResult,
    user_id: Optional[str],
    mapping_service: FieldMappingService
) -> Optional[Dict[str, Dict[str, Any]]]:
    """User-field view of each extracted bill, keyed by bill id."""
    if not user_id or not result.success:
        return None

    mappings = mapping_service.load_field_mappings(user_id)
    return {
        bill.id: mapping_service.map_to_user_fields(bill, mappings)
        for bill in result.candidate_bills
    }


@router.post("/email", response_model=ExtractionResponse)
async def extract_email(
    request: EmailExtractionRequest,
    extractor: BillExtractor = Depends(get_bill_extractor),
    mapping_service: FieldMappingService = Depends(get_field_mapping_service)
):
    """
    Extract a bill from an email.

    A failed extraction is still a 200 response; `result.success` and
    `result.error_code` tell why nothing was found.
    """
    context = EmailContext(
        message_id=request.message_id,
        sender_address=request.sender_address,
        subject=request.subject,
        body_text=request.body_text,
        received_at=request.received_at,
        language_hint=request.language_hint,
        is_trusted_source=request.is_trusted_source,
    )

    try:
        result = extractor.extract_from_email(context)
    except Exception as e:
        logger.error("Email extraction failed", extra={
            "message_id": request.message_id,
            "error": str(e)
        }, exc_info=True)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to extract bill: {str(e)}"
        )

    return ExtractionResponse(
        result=result,
        user_fields=map_user_fields(result, request.user_id, mapping_service)
    )


@router.post("/document", response_model=ExtractionResponse)
async def extract_document(
    request: DocumentExtractionRequest,
    extractor: BillExtractor = Depends(get_bill_extractor),
    mapping_service: FieldMappingService = Depends(get_field_mapping_service)
):
    """Extract a bill from document text."""
    context = DocumentContext(
        file_name=request.file_name,
        raw_text=request.raw_text,
        message_id=request.message_id,
        attachment_id=request.attachment_id,
        language_hint=request.language_hint,
        is_trusted_source=request.is_trusted_source,
    )

    try:
        result = extractor.extract_from_document(context)
    except Exception as e:
        logger.error("Document extraction failed", extra={
            "file_name": request.file_name,
            "error": str(e)
        }, exc_info=True)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to extract bill: {str(e)}"
        )

    return ExtractionResponse(
        result=result,
        user_fields=map_user_fields(result, request.user_id, mapping_service)
    )


@router.post("/deduplicate", response_model=DeduplicationResponse)
async def deduplicate_bills(request: DeduplicationRequest):
    """Merge email and PDF candidates of the same messages."""
    bills = deduplicate(request.bills)
    return DeduplicationResponse(
        bills=bills,
        input_count=len(request.bills),
        output_count=len(bills)
    )
