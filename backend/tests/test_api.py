"""
Test suite for the extraction API.

Tests cover:
- Email and document extraction endpoints
- User-field mapping of extracted bills
- Error handling (500 on unexpected errors, 422 on invalid requests)
- Deduplication endpoint
- Health endpoints of the application
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from billscan.routers.extract import get_bill_extractor, get_field_mapping_service, router
from billscan.models.bill import BillSource, CandidateBill, ExtractionResult, FieldMapping, SourceKind
from fastapi.testclient import TestClient
from fastapi import FastAPI
from decimal import Decimal
import pytest
from unittest.mock import Mock


# Create test app
app = FastAPI()
app.include_router(router)
client = TestClient(app)


def make_bill():
    return CandidateBill(
        id="email-m1",
        vendor="Acme",
        amount=Decimal("45.00"),
        currency="USD",
        source=BillSource(kind=SourceKind.EMAIL, message_id="m1"),
        extraction_method="pattern",
        confidence=0.67,
    )


@pytest.fixture
def mock_extractor():
    extractor = Mock()
    app.dependency_overrides[get_bill_extractor] = lambda: extractor
    yield extractor
    app.dependency_overrides.pop(get_bill_extractor, None)


@pytest.fixture
def mock_mapping_service():
    service = Mock()
    app.dependency_overrides[get_field_mapping_service] = lambda: service
    yield service
    app.dependency_overrides.pop(get_field_mapping_service, None)


class TestEmailEndpoint:
    """Test POST /extract/email."""

    def test_success_with_user_fields(self, mock_extractor, mock_mapping_service):
        mock_extractor.extract_from_email.return_value = ExtractionResult(
            success=True,
            candidate_bills=[make_bill()],
            confidence=0.67,
            strategy="pattern"
        )
        mappings = [FieldMapping(source_field_name="issuer_name", target_field_name="Issuer", field_id="f1")]
        mock_mapping_service.load_field_mappings.return_value = mappings
        mock_mapping_service.map_to_user_fields.return_value = {
            "f1": {"value": "Acme", "confidence": 0.67, "origin_field": "vendor"}
        }

        response = client.post("/extract/email", json={
            "message_id": "m1",
            "sender_address": "billing@acme.com",
            "subject": "Your invoice",
            "body_text": "Total Due: $45.00",
            "user_id": "user-1"
        })

        assert response.status_code == 200
        data = response.json()
        assert data["result"]["success"] is True
        assert data["result"]["candidate_bills"][0]["vendor"] == "Acme"
        assert data["user_fields"] == {"email-m1": {"f1": {"value": "Acme", "confidence": 0.67, "origin_field": "vendor"}}}
        mock_mapping_service.load_field_mappings.assert_called_once_with("user-1")

        context = mock_extractor.extract_from_email.call_args[0][0]
        assert context.message_id == "m1"
        assert context.sender_domain == "acme.com"

    def test_no_user_means_no_mapping(self, mock_extractor, mock_mapping_service):
        mock_extractor.extract_from_email.return_value = ExtractionResult(
            success=True,
            candidate_bills=[make_bill()],
            confidence=0.67
        )

        response = client.post("/extract/email", json={"message_id": "m1", "body_text": "Total Due: $45.00"})

        assert response.status_code == 200
        assert response.json()["user_fields"] is None
        mock_mapping_service.load_field_mappings.assert_not_called()

    def test_failed_extraction_is_not_an_http_error(self, mock_extractor, mock_mapping_service):
        mock_extractor.extract_from_email.return_value = ExtractionResult(
            success=False,
            error="Text does not match any bill pattern",
            error_code="no_matching_strategy"
        )

        response = client.post("/extract/email", json={"message_id": "m1", "user_id": "user-1"})

        assert response.status_code == 200
        assert response.json()["result"]["error_code"] == "no_matching_strategy"
        assert response.json()["user_fields"] is None

    def test_unexpected_error(self, mock_extractor, mock_mapping_service):
        mock_extractor.extract_from_email.side_effect = RuntimeError("boom")

        response = client.post("/extract/email", json={"message_id": "m1"})

        assert response.status_code == 500
        assert "boom" in response.json()["detail"]

    def test_missing_message_id(self, mock_extractor, mock_mapping_service):
        response = client.post("/extract/email", json={"subject": "Your bill"})
        assert response.status_code == 422


class TestDocumentEndpoint:
    """Test POST /extract/document."""

    def test_extract_document(self):
        response = client.post("/extract/document", json={
            "file_name": "szamla.pdf",
            "raw_text": "Fizetendő összeg: 45 Ft",
            "message_id": "msg-1",
            "attachment_id": "att-1"
        })

        assert response.status_code == 200
        result = response.json()["result"]
        assert result["success"] is True
        assert result["strategy"] == "stem_pattern"
        bill = result["candidate_bills"][0]
        assert bill["id"] == "pdf-msg-1-att-1"
        assert bill["currency"] == "HUF"
        assert bill["source"]["kind"] == "pdf"

    def test_empty_text_rejected(self):
        response = client.post("/extract/document", json={"file_name": "bill.pdf", "raw_text": ""})
        assert response.status_code == 422

    def test_unexpected_error(self, mock_extractor, mock_mapping_service):
        mock_extractor.extract_from_document.side_effect = ValueError("bad document")

        response = client.post("/extract/document", json={"file_name": "bill.pdf", "raw_text": "Total: $5"})

        assert response.status_code == 500


class TestDeduplicateEndpoint:
    """Test POST /extract/deduplicate."""

    def test_merges_matching_candidates(self):
        email = {
            "id": "email-m1",
            "vendor": "Acme",
            "amount": "45.00",
            "currency": "USD",
            "source": {"kind": "email", "message_id": "m1"},
            "extraction_method": "pattern",
            "confidence": 0.67
        }
        pdf = {
            "id": "pdf-m1-a1",
            "vendor": "Acme Inc",
            "amount": "45.00",
            "currency": "USD",
            "source": {"kind": "pdf", "message_id": "m1", "attachment_id": "a1", "file_name": "bill.pdf"},
            "extraction_method": "regex_heuristic",
            "confidence": 0.44
        }

        response = client.post("/extract/deduplicate", json={"bills": [email, pdf]})

        assert response.status_code == 200
        data = response.json()
        assert data["input_count"] == 2
        assert data["output_count"] == 1
        assert data["bills"][0]["id"] == "email-m1"
        assert data["bills"][0]["source"]["kind"] == "combined"
        assert data["bills"][0]["confidence"] == 0.67

    def test_invalid_bill_rejected(self):
        response = client.post("/extract/deduplicate", json={"bills": [{"id": "x", "amount": "0"}]})
        assert response.status_code == 422


class TestApplication:
    """Test the application entry point."""

    def test_health(self):
        from billscan.main import app as main_app

        main_client = TestClient(main_app)
        assert main_client.get("/health").json() == {"status": "healthy"}
        assert main_client.get("/").json()["message"] == "BillScan API"
