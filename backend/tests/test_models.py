"""
Tests for extraction contexts, bill models and the error taxonomy.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from decimal import Decimal

import pytest
from pydantic import ValidationError

from billscan.models.bill import BillSource, CandidateBill, SourceKind
from billscan.models.context import DocumentContext, EmailContext
from billscan.services.errors import (
    ExtractionError,
    MissingRequiredField,
    NoMatchingStrategy,
    NotABillDocument,
    UnparsableAmount,
    UnparsableDate,
)


def make_bill(**overrides):
    data = {
        "id": "email-m1",
        "amount": Decimal("45.00"),
        "currency": "USD",
        "source": BillSource(kind=SourceKind.EMAIL, message_id="m1"),
        "extraction_method": "pattern",
        "confidence": 0.7,
    }
    data.update(overrides)
    return CandidateBill(**data)


class TestEmailContext:
    """Test sender parsing on email contexts."""

    def test_display_name_form(self):
        context = EmailContext(
            message_id="m1",
            sender_address='"ACME Billing" <Billing@Acme.com>',
            subject="Your bill",
            body_text="Total: $45.00"
        )
        assert context.sender_name == "ACME Billing"
        assert context.sender_email == "billing@acme.com"
        assert context.sender_domain == "acme.com"

    def test_bare_address(self):
        context = EmailContext(message_id="m1", sender_address="billing@acme.com", subject="", body_text="")
        assert context.sender_name is None
        assert context.sender_domain == "acme.com"

    def test_text_joins_subject_and_body(self):
        context = EmailContext(message_id="m1", sender_address="", subject="Bill", body_text="Total: 5")
        assert context.text == "Bill\n\nTotal: 5"
        assert context.sender_domain is None

    def test_frozen(self):
        context = EmailContext(message_id="m1", sender_address="", subject="", body_text="")
        with pytest.raises(Exception):
            context.subject = "changed"


class TestDocumentContext:
    """Test document context validation."""

    def test_requires_text_or_payload(self):
        with pytest.raises(ValueError):
            DocumentContext(file_name="bill.pdf")

    def test_binary_only(self):
        context = DocumentContext(file_name="bill.pdf", binary_payload=b"%PDF-1.4")
        assert context.text == ""

    def test_raw_text(self):
        assert DocumentContext(file_name="bill.pdf", raw_text="Összeg: 5 Ft").text == "Összeg: 5 Ft"


class TestCandidateBill:
    """Test candidate bill validation."""

    def test_valid(self):
        bill = make_bill()
        assert bill.amount == Decimal("45.00")
        assert bill.extras == {}
        assert not bill.is_merged

    def test_amount_must_be_positive(self):
        with pytest.raises(ValidationError):
            make_bill(amount=Decimal("0"))
        with pytest.raises(ValidationError):
            make_bill(amount=Decimal("-5"))

    def test_currency_is_normalized(self):
        assert make_bill(currency=" usd ").currency == "USD"

    def test_currency_must_not_be_empty(self):
        with pytest.raises(ValidationError):
            make_bill(currency="  ")

    def test_confidence_range(self):
        with pytest.raises(ValidationError):
            make_bill(confidence=1.5)

    def test_immutable(self):
        bill = make_bill()
        with pytest.raises(ValidationError):
            bill.vendor = "Other"

    def test_merged(self):
        bill = make_bill(source=BillSource(kind=SourceKind.COMBINED, message_id="m1", attachment_id="a1"))
        assert bill.is_merged


class TestErrorTaxonomy:
    """Test error codes and carried confidence."""

    def test_codes(self):
        assert NotABillDocument("x").code == "not_a_bill"
        assert MissingRequiredField("amount").code == "missing_required_field"
        assert UnparsableAmount("x").code == "unparsable_amount"
        assert UnparsableDate("x").code == "unparsable_date"
        assert NoMatchingStrategy("x").code == "no_matching_strategy"

    def test_all_are_extraction_errors(self):
        for error_class in (NotABillDocument, UnparsableAmount, UnparsableDate, NoMatchingStrategy):
            assert issubclass(error_class, ExtractionError)

    def test_message_and_confidence(self):
        error = MissingRequiredField("amount", confidence=0.2)
        assert error.message == "Could not extract amount"
        assert error.field_name == "amount"
        assert error.confidence == 0.2
        assert str(error) == "Could not extract amount"
