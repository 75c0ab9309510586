"""
Test suite for the extraction strategies.

Tests cover:
- Stem/pattern strategy on Hungarian issuer bills, and its bail-out
- Plain pattern strategy with identifier gating and trusted sources
- Vendor inference from the sender or file name for every strategy
- Regex heuristic strategy: keyword gate, amount scoring, vendor inference,
  received-date fallback, trusted-source bonus
- Candidate bill ids and sources
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from datetime import date, datetime
from decimal import Decimal

import pytest

from billscan.models.bill import SourceKind
from billscan.models.context import DocumentContext, EmailContext
from billscan.services.extractor import ExtractionEngine
from billscan.services.strategies import (
    PatternStrategy,
    RegexHeuristicStrategy,
    StemPatternStrategy,
    _domain_vendor,
    _file_name_vendor,
    bill_id_for,
    source_kind_of,
)


MVM_BODY = """MVM Next Energiakereskedelmi Zrt.
Számla sorszáma: 123456789
Számla kelte: 2024.03.01
Fizetendő összeg: 12 345 Ft
Fizetési határidő: 2024.03.15
Felhasználó azonosító: 3000123456"""


@pytest.fixture(scope="module")
def engine():
    return ExtractionEngine()


def email(body, subject="", sender="", message_id="m1", trusted=False, received_at=None, language_hint=None):
    return EmailContext(
        message_id=message_id,
        sender_address=sender,
        subject=subject,
        body_text=body,
        received_at=received_at,
        language_hint=language_hint,
        is_trusted_source=trusted,
    )


class TestStemPatternStrategy:
    """Test the stem/pattern fusion strategy."""

    def test_hungarian_issuer_bill(self, engine):
        context = email(MVM_BODY, subject="Új számla érkezett", sender="MVM Next <ugyfelszolgalat@mvm.hu>")
        result = StemPatternStrategy(engine).extract(context)

        assert result.success
        assert result.strategy == "stem_pattern"
        bill = result.candidate_bills[0]

        assert bill.id == "email-m1"
        assert bill.vendor == "MVM"
        assert bill.amount == Decimal("12345")
        assert bill.currency == "HUF"
        assert bill.bill_date == date(2024, 3, 1)
        assert bill.due_date == date(2024, 3, 15)
        assert bill.invoice_number == "123456789"
        assert bill.account_number == "3000123456"
        assert bill.category == "Utilities"
        assert bill.language == "hu"
        assert bill.extraction_method == "stem_pattern"
        assert bill.confidence == 0.9
        assert result.confidence == bill.confidence

    def test_issuer_details_in_extras(self, engine):
        context = email(MVM_BODY, subject="Új számla érkezett")
        bill = StemPatternStrategy(engine).extract(context).candidate_bills[0]

        assert bill.extras["company"] == "mvm"
        assert bill.extras["bill_type"] == "invoice"
        assert bill.extras["stem_score"] == 0.83
        assert bill.extras["semantic_types"]["amount"] == "fizetendoOsszeg"
        assert bill.provenance["amount"].method == "company_specific"
        assert bill.provenance["bill_date"].method == "exact_pattern"

    def test_field_confidences_never_exceed_bill(self, engine):
        context = DocumentContext(file_name="szamla.pdf", raw_text="Fizetendő összeg: 45 Ft")
        bill = StemPatternStrategy(engine).extract(context).candidate_bills[0]

        assert bill.confidence == 0.63
        assert all(p.confidence <= bill.confidence for p in bill.provenance.values())

    def test_document_vendor_from_file_name(self, engine):
        context = DocumentContext(file_name="fotav_szamla_2024_03.pdf", raw_text="Fizetendő összeg: 45 Ft")
        bill = StemPatternStrategy(engine).extract(context).candidate_bills[0]

        assert bill.vendor == "Fotav"
        assert bill.provenance["vendor"].method == "label_fallback"
        assert bill.confidence == 0.66

    def test_bails_out_on_weak_stem_signal(self, engine):
        context = email(
            "Kedves Ügyfelünk! Tájékoztatjuk, hogy a szolgáltatás változik.",
            language_hint="hu"
        )
        result = StemPatternStrategy(engine).extract(context)

        assert not result.success
        assert result.error_code == "not_a_bill"
        assert result.candidate_bills == []

    def test_requires_stem_dictionary(self, engine):
        result = StemPatternStrategy(engine).extract(email("Invoice\nTotal Due: $45.00"))
        assert not result.success
        assert result.error_code == "not_a_bill"
        assert "en" in result.error


class TestPatternStrategy:
    """Test plain pattern matching."""

    BODY = "Invoice number: INV-2024-001\nTotal Due: $45.00\nDue date: 03/15/2024"

    def test_english_invoice(self, engine):
        context = email(self.BODY, subject="Your invoice", sender="billing@acme.com", message_id="m2")
        result = PatternStrategy(engine).extract(context)

        assert result.success
        bill = result.candidate_bills[0]
        assert bill.id == "email-m2"
        assert bill.amount == Decimal("45.00")
        assert bill.currency == "USD"
        assert bill.invoice_number == "INV-2024-001"
        assert bill.due_date == date(2024, 3, 15)
        assert bill.vendor == "Acme"
        assert bill.provenance["vendor"].method == "label_fallback"
        assert bill.extras["pattern_id"] == "generic-invoice-en"
        assert bill.confidence == 0.69

    def test_fixed_vendor_of_pattern(self, engine):
        context = email("$15.49 was charged to your card.", subject="Your Netflix receipt")
        bill = PatternStrategy(engine).extract(context).candidate_bills[0]

        assert bill.vendor == "Netflix"
        assert bill.category == "Subscriptions"
        assert bill.amount == Decimal("15.49")

    def test_sender_name_beats_domain(self, engine):
        context = email(self.BODY, subject="Your invoice", sender="Acme Billing <billing@acme.com>")
        bill = PatternStrategy(engine).extract(context).candidate_bills[0]

        assert bill.vendor == "Acme Billing"

    def test_fixed_vendor_is_kept(self, engine):
        context = email("$15.49 was charged to your card.", subject="Your Netflix receipt", sender="info@mailer.example.com")
        bill = PatternStrategy(engine).extract(context).candidate_bills[0]

        assert bill.vendor == "Netflix"

    def test_unmatched_text_is_not_a_bill(self, engine):
        result = PatternStrategy(engine).extract(email("Hello, see you at lunch tomorrow."))
        assert not result.success
        assert result.error_code == "not_a_bill"
        assert result.confidence == 0.1

    def test_trusted_source_skips_identifier_gate(self, engine):
        context = email("Hello, see you at lunch tomorrow.", trusted=True)
        result = PatternStrategy(engine).extract(context)

        assert not result.success
        assert result.error_code == "missing_required_field"
        assert result.confidence == 0.2

    def test_german_bill(self, engine):
        context = DocumentContext(
            file_name="rechnung.pdf",
            raw_text="Rechnung\nRechnungsnummer: RE-2024-17\nGesamtbetrag: 1.234,50 EUR\nFällig am 15.03.2024",
        )
        bill = PatternStrategy(engine).extract(context).candidate_bills[0]

        assert bill.language == "de"
        assert bill.amount == Decimal("1234.50")
        assert bill.currency == "EUR"
        assert bill.invoice_number == "RE-2024-17"
        assert bill.due_date == date(2024, 3, 15)


class TestRegexHeuristicStrategy:
    """Test the language-independent fallback strategy."""

    BODY = "Total Due: $45.00\nInvoice #: 10045\nThank you for your payment."

    def make_context(self, trusted=False):
        return email(
            self.BODY,
            subject="Your monthly statement",
            sender="ACME Billing <billing@acme.com>",
            message_id="m3",
            trusted=trusted,
            received_at=datetime(2024, 3, 10, 9, 30),
        )

    def test_email(self, engine):
        result = RegexHeuristicStrategy(engine).extract(self.make_context())

        assert result.success
        bill = result.candidate_bills[0]
        assert bill.amount == Decimal("45.00")
        assert bill.currency == "USD"
        assert bill.invoice_number == "10045"
        assert bill.vendor == "ACME Billing"
        assert bill.extraction_method == "regex_heuristic"
        assert bill.confidence == 0.57

    def test_bill_date_falls_back_to_received_date(self, engine):
        bill = RegexHeuristicStrategy(engine).extract(self.make_context()).candidate_bills[0]

        assert bill.bill_date == date(2024, 3, 10)
        assert bill.provenance["bill_date"].method == "label_fallback"

    def test_trusted_bonus(self, engine):
        bill = RegexHeuristicStrategy(engine).extract(self.make_context(trusted=True)).candidate_bills[0]
        assert bill.confidence == 0.72

    def test_amount_field_methods(self, engine):
        bill = RegexHeuristicStrategy(engine).extract(self.make_context()).candidate_bills[0]

        assert bill.provenance["amount"].method == "exact_pattern"
        assert bill.provenance["vendor"].method == "label_fallback"

    def test_keyword_gate(self, engine):
        result = RegexHeuristicStrategy(engine).extract(email("See you at noon, $5 for coffee", subject="Lunch"))

        assert not result.success
        assert result.error_code == "not_a_bill"

    def test_subject_keyword_passes_gate(self, engine):
        result = RegexHeuristicStrategy(engine).extract(email("$5.00", subject="Receipt"))
        assert result.success
        assert result.candidate_bills[0].amount == Decimal("5.00")

    def test_trusted_source_skips_gate(self, engine):
        result = RegexHeuristicStrategy(engine).extract(email("See you at noon", subject="Lunch", trusted=True))

        assert not result.success
        assert result.error_code == "missing_required_field"

    def test_labelled_vendor_line(self, engine):
        body = "Billed by: Globex Kft.\nTotal: 12 500 Ft\nDue date: 2024.04.01"
        bill = RegexHeuristicStrategy(engine).extract(email(body, subject="Bill")).candidate_bills[0]

        assert bill.vendor == "Globex Kft"
        assert bill.amount == Decimal("12500")
        assert bill.currency == "HUF"
        assert bill.due_date == date(2024, 4, 1)
        assert bill.provenance["vendor"].method == "exact_pattern"

    def test_document_vendor_from_file_name(self, engine):
        context = DocumentContext(
            file_name="city_power-invoice.pdf",
            raw_text="Your bill\nElectricity usage\nAmount due: 120.50 USD",
            message_id="m4",
            attachment_id="a1",
        )
        result = RegexHeuristicStrategy(engine).extract(context)

        assert result.success
        bill = result.candidate_bills[0]
        assert bill.id == "pdf-m4-a1"
        assert bill.source.kind == SourceKind.PDF
        assert bill.source.attachment_id == "a1"
        assert bill.vendor == "City Power"
        assert bill.amount == Decimal("120.50")
        assert bill.currency == "USD"
        assert bill.category == "Utilities"
        assert bill.confidence == 0.44


class TestHelpers:
    """Test ids and vendor inference helpers."""

    def test_bill_ids(self):
        assert bill_id_for(email("x", message_id="abc")) == "email-abc"
        assert bill_id_for(DocumentContext(file_name="a.pdf", raw_text="x", message_id="m", attachment_id="t")) == "pdf-m-t"
        assert bill_id_for(DocumentContext(file_name="a.pdf", raw_text="x")) == "pdf-a.pdf-a.pdf"

    def test_source_kind(self):
        assert source_kind_of(email("x")) == "email"
        assert source_kind_of(DocumentContext(file_name="a.pdf", raw_text="x")) == "pdf"

    def test_domain_vendor(self):
        assert _domain_vendor("billing.acme.com") == "Acme"
        assert _domain_vendor("localhost") is None
        assert _domain_vendor(None) is None

    def test_file_name_vendor(self):
        assert _file_name_vendor("city_power-invoice.pdf") == "City Power"
        assert _file_name_vendor("MVM_szamla_2024_03_extra.PDF") == "Mvm Extra"
        assert _file_name_vendor("szamla_2024_03.pdf") is None
        assert _file_name_vendor("") is None
