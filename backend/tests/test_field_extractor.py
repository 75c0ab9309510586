"""
Tests for the field extractor and its rule-kind precedence.

Precedence per field: company-specific → exact pattern → stem fallback →
label fallback; the first valid value wins.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from billscan.services.errors import MissingRequiredField
from billscan.services.field_extractor import (
    DISPATCH_ORDER,
    FieldExtractor,
    is_valid_value,
    post_process,
)
from billscan.services.patterns import PatternRegistry
from billscan.utils.candidates import ExtractionMethod
from billscan.utils.stemming import StemIndex, get_default_stem_index


HUNGARIAN_BILL = """Számla
Fizetendő összeg: 12 345 Ft
Fizetési határidő: 2024.03.15
Számla sorszáma: SZ-2024-0042
Ügyfél azonosító: 1234567
Szolgáltató: Fővárosi Vízművek Zrt."""


@pytest.fixture
def registry():
    return PatternRegistry()


@pytest.fixture
def extractor():
    return FieldExtractor(get_default_stem_index())


class TestDispatchOrder:
    """Test the declared precedence of rule kinds."""

    def test_order(self):
        assert DISPATCH_ORDER == [
            ExtractionMethod.COMPANY_SPECIFIC,
            ExtractionMethod.EXACT_PATTERN,
            ExtractionMethod.STEM_FALLBACK,
            ExtractionMethod.LABEL_FALLBACK,
        ]


class TestExactPatterns:
    """Test extraction with a language pattern table."""

    def test_hungarian_fields(self, extractor, registry):
        fields = extractor.extract(HUNGARIAN_BILL, registry.get("generic-bill-hu"))

        assert fields["amount"].value == "12 345"
        assert fields["amount"].method == ExtractionMethod.EXACT_PATTERN
        assert fields["amount"].confidence == 0.9
        assert fields["amount"].pattern_name == "fizetendo_osszeg"
        assert fields["amount"].semantic_type == "fizetendoOsszeg"
        assert fields["amount"].context == "Fizetendő összeg: 12 345 Ft"

        assert fields["due_date"].value == "2024.03.15"
        assert fields["invoice_number"].value == "SZ-2024-0042"
        assert fields["account_number"].value == "1234567"
        assert fields["vendor"].value == "Fővárosi Vízművek Zrt"
        assert "bill_date" not in fields

    def test_fields_in_priority_order(self, extractor, registry):
        fields = extractor.extract(HUNGARIAN_BILL, registry.get("generic-bill-hu"))
        assert list(fields) == ["amount", "due_date", "invoice_number", "account_number", "vendor"]

    def test_invalid_match_is_skipped(self, extractor, registry):
        """A too-short invoice number does not stop the search."""
        rule = registry.get("generic-bill-hu").rule("invoice_number")
        text = "Számla sorszám: ABC\nSzámla sorszáma: SZ-99-1"

        extracted = extractor.extract_field(text, rule, "hu")

        assert extracted.value == "SZ-99-1"
        assert extracted.method == ExtractionMethod.EXACT_PATTERN

    def test_english_total_due(self, extractor, registry):
        fields = extractor.extract("Total Due: $45.00", registry.get("generic-invoice-en"))
        assert fields["amount"].value == "45.00"
        assert fields["amount"].pattern_name == "total_due"

    def test_subtotal_is_not_the_total(self, extractor, registry):
        text = "Subtotal: $40.00\nTotal: $45.00"
        fields = extractor.extract(text, registry.get("generic-invoice-en"))
        assert fields["amount"].value == "45.00"


class TestCompanyPrecedence:
    """Test that issuer patterns run before language patterns."""

    TEXT = """MVM Next Energiakereskedelmi Zrt.
Bruttó számlaérték: 15 000 Ft
Végösszeg: 14 000 Ft"""

    def test_company_pattern_wins(self, extractor, registry):
        fields = extractor.extract(self.TEXT, registry.get("generic-bill-hu"), registry.company("mvm"))

        assert fields["amount"].value == "15 000"
        assert fields["amount"].method == ExtractionMethod.COMPANY_SPECIFIC
        assert fields["amount"].pattern_name == "mvm_szamlaertek"

    def test_company_name_is_the_vendor(self, extractor, registry):
        fields = extractor.extract(self.TEXT, registry.get("generic-bill-hu"), registry.company("mvm"))

        assert fields["vendor"].value == "MVM"
        assert fields["vendor"].pattern_name == "mvm_name"
        assert fields["vendor"].method == ExtractionMethod.COMPANY_SPECIFIC

    def test_without_company_exact_pattern_is_used(self, extractor, registry):
        fields = extractor.extract(self.TEXT, registry.get("generic-bill-hu"))

        assert fields["amount"].value == "14 000"
        assert fields["amount"].method == ExtractionMethod.EXACT_PATTERN


class TestFallbacks:
    """Test stem and label fallbacks."""

    def test_stem_fallback(self, extractor, registry):
        """Inflected labels no exact pattern covers are found by stem score."""
        text = "Értesítő\nA fizetendő díj összege: 8 500 Ft"
        fields = extractor.extract(text, registry.get("generic-bill-hu"))

        assert fields["amount"].value == "8 500"
        assert fields["amount"].method == ExtractionMethod.STEM_FALLBACK
        assert fields["amount"].confidence == 0.6
        assert fields["amount"].pattern_name == "stem_line_1"

    def test_stem_fallback_reads_next_line(self, extractor, registry):
        text = "A fizetendő díj összege\n8 500 Ft"
        fields = extractor.extract(text, registry.get("generic-bill-hu"))
        assert fields["amount"].value == "8 500"
        assert fields["amount"].method == ExtractionMethod.STEM_FALLBACK

    def test_stem_before_label(self, extractor, registry):
        fields = extractor.extract("Összeg: 8 500 Ft", registry.get("generic-bill-hu"))
        assert fields["amount"].method == ExtractionMethod.STEM_FALLBACK

    def test_label_fallback_without_stemming(self, extractor, registry):
        fields = extractor.extract("Összeg: 8 500 Ft", registry.get("generic-bill-hu"), use_stemming=False)

        assert fields["amount"].value == "8 500"
        assert fields["amount"].method == ExtractionMethod.LABEL_FALLBACK
        assert fields["amount"].confidence == 0.4
        assert fields["amount"].pattern_name == "label_osszeg"

    def test_no_stem_index_means_label_fallback(self, registry):
        rule = registry.get("generic-bill-hu").rule("amount")
        extracted = FieldExtractor(stem_index=None).extract_field("Összeg: 8 500 Ft", rule, "hu")
        assert extracted.method == ExtractionMethod.LABEL_FALLBACK

    def test_stem_index_of_other_language_is_not_used(self, registry):
        german_index = StemIndex({"betrag": ["Betrag"]}, language="de")
        rule = registry.get("generic-bill-hu").rule("amount")
        extracted = FieldExtractor(german_index).extract_field("Összeg: 8 500 Ft", rule, "hu")
        assert extracted.method == ExtractionMethod.LABEL_FALLBACK


class TestMissingAmount:
    """Test that a pattern without an amount is abandoned."""

    def test_raises_missing_required_field(self, extractor, registry):
        with pytest.raises(MissingRequiredField) as exc_info:
            extractor.extract("Kedves Ügyfelünk, köszönjük.", registry.get("generic-bill-hu"))

        assert exc_info.value.field_name == "amount"
        assert exc_info.value.code == "missing_required_field"

    def test_zero_amount_is_not_an_amount(self, extractor, registry):
        with pytest.raises(MissingRequiredField):
            extractor.extract("Total Due: $0.00", registry.get("generic-invoice-en"))


class TestValidation:
    """Test post-processing and value validation."""

    def test_post_process(self):
        assert post_process(" 12 34 ", ("strip", "remove_spaces")) == "1234"
        assert post_process(' "Acme Inc." ', ("strip", "trim_punctuation")) == "Acme Inc"

    def test_invoice_number_length(self):
        assert not is_valid_value("invoice_number", "identifier", "123")
        assert is_valid_value("invoice_number", "identifier", "INV1")

    def test_account_number(self):
        assert not is_valid_value("account_number", "identifier", "AB")
        assert not is_valid_value("account_number", "identifier", "szám")
        assert not is_valid_value("account_number", "identifier", "Number")
        assert is_valid_value("account_number", "identifier", "12345")

    def test_amount_and_date(self):
        assert not is_valid_value("amount", "amount", "0")
        assert is_valid_value("amount", "amount", "12,50")
        assert not is_valid_value("due_date", "date", "soon")
        assert is_valid_value("due_date", "date", "2024.03.15", "hu")

    def test_vendor_length(self):
        assert not is_valid_value("vendor", "text", "A")
        assert not is_valid_value("vendor", "text", "x" * 81)
        assert is_valid_value("vendor", "text", "Acme")

    def test_empty(self):
        assert not is_valid_value("vendor", "text", "")
