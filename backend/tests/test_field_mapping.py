"""
Test suite for mapping extracted fields to user-defined fields.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from datetime import date
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest

from billscan.models.bill import BillSource, CandidateBill, FieldMapping, FieldProvenance, SourceKind
from billscan.services.field_mapping import FIELD_MAPPING_VIEW, FieldMappingService


@pytest.fixture
def bill():
    return CandidateBill(
        id="email-m1",
        vendor="MVM",
        amount=Decimal("12345"),
        currency="HUF",
        due_date=date(2024, 3, 15),
        source=BillSource(kind=SourceKind.EMAIL, message_id="m1"),
        extraction_method="stem_pattern",
        language="hu",
        confidence=0.9,
        provenance={"amount": FieldProvenance(method="company_specific", confidence=0.9)},
        extras={
            "issuer_name": "MVM Next Energiakereskedelmi Zrt.",
            "semantic_types": {"amount": "fizetendoOsszeg"},
        },
    )


@pytest.fixture
def mock_supabase():
    return Mock()


class TestCanonicalNames:
    """Test alias resolution."""

    def test_aliases(self):
        service = FieldMappingService(supabase=Mock())
        assert service.canonical_name("issuer_name") == "vendor"
        assert service.canonical_name("Total_Amount") == "amount"
        assert service.canonical_name("deadline") == "due_date"
        assert service.canonical_name("vendor") == "vendor"

    def test_unknown(self):
        service = FieldMappingService(supabase=Mock())
        assert service.canonical_name("color") is None
        assert service.canonical_name("") is None

    def test_custom_aliases(self):
        service = FieldMappingService(aliases={"vendor": ["szolgaltato"]}, supabase=Mock())
        assert service.canonical_name("szolgaltato") == "vendor"
        assert service.canonical_name("issuer_name") is None


class TestValuesFor:
    """Test value lookup under aliases."""

    def test_candidate_bill(self, bill):
        service = FieldMappingService(supabase=Mock())
        assert service.values_for(bill, "vendor") == ["MVM", "MVM Next Energiakereskedelmi Zrt."]

    def test_dict_skips_empty_values(self):
        service = FieldMappingService(supabase=Mock())
        assert service.values_for({"vendor": "", "company_name": "Acme"}, "vendor") == ["Acme"]
        assert service.values_for({}, "amount") == []


class TestMapToUserFields:
    """Test mapping a bill onto a user's fields."""

    def test_alias_and_semantic_type(self, bill):
        service = FieldMappingService(supabase=Mock())
        mappings = [
            FieldMapping(source_field_name="issuer_name", target_field_name="Kibocsátó", field_id="f1"),
            FieldMapping(source_field_name="fizetendoOsszeg", target_field_name="Összeg"),
            FieldMapping(source_field_name="due_date", target_field_name="Határidő", field_id="f3", data_type="date"),
        ]

        mapped = service.map_to_user_fields(bill, mappings)

        assert mapped["f1"] == {"value": "MVM", "confidence": 0.9, "origin_field": "vendor"}
        assert mapped["Összeg"] == {"value": "12345", "confidence": 0.9, "origin_field": "amount"}
        assert mapped["f3"]["value"] == "2024-03-15"
        assert len(mapped) == 3

    def test_alias_beats_semantic_type(self, bill):
        service = FieldMappingService(supabase=Mock())
        mappings = [
            FieldMapping(source_field_name="fizetendoOsszeg", target_field_name="Semantic"),
            FieldMapping(source_field_name="total_amount", target_field_name="Alias"),
        ]

        mapped = service.map_to_user_fields(bill, mappings)
        assert set(mapped) == {"Alias"}

    def test_no_mappings(self, bill):
        assert FieldMappingService(supabase=Mock()).map_to_user_fields(bill, []) == {}


class TestLoadFieldMappings:
    """Test loading mappings from Supabase."""

    def set_rows(self, supabase, rows):
        query = supabase.table.return_value.select.return_value.eq.return_value.order.return_value
        query.execute.return_value = Mock(data=rows)

    def test_load(self, mock_supabase):
        self.set_rows(mock_supabase, [
            {"field_id": "f1", "name": "issuer_name", "display_name": "Kibocsátó", "field_type": "text"},
            {"field_id": "f2", "name": "note", "display_name": None, "field_type": None, "is_enabled": True},
            {"field_id": "f3", "name": "hidden", "is_enabled": False},
        ])
        service = FieldMappingService(supabase=mock_supabase)

        mappings = service.load_field_mappings("user-1")

        assert [m.field_id for m in mappings] == ["f1", "f2"]
        assert mappings[0].target_field_name == "Kibocsátó"
        assert mappings[1].target_field_name == "note"
        assert mappings[1].data_type == "text"

        mock_supabase.table.assert_called_once_with(FIELD_MAPPING_VIEW)
        mock_supabase.table.return_value.select.return_value.eq.assert_called_once_with("user_id", "user-1")
        mock_supabase.table.return_value.select.return_value.eq.return_value.order.assert_called_once_with(
            "display_order"
        )

    def test_empty_response(self, mock_supabase):
        self.set_rows(mock_supabase, None)
        assert FieldMappingService(supabase=mock_supabase).load_field_mappings("user-1") == []

    def test_error_returns_empty(self, mock_supabase):
        mock_supabase.table.side_effect = Exception("connection refused")
        assert FieldMappingService(supabase=mock_supabase).load_field_mappings("user-1") == []

    def test_client_created_lazily(self):
        with patch('billscan.services.field_mapping.get_supabase_client') as mock_get_client:
            client = Mock()
            mock_get_client.return_value = client
            service = FieldMappingService()

            mock_get_client.assert_not_called()
            assert service.supabase is client
            assert service.supabase is client
            mock_get_client.assert_called_once()
