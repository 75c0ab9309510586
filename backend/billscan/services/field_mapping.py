"""
Mapping of extracted bill fields to a user's own fields.

Users name their fields freely (e.g. "issuer_name" for the vendor); the alias
table below groups names that mean the same thing.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from billscan.models.bill import BILL_DATA_FIELDS, CandidateBill, FieldMapping
from billscan.utils.supabase import get_supabase_client

logger = logging.getLogger(__name__)


# Canonical field → names that mean the same thing, most specific first
DEFAULT_FIELD_ALIASES: Dict[str, List[str]] = {
    'vendor': ['issuer_name', 'company_name', 'provider', 'vendor', 'merchant'],
    'amount': ['total_amount', 'bill_amount', 'price', 'amount', 'sum', 'cost'],
    'bill_date': ['invoice_date', 'issue_date', 'bill_date', 'date'],
    'due_date': ['due_date', 'payment_date', 'deadline', 'due_by'],
    'account_number': ['account_number', 'account_id', 'customer_id', 'client_number'],
    'invoice_number': ['invoice_number', 'reference_number', 'bill_id', 'invoice_id'],
    'category': ['bill_category', 'bill_type', 'expense_category', 'category'],
}

FIELD_MAPPING_VIEW = 'field_mapping_view'

BillLike = Union[CandidateBill, Dict[str, Any]]


def _storable(value: Any) -> Any:
    """Decimal and date values as strings, for JSON and Supabase storage."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


class FieldMappingService:
    """
    Service for relating extracted fields to user-defined fields.

    Args:
        aliases: Canonical field → equivalent names (defaults to DEFAULT_FIELD_ALIASES)
        supabase: Supabase client for loading mappings (created on first use)
    """

    def __init__(self, aliases: Optional[Dict[str, List[str]]] = None, supabase=None):
        self.aliases = aliases or DEFAULT_FIELD_ALIASES
        self._supabase = supabase

    @property
    def supabase(self):
        if self._supabase is None:
            self._supabase = get_supabase_client()
        return self._supabase

    def canonical_name(self, field_name: str) -> Optional[str]:
        """
        Canonical field for a field name.

        Examples:
            >>> FieldMappingService().canonical_name("issuer_name")
            'vendor'
            >>> FieldMappingService().canonical_name("color") is None
            True
        """
        if not field_name:
            return None
        lowered = field_name.strip().lower()
        for canonical, names in self.aliases.items():
            if lowered == canonical or lowered in names:
                return canonical
        return None

    def values_for(self, bill: BillLike, canonical: str) -> List[Any]:
        """All non-empty values of a bill held under any alias of a canonical field."""
        data = self._bill_values(bill)
        names = [canonical] + [name for name in self.aliases.get(canonical, []) if name != canonical]
        return [data[name] for name in names if data.get(name) not in (None, '')]

    def map_to_user_fields(self, bill: CandidateBill, mappings: List[FieldMapping]) -> Dict[str, Dict[str, Any]]:
        """
        Map a bill's fields onto a user's fields.

        For each extracted field, a user field named after the field or one
        of its aliases wins; otherwise a user field named after the field's
        semantic type is used.

        Returns:
            User field id (or target name) → {value, confidence, origin_field}
        """
        by_name = {mapping.source_field_name.lower(): mapping for mapping in mappings}
        semantic_types = bill.extras.get('semantic_types', {})
        mapped: Dict[str, Dict[str, Any]] = {}

        for field_name in BILL_DATA_FIELDS:
            value = getattr(bill, field_name, None)
            if value in (None, ''):
                continue

            mapping = None
            for name in [field_name] + self.aliases.get(field_name, []):
                mapping = by_name.get(name)
                if mapping:
                    break

            if mapping is None and field_name in semantic_types:
                mapping = by_name.get(semantic_types[field_name].lower())

            if mapping is None:
                continue

            provenance = bill.provenance.get(field_name)
            mapped[mapping.field_id or mapping.target_field_name] = {
                'value': _storable(value),
                'confidence': provenance.confidence if provenance else bill.confidence,
                'origin_field': field_name,
            }

        return mapped

    def load_field_mappings(self, user_id: str) -> List[FieldMapping]:
        """
        Load a user's field mappings from Supabase.

        Returns:
            Enabled mappings in display order; empty on error
        """
        try:
            response = self.supabase.table(FIELD_MAPPING_VIEW).select('*').eq(
                'user_id', user_id
            ).order('display_order').execute()
        except Exception as e:
            logger.warning("Error loading field mappings", extra={
                "user_id": user_id,
                "error": str(e)
            })
            return []

        mappings = []
        for row in response.data or []:
            if row.get('is_enabled') is False:
                continue
            mappings.append(FieldMapping(
                source_field_name=row['name'],
                target_field_name=row.get('display_name') or row['name'],
                data_type=row.get('field_type') or 'text',
                field_id=row.get('field_id'),
            ))

        logger.info("Loaded field mappings", extra={
            "user_id": user_id,
            "count": len(mappings)
        })
        return mappings

    def _bill_values(self, bill: BillLike) -> Dict[str, Any]:
        if isinstance(bill, CandidateBill):
            data = dict(bill.extras)
            data.update({name: getattr(bill, name) for name in BILL_DATA_FIELDS})
            return data
        return dict(bill)
