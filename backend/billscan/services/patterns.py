"""
Pattern registry: per-language bill patterns, company pattern sets and
category keywords.

All data here is read-only. A PatternRegistry is built once (see
billscan.services.extractor.get_extraction_engine) and shared by every
extraction.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from billscan.utils.dates import DATE_SHAPE
from billscan.utils.text import normalize_text

logger = logging.getLogger(__name__)


# Fields in extraction priority order; amount is required, the rest optional
FIELD_PRIORITY = ['amount', 'due_date', 'bill_date', 'invoice_number', 'account_number', 'vendor']
REQUIRED_FIELDS = ['amount']

# Captured value shapes
AMOUNT_HU = r'(\d{1,3}(?:[ .\u00a0]\d{3})+(?:,\d{1,2})?|\d+(?:[.,]\d{1,2})?)'
AMOUNT_EN = r'(\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)'
AMOUNT_DE = r'(\d{1,3}(?:\.\d{3})+(?:,\d{1,2})?|\d+(?:,\d{1,2})?)'
IDENTIFIER = r'([A-Z0-9][A-Z0-9\-/]{2,})'
HUF = r'\s*(?:Ft\.?|HUF|forint)'
HUF_PREFIX = r'(?:Ft\.?|HUF)?\s*'
USD_PREFIX = r'(?:[$€£]|USD|EUR|GBP|CAD)?\s*'
EUR_PREFIX = r'(?:€|EUR)?\s*'


@dataclass(frozen=True)
class PatternSpec:
    """A named regex pattern with example and notes for documentation."""
    name: str
    pattern: str
    example: str = ""
    notes: Optional[str] = None
    priority: Optional[int] = None
    flags: int = re.IGNORECASE
    compiled: re.Pattern = field(default=None, init=False, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, 'compiled', re.compile(self.pattern, self.flags))


@dataclass(frozen=True)
class FieldRule:
    """
    How to extract one field.

    patterns: exact patterns, tried in order; group 1 is the value
    labels: human labels for the "<label>: <value>" fallback
    stem_groups: groups of stems that together mark a line holding the value
    post_processing: 'strip', 'remove_spaces', 'trim_punctuation'
    value_shape: 'amount', 'date', 'identifier' or 'text'
    """
    field: str
    patterns: Tuple[PatternSpec, ...] = ()
    labels: Tuple[str, ...] = ()
    stem_groups: Tuple[Tuple[str, ...], ...] = ()
    post_processing: Tuple[str, ...] = ('strip',)
    value_shape: str = 'text'
    semantic_type: Optional[str] = None


@dataclass(frozen=True)
class BillPattern:
    """A family of bills (e.g. Hungarian utility bills) and how to read them."""
    id: str
    name: str
    language: str
    identifier_patterns: Tuple[PatternSpec, ...]
    field_rules: Dict[str, FieldRule]
    category: Optional[str] = None
    vendor_name: Optional[str] = None
    confirmation_keywords: Tuple[str, ...] = ()

    def matches_identifiers(self, text: str) -> bool:
        """An identifier pattern matches, or at least two confirmation keywords appear."""
        if any(spec.compiled.search(text) for spec in self.identifier_patterns):
            return True
        lowered = text.lower()
        hits = sum(1 for keyword in self.confirmation_keywords if keyword in lowered)
        return hits >= 2

    def rule(self, field_name: str) -> Optional[FieldRule]:
        return self.field_rules.get(field_name)


@dataclass(frozen=True)
class CompanyPatternSet:
    """Issuer-specific patterns, tried before any language pattern."""
    key: str
    name: str
    aliases: Tuple[str, ...]
    category: str
    field_patterns: Dict[str, Tuple[PatternSpec, ...]]

    def detected_in(self, normalized_text: str) -> bool:
        return any(
            re.search(r'(?<!\w)' + re.escape(normalize_text(alias)) + r'(?!\w)', normalized_text)
            for alias in self.aliases
        )


@dataclass(frozen=True)
class HungarianBillDetection:
    is_hungarian_bill: bool
    confidence: float
    bill_type: Optional[str] = None
    company: Optional[str] = None


# Per-language defaults merged into every pattern's field rules

_LANGUAGE_LABELS: Dict[str, Dict[str, Tuple[str, ...]]] = {
    'hu': {
        'amount': ('fizetendő összeg', 'fizetendő', 'végösszeg', 'összesen', 'összeg'),
        'due_date': ('fizetési határidő', 'befizetési határidő', 'határidő', 'esedékesség'),
        'bill_date': ('számla kelte', 'kiállítás dátuma', 'kelte', 'kelt'),
        'invoice_number': ('számla sorszáma', 'számlaszám', 'sorszám'),
        'account_number': ('ügyfélazonosító', 'ügyfél azonosító', 'felhasználó azonosító', 'vevő azonosító', 'ügyfélszám'),
        'vendor': ('szolgáltató', 'számlakibocsátó', 'kibocsátó', 'eladó'),
    },
    'en': {
        'amount': ('total due', 'amount due', 'balance due', 'total amount', 'total'),
        'due_date': ('due date', 'payment due', 'pay by', 'due by'),
        'bill_date': ('invoice date', 'bill date', 'statement date', 'date of issue'),
        'invoice_number': ('invoice number', 'invoice no', 'invoice #', 'reference number', 'bill number'),
        'account_number': ('account number', 'account no', 'account #', 'customer number', 'customer id', 'member id'),
        'vendor': ('vendor', 'merchant', 'billed by', 'company'),
    },
    'de': {
        'amount': ('gesamtbetrag', 'rechnungsbetrag', 'zu zahlen', 'summe', 'betrag'),
        'due_date': ('fällig am', 'zahlbar bis', 'fälligkeitsdatum', 'fälligkeit'),
        'bill_date': ('rechnungsdatum', 'datum'),
        'invoice_number': ('rechnungsnummer', 'rechnung nr'),
        'account_number': ('kundennummer', 'vertragsnummer', 'kundenkonto'),
        'vendor': ('anbieter', 'firma', 'absender'),
    },
}

# Stem groups exist only for the stemmed language
_LANGUAGE_STEM_GROUPS: Dict[str, Dict[str, Tuple[Tuple[str, ...], ...]]] = {
    'hu': {
        'amount': (('fizetendo', 'osszeg'), ('fizet', 'osszeg'), ('vegosszeg',), ('brutto', 'osszeg')),
        'due_date': (('fizet', 'hatarido'), ('befizet', 'hatarido'), ('esedek',)),
        'bill_date': (('szamla', 'kelt'), ('kiallitas', 'datum')),
        'invoice_number': (('szamla', 'sorszam'),),
        'account_number': (('ugyfel', 'azonosit'), ('felhasznalo', 'azonosit'), ('vevo', 'azonosit')),
        'vendor': (('szolgaltat',), ('kibocsato',), ('elado',)),
    },
}

_VALUE_SHAPES = {
    'amount': 'amount',
    'due_date': 'date',
    'bill_date': 'date',
    'invoice_number': 'identifier',
    'account_number': 'identifier',
    'vendor': 'text',
}

_POST_PROCESSING = {
    'account_number': ('strip', 'remove_spaces'),
    'invoice_number': ('strip', 'remove_spaces'),
    'vendor': ('strip', 'trim_punctuation'),
}

_SEMANTIC_TYPES = {
    'hu': {
        'amount': 'fizetendoOsszeg',
        'due_date': 'fizetesiHatarido',
        'bill_date': 'szamlaKelte',
        'invoice_number': 'szamlaSorszam',
        'account_number': 'ugyfelAzonosito',
        'vendor': 'szolgaltato',
    },
}

# Generic exact patterns appended after a pattern's own ones
_GENERIC_PATTERNS: Dict[str, Dict[str, List[Tuple[str, str]]]] = {
    'hu': {
        'amount': [
            ('fizetendo_osszeg', r'fizetendő\s+(?:összeg|összesen)[^\d\n]{0,20}?' + HUF_PREFIX + AMOUNT_HU),
            ('vegosszeg', r'(?:bruttó\s+)?végösszeg[^\d\n]{0,20}?' + HUF_PREFIX + AMOUNT_HU),
            ('osszesen_ft', r'összesen[^\d\n]{0,20}?' + AMOUNT_HU + HUF),
        ],
        'due_date': [
            ('fizetesi_hatarido', r'(?:fizetési|befizetési)\s+határidő[^\d\n]{0,20}?' + DATE_SHAPE),
            ('esedekesseg', r'esedékesség(?:\s+(?:dátuma|napja))?[^\d\n]{0,20}?' + DATE_SHAPE),
        ],
        'bill_date': [
            ('szamla_kelte', r'(?:számla\s+)?kelte[^\d\n]{0,20}?' + DATE_SHAPE),
            ('kiallitas_datuma', r'kiállítás\s+dátuma[^\d\n]{0,20}?' + DATE_SHAPE),
        ],
        'invoice_number': [
            ('szamla_sorszam', r'számla\s*(?:sorszáma|sorszám|szám)\s*:?\s*' + IDENTIFIER),
        ],
        'account_number': [
            ('ugyfel_azonosito', r'(?:ügyfél|fogyasztó|felhasználó|vevő)\s*(?:azonosító|szám)\s*:?\s*' + IDENTIFIER),
        ],
        'vendor': [
            ('szolgaltato', r'(?:szolgáltató|számlakibocsátó|eladó)\s*(?:neve)?\s*:\s*([^\n\r,*]+)'),
        ],
    },
    'en': {
        'amount': [
            ('total_due', r'(?:total\s+(?:amount\s+)?due|amount\s+due|balance\s+due)\s*:?\s*' + USD_PREFIX + AMOUNT_EN),
            ('total', r'(?<!sub)total(?:\s+amount)?\s*:?\s*' + USD_PREFIX + AMOUNT_EN),
        ],
        'due_date': [
            ('due_date', r'(?:payment\s+)?due\s+(?:date|by|on)\s*:?\s*' + DATE_SHAPE),
            ('pay_by', r'pay(?:ment)?\s+by\s*:?\s*' + DATE_SHAPE),
        ],
        'bill_date': [
            ('invoice_date', r'(?:invoice|bill|statement)\s+date\s*:?\s*' + DATE_SHAPE),
            ('date_of_issue', r'date\s+of\s+issue\s*:?\s*' + DATE_SHAPE),
        ],
        'invoice_number': [
            ('invoice_number', r'(?:invoice|bill|reference)\s*(?:number|no\.?|#)\s*:?\s*' + IDENTIFIER),
        ],
        'account_number': [
            ('account_number', r'(?:account|customer)\s*(?:number|no\.?|#|id)\s*:?\s*' + IDENTIFIER),
        ],
        'vendor': [
            ('billed_by', r'(?:billed\s+by|vendor|merchant)\s*:\s*([^\n\r,]+)'),
        ],
    },
    'de': {
        'amount': [
            ('gesamtbetrag', r'(?:gesamtbetrag|rechnungsbetrag|zu\s+zahlen(?:der\s+betrag)?)\s*:?\s*' + EUR_PREFIX + AMOUNT_DE),
        ],
        'due_date': [
            ('faellig', r'(?:fällig\s+am|zahlbar\s+bis|fälligkeit(?:sdatum)?)\s*:?\s*' + DATE_SHAPE),
        ],
        'bill_date': [
            ('rechnungsdatum', r'rechnungsdatum\s*:?\s*' + DATE_SHAPE),
        ],
        'invoice_number': [
            ('rechnungsnummer', r'rechnungs(?:nummer|nr\.?)\s*:?\s*' + IDENTIFIER),
        ],
        'account_number': [
            ('kundennummer', r'(?:kunden|vertrags)(?:nummer|nr\.?)\s*:?\s*' + IDENTIFIER),
        ],
        'vendor': [],
    },
}


def _spec(name: str, pattern: str, example: str = "", priority: Optional[int] = None) -> PatternSpec:
    return PatternSpec(name=name, pattern=pattern, example=example, priority=priority)


def _rules(language: str, **own_patterns: Sequence[Tuple[str, str]]) -> Dict[str, FieldRule]:
    """
    Build a pattern's field rules: its own patterns first, then the
    language's generic patterns, with the language's labels and stem groups.
    """
    rules = {}
    for field_name in FIELD_PRIORITY:
        specs = [_spec(name, pattern) for name, pattern in own_patterns.get(field_name, ())]
        specs.extend(_spec(name, pattern) for name, pattern in _GENERIC_PATTERNS.get(language, {}).get(field_name, ()))
        rules[field_name] = FieldRule(
            field=field_name,
            patterns=tuple(specs),
            labels=_LANGUAGE_LABELS.get(language, {}).get(field_name, ()),
            stem_groups=_LANGUAGE_STEM_GROUPS.get(language, {}).get(field_name, ()),
            post_processing=_POST_PROCESSING.get(field_name, ('strip',)),
            value_shape=_VALUE_SHAPES[field_name],
            semantic_type=_SEMANTIC_TYPES.get(language, {}).get(field_name),
        )
    return rules


def _identifiers(*patterns: str) -> Tuple[PatternSpec, ...]:
    return tuple(_spec(f'identifier_{i}', pattern) for i, pattern in enumerate(patterns))


# ---------------------------------------------------------------------------
# Hungarian patterns
# ---------------------------------------------------------------------------

HUNGARIAN_PATTERNS: List[BillPattern] = [
    BillPattern(
        id='utility-bill-hu',
        name='Utility Bill (Hungarian)',
        language='hu',
        category='Utilities',
        identifier_patterns=_identifiers(
            r'(?:közmű|víz|gáz|áram|villany|közüzemi)\s*(?:számla|értesítő|díj)',
            r'számla\s+(?:közmű|víz|gáz|áram|villany|közüzemi)',
        ),
        field_rules=_rules(
            'hu',
            amount=[
                ('utility_fizetendo', r'fizetendő\s+(?:összeg|összesen)\s*:?\s*' + AMOUNT_HU + HUF),
                ('utility_osszesen', r'összesen\s*:?\s*' + AMOUNT_HU + HUF),
            ],
            due_date=[
                ('utility_hatarido', r'fizetési\s+határidő\s*:?\s*' + DATE_SHAPE),
                ('utility_befizetes', r'(?:esedékesség|befizetés)\s+(?:dátuma|ideje|napja)\s*:?\s*' + DATE_SHAPE),
            ],
            account_number=[
                ('utility_ugyfel', r'(?:ügyfél|fogyasztó)\s*(?:azonosító|szám)\s*:?\s*' + IDENTIFIER),
                ('utility_felhasznalasi_hely', r'(?:felhasználó|fogyasztási\s+hely)\s*(?:azonosító|szám)\s*:?\s*' + IDENTIFIER),
            ],
        ),
        confirmation_keywords=('számla', 'fizetés', 'közmű', 'szolgáltatás', 'fogyasztás'),
    ),
    BillPattern(
        id='housing-fee-hu',
        name='Housing Fee (Hungarian)',
        language='hu',
        category='Housing',
        identifier_patterns=_identifiers(r'közös\s*költség', r'társasház', r'havi\s*előírás'),
        field_rules=_rules(
            'hu',
            amount=[
                ('housing_eloirasok', r'(?:fizetendő|előírások\s+összesen)\s*:?\s*' + HUF_PREFIX + AMOUNT_HU),
                ('housing_kozos_koltseg', r'közös\s+költség\s*:?\s*' + HUF_PREFIX + AMOUNT_HU),
            ],
            account_number=[
                ('housing_befizeto', r'befizetőazonosító\s*:?\s*' + IDENTIFIER),
            ],
            vendor=[
                ('housing_kepviselet', r'közös\s+képviselet\s*:\s*([^,\n\r]+)'),
            ],
        ),
        confirmation_keywords=('közös költség', 'társasház', 'tulajdonos', 'előírás', 'képviselet', 'albetét'),
    ),
    BillPattern(
        id='mvm-bill-hu',
        name='MVM Electricity Bill (Hungarian)',
        language='hu',
        category='Utilities',
        vendor_name='MVM',
        identifier_patterns=_identifiers(r'\bmvm\b', r'villanyszámla', r'\belmű\b', r'\bémász\b'),
        field_rules=_rules(
            'hu',
            amount=[
                ('mvm_fizetendo', r'fizetendő\s+összeg\s*:?\s*' + HUF_PREFIX + AMOUNT_HU),
                ('mvm_szamlaertek', r'(?:bruttó\s+)?számlaérték\s*:?\s*' + HUF_PREFIX + AMOUNT_HU),
            ],
            account_number=[
                ('mvm_vevo', r'vevő\s*\(\s*fizető\s*\)\s*azonosító\s*:?\s*' + IDENTIFIER),
            ],
        ),
        confirmation_keywords=('áram', 'villamos energia', 'mvm', 'elszámoló számla'),
    ),
    BillPattern(
        id='digi-bill-hu',
        name='DIGI Telecom Bill (Hungarian)',
        language='hu',
        category='Telecommunications',
        vendor_name='DIGI',
        identifier_patterns=_identifiers(r'\bdigi\b', r'számlád adatai', r'előfizetés'),
        field_rules=_rules(
            'hu',
            amount=[
                ('digi_osszeg', r'(?:\*\*\s*)?(?:összeg|fizetendő)\s*:?\s*(?:\*\*)?\s*' + HUF_PREFIX + AMOUNT_HU),
            ],
            account_number=[
                ('digi_szerzodes', r'szerződésszám\s*:?\s*' + IDENTIFIER),
                ('digi_csoportos', r'azonosító\s+csoportos\s+beszedéshez\s*:?\s*' + IDENTIFIER),
            ],
        ),
        confirmation_keywords=('digi', 'távközlési', 'internet', 'telefon', 'kábeltévé', 'előfizetés'),
    ),
    BillPattern(
        id='waste-management-hu',
        name='Waste Management Bill (Hungarian)',
        language='hu',
        category='Utilities',
        identifier_patterns=_identifiers(r'hulladékgazdálkodás', r'szemétszállítás', r'\bnhkv\b', r'\bfkf\b', r'szemétdíj'),
        field_rules=_rules(
            'hu',
            amount=[
                ('waste_szamla_osszege', r'számla\s+összege\s*:?\s*' + HUF_PREFIX + AMOUNT_HU),
                ('waste_szolgaltatasi_dij', r'szolgáltatási\s+díj\s*:?\s*' + HUF_PREFIX + AMOUNT_HU),
            ],
            account_number=[
                ('waste_vevokod', r'(?:szerződés\s*szám|vevőkód)\s*:?\s*' + IDENTIFIER),
            ],
            vendor=[
                ('waste_kozszolgaltato', r'közszolgáltató\s*:\s*([^\n\r,]+)'),
            ],
        ),
        confirmation_keywords=('hulladékgazdálkodás', 'kommunális', 'szemétszállítás', 'közszolgáltatás', 'hulladékkezelés'),
    ),
    BillPattern(
        id='property-tax-hu',
        name='Property Tax Bill (Hungarian)',
        language='hu',
        category='Taxes',
        identifier_patterns=_identifiers(r'építményadó', r'telekadó', r'ingatlanadó', r'adóhatóság', r'helyi\s+adó'),
        field_rules=_rules(
            'hu',
            amount=[
                ('tax_fizetendo_ado', r'(?:fizetendő\s+adó|adó\s+összege)\s*:?\s*' + HUF_PREFIX + AMOUNT_HU),
            ],
            account_number=[
                ('tax_azonosito', r'(?:adóazonosító|ügyiratszám|iktatószám)\s*:?\s*' + IDENTIFIER),
            ],
            vendor=[
                ('tax_onkormanyzat', r'((?:[^\W\d_]+\s+){0,3}önkormányzat[^\n\r,]*)'),
            ],
        ),
        confirmation_keywords=('önkormányzat', 'adóhatóság', 'építményadó', 'telekadó', 'helyi adó', 'polgármesteri hivatal'),
    ),
    BillPattern(
        id='insurance-bill-hu',
        name='Insurance Bill (Hungarian)',
        language='hu',
        category='Insurance',
        identifier_patterns=_identifiers(
            r'(?:biztosítási|biztosítás)\s+(?:díj|számla|értesítő)',
            r'kötvény',
        ),
        field_rules=_rules(
            'hu',
            amount=[
                ('insurance_dij', r'(?:díj|fizetendő|összesen)\s*(?:összeg)?\s*:?\s*' + AMOUNT_HU + HUF),
            ],
            account_number=[
                ('insurance_kotveny', r'kötvény\s*(?:szám|azonosító)\s*:?\s*' + IDENTIFIER),
            ],
            vendor=[
                ('insurance_biztosito', r'([^\n\r,:]*biztosító(?:\s+(?:zrt|nyrt)\.?)?)'),
            ],
        ),
        confirmation_keywords=('biztosítás', 'kötvény', 'díj', 'fedezet', 'kár'),
    ),
    BillPattern(
        id='dijnet-bill-hu',
        name='DíjNet Bill (Hungarian)',
        language='hu',
        category=None,  # DíjNet forwards bills of many issuers
        identifier_patterns=_identifiers(r'díjnet', r'számla érkezett', r'új számla'),
        field_rules=_rules(
            'hu',
            amount=[
                ('dijnet_osszeg', r'(?:\*\s*)?(?:fizetendő\s+)?összeg\s*:\s*' + HUF_PREFIX + AMOUNT_HU),
            ],
            due_date=[
                ('dijnet_hatarido', r'(?:\*\s*)?(?:fizetési\s+határidő|esedékesség)\s*:\s*' + DATE_SHAPE),
            ],
            invoice_number=[
                ('dijnet_szamlaszam', r'számlaszám\s*:\s*' + IDENTIFIER),
            ],
            vendor=[
                ('dijnet_kibocsato', r'számlakibocsátó\s*:\s*([^\n\r*]+)'),
            ],
        ),
        confirmation_keywords=('díjnet', 'számla', 'fizetés', 'elektronikus', 'e-számla', 'szolgáltató'),
    ),
    BillPattern(
        id='generic-bill-hu',
        name='Bill (Hungarian)',
        language='hu',
        identifier_patterns=_identifiers(r'számla', r'díjbekérő', r'fizetési\s+értesítő'),
        field_rules=_rules('hu'),
        confirmation_keywords=('számla', 'fizetendő', 'határidő', 'összeg'),
    ),
]


# ---------------------------------------------------------------------------
# English patterns
# ---------------------------------------------------------------------------

ENGLISH_PATTERNS: List[BillPattern] = [
    BillPattern(
        id='utility-bill-en',
        name='Utility Bill (English)',
        language='en',
        category='Utilities',
        identifier_patterns=_identifiers(
            r'your\s+(?:utility|water|electric|gas|power)\s+bill',
            r'(?:utility|water|electric|gas|power)\s+(?:bill|statement|invoice)',
        ),
        field_rules=_rules('en'),
        confirmation_keywords=('bill', 'payment', 'utility', 'service', 'usage'),
    ),
    BillPattern(
        id='netflix-bill',
        name='Netflix Subscription',
        language='en',
        category='Subscriptions',
        vendor_name='Netflix',
        identifier_patterns=_identifiers(r'netflix\s+(?:bill|invoice|receipt|subscription)'),
        field_rules=_rules(
            'en',
            amount=[('netflix_charged', r'\$\s*' + AMOUNT_EN + r'\s+was\s+charged')],
            due_date=[('netflix_next_billing', r'next\s+billing\s+date\s*:?\s*' + DATE_SHAPE)],
        ),
        confirmation_keywords=('subscription', 'netflix', 'payment', 'account'),
    ),
    BillPattern(
        id='spotify-bill',
        name='Spotify Subscription',
        language='en',
        category='Subscriptions',
        vendor_name='Spotify',
        identifier_patterns=_identifiers(r'spotify\s+(?:receipt|invoice|bill|premium)'),
        field_rules=_rules(
            'en',
            amount=[('spotify_charged', r'\$\s*' + AMOUNT_EN + r'\s+was\s+charged')],
            due_date=[('spotify_next_payment', r'next\s+(?:billing|payment)\s+date\s*:?\s*' + DATE_SHAPE)],
        ),
        confirmation_keywords=('premium', 'subscription', 'spotify', 'payment'),
    ),
    BillPattern(
        id='telecom-bill-en',
        name='Telecommunications Bill (English)',
        language='en',
        category='Telecommunications',
        identifier_patterns=_identifiers(
            r'your\s+(?:phone|mobile|cell|internet|wireless|telecom)\s+bill',
            r'(?:phone|mobile|cell|internet|wireless|telecom)\s+(?:bill|statement|invoice)',
        ),
        field_rules=_rules(
            'en',
            account_number=[('telecom_phone', r'(?:phone|mobile)\s*(?:number|#)\s*:?\s*' + IDENTIFIER)],
        ),
        confirmation_keywords=('bill', 'payment', 'data', 'minutes', 'service', 'usage'),
    ),
    BillPattern(
        id='insurance-bill-en',
        name='Insurance Bill (English)',
        language='en',
        category='Insurance',
        identifier_patterns=_identifiers(
            r'(?:insurance|policy|premium)\s+(?:bill|statement|invoice|notice)',
        ),
        field_rules=_rules(
            'en',
            amount=[('insurance_premium_due', r'premium\s+due\s*:?\s*' + USD_PREFIX + AMOUNT_EN)],
            account_number=[('insurance_policy', r'policy\s*(?:number|#)\s*:?\s*' + IDENTIFIER)],
        ),
        confirmation_keywords=('insurance', 'policy', 'premium', 'coverage', 'claim'),
    ),
    BillPattern(
        id='generic-invoice-en',
        name='Invoice (English)',
        language='en',
        identifier_patterns=_identifiers(r'\binvoice\b', r'\bstatement\b', r'amount\s+due', r'total\s+due'),
        field_rules=_rules('en'),
        confirmation_keywords=('invoice', 'bill', 'payment', 'due', 'total'),
    ),
]


# ---------------------------------------------------------------------------
# German patterns
# ---------------------------------------------------------------------------

GERMAN_PATTERNS: List[BillPattern] = [
    BillPattern(
        id='generic-bill-de',
        name='Rechnung (German)',
        language='de',
        identifier_patterns=_identifiers(r'\brechnung\b', r'gesamtbetrag', r'zahlungserinnerung'),
        field_rules=_rules('de'),
        confirmation_keywords=('rechnung', 'betrag', 'fällig', 'zahlung', 'kundennummer'),
    ),
]


# ---------------------------------------------------------------------------
# Company-specific pattern sets (Hungarian issuers)
# ---------------------------------------------------------------------------

COMPANY_PATTERNS: List[CompanyPatternSet] = [
    CompanyPatternSet(
        key='mvm',
        name='MVM',
        aliases=('mvm', 'mvm next', 'mvm energia'),
        category='Utilities',
        field_patterns={
            'amount': (
                _spec('mvm_fizetendo_osszeg', r'fizetendő\s+összeg\s*:?\s*' + HUF_PREFIX + AMOUNT_HU, 'Fizetendő összeg: 12 345 Ft'),
                _spec('mvm_szamlaertek', r'bruttó\s+számlaérték\s*:?\s*' + HUF_PREFIX + AMOUNT_HU),
            ),
            'account_number': (
                _spec('mvm_vevo_azonosito', r'vevő\s*\(\s*fizető\s*\)\s*azonosító\s*:?\s*' + IDENTIFIER),
                _spec('mvm_felhasznalo_azonosito', r'felhasználó\s*azonosító\s*(?:szám)?\s*:?\s*' + IDENTIFIER),
            ),
            'invoice_number': (
                _spec('mvm_szamla_sorszama', r'számla\s+sorszáma\s*:?\s*' + IDENTIFIER),
            ),
            'due_date': (
                _spec('mvm_fizetesi_hatarido', r'fizetési\s+határidő\s*:?\s*' + DATE_SHAPE),
            ),
        },
    ),
    CompanyPatternSet(
        key='digi',
        name='DIGI',
        aliases=('digi', 'digi távközlési'),
        category='Telecommunications',
        field_patterns={
            'amount': (
                _spec('digi_fizetendo', r'(?:\*\*\s*)?(?:fizetendő\s+)?összeg\s*:?\s*(?:\*\*)?\s*' + HUF_PREFIX + AMOUNT_HU),
            ),
            'account_number': (
                _spec('digi_szerzodesszam', r'szerződésszám\s*:?\s*' + IDENTIFIER),
            ),
            'invoice_number': (
                _spec('digi_szamla_sorszama', r'számla\s+sorszáma\s*:?\s*' + IDENTIFIER),
            ),
            'due_date': (
                _spec('digi_hatarido', r'(?:fizetési\s+határid[őo]|esedékesség)\s*:?\s*' + DATE_SHAPE),
            ),
        },
    ),
    CompanyPatternSet(
        key='eon',
        name='E.ON',
        aliases=('e.on', 'eon hungária', 'e.on hungária'),
        category='Utilities',
        field_patterns={
            'amount': (
                _spec('eon_fizetendo', r'fizetendő\s+(?:összeg|összesen)\s*:?\s*' + HUF_PREFIX + AMOUNT_HU),
            ),
            'account_number': (
                _spec('eon_ugyfelszam', r'ügyfélszám\s*:?\s*' + IDENTIFIER),
                _spec('eon_szerzodesi_folyoszamla', r'szerződéses\s+folyószámla\s*:?\s*' + IDENTIFIER),
            ),
            'due_date': (
                _spec('eon_hatarido', r'fizetési\s+határidő\s*:?\s*' + DATE_SHAPE),
            ),
        },
    ),
    CompanyPatternSet(
        key='fotav',
        name='Főtáv',
        aliases=('főtáv', 'budapesti távhőszolgáltató'),
        category='Utilities',
        field_patterns={
            'amount': (
                _spec('fotav_fizetendo', r'fizetendő\s*(?:összeg)?\s*:?\s*' + HUF_PREFIX + AMOUNT_HU),
            ),
            'account_number': (
                _spec('fotav_felhasznalo', r'felhasználó\s*azonosító\s*:?\s*' + IDENTIFIER),
            ),
            'due_date': (
                _spec('fotav_hatarido', r'fizetési\s+határidő\s*:?\s*' + DATE_SHAPE),
            ),
        },
    ),
    CompanyPatternSet(
        key='dijnet',
        name='DíjNet',
        aliases=('díjnet',),
        category='Utilities',
        field_patterns={
            'amount': (
                _spec('dijnet_osszeg', r'(?:\*\s*)?összeg\s*:\s*' + HUF_PREFIX + AMOUNT_HU),
            ),
            'account_number': (
                _spec('dijnet_ugyfelazonosito', r'ügyfélazonosító\s*:\s*' + IDENTIFIER),
            ),
            'invoice_number': (
                _spec('dijnet_szamlaszam', r'számlaszám\s*:\s*' + IDENTIFIER),
            ),
            'due_date': (
                _spec('dijnet_hatarido', r'fizetési\s+határidő\s*:\s*' + DATE_SHAPE),
            ),
            'vendor': (
                _spec('dijnet_kibocsato', r'számlakibocsátó\s*:\s*([^\n\r*]+)'),
            ),
        },
    ),
]


# Hungarian document types: a type counts when at least two of its phrases appear
HUNGARIAN_DOCUMENT_IDENTIFIERS: List[Tuple[str, Tuple[str, ...]]] = [
    ('utility_bill', ('számla', 'fogyasztás', 'mérőóra', 'elszámolás', 'közüzemi')),
    ('invoice', ('számla', 'sorszám', 'kelte', 'teljesítés', 'adószám', 'áfa')),
    ('payment_notice', ('fizetési értesítő', 'díjbekérő', 'befizetés', 'fizetendő', 'határidő')),
    ('telecom_bill', ('előfizetés', 'internet', 'telefon', 'díjcsomag')),
]

HUNGARIAN_UTILITY_INDICATORS = (
    'áram', 'gáz', 'víz', 'távhő', 'fogyasztás', 'mérőóra', 'kwh', 'közüzemi',
    'csatorna', 'hulladék', 'szolgáltató', 'elszámolás', 'mérőállás',
)

BILL_IDENTIFIER_THRESHOLD = 2
UTILITY_INDICATOR_THRESHOLD = 5


# Category keywords (English and Hungarian); matched at word starts
CATEGORY_PATTERNS: Dict[str, List[str]] = {
    'Utilities': [
        'electric', 'gas', 'water', 'sewage', 'utility', 'utilities', 'power', 'energy', 'hydro',
        'áram', 'gáz', 'víz', 'közüzemi', 'villany', 'távhő', 'hulladék',
    ],
    'Telecommunications': [
        'phone', 'mobile', 'wireless', 'telecom', 'internet', 'broadband', 'fiber', 'cable', 'television',
        'telefon', 'mobil', 'vodafone', 'telekom', 'yettel', 'digi', 'előfizetés',
    ],
    'Subscriptions': [
        'netflix', 'spotify', 'hulu', 'disney', 'youtube', 'subscription', 'membership',
        'havi díj', 'ismétlődő',
    ],
    'Shopping': [
        'amazon', 'walmart', 'ebay', 'etsy', 'shop', 'store', 'purchase', 'order',
        'vásárlás', 'rendelés', 'webáruház',
    ],
    'Travel': [
        'airline', 'flight', 'hotel', 'booking', 'reservation', 'travel', 'airbnb',
        'repülő', 'szállás', 'foglalás', 'utazás',
    ],
    'Insurance': [
        'insurance', 'policy', 'coverage', 'premium',
        'biztosítás', 'biztosító', 'kötvény', 'casco',
    ],
    'Entertainment': [
        'entertainment', 'movie', 'concert', 'ticket',
        'szórakozás', 'koncert', 'jegy',
    ],
    'Food': [
        'restaurant', 'food', 'meal', 'delivery', 'doordash', 'ubereats',
        'étterem', 'étel', 'kiszállítás', 'wolt', 'netpincér',
    ],
    'Housing': [
        'rent', 'mortgage', 'hoa',
        'közös költség', 'társasház', 'albérlet', 'lakbér',
    ],
    'Taxes': [
        'property tax', 'tax bill',
        'építményadó', 'telekadó', 'adóhatóság', 'helyi adó',
    ],
}

_CATEGORY_REGEXES: Dict[str, List[re.Pattern]] = {
    category: [re.compile(r'(?<!\w)' + re.escape(keyword), re.IGNORECASE) for keyword in keywords]
    for category, keywords in CATEGORY_PATTERNS.items()
}


class PatternRegistry:
    """
    Read-only lookup of bill patterns, company pattern sets and categories.

    Args:
        patterns: Bill patterns (defaults to all built-in languages)
        company_patterns: Company pattern sets (defaults to the built-in issuers)
    """

    def __init__(
        self,
        patterns: Optional[Sequence[BillPattern]] = None,
        company_patterns: Optional[Sequence[CompanyPatternSet]] = None
    ):
        if patterns is None:
            patterns = HUNGARIAN_PATTERNS + ENGLISH_PATTERNS + GERMAN_PATTERNS
        if company_patterns is None:
            company_patterns = COMPANY_PATTERNS

        by_language: Dict[str, List[BillPattern]] = {}
        for pattern in patterns:
            by_language.setdefault(pattern.language, []).append(pattern)

        self._by_language = {language: tuple(items) for language, items in by_language.items()}
        self._companies = {company.key: company for company in company_patterns}

        logger.info(
            "Loaded bill patterns",
            extra={
                "languages": sorted(self._by_language),
                "patterns": len(patterns),
                "companies": len(self._companies),
            }
        )

    @property
    def languages(self) -> List[str]:
        return list(self._by_language)

    def for_language(self, language: str) -> Tuple[BillPattern, ...]:
        return self._by_language.get(language, ())

    def get(self, pattern_id: str) -> Optional[BillPattern]:
        for patterns in self._by_language.values():
            for pattern in patterns:
                if pattern.id == pattern_id:
                    return pattern
        return None

    def company(self, key: Optional[str]) -> Optional[CompanyPatternSet]:
        if not key:
            return None
        return self._companies.get(key.lower())

    def detect_company(self, text: str) -> Optional[CompanyPatternSet]:
        """First company whose name appears in the text."""
        normalized = normalize_text(text)
        for company in self._companies.values():
            if company.detected_in(normalized):
                return company
        return None

    def is_hungarian_bill(self, text: str) -> HungarianBillDetection:
        """
        Decide whether text is a Hungarian bill.

        - A document type counts when two or more of its phrases appear.
        - Type plus a known issuer: 0.9
        - Enough types, or 5+ utility indicators: 0.8 (typed) / 0.6
        - Otherwise not a bill (0.2); a detected issuer is still reported.
        """
        normalized = normalize_text(text)
        if not normalized:
            return HungarianBillDetection(False, 0.0)

        type_matches = 0
        detected_type = None
        for name, phrases in HUNGARIAN_DOCUMENT_IDENTIFIERS:
            hits = sum(1 for phrase in phrases if normalize_text(phrase) in normalized)
            if hits >= 2:
                type_matches += 1
                detected_type = detected_type or name

        company = self.detect_company(text)
        company_key = company.key if company else None

        if company and type_matches > 0:
            return HungarianBillDetection(True, 0.9, detected_type, company_key)

        indicator_matches = sum(
            1 for indicator in HUNGARIAN_UTILITY_INDICATORS if normalize_text(indicator) in normalized
        )

        if type_matches >= BILL_IDENTIFIER_THRESHOLD or indicator_matches >= UTILITY_INDICATOR_THRESHOLD:
            return HungarianBillDetection(True, 0.8 if type_matches > 0 else 0.6, detected_type, company_key)

        return HungarianBillDetection(False, 0.2, detected_type, company_key)

    def detect_category(self, text: str) -> Optional[str]:
        """
        Category with the most keyword hits; ties go to the earlier category.

        Examples:
            >>> PatternRegistry().detect_category("Your electric bill from City Power")
            'Utilities'
        """
        if not text:
            return None

        best_category, best_hits = None, 0
        for category, regexes in _CATEGORY_REGEXES.items():
            hits = sum(1 for regex in regexes if regex.search(text))
            if hits > best_hits:
                best_category, best_hits = category, hits
        return best_category
