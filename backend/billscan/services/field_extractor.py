"""
Field extractor: runs a BillPattern's field rules over a text.

For every field the rule kinds are tried in a fixed order:

    COMPANY_SPECIFIC → EXACT_PATTERN → STEM_FALLBACK → LABEL_FALLBACK

and the first valid value wins. A missing amount abandons the pattern;
missing optional fields are left out.
"""

import re
import logging
from typing import Callable, Dict, List, Optional, Tuple

from billscan.config import settings
from billscan.services.errors import MissingRequiredField
from billscan.services.patterns import (
    AMOUNT_DE,
    AMOUNT_EN,
    AMOUNT_HU,
    FIELD_PRIORITY,
    IDENTIFIER,
    REQUIRED_FIELDS,
    BillPattern,
    CompanyPatternSet,
    FieldRule,
    PatternSpec,
)
from billscan.utils.candidates import ExtractedField, ExtractionMethod
from billscan.utils.dates import DATE_SHAPE_RE, parse_date
from billscan.utils.money import parse_amount
from billscan.utils.scoring import field_confidence
from billscan.utils.stemming import StemIndex
from billscan.utils.text import normalize_text, repair_encoding, split_lines

logger = logging.getLogger(__name__)


DISPATCH_ORDER = [
    ExtractionMethod.COMPANY_SPECIFIC,
    ExtractionMethod.EXACT_PATTERN,
    ExtractionMethod.STEM_FALLBACK,
    ExtractionMethod.LABEL_FALLBACK,
]

# Values patterns sometimes capture instead of the identifier itself
GARBAGE_TOKENS = {
    'szam', 'szám', 'azonosito', 'azonosító', 'sorszam', 'sorszám',
    'number', 'no', 'id', 'account', 'customer', 'invoice',
    'none', 'null', 'undefined', 'n/a', 'na', 'nincs',
}

MIN_INVOICE_NUMBER_LENGTH = 4
MIN_ACCOUNT_NUMBER_LENGTH = 3
MAX_VENDOR_LENGTH = 80

_AMOUNT_SHAPES = {
    'hu': re.compile(AMOUNT_HU),
    'en': re.compile(AMOUNT_EN),
    'de': re.compile(AMOUNT_DE),
}
_IDENTIFIER_SHAPE = re.compile(IDENTIFIER, re.IGNORECASE)

Handler = Callable[[str, List[str], FieldRule, str, Optional[CompanyPatternSet]], Optional[ExtractedField]]


class FieldExtractor:
    """
    Extract bill fields with an explicit precedence of rule kinds.

    Args:
        stem_index: Stem index for the stemmed language; without one the
            stem fallback is skipped
        stem_threshold: Minimum stem-group score for a line to be used
    """

    def __init__(self, stem_index: Optional[StemIndex] = None, stem_threshold: Optional[float] = None):
        self.stem_index = stem_index
        self.stem_threshold = settings.STEM_MATCH_THRESHOLD if stem_threshold is None else stem_threshold
        self._handlers: Dict[ExtractionMethod, Handler] = {
            ExtractionMethod.COMPANY_SPECIFIC: self._extract_company_specific,
            ExtractionMethod.EXACT_PATTERN: self._extract_exact,
            ExtractionMethod.STEM_FALLBACK: self._extract_stem_fallback,
            ExtractionMethod.LABEL_FALLBACK: self._extract_label_fallback,
        }

    def extract(
        self,
        text: str,
        pattern: BillPattern,
        company: Optional[CompanyPatternSet] = None,
        use_stemming: bool = True
    ) -> Dict[str, ExtractedField]:
        """
        Extract all fields of a pattern from text.

        Args:
            text: Email or document text
            pattern: Bill pattern whose rules to run
            company: Detected issuer whose patterns take precedence
            use_stemming: Allow the stem fallback

        Returns:
            Extracted fields by name, in priority order

        Raises:
            MissingRequiredField: No valid amount could be extracted
        """
        text = repair_encoding(text)
        lines = split_lines(text)
        fields: Dict[str, ExtractedField] = {}

        for field_name in FIELD_PRIORITY:
            rule = pattern.rule(field_name)
            if rule is None:
                continue

            extracted = self.extract_field(text, rule, pattern.language, company, use_stemming, lines=lines)
            if extracted is not None:
                fields[field_name] = extracted
            elif field_name in REQUIRED_FIELDS:
                raise MissingRequiredField(field_name, f"No {field_name} found for pattern {pattern.id}")

        logger.debug(
            "Extracted fields",
            extra={
                "pattern_id": pattern.id,
                "fields": {name: f.method.value for name, f in fields.items()},
            }
        )
        return fields

    def extract_field(
        self,
        text: str,
        rule: FieldRule,
        language: str,
        company: Optional[CompanyPatternSet] = None,
        use_stemming: bool = True,
        lines: Optional[List[str]] = None
    ) -> Optional[ExtractedField]:
        """Run the rule kinds for one field in precedence order; first valid value wins."""
        if lines is None:
            lines = split_lines(text)

        for method in DISPATCH_ORDER:
            if method == ExtractionMethod.COMPANY_SPECIFIC and company is None:
                continue
            if method == ExtractionMethod.STEM_FALLBACK and not self._can_stem(rule, language, use_stemming):
                continue

            extracted = self._handlers[method](text, lines, rule, language, company)
            if extracted is not None:
                return extracted

        return None

    def _can_stem(self, rule: FieldRule, language: str, use_stemming: bool) -> bool:
        return (
            use_stemming
            and bool(rule.stem_groups)
            and self.stem_index is not None
            and self.stem_index.language == language
        )

    # Rule kinds

    def _extract_company_specific(
        self,
        text: str,
        lines: List[str],
        rule: FieldRule,
        language: str,
        company: Optional[CompanyPatternSet]
    ) -> Optional[ExtractedField]:
        specs = company.field_patterns.get(rule.field, ())
        extracted = self._first_valid_match(text, specs, rule, language, ExtractionMethod.COMPANY_SPECIFIC)
        if extracted is None and rule.field == 'vendor':
            # The detected issuer is the vendor
            extracted = ExtractedField(
                value=company.name,
                confidence=field_confidence(ExtractionMethod.COMPANY_SPECIFIC),
                method=ExtractionMethod.COMPANY_SPECIFIC,
                semantic_type=rule.semantic_type,
                pattern_name=f'{company.key}_name',
            )
        return extracted

    def _extract_exact(
        self,
        text: str,
        lines: List[str],
        rule: FieldRule,
        language: str,
        company: Optional[CompanyPatternSet]
    ) -> Optional[ExtractedField]:
        return self._first_valid_match(text, rule.patterns, rule, language, ExtractionMethod.EXACT_PATTERN)

    def _extract_stem_fallback(
        self,
        text: str,
        lines: List[str],
        rule: FieldRule,
        language: str,
        company: Optional[CompanyPatternSet]
    ) -> Optional[ExtractedField]:
        """Best line by stem-group score; the value comes from that line or the next."""
        best_index, best_score = None, 0.0
        for index, line in enumerate(lines):
            score = max(
                self.stem_index.calculate_stem_match_score(line, group) for group in rule.stem_groups
            )
            if score >= self.stem_threshold and score > best_score:
                best_index, best_score = index, score

        if best_index is None:
            return None

        line = lines[best_index]
        segments = [_after_label(line), lines[best_index + 1] if best_index + 1 < len(lines) else '']
        for segment in segments:
            value = self._value_by_shape(segment, rule, language)
            if value is not None:
                return self._build(value, rule, ExtractionMethod.STEM_FALLBACK, f'stem_line_{best_index}', line)
        return None

    def _extract_label_fallback(
        self,
        text: str,
        lines: List[str],
        rule: FieldRule,
        language: str,
        company: Optional[CompanyPatternSet]
    ) -> Optional[ExtractedField]:
        """Generic "<label>: <value>" split using the field's human labels."""
        for label in rule.labels:
            normalized_label = normalize_text(label)
            for line in lines:
                head, separator, tail = line.partition(':')
                if not separator:
                    continue
                if not normalize_text(head).endswith(normalized_label):
                    continue
                value = self._value_by_shape(tail, rule, language)
                if value is not None:
                    return self._build(value, rule, ExtractionMethod.LABEL_FALLBACK, f'label_{normalized_label}', line)
        return None

    # Helpers

    def _first_valid_match(
        self,
        text: str,
        specs: Tuple[PatternSpec, ...],
        rule: FieldRule,
        language: str,
        method: ExtractionMethod
    ) -> Optional[ExtractedField]:
        for spec in specs:
            for match in spec.compiled.finditer(text):
                raw = match.group(1)
                if raw is None:
                    continue
                value = post_process(raw, rule.post_processing)
                if is_valid_value(rule.field, rule.value_shape, value, language):
                    return self._build(value, rule, method, spec.name, _line_at(text, match.start()))
        return None

    def _value_by_shape(self, segment: str, rule: FieldRule, language: str) -> Optional[str]:
        """Pull a value of the field's shape out of a text segment."""
        segment = (segment or '').strip()
        if not segment:
            return None

        shape = rule.value_shape
        if shape == 'amount':
            amount_shape = _AMOUNT_SHAPES.get(language, _AMOUNT_SHAPES['en'])
            for match in amount_shape.finditer(segment):
                if parse_amount(match.group(1)) > 0:
                    return match.group(1).strip()
            return None

        if shape == 'date':
            for match in DATE_SHAPE_RE.finditer(segment):
                if parse_date(match.group(1), language):
                    return match.group(1).strip()
            return None

        if shape == 'identifier':
            for match in _IDENTIFIER_SHAPE.finditer(segment):
                value = post_process(match.group(1), rule.post_processing)
                if any(ch.isdigit() for ch in value) and is_valid_value(rule.field, shape, value, language):
                    return value
            return None

        value = post_process(segment, rule.post_processing)
        return value if is_valid_value(rule.field, shape, value, language) else None

    def _build(
        self,
        value: str,
        rule: FieldRule,
        method: ExtractionMethod,
        pattern_name: str,
        context: str
    ) -> ExtractedField:
        return ExtractedField(
            value=value,
            confidence=field_confidence(method),
            method=method,
            semantic_type=rule.semantic_type,
            pattern_name=pattern_name,
            context=context,
        )


def post_process(value: str, steps: Tuple[str, ...]) -> str:
    for step in steps:
        if step == 'strip':
            value = value.strip()
        elif step == 'remove_spaces':
            value = re.sub(r'\s+', '', value)
        elif step == 'trim_punctuation':
            value = value.strip(' \t.,:;*-"\'')
    return value


def is_valid_value(field_name: str, shape: str, value: str, language: str = 'en') -> bool:
    """
    Shape and length checks for an extracted value.

    - amount parses to a number > 0
    - dates parse
    - invoice numbers have at least 4 characters
    - account numbers have at least 3 characters and are not a garbage token
    """
    if not value:
        return False

    if shape == 'amount':
        return parse_amount(value) > 0
    if shape == 'date':
        return parse_date(value, language) is not None
    if value.lower() in GARBAGE_TOKENS:
        return False
    if field_name == 'invoice_number':
        return len(value) >= MIN_INVOICE_NUMBER_LENGTH
    if field_name == 'account_number':
        return len(value) >= MIN_ACCOUNT_NUMBER_LENGTH
    if field_name == 'vendor':
        return 2 <= len(value) <= MAX_VENDOR_LENGTH
    return True


def _after_label(line: str) -> str:
    """Text after the first colon of a line, or the whole line."""
    head, separator, tail = line.partition(':')
    return tail if separator else line


def _line_at(text: str, position: int) -> str:
    start = text.rfind('\n', 0, position) + 1
    end = text.find('\n', position)
    return text[start:end if end != -1 else len(text)].strip()
