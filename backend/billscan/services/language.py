"""
Language detection for bill text.

Keyword and character-set heuristics over a closed set of languages.
Deterministic and never raises: anything unrecognized is the default
language.
"""

import logging
from typing import Dict, List, Optional

from billscan.config import settings

logger = logging.getLogger(__name__)


LANGUAGE_PATTERNS: Dict[str, Dict[str, List[str]]] = {
    'hu': {
        'keywords': [
            'számla', 'fizetendő', 'összeg', 'forint', 'végösszeg',
            'áfa', 'határidő', 'teljesítés', 'kelte', 'dátum',
            'fizetési', 'szolgáltató', 'vevő', 'eladó', 'megrendelő',
            'köszönjük', 'bankszámla', 'adószám',
        ],
        # Letters no other supported language uses
        'markers': ['ő', 'ű'],
    },
    'en': {
        'keywords': [
            'invoice', 'bill', 'amount', 'total', 'due', 'payment',
            'date', 'account', 'subtotal', 'tax', 'customer',
            'thank you', 'balance', 'statement', 'receipt',
        ],
        'markers': [],
    },
    'de': {
        'keywords': [
            'rechnung', 'zahlung', 'betrag', 'fällig', 'gesamtbetrag',
            'kundennummer', 'zahlbar', 'leistung', 'abrechnung', 'bezahlen',
            'euro', 'eur', 'stromverbrauch', 'versicherung',
        ],
        'markers': ['ß', 'ä'],
    },
}

SUPPORTED_LANGUAGES = list(LANGUAGE_PATTERNS)


class LanguageDetector:
    """
    Classify text into one of the supported languages.

    Per language: ratio = (keyword hits + distinct marker characters present)
    / number of keywords. The winner must reach the threshold and be strictly
    greater than every other language's ratio.
    """

    def __init__(
        self,
        threshold: Optional[float] = None,
        default_language: Optional[str] = None
    ):
        self.threshold = settings.LANGUAGE_THRESHOLD if threshold is None else threshold
        self.default_language = default_language or settings.DEFAULT_LANGUAGE

    def ratios(self, text: str) -> Dict[str, float]:
        """Match ratio per supported language."""
        lowered = (text or '').lower()
        result = {}
        for language, patterns in LANGUAGE_PATTERNS.items():
            keywords = patterns['keywords']
            matches = sum(1 for keyword in keywords if keyword in lowered)
            matches += sum(1 for marker in patterns['markers'] if marker in lowered)
            result[language] = matches / len(keywords)
        return result

    def detect(self, text: str) -> str:
        """
        Detect the language of text.

        Returns:
            Language code ('en', 'hu', 'de'), the default when undecided

        Examples:
            >>> LanguageDetector().detect("Számla: fizetendő összeg 12 500 Ft, határidő 2024.03.15")
            'hu'
            >>> LanguageDetector().detect("")
            'en'
        """
        if not text or not text.strip():
            return self.default_language

        ratios = self.ratios(text)
        best_language = max(ratios, key=ratios.get)
        best_ratio = ratios[best_language]

        is_unique_best = all(
            best_ratio > ratio for language, ratio in ratios.items() if language != best_language
        )

        logger.debug(
            "Language detection",
            extra={"ratios": {k: round(v, 3) for k, v in ratios.items()}}
        )

        if best_ratio >= self.threshold and is_unique_best:
            return best_language
        return self.default_language

    def contains_language_patterns(self, text: str, language: str, min_matches: int = 2) -> bool:
        """Whether text contains at least `min_matches` keywords of a language."""
        if not text or language not in LANGUAGE_PATTERNS:
            return False

        lowered = text.lower()
        matches = sum(1 for keyword in LANGUAGE_PATTERNS[language]['keywords'] if keyword in lowered)
        return matches >= min_matches
