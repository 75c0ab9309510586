"""
Locale-aware text normalization shared by detection, stemming and extraction.

Handles:
- Accent folding for Hungarian (á → a, ő → o, ű → u, ...)
- Whitespace collapse
- Encoding repair for mis-decoded email bodies and PDF text
- Typo tolerance (collapse runs of 3+ repeated characters to 2)
"""

import re
from typing import List


# Hungarian and German accented characters → ASCII base letter
_ACCENT_FOLD = str.maketrans({
    'á': 'a', 'à': 'a', 'â': 'a', 'ä': 'a',
    'é': 'e', 'è': 'e', 'ê': 'e',
    'í': 'i', 'ì': 'i',
    'ó': 'o', 'ò': 'o', 'ö': 'o', 'ő': 'o', 'õ': 'o', 'ô': 'o',
    'ú': 'u', 'ù': 'u', 'ü': 'u', 'ű': 'u', 'û': 'u',
    'ß': 'ss',
})

# PDFs produced with Latin-1 fonts render the Hungarian double acute as tilde/circumflex
_LATIN2_CONFUSION = str.maketrans({
    'õ': 'ő', 'Õ': 'Ő',
    'û': 'ű', 'Û': 'Ű',
})

# UTF-8 bytes decoded as Latin-1/CP1252 leave these lead characters behind
_MOJIBAKE_MARKERS = ('Ã', 'Å', 'Â')

_TOKEN_SPLIT = re.compile(r'[.,;:!?()\[\]{}"*|/]')
_REPEATED_CHARS = re.compile(r'(.)\1{2,}')
_WHITESPACE = re.compile(r'\s+')


def repair_encoding(text: str) -> str:
    """
    Repair common encoding damage in decoded email bodies and PDF text.

    Examples:
        >>> repair_encoding("szÃ¡mla")
        'számla'
        >>> repair_encoding("fizetendõ")
        'fizetendő'
    """
    if not text:
        return ''

    if any(marker in text for marker in _MOJIBAKE_MARKERS):
        for codec in ('cp1252', 'latin-1'):
            try:
                text = text.encode(codec).decode('utf-8')
                break
            except UnicodeError:
                continue

    return text.translate(_LATIN2_CONFUSION)


def fold_accents(text: str) -> str:
    """Replace accented letters with their ASCII base letter."""
    return text.translate(_ACCENT_FOLD)


def collapse_repeats(text: str) -> str:
    """Collapse runs of 3+ identical characters to 2 ("számlaaa" → "számlaa")."""
    return _REPEATED_CHARS.sub(r'\1\1', text)


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(' ', text).strip()


def normalize_text(text: str, fold: bool = True, typo_tolerant: bool = False) -> str:
    """
    Normalize text for keyword and stem comparisons.

    Args:
        text: Raw text
        fold: Accent-fold (used for the stemmed language)
        typo_tolerant: Collapse runs of repeated characters

    Returns:
        Lowercased, whitespace-collapsed text
    """
    if not text:
        return ''

    text = repair_encoding(text).lower()
    if fold:
        text = fold_accents(text)
    if typo_tolerant:
        text = collapse_repeats(text)
    return collapse_whitespace(text)


def tokenize(text: str) -> List[str]:
    """Split text into word tokens, dropping punctuation."""
    return [token for token in _TOKEN_SPLIT.sub(' ', text).split() if token]


def split_lines(text: str) -> List[str]:
    """Non-empty, stripped lines of a document."""
    return [line.strip() for line in text.splitlines() if line.strip()]
