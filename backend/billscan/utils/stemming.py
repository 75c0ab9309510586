"""
Stem index for the stemmed bill language (Hungarian).

Maps inflected surface forms to a canonical root so that
"számlát", "számlázási" and "számlákból" all count as the concept "szamla".

The index is built once from a static dictionary and never mutated afterwards;
unknown surface forms are resolved with a prefix heuristic on every call
instead of being written back into the cache.
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional, Sequence

from .text import normalize_text, tokenize

logger = logging.getLogger(__name__)


HUNGARIAN_STEMS: Dict[str, List[str]] = {
    "szamla": ["számla", "számlát", "számlán", "számlák", "számlákból", "számlázás", "számlázási"],
    "fizet": ["fizetés", "fizetési", "fizetve", "fizetendő", "fizetnivaló", "fizetésre", "fizetését", "fizetést"],
    "dij": ["díj", "díjak", "díjszabás", "díjbekérő", "díjat", "díjról", "díjhoz", "díjakról"],
    "hatarido": ["határidő", "határideje", "határidővel", "határidőre", "határidőt"],
    "esedek": ["esedékesség", "esedékes", "esedékességi"],
    "lejarat": ["lejárat", "lejárati", "lejáratkor"],
    "ertesit": ["értesítő", "értesítés", "értesítjük", "értesítve"],
    "tajekoztat": ["tájékoztató", "tájékoztatás", "tájékoztatjuk"],
    "emlekeztet": ["emlékeztető", "emlékeztetjük"],
    "egyenleg": ["egyenleg", "egyenlege", "egyenleget", "egyenlegek"],
    "befizet": ["befizetés", "befizetési", "befizetett", "befizetendő"],
    "tartozas": ["tartozás", "tartozik", "tartozása", "tartozások"],
    "kiegyenlit": ["kiegyenlítés", "kiegyenlítése", "kiegyenlítve", "kiegyenlítendő"],
    "hatralek": ["hátralék", "hátraléka", "hátralékos", "hátralékok"],
    "aram": ["áram", "áramot", "árammal", "áramszámla"],
    "gaz": ["gáz", "gázszámla", "gázzal", "gázfogyasztás"],
    "viz": ["víz", "vízszámla", "vízzel", "vízfogyasztás", "vízművek"],
    "kozuzem": ["közüzemi", "közüzem", "közüzemek"],
    "szolgaltat": ["szolgáltató", "szolgáltatás", "szolgáltatást", "szolgáltatások"],
    "fogyaszt": ["fogyasztás", "fogyasztási", "fogyasztott", "fogyasztva"],
    "fizetendo": ["fizetendő", "fizetendőt", "fizetendők"],
    "osszeg": ["összeg", "összege", "összeget", "összegek", "összesen"],
    "teljes": ["teljes", "teljesen", "teljessé"],
    "netto": ["nettó", "nettót", "nettóból"],
    "brutto": ["bruttó", "bruttót", "bruttóból"],
    "afa": ["áfa", "áfát", "áfával"],
    "vegosszeg": ["végösszeg", "végösszeget", "végösszege"],
    "azonosit": ["azonosító", "azonosítás", "azonosítója", "azonosítva"],
    "ugyfel": ["ügyfél", "ügyfelek", "ügyfélszám"],
    "felhasznalo": ["felhasználó", "felhasználói", "felhasználás"],
    "fogyaszto": ["fogyasztó", "fogyasztói"],
    "szerzodes": ["szerződés", "szerződő", "szerződéses"],
    "cim": ["cím", "címe", "címen", "címzett"],
    "idoszak": ["időszak", "időszaki", "időszakban"],
    "elszamol": ["elszámolás", "elszámolt", "elszámolási"],
    "vevo": ["vevő", "vevőnek", "vevőt"],
    "kelt": ["kelt", "keltezés"],
    "kiallitas": ["kiállítás", "kiállítva", "kiállító"],
    "datum": ["dátum", "dátuma", "dátummal"],
    "keszites": ["készítés", "készült", "készítve"],
    "mero": ["mérő", "mérők", "mérőóra"],
    "mennyiseg": ["mennyiség", "mennyiséget", "mennyiségben"],
    "egyseg": ["egység", "egységár", "egységenként"],
    "elozo": ["előző", "előzőleg"],
    "ado": ["adó", "adóval", "adót"],
    "nev": ["név", "neve", "nevét"],
    "sorszam": ["sorszám", "sorszáma", "sorszámot"],
    "kibocsato": ["kibocsátó", "kibocsátott"],
    "elado": ["eladó", "eladott", "eladói"],
    "tipus": ["típus", "típusú", "típusok"],
}

# Stems whose presence suggests the text is a bill at all
HUNGARIAN_BILL_INDICATOR_STEMS = ["szamla", "fizet", "osszeg", "hatarido", "dij", "fizetendo"]

# Minimum token length for the reverse-prefix heuristic ("szám" → "számla")
MIN_PREFIX_TOKEN_LENGTH = 4


class StemIndex:
    """
    Read-only surface-form → stem lookup for one language.

    Args:
        stems: Canonical stem → known surface variations
        language: Language code the stems belong to
    """

    def __init__(self, stems: Dict[str, Sequence[str]], language: str = "hu"):
        self.language = language
        self._variations: Dict[str, tuple] = {}
        cache: Dict[str, str] = {}

        for stem, variations in stems.items():
            normalized = tuple(normalize_text(word) for word in variations)
            self._variations[stem] = normalized
            for word in normalized:
                cache[word] = stem

        self._cache = cache

    @property
    def stems(self) -> List[str]:
        return list(self._variations)

    def variations(self, stem: str) -> tuple:
        return self._variations.get(stem, ())

    def token_matches_stem(self, token: str, stem: str) -> bool:
        """
        Check whether an already-normalized token is a form of the stem.

        A token matches when it is a known variation, starts with a known
        variation (suffixed form), or is at least four characters long and is
        itself a prefix of a known variation (truncated form).
        """
        variations = self._variations.get(stem)
        if not variations:
            return token == stem

        if self._cache.get(token) == stem:
            return True

        for variation in variations:
            if token.startswith(variation):
                return True
            if len(token) >= MIN_PREFIX_TOKEN_LENGTH and variation.startswith(token):
                return True
        return False

    def find_stem(self, word: str) -> Optional[str]:
        """
        Find the canonical stem of a word.

        Returns:
            Stem or None if no known variation relates to the word

        Examples:
            >>> index = get_default_stem_index()
            >>> index.find_stem("Számlát")
            'szamla'
            >>> index.find_stem("számlázásokról")
            'szamla'
            >>> index.find_stem("kutya") is None
            True
        """
        normalized = normalize_text(word)
        if not normalized:
            return None

        stem = self._cache.get(normalized)
        if stem:
            return stem

        for stem, variations in self._variations.items():
            if any(normalized.startswith(variation) for variation in variations):
                return stem
            if len(normalized) >= MIN_PREFIX_TOKEN_LENGTH and any(
                variation.startswith(normalized) for variation in variations
            ):
                return stem

        return None

    def stem_normalized_text(self, text: str) -> str:
        """Replace every token with its stem where one is known."""
        tokens = tokenize(normalize_text(text))
        return ' '.join(self.find_stem(token) or token for token in tokens)

    def found_stems(self, text: str, required_stems: Iterable[str]) -> set:
        """Subset of required stems that have at least one form in the text."""
        required = list(dict.fromkeys(required_stems))
        tokens = tokenize(normalize_text(text))

        found = set()
        for stem in required:
            if any(self.token_matches_stem(token, stem) for token in tokens):
                found.add(stem)
        return found

    def calculate_stem_match_score(self, text: str, required_stems: Sequence[str]) -> float:
        """
        Fraction of required stems found in text, from 0.0 to 1.0.

        Examples:
            >>> index = get_default_stem_index()
            >>> index.calculate_stem_match_score("Fizetendő összeg", ["fizet", "osszeg"])
            1.0
        """
        required = list(dict.fromkeys(required_stems))
        if not required or not text:
            return 0.0
        return len(self.found_stems(text, required)) / len(required)

    def contains_stem_variations(self, text: str, stems: Iterable[str]) -> bool:
        return bool(self.found_stems(text, stems))


_default_index: Optional[StemIndex] = None
_default_index_lock = threading.Lock()


def get_default_stem_index() -> StemIndex:
    """
    Get the process-wide Hungarian stem index.

    Built at most once; concurrent first calls wait on the lock and receive
    the same instance.
    """
    global _default_index
    if _default_index is None:
        with _default_index_lock:
            if _default_index is None:
                _default_index = StemIndex(HUNGARIAN_STEMS, language="hu")
                logger.info(
                    "Built stem index",
                    extra={
                        "language": "hu",
                        "stems": len(HUNGARIAN_STEMS),
                        "surface_forms": len(_default_index._cache),
                    }
                )
    return _default_index


# Stem dictionaries available per language code
STEM_DICTIONARIES: Dict[str, Dict[str, List[str]]] = {
    "hu": HUNGARIAN_STEMS,
}
