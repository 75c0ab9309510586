"""
Tests for text normalization and the Hungarian stem index.

Tests cover:
- Encoding repair for mis-decoded Hungarian text
- Accent folding, whitespace and repeated-character collapse
- Stem lookup for inflected and truncated forms
- Stem match scores
- The stem cache never growing after construction
"""

import sys
import os
import threading
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from billscan.utils.text import (
    collapse_repeats,
    fold_accents,
    normalize_text,
    repair_encoding,
    split_lines,
    tokenize,
)
from billscan.utils.stemming import StemIndex, get_default_stem_index


class TestTextNormalization:
    """Test the shared text normalizer."""

    def test_repairs_utf8_read_as_latin1(self):
        """UTF-8 bytes decoded as CP1252 are restored."""
        assert repair_encoding("szÃ¡mla") == "számla"

    def test_repairs_latin2_confusion(self):
        """Tilde and circumflex stand-ins become Hungarian double acutes."""
        assert repair_encoding("fizetendõ összeg") == "fizetendő összeg"
        assert repair_encoding("Fûtés") == "Fűtés"

    def test_repair_of_empty_text(self):
        assert repair_encoding("") == ""
        assert repair_encoding(None) == ""

    def test_fold_accents(self):
        assert fold_accents("árvíztűrő tükörfúrógép") == "arvizturo tukorfurogep"
        assert fold_accents("Straße") == "Strasse"

    def test_normalize_lowercases_folds_and_collapses(self):
        assert normalize_text("  Számla   Összege \n") == "szamla osszege"

    def test_normalize_without_folding(self):
        assert normalize_text("Számla", fold=False) == "számla"

    def test_typo_tolerance(self):
        """Runs of three or more identical characters collapse to two."""
        assert collapse_repeats("számlaaa") == "számlaa"
        assert normalize_text("SZÁMLAAAA", typo_tolerant=True) == "szamlaa"
        assert normalize_text("SZÁMLAAAA") == "szamlaaaa"

    def test_tokenize_drops_punctuation(self):
        assert tokenize("Fizetendő: 12 500 Ft.") == ["Fizetendő", "12", "500", "Ft"]

    def test_split_lines_skips_blank_lines(self):
        assert split_lines("first\n\n   second  \n\t\n") == ["first", "second"]


class TestStemIndex:
    """Test the surface-form → stem lookup."""

    def test_find_stem_known_variation(self):
        index = get_default_stem_index()
        assert index.find_stem("Számlát") == "szamla"

    def test_find_stem_suffixed_form(self):
        """A form starting with a known variation maps to its stem."""
        index = get_default_stem_index()
        assert index.find_stem("számlázásokról") == "szamla"

    def test_find_stem_truncated_form(self):
        """A token of 4+ characters that prefixes a known variation maps to its stem."""
        index = get_default_stem_index()
        assert index.find_stem("fizetni") == "fizet"

    def test_find_stem_unknown_word(self):
        index = get_default_stem_index()
        assert index.find_stem("kutya") is None
        assert index.find_stem("") is None

    def test_cache_is_not_mutated_by_lookups(self):
        """Heuristic hits are computed per call, never written back."""
        index = get_default_stem_index()
        size_before = len(index._cache)

        index.find_stem("számlázásokról")
        index.find_stem("fizetni")
        index.find_stem("kutya")

        assert len(index._cache) == size_before
        assert "szamlazasokrol" not in index._cache

    def test_stem_normalized_text(self):
        index = get_default_stem_index()
        assert index.stem_normalized_text("Számlát fizetni kell") == "szamla fizet kell"

    def test_stem_match_score(self):
        index = get_default_stem_index()
        assert index.calculate_stem_match_score("Fizetendő összeg", ["fizet", "osszeg"]) == 1.0
        assert index.calculate_stem_match_score("Fizetendő összeg", ["fizet", "hatarido"]) == 0.5
        assert index.calculate_stem_match_score("Fizetendő összeg", []) == 0.0
        assert index.calculate_stem_match_score("", ["fizet"]) == 0.0

    def test_duplicate_required_stems_count_once(self):
        index = get_default_stem_index()
        assert index.calculate_stem_match_score("számla", ["szamla", "szamla", "dij"]) == 0.5

    def test_contains_stem_variations(self):
        index = get_default_stem_index()
        assert index.contains_stem_variations("Az áramszámla megérkezett", ["aram"])
        assert not index.contains_stem_variations("Jó napot kívánok", ["aram", "gaz"])

    def test_custom_index(self):
        index = StemIndex({"rechn": ["Rechnung", "Rechnungen"]}, language="de")
        assert index.language == "de"
        assert index.stems == ["rechn"]
        assert index.find_stem("Rechnungsbetrag") == "rechn"


class TestDefaultStemIndex:
    """Test the process-wide index construction."""

    def test_returns_same_instance(self):
        assert get_default_stem_index() is get_default_stem_index()

    def test_concurrent_first_use_yields_one_instance(self):
        results = []

        def build():
            results.append(get_default_stem_index())

        threads = [threading.Thread(target=build) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len({id(index) for index in results}) == 1

    def test_default_index_language(self):
        assert get_default_stem_index().language == "hu"
