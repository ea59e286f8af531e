"""
Tests for labels.py.

Covers:
  - normalize(): comma hierarchies, taxonomy ids, short fragments,
    separators, capitalisation, raw fallback
  - normalize() is idempotent
  - dedupe(): case-insensitive, order-preserving, first spelling wins
"""
from __future__ import annotations

import pytest

from labels import dedupe, normalize


# ── normalize ─────────────────────────────────────────────────────────────────

class TestNormalize:
    def test_plain_label_is_capitalised(self):
        assert normalize("coffee mug") == "Coffee Mug"

    def test_last_fragment_preferred(self):
        assert normalize("cup, mug, coffee_mug") == "Coffee Mug"

    def test_taxonomy_id_fragment_dropped(self):
        assert normalize("teapot, n04398044") == "Teapot"

    def test_taxonomy_id_token_inside_fragment_dropped(self):
        assert normalize("n03063599 coffee mug") == "Coffee Mug"

    def test_taxonomy_id_joined_by_separator_dropped(self):
        assert normalize("galaxy-s23") == "Galaxy"
        assert normalize("foo_n123") == "Foo"

    def test_short_fragments_dropped(self):
        assert normalize("sofa, tv") == "Sofa"

    def test_hyphens_and_underscores_become_spaces(self):
        assert normalize("t-shirt") == "T Shirt"
        assert normalize("water_bottle") == "Water Bottle"

    def test_whitespace_collapsed(self):
        assert normalize("  running   shoe ") == "Running Shoe"

    def test_mixed_case_lowered_after_first_letter(self):
        assert normalize("iPHONE") == "Iphone"

    def test_falls_back_to_raw_when_everything_filtered(self):
        assert normalize("tv") == "Tv"
        assert normalize("n04398044") == "N04398044"

    def test_empty_input(self):
        assert normalize("") == ""
        assert normalize("   ") == ""

    def test_words_starting_with_n_are_kept(self):
        # words starting with "n" are ordinary words, not taxonomy ids
        assert normalize("notebook, nail") == "Nail"

    @pytest.mark.parametrize("raw", [
        "cup, mug, coffee_mug",
        "n03063599 coffee mug",
        "teapot, n04398044",
        "t-shirt",
        "tv",
        "ab, c",
        "a-",
        "x12345",
        "  running   shoe ",
        "Coffee Mug",
        "Straße",
        "galaxy-s23",
        "foo_n123",
        "iphone-x15",
        "",
    ])
    def test_idempotent(self, raw):
        once = normalize(raw)
        assert normalize(once) == once


# ── dedupe ────────────────────────────────────────────────────────────────────

class TestDedupe:
    def test_case_insensitive_keeps_first_spelling(self):
        assert dedupe(["a", "B", "A", "c"]) == ["a", "B", "c"]

    def test_order_preserved(self):
        assert dedupe(["Mug", "Cup", "mug", "Drinkware", "CUP"]) == ["Mug", "Cup", "Drinkware"]

    def test_empty_strings_skipped(self):
        assert dedupe(["", "Mug", ""]) == ["Mug"]

    def test_accepts_any_iterable(self):
        assert dedupe(x for x in ("Lamp", "lamp")) == ["Lamp"]

    def test_empty_input(self):
        assert dedupe([]) == []
