# tests/test_matching.py

"""
Tests for the core matching engine.
"""

import pytest
from decimal import Decimal

from salesrecon.config import Settings
from salesrecon.core.catalog import CatalogIndex
from salesrecon.core.confidence import calculate_confidence, get_confidence_level
from salesrecon.core.matching import LEARNED_MATCH_REASON, best_match, suggest
from salesrecon.core.normalizers import normalize, normalize_amount, normalize_string

from conftest import BITOQUE, FRANCESINHA, SOPA, catalog_items, make_item


@pytest.fixture
def catalog() -> CatalogIndex:
    return CatalogIndex(catalog_items())


def score(description: str, item_id: str, catalog: CatalogIndex):
    return calculate_confidence(normalize(description), catalog.entry(item_id), Settings())


# ============================================
# Normalizer Tests
# ============================================

class TestNormalizer:
    """Test description tokenization."""

    def test_lowercases_and_strips_diacritics(self):
        assert normalize("Açúcar  Mascavado!") == ["acucar", "mascavado"]

    def test_collapses_punctuation(self):
        assert normalize("Coca-Cola (33cl)") == ["coca", "cola", "33cl"]

    def test_drops_single_character_tokens(self):
        assert normalize("Sopa a Dia") == ["sopa", "dia"]

    def test_keeps_whole_string_shorter_than_two(self):
        assert normalize("X") == ["x"]

    def test_empty_input(self):
        assert normalize(None) == []
        assert normalize("") == []
        assert normalize("  --  ") == []

    def test_normalize_string_joins_tokens(self):
        assert normalize_string("  Sopa   do DIA ") == "sopa do dia"


class TestAmountNormalizer:

    def test_european_grouping(self):
        assert normalize_amount("€ 1.234,50") == Decimal("1234.50")

    def test_decimal_comma(self):
        assert normalize_amount("8,50") == Decimal("8.50")

    def test_currency_suffix(self):
        assert normalize_amount("8.50 EUR") == Decimal("8.50")

    def test_numbers(self):
        assert normalize_amount(3) == Decimal("3")
        assert normalize_amount(2.5) == Decimal("2.5")

    def test_unparseable(self):
        assert normalize_amount("abc") is None
        assert normalize_amount(None) is None


# ============================================
# Confidence Scoring Tests
# ============================================

class TestConfidenceScoring:
    """Test the confidence scoring algorithm."""

    def test_exact_match_is_maximum(self, catalog):
        confidence = score("Francesinha", FRANCESINHA, catalog)

        assert confidence.total == 100
        assert confidence.level == "confident"
        assert confidence.factors[0] == "Exact name match"

    def test_case_and_accents_do_not_matter(self, catalog):
        assert score("SOPA DO DIA", SOPA, catalog).total == 100
        assert score("Sópa do Día", SOPA, catalog).total == 100

    def test_typo_needs_review(self, catalog):
        """'bitok' vs 'bitoque' overlaps through token similarity."""
        confidence = score("bitok", BITOQUE, catalog)

        assert confidence.total == 67
        assert confidence.level == "needs_review"

    def test_containment_boosts_partial_description(self, catalog):
        """One extra word: overlap 1/2, containment 1.0."""
        confidence = score("Francesinha Especial", FRANCESINHA, catalog)

        assert confidence.overlap == 0.5
        assert confidence.containment == 1.0
        assert confidence.total == 65

    def test_unrelated_scores_zero(self, catalog):
        assert score("Taxa de servico", BITOQUE, catalog).total == 0
        assert score("Taxa de servico", FRANCESINHA, catalog).total == 0
        assert score("Taxa de servico", SOPA, catalog).total == 0

    def test_alias_match(self):
        catalog = CatalogIndex([make_item("coke", "Coca-Cola 33cl", "2.00", aliases=["coca cola lata"])])

        confidence = calculate_confidence(normalize("Coca Cola Lata"), catalog.entry("coke"), Settings())

        assert confidence.total == 100
        assert confidence.matched_alias is True
        assert confidence.matched_name == "coca cola lata"

    @pytest.mark.parametrize("description", ["", "b", "bitoque bitoque", "sopa dia francesinha", "zzzz", "12"])
    def test_confidence_always_in_range(self, catalog, description):
        for entry in catalog:
            total = calculate_confidence(normalize(description), entry, Settings()).total
            assert 0 <= total <= 100

    def test_levels_follow_thresholds(self):
        settings = Settings()
        assert get_confidence_level(100, settings) == "confident"
        assert get_confidence_level(80, settings) == "confident"
        assert get_confidence_level(79, settings) == "needs_review"
        assert get_confidence_level(1, settings) == "needs_review"
        assert get_confidence_level(0, settings) == "unmatched"

    def test_weights_are_configurable(self, catalog):
        settings = Settings(token_overlap_weight=1.0, containment_weight=0.0)
        confidence = calculate_confidence(normalize("Francesinha Especial"), catalog.entry(FRANCESINHA), settings)

        assert confidence.total == 50


# ============================================
# Suggestion Tests
# ============================================

class TestSuggest:
    """Test ranking of catalog candidates."""

    def test_best_candidate_first(self, catalog):
        suggestions = suggest("bitok", catalog, settings=Settings())

        assert suggestions[0].catalog_item_id == BITOQUE
        assert suggestions[0].confidence == 67
        assert suggestions[0].match_reason.startswith("Partial match (verify)")

    def test_sorted_by_confidence_descending(self):
        catalog = CatalogIndex([
            make_item("soup-day", "Sopa do Dia", "3.00"),
            make_item("soup", "Sopa", "2.50"),
        ])

        suggestions = suggest("sopa", catalog, settings=Settings())

        assert [s.catalog_item_id for s in suggestions] == ["soup", "soup-day"]
        confidences = [s.confidence for s in suggestions]
        assert confidences == sorted(confidences, reverse=True)

    def test_ties_broken_by_name_length_then_id(self):
        catalog = CatalogIndex([
            make_item("item-2", "Cafe", "0.80"),
            make_item("item-1", "Café", "0.80"),
            make_item("item-0", "Cafe Cheio", "0.90"),
        ])

        suggestions = suggest("cafe", catalog, settings=Settings())

        assert [s.catalog_item_id for s in suggestions] == ["item-1", "item-2", "item-0"]

    def test_deterministic(self, catalog):
        first = suggest("sopa bitoque", catalog, settings=Settings())
        second = suggest("sopa bitoque", catalog, settings=Settings())

        assert first == second

    def test_zero_confidence_not_suggested(self, catalog):
        assert suggest("zzzz", catalog, settings=Settings()) == []
        assert best_match("zzzz", catalog, settings=Settings()) is None

    def test_empty_catalog(self):
        assert suggest("Bitoque", CatalogIndex([]), settings=Settings()) == []

    def test_top_n_limits_results(self, catalog):
        assert len(suggest("sopa bitoque francesinha", catalog, top_n=2, settings=Settings())) <= 2
        assert suggest("bitoque", catalog, top_n=0, settings=Settings()) == []

    def test_inactive_items_are_not_candidates(self):
        catalog = CatalogIndex([make_item("old", "Bitoque", "7.00", active=False)])

        assert suggest("Bitoque", catalog, settings=Settings()) == []

    def test_learned_item_first_with_full_confidence(self, catalog):
        suggestions = suggest("Taxa de servico", catalog, learned_item_ids=[SOPA], settings=Settings())

        assert suggestions[0].catalog_item_id == SOPA
        assert suggestions[0].confidence == 100
        assert suggestions[0].match_reason == LEARNED_MATCH_REASON

    def test_learned_item_ignored_when_not_in_catalog(self, catalog):
        assert suggest("zzzz", catalog, learned_item_ids=["deleted-item"], settings=Settings()) == []

    def test_learned_items_keep_history_order(self, catalog):
        """Francesinha has the longer name but was confirmed more recently."""
        suggestions = suggest("zzzz", catalog, learned_item_ids=[FRANCESINHA, BITOQUE], settings=Settings())

        assert [s.catalog_item_id for s in suggestions] == [FRANCESINHA, BITOQUE]
