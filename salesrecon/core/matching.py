# salesrecon/core/matching.py

"""
Core description matching engine.

Ranks catalog items for a free-text sales line description. Pure and
deterministic: the same description against the same catalog snapshot
always yields the same suggestions in the same order.
"""

from typing import Iterable, Optional

from salesrecon.models import ConfidenceBreakdown, MatchSuggestion
from salesrecon.core.catalog import CatalogIndex, IndexedItem
from salesrecon.core.confidence import calculate_confidence
from salesrecon.core.normalizers import normalize
from salesrecon.config import get_settings, Settings

LEARNED_MATCH_REASON = "Learned from a previous manual match"


def score_description(
    description: str | None,
    entry: IndexedItem,
    settings: Settings | None = None,
) -> ConfidenceBreakdown:
    """Confidence of one description against one catalog item."""
    return calculate_confidence(normalize(description), entry, settings)


def suggest(
    description: str | None,
    catalog: CatalogIndex,
    top_n: Optional[int] = None,
    learned_item_ids: Iterable[str] = (),
    settings: Settings | None = None,
) -> list[MatchSuggestion]:
    """
    Return up to `top_n` suggestions, best first.

    Ordering: confidence descending, learned matches before computed ones
    (most recently confirmed first), then shorter display name (the more
    specific item), then catalog id.
    Candidates scoring 0 are not suggestions.
    """
    if settings is None:
        settings = get_settings()
    if top_n is None:
        top_n = settings.default_suggestion_limit
    if top_n <= 0 or len(catalog) == 0:
        return []

    tokens = normalize(description)
    # Position in the history is the recency rank
    learned: dict[str, int] = {}
    for item_id in learned_item_ids:
        if item_id in catalog and item_id not in learned:
            learned[item_id] = len(learned)

    ranked: list[tuple[int, int, int, int, str, MatchSuggestion]] = []

    for entry in catalog:
        item = entry.item

        if item.id in learned:
            suggestion = MatchSuggestion(
                catalog_item_id=item.id,
                display_name=item.name,
                confidence=100,
                match_reason=LEARNED_MATCH_REASON,
            )
            ranked.append((-100, 0, learned[item.id], len(item.name), item.id, suggestion))
            continue

        if not tokens:
            continue

        breakdown = calculate_confidence(tokens, entry, settings)
        if breakdown.total <= 0:
            continue

        suggestion = MatchSuggestion(
            catalog_item_id=item.id,
            display_name=item.name,
            confidence=breakdown.total,
            match_reason=_match_reason(breakdown),
        )
        ranked.append((-breakdown.total, 1, 0, len(item.name), item.id, suggestion))

    ranked.sort(key=lambda r: r[:5])
    return [r[5] for r in ranked[:top_n]]


def best_match(
    description: str | None,
    catalog: CatalogIndex,
    learned_item_ids: Iterable[str] = (),
    settings: Settings | None = None,
) -> Optional[MatchSuggestion]:
    """Top suggestion, or None when nothing in the catalog overlaps."""
    suggestions = suggest(description, catalog, top_n=1, learned_item_ids=learned_item_ids, settings=settings)
    return suggestions[0] if suggestions else None


def _match_reason(breakdown: ConfidenceBreakdown) -> str:
    """Short explanation shown next to a suggestion."""
    if breakdown.level == "confident":
        prefix = "High confidence match"
    else:
        prefix = "Partial match (verify)"

    if breakdown.factors:
        return f"{prefix}: {breakdown.factors[0]}"
    return prefix
