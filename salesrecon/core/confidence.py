# salesrecon/core/confidence.py

"""
Confidence scoring for description-to-catalog matching.

Scoring (0-100):
    total = round(100 * (overlap_weight * overlap + containment_weight * containment))

- overlap:     Jaccard-style token-set overlap. Identical tokens count 1.0,
               near-identical tokens (typos) count their similarity ratio.
- containment: 1.0 when one normalized name contains the other on word
               boundaries, else the whole-string similarity when it clears
               the fuzzy floor, else 0.

Defaults are 0.7 / 0.3 with a 0.6 fuzzy floor; all come from settings.
"""

from difflib import SequenceMatcher
import math

from salesrecon.models import ConfidenceBreakdown, ConfidenceLevel
from salesrecon.core.catalog import CatalogName, IndexedItem
from salesrecon.config import get_settings, Settings


def calculate_confidence(
    description_tokens: list[str],
    entry: IndexedItem,
    settings: Settings | None = None,
) -> ConfidenceBreakdown:
    """
    Score a tokenized description against every name of a catalog item.

    The best-scoring name (canonical or alias) wins; on equal totals the
    canonical name is preferred.
    """
    if settings is None:
        settings = get_settings()

    best: ConfidenceBreakdown | None = None
    for name in entry.names:
        breakdown = _score_name(description_tokens, name, settings)
        if best is None or breakdown.total > best.total:
            best = breakdown

    if best is None:
        return ConfidenceBreakdown(overlap=0.0, containment=0.0, total=0, level="unmatched")
    return best


def _score_name(
    description_tokens: list[str],
    name: CatalogName,
    settings: Settings,
) -> ConfidenceBreakdown:
    factors: list[str] = []
    threshold = settings.fuzzy_token_threshold

    overlap = _score_overlap(description_tokens, list(name.tokens), threshold, factors)
    containment = _score_containment(" ".join(description_tokens), name.key, threshold, factors)

    raw = 100 * (settings.token_overlap_weight * overlap + settings.containment_weight * containment)
    total = max(0, min(100, math.floor(raw + 0.5)))

    if name.is_alias and total > 0:
        factors.append(f"Matched alias '{name.text}'")

    return ConfidenceBreakdown(
        overlap=round(overlap, 4),
        containment=round(containment, 4),
        total=total,
        level=get_confidence_level(total, settings),
        matched_name=name.text,
        matched_alias=name.is_alias,
        factors=factors,
    )


def _score_overlap(
    description_tokens: list[str],
    candidate_tokens: list[str],
    threshold: float,
    factors: list[str],
) -> float:
    """Soft Jaccard: matched weight over |A| + |B| - matched pairs."""
    a = set(description_tokens)
    b = set(candidate_tokens)
    if not a or not b:
        return 0.0

    exact = a & b
    matched_pairs = len(exact)
    matched_weight = float(len(exact))

    # Pair leftover tokens greedily, most similar first
    rest_a = sorted(a - exact)
    rest_b = sorted(b - exact)
    pairs = []
    for ta in rest_a:
        for tb in rest_b:
            similarity = token_similarity(ta, tb)
            if similarity >= threshold:
                pairs.append((similarity, ta, tb))
    pairs.sort(key=lambda p: (-p[0], p[1], p[2]))

    used_a: set[str] = set()
    used_b: set[str] = set()
    fuzzy = 0
    for similarity, ta, tb in pairs:
        if ta in used_a or tb in used_b:
            continue
        used_a.add(ta)
        used_b.add(tb)
        matched_pairs += 1
        matched_weight += similarity
        fuzzy += 1

    union = len(a) + len(b) - matched_pairs
    overlap = matched_weight / union if union else 0.0

    if exact:
        factors.append(f"Shares {len(exact)} of {len(b)} words")
    if fuzzy:
        factors.append(f"{fuzzy} similar word(s) (possible typo)")

    return overlap


def _score_containment(
    description: str,
    candidate: str,
    threshold: float,
    factors: list[str],
) -> float:
    if not description or not candidate:
        return 0.0

    if description == candidate:
        factors.insert(0, "Exact name match")
        return 1.0

    # Word-boundary containment so "pa" does not hit "sopa"
    padded_description = f" {description} "
    padded_candidate = f" {candidate} "
    if padded_description in padded_candidate:
        factors.append("Name contains description")
        return 1.0
    if padded_candidate in padded_description:
        factors.append("Description contains name")
        return 1.0

    similarity = SequenceMatcher(None, description, candidate).ratio()
    if similarity >= threshold:
        factors.append(f"Names similar ({similarity:.0%})")
        return similarity

    return 0.0


def token_similarity(a: str, b: str) -> float:
    """Similarity of two tokens, 0.0 to 1.0."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return SequenceMatcher(None, a, b).ratio()


def get_confidence_level(score: int, settings: Settings | None = None) -> ConfidenceLevel:
    """Convert numeric score to confidence level."""
    if settings is None:
        settings = get_settings()

    if score >= settings.auto_match_threshold:
        return "confident"
    elif score >= settings.review_threshold:
        return "needs_review"
    else:
        return "unmatched"
