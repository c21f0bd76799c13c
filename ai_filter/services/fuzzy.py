"""Fuzzy correction of LLM-emitted filter values against a shop's catalog.

The model is told to use catalog values verbatim but routinely returns
near-misses ("glasses" for "Sunglasses", "Colour" for "Color"). Each
value is snapped to the closest known value in priority order:

1. Case-insensitive exact match
2. Case-insensitive substring match (either direction, candidate >= 3 chars)
3. Normalized Damerau-Levenshtein similarity >= threshold (rapidfuzz)

Anything that clears none of these is returned unchanged.
"""

from __future__ import annotations

from collections.abc import Sequence

from rapidfuzz import process, utils
from rapidfuzz.distance import DamerauLevenshtein

from ai_filter.models.contracts import FilterDescriptor, TaxonomyContext, VariantOptionFilter

DEFAULT_THRESHOLD = 0.8
MIN_SUBSTRING_LENGTH = 3


def _is_substring_match(candidate: str, known: str) -> bool:
    c = candidate.lower()
    k = known.lower()
    return len(c) >= MIN_SUBSTRING_LENGTH and (c in k or k in c)


def match_value(
    candidate: str,
    known_values: Sequence[str],
    threshold: float = DEFAULT_THRESHOLD,
) -> str:
    """Return the known value that best matches ``candidate``, or ``candidate`` itself."""
    if not candidate or not known_values:
        return candidate

    lowered = candidate.lower()
    for known in known_values:
        if known.lower() == lowered:
            return known

    for known in known_values:
        if _is_substring_match(candidate, known):
            return known

    if not utils.default_process(candidate):
        return candidate

    best = process.extractOne(
        candidate,
        known_values,
        scorer=DamerauLevenshtein.normalized_similarity,
        processor=utils.default_process,
        score_cutoff=threshold,
    )
    if best is not None:
        return best[0]

    return candidate


def _correct_variant_option(
    option: VariantOptionFilter,
    taxonomy: TaxonomyContext,
) -> VariantOptionFilter:
    # The value vocabulary depends on which group the name resolves to,
    # so the name has to be corrected first.
    names = [group.name for group in taxonomy.variant_options]
    matched_name = match_value(option.name, names)
    group = next(
        (g for g in taxonomy.variant_options if g.name.lower() == matched_name.lower()),
        None,
    )
    value = match_value(option.value, group.values) if group is not None else option.value
    return VariantOptionFilter(name=matched_name, value=value)


def correct_filters(
    filters: list[FilterDescriptor],
    taxonomy: TaxonomyContext | None,
) -> list[FilterDescriptor]:
    """Snap every string dimension of every filter to the shop's vocabulary."""
    if taxonomy is None or not filters:
        return filters

    corrected: list[FilterDescriptor] = []
    for f in filters:
        update: dict[str, object] = {}
        if f.product_type and taxonomy.product_types:
            update["product_type"] = match_value(f.product_type, taxonomy.product_types)
        if f.product_vendor and taxonomy.vendors:
            update["product_vendor"] = match_value(f.product_vendor, taxonomy.vendors)
        if f.tag and taxonomy.tags:
            update["tag"] = match_value(f.tag, taxonomy.tags)
        if f.variant_option is not None and taxonomy.variant_options:
            update["variant_option"] = _correct_variant_option(f.variant_option, taxonomy)
        corrected.append(f.model_copy(update=update) if update else f)
    return corrected
