"""Constraint-aware candidate scoring.

Builds reconciliation queries and scores the candidates that come back:
1. Target types come from value-type constraints, else a name heuristic
2. Contextual properties bias the service toward entities that fit the record
3. Each candidate's service score is scaled by constraint conformance
4. Candidates are sorted by adjusted score, service order breaking ties

Format constraints are only checked against the literal value being
reconciled; they never change a candidate's score.
"""

import math
import re
from typing import Dict, List, Optional, Sequence, Tuple

from connectors.wikidata.wd_models import WDReconResult, WDSearchHit
from entity_matcher.models import (
    CandidateMatch,
    FormatValidation,
    MatchingConfig,
    ReconciliationNeed,
    DEFAULT_MATCHING_CONFIG,
)
from property_cache.datatypes import TEMPORAL_DATATYPES
from property_cache.models import PropertyRecord

DEFAULT_ENTITY_TYPE = "Q35120"  # entity

# Source field name (lowercase letters only) -> likely entity classes
HEURISTIC_TYPES: Dict[str, List[str]] = {
    "creator": ["Q5", "Q43229"],          # human, organization
    "author": ["Q5"],
    "publisher": ["Q2085381", "Q43229"],  # publisher, organization
    "editor": ["Q5"],
    "contributor": ["Q5", "Q43229"],
    "copyrightholder": ["Q5", "Q43229"],
    "director": ["Q5"],
    "performer": ["Q5"],
    "subject": ["Q35120"],
    "genre": ["Q483394"],
    "language": ["Q34770"],
    "place": ["Q17334923"],               # geographic location
    "location": ["Q17334923"],
    "country": ["Q6256"],
    "city": ["Q515"],
}

# Property id -> extra P31 hint sent with every query for that property
PROPERTY_TYPE_HINTS: Dict[str, str] = {
    "P50": "Q5",         # author -> human
    "P276": "Q17334923",  # location -> geographic location
    "P407": "Q34770",     # language of work -> language
}

INSTANCE_OF = "P31"
QID_PATTERN = re.compile(r"^Q\d+$")


def get_suggested_entity_types(property_name: str) -> List[str]:
    """Guess entity classes from a field or property name.

    A namespace prefix such as "dcterms:" is ignored.
    """
    name = (property_name or "").rsplit(":", 1)[-1]
    normalized = re.sub(r"[^a-z]", "", name.lower())
    return list(HEURISTIC_TYPES.get(normalized, [DEFAULT_ENTITY_TYPE]))


def get_constraint_based_types(record: Optional[PropertyRecord], property_name: str = "") -> List[str]:
    """Entity type filter for a reconciliation query.

    Uses value-type constraint classes when the record has any, otherwise
    the name heuristic.
    """
    if record is not None and record.constraints is not None:
        classes = record.constraints.value_type_classes()
        if classes:
            return classes
    return get_suggested_entity_types(property_name or (record.id if record else ""))


def build_contextual_properties(
    record: Optional[PropertyRecord],
    sibling_values: Sequence[Tuple[str, str]] = (),
    max_properties: int = DEFAULT_MATCHING_CONFIG.max_context_properties,
) -> List[Dict[str, str]]:
    """Build the contextual property list for a reconciliation query.

    Args:
        record: Property being reconciled
        sibling_values: (property id, entity id) pairs already reconciled on
            the same record
        max_properties: Max entries returned

    Returns:
        Deduplicated list of {"pid": ..., "v": ...} entries
    """
    candidates: List[Tuple[str, str]] = []

    if record is not None:
        if record.constraints is not None:
            for constraint in record.constraints.value_type:
                if constraint.classes:
                    candidates.append((INSTANCE_OF, constraint.classes[0]))
        hint = PROPERTY_TYPE_HINTS.get(record.id)
        if hint:
            candidates.append((INSTANCE_OF, hint))

    for pid, entity_id in sibling_values:
        if record is not None and pid == record.id:
            continue
        if pid and entity_id and QID_PATTERN.match(entity_id):
            candidates.append((pid, entity_id))

    unique = list(dict.fromkeys(candidates))
    return [{"pid": pid, "v": v} for pid, v in unique[:max_properties]]


def validate_against_format_constraints(value: str, record: Optional[PropertyRecord]) -> FormatValidation:
    """Check a literal value against the record's non-deprecated format constraints."""
    result = FormatValidation()
    if record is None or record.constraints is None:
        return result

    for constraint in record.constraints.active_format():
        try:
            pattern = re.compile(constraint.regex)
        except re.error as e:
            result.warnings.append({
                "message": f"Invalid regex pattern: {constraint.regex}",
                "error": str(e),
            })
            continue

        if pattern.search(value):
            result.passed.append({"regex": constraint.regex, "description": constraint.description})
        else:
            result.is_valid = False
            result.violations.append({"regex": constraint.regex, "description": constraint.description})

    return result


def position_score(index: int, config: MatchingConfig = DEFAULT_MATCHING_CONFIG) -> float:
    """Score for an unscored result at `index` in the service's order."""
    return max(config.position_base_score - config.position_step * index, config.position_floor)


def _round_half_up(score: float) -> float:
    return float(math.floor(score + 0.5))


def score_candidate(
    result: WDReconResult,
    index: int,
    record: Optional[PropertyRecord],
    entity_page_url: str,
    config: MatchingConfig = DEFAULT_MATCHING_CONFIG,
) -> CandidateMatch:
    """Turn one reconciliation result into a scored candidate."""
    original = result.numeric_score()
    if original is None:
        original = position_score(index, config)

    types = result.type_ids()
    constraint_score = 100.0

    if record is not None:
        if record.constraints is not None and record.constraints.value_type:
            accepted = set(record.constraints.value_type_classes())
            if not accepted.intersection(types):
                constraint_score *= config.type_violation_multiplier
        if record.datatype == "wikibase-item" and result.id.startswith("Q"):
            constraint_score *= config.wikibase_item_bonus

    adjusted = min(100.0, original * constraint_score / 100.0)

    return CandidateMatch(
        id=result.id,
        name=result.name or result.id,
        description=result.description or "",
        score=_round_half_up(adjusted),
        original_score=original,
        constraint_score=constraint_score,
        types=types,
        url=f"{entity_page_url}{result.id}",
    )


def rank_candidates(
    results: Sequence[WDReconResult],
    record: Optional[PropertyRecord],
    entity_page_url: str,
    config: MatchingConfig = DEFAULT_MATCHING_CONFIG,
) -> List[CandidateMatch]:
    """Score all results and sort by adjusted score, keeping service order on ties."""
    candidates = [
        score_candidate(result, index, record, entity_page_url, config)
        for index, result in enumerate(results)
    ]
    return sorted(candidates, key=lambda c: -c.score)


def search_hits_to_candidates(
    hits: Sequence[WDSearchHit],
    entity_page_url: str,
    config: MatchingConfig = DEFAULT_MATCHING_CONFIG,
) -> List[CandidateMatch]:
    """Convert generic search hits into low-confidence fallback candidates."""
    return [
        CandidateMatch(
            id=hit.id,
            name=hit.label or hit.id,
            description=hit.description or "",
            score=config.fallback_search_score,
            original_score=config.fallback_search_score,
            constraint_score=config.fallback_constraint_score,
            url=hit.concepturi or f"{entity_page_url}{hit.id}",
            fallback=True,
        )
        for hit in hits[:config.search_limit]
    ]


def analyze_reconciliation_need(value: Optional[str], record: Optional[PropertyRecord]) -> ReconciliationNeed:
    """Decide whether a value should be reconciled against the knowledge base."""
    if not value or record is None:
        return ReconciliationNeed(
            needs_reconciliation=False,
            reason="no value or property data",
        )

    if QID_PATTERN.match(value):
        return ReconciliationNeed(needs_reconciliation=False, reason="already a Q-number", confidence="high")

    datatype = record.datatype if record.datatype != "unknown" else record.datatype_label

    if datatype in ("external-id", "string"):
        return ReconciliationNeed(needs_reconciliation=False, reason="string/external-id datatype", confidence="high")
    if datatype == "wikibase-item":
        return ReconciliationNeed(
            needs_reconciliation=True,
            reason="wikibase-item datatype requires Q-number",
            confidence="high",
        )
    if datatype in TEMPORAL_DATATYPES:
        return ReconciliationNeed(needs_reconciliation=False, reason="temporal datatype", confidence="high")
    if datatype == "quantity":
        return ReconciliationNeed(needs_reconciliation=False, reason="quantity datatype", confidence="high")

    return ReconciliationNeed(
        needs_reconciliation=True,
        reason="unknown datatype - reconcile to be safe",
        confidence="low",
    )
