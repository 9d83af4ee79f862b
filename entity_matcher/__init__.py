"""Entity Matching Engine Module.

Reconciles literal values from source records against knowledge-base
entities, scoring candidates with property constraints and auto-accepting
maximal-confidence matches.
"""

from entity_matcher.dates import is_date_value
from entity_matcher.matcher import EntityMatcher
from entity_matcher.models import (
    CandidateMatch,
    CellKey,
    CellSelection,
    CellStatus,
    FormatValidation,
    MatchingConfig,
    MatchOutcome,
    OutcomeKind,
    ReconciliationCell,
    ReconciliationNeed,
    DEFAULT_MATCHING_CONFIG,
)
from entity_matcher.scoring import (
    analyze_reconciliation_need,
    build_contextual_properties,
    get_constraint_based_types,
    get_suggested_entity_types,
    validate_against_format_constraints,
)
from entity_matcher.session import ReconciliationSession, extract_property_values

__all__ = [
    # Engine
    "EntityMatcher",
    "ReconciliationSession",
    # Models
    "CandidateMatch",
    "CellKey",
    "CellSelection",
    "CellStatus",
    "FormatValidation",
    "MatchingConfig",
    "MatchOutcome",
    "OutcomeKind",
    "ReconciliationCell",
    "ReconciliationNeed",
    "DEFAULT_MATCHING_CONFIG",
    # Helpers
    "is_date_value",
    "analyze_reconciliation_need",
    "build_contextual_properties",
    "get_constraint_based_types",
    "get_suggested_entity_types",
    "validate_against_format_constraints",
    "extract_property_values",
]
