"""Property Knowledge Cache Module.

Fetches property metadata and constraints from the knowledge base and caches
them with a time-to-live.
"""

from property_cache.cache import PropertyKnowledgeCache
from property_cache.constraints import (
    get_constraint_summary,
    has_usable_constraints,
    humanize_regex_description,
    parse_constraint_claims,
)
from property_cache.datatypes import format_datatype
from property_cache.models import (
    ConstraintRank,
    ConstraintSummary,
    FormatConstraint,
    OtherConstraint,
    PropertyConstraints,
    PropertyRecord,
    ValueTypeConstraint,
)

__all__ = [
    "PropertyKnowledgeCache",
    "PropertyRecord",
    "PropertyConstraints",
    "FormatConstraint",
    "ValueTypeConstraint",
    "OtherConstraint",
    "ConstraintRank",
    "ConstraintSummary",
    "format_datatype",
    "humanize_regex_description",
    "parse_constraint_claims",
    "get_constraint_summary",
    "has_usable_constraints",
]
