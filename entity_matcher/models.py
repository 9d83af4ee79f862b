"""Entity Matcher Data Models.

This module defines the Pydantic models for value reconciliation:
- CandidateMatch: A scored knowledge-base entity candidate
- CellSelection: The value chosen for a reconciliation cell
- ReconciliationCell: Reconciliation state of one value of one property of one item
- FormatValidation: Result of checking a literal against format constraints
- ReconciliationNeed: Whether a value should be reconciled at all
- MatchOutcome: What a single reconciliation attempt produced
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


# (item_id, property key, value index)
CellKey = Tuple[str, str, int]


class CellStatus(str, Enum):
    """Reconciliation status of a cell."""
    UNRECONCILED = "unreconciled"
    RECONCILED = "reconciled"
    SKIPPED = "skipped"


class OutcomeKind(str, Enum):
    """What a reconciliation attempt produced."""
    DATE_INPUT = "date_input"          # Value is a date, no lookup performed
    AUTO_ACCEPTED = "auto_accepted"    # Top candidate accepted without review
    WITH_MATCHES = "with_matches"      # Candidates found, review needed
    NO_MATCHES = "no_matches"          # Nothing found anywhere
    CACHED = "cached"                  # Stored result returned, no lookup performed


class CandidateMatch(BaseModel):
    """A knowledge-base entity proposed for a literal value.

    Attributes:
        id: Entity id (e.g., "Q5582")
        name: Entity label
        description: Entity description
        score: Constraint-adjusted score (0-100)
        original_score: Score before constraint adjustment
        constraint_score: Constraint multiplier in percent (100 = neutral)
        types: Entity type ids reported by the reconciliation service
        url: Entity page URL
        fallback: True if the candidate came from the generic search endpoint
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    description: str = ""
    score: float = Field(default=0, description="Adjusted score (0-100)")
    original_score: float = Field(default=0, alias="originalScore")
    constraint_score: float = Field(default=100, alias="constraintScore")
    types: List[str] = Field(default_factory=list)
    url: str = ""
    fallback: bool = False


class CellSelection(BaseModel):
    """The value chosen for a cell.

    `type` is "entity" for a knowledge-base entity, otherwise a literal kind
    (e.g., "string", "date").
    """
    model_config = ConfigDict(populate_by_name=True)

    type: str = "entity"
    id: Optional[str] = None
    label: Optional[str] = None
    description: Optional[str] = None
    value: Optional[str] = None
    qualifiers: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_candidate(cls, candidate: CandidateMatch, **qualifiers: Any) -> "CellSelection":
        return cls(
            type="entity",
            id=candidate.id,
            label=candidate.name,
            description=candidate.description,
            qualifiers=qualifiers,
        )

    @property
    def auto_accepted(self) -> bool:
        return bool(self.qualifiers.get("autoAccepted"))


class ReconciliationCell(BaseModel):
    """Reconciliation state of one value.

    `matches is None` means never attempted; `matches == []` means attempted
    with no results. Only the former triggers a lookup.
    """
    item_id: str
    property: str
    value_index: int = 0
    value: str = ""
    is_manual: bool = False

    matches: Optional[List[CandidateMatch]] = None
    selected_match: Optional[CellSelection] = None
    status: CellStatus = CellStatus.UNRECONCILED

    needs_date_input: bool = False
    warnings: List[Dict[str, Any]] = Field(default_factory=list)
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> CellKey:
        return (self.item_id, self.property, self.value_index)

    @property
    def attempted(self) -> bool:
        return self.matches is not None


class FormatValidation(BaseModel):
    """Result of validating a literal against format constraints.

    `warnings` lists constraints whose regex could not be compiled.
    """
    is_valid: bool = True
    violations: List[Dict[str, str]] = Field(default_factory=list)
    passed: List[Dict[str, str]] = Field(default_factory=list)
    warnings: List[Dict[str, str]] = Field(default_factory=list)


class ReconciliationNeed(BaseModel):
    """Whether a value should go through reconciliation."""
    needs_reconciliation: bool = True
    reason: str = "default"
    confidence: str = Field(default="medium", description="high, medium or low")


class MatchOutcome(BaseModel):
    """What one reconciliation attempt for one cell produced."""
    kind: OutcomeKind
    cell_key: CellKey
    value: str
    matches: List[CandidateMatch] = Field(default_factory=list)
    selected: Optional[CellSelection] = None
    validation: Optional[FormatValidation] = None
    advance_scheduled: bool = False
    duration_ms: float = 0

    @property
    def auto_accepted(self) -> bool:
        return self.kind == OutcomeKind.AUTO_ACCEPTED

    @property
    def needs_date_input(self) -> bool:
        return self.kind == OutcomeKind.DATE_INPUT


# =============================================================================
# Matching Configuration
# =============================================================================

class MatchingConfig(BaseModel):
    """Configuration for candidate scoring and auto-acceptance.

    The position fallback formula and the auto-accept threshold are empirical
    values kept configurable.
    """
    # Position-based score when the service returns none: base - step * index, floored
    position_base_score: float = Field(default=100, description="Score of the first unscored result")
    position_step: float = Field(default=10, description="Decrease per result position")
    position_floor: float = Field(default=10, description="Lowest position-based score")

    # Auto-accept
    auto_accept_threshold: float = Field(default=100, description="Min adjusted score for auto-accept")

    # Constraint multipliers
    type_violation_multiplier: float = Field(default=0.7, description="Applied when no value-type class matches")
    wikibase_item_bonus: float = Field(default=1.1, description="Applied to Q-ids for wikibase-item properties")

    # Search fallback
    search_limit: int = Field(default=10, description="Max fallback search results")
    fallback_search_score: float = Field(default=80, description="Score of fallback search results")
    fallback_constraint_score: float = Field(default=1, description="Constraint score of fallback search results")

    # Contextual properties
    max_context_properties: int = Field(default=5, description="Max contextual properties per query")


# Default matching config
DEFAULT_MATCHING_CONFIG = MatchingConfig()
