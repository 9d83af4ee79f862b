"""Property Knowledge Cache Data Models.

This module defines the Pydantic models for knowledge-base properties:
- PropertyRecord: Datatype, label and description of a property, plus constraints
- FormatConstraint: A regex a literal value must match
- ValueTypeConstraint: Classes a matched entity should be an instance of
- OtherConstraint: Any other constraint type, kept opaque
- PropertyConstraints: The three constraint buckets for one property

Field aliases follow the camelCase names used in persisted mapping documents.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ConstraintRank(str, Enum):
    """Statement rank of a constraint claim.

    Deprecated constraints are dropped when the claims are parsed.
    """
    PREFERRED = "preferred"
    NORMAL = "normal"
    DEPRECATED = "deprecated"


class FormatConstraint(BaseModel):
    """Value must match `regex`."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kind: Literal["format"] = "format"
    regex: str
    description: str = Field(default="", description="Human-readable requirement")
    rank: ConstraintRank = ConstraintRank.NORMAL


class ValueTypeConstraint(BaseModel):
    """Matched entities should be instances of one of `classes`."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kind: Literal["valueType"] = "valueType"
    classes: List[str] = Field(default_factory=list, description="Class entity ids, e.g. Q5")
    class_labels: Dict[str, str] = Field(default_factory=dict, alias="classLabels")
    rank: ConstraintRank = ConstraintRank.NORMAL


class OtherConstraint(BaseModel):
    """Unrecognized constraint type, kept for display only."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kind: Literal["other"] = "other"
    type: str = Field(..., description="Constraint type entity id")
    rank: ConstraintRank = ConstraintRank.NORMAL
    qualifiers: Dict[str, Any] = Field(default_factory=dict)


class PropertyConstraints(BaseModel):
    """Constraints of one property, split by constraint type."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    format: List[FormatConstraint] = Field(default_factory=list)
    value_type: List[ValueTypeConstraint] = Field(default_factory=list, alias="valueType")
    other: List[OtherConstraint] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "PropertyConstraints":
        return cls()

    def is_empty(self) -> bool:
        return not (self.format or self.value_type or self.other)

    def active_format(self) -> List[FormatConstraint]:
        return [c for c in self.format if c.rank != ConstraintRank.DEPRECATED]

    def value_type_classes(self) -> List[str]:
        """All class ids across value-type constraints, deduplicated, in order."""
        seen: List[str] = []
        for constraint in self.value_type:
            if constraint.rank == ConstraintRank.DEPRECATED:
                continue
            for class_id in constraint.classes:
                if class_id and class_id.startswith("Q") and class_id not in seen:
                    seen.append(class_id)
        return seen


class PropertyRecord(BaseModel):
    """A knowledge-base property.

    Identity is `id`. Records are immutable; constraint augmentation produces
    a new record through `with_constraints`.

    Attributes:
        id: Property id (e.g., "P31") or a metadata pseudo-property id ("label")
        datatype: Raw datatype (e.g., "wikibase-item", "time", "unknown")
        datatype_label: Human-readable datatype
        label: Property label
        description: Property description
        constraints: Parsed constraints, None until fetched
        constraints_fetched: Whether a constraint fetch was attempted
        constraints_error: Error message if the constraint fetch failed
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    datatype: str = "unknown"
    datatype_label: str = Field(default="Unknown", alias="datatypeLabel")
    label: str = ""
    description: str = ""
    constraints: Optional[PropertyConstraints] = None
    constraints_fetched: bool = Field(default=False, alias="constraintsFetched")
    constraints_error: Optional[str] = Field(default=None, alias="constraintsError")

    @classmethod
    def fallback(cls, property_id: str, description: str = "Property information not available") -> "PropertyRecord":
        """Minimal record used when remote metadata cannot be obtained."""
        return cls(
            id=property_id,
            datatype="unknown",
            datatype_label="Unknown",
            label=property_id,
            description=description,
        )

    @property
    def is_fallback(self) -> bool:
        return self.datatype == "unknown"

    def with_constraints(
        self,
        constraints: PropertyConstraints,
        error: Optional[str] = None,
    ) -> "PropertyRecord":
        return self.model_copy(update={
            "constraints": constraints,
            "constraints_fetched": True,
            "constraints_error": error,
        })


class ConstraintSummary(BaseModel):
    """Display-ready digest of a property's constraints."""
    has_constraints: bool = False
    datatype: Optional[str] = None
    value_types: List[str] = Field(default_factory=list)
    format_requirements: List[str] = Field(default_factory=list)
