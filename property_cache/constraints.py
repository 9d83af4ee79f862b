"""Property constraint parsing.

Turns raw constraint statements (P2302 claims) into the tagged constraint
models. Recognized constraint types:
- Q21502404 format constraint: regex in P1793, clarification in P2916
- Q21503250 value-type constraint: classes in P2308
Anything else lands in the `other` bucket untouched.
"""

from typing import Any, Dict, List, Optional

from connectors.wikidata.wd_models import WDClaim, WDSnak
from property_cache.models import (
    ConstraintRank,
    ConstraintSummary,
    FormatConstraint,
    OtherConstraint,
    PropertyConstraints,
    PropertyRecord,
    ValueTypeConstraint,
)

PROPERTY_CONSTRAINT_PID = "P2302"
FORMAT_CONSTRAINT_QID = 21502404
VALUE_TYPE_CONSTRAINT_QID = 21503250

REGEX_QUALIFIER = "P1793"
SYNTAX_CLARIFICATION_QUALIFIER = "P2916"
CLASS_QUALIFIER = "P2308"

DEFAULT_FORMAT_DESCRIPTION = "Format must match pattern"


def humanize_regex_description(regex: str, clarification: Optional[str] = None) -> str:
    """Describe a format regex in plain words.

    A few well-known patterns are recognized. Otherwise the remote
    clarification text is used, and failing that a generic message.
    """
    if "<br" in regex and "<p>" in regex and "<i>" in regex:
        return "Must not contain HTML tags like <br>, <i>, <em>, <p>"
    if regex == r"[1-9]\d*|":
        return "Must be a positive integer"
    if "http" in regex:
        return "Must be a valid URL"
    if clarification and clarification != DEFAULT_FORMAT_DESCRIPTION:
        return clarification
    return f"Must match pattern: {regex}"


def _parse_rank(rank: str) -> ConstraintRank:
    try:
        return ConstraintRank(rank)
    except ValueError:
        return ConstraintRank.NORMAL


def _clarification_text(snaks: List[WDSnak], language: str) -> Optional[str]:
    fallback = None
    for snak in snaks:
        value = snak.datavalue.value if snak.datavalue else None
        if not isinstance(value, dict) or not value.get("text"):
            continue
        if value.get("language") == language:
            return value["text"]
        fallback = fallback or value["text"]
    return fallback


def _raw_qualifiers(qualifiers: Dict[str, List[WDSnak]]) -> Dict[str, Any]:
    return {
        pid: [snak.datavalue.value for snak in snaks if snak.datavalue is not None]
        for pid, snaks in qualifiers.items()
    }


def parse_constraint_claims(claims: List[WDClaim], language: str = "en") -> PropertyConstraints:
    """Classify constraint claims by constraint type.

    Deprecated claims are skipped. Value-type constraints are returned with
    empty `class_labels`; use `attach_class_labels` once labels are known.
    """
    format_constraints: List[FormatConstraint] = []
    value_type_constraints: List[ValueTypeConstraint] = []
    other_constraints: List[OtherConstraint] = []

    for claim in claims:
        rank = _parse_rank(claim.rank)
        if rank == ConstraintRank.DEPRECATED or claim.mainsnak is None:
            continue

        type_id = claim.mainsnak.entity_numeric_id()
        if type_id is None:
            continue

        if type_id == FORMAT_CONSTRAINT_QID:
            regex = next(
                (s.string_value() for s in claim.qualifiers.get(REGEX_QUALIFIER, []) if s.string_value()),
                None,
            )
            if not regex:
                continue
            clarification = _clarification_text(
                claim.qualifiers.get(SYNTAX_CLARIFICATION_QUALIFIER, []), language
            )
            format_constraints.append(FormatConstraint(
                regex=regex,
                description=humanize_regex_description(regex, clarification),
                rank=rank,
            ))

        elif type_id == VALUE_TYPE_CONSTRAINT_QID:
            classes = []
            for snak in claim.qualifiers.get(CLASS_QUALIFIER, []):
                numeric_id = snak.entity_numeric_id()
                if numeric_id is not None:
                    classes.append(f"Q{numeric_id}")
            if classes:
                value_type_constraints.append(ValueTypeConstraint(classes=classes, rank=rank))

        else:
            other_constraints.append(OtherConstraint(
                type=f"Q{type_id}",
                rank=rank,
                qualifiers=_raw_qualifiers(claim.qualifiers),
            ))

    return PropertyConstraints(
        format=format_constraints,
        value_type=value_type_constraints,
        other=other_constraints,
    )


def referenced_classes(constraints: PropertyConstraints) -> List[str]:
    """Class ids referenced by value-type constraints, in first-seen order."""
    classes: List[str] = []
    for constraint in constraints.value_type:
        for class_id in constraint.classes:
            if class_id not in classes:
                classes.append(class_id)
    return classes


def attach_class_labels(constraints: PropertyConstraints, labels: Dict[str, str]) -> PropertyConstraints:
    value_type = [
        c.model_copy(update={"class_labels": {cid: labels.get(cid, cid) for cid in c.classes}})
        for c in constraints.value_type
    ]
    return constraints.model_copy(update={"value_type": value_type})


def has_usable_constraints(record: Optional[PropertyRecord]) -> bool:
    """True if the record carries format or value-type constraints."""
    if record is None or record.constraints is None:
        return False
    return bool(record.constraints.format or record.constraints.value_type)


def get_constraint_summary(record: Optional[PropertyRecord]) -> ConstraintSummary:
    """Summarize datatype, accepted classes and format requirements."""
    if record is None:
        return ConstraintSummary()

    summary = ConstraintSummary(datatype=record.datatype_label or record.datatype or None)
    constraints = record.constraints
    if constraints is None:
        return summary

    summary.has_constraints = True
    for constraint in constraints.value_type:
        if constraint.class_labels:
            summary.value_types.extend(constraint.class_labels.values())
        else:
            summary.value_types.extend(constraint.classes)
    for constraint in constraints.active_format():
        if constraint.description:
            summary.format_requirements.append(constraint.description)

    summary.value_types = list(dict.fromkeys(summary.value_types))
    summary.format_requirements = list(dict.fromkeys(summary.format_requirements))
    return summary
