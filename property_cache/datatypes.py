"""Datatype helpers for knowledge-base properties."""

from typing import Optional

DATATYPE_LABELS = {
    "wikibase-item": "Wikidata item",
    "time": "point in time",
    "monolingualtext": "monolingual text",
    "external-id": "external identifier",
    "string": "text string",
    "url": "URL",
    "quantity": "quantity",
    "globe-coordinate": "geographic coordinates",
    "commonsMedia": "Commons media file",
    "wikibase-property": "Wikidata property",
    "math": "mathematical expression",
    "geo-shape": "geographic shape",
    "musical-notation": "musical notation",
    "tabular-data": "tabular data",
    "wikibase-lexeme": "lexeme",
    "wikibase-form": "form",
    "wikibase-sense": "sense",
}

TEMPORAL_DATATYPES = frozenset({"time", "point in time"})


def format_datatype(datatype: Optional[str]) -> str:
    """Format a raw datatype as a user-friendly label."""
    if not datatype:
        return "Unknown"
    return DATATYPE_LABELS.get(datatype, datatype)


def is_temporal_datatype(datatype: Optional[str]) -> bool:
    return bool(datatype) and datatype in TEMPORAL_DATATYPES
