"""Identifier detection.

Recognizes well-known identifier schemes in field values so that such
fields can be mapped straight to the matching external-id property.
"""

import re
from datetime import datetime
from typing import Any, Dict, Optional

from mapping_state.models import IdentifierInfo, KeyRecord, MappedKey
from property_cache.models import PropertyRecord

IDENTIFIER_PROPERTY_MAPPINGS: Dict[str, Dict[str, Any]] = {
    "ark": {
        "property_id": "P8091",
        "label": "Archival Resource Key",
        "description": "identifier for a digital or physical object, conforming to the ARK identifier scheme",
        "pattern": re.compile(r"ark:[\\/]?[0-9]+[\\/][0-9a-zA-Z._\-]+", re.IGNORECASE),
    },
    "viaf": {
        "property_id": "P214",
        "label": "VIAF ID",
        "description": "identifier for the Virtual International Authority File database",
        "pattern": re.compile(r"viaf\.org/viaf/(\d+)|^viaf:(\d+)", re.IGNORECASE),
    },
    "geonames": {
        "property_id": "P1566",
        "label": "GeoNames ID",
        "description": "identifier in the GeoNames geographical database",
        "pattern": re.compile(r"geonames\.org/(\d+)|^geonames:(\d+)", re.IGNORECASE),
    },
    "loc": {
        "property_id": "P244",
        "label": "Library of Congress authority ID",
        "description": (
            "Library of Congress name authority (persons, families, corporate bodies, "
            "events, places, works and expressions)"
        ),
        "pattern": re.compile(r"id\.loc\.gov/authorities/\w+/([a-z]+\d+)|^loc:([a-z]+\d+)", re.IGNORECASE),
    },
    "orcid": {
        "property_id": "P496",
        "label": "ORCID iD",
        "description": "identifier for a person or organization in the ORCID registry",
        "pattern": re.compile(
            r"orcid\.org/(\d{4}-\d{4}-\d{4}-\d{3}[0-9X])|^orcid:(\d{4}-\d{4}-\d{4}-\d{3}[0-9X])",
            re.IGNORECASE,
        ),
    },
    "doi": {
        "property_id": "P356",
        "label": "DOI",
        "description": "serial code used to uniquely identify digital objects",
        "pattern": re.compile(
            r"doi\.org/(10\.\d{4,}/[-._;()/:a-zA-Z0-9]+)|^doi:(10\.\d{4,}/[-._;()/:a-zA-Z0-9]+)",
            re.IGNORECASE,
        ),
    },
    "isbn": {
        "property_id": "P212",
        "label": "ISBN-13",
        "description": "13-digit International Standard Book Number",
        "pattern": re.compile(
            r"^(?:ISBN[-\s]?)?(?:97[89])[-\s]?\d{1,5}[-\s]?\d{1,7}[-\s]?\d{1,6}[-\s]?\d$",
            re.IGNORECASE,
        ),
    },
    "issn": {
        "property_id": "P236",
        "label": "ISSN",
        "description": "International Standard Serial Number",
        "pattern": re.compile(r"^(?:ISSN[-\s]?)?\d{4}[-\s]?\d{3}[\dX]$", re.IGNORECASE),
    },
    "isni": {
        "property_id": "P213",
        "label": "ISNI",
        "description": "International Standard Name Identifier",
        "pattern": re.compile(r"isni\.org/isni/(\d{15}[\dX])|^isni:(\d{15}[\dX])", re.IGNORECASE),
    },
    "handle": {
        "property_id": "P1184",
        "label": "Handle ID",
        "description": "identifier for an item in the Handle system",
        "pattern": re.compile(r"hdl\.handle\.net/(\d+/\S+)|^hdl:(\d+/\S+)", re.IGNORECASE),
    },
}

ISBN10_PATTERN = re.compile(r"^(?:ISBN[-\s]?)?(?:\d{9}[\dX])$", re.IGNORECASE)

DISPLAY_VALUE_LIMIT = 30


def extract_string_value(value: Any) -> Optional[str]:
    """Pull a string out of a plain string or a JSON-LD value object."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for field in ("@value", "o:label", "@id", "value"):
            if value.get(field):
                return str(value[field])
    return None


def _info(scheme: str, identifier_value: str, original: str, field_key: str, **extra: Any) -> IdentifierInfo:
    config = IDENTIFIER_PROPERTY_MAPPINGS[scheme]
    return IdentifierInfo(
        type=scheme,
        property_id=config["property_id"],
        label=config["label"],
        description=config["description"],
        identifier_value=identifier_value,
        original_value=original,
        field_key=field_key,
        **extra,
    )


def detect_identifier(value: Any, field_key: str) -> Optional[IdentifierInfo]:
    """Detect an identifier scheme in a field value.

    Args:
        value: Sample value (string or JSON-LD value object)
        field_key: Name of the source field

    Returns:
        IdentifierInfo for the first matching scheme, or None
    """
    string_value = extract_string_value(value)
    if not string_value:
        return None

    for scheme, config in IDENTIFIER_PROPERTY_MAPPINGS.items():
        match = config["pattern"].search(string_value)
        if match:
            groups = [g for g in match.groups() if g]
            identifier_value = groups[0] if groups else match.group(0)
            return _info(scheme, identifier_value, string_value, field_key)

    field_lower = (field_key or "").lower()
    if ("identifier" in field_lower or "ark" in field_lower) and "ark:" in string_value:
        return _info("ark", string_value, string_value, field_key, confidence=0.9)

    if ISBN10_PATTERN.match(re.sub(r"[-\s]", "", string_value)):
        return _info(
            "isbn",
            string_value,
            string_value,
            field_key,
            confidence=0.95,
            note="ISBN-10 detected, may need conversion to ISBN-13",
        )

    return None


def generate_mapping_id(key: str, property_id: str, selected_at_field: Optional[str] = None) -> str:
    """Stable id of a key-to-property mapping."""
    mapping_id = f"{key}::{property_id}"
    if selected_at_field:
        mapping_id += f"::{selected_at_field}"
    return mapping_id


def create_identifier_mapping(record: KeyRecord, info: IdentifierInfo) -> MappedKey:
    """Build an automatic mapping of a field to its identifier's external-id property."""
    display_value = extract_string_value(record.sample_value)
    if display_value and len(display_value) > DISPLAY_VALUE_LIMIT:
        display_value = display_value[:DISPLAY_VALUE_LIMIT] + "..."

    prop = PropertyRecord(
        id=info.property_id,
        label=info.label,
        description=info.description,
        datatype="external-id",
        datatype_label="External identifier",
    )
    fields = {name: getattr(record, name) for name in KeyRecord.model_fields}
    fields.update(
        property=prop,
        mapping_id=generate_mapping_id(record.key, prop.id, record.selected_at_field),
        mapped_at=datetime.utcnow().isoformat(),
        auto_mapped=True,
        identifier_type=info.type,
        display_name=f"{record.key} ({display_value or info.identifier_value})",
    )
    return MappedKey(**fields)
