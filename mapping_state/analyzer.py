"""Dataset key analysis.

Turns raw JSON-LD records into KeyRecords: how often each field occurs, a
sample value, the field's linked-data URI and any detected identifier scheme.
"""

from collections import OrderedDict
from typing import Any, Dict, List, Optional

from core.observability.logging import get_logger
from mapping_state.identifiers import detect_identifier
from mapping_state.models import KeyRecord

logger = get_logger(__name__)

# Vocabularies commonly used without a declared @context.
# dcterms precedes dc so that "dctermsTitle" is not read as dc + "termsTitle".
COMMON_PREFIXES = OrderedDict([
    ("schema", "https://schema.org/"),
    ("dcterms", "http://purl.org/dc/terms/"),
    ("dc", "http://purl.org/dc/terms/"),
    ("foaf", "http://xmlns.com/foaf/0.1/"),
    ("skos", "http://www.w3.org/2004/02/skos/core#"),
])


def normalize_items(data: Any) -> List[Dict[str, Any]]:
    """Accept a list of items, {"items": [...]} or a single item."""
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if isinstance(data, dict):
        if isinstance(data.get("items"), list):
            return [item for item in data["items"] if isinstance(item, dict)]
        return [data]
    return []


def extract_context(items: List[Dict[str, Any]]) -> "OrderedDict[str, str]":
    """Prefix to URI map from the first item's inline @context."""
    context_map: "OrderedDict[str, str]" = OrderedDict()
    if not items:
        return context_map
    context = items[0].get("@context")
    if isinstance(context, dict):
        for prefix, uri in context.items():
            if isinstance(uri, str):
                context_map[prefix] = uri
    elif isinstance(context, str):
        logger.info(f"Remote @context {context} is not fetched; prefixes resolve from common vocabularies only")
    return context_map


def extract_sample_value(value: Any) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def json_type(value: Any) -> str:
    """JSON type name of a sample value."""
    if isinstance(value, list):
        return "array"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"


def resolve_linked_data_uri(key: str, context_map: Dict[str, str]) -> Optional[str]:
    """Expand a field name to a full URI using the context or common vocabularies."""
    if ":" in key:
        prefix, local_name = key.split(":")[:2]
        base_uri = context_map.get(prefix)
        if not base_uri:
            return None
        if base_uri.endswith("/") or base_uri.endswith("#"):
            return base_uri + local_name
        return f"{base_uri}/{local_name}"

    for prefix, uri in COMMON_PREFIXES.items():
        if key.lower().startswith(prefix):
            return uri + key[len(prefix):]

    default_namespace = context_map.get("")
    if default_namespace:
        return default_namespace + key
    return None


def analyze_keys(data: Any) -> List[KeyRecord]:
    """Analyze every content field of a dataset.

    Keys starting with "@" are JSON-LD structure and are skipped.

    Args:
        data: List of items, {"items": [...]} wrapper, or a single item

    Returns:
        KeyRecords sorted by frequency, most frequent first
    """
    items = normalize_items(data)
    context_map = extract_context(items)

    frequency: "OrderedDict[str, int]" = OrderedDict()
    for item in items:
        for key in item:
            if key.startswith("@"):
                continue
            frequency[key] = frequency.get(key, 0) + 1

    records = []
    for key, count in frequency.items():
        sample_value = next((extract_sample_value(item[key]) for item in items if key in item), None)
        identifier = detect_identifier(sample_value, key)
        records.append(KeyRecord(
            key=key,
            type=json_type(sample_value),
            frequency=count,
            total_items=len(items),
            sample_value=sample_value,
            linked_data_uri=resolve_linked_data_uri(key, context_map),
            context_map=OrderedDict(context_map),
            has_identifier=identifier is not None,
            identifier_info=identifier,
        ))

    records.sort(key=lambda record: -record.frequency)
    logger.info(f"Analyzed {len(records)} key(s) across {len(items)} item(s)")
    return records
