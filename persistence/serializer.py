"""Mapping document serializer.

Produces and consumes versioned snapshots of the mapping configuration:

    {
      "version": "1.0",
      "createdAt": "<ISO timestamp>",
      "entitySchema": "",
      "mappings": {
        "mapped": [...],
        "ignored": [...],
        "manualProperties": [...]
      }
    }

Non-linked keys and the transient UI markers (notInCurrentDataset,
isNewlyMoved) are never written.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Type, TypeVar

from pydantic import ValidationError

from core.errors import FormatError
from core.observability.logging import get_logger
from mapping_state.machine import partition_is_valid
from mapping_state.models import IgnoredKey, KeyRecord, ManualProperty, MappedKey, MappingState

logger = get_logger(__name__)

R = TypeVar("R", bound=KeyRecord)

CURRENT_VERSION = "1.0"
SUPPORTED_VERSIONS = {"1.0"}

TRANSIENT_FIELDS = {"not_in_current_dataset", "is_newly_moved"}


def is_custom_mapping(record: KeyRecord) -> bool:
    """Custom mappings are not derived from a dataset field."""
    return record.key.startswith("custom_") or record.is_custom_property or record.type == "custom"


def dataset_keys_of(items: Iterable[Dict[str, Any]]) -> Set[str]:
    """All content keys of a dataset (JSON-LD "@" keys excluded)."""
    keys: Set[str] = set()
    for item in items:
        if isinstance(item, dict):
            keys.update(k for k in item if not k.startswith("@"))
    return keys


def _dump_key(record: KeyRecord) -> Dict[str, Any]:
    return record.model_dump(mode="json", by_alias=True, exclude=TRANSIENT_FIELDS)


def serialize(state: MappingState, created_at: Optional[datetime] = None) -> Dict[str, Any]:
    """Build the mapping document for a state."""
    return {
        "version": CURRENT_VERSION,
        "createdAt": (created_at or datetime.utcnow()).isoformat(),
        "entitySchema": state.entity_schema or "",
        "mappings": {
            "mapped": [_dump_key(record) for record in state.mapped],
            "ignored": [_dump_key(record) for record in state.ignored],
            "manualProperties": [
                manual.model_dump(mode="json", by_alias=True) for manual in state.manual_properties
            ],
        },
    }


def _entries(mappings: Dict[str, Any], name: str, source: Optional[str]) -> List[Any]:
    entries = mappings.get(name, [])
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise FormatError(f"Invalid mapping file format: 'mappings.{name}' must be a list", source)
    return entries


def _restore_keys(
    entries: List[Any],
    model: Type[R],
    dataset_keys: Set[str],
    name: str,
    source: Optional[str],
) -> List[R]:
    records = []
    for index, entry in enumerate(entries):
        try:
            record = model.model_validate(entry)
        except ValidationError as e:
            raise FormatError(
                f"Invalid mapping file format: entry {index} of 'mappings.{name}' is malformed: {e}",
                source,
            ) from e
        # Custom mappings are exempt from the dataset presence check
        missing = not is_custom_mapping(record) and record.key not in dataset_keys
        records.append(record.model_copy(update={
            "not_in_current_dataset": missing,
            "is_newly_moved": False,
        }))
    return records


def deserialize(
    document: Any,
    dataset_keys: Iterable[str],
    source: Optional[str] = None,
) -> MappingState:
    """Restore the mapped, ignored and manual-property content of a document.

    The returned state has no non-linked keys; classifying the current
    dataset into it re-creates them.

    Args:
        document: Parsed mapping document
        dataset_keys: Keys of the currently loaded dataset
        source: Name of the document, used in error messages

    Returns:
        MappingState with mapped keys flagged when absent from the dataset

    Raises:
        FormatError: If the document is missing version or mappings, has an
            unsupported version, or contains malformed entries
    """
    if not isinstance(document, dict):
        raise FormatError("Invalid mapping file format: expected a JSON object", source)
    if "version" not in document or "mappings" not in document:
        raise FormatError("Invalid mapping file format: missing version or mappings", source)

    version = str(document["version"])
    if version not in SUPPORTED_VERSIONS:
        raise FormatError(
            f"Unsupported mapping file version {version!r}; supported: {', '.join(sorted(SUPPORTED_VERSIONS))}",
            source,
        )

    mappings = document["mappings"]
    if not isinstance(mappings, dict):
        raise FormatError("Invalid mapping file format: 'mappings' must be an object", source)

    keys = set(dataset_keys)
    mapped = _restore_keys(_entries(mappings, "mapped", source), MappedKey, keys, "mapped", source)
    ignored = _restore_keys(_entries(mappings, "ignored", source), IgnoredKey, keys, "ignored", source)

    manual_properties = []
    for index, entry in enumerate(_entries(mappings, "manualProperties", source)):
        try:
            manual_properties.append(ManualProperty.model_validate(entry))
        except ValidationError as e:
            raise FormatError(
                f"Invalid mapping file format: entry {index} of 'mappings.manualProperties' is malformed: {e}",
                source,
            ) from e

    state = MappingState(
        entity_schema=document.get("entitySchema") or "",
        mapped=mapped,
        ignored=ignored,
        manual_properties=manual_properties,
    )
    if not partition_is_valid(state):
        raise FormatError(
            "Invalid mapping file format: a key is listed twice or a manual property is duplicated",
            source,
        )

    missing = [record.key for record in mapped if record.not_in_current_dataset]
    if missing:
        logger.warning(
            f"{len(missing)} mapped key(s) are not in the current dataset",
            extra_fields={"keys": missing},
        )
    return state
