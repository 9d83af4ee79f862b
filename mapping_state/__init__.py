"""Mapping Classification State Machine Module.

Partitions dataset fields into non-linked, mapped and ignored categories,
auto-maps identifier fields and injects required properties.
"""

from mapping_state.analyzer import analyze_keys, normalize_items, resolve_linked_data_uri
from mapping_state.identifiers import (
    IDENTIFIER_PROPERTY_MAPPINGS,
    create_identifier_mapping,
    detect_identifier,
    generate_mapping_id,
)
from mapping_state.machine import (
    INSTANCE_OF_FALLBACK,
    METADATA_FIELDS,
    MappingStateMachine,
    add_custom_mapping,
    add_manual_property,
    auto_inject_metadata_fields,
    auto_inject_required_type_property,
    classify,
    map_key_to_property,
    move_key,
    partition_is_valid,
    remove_manual_property,
    should_ignore_key,
)
from mapping_state.models import (
    Category,
    IdentifierInfo,
    IgnoredKey,
    KeyRecord,
    ManualProperty,
    MappedKey,
    MappingState,
)

__all__ = [
    # State container
    "MappingStateMachine",
    # Models
    "Category",
    "IdentifierInfo",
    "IgnoredKey",
    "KeyRecord",
    "ManualProperty",
    "MappedKey",
    "MappingState",
    # Analysis
    "analyze_keys",
    "normalize_items",
    "resolve_linked_data_uri",
    "detect_identifier",
    "create_identifier_mapping",
    "generate_mapping_id",
    "IDENTIFIER_PROPERTY_MAPPINGS",
    # Transitions
    "classify",
    "should_ignore_key",
    "move_key",
    "map_key_to_property",
    "add_custom_mapping",
    "add_manual_property",
    "remove_manual_property",
    "auto_inject_metadata_fields",
    "auto_inject_required_type_property",
    "partition_is_valid",
    "INSTANCE_OF_FALLBACK",
    "METADATA_FIELDS",
]
