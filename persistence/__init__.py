"""Mapping persistence: versioned document serializer and JSON file I/O."""

from persistence.files import MappingFileRef, apply_loaded_state, load_mapping, save_mapping
from persistence.serializer import (
    CURRENT_VERSION,
    SUPPORTED_VERSIONS,
    dataset_keys_of,
    deserialize,
    is_custom_mapping,
    serialize,
)

__all__ = [
    "serialize",
    "deserialize",
    "dataset_keys_of",
    "is_custom_mapping",
    "save_mapping",
    "load_mapping",
    "apply_loaded_state",
    "MappingFileRef",
    "CURRENT_VERSION",
    "SUPPORTED_VERSIONS",
]
