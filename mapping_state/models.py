"""Mapping State Data Models.

This module defines the Pydantic models for field classification:
- KeyRecord: Usage analysis of one source field across the dataset
- MappedKey: A field linked to a knowledge-base property
- IgnoredKey: A field excluded from the output
- ManualProperty: A property attached to every output record without a source field
- MappingState: The non-linked / mapped / ignored partition plus manual properties

Field aliases follow the camelCase names used in persisted mapping documents.
"""

import typing
from collections import OrderedDict
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from property_cache.models import PropertyRecord


class Category(str, Enum):
    """Mutually exclusive field categories."""
    NON_LINKED = "non-linked"
    MAPPED = "mapped"
    IGNORED = "ignored"


class IdentifierInfo(BaseModel):
    """An identifier scheme detected in a field's sample value.

    Attributes:
        type: Scheme name (e.g., "viaf", "orcid", "isbn")
        property_id: External-id property for the scheme (e.g., "P214")
        label: Property label
        description: Property description
        identifier_value: The identifier without URL parts
        original_value: The string the identifier was found in
        field_key: Source field name
        confidence: 1.0 for pattern matches, lower for hints
        note: Optional remark (e.g., ISBN-10 needing conversion)
    """
    model_config = ConfigDict(populate_by_name=True)

    type: str
    property_id: str = Field(..., alias="propertyId")
    label: str
    description: str = ""
    identifier_value: str = Field(..., alias="identifierValue")
    original_value: str = Field(..., alias="originalValue")
    field_key: str = Field(default="", alias="fieldKey")
    confidence: float = 1.0
    note: Optional[str] = None


class KeyRecord(BaseModel):
    """Analysis of a source field's usage across the dataset.

    `not_in_current_dataset` and `is_newly_moved` are transient markers and
    are never persisted.
    """
    model_config = ConfigDict(populate_by_name=True)

    key: str
    type: str = Field(default="string", description="JSON type of the sample value, or 'custom'")
    frequency: int = 0
    total_items: int = Field(default=0, alias="totalItems")
    sample_value: Any = Field(default=None, alias="sampleValue")
    linked_data_uri: Optional[str] = Field(default=None, alias="linkedDataUri")
    context_map: typing.OrderedDict[str, str] = Field(default_factory=OrderedDict, alias="contextMap")
    has_identifier: bool = Field(default=False, alias="hasIdentifier")
    identifier_info: Optional[IdentifierInfo] = Field(default=None, alias="identifierInfo")
    selected_at_field: Optional[str] = Field(default=None, alias="selectedAtField")
    is_custom_property: bool = Field(default=False, alias="isCustomProperty")

    # Transient UI markers
    not_in_current_dataset: bool = Field(default=False, alias="notInCurrentDataset")
    is_newly_moved: bool = Field(default=False, alias="isNewlyMoved")


class IgnoredKey(KeyRecord):
    """A field excluded from the output."""


class MappedKey(KeyRecord):
    """A field linked to a knowledge-base property."""
    property: PropertyRecord
    mapping_id: str = Field(default="", alias="mappingId")
    mapped_at: Optional[str] = Field(default=None, alias="mappedAt", description="ISO timestamp")
    auto_mapped: bool = Field(default=False, alias="autoMapped")
    identifier_type: Optional[str] = Field(default=None, alias="identifierType")
    display_name: Optional[str] = Field(default=None, alias="displayName")


class ManualProperty(BaseModel):
    """A property attached to output records without a source field.

    Unique by `property.id` within a MappingState.
    """
    model_config = ConfigDict(populate_by_name=True)

    property: PropertyRecord
    default_value: str = Field(default="", alias="defaultValue")
    is_required: bool = Field(default=False, alias="isRequired")
    is_metadata: bool = Field(default=False, alias="isMetadata")
    cannot_remove: bool = Field(default=False, alias="cannotRemove")
    added_at: Optional[str] = Field(default=None, alias="addedAt", description="ISO timestamp")


class MappingState(BaseModel):
    """Partition of source fields plus the manual-property set.

    Every known key is in exactly one of non_linked, mapped, ignored.
    """
    entity_schema: str = ""
    non_linked: List[KeyRecord] = Field(default_factory=list)
    mapped: List[MappedKey] = Field(default_factory=list)
    ignored: List[IgnoredKey] = Field(default_factory=list)
    manual_properties: List[ManualProperty] = Field(default_factory=list)

    def category_lists(self) -> Dict[Category, List[KeyRecord]]:
        return {
            Category.NON_LINKED: self.non_linked,
            Category.MAPPED: self.mapped,
            Category.IGNORED: self.ignored,
        }

    def category_of(self, key: str) -> Optional[Category]:
        for category, records in self.category_lists().items():
            if any(record.key == key for record in records):
                return category
        return None

    def find(self, key: str) -> Optional[KeyRecord]:
        for records in self.category_lists().values():
            for record in records:
                if record.key == key:
                    return record
        return None

    def all_keys(self) -> List[str]:
        return [record.key for records in self.category_lists().values() for record in records]

    def manual_property(self, property_id: str) -> Optional[ManualProperty]:
        return next((m for m in self.manual_properties if m.property.id == property_id), None)

    def counts(self) -> Dict[str, int]:
        return {
            Category.NON_LINKED.value: len(self.non_linked),
            Category.MAPPED.value: len(self.mapped),
            Category.IGNORED.value: len(self.ignored),
            "manual": len(self.manual_properties),
        }
