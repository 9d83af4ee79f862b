"""Mapping Classification State Machine.

Keeps every source field in exactly one of three categories (non-linked,
mapped, ignored) plus a key-less set of manual properties.

Transitions are plain functions from MappingState to a new MappingState:
the caller's state is never modified in place, so a partially applied move
can never be observed. MappingStateMachine holds the current state and
serializes transitions with an asyncio.Lock.
"""

import asyncio
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Type, TypeVar, Union

from core.config import get_settings
from core.errors import FormatError, NotFoundError, TransportError
from core.observability.logging import get_logger, with_correlation
from mapping_state.identifiers import create_identifier_mapping, generate_mapping_id
from mapping_state.models import (
    Category,
    IgnoredKey,
    KeyRecord,
    ManualProperty,
    MappedKey,
    MappingState,
)
from property_cache.cache import PropertyKnowledgeCache
from property_cache.models import PropertyRecord

logger = get_logger(__name__)

R = TypeVar("R", bound=KeyRecord)

INSTANCE_OF = "P31"
SUBCLASS_OF = "P279"
TYPE_PROPERTY_IDS = (INSTANCE_OF, SUBCLASS_OF)

INSTANCE_OF_FALLBACK = PropertyRecord(
    id=INSTANCE_OF,
    label="instance of",
    description="that class of which this subject is a particular example and member",
    datatype="wikibase-item",
    datatype_label="Item",
)

METADATA_FIELDS = [
    PropertyRecord(
        id="label",
        label="label",
        description="Human-readable name of the item",
        datatype="monolingualtext",
        datatype_label="Monolingual text",
    ),
    PropertyRecord(
        id="description",
        label="description",
        description="Short description of the item",
        datatype="monolingualtext",
        datatype_label="Monolingual text",
    ),
    PropertyRecord(
        id="aliases",
        label="aliases",
        description="Alternative names for the item",
        datatype="monolingualtext",
        datatype_label="Monolingual text",
    ),
]

CATEGORY_TYPES: Dict[Category, Type[KeyRecord]] = {
    Category.NON_LINKED: KeyRecord,
    Category.MAPPED: MappedKey,
    Category.IGNORED: IgnoredKey,
}


def _now() -> str:
    return datetime.utcnow().isoformat()


def _convert(record: KeyRecord, target: Type[R], **updates) -> R:
    """Re-type a key record for another category, keeping shared fields."""
    source_fields = type(record).model_fields
    fields = {name: getattr(record, name) for name in target.model_fields if name in source_fields}
    fields.update(updates)
    return target(**fields)


def _clear_moved(records: Iterable[R]) -> List[R]:
    return [r.model_copy(update={"is_newly_moved": False}) if r.is_newly_moved else r for r in records]


# =============================================================================
# Classification
# =============================================================================

def should_ignore_key(key: str, ignore_patterns: Sequence[str]) -> bool:
    """A pattern ending in ':' matches as a prefix, any other pattern exactly."""
    for pattern in ignore_patterns:
        if pattern.endswith(":"):
            if key.startswith(pattern):
                return True
        elif key == pattern:
            return True
    return False


def classify(
    keys: Sequence[KeyRecord],
    ignore_patterns: Sequence[str],
    existing: Optional[MappingState] = None,
) -> MappingState:
    """Assign every analyzed key a category.

    Keys already mapped or ignored in `existing` keep their category and
    only have their usage statistics refreshed. New keys matching an ignore
    pattern are ignored; new keys with a detected identifier are mapped to
    that identifier's external-id property; the rest are non-linked.

    Args:
        keys: KeyRecords from dataset analysis
        ignore_patterns: Patterns for automatic ignoring
        existing: State to classify into (e.g., after loading a saved mapping)

    Returns:
        New MappingState
    """
    existing = existing or MappingState()

    analyzed: Dict[str, KeyRecord] = {}
    for record in keys:
        analyzed.setdefault(record.key, record)

    def refresh(record: R) -> R:
        fresh = analyzed.get(record.key)
        if fresh is None:
            return record
        return record.model_copy(update={
            "frequency": fresh.frequency,
            "total_items": fresh.total_items,
            "sample_value": fresh.sample_value,
            "not_in_current_dataset": False,
        })

    mapped = [refresh(r) for r in existing.mapped]
    ignored = [refresh(r) for r in existing.ignored]
    processed = {r.key for r in mapped} | {r.key for r in ignored}
    non_linked = [r for r in existing.non_linked if r.key not in analyzed and r.key not in processed]

    auto_mapped = []
    for key, record in analyzed.items():
        if key in processed:
            continue
        if should_ignore_key(key, ignore_patterns):
            ignored.append(_convert(record, IgnoredKey))
        elif record.has_identifier and record.identifier_info is not None:
            mapped_key = create_identifier_mapping(record, record.identifier_info)
            mapped.append(mapped_key)
            auto_mapped.append(mapped_key)
        else:
            non_linked.append(record)

    if auto_mapped:
        identifier_types = sorted({m.identifier_type for m in auto_mapped if m.identifier_type})
        logger.info(
            f"Auto-mapped {len(auto_mapped)} identifier field(s): {', '.join(identifier_types)}",
            extra_fields={"keys": [m.key for m in auto_mapped]},
        )

    return existing.model_copy(update={"non_linked": non_linked, "mapped": mapped, "ignored": ignored})


# =============================================================================
# Key transitions
# =============================================================================

def move_key(state: MappingState, record: Union[str, KeyRecord], target: Category) -> MappingState:
    """Move a key into `target`, removing it from whichever category holds it.

    The moved record is marked as newly moved; the marker is cleared on all
    other records.

    Args:
        state: Current state (not modified)
        record: Key name, or the record to place in `target`
        target: Destination category

    Returns:
        New MappingState

    Raises:
        KeyError: If `record` is a key name unknown to the state
        ValueError: If moving to MAPPED without a property mapping
    """
    if isinstance(record, str):
        found = state.find(record)
        if found is None:
            raise KeyError(f"Unknown key {record!r}")
        record = found

    target_type = CATEGORY_TYPES[target]
    if target is Category.MAPPED and not isinstance(record, MappedKey):
        raise ValueError(f"Key {record.key!r} has no property mapping; use map_key_to_property")

    moved = _convert(record, target_type, is_newly_moved=True)
    lists = {
        category: _clear_moved(r for r in records if r.key != moved.key)
        for category, records in state.category_lists().items()
    }
    lists[target].append(moved)

    return state.model_copy(update={
        "non_linked": lists[Category.NON_LINKED],
        "mapped": lists[Category.MAPPED],
        "ignored": lists[Category.IGNORED],
    })


def map_key_to_property(
    state: MappingState,
    record: Union[str, KeyRecord],
    prop: PropertyRecord,
    selected_at_field: Optional[str] = None,
) -> MappingState:
    """Link a key to a property and move it to the mapped category."""
    if isinstance(record, str):
        found = state.find(record)
        if found is None:
            raise KeyError(f"Unknown key {record!r}")
        record = found

    selected_at_field = selected_at_field or record.selected_at_field
    mapped = _convert(
        record,
        MappedKey,
        property=prop,
        selected_at_field=selected_at_field,
        mapping_id=generate_mapping_id(record.key, prop.id, selected_at_field),
        mapped_at=_now(),
    )
    return move_key(state, mapped, Category.MAPPED)


def add_custom_mapping(state: MappingState, prop: PropertyRecord, key: Optional[str] = None) -> MappingState:
    """Map a property that has no source field (key "custom_<pid>" by default)."""
    record = KeyRecord(
        key=key or f"custom_{prop.id}",
        type="custom",
        frequency=1,
        total_items=1,
        is_custom_property=True,
    )
    return map_key_to_property(state, record, prop)


# =============================================================================
# Manual properties
# =============================================================================

def add_manual_property(state: MappingState, manual: ManualProperty) -> MappingState:
    """Add a manual property, replacing any with the same property id."""
    if manual.added_at is None:
        manual = manual.model_copy(update={"added_at": _now()})
    manual_properties = [m for m in state.manual_properties if m.property.id != manual.property.id]
    manual_properties.append(manual)
    return state.model_copy(update={"manual_properties": manual_properties})


def remove_manual_property(state: MappingState, property_id: str) -> MappingState:
    """Remove a manual property unless it is marked non-removable."""
    existing = state.manual_property(property_id)
    if existing is None:
        return state
    if existing.cannot_remove:
        logger.warning(f"Manual property {property_id} cannot be removed")
        return state
    return state.model_copy(update={
        "manual_properties": [m for m in state.manual_properties if m.property.id != property_id],
    })


def auto_inject_metadata_fields(state: MappingState) -> MappingState:
    """Ensure label, description and aliases exist once as non-removable manual properties."""
    for field in METADATA_FIELDS:
        if any(m.property.id == field.id and m.is_metadata for m in state.manual_properties):
            continue
        state = add_manual_property(state, ManualProperty(
            property=field,
            default_value="",
            is_required=False,
            is_metadata=True,
            cannot_remove=True,
        ))
    return state


def has_type_property(state: MappingState) -> bool:
    """Whether "instance of" or "subclass of" is mapped or manual."""
    if any(m.property.id in TYPE_PROPERTY_IDS for m in state.mapped):
        return True
    return any(m.property.id in TYPE_PROPERTY_IDS for m in state.manual_properties)


async def auto_inject_required_type_property(
    state: MappingState,
    cache: Optional[PropertyKnowledgeCache] = None,
) -> MappingState:
    """Ensure "instance of" is present, injecting it as a required manual property.

    Without a cache, or when the fetch fails, a minimal local record is
    injected so the requirement is never dropped.
    """
    if has_type_property(state):
        return state

    record = INSTANCE_OF_FALLBACK
    if cache is not None:
        try:
            record = await cache.get_complete_property_data(INSTANCE_OF)
        except (NotFoundError, TransportError, FormatError) as e:
            logger.warning(f"Could not fetch {INSTANCE_OF}, injecting fallback record: {e}")
    else:
        logger.info(f"No property cache available, injecting fallback {INSTANCE_OF} record")

    # A re-check after the fetch keeps the injection single
    if has_type_property(state):
        return state

    logger.info(f"Added required property: instance of ({INSTANCE_OF})")
    return add_manual_property(state, ManualProperty(
        property=record,
        default_value="",
        is_required=True,
        cannot_remove=True,
    ))


# =============================================================================
# Invariants
# =============================================================================

def partition_is_valid(state: MappingState, keys: Optional[Iterable[str]] = None) -> bool:
    """Check that no key is in two categories and manual property ids are unique.

    With `keys`, also check that each of them is in some category.
    """
    all_keys = state.all_keys()
    if len(all_keys) != len(set(all_keys)):
        return False
    manual_ids = [m.property.id for m in state.manual_properties]
    if len(manual_ids) != len(set(manual_ids)):
        return False
    if keys is not None:
        return set(keys) <= set(all_keys)
    return True


# =============================================================================
# State container
# =============================================================================

class MappingStateMachine:
    """Holds the mapping state and applies transitions one at a time.

    Example:
        machine = MappingStateMachine(cache=cache)
        await machine.load_keys(analyze_keys(items))
        await machine.map_key_to_property("dcterms:creator", creator_property)
        await machine.ensure_required_properties()
    """

    def __init__(
        self,
        cache: Optional[PropertyKnowledgeCache] = None,
        ignore_patterns: Optional[Sequence[str]] = None,
        state: Optional[MappingState] = None,
    ):
        self.cache = cache
        if ignore_patterns is None:
            ignore_patterns = get_settings().ignore_key_patterns
        self.ignore_patterns = list(ignore_patterns)
        self._state = state or MappingState()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> MappingState:
        return self._state

    def snapshot(self) -> MappingState:
        return self._state.model_copy(deep=True)

    async def load_keys(self, keys: Sequence[KeyRecord]) -> MappingState:
        """Classify analyzed keys, keeping existing mapped and ignored keys."""
        async with self._lock:
            with with_correlation(stage="classify"):
                self._state = classify(keys, self.ignore_patterns, self._state)
                logger.info("Classified dataset keys", extra_fields=self._state.counts())
            return self._state

    async def move_key(self, key: Union[str, KeyRecord], target: Category) -> MappingState:
        async with self._lock:
            name = key if isinstance(key, str) else key.key
            with with_correlation(stage="move_key", source_key=name):
                self._state = move_key(self._state, key, target)
                logger.debug(f"Moved {name} to {target.value}")
            return self._state

    async def ignore_key(self, key: str) -> MappingState:
        return await self.move_key(key, Category.IGNORED)

    async def unlink_key(self, key: str) -> MappingState:
        return await self.move_key(key, Category.NON_LINKED)

    async def map_key_to_property(
        self,
        key: Union[str, KeyRecord],
        prop: PropertyRecord,
        selected_at_field: Optional[str] = None,
    ) -> MappingState:
        async with self._lock:
            name = key if isinstance(key, str) else key.key
            with with_correlation(stage="map_key", source_key=name, property_id=prop.id):
                self._state = map_key_to_property(self._state, key, prop, selected_at_field)
                logger.info(f"Mapped {name} to {prop.id} ({prop.label})")
            return self._state

    async def add_custom_mapping(self, prop: PropertyRecord, key: Optional[str] = None) -> MappingState:
        async with self._lock:
            self._state = add_custom_mapping(self._state, prop, key)
            return self._state

    async def add_manual_property(self, manual: ManualProperty) -> MappingState:
        async with self._lock:
            self._state = add_manual_property(self._state, manual)
            return self._state

    async def remove_manual_property(self, property_id: str) -> bool:
        """Returns whether the property was removed."""
        async with self._lock:
            before = len(self._state.manual_properties)
            self._state = remove_manual_property(self._state, property_id)
            return len(self._state.manual_properties) < before

    async def set_entity_schema(self, entity_schema: str) -> None:
        async with self._lock:
            self._state = self._state.model_copy(update={"entity_schema": entity_schema})

    async def ensure_required_properties(self) -> MappingState:
        """Inject the metadata fields and the "instance of" requirement."""
        async with self._lock:
            with with_correlation(stage="inject"):
                state = auto_inject_metadata_fields(self._state)
                self._state = await auto_inject_required_type_property(state, self.cache)
            return self._state

    async def install(self, state: MappingState) -> MappingState:
        """Replace the whole state, e.g. with one restored from a saved document."""
        if not partition_is_valid(state):
            raise ValueError("State has a key in more than one category or duplicate manual properties")
        async with self._lock:
            self._state = state
            return self._state
