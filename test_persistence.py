"""
Mapping Persistence Tests

Validates:
1. A saved mapping restores to the same mapped, ignored and manual content
2. Mapped keys absent from the current dataset are flagged, custom ones never
3. Malformed documents and files fail with FormatError naming the source
4. A restored mapping merges with the current dataset's keys
"""

import asyncio
import hashlib
import json
from collections import OrderedDict
from datetime import datetime

import pytest

from core.errors import FormatError
from mapping_state import (
    Category,
    KeyRecord,
    ManualProperty,
    MappedKey,
    MappingState,
    MappingStateMachine,
    add_custom_mapping,
    analyze_keys,
    auto_inject_metadata_fields,
    auto_inject_required_type_property,
    classify,
    map_key_to_property,
    move_key,
)
from persistence import (
    CURRENT_VERSION,
    apply_loaded_state,
    dataset_keys_of,
    deserialize,
    is_custom_mapping,
    load_mapping,
    save_mapping,
    serialize,
)
from persistence.serializer import TRANSIENT_FIELDS
from property_cache import PropertyRecord

AUTHOR = PropertyRecord(id="P50", datatype="wikibase-item", datatype_label="Wikidata item", label="author")
PUBLISHER = PropertyRecord(id="P123", datatype="wikibase-item", datatype_label="Wikidata item", label="publisher")

ITEMS = [
    {
        "@context": {"dcterms": "http://purl.org/dc/terms/", "schema": "https://schema.org/"},
        "o:id": 1,
        "dcterms:creator": [{"@value": "Ada Lovelace"}],
        "viaf": "https://viaf.org/viaf/12345",
        "title": "Notes",
        "note": "draft",
    },
    {"o:id": 2, "title": "Sketch", "dcterms:creator": "Charles Babbage"},
]


def build_state() -> MappingState:
    state = classify(analyze_keys(ITEMS), ["o:"])
    state = map_key_to_property(state, "dcterms:creator", AUTHOR)
    state = move_key(state, "note", Category.IGNORED)
    state = add_custom_mapping(state, PUBLISHER)
    state = auto_inject_metadata_fields(state)
    state = asyncio.run(auto_inject_required_type_property(state))
    return state.model_copy(update={"entity_schema": "E473"})


def persisted(records):
    return [r.model_dump(exclude=TRANSIENT_FIELDS) for r in records]


def document(mapped=(), ignored=(), manual=(), version=CURRENT_VERSION):
    return {
        "version": version,
        "createdAt": "2024-01-09T12:00:00",
        "entitySchema": "",
        "mappings": {"mapped": list(mapped), "ignored": list(ignored), "manualProperties": list(manual)},
    }


def mapped_entry(key, prop=PUBLISHER, **extra):
    entry = {"key": key, "property": prop.model_dump(mode="json", by_alias=True)}
    entry.update(extra)
    return entry


class TestSerialize:
    """Document shape."""

    def test_document_layout(self):
        state = build_state()
        doc = serialize(state, created_at=datetime(2024, 1, 9, 12, 0, 0))

        assert doc["version"] == "1.0"
        assert doc["createdAt"] == "2024-01-09T12:00:00"
        assert doc["entitySchema"] == "E473"
        assert set(doc["mappings"]) == {"mapped", "ignored", "manualProperties"}
        assert [m["key"] for m in doc["mappings"]["mapped"]] == ["viaf", "dcterms:creator", "custom_P123"]
        assert [m["key"] for m in doc["mappings"]["ignored"]] == ["o:id", "note"]
        assert [m["property"]["id"] for m in doc["mappings"]["manualProperties"]] == [
            "label", "description", "aliases", "P31",
        ]

    def test_camel_case_and_no_transient_markers(self):
        doc = serialize(build_state())
        creator = next(m for m in doc["mappings"]["mapped"] if m["key"] == "dcterms:creator")

        assert creator["totalItems"] == 2
        assert creator["mappingId"] == "dcterms:creator::P50"
        assert creator["contextMap"] == {"dcterms": "http://purl.org/dc/terms/", "schema": "https://schema.org/"}
        assert "notInCurrentDataset" not in creator
        assert "isNewlyMoved" not in creator
        assert "not_in_current_dataset" not in creator

    def test_non_linked_keys_are_not_written(self):
        doc = serialize(build_state())
        written = [m["key"] for group in ("mapped", "ignored") for m in doc["mappings"][group]]
        assert "title" not in written

    def test_document_is_json_serializable(self):
        json.dumps(serialize(build_state()))


class TestRoundTrip:
    """serialize -> deserialize restores the persisted content."""

    def test_round_trip_restores_content(self):
        state = build_state()
        doc = json.loads(json.dumps(serialize(state)))
        restored = deserialize(doc, dataset_keys_of(ITEMS))

        assert persisted(restored.mapped) == persisted(state.mapped)
        assert persisted(restored.ignored) == persisted(state.ignored)
        assert restored.manual_properties == state.manual_properties
        assert restored.entity_schema == "E473"
        assert restored.non_linked == []

    def test_context_map_order_survives(self):
        state = build_state()
        restored = deserialize(json.loads(json.dumps(serialize(state))), dataset_keys_of(ITEMS))
        creator = restored.find("dcterms:creator")

        assert isinstance(creator.context_map, OrderedDict)
        assert list(creator.context_map) == ["dcterms", "schema"]

    def test_restored_records_are_not_marked_moved(self):
        restored = deserialize(serialize(build_state()), dataset_keys_of(ITEMS))
        assert not any(r.is_newly_moved for r in restored.mapped + restored.ignored)
        assert not any(r.not_in_current_dataset for r in restored.mapped)

    def test_identifier_info_survives(self):
        restored = deserialize(serialize(build_state()), dataset_keys_of(ITEMS))
        viaf = restored.find("viaf")

        assert viaf.auto_mapped
        assert viaf.identifier_type == "viaf"
        assert viaf.identifier_info.identifier_value == "12345"


class TestDatasetPresence:
    """Flags for mapped keys missing from the loaded dataset."""

    def test_missing_key_is_flagged_custom_is_exempt(self):
        doc = document(mapped=[
            mapped_entry("publisher"),
            mapped_entry("custom_P123", type="custom", isCustomProperty=True),
            mapped_entry("title", PropertyRecord(id="P1476", label="title")),
        ])
        state = deserialize(doc, {"title"})

        assert state.find("publisher").not_in_current_dataset is True
        assert state.find("custom_P123").not_in_current_dataset is False
        assert state.find("title").not_in_current_dataset is False

    def test_custom_detection(self):
        assert is_custom_mapping(KeyRecord(key="custom_P1"))
        assert is_custom_mapping(KeyRecord(key="anything", is_custom_property=True))
        assert is_custom_mapping(KeyRecord(key="anything", type="custom"))
        assert not is_custom_mapping(KeyRecord(key="publisher"))

    def test_dataset_keys_skip_structure_keys(self):
        assert dataset_keys_of(ITEMS) == {"o:id", "dcterms:creator", "viaf", "title", "note"}


class TestMalformedDocuments:
    """Every malformed document fails with FormatError."""

    def test_missing_version(self):
        doc = document()
        del doc["version"]
        with pytest.raises(FormatError, match="missing version or mappings"):
            deserialize(doc, set())

    def test_missing_mappings(self):
        with pytest.raises(FormatError):
            deserialize({"version": "1.0"}, set())

    def test_unsupported_version(self):
        with pytest.raises(FormatError, match="Unsupported mapping file version '2.0'"):
            deserialize(document(version="2.0"), set())

    def test_not_an_object(self):
        with pytest.raises(FormatError):
            deserialize(["mapped"], set())

    def test_mappings_not_an_object(self):
        doc = document()
        doc["mappings"] = []
        with pytest.raises(FormatError):
            deserialize(doc, set())

    def test_group_not_a_list(self):
        doc = document()
        doc["mappings"]["mapped"] = {"key": "title"}
        with pytest.raises(FormatError, match="mappings.mapped"):
            deserialize(doc, set())

    def test_mapped_entry_without_property(self):
        with pytest.raises(FormatError, match="entry 0"):
            deserialize(document(mapped=[{"key": "title"}]), {"title"})

    def test_key_in_two_categories(self):
        doc = document(mapped=[mapped_entry("title")], ignored=[{"key": "title"}])
        with pytest.raises(FormatError):
            deserialize(doc, {"title"})

    def test_duplicate_manual_property(self):
        manual = ManualProperty(property=PUBLISHER).model_dump(mode="json", by_alias=True)
        with pytest.raises(FormatError):
            deserialize(document(manual=[manual, manual]), set())

    def test_error_names_source(self):
        with pytest.raises(FormatError) as exc_info:
            deserialize(document(version="0.9"), set(), source="mapping.json")
        assert "mapping.json" in str(exc_info.value)
        assert exc_info.value.source == "mapping.json"

    def test_empty_groups_are_allowed(self):
        doc = document()
        doc["mappings"] = {"mapped": None}
        state = deserialize(doc, set())
        assert state.mapped == [] and state.ignored == [] and state.manual_properties == []


class TestMappingFiles:
    """JSON file export and import."""

    def test_save_and_load(self, tmp_path):
        state = build_state()
        path = tmp_path / "exports" / "mapping.json"

        ref = save_mapping(state, path)

        data = path.read_bytes()
        assert ref.path == str(path.absolute())
        assert ref.size_bytes == len(data)
        assert ref.content_hash == hashlib.sha256(data).hexdigest()
        assert json.loads(data)["mappings"]["mapped"][0]["key"] == "viaf"

        restored = load_mapping(path, dataset_keys_of(ITEMS), expected_hash=ref.content_hash)
        assert persisted(restored.mapped) == persisted(state.mapped)

    def test_hash_mismatch(self, tmp_path):
        path = tmp_path / "mapping.json"
        save_mapping(build_state(), path)
        with pytest.raises(FormatError, match="Hash mismatch"):
            load_mapping(path, set(), expected_hash="0" * 64)

    def test_invalid_json_names_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(FormatError) as exc_info:
            load_mapping(path, set())
        assert str(path) in str(exc_info.value)

    def test_missing_file_names_file(self, tmp_path):
        path = tmp_path / "absent.json"
        with pytest.raises(FormatError) as exc_info:
            load_mapping(path, set())
        assert str(path) in str(exc_info.value)

    def test_invalid_document_names_file(self, tmp_path):
        path = tmp_path / "old.json"
        path.write_text(json.dumps(document(version="0.1")), encoding="utf-8")
        with pytest.raises(FormatError) as exc_info:
            load_mapping(path, set())
        assert str(path) in str(exc_info.value)


class TestApplyLoadedState:
    """Restoring a mapping into a working state."""

    def test_restored_mapping_merges_with_dataset(self):
        doc = document(
            mapped=[
                mapped_entry("title", PropertyRecord(id="P1476", label="title")),
                mapped_entry("publisher"),
            ],
            ignored=[{"key": "note"}],
        )
        keys = analyze_keys(ITEMS)

        async def run():
            machine = MappingStateMachine(ignore_patterns=["o:"])
            await machine.load_keys(keys)
            await machine.map_key_to_property("dcterms:creator", AUTHOR)
            loaded = deserialize(doc, dataset_keys_of(ITEMS))
            return await apply_loaded_state(machine, loaded, keys)

        state = asyncio.run(run())

        assert state.category_of("title") == Category.MAPPED
        assert state.find("title").frequency == 2
        assert state.category_of("note") == Category.IGNORED
        assert state.category_of("dcterms:creator") == Category.NON_LINKED
        assert state.category_of("o:id") == Category.IGNORED
        assert state.category_of("viaf") == Category.MAPPED
        assert state.find("publisher").not_in_current_dataset is True
        assert sorted(state.all_keys()) == sorted(dataset_keys_of(ITEMS) | {"publisher"})

    def test_apply_without_keys_installs_as_is(self):
        loaded = MappingState(mapped=[MappedKey(key="title", property=AUTHOR)])

        async def run():
            machine = MappingStateMachine(ignore_patterns=[])
            await machine.load_keys([KeyRecord(key="other")])
            return await apply_loaded_state(machine, loaded)

        state = asyncio.run(run())
        assert state.all_keys() == ["title"]


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
