"""Build a mapping document for a dataset.

Analyzes the dataset's keys, classifies them (ignore patterns, identifier
auto-mapping), optionally restores a saved mapping, injects the metadata
fields and the "instance of" requirement, then prints a summary and writes
the mapping document.

Usage:
    python scripts/build_mapping.py items.json
    python scripts/build_mapping.py items.json --load mapping.json --out mapping.json
    python scripts/build_mapping.py items.json --ignore o: @type --offline
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from connectors.wikidata.wd_client import WikidataApiConfig, WikidataClient
from core.config import get_settings
from core.errors import FormatError
from core.observability.logging import get_logger
from mapping_state import MappingState, MappingStateMachine, analyze_keys, normalize_items
from persistence import apply_loaded_state, dataset_keys_of, load_mapping, save_mapping
from property_cache import PropertyKnowledgeCache

logger = get_logger("scripts.build_mapping")


def print_summary(state: MappingState) -> None:
    total = len(state.non_linked) + len(state.mapped) + len(state.ignored)
    print("=" * 60)
    print(f"MAPPING SUMMARY ({total} keys)")
    print("=" * 60)
    print(f"  Non-linked: {len(state.non_linked)}")
    for record in state.non_linked:
        print(f"    - {record.key} ({record.frequency}/{record.total_items})")
    print(f"  Mapped:     {len(state.mapped)}")
    for record in state.mapped:
        flags = []
        if record.auto_mapped:
            flags.append("auto")
        if record.not_in_current_dataset:
            flags.append("not in dataset")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(f"    - {record.key} -> {record.property.id} ({record.property.label}){suffix}")
    print(f"  Ignored:    {len(state.ignored)}")
    for record in state.ignored:
        print(f"    - {record.key}")
    print(f"  Manual properties: {len(state.manual_properties)}")
    for manual in state.manual_properties:
        required = " (required)" if manual.is_required else ""
        print(f"    - {manual.property.id} ({manual.property.label}){required}")


async def build_mapping(
    dataset_path: Path,
    load_path: Optional[Path],
    ignore_patterns: Optional[List[str]],
    offline: bool,
) -> MappingState:
    data = json.loads(dataset_path.read_text(encoding="utf-8"))
    items = normalize_items(data)
    keys = analyze_keys(items)

    settings = get_settings()
    if offline:
        return await _classify(None, items, keys, load_path, ignore_patterns)

    async with WikidataClient(WikidataApiConfig.from_settings(settings)) as client:
        cache = PropertyKnowledgeCache(client)
        return await _classify(cache, items, keys, load_path, ignore_patterns)


async def _classify(cache, items, keys, load_path, ignore_patterns) -> MappingState:
    machine = MappingStateMachine(cache=cache, ignore_patterns=ignore_patterns)
    if load_path is not None:
        loaded = load_mapping(load_path, dataset_keys_of(items))
        await apply_loaded_state(machine, loaded, keys)
    else:
        await machine.load_keys(keys)
    return await machine.ensure_required_properties()


def main() -> int:
    parser = argparse.ArgumentParser(description="Classify dataset keys and write a mapping document")
    parser.add_argument("dataset", type=Path, help="JSON dataset (list of items or {\"items\": [...]})")
    parser.add_argument("--load", type=Path, default=None, help="Saved mapping document to restore")
    parser.add_argument("--out", type=Path, default=None, help="Where to write the mapping document")
    parser.add_argument("--ignore", nargs="+", default=None, help="Ignore patterns (default from settings)")
    parser.add_argument("--offline", action="store_true", help="Do not query the knowledge base")
    args = parser.parse_args()

    if not args.dataset.exists():
        print(f"Dataset not found: {args.dataset}")
        return 1

    try:
        state = asyncio.run(build_mapping(args.dataset, args.load, args.ignore, args.offline))
    except FormatError as e:
        logger.error(f"Could not load mapping: {e}")
        print(f"ERROR: {e}")
        return 1
    except json.JSONDecodeError as e:
        print(f"ERROR: dataset {args.dataset} is not valid JSON: {e}")
        return 1

    print_summary(state)

    if args.out:
        ref = save_mapping(state, args.out)
        print(f"\nWrote {ref.path} ({ref.size_bytes} bytes, sha256 {ref.content_hash[:12]})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
