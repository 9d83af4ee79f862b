"""Reconciliation Session.

Owns the reconciliation cells of one dataset, keyed by
(item id, property key, value index), and the deferred auto-advance that
follows an auto-accepted match.

The auto-advance is an asyncio.Task tied to the session: it is cancelled
when the session closes, when the triggering cell is invalidated, or when a
newer advance is scheduled.
"""

import asyncio
import json
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from core.config import get_settings
from core.observability.logging import get_logger, with_correlation
from entity_matcher.models import (
    CandidateMatch,
    CellKey,
    CellSelection,
    CellStatus,
    ReconciliationCell,
)
from mapping_state.models import ManualProperty, MappedKey
from property_cache.models import PropertyRecord

logger = get_logger(__name__)

AdvanceCallback = Callable[[CellKey], Awaitable[None]]


def _value_to_text(value: Any, selected_at_field: Optional[str]) -> Optional[str]:
    if selected_at_field:
        if isinstance(value, dict) and value.get(selected_at_field) is not None:
            return str(value[selected_at_field])
        return None

    if isinstance(value, dict):
        if value.get("o:label"):
            return str(value["o:label"])
        if value.get("@value"):
            return str(value["@value"])
        if value.get("@id"):
            return str(value["@id"])
        return json.dumps(value, sort_keys=True)
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def extract_property_values(
    item: Dict[str, Any],
    key: str,
    selected_at_field: Optional[str] = None,
) -> List[str]:
    """Normalize the values of one field of one item into strings.

    Labels ("o:label") win over literal values ("@value"). With
    `selected_at_field` only that field of each value object is returned and
    objects lacking it are dropped.
    """
    value = item.get(key)
    if value is None or value == "" or value is False:
        return []

    values = value if isinstance(value, list) else [value]
    extracted = []
    for v in values:
        if v is None:
            continue
        text = _value_to_text(v, selected_at_field)
        if text is not None:
            extracted.append(text)
    return extracted


def _property_priority(record: PropertyRecord) -> int:
    label = (record.label or "").lower()
    if label == "label":
        return 1
    if label == "description":
        return 2
    if label in ("aliases", "alias"):
        return 3
    if record.id == "P31" or label == "instance of":
        return 4
    return 50


class ReconciliationSession:
    """Reconciliation state for one dataset.

    Example:
        session = ReconciliationSession(on_advance=open_next_cell)
        session.initialize(items, state.mapped, state.manual_properties)
        outcome = await matcher.reconcile_cell(session, ("item-0", "creator", 0))
        await session.close()
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        auto_advance: Optional[bool] = None,
        auto_advance_delay_ms: Optional[int] = None,
        on_advance: Optional[AdvanceCallback] = None,
    ):
        settings = get_settings()
        self.session_id = session_id or f"session-{uuid.uuid4().hex[:8]}"
        self.auto_advance = settings.auto_advance if auto_advance is None else auto_advance
        delay_ms = settings.auto_advance_delay_ms if auto_advance_delay_ms is None else auto_advance_delay_ms
        self.auto_advance_delay = delay_ms / 1000.0
        self.on_advance = on_advance

        self.cells: Dict[CellKey, ReconciliationCell] = {}
        self.property_records: Dict[str, PropertyRecord] = {}

        self._advance_task: Optional[asyncio.Task] = None
        self._advance_origin: Optional[CellKey] = None
        self._closed = False

    # =========================================================================
    # Setup
    # =========================================================================

    def initialize(
        self,
        items: Sequence[Dict[str, Any]],
        mapped_keys: Sequence[MappedKey],
        manual_properties: Sequence[ManualProperty] = (),
    ) -> int:
        """Create one cell per value of every mapped key, and one per manual property, per item.

        Mapped keys flagged as absent from the current dataset are skipped.
        Properties are ordered label, description, aliases, instance of, then
        the rest in their given order.

        Returns:
            Number of cells created
        """
        self.cells.clear()
        self.property_records.clear()

        columns: List[Tuple[str, PropertyRecord, Optional[MappedKey], Optional[ManualProperty]]] = []
        for mapped in mapped_keys:
            if mapped.not_in_current_dataset:
                continue
            columns.append((mapped.key, mapped.property, mapped, None))
        for manual in manual_properties:
            columns.append((manual.property.id, manual.property, None, manual))

        columns = sorted(columns, key=lambda column: _property_priority(column[1]))
        for property_key, record, _, _ in columns:
            self.property_records[property_key] = record

        for index, item in enumerate(items):
            item_id = f"item-{index}"
            for property_key, _, mapped, manual in columns:
                if mapped is not None:
                    values = extract_property_values(item, mapped.key, mapped.selected_at_field)
                    for value_index, value in enumerate(values):
                        self.ensure_cell(item_id, property_key, value_index, value)
                else:
                    cell = self.ensure_cell(item_id, property_key, 0, manual.default_value or "")
                    cell.is_manual = True

        logger.info(
            f"Initialized {len(self.cells)} reconciliation cell(s) for {len(items)} item(s)",
            extra_fields={"session_id": self.session_id},
        )
        return len(self.cells)

    def ensure_cell(self, item_id: str, property_key: str, value_index: int = 0, value: str = "") -> ReconciliationCell:
        key = (item_id, property_key, value_index)
        cell = self.cells.get(key)
        if cell is None:
            cell = ReconciliationCell(item_id=item_id, property=property_key, value_index=value_index, value=value)
            self.cells[key] = cell
        return cell

    def get_cell(self, key: CellKey) -> Optional[ReconciliationCell]:
        return self.cells.get(key)

    def _require_cell(self, key: CellKey) -> ReconciliationCell:
        cell = self.cells.get(key)
        if cell is None:
            raise KeyError(f"Unknown reconciliation cell {key}")
        return cell

    def property_record(self, property_key: str) -> Optional[PropertyRecord]:
        return self.property_records.get(property_key)

    # =========================================================================
    # Cell transitions
    # =========================================================================

    def store_matches(self, key: CellKey, matches: Sequence[CandidateMatch]) -> None:
        cell = self._require_cell(key)
        cell.matches = list(matches)
        cell.updated_at = datetime.utcnow()

    def store_empty_matches(self, key: CellKey) -> None:
        """Record that a lookup ran and found nothing."""
        self.store_matches(key, [])

    def mark_reconciled(self, key: CellKey, selection: CellSelection) -> None:
        cell = self._require_cell(key)
        cell.selected_match = selection
        cell.status = CellStatus.RECONCILED
        cell.updated_at = datetime.utcnow()

    def mark_skipped(self, key: CellKey) -> None:
        cell = self._require_cell(key)
        cell.selected_match = None
        cell.status = CellStatus.SKIPPED
        cell.updated_at = datetime.utcnow()

    def invalidate(self, key: CellKey) -> None:
        """Forget stored matches and selection so the next request looks up again."""
        cell = self._require_cell(key)
        cell.matches = None
        cell.selected_match = None
        cell.status = CellStatus.UNRECONCILED
        cell.needs_date_input = False
        cell.warnings = []
        cell.updated_at = datetime.utcnow()
        if self._advance_origin == key:
            self.cancel_auto_advance()

    # =========================================================================
    # Queries
    # =========================================================================

    def next_unreconciled(self, after: Optional[CellKey] = None) -> Optional[CellKey]:
        """First unreconciled cell in session order, optionally after `after`."""
        keys = list(self.cells)
        start = keys.index(after) + 1 if after in self.cells else 0
        for key in keys[start:]:
            if self.cells[key].status == CellStatus.UNRECONCILED:
                return key
        return None

    def sibling_values(self, item_id: str, property_key: str) -> List[Tuple[str, str]]:
        """(property id, entity id) pairs already reconciled on the same item."""
        siblings = []
        for cell in self.cells.values():
            if cell.item_id != item_id or cell.property == property_key:
                continue
            if cell.status != CellStatus.RECONCILED or cell.selected_match is None:
                continue
            if cell.selected_match.type != "entity" or not cell.selected_match.id:
                continue
            record = self.property_records.get(cell.property)
            if record is None or record.is_fallback:
                continue
            siblings.append((record.id, cell.selected_match.id))
        return siblings

    def progress(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in CellStatus}
        auto_accepted = 0
        for cell in self.cells.values():
            counts[cell.status.value] += 1
            if cell.selected_match is not None and cell.selected_match.auto_accepted:
                auto_accepted += 1
        return {
            "total": len(self.cells),
            "reconciled": counts[CellStatus.RECONCILED.value],
            "skipped": counts[CellStatus.SKIPPED.value],
            "unreconciled": counts[CellStatus.UNRECONCILED.value],
            "auto_accepted": auto_accepted,
        }

    # =========================================================================
    # Auto-advance
    # =========================================================================

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def advance_pending(self) -> bool:
        return self._advance_task is not None and not self._advance_task.done()

    def schedule_auto_advance(self, origin: Optional[CellKey] = None) -> Optional[asyncio.Task]:
        """Advance to the next unreconciled cell after the configured delay.

        Must be called from a running event loop. Replaces any pending advance.
        """
        if self._closed:
            return None
        self.cancel_auto_advance()
        self._advance_origin = origin
        self._advance_task = asyncio.get_running_loop().create_task(self._advance_after_delay(origin))
        return self._advance_task

    def cancel_auto_advance(self) -> None:
        task = self._advance_task
        # An advance that triggers another auto-accept must not cancel itself
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._advance_task = None
        self._advance_origin = None

    async def _advance_after_delay(self, origin: Optional[CellKey]) -> None:
        await asyncio.sleep(self.auto_advance_delay)
        if self._closed:
            return

        next_key = self.next_unreconciled(after=origin)
        if next_key is None:
            next_key = self.next_unreconciled()
        if next_key is None:
            logger.info("All cells processed, nothing to advance to")
            return

        with with_correlation(session_id=self.session_id, item_id=next_key[0], stage="auto_advance"):
            logger.debug(f"Auto-advancing to {next_key}")
            if self.on_advance is not None:
                try:
                    await self.on_advance(next_key)
                except Exception as e:
                    logger.error(f"Auto-advance to {next_key} failed: {e}", exc_info=True)

    async def close(self) -> None:
        """Tear down the session; a pending advance never fires afterwards."""
        self._closed = True
        task = self._advance_task
        self.cancel_auto_advance()
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass
