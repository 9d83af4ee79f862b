"""Property Knowledge Cache.

Fetches and caches property metadata and constraints from the knowledge base:
1. Entries are keyed by (property id, kind) with kind in {info, constraints}
2. Entries expire after a TTL and are purged on the next lookup
3. Batch lookups never fail as a whole; missing ids get fallback records

Concurrent fetches of the same id are allowed. Writes are last-write-wins and
re-fetching converges to the same record.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from connectors.wikidata.wd_client import KnowledgeBaseClient
from connectors.wikidata.wd_models import parse_claims, parse_entities
from core.config import get_settings
from core.errors import FormatError, NotFoundError, TransportError
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics
from property_cache.constraints import (
    PROPERTY_CONSTRAINT_PID,
    attach_class_labels,
    parse_constraint_claims,
    referenced_classes,
)
from property_cache.datatypes import format_datatype
from property_cache.models import PropertyConstraints, PropertyRecord

logger = get_logger(__name__)

INFO = "info"
CONSTRAINTS = "constraints"

# Per-call entity limit of the entity endpoint
ENTITY_BATCH_LIMIT = 50

MISSING_DESCRIPTION = "Property information not available"
FAILED_DESCRIPTION = "Failed to fetch property information"


@dataclass
class CacheEntry:
    value: Any
    stored_at: float


def _chunks(ids: Sequence[str], size: int) -> List[List[str]]:
    return [list(ids[i:i + size]) for i in range(0, len(ids), size)]


class PropertyKnowledgeCache:
    """TTL cache in front of the knowledge-base entity and claims endpoints.

    Example:
        async with WikidataClient() as client:
            cache = PropertyKnowledgeCache(client)
            record = await cache.get_complete_property_data("P50")
    """

    def __init__(
        self,
        client: KnowledgeBaseClient,
        ttl_seconds: Optional[float] = None,
        language: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = get_settings()
        self.client = client
        self.ttl_seconds = settings.property_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.language = language or settings.language
        self._clock = clock
        self._entries: Dict[Tuple[str, str], CacheEntry] = {}

    # =========================================================================
    # Entry bookkeeping
    # =========================================================================

    def _lookup(self, property_id: str, kind: str) -> Optional[Any]:
        key = (property_id, kind)
        entry = self._entries.get(key)
        metrics = get_metrics()
        if entry is None:
            metrics.record_cache_miss(kind)
            return None
        if self._clock() - entry.stored_at > self.ttl_seconds:
            del self._entries[key]
            metrics.record_cache_eviction(kind)
            metrics.record_cache_miss(kind)
            return None
        metrics.record_cache_hit(kind)
        return entry.value

    def _store(self, property_id: str, kind: str, value: Any) -> None:
        self._entries[(property_id, kind)] = CacheEntry(value=value, stored_at=self._clock())

    def clear(self) -> None:
        """Drop every cached entry."""
        self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._entries),
            "entries": sorted(f"{pid}:{kind}" for pid, kind in self._entries),
            "ttl_seconds": self.ttl_seconds,
        }

    def _record_from_entity(self, property_id: str, entity) -> PropertyRecord:
        datatype = entity.datatype or "unknown"
        return PropertyRecord(
            id=property_id,
            datatype=datatype,
            datatype_label=format_datatype(datatype),
            label=entity.label(self.language) or "No label",
            description=entity.description(self.language) or "No description available",
        )

    # =========================================================================
    # Property info
    # =========================================================================

    async def get_property_info(self, property_id: str) -> PropertyRecord:
        """Get datatype, label and description of one property.

        Args:
            property_id: Property id (e.g., "P31")

        Returns:
            Cached or freshly fetched PropertyRecord

        Raises:
            NotFoundError: The remote entity is missing
            TransportError: The entity endpoint could not be reached
            FormatError: The entity endpoint returned a malformed payload
        """
        cached = self._lookup(property_id, INFO)
        if cached is not None:
            return cached

        with with_correlation(property_id=property_id, stage="property_info"):
            try:
                payload = await self.client.get_entities([property_id], languages=[self.language])
                entities = parse_entities(payload)
            except (TransportError, FormatError) as e:
                logger.error(f"Failed to fetch property {property_id}: {e}")
                raise

            entity = entities.get(property_id)
            if entity is None or entity.is_missing:
                logger.error(f"Property {property_id} not found")
                raise NotFoundError(property_id, f"Property {property_id} not found")

            record = self._record_from_entity(property_id, entity)
            self._store(property_id, INFO, record)
            return record

    async def get_batch_property_info(self, property_ids: Sequence[str]) -> Dict[str, PropertyRecord]:
        """Get info for several properties, never failing as a whole.

        Cached ids are served from the cache. Uncached ids are fetched in
        batched calls. Ids missing from the response, or belonging to a batch
        whose request failed, get an uncached fallback record.

        Returns:
            Dict mapping every requested id to a PropertyRecord
        """
        results: Dict[str, PropertyRecord] = {}
        uncached: List[str] = []

        for property_id in dict.fromkeys(property_ids):
            cached = self._lookup(property_id, INFO)
            if cached is not None:
                results[property_id] = cached
            else:
                uncached.append(property_id)

        for chunk in _chunks(uncached, ENTITY_BATCH_LIMIT):
            try:
                payload = await self.client.get_entities(chunk, languages=[self.language])
                entities = parse_entities(payload)
            except (TransportError, FormatError) as e:
                logger.warning(
                    f"Batch property fetch failed for {len(chunk)} id(s), using fallbacks: {e}",
                    extra_fields={"property_ids": chunk},
                )
                for property_id in chunk:
                    results[property_id] = PropertyRecord.fallback(property_id, FAILED_DESCRIPTION)
                continue

            for property_id in chunk:
                entity = entities.get(property_id)
                if entity is None or entity.is_missing:
                    logger.warning(f"Property {property_id} missing from batch response, using fallback")
                    results[property_id] = PropertyRecord.fallback(property_id, MISSING_DESCRIPTION)
                    continue
                record = self._record_from_entity(property_id, entity)
                self._store(property_id, INFO, record)
                results[property_id] = record

        return {property_id: results[property_id] for property_id in dict.fromkeys(property_ids)}

    # =========================================================================
    # Constraints
    # =========================================================================

    async def fetch_entity_labels(self, entity_ids: Sequence[str]) -> Dict[str, str]:
        """Resolve labels for entity ids, chunked to the endpoint limit.

        On any failure every id maps to itself.
        """
        ids = list(dict.fromkeys(entity_ids))
        if not ids:
            return {}

        labels: Dict[str, str] = {}
        try:
            for chunk in _chunks(ids, ENTITY_BATCH_LIMIT):
                payload = await self.client.get_entities(chunk, props=("labels",), languages=[self.language])
                entities = parse_entities(payload)
                for entity_id in chunk:
                    entity = entities.get(entity_id)
                    label = entity.label(self.language) if entity is not None else None
                    labels[entity_id] = label or entity_id
        except (TransportError, FormatError) as e:
            logger.warning(f"Label lookup failed for {len(ids)} id(s), using ids as labels: {e}")
            return {entity_id: entity_id for entity_id in ids}
        return labels

    async def _fetch_constraints(self, property_id: str) -> PropertyConstraints:
        cached = self._lookup(property_id, CONSTRAINTS)
        if cached is not None:
            return cached

        payload = await self.client.get_claims(property_id, PROPERTY_CONSTRAINT_PID)
        claims = parse_claims(payload, PROPERTY_CONSTRAINT_PID)
        constraints = parse_constraint_claims(claims, self.language)

        classes = referenced_classes(constraints)
        if classes:
            labels = await self.fetch_entity_labels(classes)
            constraints = attach_class_labels(constraints, labels)

        self._store(property_id, CONSTRAINTS, constraints)
        return constraints

    async def get_property_constraints(self, property_id: str) -> PropertyConstraints:
        """Get the format, value-type and other constraints of a property.

        Returns empty constraint sets if they cannot be fetched.
        """
        with with_correlation(property_id=property_id, stage="property_constraints"):
            try:
                return await self._fetch_constraints(property_id)
            except (TransportError, FormatError) as e:
                logger.warning(f"Constraint fetch failed for {property_id}: {e}")
                return PropertyConstraints.empty()

    async def _constraints_or_error(self, property_id: str) -> Tuple[PropertyConstraints, Optional[str]]:
        try:
            return await self._fetch_constraints(property_id), None
        except (TransportError, FormatError) as e:
            logger.warning(f"Constraint fetch failed for {property_id}: {e}")
            return PropertyConstraints.empty(), str(e)

    async def get_complete_property_data(self, property_id: str) -> PropertyRecord:
        """Get property info augmented with its constraints.

        Raises:
            NotFoundError: If the property info cannot be found
            TransportError: If the property info cannot be fetched
        """
        record, (constraints, error) = await asyncio.gather(
            self.get_property_info(property_id),
            self._constraints_or_error(property_id),
        )
        return record.with_constraints(constraints, error)
