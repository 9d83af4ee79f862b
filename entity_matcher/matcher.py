"""Entity Matching Engine.

For one literal value of one property, produces a ranked list of candidate
knowledge-base entities, or decides the value needs no lookup:
1. Date-shaped values (or temporal properties) short-circuit to a date input
2. A cell that was already attempted returns its stored result
3. The primary reconciliation service is queried, then the fallback
4. If both yield nothing, the generic search endpoint is tried
5. Candidates are scored against the property's constraints
6. A top score at or above the threshold is accepted automatically

Service failures never propagate: they degrade to an empty candidate list.
"""

import time
from typing import List, Optional, Sequence, Tuple

from connectors.wikidata.wd_client import FALLBACK, PRIMARY, KnowledgeBaseClient
from connectors.wikidata.wd_models import parse_reconciliation, parse_search
from core.config import get_settings
from core.errors import FormatError, TransportError, ValidationWarning
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics
from entity_matcher.dates import is_date_value
from entity_matcher.models import (
    CandidateMatch,
    CellKey,
    CellSelection,
    CellStatus,
    MatchingConfig,
    MatchOutcome,
    OutcomeKind,
    DEFAULT_MATCHING_CONFIG,
)
from entity_matcher.scoring import (
    build_contextual_properties,
    get_constraint_based_types,
    rank_candidates,
    search_hits_to_candidates,
    validate_against_format_constraints,
)
from entity_matcher.session import ReconciliationSession
from property_cache.datatypes import is_temporal_datatype
from property_cache.models import PropertyRecord

logger = get_logger(__name__)

AUTO_ACCEPT_REASON = "100% confidence match"


class EntityMatcher:
    """Reconciles literal values against the knowledge base.

    Example:
        matcher = EntityMatcher(client)
        outcome = await matcher.reconcile_cell(session, ("item-0", "creator", 0))
        if outcome.auto_accepted:
            ...
    """

    def __init__(
        self,
        client: KnowledgeBaseClient,
        config: MatchingConfig = DEFAULT_MATCHING_CONFIG,
        entity_page_url: Optional[str] = None,
    ):
        self.client = client
        self.config = config
        self.entity_page_url = entity_page_url or get_settings().entity_page_url

    # =========================================================================
    # Remote lookups
    # =========================================================================

    async def _query_endpoint(
        self,
        endpoint: str,
        value: str,
        types: Sequence[str],
        properties: Sequence[dict],
        record: Optional[PropertyRecord],
    ) -> List[CandidateMatch]:
        try:
            payload = await self.client.reconcile(endpoint, value, types, properties)
            results = parse_reconciliation(payload)
        except FormatError as e:
            logger.warning(f"Malformed {endpoint} reconciliation response for {value!r}, treating as no results: {e}")
            return []
        return rank_candidates(results, record, self.entity_page_url, self.config)

    async def reconcile_value(
        self,
        value: str,
        record: Optional[PropertyRecord],
        property_name: str = "",
        sibling_values: Sequence[Tuple[str, str]] = (),
    ) -> List[CandidateMatch]:
        """Query the reconciliation service, primary first, then fallback.

        Returns:
            Ranked candidates; empty if both endpoints fail
        """
        types = get_constraint_based_types(record, property_name)
        properties = build_contextual_properties(record, sibling_values, self.config.max_context_properties)

        try:
            return await self._query_endpoint(PRIMARY, value, types, properties, record)
        except TransportError as primary_error:
            logger.warning(f"Primary reconciliation failed for {value!r}: {primary_error}")
            try:
                return await self._query_endpoint(FALLBACK, value, types, properties, record)
            except TransportError as fallback_error:
                logger.warning(
                    f"Both reconciliation endpoints failed for {value!r}",
                    extra_fields={
                        "primary_error": str(primary_error),
                        "fallback_error": str(fallback_error),
                    },
                )
                return []

    async def search_fallback(self, value: str) -> List[CandidateMatch]:
        """Full-text search used when reconciliation finds nothing."""
        try:
            payload = await self.client.search_entities(value, limit=self.config.search_limit)
            hits = parse_search(payload)
        except (TransportError, FormatError) as e:
            logger.warning(f"Fallback search failed for {value!r}: {e}")
            return []
        return search_hits_to_candidates(hits, self.entity_page_url, self.config)

    async def find_candidates(
        self,
        value: str,
        record: Optional[PropertyRecord],
        property_name: str = "",
        sibling_values: Sequence[Tuple[str, str]] = (),
    ) -> List[CandidateMatch]:
        matches = await self.reconcile_value(value, record, property_name, sibling_values)
        if not matches:
            matches = await self.search_fallback(value)
        return matches

    # =========================================================================
    # Cell reconciliation
    # =========================================================================

    def _auto_accept(
        self,
        session: ReconciliationSession,
        key: CellKey,
        matches: List[CandidateMatch],
    ) -> Optional[CellSelection]:
        if not matches or matches[0].score < self.config.auto_accept_threshold:
            return None
        top = matches[0]
        selection = CellSelection.from_candidate(
            top,
            autoAccepted=True,
            reason=AUTO_ACCEPT_REASON,
            score=top.score,
        )
        session.mark_reconciled(key, selection)
        logger.info(f"Auto-accepted {top.id} ({top.name}) with score {top.score}")
        return selection

    async def reconcile_cell(
        self,
        session: ReconciliationSession,
        key: CellKey,
        value: Optional[str] = None,
        record: Optional[PropertyRecord] = None,
    ) -> MatchOutcome:
        """Reconcile one cell of a session.

        Args:
            session: Session holding the cell
            key: (item id, property key, value index)
            value: Literal value; defaults to the value stored on the cell.
                A value different from the stored one discards earlier matches.
            record: Property record; defaults to the session's record for the key

        Returns:
            MatchOutcome describing what happened
        """
        item_id, property_key, value_index = key
        cell = session.ensure_cell(item_id, property_key, value_index, value or "")
        if value is not None and value != cell.value:
            if cell.attempted:
                session.invalidate(key)
            cell.value = value
        value = cell.value
        record = record or session.property_record(property_key)
        metrics = get_metrics()
        started = time.monotonic()

        with with_correlation(
            session_id=session.session_id,
            item_id=item_id,
            property_id=record.id if record else None,
            source_key=property_key,
            stage="reconcile",
        ):
            if not value.strip():
                if not cell.attempted:
                    session.store_empty_matches(key)
                metrics.record_outcome(OutcomeKind.NO_MATCHES.value)
                logger.debug("Blank value, nothing to reconcile")
                return MatchOutcome(kind=OutcomeKind.NO_MATCHES, cell_key=key, value=value)

            # Dates are entered, not matched
            if (record is not None and is_temporal_datatype(record.datatype)) or is_date_value(value):
                cell.needs_date_input = True
                metrics.record_outcome(OutcomeKind.DATE_INPUT.value)
                logger.debug(f"{value!r} is date-shaped, skipping reconciliation")
                return MatchOutcome(kind=OutcomeKind.DATE_INPUT, cell_key=key, value=value)

            if cell.attempted:
                matches = list(cell.matches)
                kind = OutcomeKind.CACHED
                validation = None
            else:
                validation = validate_against_format_constraints(value, record)
                if not validation.is_valid and record is not None:
                    warning = ValidationWarning(record.id, value, validation.violations)
                    cell.warnings.append(warning.to_dict())
                    logger.warning(str(warning), extra_fields={"violations": validation.violations})

                matches = await self.find_candidates(
                    value,
                    record,
                    property_name=property_key,
                    sibling_values=session.sibling_values(item_id, property_key),
                )
                if matches:
                    session.store_matches(key, matches)
                    kind = OutcomeKind.WITH_MATCHES
                else:
                    session.store_empty_matches(key)
                    kind = OutcomeKind.NO_MATCHES

            selected = cell.selected_match
            advance_scheduled = False
            if cell.status == CellStatus.UNRECONCILED:
                auto_selection = self._auto_accept(session, key, matches)
                if auto_selection is not None:
                    selected = auto_selection
                    kind = OutcomeKind.AUTO_ACCEPTED
                    if session.auto_advance:
                        advance_scheduled = session.schedule_auto_advance(origin=key) is not None

            duration_ms = (time.monotonic() - started) * 1000
            metrics.record_outcome(kind.value)
            metrics.record_processing_time("reconcile", duration_ms)

            return MatchOutcome(
                kind=kind,
                cell_key=key,
                value=value,
                matches=matches,
                selected=selected,
                validation=validation,
                advance_scheduled=advance_scheduled,
                duration_ms=duration_ms,
            )

    async def reconcile_all(self, session: ReconciliationSession) -> List[MatchOutcome]:
        """Reconcile every unattempted, unreconciled cell in session order.

        Auto-advance is not scheduled during a batch run.
        """
        outcomes = []
        auto_advance = session.auto_advance
        session.auto_advance = False
        try:
            for key, cell in list(session.cells.items()):
                if cell.status != CellStatus.UNRECONCILED or cell.attempted or not cell.value:
                    continue
                outcomes.append(await self.reconcile_cell(session, key))
        finally:
            session.auto_advance = auto_advance
        return outcomes
