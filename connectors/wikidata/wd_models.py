"""Wikidata wire models.

These map the raw JSON payloads returned by the action API and the
reconciliation service. They are validated at the connector boundary so that
nothing untyped leaks into the cache or the matching engine.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.errors import FormatError


# =============================================================================
# Base
# =============================================================================

class WDBaseModel(BaseModel):
    """Base model for Wikidata API payloads."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class WDLangValue(WDBaseModel):
    language: Optional[str] = None
    value: Optional[str] = None


# =============================================================================
# wbgetentities
# =============================================================================

class WDEntity(WDBaseModel):
    """Entity payload from wbgetentities.

    Maps to: action=wbgetentities&ids=...
    """
    id: Optional[str] = None
    missing: Optional[Any] = None
    datatype: Optional[str] = None
    labels: Dict[str, WDLangValue] = Field(default_factory=dict)
    descriptions: Dict[str, WDLangValue] = Field(default_factory=dict)

    @property
    def is_missing(self) -> bool:
        # The API flags absent entities with "missing": ""
        return self.missing is not None

    def label(self, language: str) -> Optional[str]:
        entry = self.labels.get(language)
        return entry.value if entry else None

    def description(self, language: str) -> Optional[str]:
        entry = self.descriptions.get(language)
        return entry.value if entry else None


class WDEntitiesResponse(WDBaseModel):
    entities: Dict[str, WDEntity]


# =============================================================================
# wbgetclaims
# =============================================================================

class WDDataValue(WDBaseModel):
    value: Any = None
    type: Optional[str] = None


class WDSnak(WDBaseModel):
    snaktype: Optional[str] = None
    property: Optional[str] = None
    datavalue: Optional[WDDataValue] = None

    def entity_numeric_id(self) -> Optional[int]:
        if self.datavalue and isinstance(self.datavalue.value, dict):
            numeric_id = self.datavalue.value.get("numeric-id")
            if isinstance(numeric_id, int):
                return numeric_id
        return None

    def string_value(self) -> Optional[str]:
        if self.datavalue and isinstance(self.datavalue.value, str):
            return self.datavalue.value
        return None


class WDClaim(WDBaseModel):
    mainsnak: Optional[WDSnak] = None
    rank: str = "normal"
    qualifiers: Dict[str, List[WDSnak]] = Field(default_factory=dict)


class WDClaimsResponse(WDBaseModel):
    claims: Dict[str, List[WDClaim]] = Field(default_factory=dict)


# =============================================================================
# Reconciliation service
# =============================================================================

class WDReconType(WDBaseModel):
    id: Optional[str] = None
    name: Optional[str] = None


class WDReconResult(WDBaseModel):
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    score: Optional[Union[float, str]] = None
    match: Optional[bool] = None
    type: List[Union[WDReconType, str]] = Field(default_factory=list)

    def type_ids(self) -> List[str]:
        ids = []
        for t in self.type:
            if isinstance(t, str):
                ids.append(t)
            elif t.id:
                ids.append(t.id)
        return ids

    def numeric_score(self) -> Optional[float]:
        if self.score is None:
            return None
        try:
            return float(self.score)
        except (TypeError, ValueError):
            return None


class WDReconQueryResult(WDBaseModel):
    result: List[WDReconResult]


# =============================================================================
# wbsearchentities
# =============================================================================

class WDSearchHit(WDBaseModel):
    id: str
    label: Optional[str] = None
    description: Optional[str] = None
    concepturi: Optional[str] = None


class WDSearchResponse(WDBaseModel):
    search: List[WDSearchHit] = Field(default_factory=list)


# =============================================================================
# Boundary parsing helpers
# =============================================================================

def parse_entities(payload: Any) -> Dict[str, WDEntity]:
    """Validate a wbgetentities payload.

    Raises:
        FormatError: If the payload lacks the "entities" map
    """
    try:
        return WDEntitiesResponse.model_validate(payload).entities
    except ValidationError as e:
        raise FormatError(f"Malformed entities response: {e.error_count()} error(s)", "wbgetentities")


def parse_claims(payload: Any, property_id: str) -> List[WDClaim]:
    """Validate a wbgetclaims payload and return claims for one property."""
    try:
        response = WDClaimsResponse.model_validate(payload)
    except ValidationError as e:
        raise FormatError(f"Malformed claims response: {e.error_count()} error(s)", "wbgetclaims")
    return response.claims.get(property_id, [])


def parse_reconciliation(payload: Any, query_id: str = "q1") -> List[WDReconResult]:
    """Validate a reconciliation payload.

    Raises:
        FormatError: If the expected {q1: {result: [...]}} structure is missing
    """
    if not isinstance(payload, dict) or query_id not in payload:
        raise FormatError(f"Reconciliation response has no '{query_id}' entry", "reconcile")
    try:
        return WDReconQueryResult.model_validate(payload[query_id]).result
    except ValidationError as e:
        raise FormatError(f"Malformed reconciliation result: {e.error_count()} error(s)", "reconcile")


def parse_search(payload: Any) -> List[WDSearchHit]:
    """Validate a wbsearchentities payload."""
    try:
        return WDSearchResponse.model_validate(payload).search
    except ValidationError as e:
        raise FormatError(f"Malformed search response: {e.error_count()} error(s)", "wbsearchentities")
