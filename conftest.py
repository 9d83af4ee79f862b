"""
Shared test fixtures.

FakeKnowledgeBase implements the KnowledgeBaseClient protocol in memory and
records every call so tests can assert on network behavior.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from connectors.wikidata.wd_client import DEFAULT_ENTITY_PROPS
from core.errors import FormatError, TransportError


# ============================================================================
# RAW PAYLOAD HELPERS
# ============================================================================

def item_snak(pid: str, numeric_id: int) -> Dict[str, Any]:
    return {
        "snaktype": "value",
        "property": pid,
        "datavalue": {
            "value": {"entity-type": "item", "numeric-id": numeric_id, "id": f"Q{numeric_id}"},
            "type": "wikibase-entityid",
        },
    }


def string_snak(pid: str, value: str) -> Dict[str, Any]:
    return {"snaktype": "value", "property": pid, "datavalue": {"value": value, "type": "string"}}


def text_snak(pid: str, text: str, language: str = "en") -> Dict[str, Any]:
    return {
        "snaktype": "value",
        "property": pid,
        "datavalue": {"value": {"text": text, "language": language}, "type": "monolingualtext"},
    }


def constraint_claim(type_numeric_id: int, qualifiers: Dict[str, List[Dict]], rank: str = "normal") -> Dict:
    return {
        "mainsnak": item_snak("P2302", type_numeric_id),
        "rank": rank,
        "qualifiers": qualifiers,
    }


def format_claim(regex: str, clarification: Optional[str] = None, rank: str = "normal") -> Dict:
    qualifiers = {"P1793": [string_snak("P1793", regex)]}
    if clarification:
        qualifiers["P2916"] = [text_snak("P2916", clarification)]
    return constraint_claim(21502404, qualifiers, rank)


def value_type_claim(*class_numeric_ids: int, rank: str = "normal") -> Dict:
    return constraint_claim(21503250, {"P2308": [item_snak("P2308", n) for n in class_numeric_ids]}, rank)


def recon_result(qid: str, name: str, score=None, types: Sequence[str] = (), description: str = "") -> Dict:
    result = {
        "id": qid,
        "name": name,
        "description": description,
        "type": [{"id": t, "name": t} for t in types],
        "match": False,
    }
    if score is not None:
        result["score"] = score
    return result


# ============================================================================
# FAKES
# ============================================================================

class FakeKnowledgeBase:
    """In-memory knowledge base.

    Attributes:
        properties: pid -> (datatype, label, description)
        labels: entity id -> label (for class label lookups)
        constraint_claims: pid -> raw P2302 claims
        recon: endpoint -> {query text -> raw result list}
        search: query text -> raw search hits
        fail: operation names that raise TransportError
            ("entities", "claims", "primary", "fallback", "search")
        malformed: operation names that raise FormatError, as for a non-JSON body
    """

    def __init__(self):
        self.properties: Dict[str, Tuple[str, str, str]] = {}
        self.labels: Dict[str, str] = {}
        self.constraint_claims: Dict[str, List[Dict]] = {}
        self.recon: Dict[str, Dict[str, List[Dict]]] = {"primary": {}, "fallback": {}}
        self.recon_payloads: Dict[str, Any] = {}
        self.search: Dict[str, List[Dict]] = {}
        self.fail: set = set()
        self.malformed: set = set()
        self.calls: List[Tuple[str, Any]] = []

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    @property
    def reconcile_calls(self) -> int:
        return self.count("primary") + self.count("fallback")

    def _check(self, operation: str) -> None:
        if operation in self.fail:
            raise TransportError(f"{operation} unavailable", status_code=503, endpoint=operation)
        if operation in self.malformed:
            raise FormatError("Response body is not valid UTF-8 JSON", operation)

    async def get_entities(
        self,
        ids: Sequence[str],
        props: Sequence[str] = DEFAULT_ENTITY_PROPS,
        languages: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        self.calls.append(("entities", list(ids)))
        self._check("entities")
        entities = {}
        for entity_id in ids:
            if entity_id in self.properties:
                datatype, label, description = self.properties[entity_id]
                entities[entity_id] = {
                    "id": entity_id,
                    "datatype": datatype,
                    "labels": {"en": {"language": "en", "value": label}},
                    "descriptions": {"en": {"language": "en", "value": description}},
                }
            elif entity_id in self.labels:
                entities[entity_id] = {
                    "id": entity_id,
                    "labels": {"en": {"language": "en", "value": self.labels[entity_id]}},
                }
            else:
                entities[entity_id] = {"id": entity_id, "missing": ""}
        return {"entities": entities}

    async def get_claims(self, entity_id: str, property_id: str) -> Dict[str, Any]:
        self.calls.append(("claims", (entity_id, property_id)))
        self._check("claims")
        return {"claims": {property_id: self.constraint_claims.get(entity_id, [])}}

    async def reconcile(self, endpoint, query, types, properties) -> Dict[str, Any]:
        self.calls.append((endpoint, {"query": query, "types": list(types), "properties": list(properties)}))
        self._check(endpoint)
        if endpoint in self.recon_payloads:
            return self.recon_payloads[endpoint]
        return {"q1": {"result": self.recon[endpoint].get(query, [])}}

    async def search_entities(self, text: str, limit: int = 10) -> Dict[str, Any]:
        self.calls.append(("search", text))
        self._check("search")
        return {"search": self.search.get(text, [])[:limit]}


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def kb() -> FakeKnowledgeBase:
    """Knowledge base with a few well-known properties."""
    fake = FakeKnowledgeBase()
    fake.properties.update({
        "P31": ("wikibase-item", "instance of", "that class of which this subject is a particular example and member"),
        "P50": ("wikibase-item", "author", "main creator(s) of a written work"),
        "P123": ("wikibase-item", "publisher", "organization or person responsible for publishing"),
        "P214": ("external-id", "VIAF ID", "identifier for the Virtual International Authority File database"),
        "P577": ("time", "publication date", "date or point in time when a work was first published"),
    })
    fake.labels.update({"Q5": "human", "Q43229": "organization", "Q2085381": "publisher"})
    return fake


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
