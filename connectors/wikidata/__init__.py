"""Wikidata Connector Package.

aiohttp transport for the knowledge-base endpoints plus the wire models used
to validate their payloads.
"""

from connectors.wikidata.wd_client import (
    WikidataClient,
    WikidataApiConfig,
    KnowledgeBaseClient,
    RetryConfig,
    CircuitBreaker,
    PRIMARY,
    FALLBACK,
)
from connectors.wikidata.wd_models import (
    WDEntity,
    WDClaim,
    WDSnak,
    WDReconResult,
    WDSearchHit,
    parse_entities,
    parse_claims,
    parse_reconciliation,
    parse_search,
)

__all__ = [
    # Client
    "WikidataClient",
    "WikidataApiConfig",
    "KnowledgeBaseClient",
    "RetryConfig",
    "CircuitBreaker",
    "PRIMARY",
    "FALLBACK",
    # Models
    "WDEntity",
    "WDClaim",
    "WDSnak",
    "WDReconResult",
    "WDSearchHit",
    "parse_entities",
    "parse_claims",
    "parse_reconciliation",
    "parse_search",
]
