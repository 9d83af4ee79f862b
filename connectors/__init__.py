"""Knowledge-base connectors.

Transport for the external services the mapping tool depends on. The
property cache and the matching engine depend ONLY on the
KnowledgeBaseClient protocol; concrete clients live in subpackages.
"""

from connectors.wikidata import KnowledgeBaseClient, WikidataClient

__all__ = [
    "KnowledgeBaseClient",
    "WikidataClient",
]
