"""Wikidata HTTP Client.

Low-level aiohttp client for the knowledge-base endpoints:
- Entity endpoint (wbgetentities): datatype, labels, descriptions
- Constraint statements (wbgetclaims): property constraint claims
- Reconciliation service (primary and fallback, identical contract)
- Generic entity search (wbsearchentities)

Handles retries, a per-endpoint circuit breaker and error translation.
Every method returns the raw decoded JSON; validation into typed models is
done by the callers through connectors.wikidata.wd_models.
"""

from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple
from dataclasses import dataclass, field
import asyncio
import json
import random
import time

import aiohttp

from core.config import Settings, get_settings
from core.errors import FormatError, TransportError
from core.observability.logging import get_logger
from core.observability.metrics import get_metrics

logger = get_logger(__name__)


PRIMARY = "primary"
FALLBACK = "fallback"

DEFAULT_ENTITY_PROPS = ("datatype", "labels", "descriptions")


class KnowledgeBaseClient(Protocol):
    """Protocol for knowledge-base access.

    WikidataClient implements it; tests substitute in-memory fakes.
    """

    async def get_entities(
        self,
        ids: Sequence[str],
        props: Sequence[str] = DEFAULT_ENTITY_PROPS,
        languages: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """Return the raw wbgetentities payload ({"entities": {...}})."""
        ...

    async def get_claims(self, entity_id: str, property_id: str) -> Dict[str, Any]:
        """Return the raw wbgetclaims payload ({"claims": {...}})."""
        ...

    async def reconcile(
        self,
        endpoint: str,
        query: str,
        types: Sequence[str],
        properties: Sequence[Dict[str, str]],
    ) -> Dict[str, Any]:
        """POST a single reconciliation query to the primary or fallback endpoint."""
        ...

    async def search_entities(self, text: str, limit: int = 10) -> Dict[str, Any]:
        """Return the raw wbsearchentities payload ({"search": [...]})."""
        ...


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    jitter: float = 1.0  # seconds, upper bound of random extra delay
    retry_on_status: Tuple[int, ...] = (429, 500, 502, 503, 504)

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for retry attempt (exponential backoff with jitter)."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return min(delay, self.max_delay)


@dataclass
class CircuitBreaker:
    """Fails fast after repeated failures of one endpoint.

    Opens after max_failures consecutive failures and closes again once
    reset_seconds have passed since the last failure.
    """
    max_failures: int = 5
    reset_seconds: float = 60.0
    failures: int = 0
    last_failure: float = 0.0

    def is_open(self) -> bool:
        if self.failures < self.max_failures:
            return False
        if time.monotonic() - self.last_failure > self.reset_seconds:
            self.failures = 0
            return False
        return True

    def record_failure(self) -> None:
        self.failures += 1
        self.last_failure = time.monotonic()

    def record_success(self) -> None:
        self.failures = 0


@dataclass
class WikidataApiConfig:
    """Configuration for the Wikidata client."""
    api_url: str = "https://www.wikidata.org/w/api.php"
    reconcile_urls: Dict[str, str] = field(default_factory=lambda: {
        PRIMARY: "https://wikidata.reconci.link/en/api",
        FALLBACK: "https://tools.wmflabs.org/openrefine-wikidata/en/api",
    })
    language: str = "en"
    timeout_seconds: float = 30.0
    user_agent: str = "kb-mapping-tool/1.0 (museum metadata mapping)"
    retry_config: RetryConfig = field(default_factory=RetryConfig)
    search_retry_config: RetryConfig = field(
        default_factory=lambda: RetryConfig(max_retries=2, base_delay=0.5, jitter=0.5)
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> "WikidataApiConfig":
        return cls(
            api_url=settings.wikibase_api_url,
            reconcile_urls={
                PRIMARY: settings.reconcile_primary_url,
                FALLBACK: settings.reconcile_fallback_url,
            },
            language=settings.language,
            timeout_seconds=settings.http_timeout_seconds,
        )


class WikidataClient:
    """HTTP client for Wikidata and its reconciliation service.

    Usage:
        async with WikidataClient() as client:
            payload = await client.get_entities(["P31", "P50"])
    """

    def __init__(self, api_config: Optional[WikidataApiConfig] = None):
        self.api_config = api_config or WikidataApiConfig.from_settings(get_settings())
        self._session: Optional[aiohttp.ClientSession] = None
        self._breakers: Dict[str, CircuitBreaker] = {}

    async def connect(self) -> None:
        """Initialize HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.api_config.user_agent, "Accept": "application/json"},
            )

    async def disconnect(self) -> None:
        """Close HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "WikidataClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    def breaker(self, endpoint: str) -> CircuitBreaker:
        if endpoint not in self._breakers:
            self._breakers[endpoint] = CircuitBreaker()
        return self._breakers[endpoint]

    async def _request(
        self,
        endpoint: str,
        method: str,
        url: str,
        params: Optional[Dict[str, str]] = None,
        data: Optional[Dict[str, str]] = None,
        retry_config: Optional[RetryConfig] = None,
    ) -> Any:
        """Make a request with retries and circuit breaking.

        Args:
            endpoint: Endpoint kind used for metrics and circuit breaking
            method: HTTP method
            url: Full URL
            params: Query parameters
            data: Form body
            retry_config: Override retry behavior

        Returns:
            Decoded JSON body

        Raises:
            TransportError: Network failure, non-2xx status or open circuit
            FormatError: Body is not valid UTF-8 JSON
        """
        if not self._session:
            raise TransportError("Not connected. Call connect() first.", endpoint=endpoint)

        breaker = self.breaker(endpoint)
        if breaker.is_open():
            raise TransportError(
                f"{endpoint} endpoint temporarily disabled after repeated failures",
                endpoint=endpoint,
            )

        retry_config = retry_config or self.api_config.retry_config
        metrics = get_metrics()
        timeout = aiohttp.ClientTimeout(total=self.api_config.timeout_seconds)

        for attempt in range(retry_config.max_retries + 1):
            metrics.record_remote_call(endpoint)
            try:
                async with self._session.request(
                    method,
                    url,
                    params=params,
                    data=data,
                    timeout=timeout,
                ) as response:
                    body = await response.read()

                    if response.status < 400:
                        breaker.record_success()
                        try:
                            return json.loads(body.decode("utf-8")) if body else {}
                        except (UnicodeDecodeError, ValueError):
                            raise FormatError("Response body is not valid UTF-8 JSON", endpoint)

                    error = TransportError(
                        f"HTTP {response.status} from {endpoint}: {response.reason}",
                        response.status,
                        endpoint,
                    )
            except aiohttp.ClientError as e:
                error = TransportError(f"{type(e).__name__}: {e}", 0, endpoint)
            except asyncio.TimeoutError:
                error = TransportError("Request timeout", 0, endpoint)

            metrics.record_remote_failure(endpoint)
            retryable = error.status_code == 0 or error.status_code in retry_config.retry_on_status
            if retryable and attempt < retry_config.max_retries:
                delay = retry_config.get_delay(attempt)
                metrics.record_remote_retry(endpoint)
                logger.warning(
                    f"{endpoint} request failed ({error.message}), "
                    f"retrying in {delay:.1f}s (attempt {attempt + 1}/{retry_config.max_retries})"
                )
                await asyncio.sleep(delay)
                continue

            breaker.record_failure()
            raise error

        raise TransportError(f"{endpoint} request failed", endpoint=endpoint)

    async def get_entities(
        self,
        ids: Sequence[str],
        props: Sequence[str] = DEFAULT_ENTITY_PROPS,
        languages: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        params = {
            "action": "wbgetentities",
            "ids": "|".join(ids),
            "props": "|".join(props),
            "languages": "|".join(languages or [self.api_config.language]),
            "format": "json",
        }
        return await self._request("entities", "GET", self.api_config.api_url, params=params)

    async def get_claims(self, entity_id: str, property_id: str) -> Dict[str, Any]:
        params = {
            "action": "wbgetclaims",
            "entity": entity_id,
            "property": property_id,
            "format": "json",
        }
        return await self._request("claims", "GET", self.api_config.api_url, params=params)

    async def reconcile(
        self,
        endpoint: str,
        query: str,
        types: Sequence[str],
        properties: Sequence[Dict[str, str]],
    ) -> Dict[str, Any]:
        url = self.api_config.reconcile_urls.get(endpoint)
        if not url:
            raise TransportError(f"Unknown reconciliation endpoint: {endpoint}", endpoint=endpoint)

        queries = {
            "q1": {
                "query": query,
                "type": list(types),
                "properties": list(properties),
            }
        }
        data = {"queries": json.dumps(queries)}
        return await self._request(f"reconcile_{endpoint}", "POST", url, data=data)

    async def search_entities(self, text: str, limit: int = 10) -> Dict[str, Any]:
        params = {
            "action": "wbsearchentities",
            "search": text,
            "language": self.api_config.language,
            "limit": str(limit),
            "format": "json",
        }
        return await self._request(
            "search",
            "GET",
            self.api_config.api_url,
            params=params,
            retry_config=self.api_config.search_retry_config,
        )
