"""
Wikidata Connector Tests

Validates:
1. Retries on retryable statuses, immediate failure otherwise
2. Error translation (TransportError, FormatError)
3. Circuit breaker and backoff configuration
4. Wire model validation at the connector boundary
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from connectors.wikidata import (
    FALLBACK,
    PRIMARY,
    CircuitBreaker,
    RetryConfig,
    WikidataApiConfig,
    WikidataClient,
    parse_claims,
    parse_entities,
    parse_reconciliation,
    parse_search,
)
from core.config import Settings
from core.errors import FormatError, TransportError


def fake_response(status=200, body="{}", reason="OK"):
    response = MagicMock()
    response.status = status
    response.reason = reason
    response.read = AsyncMock(return_value=body.encode("utf-8") if isinstance(body, str) else body)
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return ctx


@pytest.fixture
def client():
    config = WikidataApiConfig(
        retry_config=RetryConfig(max_retries=2, base_delay=0, jitter=0),
        search_retry_config=RetryConfig(max_retries=1, base_delay=0, jitter=0),
    )
    c = WikidataClient(config)
    c._session = MagicMock()
    return c


class TestRequests:
    """HTTP behavior of the client."""

    def test_success_returns_decoded_json(self, client):
        client._session.request = MagicMock(return_value=fake_response(body='{"entities": {}}'))

        payload = asyncio.run(client.get_entities(["P31", "P50"]))

        assert payload == {"entities": {}}
        _, kwargs = client._session.request.call_args
        assert kwargs["params"]["ids"] == "P31|P50"
        assert kwargs["params"]["props"] == "datatype|labels|descriptions"
        assert kwargs["params"]["languages"] == "en"

    def test_retryable_status_is_retried(self, client):
        client._session.request = MagicMock(side_effect=[
            fake_response(503, reason="Service Unavailable"),
            fake_response(body='{"claims": {}}'),
        ])

        payload = asyncio.run(client.get_claims("P50", "P2302"))

        assert payload == {"claims": {}}
        assert client._session.request.call_count == 2

    def test_client_status_is_not_retried(self, client):
        client._session.request = MagicMock(return_value=fake_response(404, reason="Not Found"))

        with pytest.raises(TransportError) as exc_info:
            asyncio.run(client.get_entities(["P31"]))

        assert exc_info.value.status_code == 404
        assert exc_info.value.endpoint == "entities"
        assert client._session.request.call_count == 1

    def test_retries_are_bounded(self, client):
        client._session.request = MagicMock(side_effect=lambda *a, **kw: fake_response(502, reason="Bad Gateway"))

        with pytest.raises(TransportError):
            asyncio.run(client.get_entities(["P31"]))

        assert client._session.request.call_count == 3

    def test_connection_error_becomes_transport_error(self, client):
        client._session.request = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))

        with pytest.raises(TransportError) as exc_info:
            asyncio.run(client.search_entities("Ada"))

        assert exc_info.value.status_code == 0
        assert client._session.request.call_count == 2

    def test_invalid_json_is_format_error(self, client):
        client._session.request = MagicMock(return_value=fake_response(body="<html>"))

        with pytest.raises(FormatError):
            asyncio.run(client.get_entities(["P31"]))
        assert client._session.request.call_count == 1

    def test_invalid_utf8_is_format_error(self, client):
        client._session.request = MagicMock(return_value=fake_response(body=b'{"entities": {"P31": {"id": "P31\xff"}}}'))

        with pytest.raises(FormatError):
            asyncio.run(client.get_entities(["P31"]))
        assert client._session.request.call_count == 1

    def test_not_connected(self):
        with pytest.raises(TransportError, match="Not connected"):
            asyncio.run(WikidataClient(WikidataApiConfig()).get_entities(["P31"]))

    def test_reconcile_posts_single_query(self, client):
        client._session.request = MagicMock(return_value=fake_response(body='{"q1": {"result": []}}'))

        asyncio.run(client.reconcile(FALLBACK, "Ada", ["Q5"], [{"pid": "P31", "v": "Q5"}]))

        args, kwargs = client._session.request.call_args
        assert args == ("POST", client.api_config.reconcile_urls[FALLBACK])
        assert json.loads(kwargs["data"]["queries"]) == {
            "q1": {"query": "Ada", "type": ["Q5"], "properties": [{"pid": "P31", "v": "Q5"}]},
        }

    def test_unknown_reconcile_endpoint(self, client):
        with pytest.raises(TransportError):
            asyncio.run(client.reconcile("tertiary", "Ada", [], []))

    def test_open_circuit_fails_fast(self, client):
        breaker = client.breaker("reconcile_primary")
        for _ in range(breaker.max_failures):
            breaker.record_failure()
        client._session.request = MagicMock()

        with pytest.raises(TransportError, match="temporarily disabled"):
            asyncio.run(client.reconcile(PRIMARY, "Ada", [], []))
        client._session.request.assert_not_called()


class TestResilienceConfig:
    """Backoff and circuit breaker."""

    def test_delay_grows_and_is_capped(self):
        config = RetryConfig(base_delay=1, exponential_base=2, max_delay=5, jitter=0)
        assert [config.get_delay(i) for i in range(4)] == [1, 2, 4, 5]

    def test_breaker_resets_after_quiet_period(self):
        breaker = CircuitBreaker(max_failures=2, reset_seconds=60)
        breaker.record_failure()
        assert not breaker.is_open()
        breaker.record_failure()
        assert breaker.is_open()

        breaker.last_failure -= 61
        assert not breaker.is_open()
        assert breaker.failures == 0

    def test_success_closes_breaker(self):
        breaker = CircuitBreaker(max_failures=1)
        breaker.record_failure()
        breaker.record_success()
        assert not breaker.is_open()

    def test_config_from_settings(self):
        settings = Settings(reconcile_primary_url="http://recon.local/api", language="fr", http_timeout_seconds=5)
        config = WikidataApiConfig.from_settings(settings)

        assert config.reconcile_urls[PRIMARY] == "http://recon.local/api"
        assert config.language == "fr"
        assert config.timeout_seconds == 5


class TestWireModels:
    """Payload validation at the boundary."""

    def test_entities(self):
        entities = parse_entities({"entities": {
            "P31": {"id": "P31", "datatype": "wikibase-item", "labels": {"en": {"language": "en", "value": "instance of"}}},
            "P0": {"id": "P0", "missing": ""},
        }})

        assert entities["P31"].label("en") == "instance of"
        assert entities["P31"].description("en") is None
        assert entities["P0"].is_missing

    def test_entities_without_map(self):
        with pytest.raises(FormatError):
            parse_entities({"error": {"code": "no-such-entity"}})

    def test_claims_for_missing_property(self):
        assert parse_claims({"claims": {}}, "P2302") == []

    def test_reconciliation(self):
        results = parse_reconciliation({"q1": {"result": [
            {"id": "Q1", "name": "a", "score": "12.5", "type": [{"id": "Q5", "name": "human"}, "Q215627"]},
        ]}})

        assert results[0].numeric_score() == 12.5
        assert results[0].type_ids() == ["Q5", "Q215627"]

    def test_reconciliation_without_query_entry(self):
        with pytest.raises(FormatError):
            parse_reconciliation({"q2": {"result": []}})

    def test_reconciliation_with_bad_result(self):
        with pytest.raises(FormatError):
            parse_reconciliation({"q1": {"result": [{"name": "no id"}]}})

    def test_search(self):
        hits = parse_search({"search": [{"id": "Q1", "label": "universe", "extra": True}]})
        assert hits[0].label == "universe"
        assert parse_search({}) == []


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
