"""Tests for the GraphQL transport and token storage."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from conftest import FakeClock, FakeMapper, FakeSleep, ListSink
from crowdcrawl.core.config import TransportConfig
from crowdcrawl.core.fetch import RequestThrottle
from crowdcrawl.core.orchestrator import CrawlOrchestrator, StopReason
from crowdcrawl.core.transport import ErrorKind, GraphQLTransport, TokenStore, TransportError, clean_token

ENDPOINT = "https://api.example.test/graph"


async def _no_wait(seconds: float) -> None:
    return None


def make_transport(handler, token_store=None) -> GraphQLTransport:
    return GraphQLTransport(
        ENDPOINT,
        timeout=5,
        token_store=token_store or TokenStore(),
        throttle=RequestThrottle(min_interval=0, sleep=_no_wait),
        user_agent="crowdcrawl-tests",
        client_id="client-123",
        http_transport=httpx.MockTransport(handler),
    )


def run(transport: GraphQLTransport, coro_fn):
    async def scenario():
        async with transport:
            return await coro_fn(transport)

    return asyncio.run(scenario())


def listing_response(cursor="c2", has_next=True):
    return {
        "data": {
            "projects": {
                "edges": [
                    {"cursor": "x", "node": {"id": "1", "slug": "one"}},
                    {"cursor": "y", "node": {"id": "2", "slug": "two"}},
                ],
                "pageInfo": {"endCursor": cursor, "hasNextPage": has_next},
                "totalCount": 1234,
            }
        }
    }


def test_fetch_page_parses_connection():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["headers"] = request.headers
        return httpx.Response(200, json=listing_response())

    page = run(make_transport(handler), lambda t: t.fetch_page("c1", 2))

    assert [item["slug"] for item in page.items] == ["one", "two"]
    assert page.next_cursor == "c2"
    assert page.has_next is True
    assert page.total_count == 1234
    assert seen["body"]["operationName"] == "FetchProjects"
    assert seen["body"]["variables"] == {"sort": "MAGIC", "first": 2, "cursor": "c1"}
    assert seen["headers"]["User-Agent"] == "crowdcrawl-tests"
    assert seen["headers"]["X-Kickstarter-Client"] == "client-123"
    assert "X-Auth" not in seen["headers"]


def test_first_page_sends_no_cursor():
    seen = {}

    def handler(request):
        seen["variables"] = json.loads(request.content)["variables"]
        return httpx.Response(200, json=listing_response(cursor=None, has_next=False))

    page = run(make_transport(handler), lambda t: t.fetch_page(None, 15))

    assert "cursor" not in seen["variables"]
    assert page.next_cursor is None
    assert page.has_next is False


def test_token_sent_in_auth_header():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("X-Auth")
        return httpx.Response(200, json={"data": {"project": {"slug": "one", "story": "s"}}})

    tokens = TokenStore()
    tokens.set("token abc123")
    detail = run(make_transport(handler, tokens), lambda t: t.fetch_details("one"))

    assert seen["auth"] == "token abc123"
    assert detail == {"slug": "one", "story": "s"}


@pytest.mark.parametrize(
    "status, kind",
    [
        (401, ErrorKind.AUTH),
        (403, ErrorKind.AUTH),
        (429, ErrorKind.RATE_LIMIT),
        (404, ErrorKind.OTHER),
        (500, ErrorKind.OTHER),
        (503, ErrorKind.OTHER),
    ],
)
def test_status_codes_map_to_error_kinds(status, kind):
    def handler(request):
        return httpx.Response(status, json={"error": "nope"})

    with pytest.raises(TransportError) as exc_info:
        run(make_transport(handler), lambda t: t.fetch_page(None, 15))

    assert exc_info.value.kind is kind
    assert exc_info.value.status_code == status


def test_rate_limit_carries_retry_after():
    def handler(request):
        return httpx.Response(429, headers={"Retry-After": "120"})

    with pytest.raises(TransportError) as exc_info:
        run(make_transport(handler), lambda t: t.fetch_details("one"))

    assert exc_info.value.kind is ErrorKind.RATE_LIMIT
    assert exc_info.value.retry_after == 120.0


def test_unauthorized_drops_cached_token(state_repo):
    tokens = TokenStore(state_repo)
    tokens.set("stale")

    def handler(request):
        return httpx.Response(401)

    with pytest.raises(TransportError):
        run(make_transport(handler, tokens), lambda t: t.fetch_page(None, 15))

    assert tokens._cached is None
    assert tokens.get() == "stale"


def test_graphql_errors_without_data_are_other():
    def handler(request):
        return httpx.Response(200, json={"errors": [{"message": "Something broke"}]})

    with pytest.raises(TransportError) as exc_info:
        run(make_transport(handler), lambda t: t.fetch_page(None, 15))

    assert exc_info.value.kind is ErrorKind.OTHER
    assert "Something broke" in str(exc_info.value)


def test_non_json_body_is_other():
    def handler(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    with pytest.raises(TransportError) as exc_info:
        run(make_transport(handler), lambda t: t.fetch_page(None, 15))

    assert exc_info.value.kind is ErrorKind.OTHER


def test_timeout_is_other():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(TransportError) as exc_info:
        run(make_transport(handler), lambda t: t.fetch_page(None, 15))

    assert exc_info.value.kind is ErrorKind.OTHER
    assert isinstance(exc_info.value.cause, httpx.TimeoutException)


def test_connection_error_is_other():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransportError) as exc_info:
        run(make_transport(handler), lambda t: t.fetch_details("one"))

    assert exc_info.value.kind is ErrorKind.OTHER


def test_missing_project_is_other():
    def handler(request):
        return httpx.Response(200, json={"data": {"project": None}})

    with pytest.raises(TransportError) as exc_info:
        run(make_transport(handler), lambda t: t.fetch_details("ghost"))

    assert exc_info.value.kind is ErrorKind.OTHER


def test_from_config():
    config = TransportConfig(endpoint=ENDPOINT, timeout_seconds=30, min_request_interval_seconds=3)

    transport = GraphQLTransport.from_config(config)

    assert transport.endpoint == ENDPOINT
    assert transport.timeout == 30
    assert transport.throttle.min_interval == 3
    assert transport.sort == "MAGIC"


def test_clean_token():
    assert clean_token("  token abc ") == "abc"
    assert clean_token("Token xyz") == "xyz"
    assert clean_token("plain") == "plain"


def test_token_store_persists(state_repo):
    TokenStore(state_repo).set("token persisted")

    fresh = TokenStore(state_repo)
    assert fresh.get() == "persisted"
    assert fresh.has_token()

    fresh.clear()
    assert TokenStore(state_repo).get() is None


def test_token_store_rejects_empty():
    with pytest.raises(ValueError):
        TokenStore().set("   ")


@pytest.mark.parametrize(
    "payload",
    [
        {"data": {"projects": None}, "errors": [{"message": "Something broke"}]},
        {"data": {"projects": []}},
        {"data": {"projects": {"edges": [], "pageInfo": ["not", "a", "dict"]}}},
        {"data": {"projects": {"edges": [{"cursor": "x"}], "pageInfo": {}}}},
        {"data": ["unexpected"]},
    ],
)
def test_malformed_listing_is_other(payload):
    def handler(request):
        return httpx.Response(200, json=payload)

    with pytest.raises(TransportError) as exc_info:
        run(make_transport(handler), lambda t: t.fetch_page(None, 15))

    assert exc_info.value.kind is ErrorKind.OTHER


def test_partial_error_message_is_kept():
    def handler(request):
        return httpx.Response(200, json={"data": {"projects": None}, "errors": [{"message": "boom"}]})

    with pytest.raises(TransportError) as exc_info:
        run(make_transport(handler), lambda t: t.fetch_page(None, 15))

    assert "boom" in str(exc_info.value)


@pytest.mark.parametrize("payload", [{"data": ["unexpected"]}, {"data": {"project": "slug"}}])
def test_malformed_detail_is_other(payload):
    def handler(request):
        return httpx.Response(200, json=payload)

    with pytest.raises(TransportError) as exc_info:
        run(make_transport(handler), lambda t: t.fetch_details("one"))

    assert exc_info.value.kind is ErrorKind.OTHER


def test_crawl_retries_page_after_partial_error(cursor_store):
    responses = [
        {"data": {"projects": None}, "errors": [{"message": "boom"}]},
        listing_response(cursor=None, has_next=False),
    ]

    def handler(request):
        body = json.loads(request.content)
        if body["operationName"] == "FetchProjects":
            return httpx.Response(200, json=responses.pop(0))
        return httpx.Response(200, json={"data": {"project": {"slug": body["variables"]["slug"], "story": "s"}}})

    sink = ListSink()
    orchestrator = CrawlOrchestrator(
        make_transport(handler),
        FakeMapper(),
        sink,
        cursor_store,
        sleep=FakeSleep(),
        clock=FakeClock(),
    )

    stats = run(orchestrator.transport, lambda t: orchestrator.start(15, 0, 1.0))

    assert stats.page_failures == 1
    assert stats.pages_fetched == 1
    assert stats.stop_reason is StopReason.EXHAUSTED
    assert sink.slugs == ["one", "two"]
