"""
GraphQL transport implementation using httpx.

Provides async project listing and detail calls with:
- A minimum interval between requests
- Token authentication via the X-Auth header
- Status code classification into ErrorKind tags
- An explicit timeout on every call
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from .auth import TokenStore
from .base import ErrorKind, Page, Transport, TransportError
from .queries import (
    FETCH_PROJECT_OPERATION,
    FETCH_PROJECT_QUERY,
    FETCH_PROJECTS_OPERATION,
    FETCH_PROJECTS_QUERY,
)
from crowdcrawl.core.fetch.throttling import RequestThrottle

if TYPE_CHECKING:
    from crowdcrawl.core.config.models import TransportConfig

logger = logging.getLogger(__name__)

# Status codes meaning the credentials were refused
AUTH_STATUS_CODES = {401, 403}

RATE_LIMIT_STATUS = 429


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_suffix(body: Any) -> str:
    """Render the GraphQL ``errors`` list of a response body for messages."""
    errors = body.get("errors") if isinstance(body, dict) else None
    if not isinstance(errors, list):
        return ""
    messages = "; ".join(str(err.get("message", err)) for err in errors if isinstance(err, dict))
    return f" ({messages})" if messages else ""


class GraphQLTransport(Transport):
    """Transport for a GraphQL project API.

    Features:
    - Persistent connection pooling
    - Request spacing through RequestThrottle
    - Auth, rate-limit and generic failures tagged for the orchestrator
    """

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 60.0,
        token_store: TokenStore | None = None,
        throttle: RequestThrottle | None = None,
        user_agent: str | None = None,
        client_id: str | None = None,
        sort: str = "MAGIC",
        extra_headers: dict[str, str] | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the GraphQL transport.

        Args:
            endpoint: GraphQL endpoint URL
            timeout: Upper bound for each call in seconds
            token_store: Source of the auth token
            throttle: Request spacing (default: 2 seconds)
            user_agent: User-Agent header value
            client_id: Client identification header value
            sort: Listing sort order
            extra_headers: Additional headers for every request
            http_transport: Custom httpx transport (tests use MockTransport)
        """
        self.endpoint = endpoint
        self.timeout = timeout
        self.tokens = token_store or TokenStore()
        self.throttle = throttle or RequestThrottle(min_interval=2.0)
        self.sort = sort

        self.default_headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Accept-Language": "en",
            **(extra_headers or {}),
        }
        if user_agent:
            self.default_headers["User-Agent"] = user_agent
        if client_id:
            self.default_headers["X-Kickstarter-Client"] = client_id

        self._http_transport = http_transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls,
        config: "TransportConfig",
        token_store: TokenStore | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> "GraphQLTransport":
        """Build a transport from the transport section of app.yaml."""
        return cls(
            config.endpoint,
            timeout=config.timeout_seconds,
            token_store=token_store,
            throttle=RequestThrottle(min_interval=config.min_request_interval_seconds),
            user_agent=config.user_agent,
            client_id=config.client_id,
            sort=config.sort.value,
            extra_headers=config.extra_headers,
            http_transport=http_transport,
        )

    @property
    def name(self) -> str:
        return "graphql"

    def set_token(self, token: str) -> None:
        self.tokens.set(token)

    def _ensure_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers=self.default_headers,
                transport=self._http_transport,
            )
        return self._client

    def _auth_headers(self) -> dict[str, str]:
        token = self.tokens.get()
        if token:
            return {"X-Auth": f"token {token}"}
        return {}

    def _check_status(self, response: httpx.Response, operation: str) -> None:
        """Raise a tagged TransportError for non-2xx responses."""
        status = response.status_code
        if 200 <= status < 300:
            return

        if status in AUTH_STATUS_CODES:
            if status == 401:
                self.tokens.clear_cache()
            raise TransportError(
                ErrorKind.AUTH,
                f"{operation}: credentials rejected ({status})",
                status_code=status,
            )

        if status == RATE_LIMIT_STATUS:
            raise TransportError(
                ErrorKind.RATE_LIMIT,
                f"{operation}: rate limit exceeded",
                status_code=status,
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )

        raise TransportError(
            ErrorKind.OTHER,
            f"{operation}: HTTP {status}",
            status_code=status,
        )

    async def _post(
        self, operation: str, query: str, variables: dict[str, Any]
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Send one GraphQL operation and return its ``data`` object and the full body."""
        client = self._ensure_client()
        payload = {
            "operationName": operation,
            "variables": variables,
            "query": query,
        }

        await self.throttle.acquire()
        logger.debug(f"POST {operation} variables={variables}")

        try:
            response = await client.post(
                self.endpoint,
                json=payload,
                headers=self._auth_headers(),
            )
        except httpx.TimeoutException as e:
            raise TransportError(
                ErrorKind.OTHER,
                f"{operation}: timed out after {self.timeout}s",
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(
                ErrorKind.OTHER,
                f"{operation}: network error: {e}",
                cause=e,
            ) from e

        self._check_status(response, operation)

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(
                ErrorKind.OTHER,
                f"{operation}: response is not JSON",
                status_code=response.status_code,
                cause=e,
            ) from e

        data = body.get("data") if isinstance(body, dict) else None
        if not data or not isinstance(data, dict):
            raise TransportError(
                ErrorKind.OTHER,
                f"{operation}: no data in response" + _error_suffix(body),
                status_code=response.status_code,
            )
        return data, body

    async def fetch_page(self, cursor: str | None, limit: int) -> Page:
        """Fetch up to ``limit`` projects after ``cursor``."""
        variables: dict[str, Any] = {"sort": self.sort, "first": limit}
        if cursor:
            variables["cursor"] = cursor

        data, body = await self._post(FETCH_PROJECTS_OPERATION, FETCH_PROJECTS_QUERY, variables)

        # Partial errors come back as {"data": {"projects": null}, "errors": [...]}
        connection = data.get("projects")
        page_info = (connection.get("pageInfo") or {}) if isinstance(connection, dict) else None
        if not isinstance(page_info, dict):
            raise TransportError(
                ErrorKind.OTHER,
                f"{FETCH_PROJECTS_OPERATION}: unexpected payload shape" + _error_suffix(body),
            )

        try:
            items = [edge["node"] for edge in connection.get("edges") or []]
        except (KeyError, TypeError) as e:
            raise TransportError(
                ErrorKind.OTHER,
                f"{FETCH_PROJECTS_OPERATION}: unexpected payload shape",
                cause=e,
            ) from e

        total_count = connection.get("totalCount")
        return Page(
            items=items,
            next_cursor=page_info.get("endCursor"),
            has_next=bool(page_info.get("hasNextPage")),
            total_count=total_count if isinstance(total_count, int) else None,
        )

    async def fetch_details(self, item_id: str) -> dict[str, Any]:
        """Fetch the full project identified by its slug."""
        data, body = await self._post(FETCH_PROJECT_OPERATION, FETCH_PROJECT_QUERY, {"slug": item_id})
        project = data.get("project")
        if not project or not isinstance(project, dict):
            raise TransportError(
                ErrorKind.OTHER,
                f"{FETCH_PROJECT_OPERATION}: project not found: {item_id}" + _error_suffix(body),
            )
        return project

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
