# ordercache/services/http_gateway.py

"""HTTP adapters for the remote order and contact query services."""

import asyncio
import logging
import time
from typing import Any, cast

from curl_cffi import requests as curl_requests

from ordercache.config.settings import Settings
from ordercache.models.search import GatewayPage, GatewayQuery
from ordercache.services.gateway import GatewayError, RateLimitedError


class HttpClient:
    """JSON-over-HTTP client with a consecutive-failure circuit breaker.

    Each call is a single attempt; timeouts and retries belong to
    :class:`~ordercache.services.gateway.ResilientGateway`.
    """

    def __init__(
        self,
        name: str,
        base_url: str | None = None,
        api_key: str | None = None,
    ) -> None:
        self.name = name
        self.logger = logging.getLogger(f"ordercache.http.{name}")
        self.settings = Settings()
        self.base_url = (base_url or self.settings.API_BASE_URL).rstrip("/")
        self.session = curl_requests.Session(
            impersonate=self.settings.IMPERSONATE_BROWSER
        )
        self._headers: dict[str, str] = dict(self.settings.DEFAULT_HEADERS)
        key = self.settings.API_KEY if api_key is None else api_key
        if key:
            self._headers["Authorization"] = key
        self._consecutive_failures: int = 0
        self._circuit_open: bool = False
        self._circuit_opened_at: float = 0.0

    def _check_circuit(self) -> bool:
        """Return True if the circuit breaker blocks this request.

        After CIRCUIT_BREAKER_COOLDOWN seconds the breaker enters
        a half-open state, allowing a single probe request through.
        """
        if not self._circuit_open:
            return False
        elapsed = time.time() - self._circuit_opened_at
        if elapsed >= self.settings.CIRCUIT_BREAKER_COOLDOWN:
            self.logger.info(
                "[%s] Circuit breaker half-open after %.0fs",
                self.name,
                elapsed,
            )
            self._circuit_open = False
            return False
        return True

    def _record_success(self) -> None:
        self._consecutive_failures = 0
        self._circuit_open = False
        self._circuit_opened_at = 0.0

    def _record_failure(self) -> None:
        self._consecutive_failures += 1
        threshold = self.settings.CIRCUIT_BREAKER_THRESHOLD
        if self._consecutive_failures >= threshold:
            self._circuit_open = True
            self._circuit_opened_at = time.time()
            self.logger.error(
                "[%s] Circuit breaker opened after %d "
                "consecutive failures",
                self.name,
                self._consecutive_failures,
            )

    def post_json(
        self, path: str, payload: dict[str, Any],
    ) -> dict[str, Any]:
        """POST *payload* and return the decoded JSON body.

        Raises:
            RateLimitedError: on HTTP 429.
            GatewayError: on any other failure or an open circuit.
        """
        if self._check_circuit():
            msg = f"{self.name} circuit open, request skipped"
            raise GatewayError(msg)

        url = f"{self.base_url}{path}"
        try:
            resp = self.session.post(
                url,
                headers=self._headers,
                json=payload,
                timeout=self.settings.REQUEST_TIMEOUT,
            )
        except Exception as exc:
            self._record_failure()
            self.logger.warning(
                "[%s] Request error: %s", self.name, exc, exc_info=True,
            )
            msg = f"{self.name} request failed: {exc}"
            raise GatewayError(msg) from exc

        if resp.status_code == 429:
            # Quota errors are not connectivity failures
            self.logger.warning("[%s] HTTP 429 rate limited", self.name)
            msg = f"{self.name} rate limited"
            raise RateLimitedError(msg)
        if resp.status_code != 200:
            self._record_failure()
            self.logger.warning(
                "[%s] HTTP %d from %s", self.name, resp.status_code, url,
            )
            msg = f"{self.name} returned HTTP {resp.status_code}"
            raise GatewayError(msg)

        try:
            body: Any = resp.json()
        except ValueError as exc:
            self._record_failure()
            msg = f"{self.name} returned invalid JSON"
            raise GatewayError(msg) from exc

        self._record_success()
        if not isinstance(body, dict):
            return {}
        return cast(dict[str, Any], body)


class HttpOrderGateway:
    """Order search over HTTP, returning raw order payloads."""

    def __init__(self, client: HttpClient | None = None) -> None:
        self.client = client or HttpClient("orders")

    async def query(self, request: GatewayQuery) -> GatewayPage:
        """Fetch one page of orders in a worker thread."""
        body = await asyncio.to_thread(
            self.client.post_json,
            Settings.ORDERS_QUERY_PATH,
            request.to_payload(),
        )
        return parse_order_page(body)


class HttpIdentityResolver:
    """Resolve names to contact ids through the contacts service."""

    def __init__(self, client: HttpClient | None = None) -> None:
        self.client = client or HttpClient("contacts")

    async def resolve_by_name(self, text: str) -> list[str]:
        """Return ids of contacts whose first or last name starts with *text*."""
        term = text.strip()
        payload = {
            "query": {
                "filter": {
                    "$or": [
                        {"info.name.first": {"$startsWith": term}},
                        {"info.name.last": {"$startsWith": term}},
                    ]
                },
                "paging": {"limit": 50},
            }
        }
        body = await asyncio.to_thread(
            self.client.post_json,
            Settings.CONTACTS_QUERY_PATH,
            payload,
        )
        contacts = body.get("contacts")
        if not isinstance(contacts, list):
            return []
        ids: list[str] = []
        for contact in cast(list[Any], contacts):
            if isinstance(contact, dict):
                contact_id = cast(dict[str, Any], contact).get("id")
                if isinstance(contact_id, str) and contact_id:
                    ids.append(contact_id)
        return ids


def parse_order_page(body: dict[str, Any]) -> GatewayPage:
    """Turn a raw search response into a :class:`GatewayPage`."""
    orders = body.get("orders")
    records: list[dict[str, Any]] = []
    if isinstance(orders, list):
        records = [
            cast(dict[str, Any], o)
            for o in cast(list[Any], orders)
            if isinstance(o, dict)
        ]

    metadata = body.get("metadata")
    meta: dict[str, Any] = (
        cast(dict[str, Any], metadata) if isinstance(metadata, dict) else {}
    )
    cursors = meta.get("cursors")
    next_cursor: Any = (
        cast(dict[str, Any], cursors).get("next")
        if isinstance(cursors, dict)
        else None
    )
    return GatewayPage(
        records=records,
        has_next=bool(meta.get("hasNext")),
        next_cursor=next_cursor if isinstance(next_cursor, str) and next_cursor else None,
    )
