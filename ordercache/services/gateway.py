# ordercache/services/gateway.py

"""Remote order / identity service contracts and a resilient wrapper."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar

from ordercache.config.settings import Settings
from ordercache.models.search import GatewayPage, GatewayQuery

logger = logging.getLogger("ordercache.gateway")

T = TypeVar("T")


class GatewayError(Exception):
    """A remote call failed (network, timeout or server error)."""


class RateLimitedError(GatewayError):
    """The remote service refused the call because of quota or rate."""


class RemoteOrderGateway(Protocol):
    """Opaque, paginated source of raw order payloads."""

    async def query(self, request: GatewayQuery) -> GatewayPage:
        """Return one page of records matching *request*."""
        ...


class IdentityResolver(Protocol):
    """Optional capability translating free text into customer ids."""

    async def resolve_by_name(self, text: str) -> list[str]:
        """Return identifiers of customers whose name matches *text*."""
        ...


class ResilientGateway:
    """Add a per-call timeout and jittered exponential backoff.

    Wraps any :class:`RemoteOrderGateway` (and, optionally, an
    :class:`IdentityResolver`).  Rate-limit errors are re-raised
    immediately so that callers can stop instead of retrying harder.
    """

    def __init__(
        self,
        inner: RemoteOrderGateway,
        resolver: IdentityResolver | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        backoff_max: float | None = None,
    ) -> None:
        self._inner = inner
        self._resolver = resolver
        self._timeout: float = (
            Settings.REQUEST_TIMEOUT if timeout is None else timeout
        )
        self._max_retries: int = max(
            1,
            Settings.MAX_RETRIES if max_retries is None else max_retries,
        )
        self._backoff_base: float = (
            Settings.BACKOFF_BASE if backoff_base is None else backoff_base
        )
        self._backoff_max: float = (
            Settings.BACKOFF_MAX if backoff_max is None else backoff_max
        )

    @property
    def has_resolver(self) -> bool:
        """Whether identity resolution is available."""
        return self._resolver is not None

    def backoff_delay(self, attempt: int) -> float:
        """Full-jitter delay before retry number *attempt* (0-based)."""
        ceiling = min(
            self._backoff_max, self._backoff_base * (2 ** attempt)
        )
        return random.uniform(0, ceiling)

    async def query(self, request: GatewayQuery) -> GatewayPage:
        """Query the wrapped gateway with timeout and retries."""
        return await self._call(
            "order query", lambda: self._inner.query(request)
        )

    async def resolve_by_name(self, text: str) -> list[str]:
        """Resolve *text* through the wrapped resolver.

        Returns an empty list when no resolver is configured.
        """
        resolver = self._resolver
        if resolver is None:
            return []
        return await self._call(
            "identity lookup", lambda: resolver.resolve_by_name(text)
        )

    async def _call(
        self,
        label: str,
        call: Callable[[], Awaitable[T]],
    ) -> T:
        last_error: GatewayError | None = None
        for attempt in range(self._max_retries):
            try:
                return await asyncio.wait_for(call(), self._timeout)
            except RateLimitedError:
                logger.warning(
                    "%s rate-limited on attempt %d, not retrying",
                    label,
                    attempt + 1,
                )
                raise
            except asyncio.TimeoutError:
                last_error = GatewayError(
                    f"{label} timed out after {self._timeout:.1f}s"
                )
            except GatewayError as exc:
                last_error = exc

            logger.warning(
                "%s failed on attempt %d/%d: %s",
                label,
                attempt + 1,
                self._max_retries,
                last_error,
            )
            if attempt + 1 < self._max_retries:
                await asyncio.sleep(self.backoff_delay(attempt))

        assert last_error is not None
        raise last_error
