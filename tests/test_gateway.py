# tests/test_gateway.py

"""Tests for the ResilientGateway timeout/retry wrapper."""

import asyncio
import unittest

from ordercache.models.search import GatewayPage, GatewayQuery
from ordercache.services.gateway import (
    GatewayError,
    RateLimitedError,
    ResilientGateway,
)
from tests.factories import FakeGateway, FakeResolver

_QUERY = GatewayQuery(filter={})


class TestResilientGateway(unittest.IsolatedAsyncioTestCase):
    """Verify retries, timeouts and rate-limit short-circuit."""

    async def test_success_first_try(self) -> None:
        page = GatewayPage(records=[{"_id": "1"}])
        inner = FakeGateway([page])
        gw = ResilientGateway(inner, max_retries=3, backoff_base=0.0)
        self.assertIs(await gw.query(_QUERY), page)
        self.assertEqual(len(inner.queries), 1)

    async def test_retries_transient_errors(self) -> None:
        page = GatewayPage()
        inner = FakeGateway([GatewayError("boom"), GatewayError("boom"), page])
        gw = ResilientGateway(inner, max_retries=3, backoff_base=0.0)
        self.assertIs(await gw.query(_QUERY), page)
        self.assertEqual(len(inner.queries), 3)

    async def test_gives_up_after_max_retries(self) -> None:
        inner = FakeGateway([GatewayError(f"e{i}") for i in range(5)])
        gw = ResilientGateway(inner, max_retries=3, backoff_base=0.0)
        with self.assertRaisesRegex(GatewayError, "e2"):
            await gw.query(_QUERY)
        self.assertEqual(len(inner.queries), 3)

    async def test_rate_limit_not_retried(self) -> None:
        inner = FakeGateway([RateLimitedError("429"), GatewayPage()])
        gw = ResilientGateway(inner, max_retries=3, backoff_base=0.0)
        with self.assertRaises(RateLimitedError):
            await gw.query(_QUERY)
        self.assertEqual(len(inner.queries), 1)

    async def test_timeout_becomes_gateway_error(self) -> None:
        class Hanging:
            async def query(self, request: GatewayQuery) -> GatewayPage:
                await asyncio.Event().wait()
                return GatewayPage()

        gw = ResilientGateway(
            Hanging(), timeout=0.01, max_retries=2, backoff_base=0.0,
        )
        with self.assertRaisesRegex(GatewayError, "timed out"):
            await gw.query(_QUERY)

    async def test_backoff_bounded_by_cap(self) -> None:
        gw = ResilientGateway(
            FakeGateway(), backoff_base=0.5, backoff_max=2.0,
        )
        for attempt in range(8):
            delay = gw.backoff_delay(attempt)
            self.assertGreaterEqual(delay, 0.0)
            self.assertLessEqual(delay, min(2.0, 0.5 * 2 ** attempt))

    async def test_resolver_optional(self) -> None:
        gw = ResilientGateway(FakeGateway())
        self.assertFalse(gw.has_resolver)
        self.assertEqual(await gw.resolve_by_name("john"), [])

    async def test_resolver_wrapped(self) -> None:
        resolver = FakeResolver(ids=["c1"])
        gw = ResilientGateway(FakeGateway(), resolver)
        self.assertTrue(gw.has_resolver)
        self.assertEqual(await gw.resolve_by_name("john"), ["c1"])
        self.assertEqual(resolver.calls, ["john"])


if __name__ == "__main__":
    unittest.main()
