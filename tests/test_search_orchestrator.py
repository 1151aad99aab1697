# tests/test_search_orchestrator.py

"""Tests for the two-stage SearchOrchestrator."""

import asyncio
import unittest
from datetime import date
from unittest.mock import patch

from ordercache.models.order import OrderStatus, PaymentStatus
from ordercache.models.search import (
    GatewayPage,
    SearchFilters,
    SearchResult,
    StatusType,
)
from ordercache.services.gateway import GatewayError
from ordercache.services.search_orchestrator import SearchOrchestrator
from ordercache.storage.order_collection import OrderCollection
from ordercache.storage.search_cache import SearchCache
from tests.factories import FakeGateway, FakeResolver, make_order, raw_order


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 500.0

    def __call__(self) -> float:
        return self.now


def _collection() -> OrderCollection:
    coll = OrderCollection()
    coll.upsert(make_order("1", first_name="John", last_name="Smith",
                           email="john@x.com", minutes=1))
    coll.upsert(make_order("2", first_name="Joanna", last_name="Lee",
                           email="jlee@x.com", minutes=2))
    coll.upsert(make_order("3", first_name="Bob", last_name="Jones",
                           email="bob@x.com", minutes=3,
                           status=OrderStatus.FULFILLED))
    coll.upsert(make_order("4", first_name="Al", last_name="Brown",
                           email="al@x.com", minutes=4))
    return coll


class OrchestratorTestCase(unittest.IsolatedAsyncioTestCase):
    """Orchestrator wired to fakes and a controllable cache clock."""

    def setUp(self) -> None:
        self.clock = FakeClock()
        self.collection = _collection()
        self.gateway = FakeGateway()
        self.resolver = FakeResolver(ids=["c-r1"])
        self.orch = SearchOrchestrator(
            self.collection,
            self.gateway,
            self.resolver,
            cache=SearchCache(ttl=30.0, max_entries=10, clock=self.clock),
        )


class TestLocalStage(OrchestratorTestCase):
    """Local scan semantics and incremental refinement."""

    async def test_local_substring_across_fields(self) -> None:
        result = await self.orch.search("  JO ")
        self.assertEqual(
            sorted(o.id for o in result.from_local), ["1", "2", "3"]
        )
        self.assertEqual(result.query, "jo")

    async def test_refinement_reuses_previous_results(
        self,
    ) -> None:
        self.gateway.pages = [
            GatewayPage(records=[raw_order("r1", first_name="Johnny")]),
            GatewayPage(records=[raw_order("r1", first_name="Johnny")]),
        ]
        first = await self.orch.search("jo")
        self.assertIn("r1", [o.id for o in first.orders])

        # Added after "jo" ran: outside the refined scan domain
        self.collection.upsert(
            make_order("5", first_name="John", last_name="New", minutes=9)
        )
        second = await self.orch.search("john")

        self.assertEqual([o.id for o in second.from_local], ["1"])
        self.assertLessEqual(
            {o.id for o in second.orders}, {o.id for o in first.orders}
        )

    async def test_refinement_skipped_when_filters_differ(self) -> None:
        await self.orch.search("jo")
        self.collection.upsert(
            make_order("5", first_name="John", last_name="New", minutes=9)
        )
        filters = SearchFilters(
            statuses=frozenset({OrderStatus.NOT_FULFILLED})
        )
        result = await self.orch.search("john", filters)
        self.assertEqual(
            sorted(o.id for o in result.from_local), ["1", "5"]
        )

    async def test_refinement_skipped_for_unrelated_query(self) -> None:
        await self.orch.search("jo")
        result = await self.orch.search("al")
        self.assertEqual([o.id for o in result.from_local], ["4"])

    async def test_refinement_expires_with_cache_ttl(self) -> None:
        await self.orch.search("jo")
        self.collection.upsert(
            make_order("5", first_name="John", last_name="New", minutes=9)
        )
        self.clock.now += 3600
        result = await self.orch.search("john")
        self.assertEqual(
            sorted(o.id for o in result.from_local), ["1", "5"]
        )

    async def test_refined_result_ages_from_its_source_scan(self) -> None:
        await self.orch.search("jo")
        self.collection.upsert(
            make_order("5", first_name="John", last_name="New", minutes=9)
        )
        self.clock.now += 20
        refined = await self.orch.search("john")
        self.assertEqual([o.id for o in refined.from_local], ["1"])
        self.assertEqual(refined.computed_at, 500.0)

        self.clock.now += 15
        again = await self.orch.search("john")
        self.assertFalse(again.cache_hit)
        self.assertEqual(
            sorted(o.id for o in again.from_local), ["1", "5"]
        )

    async def test_monotonic_under_extension(self) -> None:
        cases = [("j", "o"), ("jo", "hn"), ("x.c", "om"), ("b", "ob@")]
        for base, suffix in cases:
            with self.subTest(base=base, suffix=suffix):
                self.orch.clear_cache()
                wide = await self.orch.search(base)
                narrow = await self.orch.search(base + suffix)
                self.assertLessEqual(
                    {o.id for o in narrow.from_local},
                    {o.id for o in wide.from_local},
                )

    async def test_status_and_date_filters(self) -> None:
        filters = SearchFilters(
            statuses=frozenset({OrderStatus.FULFILLED}),
            date_from=date(2026, 1, 1),
            date_to=date(2026, 1, 1),
        )
        result = await self.orch.search("", filters)
        self.assertEqual([o.id for o in result.from_local], ["3"])


class TestRemoteStage(OrchestratorTestCase):
    """Remote filter selection and fallbacks."""

    async def test_order_number_exact(self) -> None:
        await self.orch.search("1042")
        remote_filter = self.gateway.queries[0].filter
        self.assertEqual(remote_filter["number"], {"$eq": 1042})
        self.assertEqual(remote_filter["status"], {"$ne": "INITIALIZED"})
        self.assertEqual(
            self.gateway.queries[0].sort, (("createdDate", "DESC"),)
        )
        self.assertEqual(self.resolver.calls, [])

    async def test_email_exact(self) -> None:
        await self.orch.search("John@X.com")
        self.assertEqual(
            self.gateway.queries[0].filter["buyerInfo.email"],
            {"$eq": "John@X.com"},
        )

    async def test_name_uses_identity_resolution(self) -> None:
        await self.orch.search("john")
        self.assertEqual(self.resolver.calls, ["john"])
        clauses = self.gateway.queries[0].filter["$or"]
        self.assertIn({"buyerInfo.contactId": {"$in": ["c-r1"]}}, clauses)

    async def test_single_character_is_local_only(self) -> None:
        result = await self.orch.search("j")
        self.assertEqual(self.gateway.queries, [])
        self.assertEqual(result.errors, [])
        self.assertTrue(result.from_local)

    async def test_no_resolver_is_local_only(self) -> None:
        orch = SearchOrchestrator(self.collection, self.gateway)
        result = await orch.search("john")
        self.assertEqual(self.gateway.queries, [])
        self.assertEqual([o.id for o in result.orders], ["1"])
        self.assertEqual(result.errors, [])

    async def test_no_identities_is_local_only(self) -> None:
        self.resolver.ids = []
        result = await self.orch.search("john")
        self.assertEqual(self.gateway.queries, [])
        self.assertEqual(result.errors, [])

    async def test_resolver_error_is_local_only(self) -> None:
        self.resolver.error = GatewayError("contacts down")
        result = await self.orch.search("john")
        self.assertEqual(self.gateway.queries, [])
        self.assertEqual(result.errors, [])
        self.assertEqual([o.id for o in result.orders], ["1"])

    async def test_gateway_failure_degrades_to_local(self) -> None:
        self.gateway.pages = [GatewayError("timeout")]
        result = await self.orch.search("101")
        self.assertEqual(result.errors, ["timeout"])
        self.assertEqual([o.id for o in result.orders], ["1"])

    async def test_empty_query_without_filters_stays_local(self) -> None:
        result = await self.orch.search("")
        self.assertEqual(self.gateway.queries, [])
        self.assertEqual(len(result.orders), 4)

    async def test_empty_query_with_filters_queries_remote(self) -> None:
        await self.orch.search(
            "", SearchFilters(statuses=frozenset({OrderStatus.FULFILLED}))
        )
        self.assertEqual(
            self.gateway.queries[0].filter["fulfillmentStatus"],
            {"$eq": "FULFILLED"},
        )

    async def test_limit_capped_at_page_limit(self) -> None:
        await self.orch.search("1001", SearchFilters(limit=500))
        self.assertEqual(self.gateway.queries[0].limit, 100)

    async def test_merge_local_wins_and_sorted(self) -> None:
        self.gateway.pages = [GatewayPage(
            records=[
                raw_order("1", created="2026-01-01T12:01:00Z",
                          fulfillment="FULFILLED"),
                raw_order("r9", created="2026-01-01T13:00:00Z"),
                {"number": 77},
            ],
            has_next=True,
            next_cursor="n1",
        )]
        result = await self.orch.search("101")
        self.assertEqual([o.id for o in result.orders], ["r9", "1"])
        self.assertEqual(
            result.orders[1].status, OrderStatus.NOT_FULFILLED
        )
        self.assertTrue(result.has_more)
        self.assertEqual(result.next_cursor, "n1")
        self.assertEqual(result.errors, ["1 malformed remote orders skipped"])


class TestResultCache(OrchestratorTestCase):
    """TTL caching of merged results."""

    async def test_cache_hit_within_ttl(self) -> None:
        first = await self.orch.search("1001")
        self.clock.now += 29
        second = await self.orch.search(" 1001 ")
        self.assertTrue(second.cache_hit)
        self.assertFalse(first.cache_hit)
        self.assertEqual(second.orders, first.orders)
        self.assertEqual(len(self.gateway.queries), 1)

    async def test_recomputed_after_ttl(self) -> None:
        await self.orch.search("1001")
        self.clock.now += 31
        second = await self.orch.search("1001")
        self.assertFalse(second.cache_hit)
        self.assertEqual(len(self.gateway.queries), 2)

    async def test_filters_are_part_of_key(self) -> None:
        await self.orch.search("1001")
        await self.orch.search(
            "1001", SearchFilters(date_from=date(2026, 1, 1))
        )
        self.assertEqual(len(self.gateway.queries), 2)

    async def test_mutation_does_not_invalidate(self) -> None:
        await self.orch.search("al")
        self.collection.upsert(make_order("9", first_name="Alice", minutes=9))
        cached = await self.orch.search("al")
        self.assertTrue(cached.cache_hit)
        self.assertEqual([o.id for o in cached.orders], ["4"])

    async def test_results_do_not_share_lists_with_cache(self) -> None:
        first = await self.orch.search("al")
        first.orders.clear()
        first.from_local.clear()

        second = await self.orch.search("al")
        self.assertTrue(second.cache_hit)
        self.assertEqual([o.id for o in second.orders], ["4"])
        second.orders.append(second.orders[0])
        second.errors.append("caller note")

        third = await self.orch.search("al")
        self.assertEqual([o.id for o in third.orders], ["4"])
        self.assertEqual(third.errors, [])

    async def test_clear_cache(self) -> None:
        await self.orch.search("1001")
        self.assertEqual(self.orch.clear_cache(), 1)
        await self.orch.search("1001")
        self.assertEqual(len(self.gateway.queries), 2)


class TestDebounce(OrchestratorTestCase):
    """Only the last call in a burst executes."""

    async def test_two_quick_calls_run_one_search(self) -> None:
        orch = SearchOrchestrator(
            self.collection, self.gateway, self.resolver,
            debounce_delay=0.3,
        )
        with patch.object(orch, "search", wraps=orch.search) as spy:
            first = orch.search_debounced("jo")
            await asyncio.sleep(0.05)
            second = orch.search_debounced("john")
            result = await second

        self.assertTrue(first.cancelled())
        spy.assert_called_once_with("john", None)
        self.assertEqual(result.query, "john")

    async def test_callback_receives_result(self) -> None:
        orch = SearchOrchestrator(self.collection, debounce_delay=0.01)
        received: list[SearchResult] = []
        result = await orch.search_debounced(
            "al", callback=received.append
        )
        self.assertEqual(received, [result])

    async def test_cancel_pending(self) -> None:
        orch = SearchOrchestrator(self.collection, debounce_delay=0.05)
        with patch.object(orch, "search", wraps=orch.search) as spy:
            future = orch.search_debounced("al")
            self.assertTrue(orch.cancel_pending())
            await asyncio.sleep(0.1)
        self.assertTrue(future.cancelled())
        spy.assert_not_called()
        self.assertFalse(orch.cancel_pending())

    async def test_dispatched_search_not_cancelled(self) -> None:
        gateway = FakeGateway(delay=0.05)
        orch = SearchOrchestrator(
            self.collection, gateway, debounce_delay=0.01,
        )
        first = orch.search_debounced("1001")
        await asyncio.sleep(0.03)  # timer fired, remote in flight
        second = orch.search_debounced("1002")
        result = await first
        self.assertEqual(result.query, "1001")
        self.assertEqual((await second).query, "1002")


class TestStatusSearch(OrchestratorTestCase):
    """Status-only search and cursor continuation."""

    async def test_local_and_remote_merge(self) -> None:
        self.gateway.pages = [GatewayPage(
            records=[raw_order("r1", fulfillment="FULFILLED",
                               created="2026-01-01T11:00:00Z")],
            has_next=True,
            next_cursor="cur-1",
        )]
        result = await self.orch.search_by_status("fulfillment", "Fulfilled")
        self.assertEqual([o.id for o in result.orders], ["3", "r1"])
        self.assertTrue(result.has_more)
        self.assertEqual(result.next_cursor, "cur-1")
        remote_filter = self.gateway.queries[0].filter
        self.assertEqual(remote_filter["archived"], {"$ne": True})
        self.assertEqual(
            remote_filter["fulfillmentStatus"], {"$eq": "FULFILLED"}
        )

    async def test_payment_status_local(self) -> None:
        self.collection.upsert(
            make_order("7", payment=PaymentStatus.NOT_PAID, minutes=7)
        )
        result = await self.orch.search_by_status(StatusType.PAYMENT, "unpaid")
        self.assertEqual([o.id for o in result.from_local], ["7"])

    async def test_cached_by_type_and_value(self) -> None:
        await self.orch.search_by_status(StatusType.PAYMENT, "paid")
        again = await self.orch.search_by_status(StatusType.PAYMENT, "paid")
        self.assertTrue(again.cache_hit)
        await self.orch.search_by_status(StatusType.FULFILLMENT, "canceled")
        self.assertEqual(len(self.gateway.queries), 2)

    async def test_load_more_uses_cursor_and_is_not_cached(self) -> None:
        self.gateway.pages = [
            GatewayPage(records=[raw_order("r2")], next_cursor=None),
            GatewayPage(records=[raw_order("r2")]),
        ]
        result = await self.orch.load_more_status(
            StatusType.FULFILLMENT, "unfulfilled", "cur-1"
        )
        await self.orch.load_more_status(
            StatusType.FULFILLMENT, "unfulfilled", "cur-1"
        )
        self.assertEqual([o.id for o in result.orders], ["r2"])
        self.assertEqual(result.from_local, [])
        self.assertEqual(self.gateway.queries[0].cursor, "cur-1")
        self.assertEqual(len(self.gateway.queries), 2)

    async def test_remote_failure_recorded(self) -> None:
        self.gateway.pages = [GatewayError("503")]
        result = await self.orch.search_by_status("payment", "paid")
        self.assertEqual(result.errors, ["503"])
        self.assertEqual(len(result.orders), 4)

    async def test_unknown_type_rejected(self) -> None:
        with self.assertRaises(ValueError):
            await self.orch.search_by_status("shipping", "late")


if __name__ == "__main__":
    unittest.main()
