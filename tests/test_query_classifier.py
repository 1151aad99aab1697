# tests/test_query_classifier.py

"""Tests for query classification and remote filter building."""

import unittest
from datetime import date

from ordercache.filters.query_classifier import (
    QueryKind,
    RemoteFilterBuilder,
    classify_query,
)
from ordercache.models.order import OrderStatus
from ordercache.models.search import SearchFilters, StatusType


class TestClassifyQuery(unittest.TestCase):
    """Verify every query shape is recognised."""

    def test_kinds(self) -> None:
        cases = {
            "": QueryKind.EMPTY,
            "   ": QueryKind.EMPTY,
            "1042": QueryKind.ORDER_NUMBER,
            "ann@example.com": QueryKind.EMAIL,
            "ann@exa": QueryKind.PARTIAL_EMAIL,
            "j": QueryKind.TOO_SHORT,
            "jo": QueryKind.NAME,
            "John Smith": QueryKind.NAME,
        }
        for text, kind in cases.items():
            with self.subTest(text=text):
                self.assertIs(classify_query(text), kind)


class TestForText(unittest.TestCase):
    """Verify text clauses per query kind."""

    def test_order_number_exact_int(self) -> None:
        self.assertEqual(
            RemoteFilterBuilder.for_text(" 1042 ", QueryKind.ORDER_NUMBER),
            {"number": {"$eq": 1042}},
        )

    def test_email_exact_and_prefix(self) -> None:
        self.assertEqual(
            RemoteFilterBuilder.for_text("a@x.com", QueryKind.EMAIL),
            {"buyerInfo.email": {"$eq": "a@x.com"}},
        )
        self.assertEqual(
            RemoteFilterBuilder.for_text("a@x", QueryKind.PARTIAL_EMAIL),
            {"buyerInfo.email": {"$startsWith": "a@x"}},
        )

    def test_name_without_identifiers_is_none(self) -> None:
        self.assertIsNone(
            RemoteFilterBuilder.for_text("john", QueryKind.NAME)
        )
        self.assertIsNone(
            RemoteFilterBuilder.for_text("john", QueryKind.NAME, [])
        )

    def test_name_with_identifiers_is_disjunction(self) -> None:
        clause = RemoteFilterBuilder.for_text(
            "john", QueryKind.NAME, ["c1", "c2"]
        )
        assert clause is not None
        self.assertEqual(
            clause["$or"][0], {"buyerInfo.contactId": {"$in": ["c1", "c2"]}}
        )
        self.assertIn(
            {"billingInfo.contactDetails.fullName": {"$startsWith": "john"}},
            clause["$or"],
        )

    def test_too_short_is_none(self) -> None:
        self.assertIsNone(
            RemoteFilterBuilder.for_text("j", QueryKind.TOO_SHORT)
        )


class TestWithFilters(unittest.TestCase):
    """Verify status and date clauses are merged with the base."""

    def test_base_excludes_drafts(self) -> None:
        combined = RemoteFilterBuilder.with_filters({}, SearchFilters())
        self.assertEqual(combined, {"status": {"$ne": "INITIALIZED"}})

    def test_single_and_multiple_statuses(self) -> None:
        one = RemoteFilterBuilder.with_filters(
            {}, SearchFilters(statuses=frozenset({OrderStatus.FULFILLED}))
        )
        self.assertEqual(one["fulfillmentStatus"], {"$eq": "FULFILLED"})
        many = RemoteFilterBuilder.with_filters(
            {},
            SearchFilters(statuses=frozenset(
                {OrderStatus.FULFILLED, OrderStatus.CANCELED}
            )),
        )
        self.assertEqual(
            many["fulfillmentStatus"], {"$in": ["CANCELED", "FULFILLED"]}
        )

    def test_end_date_is_exclusive_next_day(self) -> None:
        combined = RemoteFilterBuilder.with_filters(
            {"number": {"$eq": 1}},
            SearchFilters(
                date_from=date(2026, 1, 1), date_to=date(2026, 1, 31)
            ),
        )
        self.assertEqual(
            combined["createdDate"],
            {"$gte": "2026-01-01", "$lt": "2026-02-01"},
        )
        self.assertEqual(combined["number"], {"$eq": 1})


class TestForStatus(unittest.TestCase):
    """Verify status-only remote filters."""

    def test_excludes_archived(self) -> None:
        flt = RemoteFilterBuilder.for_status(StatusType.PAYMENT, "paid")
        self.assertEqual(flt["archived"], {"$ne": True})
        self.assertEqual(flt["paymentStatus"], {"$eq": "PAID"})

    def test_canceled_fulfillment_uses_order_status(self) -> None:
        flt = RemoteFilterBuilder.for_status(
            StatusType.FULFILLMENT, "canceled"
        )
        self.assertEqual(flt["status"], {"$eq": "CANCELED"})
        self.assertNotIn("fulfillmentStatus", flt)

    def test_unfulfilled(self) -> None:
        flt = RemoteFilterBuilder.for_status(
            StatusType.FULFILLMENT, "unfulfilled"
        )
        self.assertEqual(flt["fulfillmentStatus"], {"$eq": "NOT_FULFILLED"})

    def test_unpaid_uses_in(self) -> None:
        flt = RemoteFilterBuilder.for_status(StatusType.PAYMENT, "unpaid")
        self.assertEqual(
            flt["paymentStatus"], {"$in": ["NOT_PAID", "UNPAID"]}
        )

    def test_unknown_value_has_no_status_clause(self) -> None:
        flt = RemoteFilterBuilder.for_status(StatusType.PAYMENT, "bogus")
        self.assertNotIn("paymentStatus", flt)
        self.assertEqual(flt["status"], {"$ne": "INITIALIZED"})


if __name__ == "__main__":
    unittest.main()
