# ordercache/filters/order_matcher.py

"""Local, in-memory order filtering for the fast search stage."""

import logging
from collections.abc import Iterable

from ordercache.models.order import OrderRecord, OrderStatus, PaymentStatus
from ordercache.models.search import SearchFilters, StatusType

logger = logging.getLogger("ordercache.filters")

# Status-only search values → the statuses they select
FULFILLMENT_VALUES: dict[str, frozenset[OrderStatus]] = {
    "unfulfilled": frozenset({OrderStatus.NOT_FULFILLED}),
    "fulfilled": frozenset({OrderStatus.FULFILLED}),
    "partially_fulfilled": frozenset({OrderStatus.PARTIALLY_FULFILLED}),
    "canceled": frozenset({OrderStatus.CANCELED}),
}

PAYMENT_VALUES: dict[str, frozenset[PaymentStatus]] = {
    "paid": frozenset({PaymentStatus.PAID}),
    "unpaid": frozenset({PaymentStatus.UNPAID, PaymentStatus.NOT_PAID}),
    "partially_paid": frozenset({PaymentStatus.PARTIALLY_PAID}),
    "refunded": frozenset({PaymentStatus.FULLY_REFUNDED}),
    "partially_refunded": frozenset({PaymentStatus.PARTIALLY_REFUNDED}),
    "authorized": frozenset({PaymentStatus.AUTHORIZED}),
    "pending": frozenset({PaymentStatus.PENDING}),
    "declined": frozenset({PaymentStatus.DECLINED}),
    "canceled": frozenset({PaymentStatus.CANCELED}),
    "pending_refund": frozenset({PaymentStatus.PENDING_REFUND}),
}


class OrderMatcher:
    """Filter orders by structured filters and free-text substrings."""

    @staticmethod
    def text_fields(order: OrderRecord) -> tuple[str, ...]:
        """Fields a free-text query is matched against, in match order."""
        c = order.customer
        return (
            order.number,
            c.first_name,
            c.last_name,
            c.full_name,
            c.email,
            c.phone,
            c.company,
        )

    @staticmethod
    def matches_text(order: OrderRecord, term: str) -> bool:
        """Case-insensitive substring match; the first hit wins.

        *term* must already be normalised (stripped and case-folded).
        An empty term matches every order.
        """
        if not term:
            return True
        for value in OrderMatcher.text_fields(order):
            if value and term in value.casefold():
                return True
        return False

    @staticmethod
    def matches_filters(
        order: OrderRecord, filters: SearchFilters,
    ) -> bool:
        """Apply the status set and inclusive date range."""
        if filters.statuses and order.status not in filters.statuses:
            return False
        created = order.created_at.date()
        if filters.date_from and created < filters.date_from:
            return False
        if filters.date_to and created > filters.date_to:
            return False
        return True

    @staticmethod
    def scan(
        orders: Iterable[OrderRecord],
        term: str,
        filters: SearchFilters,
    ) -> list[OrderRecord]:
        """Return the orders passing both the filters and the text match."""
        return [
            order
            for order in orders
            if OrderMatcher.matches_filters(order, filters)
            and OrderMatcher.matches_text(order, term)
        ]

    @staticmethod
    def matches_status_value(
        order: OrderRecord,
        status_type: StatusType,
        status_value: str,
    ) -> bool:
        """Status-only matching; unknown values match everything."""
        if status_type is StatusType.FULFILLMENT:
            wanted = FULFILLMENT_VALUES.get(status_value)
            return wanted is None or order.status in wanted
        wanted_payment = PAYMENT_VALUES.get(status_value)
        return (
            wanted_payment is None
            or order.payment_status in wanted_payment
        )

    @staticmethod
    def filter_by_status_value(
        orders: Iterable[OrderRecord],
        status_type: StatusType,
        status_value: str,
    ) -> list[OrderRecord]:
        """Keep the orders selected by a status-only search value."""
        kept = [
            order
            for order in orders
            if OrderMatcher.matches_status_value(
                order, status_type, status_value
            )
        ]
        logger.debug(
            "Status filter %s=%s kept %d orders",
            status_type.value,
            status_value,
            len(kept),
        )
        return kept
