# ordercache/storage/order_collection.py

"""Deduplicated, capacity-bounded, recency-ordered order store.

Derived views (orders by status, unfulfilled counts, statistics) are
memoized against a structural signature of the collection: its length
plus a digest of ``id:status`` pairs, extended with any other field a
view reads.  A view is recomputed only when that signature changes, so
repeated reads from a reactive UI cost one digest instead of a full
re-filter.  Signature coincidences are accepted as a rare imprecision.
"""

import dataclasses
import hashlib
import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ordercache.config.settings import Settings
from ordercache.models.order import (
    MalformedRecordError,
    OrderRecord,
    OrderStatus,
)

logger = logging.getLogger("ordercache.collection")


@dataclass
class DerivedView:
    """A memoized view value and the signature it was computed from."""

    signature: str
    value: Any


@dataclass(frozen=True)
class OrderStats:
    """Per-status counts and the summed order total."""

    total: int
    fulfilled: int
    not_fulfilled: int
    partially_fulfilled: int
    canceled: int
    total_value: float


def _status_key(order: OrderRecord) -> str:
    return f"{order.id}:{order.status.value}"


def _amount_key(order: OrderRecord) -> str:
    return f"{order.id}:{order.status.value}:{order.total.amount!r}"


class OrderCollection:
    """Ordered (newest first) store of orders with an id membership set."""

    def __init__(self, capacity: int | None = None) -> None:
        self.capacity: int = capacity or Settings.COLLECTION_CAPACITY
        if self.capacity < 1:
            msg = f"Capacity must be positive, got {self.capacity}"
            raise ValueError(msg)
        self._orders: list[OrderRecord] = []
        self._ids: set[str] = set()
        self._views: dict[str, DerivedView] = {}

    # ── Mutation ─────────────────────────────────────────

    def upsert(self, record: OrderRecord) -> bool:
        """Insert or replace an order.

        A known id is replaced in place, keeping its position and its
        original creation time.  A new id is prepended; when the
        collection overflows its capacity the oldest order is evicted.
        Returns ``True`` if the order was new.

        Raises:
            MalformedRecordError: if the record has no id.
        """
        if not record.id:
            msg = f"Order {record.number!r} has no identifier"
            raise MalformedRecordError(msg)

        if record.id in self._ids:
            index = self._index_of(record.id)
            existing = self._orders[index]
            if record.created_at != existing.created_at:
                logger.debug(
                    "Ignoring creation date change on order %s",
                    record.id,
                )
                record = dataclasses.replace(
                    record, created_at=existing.created_at
                )
            self._orders[index] = record
            self._invalidate_views()
            return False

        self._ids.add(record.id)
        self._orders.insert(0, record)
        if len(self._orders) > self.capacity:
            evicted = self._orders.pop()
            self._ids.discard(evicted.id)
            logger.debug(
                "Capacity %d reached, evicted order %s",
                self.capacity,
                evicted.id,
            )
        self._invalidate_views()
        return True

    def remove_by_id(self, order_id: str) -> bool:
        """Remove an order; returns ``False`` if it was not present."""
        if order_id not in self._ids:
            return False
        self._orders = [o for o in self._orders if o.id != order_id]
        self._ids.discard(order_id)
        self._invalidate_views()
        return True

    def replace_all(self, records: Iterable[OrderRecord]) -> int:
        """Reset the collection from a poll batch (newest first).

        Repeated ids keep their first occurrence and the batch is
        truncated to capacity.  Returns the resulting length.

        Raises:
            MalformedRecordError: if any record has no id.
        """
        orders: list[OrderRecord] = []
        ids: set[str] = set()
        for record in records:
            if not record.id:
                msg = f"Order {record.number!r} has no identifier"
                raise MalformedRecordError(msg)
            if record.id in ids:
                continue
            if len(orders) >= self.capacity:
                break
            ids.add(record.id)
            orders.append(record)

        self._orders = orders
        self._ids = ids
        self._invalidate_views()
        logger.info("Collection reset with %d orders", len(orders))
        return len(orders)

    def extend(self, records: Iterable[OrderRecord]) -> int:
        """Append older orders (load more), skipping known ids.

        Stops once the collection is full.  Returns the number appended.
        """
        added = 0
        for record in records:
            if len(self._orders) >= self.capacity:
                break
            if not record.id or record.id in self._ids:
                continue
            self._ids.add(record.id)
            self._orders.append(record)
            added += 1

        if added:
            self._invalidate_views()
        return added

    def clear(self) -> None:
        """Drop every order."""
        self._orders.clear()
        self._ids.clear()
        self._invalidate_views()

    # ── Lookup ───────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._orders)

    def __contains__(self, order_id: object) -> bool:
        return order_id in self._ids

    def __iter__(self) -> Iterator[OrderRecord]:
        return iter(tuple(self._orders))

    def snapshot(self) -> tuple[OrderRecord, ...]:
        """Current orders, newest first."""
        return tuple(self._orders)

    def get_by_id(self, order_id: str) -> OrderRecord | None:
        """Return the order with *order_id*, if present."""
        if order_id not in self._ids:
            return None
        return self._orders[self._index_of(order_id)]

    def get_by_number(self, number: str) -> OrderRecord | None:
        """Return the first order whose display number is *number*."""
        for order in self._orders:
            if order.number == number:
                return order
        return None

    def orders_between(
        self, start: datetime, end: datetime,
    ) -> tuple[OrderRecord, ...]:
        """Orders created within ``[start, end]``, newest first."""
        return tuple(
            o for o in self._orders if start <= o.created_at <= end
        )

    # ── Derived views ────────────────────────────────────

    def query_by_status(
        self, status: OrderStatus,
    ) -> tuple[OrderRecord, ...]:
        """Orders with the given fulfillment status, newest first."""
        return self._view(
            f"status:{status.value}",
            _status_key,
            lambda: tuple(o for o in self._orders if o.status is status),
        )

    def query_unfulfilled(self) -> tuple[OrderRecord, ...]:
        """Orders not yet (or only partially) fulfilled."""
        return self._view(
            "unfulfilled",
            _status_key,
            lambda: tuple(o for o in self._orders if o.is_unfulfilled),
        )

    def unfulfilled_count(self) -> int:
        """Number of orders awaiting fulfillment."""
        return self._view(
            "unfulfilled_count",
            _status_key,
            lambda: sum(1 for o in self._orders if o.is_unfulfilled),
        )

    def oldest_unfulfilled(self) -> OrderRecord | None:
        """The unfulfilled order that has waited the longest."""
        return self._view(
            "oldest_unfulfilled",
            _status_key,
            lambda: min(
                (o for o in self._orders if o.is_unfulfilled),
                key=lambda o: o.created_at,
                default=None,
            ),
        )

    def order_stats(self) -> OrderStats:
        """Per-status counts and summed totals."""
        return self._view("stats", _amount_key, self._compute_stats)

    def _compute_stats(self) -> OrderStats:
        by_status = {status: 0 for status in OrderStatus}
        total_value = 0.0
        for order in self._orders:
            by_status[order.status] += 1
            total_value += order.total.amount
        return OrderStats(
            total=len(self._orders),
            fulfilled=by_status[OrderStatus.FULFILLED],
            not_fulfilled=by_status[OrderStatus.NOT_FULFILLED],
            partially_fulfilled=by_status[
                OrderStatus.PARTIALLY_FULFILLED
            ],
            canceled=by_status[OrderStatus.CANCELED],
            total_value=round(total_value, 2),
        )

    def signature(
        self,
        key: Callable[[OrderRecord], str] = _status_key,
    ) -> str:
        """Structural signature: length plus a digest of per-order keys."""
        digest = hashlib.blake2b(digest_size=16)
        for order in self._orders:
            digest.update(key(order).encode("utf-8"))
            digest.update(b"|")
        return f"{len(self._orders)}:{digest.hexdigest()}"

    def _view(
        self,
        name: str,
        key: Callable[[OrderRecord], str],
        compute: Callable[[], Any],
    ) -> Any:
        signature = self.signature(key)
        cached = self._views.get(name)
        if cached is not None and cached.signature == signature:
            return cached.value
        value = compute()
        self._views[name] = DerivedView(signature, value)
        return value

    def _invalidate_views(self) -> None:
        self._views.clear()

    def _index_of(self, order_id: str) -> int:
        for index, order in enumerate(self._orders):
            if order.id == order_id:
                return index
        msg = f"Order {order_id} is in the id set but not the sequence"
        raise LookupError(msg)
