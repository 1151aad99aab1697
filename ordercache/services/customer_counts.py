# ordercache/services/customer_counts.py

"""Per-customer order counts with TTL, bounded eviction and persistence.

Reads never block: :meth:`CustomerCountCache.get` answers from memory
and, when the entry is missing or stale, starts one background
resolution that pages through the remote order service.  Only one
resolution per customer is in flight at a time.
"""

import asyncio
import json
import logging
import math
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, cast

from ordercache.config.settings import Settings
from ordercache.models.search import GatewayQuery
from ordercache.services.gateway import GatewayError, RemoteOrderGateway
from ordercache.storage.kv_store import PersistentKV

logger = logging.getLogger("ordercache.counts")


@dataclass
class CountEntry:
    """Resolved (or resolving) order count for one customer."""

    count: int
    timestamp: float
    in_flight: bool = False
    invalidated: bool = False


def normalize_email(email: str | None) -> str:
    """Cache key for a customer e-mail."""
    return (email or "").strip().lower()


class CustomerCountCache:
    """TTL-bound, size-bound cache of customer order counts."""

    def __init__(
        self,
        gateway: RemoteOrderGateway,
        storage: PersistentKV | None = None,
        ttl: float | None = None,
        capacity: int | None = None,
        page_delay: float | None = None,
        customer_delay: float | None = None,
        max_pages: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._gateway = gateway
        self._storage = storage
        self._ttl: float = Settings.COUNT_TTL if ttl is None else ttl
        self.capacity: int = capacity or Settings.COUNT_CAPACITY
        self._page_delay: float = (
            Settings.COUNT_PAGE_DELAY if page_delay is None else page_delay
        )
        self._customer_delay: float = (
            Settings.COUNT_CUSTOMER_DELAY
            if customer_delay is None
            else customer_delay
        )
        self._max_pages: int = max_pages or Settings.COUNT_MAX_PAGES
        self._clock = clock
        self._entries: dict[str, CountEntry] = {}
        self._tasks: dict[str, asyncio.Task[int]] = {}
        self._running: set[asyncio.Task[int]] = set()
        self._load()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, email: object) -> bool:
        return isinstance(email, str) and normalize_email(email) in self._entries

    # ── Reads ────────────────────────────────────────────

    def get(self, email: str) -> int:
        """Return the known count now; refresh in the background if stale.

        Must be called from a running event loop for the refresh to be
        scheduled; otherwise only the cached value is returned.
        """
        key = normalize_email(email)
        if not key:
            return 0
        entry = self._entries.get(key)
        if entry is None or (
            not entry.in_flight and self._is_stale(entry)
        ):
            try:
                self._start_resolution(key)
            except RuntimeError:
                logger.debug(
                    "No running event loop, count for %s not refreshed",
                    key,
                )
            entry = self._entries.get(key)
        return entry.count if entry else 0

    def cached_count(self, email: str) -> int:
        """Return the cached count without ever scheduling a refresh."""
        entry = self._entries.get(normalize_email(email))
        return entry.count if entry else 0

    def is_in_flight(self, email: str) -> bool:
        """Whether a resolution for *email* is currently running."""
        entry = self._entries.get(normalize_email(email))
        return bool(entry and entry.in_flight)

    async def resolve(self, email: str) -> int:
        """Return a fresh count, waiting for a resolution if needed.

        Concurrent callers for the same customer share one resolution.
        """
        key = normalize_email(email)
        if not key:
            return 0
        entry = self._entries.get(key)
        if entry and not entry.in_flight and not self._is_stale(entry):
            return entry.count
        task = self._tasks.get(key) or self._start_resolution(key)
        return await asyncio.shield(task)

    async def pre_calculate(self, emails: Iterable[str]) -> dict[str, int]:
        """Backfill counts for several customers, one at a time.

        A fixed delay between customers keeps the remote service from
        being burst.  Returns the resolved count per normalised e-mail.
        """
        keys = list(dict.fromkeys(
            k for k in (normalize_email(e) for e in emails) if k
        ))
        results: dict[str, int] = {}
        for index, key in enumerate(keys):
            try:
                results[key] = await self.resolve(key)
            except Exception:
                logger.error(
                    "Backfill failed for %s", key, exc_info=True,
                )
                results[key] = self.cached_count(key)
            if index < len(keys) - 1 and self._customer_delay > 0:
                await asyncio.sleep(self._customer_delay)
        logger.info("Backfilled order counts for %d customers", len(keys))
        return results

    # ── Invalidation ─────────────────────────────────────

    def invalidate(self, email: str) -> None:
        """Forget a customer's count so the next read re-resolves it.

        A resolution already running for the customer is not joined by
        a second one; it recounts once its current pass finishes.
        """
        key = normalize_email(email)
        entry = self._entries.get(key)
        if entry is None:
            return
        if entry.in_flight:
            entry.count = 0
            entry.invalidated = True
            logger.debug("Invalidated in-flight order count for %s", key)
            return
        del self._entries[key]
        logger.debug("Invalidated order count for %s", key)

    def clear(self) -> None:
        """Drop every entry from memory and from durable storage."""
        self._entries.clear()
        if self._storage is not None:
            self._storage.delete(Settings.COUNT_STORAGE_KEY)
        logger.info("Customer count cache cleared")

    async def drain(self) -> None:
        """Wait for all in-flight resolutions to finish."""
        while self._running:
            await asyncio.gather(
                *list(self._running), return_exceptions=True
            )

    # ── Resolution ───────────────────────────────────────

    def _is_stale(self, entry: CountEntry) -> bool:
        return self._clock() - entry.timestamp >= self._ttl

    def _start_resolution(self, key: str) -> asyncio.Task[int]:
        loop = asyncio.get_running_loop()
        previous = self._entries.get(key)
        marker = CountEntry(
            count=previous.count if previous else 0,
            timestamp=self._clock(),
            in_flight=True,
        )
        self._set_entry(key, marker)
        task = loop.create_task(self._resolve(key, marker))
        self._tasks[key] = task
        self._running.add(task)

        def finished(done: asyncio.Task[int]) -> None:
            self._running.discard(done)
            if self._tasks.get(key) is done:
                del self._tasks[key]
            if not done.cancelled() and done.exception() is not None:
                logger.error(
                    "Count resolution for %s ended with an error",
                    key,
                    exc_info=done.exception(),
                )

        task.add_done_callback(finished)
        return task

    async def _resolve(self, key: str, marker: CountEntry) -> int:
        """Count *key*'s orders and settle *marker* with the result.

        The result is written only while *marker* still owns the key;
        a clear or eviction in the meantime discards it.
        """
        while True:
            marker.invalidated = False
            try:
                total, complete = await self._count_remote(key)
            except GatewayError as exc:
                logger.warning(
                    "Order count lookup for %s failed, keeping %d: %s",
                    key,
                    marker.count,
                    exc,
                )
                self._settle(
                    key, marker, CountEntry(marker.count, self._clock()),
                )
                return marker.count
            except BaseException:
                # Stale at once so the next read retries
                self._settle(key, marker, CountEntry(marker.count, 0.0))
                raise

            if marker.invalidated and self._entries.get(key) is marker:
                logger.debug("Recounting %s after invalidation", key)
                continue
            break

        settled = self._settle(
            key, marker, CountEntry(total, self._clock()),
        )
        if settled and complete:
            await self._persist()
        logger.debug(
            "Resolved %d orders for %s%s",
            total,
            key,
            "" if complete else " (partial)",
        )
        return total

    def _settle(
        self, key: str, marker: CountEntry, entry: CountEntry,
    ) -> bool:
        if self._entries.get(key) is not marker:
            logger.debug("Discarding superseded order count for %s", key)
            return False
        self._entries[key] = entry
        return True

    async def _count_remote(self, key: str) -> tuple[int, bool]:
        """Page through the customer's orders.

        Returns the accumulated count and whether paging completed.
        An error after the first page keeps the partial count.
        """
        order_filter = {"buyerInfo.email": {"$eq": key}}
        limit = Settings.REMOTE_PAGE_LIMIT
        page = await self._gateway.query(
            GatewayQuery(filter=order_filter, limit=limit)
        )
        total = len(page.records)
        pages = 1
        cursor = page.next_cursor
        while page.has_next and cursor:
            if pages >= self._max_pages:
                logger.warning(
                    "Stopped counting %s after %d pages", key, pages,
                )
                return total, False
            if self._page_delay > 0:
                await asyncio.sleep(self._page_delay)
            try:
                page = await self._gateway.query(
                    GatewayQuery(
                        filter=order_filter, limit=limit, cursor=cursor,
                    )
                )
            except GatewayError as exc:
                logger.warning(
                    "Paging stopped for %s at %d orders: %s",
                    key,
                    total,
                    exc,
                )
                return total, False
            total += len(page.records)
            pages += 1
            cursor = page.next_cursor
        return total, True

    def _set_entry(self, key: str, entry: CountEntry) -> None:
        if key not in self._entries and len(self._entries) >= self.capacity:
            self._evict(exclude=key)
        self._entries[key] = entry

    def _evict(self, exclude: str) -> None:
        """Drop the oldest fraction of entries in one batch."""
        batch = max(
            1, math.ceil(self.capacity * Settings.COUNT_EVICT_FRACTION)
        )
        oldest = sorted(
            (
                k
                for k, e in self._entries.items()
                if k != exclude and not e.in_flight
            ),
            key=lambda k: self._entries[k].timestamp,
        )[:batch]
        for key in oldest:
            del self._entries[key]
        logger.info(
            "Count cache full (%d), evicted %d oldest entries",
            self.capacity,
            len(oldest),
        )

    # ── Persistence ──────────────────────────────────────

    def _snapshot(self) -> dict[str, dict[str, float | int]]:
        return {
            key: {"count": e.count, "timestamp": e.timestamp}
            for key, e in self._entries.items()
            if not e.in_flight
        }

    async def _persist(self) -> None:
        if self._storage is None:
            return
        payload = json.dumps(self._snapshot())
        try:
            await asyncio.to_thread(
                self._storage.write, Settings.COUNT_STORAGE_KEY, payload,
            )
        except Exception:
            logger.error(
                "Failed to persist customer counts", exc_info=True,
            )

    def _load(self) -> None:
        """Populate from durable storage, dropping expired entries."""
        if self._storage is None:
            return
        raw = self._storage.read(Settings.COUNT_STORAGE_KEY)
        if raw is None:
            return

        try:
            parsed: Any = json.loads(raw)
            if not isinstance(parsed, dict):
                msg = "stored counts are not a mapping"
                raise ValueError(msg)
            loaded = {
                normalize_email(str(email)): CountEntry(
                    count=int(data["count"]),
                    timestamp=float(data["timestamp"]),
                )
                for email, data in cast(dict[str, Any], parsed).items()
            }
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning(
                "Discarding corrupted customer count cache: %s", exc,
            )
            self._storage.delete(Settings.COUNT_STORAGE_KEY)
            return

        now = self._clock()
        valid = {
            key: entry
            for key, entry in loaded.items()
            if key and now - entry.timestamp < self._ttl
        }
        newest = sorted(
            valid.items(), key=lambda kv: kv[1].timestamp, reverse=True,
        )[: self.capacity]
        self._entries = dict(newest)
        logger.info(
            "Loaded %d customer counts (%d expired)",
            len(self._entries),
            len(loaded) - len(valid),
        )
        if len(self._entries) != len(loaded):
            self._storage.write(
                Settings.COUNT_STORAGE_KEY, json.dumps(self._snapshot()),
            )
