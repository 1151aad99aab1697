# ordercache/services/search_orchestrator.py

"""Orchestrates two-stage (local + remote) order searches with caching."""

import asyncio
import dataclasses
import logging
import time
from collections.abc import Callable, Sequence
from typing import Any

from ordercache.config.settings import Settings
from ordercache.filters.deduplicator import OrderDeduplicator
from ordercache.filters.order_mapper import map_raw_orders
from ordercache.filters.order_matcher import OrderMatcher
from ordercache.filters.query_classifier import (
    QueryKind,
    RemoteFilterBuilder,
    classify_query,
)
from ordercache.models.order import OrderRecord
from ordercache.models.search import (
    GatewayQuery,
    SearchFilters,
    SearchResult,
    StatusType,
)
from ordercache.services.debouncer import Debouncer
from ordercache.services.gateway import IdentityResolver, RemoteOrderGateway
from ordercache.storage.order_collection import OrderCollection
from ordercache.storage.search_cache import SearchCache

logger = logging.getLogger("ordercache.orchestrator")

ResultCallback = Callable[[SearchResult], Any]


def normalize_query(query: str) -> str:
    """Trim and case-fold a free-text query."""
    return query.strip().casefold()


def _detached(result: SearchResult, cache_hit: bool = False) -> SearchResult:
    """Copy of *result* that shares no lists with the original."""
    return dataclasses.replace(
        result,
        orders=list(result.orders),
        from_local=list(result.from_local),
        from_remote=list(result.from_remote),
        errors=list(result.errors),
        cache_hit=cache_hit,
    )


@dataclasses.dataclass
class _RefinementState:
    """Last free-text query and the local results it produced.

    ``computed_at`` is the cache-clock time of the collection snapshot
    those results were scanned from.
    """

    term: str = ""
    filters_key: str = ""
    local: list[OrderRecord] = dataclasses.field(
        default_factory=lambda: list[OrderRecord]()
    )
    computed_at: float = 0.0


class SearchOrchestrator:
    """Coordinates the local scan, remote query, merge and result cache.

    The caller always gets a :class:`SearchResult`; remote failures are
    recorded in ``result.errors`` and degrade to a local-only result.
    """

    def __init__(
        self,
        collection: OrderCollection,
        gateway: RemoteOrderGateway | None = None,
        resolver: IdentityResolver | None = None,
        cache: SearchCache | None = None,
        debounce_delay: float | None = None,
    ) -> None:
        self.collection = collection
        self.cache = cache or SearchCache()
        self._gateway = gateway
        self._resolver = resolver
        self._debouncer: Debouncer[SearchResult] = Debouncer(debounce_delay)
        self._refinement = _RefinementState()

    # ── Free-text search ─────────────────────────────────

    async def search(
        self,
        query: str,
        filters: SearchFilters | None = None,
    ) -> SearchResult:
        """Run a two-stage search, served from cache when fresh."""
        start = time.perf_counter()
        filters = filters or SearchFilters()
        term = normalize_query(query)
        filters_key = filters.cache_key()
        key = f"text|{term}|{filters_key}"

        cached = self.cache.get(key)
        if cached is not None:
            self._remember(
                term, filters_key, cached.from_local, cached.computed_at,
            )
            return _detached(cached, cache_hit=True)

        # A refined scan is only as fresh as the snapshot it narrows
        domain, computed_at = self._scan_domain(term, filters_key)
        result = SearchResult(query=term, computed_at=computed_at)
        result.from_local = OrderMatcher.scan(domain, term, filters)
        self._remember(term, filters_key, result.from_local, computed_at)

        remote_filter = await self._text_remote_filter(query, filters)
        if remote_filter is not None:
            await self._run_remote(
                result,
                remote_filter,
                min(filters.limit, Settings.REMOTE_PAGE_LIMIT),
            )

        self._finish(result, start)
        self.cache.store(key, _detached(result), result.computed_at)
        logger.info(
            "Search '%s': %d local, %d remote, %d merged in %.3fs",
            term,
            len(result.from_local),
            len(result.from_remote),
            result.total_found,
            result.search_time,
        )
        return result

    def search_debounced(
        self,
        query: str,
        filters: SearchFilters | None = None,
        callback: ResultCallback | None = None,
    ) -> "asyncio.Future[SearchResult]":
        """Schedule :meth:`search` after the debounce window.

        A newer call supersedes this one (its future is cancelled).
        *callback*, if given, receives the result once it is ready.
        """
        async def run() -> SearchResult:
            result = await self.search(query, filters)
            if callback is not None:
                callback(result)
            return result

        return self._debouncer.schedule(run)

    def cancel_pending(self) -> bool:
        """Cancel a debounced search that has not started yet."""
        return self._debouncer.cancel()

    # ── Status-only search ───────────────────────────────

    async def search_by_status(
        self,
        status_type: StatusType | str,
        status_value: str,
    ) -> SearchResult:
        """Two-stage search on a single fulfillment or payment status."""
        start = time.perf_counter()
        kind = StatusType(status_type)
        value = status_value.strip().lower()
        key = f"status|{kind.value}|{value}"

        cached = self.cache.get(key)
        if cached is not None:
            return _detached(cached, cache_hit=True)

        result = SearchResult(
            query=f"{kind.value}:{value}", computed_at=self.cache.now(),
        )
        result.from_local = OrderMatcher.filter_by_status_value(
            self.collection.snapshot(), kind, value,
        )
        await self._run_remote(
            result,
            RemoteFilterBuilder.for_status(kind, value),
            Settings.REMOTE_PAGE_LIMIT,
        )

        self._finish(result, start)
        self.cache.store(key, _detached(result), result.computed_at)
        logger.info(
            "Status search %s=%s: %d merged (more: %s)",
            kind.value,
            value,
            result.total_found,
            result.has_more,
        )
        return result

    async def load_more_status(
        self,
        status_type: StatusType | str,
        status_value: str,
        cursor: str,
    ) -> SearchResult:
        """Fetch the next remote page of a status-only search.

        Continuation pages are never cached.
        """
        start = time.perf_counter()
        kind = StatusType(status_type)
        value = status_value.strip().lower()
        result = SearchResult(
            query=f"{kind.value}:{value}", computed_at=self.cache.now(),
        )
        await self._run_remote(
            result,
            RemoteFilterBuilder.for_status(kind, value),
            Settings.REMOTE_PAGE_LIMIT,
            cursor=cursor,
        )
        self._finish(result, start)
        return result

    def clear_cache(self) -> int:
        """Purge cached results and the refinement state."""
        self._refinement = _RefinementState()
        return self.cache.clear()

    # ── Private helpers ──────────────────────────────────

    def _remember(
        self,
        term: str,
        filters_key: str,
        local: list[OrderRecord],
        computed_at: float,
    ) -> None:
        self._refinement = _RefinementState(
            term, filters_key, local, computed_at,
        )

    def _scan_domain(
        self, term: str, filters_key: str,
    ) -> tuple[Sequence[OrderRecord], float]:
        """Pick the local scan domain and the time it was snapshotted.

        Substring matching is monotonic under query extension, so a
        query extending the previous one (with identical filters) only
        needs to rescan the previous local matches.  Those matches are
        reused only while younger than the cache TTL; after that the
        whole collection is scanned again so pushed orders show up.
        """
        now = self.cache.now()
        last = self._refinement
        if (
            last.term
            and term.startswith(last.term)
            and filters_key == last.filters_key
            and now - last.computed_at < self.cache.ttl
        ):
            logger.debug(
                "Refining '%s' from %d previous matches",
                term,
                len(last.local),
            )
            return last.local, last.computed_at
        return self.collection.snapshot(), now

    async def _text_remote_filter(
        self, query: str, filters: SearchFilters,
    ) -> dict[str, Any] | None:
        """Build the remote filter for a free-text query.

        ``None`` means the remote stage contributes nothing; this is a
        normal local-only outcome, not an error.
        """
        if self._gateway is None:
            return None
        text = query.strip()
        kind = classify_query(text)

        if kind is QueryKind.TOO_SHORT:
            return None
        if kind is QueryKind.EMPTY and not (
            filters.statuses or filters.date_from or filters.date_to
        ):
            return None

        identifiers: list[str] | None = None
        if kind is QueryKind.NAME:
            if self._resolver is None:
                logger.debug("No identity resolver, '%s' is local-only", text)
                return None
            try:
                identifiers = await self._resolver.resolve_by_name(text)
            except Exception as exc:
                logger.warning(
                    "Identity lookup for '%s' failed, local-only: %s",
                    text,
                    exc,
                )
                return None
            if not identifiers:
                logger.debug("No identities matched '%s'", text)
                return None

        clauses = RemoteFilterBuilder.for_text(text, kind, identifiers)
        if clauses is None:
            return None
        return RemoteFilterBuilder.with_filters(clauses, filters)

    async def _run_remote(
        self,
        result: SearchResult,
        remote_filter: dict[str, Any],
        limit: int,
        cursor: str | None = None,
    ) -> None:
        """Query the gateway once and record records or errors on *result*."""
        if self._gateway is None:
            return
        request = GatewayQuery(
            filter=remote_filter, limit=limit, cursor=cursor,
        )
        try:
            page = await self._gateway.query(request)
        except Exception as exc:
            result.errors.append(str(exc) or type(exc).__name__)
            logger.error(
                "Remote stage failed for '%s': %s",
                result.query,
                exc,
                exc_info=exc,
            )
            return

        result.from_remote, dropped = map_raw_orders(page.records)
        if dropped:
            result.errors.append(
                f"{dropped} malformed remote orders skipped"
            )
        result.has_more = page.has_next
        result.next_cursor = page.next_cursor

    def _finish(self, result: SearchResult, start: float) -> None:
        result.orders, _ = OrderDeduplicator.merge(
            result.from_local, result.from_remote,
        )
        result.search_time = time.perf_counter() - start
