# ordercache/services/session.py

"""Per-session wiring of the order collection, search and counts."""

import logging
from collections.abc import Iterable
from typing import Any

from ordercache.config.settings import Settings
from ordercache.filters.order_mapper import map_raw_order
from ordercache.models.order import MalformedRecordError, OrderRecord
from ordercache.models.search import GatewayQuery
from ordercache.services.customer_counts import CustomerCountCache
from ordercache.services.gateway import (
    GatewayError,
    IdentityResolver,
    RemoteOrderGateway,
    ResilientGateway,
)
from ordercache.services.search_orchestrator import SearchOrchestrator
from ordercache.storage.kv_store import SqliteKV
from ordercache.storage.order_collection import OrderCollection

logger = logging.getLogger("ordercache.session")


class OrderSession:
    """Explicit context shared by every producer and consumer of orders.

    Producers (poll refresh, push events, user actions) mutate the
    collection only through this object so that a new order also
    invalidates its customer's cached count.
    """

    def __init__(
        self,
        gateway: RemoteOrderGateway,
        resolver: IdentityResolver | None = None,
        storage: SqliteKV | None = None,
        collection: OrderCollection | None = None,
        search: SearchOrchestrator | None = None,
        counts: CustomerCountCache | None = None,
    ) -> None:
        self.gateway = gateway
        self.storage = storage
        self.collection = collection or OrderCollection()
        self.search = search or SearchOrchestrator(
            self.collection, gateway, resolver,
        )
        self.counts = counts or CustomerCountCache(gateway, storage)

    def ingest(
        self, payloads: Iterable[dict[str, Any]],
    ) -> tuple[int, int]:
        """Map and upsert a batch of raw payloads.

        Returns ``(upserted, skipped)``; malformed payloads are skipped.
        """
        upserted = 0
        skipped = 0
        for raw in payloads:
            try:
                record = map_raw_order(raw)
            except MalformedRecordError as exc:
                skipped += 1
                logger.warning("Skipped malformed order payload: %s", exc)
                continue
            self.collection.upsert(record)
            upserted += 1
        logger.info(
            "Ingested %d orders (%d skipped), collection size %d",
            upserted,
            skipped,
            len(self.collection),
        )
        return upserted, skipped

    def handle_new_order(self, record: OrderRecord) -> bool:
        """Upsert a pushed order and drop its customer's stale count."""
        is_new = self.collection.upsert(record)
        if record.customer.email:
            self.counts.invalidate(record.customer.email)
        return is_new

    def remove(self, order_id: str) -> bool:
        """Remove an order from the collection."""
        return self.collection.remove_by_id(order_id)

    async def refresh(self, limit: int | None = None) -> int:
        """Poll the newest page of orders and upsert it.

        Gateway failures are logged and leave the collection untouched.
        Returns the number of records upserted.
        """
        page_size = min(
            limit or Settings.COLLECTION_CAPACITY,
            Settings.REMOTE_PAGE_LIMIT,
        )
        try:
            page = await self.gateway.query(
                GatewayQuery(
                    filter={"status": {"$ne": "INITIALIZED"}},
                    limit=page_size,
                )
            )
        except GatewayError as exc:
            logger.error("Order refresh failed: %s", exc)
            return 0
        # Oldest first so the newest ends up at the head
        upserted, _ = self.ingest(reversed(page.records))
        return upserted

    async def close(self) -> None:
        """Wait for background count work, then release storage."""
        await self.counts.drain()
        if self.storage is not None:
            self.storage.close()
        logger.info("Order session closed")


def build_session(
    gateway: RemoteOrderGateway | None = None,
    resolver: IdentityResolver | None = None,
    storage: SqliteKV | None = None,
) -> OrderSession:
    """Wire a session from :class:`Settings`.

    Without explicit collaborators this uses the HTTP gateway and
    identity resolver behind a :class:`ResilientGateway`, and SQLite
    storage at ``Settings.KV_DB_PATH``.
    """
    if gateway is None:
        from ordercache.services.http_gateway import (
            HttpIdentityResolver,
            HttpOrderGateway,
        )

        gateway = HttpOrderGateway()
        if resolver is None:
            resolver = HttpIdentityResolver()

    resilient = ResilientGateway(gateway, resolver)
    return OrderSession(
        gateway=resilient,
        resolver=resilient if resilient.has_resolver else None,
        storage=storage or SqliteKV(),
    )
