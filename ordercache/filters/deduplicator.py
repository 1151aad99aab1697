# ordercache/filters/deduplicator.py

"""Merge local and remote search results without duplicates."""

import logging

from ordercache.models.order import OrderRecord

logger = logging.getLogger("ordercache.filters")


class OrderDeduplicator:
    """Deduplicate order sequences by id."""

    @staticmethod
    def deduplicate(
        orders: list[OrderRecord],
    ) -> tuple[list[OrderRecord], int]:
        """Drop repeated ids, keeping the first occurrence.

        Returns the deduplicated list and the count of removed dupes.
        """
        seen: set[str] = set()
        kept: list[OrderRecord] = []
        removed = 0
        for order in orders:
            if order.id in seen:
                removed += 1
                continue
            seen.add(order.id)
            kept.append(order)
        return kept, removed

    @staticmethod
    def merge(
        local: list[OrderRecord],
        remote: list[OrderRecord],
    ) -> tuple[list[OrderRecord], int]:
        """Merge two result sets, newest first.

        Local records take precedence on id collision because they
        reflect the latest pushed state; unseen remote records are
        appended.  Returns the merged list and the number of remote
        records dropped as duplicates.
        """
        merged, removed = OrderDeduplicator.deduplicate(
            [*local, *remote]
        )
        merged.sort(key=lambda o: o.created_at, reverse=True)

        if removed:
            logger.debug(
                "Merge dropped %d duplicate orders", removed,
            )
        return merged, removed
