# ordercache/models/search.py

"""Search request, result and remote paging models."""

import json
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from ordercache.models.order import OrderRecord, OrderStatus


class StatusType(str, Enum):
    """Which status family a status-only search filters on."""

    FULFILLMENT = "fulfillment"
    PAYMENT = "payment"


@dataclass(frozen=True)
class SearchFilters:
    """Structured filters applied alongside a free-text query.

    ``date_from`` and ``date_to`` are inclusive calendar days.
    """

    statuses: frozenset[OrderStatus] = frozenset()
    date_from: date | None = None
    date_to: date | None = None
    limit: int = 100

    def cache_key(self) -> str:
        """Stable signature of every field that changes the result set."""
        return json.dumps(
            {
                "status": sorted(s.value for s in self.statuses),
                "from": self.date_from.isoformat() if self.date_from else None,
                "to": self.date_to.isoformat() if self.date_to else None,
                "limit": self.limit,
            },
            sort_keys=True,
        )


@dataclass
class SearchResult:
    """Container for a completed two-stage search."""

    query: str
    orders: list[OrderRecord] = field(
        default_factory=lambda: list[OrderRecord]()
    )
    from_local: list[OrderRecord] = field(
        default_factory=lambda: list[OrderRecord]()
    )
    from_remote: list[OrderRecord] = field(
        default_factory=lambda: list[OrderRecord]()
    )
    has_more: bool = False
    next_cursor: str | None = None
    search_time: float = 0.0
    computed_at: float = 0.0
    cache_hit: bool = False
    errors: list[str] = field(
        default_factory=lambda: list[str]()
    )

    @property
    def total_found(self) -> int:
        """Number of orders in the merged result."""
        return len(self.orders)


@dataclass(frozen=True)
class GatewayQuery:
    """A single paginated request to the remote order service."""

    filter: dict[str, Any]
    sort: tuple[tuple[str, str], ...] = (("createdDate", "DESC"),)
    limit: int = 100
    cursor: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Render the query as the remote service's JSON body."""
        paging: dict[str, Any] = {"limit": self.limit}
        if self.cursor:
            paging["cursor"] = self.cursor
        return {
            "search": {
                "filter": self.filter,
                "sort": [
                    {"fieldName": name, "order": order}
                    for name, order in self.sort
                ],
                "cursorPaging": paging,
            }
        }


@dataclass
class GatewayPage:
    """One page of raw, un-normalized remote records."""

    records: list[dict[str, Any]] = field(
        default_factory=lambda: list[dict[str, Any]]()
    )
    has_next: bool = False
    next_cursor: str | None = None
