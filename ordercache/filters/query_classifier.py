# ordercache/filters/query_classifier.py

"""Free-text query classification and remote filter construction.

The remote order service only supports structured filters, so every
free-text query is first classified:

- purely numeric text is an order number (exact match);
- a complete e-mail address is matched exactly;
- text containing ``@`` is treated as an e-mail prefix;
- anything else is a name and needs identity resolution before it can
  be expressed as a filter.
"""

import logging
import re
from datetime import timedelta
from enum import Enum, auto
from typing import Any

from ordercache.config.settings import Settings
from ordercache.filters.order_matcher import (
    FULFILLMENT_VALUES,
    PAYMENT_VALUES,
)
from ordercache.models.search import SearchFilters, StatusType

logger = logging.getLogger("ordercache.query_classifier")

_NUMERIC_RE = re.compile(r"^\d+$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class QueryKind(Enum):
    """Shape of a free-text query as seen by the remote stage."""

    EMPTY = auto()
    ORDER_NUMBER = auto()
    EMAIL = auto()
    PARTIAL_EMAIL = auto()
    NAME = auto()
    TOO_SHORT = auto()


def classify_query(text: str) -> QueryKind:
    """Classify a trimmed free-text query."""
    term = text.strip()
    if not term:
        return QueryKind.EMPTY
    if _NUMERIC_RE.match(term):
        return QueryKind.ORDER_NUMBER
    if _EMAIL_RE.match(term):
        return QueryKind.EMAIL
    if "@" in term:
        return QueryKind.PARTIAL_EMAIL
    if len(term) < Settings.SEARCH_MIN_REMOTE_LENGTH:
        return QueryKind.TOO_SHORT
    return QueryKind.NAME


class RemoteFilterBuilder:
    """Build structured remote filters from queries and filters."""

    @staticmethod
    def base_filter() -> dict[str, Any]:
        """Filter shared by every search: skip draft orders."""
        return {"status": {"$ne": "INITIALIZED"}}

    @staticmethod
    def for_text(
        text: str,
        kind: QueryKind,
        identifiers: list[str] | None = None,
    ) -> dict[str, Any] | None:
        """Translate a classified query into filter clauses.

        Returns ``None`` when the remote stage cannot contribute, e.g.
        a name query with no resolved identifiers.
        """
        term = text.strip()
        if kind is QueryKind.EMPTY:
            return {}
        if kind is QueryKind.ORDER_NUMBER:
            return {"number": {"$eq": int(term)}}
        if kind is QueryKind.EMAIL:
            return {"buyerInfo.email": {"$eq": term}}
        if kind is QueryKind.PARTIAL_EMAIL:
            return {"buyerInfo.email": {"$startsWith": term}}
        if kind is QueryKind.NAME and identifiers:
            return {
                "$or": [
                    {"buyerInfo.contactId": {"$in": identifiers}},
                    {
                        "billingInfo.contactDetails.fullName": {
                            "$startsWith": term
                        }
                    },
                    {"buyerInfo.email": {"$startsWith": term}},
                ]
            }
        return None

    @staticmethod
    def with_filters(
        clauses: dict[str, Any], filters: SearchFilters,
    ) -> dict[str, Any]:
        """Combine text clauses with status and date filters."""
        result = {**RemoteFilterBuilder.base_filter(), **clauses}

        statuses = sorted(s.value for s in filters.statuses)
        if len(statuses) == 1:
            result["fulfillmentStatus"] = {"$eq": statuses[0]}
        elif statuses:
            result["fulfillmentStatus"] = {"$in": statuses}

        date_filter: dict[str, str] = {}
        if filters.date_from:
            date_filter["$gte"] = filters.date_from.isoformat()
        if filters.date_to:
            # Exclusive upper bound includes the whole end day
            end = filters.date_to + timedelta(days=1)
            date_filter["$lt"] = end.isoformat()
        if date_filter:
            result["createdDate"] = date_filter

        return result

    @staticmethod
    def for_status(
        status_type: StatusType, status_value: str,
    ) -> dict[str, Any]:
        """Remote filter for a status-only search."""
        result: dict[str, Any] = {
            **RemoteFilterBuilder.base_filter(),
            "archived": {"$ne": True},
        }

        if status_type is StatusType.FULFILLMENT:
            if status_value == "canceled":
                result["status"] = {"$eq": "CANCELED"}
                return result
            wanted = FULFILLMENT_VALUES.get(status_value)
            if wanted:
                (only,) = wanted
                result["fulfillmentStatus"] = {"$eq": only.value}
            return result

        wanted_payment = PAYMENT_VALUES.get(status_value)
        if not wanted_payment:
            logger.debug(
                "Unknown payment status value '%s', no status clause",
                status_value,
            )
            return result
        values = sorted(s.value for s in wanted_payment)
        if len(values) == 1:
            result["paymentStatus"] = {"$eq": values[0]}
        else:
            result["paymentStatus"] = {"$in": values}
        return result
