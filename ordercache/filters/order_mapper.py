# ordercache/filters/order_mapper.py

"""Normalise loosely-typed remote order payloads into OrderRecord."""

import logging
from datetime import datetime, timezone
from typing import Any, cast

from ordercache.models.order import (
    CustomerInfo,
    LineItem,
    MalformedRecordError,
    Money,
    OrderRecord,
    OrderStatus,
    PaymentStatus,
)

logger = logging.getLogger("ordercache.mapper")


def _dict(value: Any) -> dict[str, Any]:
    """Return *value* if it is a mapping, else an empty dict."""
    if isinstance(value, dict):
        return cast(dict[str, Any], value)
    return {}


def _text(*candidates: Any) -> str:
    """Return the first non-empty string among *candidates*."""
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
        if isinstance(candidate, int | float) and not isinstance(
            candidate, bool
        ):
            return str(candidate)
    return ""


def _amount(value: Any) -> float:
    """Parse a numeric amount that may arrive as a string."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Raises:
        MalformedRecordError: if *value* is missing or unparseable.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            msg = f"Unparseable creation date: {value!r}"
            raise MalformedRecordError(msg) from exc
    else:
        msg = f"Missing creation date: {value!r}"
        raise MalformedRecordError(msg)

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _status(raw: dict[str, Any]) -> OrderStatus:
    """Derive the fulfillment status; a canceled order wins."""
    if raw.get("status") in ("CANCELED", "CANCELLED"):
        return OrderStatus.CANCELED
    try:
        return OrderStatus(raw.get("fulfillmentStatus") or "NOT_FULFILLED")
    except ValueError:
        logger.debug(
            "Unknown fulfillment status %r on order %s",
            raw.get("fulfillmentStatus"),
            raw.get("_id"),
        )
        return OrderStatus.NOT_FULFILLED


def _payment_status(raw: dict[str, Any]) -> PaymentStatus:
    """Read the payment status, falling back to the price summary."""
    value = raw.get("paymentStatus") or _dict(
        raw.get("priceSummary")
    ).get("paymentStatus")
    try:
        return PaymentStatus(value or "UNKNOWN")
    except ValueError:
        return PaymentStatus.UNKNOWN


def _customer(raw: dict[str, Any]) -> CustomerInfo:
    """Collect identity fields from recipient, billing and buyer info."""
    recipient = _dict(_dict(raw.get("recipientInfo")).get("contactDetails"))
    billing = _dict(_dict(raw.get("billingInfo")).get("contactDetails"))
    buyer = _dict(raw.get("buyerInfo"))
    return CustomerInfo(
        first_name=_text(recipient.get("firstName"), billing.get("firstName")),
        last_name=_text(recipient.get("lastName"), billing.get("lastName")),
        email=_text(
            buyer.get("email"),
            recipient.get("email"),
            billing.get("email"),
        ),
        phone=_text(recipient.get("phone"), billing.get("phone")),
        company=_text(recipient.get("company"), billing.get("company")),
        contact_id=_text(buyer.get("contactId")),
    )


def _line_items(raw: dict[str, Any], currency: str) -> list[LineItem]:
    """Map raw line items, skipping entries that are not mappings."""
    entries = raw.get("lineItems")
    if not isinstance(entries, list):
        return []
    items: list[LineItem] = []
    for entry in cast(list[Any], entries):
        item = _dict(entry)
        if not item:
            continue
        price = _dict(item.get("price"))
        catalog = _dict(item.get("catalogReference"))
        quantity = item.get("quantity")
        items.append(LineItem(
            name=_text(
                _dict(item.get("productName")).get("original"),
                item.get("name"),
            ) or "Unknown Product",
            quantity=quantity if isinstance(quantity, int) and quantity > 0 else 1,
            price=Money(_amount(price.get("amount")), currency),
            sku=_text(item.get("sku"), catalog.get("catalogItemId")),
            item_id=_text(item.get("_id"), item.get("id")),
        ))
    return items


def map_raw_order(raw: dict[str, Any]) -> OrderRecord:
    """Map one raw remote order into the canonical OrderRecord shape.

    Optional upstream fields are normalised here so that absent values
    never reach matching or cache-key logic.

    Raises:
        MalformedRecordError: if the payload has no id or creation date.
    """
    if not isinstance(raw, dict):
        msg = f"Order payload must be a mapping, got {type(raw).__name__}"
        raise MalformedRecordError(msg)

    order_id = _text(raw.get("_id"), raw.get("id"))
    if not order_id:
        msg = "Order payload has no identifier"
        raise MalformedRecordError(msg)

    total = _dict(_dict(raw.get("priceSummary")).get("total"))
    currency = _text(raw.get("currency"), total.get("currency"))

    return OrderRecord(
        id=order_id,
        number=_text(raw.get("number")),
        created_at=parse_timestamp(
            raw.get("_createdDate") or raw.get("createdDate")
        ),
        status=_status(raw),
        payment_status=_payment_status(raw),
        total=Money(_amount(total.get("amount")), currency),
        customer=_customer(raw),
        items=_line_items(raw, currency),
        raw=raw,
    )


def map_raw_orders(
    payloads: list[dict[str, Any]],
) -> tuple[list[OrderRecord], int]:
    """Map a batch of raw orders, dropping malformed payloads.

    Returns the mapped records and the count of dropped payloads.
    """
    records: list[OrderRecord] = []
    dropped = 0
    for raw in payloads:
        try:
            records.append(map_raw_order(raw))
        except MalformedRecordError as exc:
            dropped += 1
            logger.debug("Dropped malformed order payload: %s", exc)

    if dropped:
        logger.info(
            "Mapping dropped %d malformed order payloads", dropped
        )
    return records, dropped
