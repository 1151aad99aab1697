# ordercache/models/order.py

"""Canonical order data model shared by the collection, search and counts."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class MalformedRecordError(ValueError):
    """Raised when an order record or raw payload has no usable identifier."""


class OrderStatus(str, Enum):
    """Fulfillment state of an order."""

    NOT_FULFILLED = "NOT_FULFILLED"
    PARTIALLY_FULFILLED = "PARTIALLY_FULFILLED"
    FULFILLED = "FULFILLED"
    CANCELED = "CANCELED"


class PaymentStatus(str, Enum):
    """Payment state of an order as reported by the remote service."""

    PAID = "PAID"
    UNPAID = "UNPAID"
    NOT_PAID = "NOT_PAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    FULLY_REFUNDED = "FULLY_REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
    AUTHORIZED = "AUTHORIZED"
    PENDING = "PENDING"
    DECLINED = "DECLINED"
    CANCELED = "CANCELED"
    PENDING_REFUND = "PENDING_REFUND"
    UNKNOWN = "UNKNOWN"


UNFULFILLED_STATUSES: frozenset[OrderStatus] = frozenset({
    OrderStatus.NOT_FULFILLED,
    OrderStatus.PARTIALLY_FULFILLED,
})


@dataclass(frozen=True)
class Money:
    """A numeric amount with its ISO currency code."""

    amount: float = 0.0
    currency: str = ""


@dataclass
class LineItem:
    """A single product line within an order."""

    name: str
    quantity: int = 1
    price: Money = field(default_factory=Money)
    sku: str = ""
    item_id: str = ""


@dataclass
class CustomerInfo:
    """Customer identity fields; absent values are empty strings."""

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    company: str = ""
    contact_id: str = ""

    @property
    def full_name(self) -> str:
        """First and last name joined with a single space."""
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class OrderRecord:
    """Represents one normalized customer order."""

    id: str
    number: str
    created_at: datetime
    status: OrderStatus = OrderStatus.NOT_FULFILLED
    payment_status: PaymentStatus = PaymentStatus.UNKNOWN
    total: Money = field(default_factory=Money)
    customer: CustomerInfo = field(default_factory=CustomerInfo)
    items: list[LineItem] = field(
        default_factory=lambda: list[LineItem]()
    )
    raw: dict[str, Any] = field(
        default_factory=lambda: dict[str, Any]()
    )

    @property
    def is_unfulfilled(self) -> bool:
        """True for orders still waiting on (part of) their shipment."""
        return self.status in UNFULFILLED_STATUSES
