"""
Order domain model.

Statuses, shipping address normalisation and order number generation
shared by the checkout webhook, fulfillment and order management.
"""

import random
import string
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class OrderStatus(str, Enum):
    """Internal order lifecycle statuses stored in ``orders.status``."""

    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REQUIRES_ACTION = "requires_action"
    DISPUTED = "disputed"
    REFUNDED = "refunded"


class DropshipStatus(str, Enum):
    """Statuses of a row in ``dropship_orders``."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    FAILED = "failed"


# Statuses a customer can filter by in GET /api/orders
ORDER_LIST_STATUSES = (
    OrderStatus.PENDING,
    OrderStatus.PAID,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.REFUNDED,
)


def generate_order_number() -> str:
    """Build ``ORD-{epoch ms}-{9 uppercase alphanumerics}``."""
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=9))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


@dataclass
class ShippingAddress:
    """
    Shipping address as stored in ``orders.shipping_address``.

    The stored JSON has been written by several clients over time, so
    ``from_dict`` accepts snake_case, camelCase and the ``address1``/``zip``
    form alike.

    Attributes:
        line1: First address line
        city: Town or city
        postal_code: Postal or ZIP code
        country: ISO 3166-1 alpha-2 code
        line2: Second address line
        state: State or county
        first_name: Recipient first name
        last_name: Recipient last name
        phone: Contact phone
    """

    line1: str
    city: str
    postal_code: str
    country: str
    line2: str | None = None
    state: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part).strip()

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ShippingAddress":
        data = data or {}
        return cls(
            line1=_first(data, "line1", "address1", "address_line1", "addressLine1") or "",
            line2=_first(data, "line2", "address2", "address_line2", "addressLine2"),
            city=_first(data, "city", "town", "townOrCity") or "",
            state=_first(data, "state", "stateOrCounty", "state_or_county"),
            postal_code=_first(data, "postal_code", "postalCode", "zip", "postalOrZipCode") or "",
            country=(_first(data, "country", "countryCode", "country_code") or "US").upper(),
            first_name=_first(data, "first_name", "firstName"),
            last_name=_first(data, "last_name", "lastName"),
            phone=_first(data, "phone"),
        )

    @classmethod
    def placeholder(cls, currency: str | None = None) -> "ShippingAddress":
        """Address used when neither the stored nor the Stripe address exists."""
        country = "CA" if (currency or "").upper() == "CAD" else "US"
        return cls(
            line1="Address not provided",
            city="Unknown",
            state="Unknown",
            postal_code="00000",
            country=country,
        )
