"""
Pricing domain models.

Results returned by the quote-backed pricing service and the cart
totals calculator.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class PricingResult:
    """
    Totals for a set of items shipped to one country.

    Attributes:
        subtotal: Items cost from the vendor quote
        shipping: Shipping cost from the vendor quote
        tax: Tax computed on the items cost
        total: subtotal + shipping + tax
        currency: Quote currency
        shipping_method: Shipping method of the chosen quote
        estimated_days: Delivery estimate for that method
    """

    subtotal: float
    shipping: float
    tax: float
    total: float
    currency: str
    shipping_method: str = "Standard"
    estimated_days: int = 7

    def to_dict(self) -> dict[str, Any]:
        return {
            "subtotal": self.subtotal,
            "shipping": self.shipping,
            "tax": self.tax,
            "total": self.total,
            "currency": self.currency,
            "shippingMethod": self.shipping_method,
            "estimatedDays": self.estimated_days,
        }


@dataclass
class ShippingOption:
    method: str
    cost: float
    currency: str
    estimated_days: int
    service_name: str | None = None
    carrier: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "cost": self.cost,
            "currency": self.currency,
            "estimatedDays": self.estimated_days,
            "serviceName": self.service_name,
            "carrier": self.carrier,
        }


@dataclass
class ShippingResult:
    """
    Shipping quote selected for checkout or the cart shipping estimate.

    ``is_estimated`` is set when the vendor quote failed and the
    location based estimate was used instead.
    """

    cost: float
    currency: str
    estimated_days: int
    service_name: str
    carrier: str = "Prodigi"
    tracking_available: bool = True
    is_estimated: bool = False
    provider: str = "prodigi"
    options: list[ShippingOption] = field(default_factory=list)
    free_shipping_available: bool = False
    free_shipping_threshold: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "shippingCost": self.cost,
            "estimatedDays": self.estimated_days,
            "serviceName": self.service_name,
            "carrier": self.carrier,
            "currency": self.currency,
            "freeShippingAvailable": self.free_shipping_available,
            "freeShippingThreshold": self.free_shipping_threshold,
            "allQuotes": [option.to_dict() for option in self.options],
            "isEstimated": self.is_estimated,
            "provider": self.provider,
        }


@dataclass
class CartTotals:
    subtotal: float
    tax_amount: float
    shipping_amount: float
    total: float
    item_count: int
    discount_amount: float = 0.0
    currency: str = "USD"

    def to_dict(self) -> dict[str, Any]:
        return {
            "subtotal": self.subtotal,
            "taxAmount": self.tax_amount,
            "shippingAmount": self.shipping_amount,
            "discountAmount": self.discount_amount,
            "total": self.total,
            "itemCount": self.item_count,
            "currency": self.currency,
        }
