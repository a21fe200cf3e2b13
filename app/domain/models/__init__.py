"""
Domain models for business entities.

These models represent core business concepts (orders, frame
configurations, pricing results) and contain their invariants.
"""

from .frame import FrameConfig
from .order import DropshipStatus, OrderStatus, PaymentStatus, ShippingAddress, generate_order_number
from .pricing import CartTotals, PricingResult, ShippingOption, ShippingResult

__all__ = [
    "CartTotals",
    "DropshipStatus",
    "FrameConfig",
    "OrderStatus",
    "PaymentStatus",
    "PricingResult",
    "ShippingAddress",
    "ShippingOption",
    "ShippingResult",
    "generate_order_number",
]
