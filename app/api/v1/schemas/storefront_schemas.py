"""
Modelos Pydantic para productos, carrito, checkout, pedidos y notificaciones.

Los clientes envían JSON en camelCase; los modelos aceptan tanto el alias
camelCase como el nombre Python.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.domain.models.frame import FRAME_MATERIALS, FRAME_SIZES, FRAME_STYLES

MAX_CART_QUANTITY = 10

ManagedOrderStatus = Literal["pending", "paid", "processing", "shipped", "delivered", "cancelled", "refunded"]
ShippingMethod = Literal["Budget", "Standard", "Express", "Overnight"]

DEFAULT_PRICING_COUNTRY = "US"


class CamelModel(BaseModel):
    """Base con alias camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# === PRODUCTOS ===


class ProductCreateRequest(CamelModel):
    """Alta de un producto enmarcado a partir de una imagen generada."""

    image_id: str = Field(..., min_length=1, description="Imagen de origen")
    frame_size: str = Field(..., description="small | medium | large | extra_large")
    frame_style: str = Field(..., description="Color del marco")
    frame_material: str = Field(default="wood", description="Material del marco")
    price: float = Field(..., gt=0)
    cost: Optional[float] = Field(None, gt=0, description="Costo; por defecto 40% del precio")

    @field_validator("frame_size")
    @classmethod
    def validate_frame_size(cls, v):
        if v not in FRAME_SIZES:
            raise ValueError(f"frame_size must be one of {', '.join(FRAME_SIZES)}")
        return v

    @field_validator("frame_style")
    @classmethod
    def validate_frame_style(cls, v):
        if v not in FRAME_STYLES:
            raise ValueError(f"frame_style must be one of {', '.join(FRAME_STYLES)}")
        return v

    @field_validator("frame_material")
    @classmethod
    def validate_frame_material(cls, v):
        if v not in FRAME_MATERIALS:
            raise ValueError(f"frame_material must be one of {', '.join(FRAME_MATERIALS)}")
        return v


class ProductUpdateRequest(CamelModel):
    price: Optional[float] = Field(None, gt=0)
    cost: Optional[float] = Field(None, gt=0)
    status: Optional[Literal["active", "inactive", "discontinued"]] = None


# === CARRITO ===


class CartAddRequest(CamelModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=1, le=MAX_CART_QUANTITY)


class CartItemQuantityRequest(CamelModel):
    quantity: int = Field(..., ge=1, le=MAX_CART_QUANTITY)


class CartUpdateRequest(CartItemQuantityRequest):
    cart_item_id: str = Field(..., min_length=1)


class ShippingAddressRequest(CamelModel):
    """Dirección mínima para cotizar envío; se aceptan campos extra de la dirección completa."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    country_code: str = Field(..., min_length=2, max_length=2)
    state_or_county: Optional[str] = None
    postal_code: Optional[str] = None

    @field_validator("country_code")
    @classmethod
    def upper_country(cls, v):
        return v.upper()

    def to_address(self) -> dict:
        """Dirección en camelCase con los campos extra enviados por el cliente."""
        return self.model_dump(by_alias=True, exclude_none=True)


# === CHECKOUT ===


class CheckoutSessionRequest(CamelModel):
    cart_item_ids: List[str] = Field(..., min_length=1)
    shipping_address: ShippingAddressRequest
    customer_email: Optional[str] = None


# === PRECIOS ===


class PricingItemRequest(CamelModel):
    sku: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=1, le=MAX_CART_QUANTITY)
    frame_config: Optional[Dict[str, Any]] = None

    def to_pricing_item(self) -> dict:
        return {"sku": self.sku, "quantity": self.quantity, "frame_config": self.frame_config}


class PricingRequest(CamelModel):
    """
    Precio de items para un destino.

    El país sale de la dirección, si no de ``country``, si no US.
    """

    items: List[PricingItemRequest] = Field(..., min_length=1)
    country: Optional[str] = Field(None, min_length=2, max_length=2)
    address: Optional[ShippingAddressRequest] = None
    shipping_method: ShippingMethod = "Standard"

    def destination_country(self) -> str:
        if self.address:
            return self.address.country_code
        return (self.country or DEFAULT_PRICING_COUNTRY).upper()


# === PEDIDOS ===


class OrderStatusUpdateRequest(CamelModel):
    """Cambio manual de estado (administración)."""

    order_id: str = Field(..., min_length=1)
    status: ManagedOrderStatus
    reason: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[str] = None
    notes: Optional[str] = None

    def to_update(self) -> dict:
        return self.model_dump(by_alias=True)


class OrderActionRequest(BaseModel):
    action: str


# === NOTIFICACIONES ===


class MarkNotificationsReadRequest(CamelModel):
    notification_ids: List[str] = Field(..., min_length=1)


# === DROPSHIP ===


class DropshipOrderRequest(CamelModel):
    order_id: str = Field(..., min_length=1)


class RetryProcessRequest(CamelModel):
    limit: int = Field(default=100, ge=1, le=500)
    retry_failed_hours: Optional[int] = Field(None, ge=1, le=720)
    operation_type: Optional[str] = None
