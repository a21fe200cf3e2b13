"""
Conversión de pedidos locales al formato de pedido de Prodigi.

Los productos del catálogo propio se identifican por tamaño, estilo y
material de marco; aquí se traducen a SKUs de Prodigi y se arma el pedido
v4 a partir de la orden guardada en Supabase.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from app.domain.models.frame import FRAME_SIZES, FRAME_STYLES
from app.services.prodigi.constants import (
    DEFAULT_PRINT_AREA,
    DEFAULT_SHIPPING_METHOD,
    DEFAULT_SIZING,
)
from app.services.prodigi.errors import ProdigiAPIError

logger = logging.getLogger(__name__)

DEFAULT_PRODUCT_SKU = "GLOBAL-CFPM-16X20"

SIZE_SKUS = {
    "small": "GLOBAL-CAN-10x10",
    "medium": "GLOBAL-CFPM-16X20",
    "large": "GLOBAL-FAP-16X24",
    "extra_large": "GLOBAL-FRA-CAN-30X40",
}

# {size}-{style}-wood -> SKU
PRODUCT_SKU_MAP = {
    f"{size}-{style}-wood": SIZE_SKUS[size] for size in FRAME_SIZES for style in FRAME_STYLES
}

STATUS_MAP = {
    "InProgress": "processing",
    "Complete": "shipped",
    "Cancelled": "cancelled",
    "OnHold": "pending",
    "Error": "failed",
}

IMAGE_ID_SUFFIX = re.compile(r"-[a-f0-9]{8}(-[a-z]+-[a-z]+)?$")

LEGACY_SHIPPING_DAYS = 7


def get_product_sku(frame_size: str, frame_style: str, frame_material: str) -> str:
    """
    SKU de Prodigi para una combinación tamaño-estilo-material.

    Returns:
        str: SKU del mapa o ``GLOBAL-CFPM-16X20`` si la combinación no existe
    """
    return PRODUCT_SKU_MAP.get(f"{frame_size}-{frame_style}-{frame_material}", DEFAULT_PRODUCT_SKU)


def extract_base_sku(sku: Optional[str]) -> str:
    """
    Quita el sufijo local de un SKU: ``-xxxxxxxx`` del id de imagen y, en los
    SKUs nuevos, ``-estilo-material``.
    """
    if not sku:
        return ""
    return IMAGE_ID_SUFFIX.sub("", sku)


def get_product_attributes(frame_style: Optional[str], frame_material: Optional[str], sku: str) -> Dict[str, str]:
    """
    Atributos obligatorios según la familia del SKU.

    Marco sobre canvas lleva color y wrap; print enmarcado lleva color;
    canvas simple lleva wrap; el resto no requiere atributos.
    """
    attributes: Dict[str, str] = {}
    color = frame_style if frame_style in FRAME_STYLES else None

    if sku.startswith("GLOBAL-FRA-CAN-"):
        if color:
            attributes["color"] = color
        attributes["wrap"] = "ImageWrap"
    elif sku.startswith("GLOBAL-CFPM-"):
        if color:
            attributes["color"] = color
    elif sku.startswith("GLOBAL-CAN-"):
        attributes["wrap"] = "Black"

    return attributes


def _first(data: Dict[str, Any], *keys: str) -> Optional[Any]:
    for key in keys:
        if data.get(key) not in (None, ""):
            return data[key]
    return None


def _build_address(address: Dict[str, Any]) -> Dict[str, Any]:
    result = {
        "line1": _first(address, "address1", "line1") or "",
        "postalOrZipCode": _first(address, "zip", "postal_code", "postalCode") or "",
        "countryCode": (_first(address, "country", "countryCode") or "").upper(),
        "townOrCity": _first(address, "city") or "",
        "stateOrCounty": _first(address, "state"),
    }
    line2 = _first(address, "address2", "line2")
    if line2:
        result["line2"] = line2
    return result


def _build_name(address: Dict[str, Any]) -> str:
    first_name = _first(address, "firstName", "first_name")
    last_name = _first(address, "lastName", "last_name")
    name = " ".join(part for part in (first_name, last_name) if part).strip()
    return name or _first(address, "name") or "Customer Name"


def convert_to_prodigi_order(order_data: Dict[str, Any], callback_url: Optional[str] = None) -> Dict[str, Any]:
    """
    Arma un pedido v4 de Prodigi.

    Args:
        order_data: ``{order_reference, items[{product_sku?, quantity, image_url,
            frame_size, frame_style, frame_material}], shipping_address,
            billing_address?, customer_email, customer_phone?}``
        callback_url: URL del webhook de estado

    Returns:
        Dict: Pedido listo para ``OrdersAPI.create``
    """
    shipping_address = order_data.get("shipping_address") or {}
    billing_address = order_data.get("billing_address") or shipping_address
    customer_email = order_data.get("customer_email")
    customer_phone = order_data.get("customer_phone")

    recipient: Dict[str, Any] = {
        "name": _build_name(shipping_address),
        "address": _build_address(shipping_address),
    }
    if customer_email:
        recipient["email"] = customer_email
    if customer_phone:
        recipient["phoneNumber"] = customer_phone

    items: List[Dict[str, Any]] = []
    for item in order_data.get("items") or []:
        sku = extract_base_sku(item.get("product_sku")) or get_product_sku(
            item.get("frame_size"), item.get("frame_style"), item.get("frame_material")
        )
        prodigi_item: Dict[str, Any] = {
            "merchantReference": f"item-{sku}",
            "sku": sku,
            "copies": item.get("quantity") or 1,
            "sizing": DEFAULT_SIZING,
            "assets": [{"printArea": DEFAULT_PRINT_AREA, "url": item.get("image_url")}],
        }
        attributes = get_product_attributes(item.get("frame_style"), item.get("frame_material"), sku)
        if attributes:
            prodigi_item["attributes"] = attributes
        items.append(prodigi_item)

    order: Dict[str, Any] = {
        "merchantReference": order_data.get("order_reference"),
        "shippingMethod": DEFAULT_SHIPPING_METHOD,
        "recipient": recipient,
        "billingAddress": {
            "name": _build_name(billing_address),
            "address": _build_address(billing_address),
        },
        "items": items,
        "metadata": {
            key: value
            for key, value in (("customerEmail", customer_email), ("customerPhone", customer_phone))
            if value
        },
    }
    if callback_url:
        order["callbackUrl"] = callback_url

    return order


def map_order_status(order: Dict[str, Any]) -> Dict[str, Any]:
    """
    Resume un pedido de Prodigi con el estado interno.

    Acepta ``status`` como string o como objeto v4 ``{stage, ...}`` y toma
    el tracking del primer envío cuando no viene en la raíz.
    """
    status = order.get("status")
    stage = status.get("stage") if isinstance(status, dict) else status
    stage = stage or ""

    shipments = order.get("shipments") or []
    tracking = (shipments[0].get("tracking") or {}) if shipments else {}

    result: Dict[str, Any] = {
        "status": STATUS_MAP.get(stage, stage.lower()),
        "trackingNumber": order.get("trackingNumber") or tracking.get("number"),
        "trackingUrl": order.get("trackingUrl") or tracking.get("url"),
        "estimatedDelivery": order.get("estimatedDelivery")
        or (shipments[0].get("estimatedDeliveryDate") if shipments else None),
    }
    if "editWindow" in order and order["editWindow"] is not None:
        result["editWindow"] = order["editWindow"]
    if "modifications" in order and order["modifications"] is not None:
        result["modifications"] = order["modifications"]
    return result


async def get_order_status(orders_api, order_id: str) -> Dict[str, Any]:
    """Consulta el pedido en Prodigi y lo resume con ``map_order_status``."""
    order = await orders_api.get(order_id)
    return map_order_status(order)


async def calculate_shipping_cost(quotes_api, items: List[Dict[str, Any]], country_code: str) -> Dict[str, Any]:
    """
    Costo de envío Standard para items ``{sku, quantity, attributes?}``.

    Raises:
        ProdigiAPIError: Si Prodigi no devuelve ningún quote
    """
    quote_items = [
        {
            "sku": extract_base_sku(item["sku"]),
            "copies": item.get("quantity") or item.get("copies") or 1,
            "attributes": item.get("attributes") or {},
            "assets": [{"printArea": DEFAULT_PRINT_AREA}],
        }
        for item in items
    ]
    quotes = await quotes_api.create(
        {"destinationCountryCode": country_code, "items": quote_items, "shippingMethod": DEFAULT_SHIPPING_METHOD}
    )
    if not quotes:
        raise ProdigiAPIError("No shipping quotes returned")

    quote = quotes[0]
    shipping = (quote.get("costSummary") or {}).get("shipping") or {}
    return {
        "cost": float(shipping.get("amount") or 0),
        "currency": shipping.get("currency") or "USD",
        "estimatedDays": LEGACY_SHIPPING_DAYS,
        "serviceName": quote.get("shipmentMethod") or DEFAULT_SHIPPING_METHOD,
    }
