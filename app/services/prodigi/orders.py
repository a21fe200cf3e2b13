"""
Recurso Orders de la API de Prodigi.
"""

import json
import logging
import random
import re
import string
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from app.services.prodigi.client import ProdigiClient
from app.services.prodigi.constants import (
    DEFAULT_PAGE_SIZE,
    MAX_ASSET_URL_LENGTH,
    MAX_COPIES,
    MAX_MERCHANT_REFERENCE_LENGTH,
    MAX_METADATA_SIZE,
    MAX_PAGE_SIZE,
    MAX_SKU_LENGTH,
    MIN_COPIES,
    TIMEOUTS,
)
from app.services.prodigi.errors import ProdigiValidationError

logger = logging.getLogger(__name__)

SKU_PATTERN = re.compile(r"^[A-Z0-9-]+$", re.IGNORECASE)
COUNTRY_CODE_PATTERN = re.compile(r"^[A-Z]{2}$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


# === VALIDADORES ===


def is_valid_sku(sku: Optional[str]) -> bool:
    return bool(sku) and len(sku) < MAX_SKU_LENGTH and bool(SKU_PATTERN.match(sku))


def is_valid_country_code(code: Optional[str]) -> bool:
    return bool(code) and bool(COUNTRY_CODE_PATTERN.match(code))


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and bool(EMAIL_PATTERN.match(email))


def is_valid_url(url: Optional[str]) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    return bool(parsed.scheme) and bool(parsed.netloc)


def is_valid_metadata(metadata: Dict[str, Any]) -> bool:
    return len(json.dumps(metadata, separators=(",", ":"), default=str)) <= MAX_METADATA_SIZE


def generate_idempotency_key(merchant_reference: str) -> str:
    """``{merchantReference}-{epoch ms}-{aleatorio}``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=13))
    return f"{merchant_reference}-{int(time.time() * 1000)}-{suffix}"


def _blank(value: Optional[str]) -> bool:
    return not value or not str(value).strip()


def validate_order_data(order: Dict[str, Any]) -> None:
    """
    Valida un pedido antes de enviarlo a Prodigi.

    Args:
        order: Pedido en formato de la API v4

    Raises:
        ProdigiValidationError: Con la lista de problemas encontrados
    """
    errors: List[str] = []

    merchant_reference = order.get("merchantReference") or ""
    if not 0 < len(merchant_reference) <= MAX_MERCHANT_REFERENCE_LENGTH:
        errors.append(f"Invalid merchant reference. Must be 1-{MAX_MERCHANT_REFERENCE_LENGTH} characters.")

    recipient = order.get("recipient")
    if not recipient:
        errors.append("Recipient is required")
    else:
        if _blank(recipient.get("name")):
            errors.append("Recipient name is required")
        if recipient.get("email") and not is_valid_email(recipient["email"]):
            errors.append("Invalid recipient email address")

        address = recipient.get("address")
        if not address:
            errors.append("Recipient address is required")
        else:
            if _blank(address.get("line1")):
                errors.append("Address line 1 is required")
            if _blank(address.get("postalOrZipCode")):
                errors.append("Postal/Zip code is required")
            if not is_valid_country_code(address.get("countryCode")):
                errors.append("Valid country code is required (ISO 3166-1 alpha-2)")
            if _blank(address.get("townOrCity")):
                errors.append("Town/City is required")

    items = order.get("items") or []
    if not items:
        errors.append("At least one item is required")

    for index, item in enumerate(items, start=1):
        if not is_valid_sku(item.get("sku")):
            errors.append(f"Item {index}: Invalid SKU")
        copies = item.get("copies") or 0
        if not MIN_COPIES <= copies <= MAX_COPIES:
            errors.append(f"Item {index}: Copies must be between {MIN_COPIES} and {MAX_COPIES}")
        if not item.get("sizing"):
            errors.append(f"Item {index}: Sizing option is required")

        assets = item.get("assets") or []
        if not assets:
            errors.append(f"Item {index}: At least one asset is required")
        for asset_index, asset in enumerate(assets, start=1):
            prefix = f"Item {index}, Asset {asset_index}"
            if _blank(asset.get("printArea")):
                errors.append(f"{prefix}: Print area is required")
            if not is_valid_url(asset.get("url")):
                errors.append(f"{prefix}: Valid asset URL is required")
            if asset.get("url") and len(asset["url"]) > MAX_ASSET_URL_LENGTH:
                errors.append(f"{prefix}: Asset URL too long")

    if order.get("callbackUrl") and not is_valid_url(order["callbackUrl"]):
        errors.append("Invalid callback URL")

    if order.get("metadata") and not is_valid_metadata(order["metadata"]):
        errors.append(f"Metadata too large. Maximum {MAX_METADATA_SIZE} characters.")

    if errors:
        raise ProdigiValidationError("Order validation failed", [{"message": message} for message in errors])


class OrdersAPI:
    """Crear, consultar, listar y cancelar pedidos en Prodigi."""

    def __init__(self, client: ProdigiClient):
        self.client = client

    async def create(self, order: Dict[str, Any], use_idempotency: bool = True) -> Dict[str, Any]:
        """
        Crea un pedido en Prodigi.

        Args:
            order: Pedido en formato de la API v4
            use_idempotency: Generar ``idempotencyKey`` si el pedido no trae una

        Returns:
            Dict: Pedido creado (``id`` ``ord_...``, ``status``, ``shipments``...)
        """
        validate_order_data(order)

        request_data = dict(order)
        idempotency_key = order.get("idempotencyKey")
        if not idempotency_key and use_idempotency:
            idempotency_key = generate_idempotency_key(order["merchantReference"])
        if idempotency_key:
            request_data["idempotencyKey"] = idempotency_key
        if not request_data.get("callbackUrl") and self.client.callback_url:
            request_data["callbackUrl"] = self.client.callback_url

        created = await self.client.request(
            "POST",
            "/Orders",
            body=request_data,
            idempotency_key=idempotency_key,
            timeout=TIMEOUTS["order_create"],
        )
        logger.info(f"📦 Prodigi order created: {created.get('id')} ({order['merchantReference']})")
        return created

    async def get(self, order_id: str) -> Dict[str, Any]:
        self._validate_order_id(order_id)
        return await self.client.request("GET", f"/Orders/{order_id}", use_cache=False)

    async def list(
        self,
        top: Optional[int] = None,
        skip: int = 0,
        status: Optional[str] = None,
        merchant_reference: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Lista pedidos paginados.

        Returns:
            Dict: ``{orders, hasMore, nextUrl}`` según la API
        """
        top = DEFAULT_PAGE_SIZE if top is None else top
        if top > MAX_PAGE_SIZE:
            raise ProdigiValidationError(f"Top parameter cannot exceed {MAX_PAGE_SIZE}")
        if skip < 0 or top < 1:
            raise ProdigiValidationError("Invalid pagination parameters")

        return await self.client.request(
            "GET",
            "/Orders",
            params={"Top": top, "Skip": skip, "Status": status, "MerchantReference": merchant_reference},
            use_cache=False,
        )

    async def get_by_merchant_reference(self, merchant_reference: str) -> Optional[Dict[str, Any]]:
        response = await self.list(top=1, merchant_reference=merchant_reference)
        orders = response.get("orders") or []
        return orders[0] if orders else None

    async def get_actions(self, order_id: str) -> Dict[str, Any]:
        self._validate_order_id(order_id)
        response = await self.client.request("GET", f"/Orders/{order_id}/actions", use_cache=False)
        return {
            "cancel": response.get("cancel") or {},
            "changeRecipientDetails": response.get("changeRecipientDetails") or {},
            "changeShippingMethod": response.get("changeShippingMethod") or {},
            "changeMetaData": response.get("changeMetaData") or {},
        }

    async def cancel(self, order_id: str) -> Dict[str, Any]:
        """
        Cancela un pedido si Prodigi todavía lo permite.

        Raises:
            ProdigiValidationError: Si la acción de cancelar no está disponible
        """
        actions = await self.get_actions(order_id)
        if actions["cancel"].get("isAvailable") != "Yes":
            raise ProdigiValidationError(
                "Order cannot be cancelled at this stage",
                [{"message": "Order has already entered production or is complete"}],
            )

        cancelled = await self.client.request("POST", f"/Orders/{order_id}/actions/cancel")
        logger.info(f"Prodigi order cancelled: {order_id}")
        return cancelled

    @staticmethod
    def _validate_order_id(order_id: str):
        if not order_id or not order_id.startswith("ord_"):
            raise ProdigiValidationError("Invalid order ID format. Expected: ord_XXXXXX")
