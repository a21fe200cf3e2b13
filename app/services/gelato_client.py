"""
Cliente de la API de Gelato (proveedor de impresión de respaldo).

Transporte delgado sobre ``httpx`` con autenticación Bearer. Los errores
HTTP se convierten en ``GelatoAPIException`` y cada llamada pasa por el
``RetryHandler`` de Gelato (reintentos y circuit breaker).
"""

import logging
from typing import Any, Dict, Optional

import httpx

from app.core.config import GELATO_API_URLS, get_settings
from app.domain.models.frame import FRAME_SIZES, FRAME_STYLES
from app.utils.error_handler import GelatoAPIException
from app.utils.retry_handler import get_handler

logger = logging.getLogger(__name__)

DEFAULT_PRODUCT_UID = "gelato-frame-medium-black-wood"

SIZE_LABELS = {"small": "small", "medium": "medium", "large": "large", "extra_large": "xl"}

# {size}-{style}-wood -> productUid
PRODUCT_UID_MAP = {
    f"{size}-{style}-wood": f"gelato-frame-{SIZE_LABELS[size]}-{style}-wood"
    for size in FRAME_SIZES
    for style in FRAME_STYLES
}


def get_product_uid(frame_size: str, frame_style: str, frame_material: str) -> str:
    """productUid de Gelato para una combinación tamaño-estilo-material."""
    return PRODUCT_UID_MAP.get(f"{frame_size}-{frame_style}-{frame_material}", DEFAULT_PRODUCT_UID)


def convert_to_gelato_order(order_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Arma un pedido de Gelato.

    Args:
        order_data: ``{order_reference, items[{quantity, image_url, frame_size,
            frame_style, frame_material}], shipping_address, customer_email,
            customer_phone?}``

    Returns:
        Dict: Pedido listo para ``GelatoClient.create_order``
    """
    address = order_data.get("shipping_address") or {}
    customer_email = order_data.get("customer_email")
    customer_phone = order_data.get("customer_phone")

    return {
        "orderReference": order_data.get("order_reference"),
        "items": [
            {
                "productUid": get_product_uid(item.get("frame_size"), item.get("frame_style"), item.get("frame_material")),
                "quantity": item.get("quantity") or 1,
                "imageUrl": item.get("image_url"),
            }
            for item in order_data.get("items") or []
        ],
        "shippingAddress": {
            "firstName": address.get("firstName") or address.get("first_name"),
            "lastName": address.get("lastName") or address.get("last_name"),
            "address1": address.get("address1") or address.get("line1"),
            "address2": address.get("address2") or address.get("line2"),
            "city": address.get("city"),
            "state": address.get("state"),
            "zip": address.get("zip") or address.get("postal_code"),
            "country": address.get("country"),
            "phone": customer_phone,
            "email": customer_email,
        },
        "currency": "USD",
        "customerEmail": customer_email,
        "customerPhone": customer_phone,
    }


class GelatoClient:
    """
    Cliente para la API REST de Gelato.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        environment: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.GELATO_API_KEY or ""
        self.environment = environment or settings.GELATO_ENVIRONMENT
        self.base_url = GELATO_API_URLS[self.environment]
        self.timeout = timeout or settings.GELATO_TIMEOUT
        self.retry_handler = get_handler("gelato")
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _request(self, method: str, endpoint: str, body: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{endpoint}"
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise GelatoAPIException(
                f"Gelato API timeout: {method} {endpoint}", endpoint=endpoint, status_code=504, is_retryable=True
            ) from e
        except httpx.HTTPError as e:
            raise GelatoAPIException(
                f"Gelato API connection error: {e}", endpoint=endpoint, status_code=503, is_retryable=True
            ) from e

        if response.status_code >= 400:
            retry_after = response.headers.get("Retry-After")
            raise GelatoAPIException(
                f"Gelato API error: {response.status_code} {response.text}",
                api_response_code=response.status_code,
                endpoint=endpoint,
                rate_limited=response.status_code == 429,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )

        return response.json() if response.content else {}

    async def request(self, method: str, endpoint: str, body: Optional[Dict[str, Any]] = None) -> Any:
        """
        Ejecuta un request con el RetryHandler de Gelato.

        Raises:
            GelatoAPIException: Si la API responde con error tras los reintentos
        """
        return await self.retry_handler.execute(
            self._request, method, endpoint, body, context={"method": method, "endpoint": endpoint}
        )

    async def create_order(self, order: Dict[str, Any]) -> Dict[str, Any]:
        """
        Crea un pedido en Gelato.

        Returns:
            Dict: ``{orderId, status, trackingNumber?, trackingUrl?, estimatedDelivery?, totalPrice, currency}``
        """
        created = await self.request("POST", "/orders", order)
        logger.info(f"📦 Gelato order created: {created.get('orderId')} ({order.get('orderReference')})")
        return created

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        return await self.request("GET", f"/orders/{order_id}")

    def __repr__(self) -> str:
        return f"GelatoClient(environment='{self.environment}', base_url='{self.base_url}')"


_gelato_client: Optional[GelatoClient] = None


def get_gelato_client() -> GelatoClient:
    global _gelato_client
    if _gelato_client is None:
        _gelato_client = GelatoClient()
    return _gelato_client
