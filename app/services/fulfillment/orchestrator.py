"""
Orquestador de envíos a proveedores de impresión (dropship).

Toma un pedido pagado de Supabase, lo convierte al formato del proveedor
(Prodigi como principal, Gelato como respaldo), lo crea en el proveedor y
registra el resultado en ``dropship_orders``.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from app.core.config import get_settings
from app.core.logging_config import log_fulfillment_operation
from app.db.repositories import DropshipRepository, OrderRepository
from app.services.fulfillment.image_urls import get_public_image_url
from app.services.gelato_client import GelatoClient, convert_to_gelato_order, get_gelato_client
from app.services.prodigi import ProdigiSDK, get_prodigi_sdk
from app.services.prodigi.legacy import (
    calculate_shipping_cost,
    convert_to_prodigi_order,
    extract_base_sku,
    get_product_sku,
    map_order_status,
)
from app.utils.error_handler import (
    AppException,
    ConflictException,
    ErrorCode,
    FulfillmentException,
    NotFoundException,
    ValidationException,
)

settings = get_settings()
logger = logging.getLogger(__name__)

PROVIDERS = ("prodigi", "gelato")

DEFAULT_FRAME_SIZE = "medium"
DEFAULT_FRAME_STYLE = "black"
DEFAULT_FRAME_MATERIAL = "wood"


def build_provider_order_data(order: Dict[str, Any]) -> Dict[str, Any]:
    """
    Arma los datos neutrales de un pedido a partir de la fila con items.

    Args:
        order: Pedido de ``OrderRepository.get_with_items``

    Returns:
        Dict: ``{order_reference, items, shipping_address, billing_address,
        customer_email, customer_phone}`` para los conversores de cada proveedor

    Raises:
        ValidationException: Item sin imagen pública
    """
    items: List[Dict[str, Any]] = []
    for item in order.get("order_items") or []:
        product = item.get("products") or {}
        image = product.get("images") or {}

        frame_size = product.get("frame_size") or DEFAULT_FRAME_SIZE
        frame_style = product.get("frame_style") or DEFAULT_FRAME_STYLE
        frame_material = product.get("frame_material") or DEFAULT_FRAME_MATERIAL

        image_url = get_public_image_url(image.get("image_url") or image.get("thumbnail_url"))
        if not image_url:
            raise ValidationException(
                f"Missing or invalid image URL for product {product.get('id')}",
                field="image_url",
                status_code=400,
            )

        items.append(
            {
                "product_sku": extract_base_sku(product.get("sku"))
                or get_product_sku(frame_size, frame_style, frame_material),
                "quantity": item.get("quantity") or 1,
                "image_url": image_url,
                "frame_size": frame_size,
                "frame_style": frame_style,
                "frame_material": frame_material,
            }
        )

    order_id = str(order.get("id") or "")
    return {
        "order_reference": order.get("order_number") or f"ORDER-{order_id[-8:]}",
        "items": items,
        "shipping_address": order.get("shipping_address") or {},
        "billing_address": order.get("billing_address"),
        "customer_email": order.get("customer_email"),
        "customer_phone": order.get("customer_phone"),
    }


def summarize_prodigi_order(response: Dict[str, Any]) -> Dict[str, Any]:
    summary = map_order_status(response)
    return {
        "provider_order_id": response.get("id"),
        "status": summary["status"],
        "tracking_number": summary.get("trackingNumber"),
        "tracking_url": summary.get("trackingUrl"),
        "estimated_delivery": summary.get("estimatedDelivery"),
        "response": response,
    }


class DropshipOrchestrator:
    """
    Envía pedidos pagados a Prodigi o Gelato y consulta su estado.
    """

    def __init__(
        self,
        order_repository: Optional[OrderRepository] = None,
        dropship_repository: Optional[DropshipRepository] = None,
        prodigi_sdk: Optional[ProdigiSDK] = None,
        gelato_client: Optional[GelatoClient] = None,
        price_warning_threshold: Optional[float] = None,
    ):
        self.orders = order_repository or OrderRepository()
        self.dropships = dropship_repository or DropshipRepository()
        self._prodigi = prodigi_sdk
        self._gelato = gelato_client
        self.price_warning_threshold = (
            price_warning_threshold
            if price_warning_threshold is not None
            else settings.PRICE_DIFFERENCE_WARNING_THRESHOLD
        )

    @property
    def prodigi(self) -> ProdigiSDK:
        if self._prodigi is None:
            self._prodigi = get_prodigi_sdk()
        return self._prodigi

    @property
    def gelato(self) -> GelatoClient:
        if self._gelato is None:
            self._gelato = get_gelato_client()
        return self._gelato

    # === ENVÍO ===

    async def submit(self, order_id: str, provider: str = "prodigi") -> Dict[str, Any]:
        """
        Crea el pedido en el proveedor para un pedido local pagado.

        Args:
            order_id: Pedido local
            provider: ``prodigi`` o ``gelato``

        Returns:
            Dict: ``{success, prodigiOrderId|gelatoOrderId, trackingNumber, estimatedDelivery}``

        Raises:
            NotFoundException: Pedido inexistente
            ValidationException: Pedido no pagado (400)
            ConflictException: Ya existe un envío no fallido para el proveedor
            FulfillmentException: El proveedor rechazó el pedido
        """
        self._check_provider(provider)

        order = await self.orders.get_with_items(order_id)
        if not order:
            raise NotFoundException("Order not found", resource="order", resource_id=order_id)

        if order.get("status") != "paid":
            raise ValidationException(
                "Order must be paid before creating dropship order",
                field="status",
                invalid_value=order.get("status"),
                status_code=400,
            )

        if await self.dropships.find_active(order_id, provider):
            raise ConflictException(
                "Dropship order already exists for this order", error_code=ErrorCode.DUPLICATE_SUBMISSION
            )

        order_data = build_provider_order_data(order)

        if provider == "prodigi":
            result = await self._submit_to_prodigi(order, order_data)
        else:
            result = await self._submit_to_gelato(order_data)

        await self.dropships.upsert_for_order(
            order_id,
            provider,
            {
                "provider_order_id": result["provider_order_id"],
                "status": "submitted",
                "tracking_number": result.get("tracking_number"),
                "tracking_url": result.get("tracking_url"),
                "estimated_delivery": result.get("estimated_delivery"),
                "provider_response": result["response"],
                "error_message": None,
            },
        )

        try:
            await self.orders.update(order_id, {"status": "processing"})
            await self.orders.add_log(
                order_id,
                f"{provider}_order_submitted",
                {"provider_order_id": result["provider_order_id"], "items": len(order_data["items"])},
            )
        except AppException as e:
            logger.error(f"❌ Error updating order {order_id} after {provider} submission: {e.message}")

        log_fulfillment_operation("submit", provider, order_id, provider_order_id=result["provider_order_id"])

        return {
            "success": True,
            f"{provider}OrderId": result["provider_order_id"],
            "trackingNumber": result.get("tracking_number"),
            "estimatedDelivery": result.get("estimated_delivery"),
        }

    async def create_prodigi_order(self, order_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Convierte y crea el pedido en Prodigi.

        Returns:
            Dict: ``{provider_order_id, status, tracking_number, tracking_url,
            estimated_delivery, response}``
        """
        prodigi_order = convert_to_prodigi_order(order_data, callback_url=settings.PRODIGI_CALLBACK_URL)
        response = await self.prodigi.orders.create(prodigi_order)
        return {**summarize_prodigi_order(response), "prodigi_order": prodigi_order}

    async def find_prodigi_order(self, order_reference: str) -> Optional[Dict[str, Any]]:
        """
        Pedido ya creado en Prodigi con esa referencia, o None.

        Cubre el caso de un intento anterior que creó el pedido pero no
        llegó a guardar el ID localmente.
        """
        existing = await self.prodigi.orders.get_by_merchant_reference(order_reference)
        if not existing:
            return None
        logger.info(f"Prodigi order {existing.get('id')} already exists for {order_reference}")
        return summarize_prodigi_order(existing)

    async def _submit_to_prodigi(self, order: Dict[str, Any], order_data: Dict[str, Any]) -> Dict[str, Any]:
        await self._check_shipping_price(order, order_data)
        try:
            return await self.create_prodigi_order(order_data)
        except AppException as e:
            logger.error(f"❌ Prodigi order creation failed for {order.get('id')}: {e.message}")
            raise FulfillmentException(
                f"Failed to create Prodigi order: {e.message}",
                provider="prodigi",
                order_id=order.get("id"),
                operation="create_order",
                retry_suggested=e.is_retryable,
                status_code=502,
            ) from e

    async def _submit_to_gelato(self, order_data: Dict[str, Any]) -> Dict[str, Any]:
        gelato_order = convert_to_gelato_order(order_data)
        try:
            response = await self.gelato.create_order(gelato_order)
        except AppException as e:
            logger.error(f"❌ Gelato order creation failed for {order_data['order_reference']}: {e.message}")
            raise FulfillmentException(
                f"Failed to create Gelato order: {e.message}",
                provider="gelato",
                operation="create_order",
                retry_suggested=e.is_retryable,
                status_code=502,
            ) from e

        return {
            "provider_order_id": response.get("orderId"),
            "status": (response.get("status") or "submitted").lower(),
            "tracking_number": response.get("trackingNumber"),
            "tracking_url": response.get("trackingUrl"),
            "estimated_delivery": response.get("estimatedDelivery"),
            "response": response,
        }

    async def _check_shipping_price(self, order: Dict[str, Any], order_data: Dict[str, Any]) -> None:
        """
        Compara el envío cobrado con un quote actual de Prodigi.

        Solo registra una advertencia; nunca bloquea el envío porque el pago
        ya fue capturado.
        """
        prodigi_items = convert_to_prodigi_order(order_data)["items"]
        quote_items = [
            {"sku": item["sku"], "quantity": item["copies"], "attributes": item.get("attributes") or {}}
            for item in prodigi_items
        ]
        country_code = (order_data["shipping_address"].get("country") or "").upper()
        if not quote_items or not country_code:
            return

        try:
            quote = await calculate_shipping_cost(self.prodigi.quotes, quote_items, country_code)
        except AppException as e:
            logger.warning(f"⚠️ Final Prodigi quote failed, proceeding with order creation: {e.message}")
            return

        expected = float(order.get("shipping_amount") or 0)
        quoted = quote["cost"]
        if expected <= 0:
            return

        difference = abs(quoted - expected) / expected
        if difference > self.price_warning_threshold:
            logger.warning(
                f"⚠️ Shipping cost mismatch for order {order.get('id')}: charged {expected:.2f}, "
                f"quoted {quoted:.2f} {quote['currency']} ({difference * 100:.2f}%)"
            )
        else:
            logger.info(f"✅ Final shipping validation passed ({difference * 100:.2f}%)")

    # === CONSULTA ===

    async def get_status(self, order_id: str, provider: str = "prodigi", user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Estado del envío, refrescado desde el proveedor cuando es posible.

        Args:
            order_id: Pedido local
            provider: ``prodigi`` o ``gelato``
            user_id: Si se indica, el pedido debe pertenecer a ese usuario

        Returns:
            Dict: ``{dropshipOrder: {...fila, status, trackingNumber, trackingUrl, estimatedDelivery}}``

        Raises:
            NotFoundException: Sin envío para el pedido
        """
        self._check_provider(provider)

        if user_id:
            order = await self.orders.get_by_id(order_id)
            if not order or order.get("user_id") != user_id:
                raise NotFoundException("Dropship order not found", resource="dropship_order", resource_id=order_id)

        dropship = await self.dropships.get_for_order(order_id, provider)
        if not dropship:
            raise NotFoundException("Dropship order not found", resource="dropship_order", resource_id=order_id)

        if not dropship.get("provider_order_id"):
            return {"dropshipOrder": dropship}

        try:
            current = await self._fetch_provider_status(provider, dropship["provider_order_id"])
        except AppException as e:
            logger.warning(f"⚠️ Could not refresh {provider} order {dropship['provider_order_id']}: {e.message}")
            return {"dropshipOrder": dropship}

        await self.dropships.update(
            dropship["id"],
            {
                "status": current["status"],
                "tracking_number": current.get("trackingNumber"),
                "tracking_url": current.get("trackingUrl"),
                "estimated_delivery": current.get("estimatedDelivery"),
            },
        )

        return {
            "dropshipOrder": {
                **dropship,
                "status": current["status"],
                "trackingNumber": current.get("trackingNumber"),
                "trackingUrl": current.get("trackingUrl"),
                "estimatedDelivery": current.get("estimatedDelivery"),
                "refreshedAt": datetime.now(timezone.utc).isoformat(),
            }
        }

    async def _fetch_provider_status(self, provider: str, provider_order_id: str) -> Dict[str, Any]:
        if provider == "prodigi":
            return map_order_status(await self.prodigi.orders.get(provider_order_id))

        gelato_order = await self.gelato.get_order(provider_order_id)
        return {
            "status": (gelato_order.get("status") or "").lower() or "submitted",
            "trackingNumber": gelato_order.get("trackingNumber"),
            "trackingUrl": gelato_order.get("trackingUrl"),
            "estimatedDelivery": gelato_order.get("estimatedDelivery"),
        }

    @staticmethod
    def _check_provider(provider: str) -> None:
        if provider not in PROVIDERS:
            raise ValidationException(
                f"Unsupported provider: {provider}", field="provider", invalid_value=provider, status_code=400
            )


_dropship_orchestrator: Optional[DropshipOrchestrator] = None


def get_dropship_orchestrator() -> DropshipOrchestrator:
    global _dropship_orchestrator
    if _dropship_orchestrator is None:
        _dropship_orchestrator = DropshipOrchestrator()
    return _dropship_orchestrator
