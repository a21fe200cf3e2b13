"""
Receptor de webhooks de estado de Prodigi.

Prodigi notifica cambios de estado de pedidos en formato CloudEvents
(``specversion``, ``type``, ``id``, ``time``, ``data.order``). También se
acepta el formato plano de callbacks antiguos (``data{id, status,
trackingNumber, ...}``). Ambos se normalizan a ``ProdigiStatusEvent`` antes de
actualizar ``dropship_orders``, ``orders`` y crear la notificación al cliente.
"""

import hashlib
import hmac
import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.core.config import get_settings
from app.db.repositories import DropshipRepository, NotificationRepository, OrderRepository
from app.utils.error_handler import AppException, ErrorAggregator, ErrorCode, ErrorSeverity, NotFoundException

settings = get_settings()
logger = logging.getLogger(__name__)

MAX_PROCESSED_EVENTS = 1000

# Estado de Prodigi (en minúsculas) -> estado del pedido local
ORDER_STATUS_FROM_WEBHOOK = {
    "inprogress": "processing",
    "complete": "shipped",
    "shipped": "shipped",
    "delivered": "delivered",
    "cancelled": "cancelled",
    "failed": "cancelled",
    "error": "cancelled",
}

NOTIFICATIONS = {
    "inprogress": (
        "order_processing",
        "Order Processing Started",
        "Your order is now being processed and will be ready for shipping soon.",
    ),
    "shipped": ("order_shipped", "Order Shipped!", None),
    "delivered": (
        "order_delivered",
        "Order Delivered!",
        "Your order has been delivered successfully. Thank you for your purchase!",
    ),
    "cancelled": (
        "order_cancelled",
        "Order Cancelled",
        "Your order has been cancelled. If you have any questions, please contact support.",
    ),
    "failed": (
        "order_failed",
        "Order Failed",
        "There was an issue processing your order. Our team will contact you shortly.",
    ),
}

NOTIFICATION_ALIASES = {"complete": "shipped", "error": "failed"}


class InvalidWebhookPayload(AppException):
    def __init__(self, message: str = "Invalid webhook payload", **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_WEBHOOK_PAYLOAD,
            status_code=400,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )


class InvalidWebhookSignature(AppException):
    def __init__(self, message: str = "Invalid webhook signature", **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_WEBHOOK_SIGNATURE,
            status_code=401,
            severity=ErrorSeverity.MEDIUM,
            **kwargs,
        )


@dataclass
class ProdigiStatusEvent:
    """Cambio de estado de un pedido de Prodigi, independiente del formato recibido."""

    prodigi_order_id: str
    status: str
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[str] = None
    merchant_reference: Optional[str] = None
    occurred_at: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def order_status(self) -> Optional[str]:
        return ORDER_STATUS_FROM_WEBHOOK.get(self.status)


def _stage(status: Any) -> str:
    if isinstance(status, dict):
        status = status.get("stage")
    return str(status or "").strip().lower()


def parse_webhook_payload(payload: Any) -> ProdigiStatusEvent:
    """
    Normaliza un webhook de Prodigi.

    Args:
        payload: Cuerpo JSON ya decodificado

    Returns:
        ProdigiStatusEvent: Evento con el estado en minúsculas

    Raises:
        InvalidWebhookPayload: Si falta ``data``, el id del pedido o el estado
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
        raise InvalidWebhookPayload()

    data = payload["data"]

    if isinstance(data.get("order"), dict):
        order = data["order"]
        shipments = order.get("shipments") or []
        first_shipment = shipments[0] if shipments else {}
        tracking = first_shipment.get("tracking") or {}
        event = ProdigiStatusEvent(
            prodigi_order_id=order.get("id"),
            status=_stage(order.get("status")),
            event_id=payload.get("id"),
            event_type=payload.get("type"),
            tracking_number=tracking.get("number"),
            tracking_url=tracking.get("url"),
            estimated_delivery=first_shipment.get("estimatedDeliveryDate") or order.get("estimatedDeliveryDate"),
            merchant_reference=order.get("merchantReference"),
            occurred_at=payload.get("time"),
            raw=payload,
        )
    else:
        event = ProdigiStatusEvent(
            prodigi_order_id=data.get("id"),
            status=_stage(data.get("status")),
            event_id=payload.get("id"),
            event_type=payload.get("type"),
            tracking_number=data.get("trackingNumber"),
            tracking_url=data.get("trackingUrl"),
            estimated_delivery=data.get("estimatedDeliveryDate"),
            merchant_reference=data.get("merchantReference"),
            occurred_at=payload.get("created"),
            raw=payload,
        )

    if not event.prodigi_order_id or not event.status:
        raise InvalidWebhookPayload()
    return event


class ProdigiWebhookProcessor:
    """
    Procesador de webhooks de estado de Prodigi.
    """

    def __init__(
        self,
        order_repository: Optional[OrderRepository] = None,
        dropship_repository: Optional[DropshipRepository] = None,
        notification_repository: Optional[NotificationRepository] = None,
        webhook_secret: Optional[str] = None,
    ):
        self.orders = order_repository or OrderRepository()
        self.dropships = dropship_repository or DropshipRepository()
        self.notifications = notification_repository or NotificationRepository()
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.PRODIGI_WEBHOOK_SECRET
        self.error_aggregator = ErrorAggregator()
        self.processed_events: "OrderedDict[str, None]" = OrderedDict()

    def verify_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        """
        Verifica la firma HMAC-SHA256 (hex) del header ``x-prodigi-signature``.

        Args:
            payload: Cuerpo crudo del request
            signature: Firma recibida

        Returns:
            bool: True si la firma es válida o no hay secret configurado
        """
        if not self.webhook_secret:
            logger.warning("No Prodigi webhook secret configured, skipping verification")
            return True

        if not signature:
            return False

        expected = hmac.new(self.webhook_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature.strip().lower())

    async def handle(self, body: bytes, signature: Optional[str] = None) -> Dict[str, Any]:
        """
        Verifica, decodifica y procesa un webhook.

        Raises:
            InvalidWebhookSignature: Firma ausente o incorrecta
            InvalidWebhookPayload: Cuerpo que no es un webhook de Prodigi
            NotFoundException: Pedido de Prodigi desconocido
        """
        if not self.verify_signature(body, signature):
            logger.warning("❌ Prodigi webhook rejected: invalid signature")
            raise InvalidWebhookSignature()

        try:
            payload = json.loads(body or b"{}")
        except ValueError:
            raise InvalidWebhookPayload() from None

        event = parse_webhook_payload(payload)

        if event.event_id and event.event_id in self.processed_events:
            logger.info(f"Prodigi webhook {event.event_id} already processed, skipping")
            return {"success": True, "message": "Webhook already processed", "duplicate": True}

        result = await self.process(event)

        if event.event_id:
            self.remember_event(event.event_id)

        return result

    def remember_event(self, event_id: str):
        """Registra un evento procesado; al pasar el límite se descarta el más antiguo."""
        self.processed_events[event_id] = None
        self.processed_events.move_to_end(event_id)
        while len(self.processed_events) > MAX_PROCESSED_EVENTS:
            self.processed_events.popitem(last=False)

    async def process(self, event: ProdigiStatusEvent) -> Dict[str, Any]:
        """
        Aplica un evento a la base de datos.

        Returns:
            Dict: ``{success, message, orderId, statusChange}``
        """
        start_time = datetime.now(timezone.utc)
        logger.info(f"🔄 Prodigi webhook {event.event_type or 'status'}: {event.prodigi_order_id} -> {event.status}")

        dropship = await self.dropships.get_by_provider_order_id(event.prodigi_order_id)
        if not dropship:
            logger.warning(f"⚠️ Dropship order not found for Prodigi order {event.prodigi_order_id}")
            raise NotFoundException("Order not found", resource="dropship_order", resource_id=event.prodigi_order_id)

        order_id = dropship["order_id"]
        old_status = dropship.get("status")

        try:
            await self._update_dropship(order_id, event)
            await self._update_order(order_id, event)
            await self.orders.add_log(
                order_id,
                "prodigi_webhook_update",
                {
                    "webhook_type": event.event_type,
                    "prodigi_order_id": event.prodigi_order_id,
                    "old_status": old_status,
                    "new_status": event.status,
                    "tracking_number": event.tracking_number,
                    "tracking_url": event.tracking_url,
                    "estimated_delivery": event.estimated_delivery,
                },
            )
            await self._notify(order_id, event)
        except Exception as e:
            self.error_aggregator.add_error(e, {"prodigi_order_id": event.prodigi_order_id, "order_id": order_id})
            raise

        duration = (datetime.now(timezone.utc) - start_time).total_seconds()
        logger.info(f"✅ Prodigi webhook processed in {duration:.2f}s: order {order_id} {old_status} → {event.status}")

        return {
            "success": True,
            "message": "Webhook processed successfully",
            "orderId": order_id,
            "statusChange": f"{old_status} → {event.status}",
        }

    async def _update_dropship(self, order_id: str, event: ProdigiStatusEvent) -> None:
        fields: Dict[str, Any] = {"status": event.status, "provider_response": event.raw}
        if event.tracking_number:
            fields["tracking_number"] = event.tracking_number
        if event.tracking_url:
            fields["tracking_url"] = event.tracking_url
        if event.estimated_delivery:
            fields["estimated_delivery"] = event.estimated_delivery
        await self.dropships.update_for_order(order_id, "prodigi", fields)

    async def _update_order(self, order_id: str, event: ProdigiStatusEvent) -> None:
        fields: Dict[str, Any] = {}
        if event.order_status:
            fields["status"] = event.order_status
        if event.order_status == "shipped":
            if event.tracking_number:
                fields["tracking_number"] = event.tracking_number
            if event.tracking_url:
                fields["tracking_url"] = event.tracking_url
        if event.estimated_delivery:
            fields["estimated_delivery_date"] = event.estimated_delivery
        if fields:
            await self.orders.update(order_id, fields)

    async def _notify(self, order_id: str, event: ProdigiStatusEvent) -> None:
        key = NOTIFICATION_ALIASES.get(event.status, event.status)
        if key not in NOTIFICATIONS:
            return

        notification_type, title, message = NOTIFICATIONS[key]
        if key == "shipped":
            message = (
                "Your order has been shipped! Track your package using tracking number: "
                f"{event.tracking_number or 'Check your order details'}"
            )

        await self.notifications.create_for_order(
            order_id,
            notification_type,
            title,
            message,
            {
                "prodigi_order_id": event.prodigi_order_id,
                "tracking_number": event.tracking_number,
                "tracking_url": event.tracking_url,
                "estimated_delivery": event.estimated_delivery,
                "webhook_type": event.event_type,
            },
        )


def challenge_response(challenge: Optional[str]) -> Dict[str, Any]:
    """Respuesta del GET de verificación del endpoint."""
    if challenge:
        return {"challenge": challenge}
    return {
        "message": "Prodigi webhook endpoint is active",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


_webhook_processor: Optional[ProdigiWebhookProcessor] = None


def get_webhook_processor() -> ProdigiWebhookProcessor:
    global _webhook_processor
    if _webhook_processor is None:
        _webhook_processor = ProdigiWebhookProcessor()
    return _webhook_processor
