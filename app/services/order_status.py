"""
Estado de pedidos para clientes y administración.

- Detalle de un pedido con historial, logs, envíos y el estado más reciente
  de Prodigi.
- Refresco manual del estado de Prodigi (admin).
- Cambio de estado manual con log y notificación al cliente (admin).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from app.db.repositories import DropshipRepository, NotificationRepository, OrderRepository
from app.services.order_retry import OrderRetryManager, get_order_retry_manager
from app.services.prodigi import ProdigiSDK, get_prodigi_sdk
from app.services.prodigi.legacy import map_order_status
from app.utils.error_handler import AppException, FulfillmentException, NotFoundException, PermissionDeniedException

logger = logging.getLogger(__name__)

# Estado manual -> (tipo, título, mensaje) de la notificación al cliente
STATUS_NOTIFICATIONS = {
    "processing": ("order_processing", "Order Processing", "Your order is now being processed."),
    "shipped": ("order_shipped", "Order Shipped", "Your order has been shipped and is on its way!"),
    "delivered": ("order_delivered", "Order Delivered", "Your order has been delivered successfully."),
    "cancelled": ("order_cancelled", "Order Cancelled", "Your order has been cancelled."),
    "refunded": ("order_refunded", "Order Refunded", "Your order has been refunded."),
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _find_prodigi_dropship(dropships: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    return next(
        (row for row in dropships if row.get("provider") == "prodigi" and row.get("provider_order_id")),
        None,
    )


class OrderStatusService:
    """
    Consultas y cambios de estado de pedidos.
    """

    def __init__(
        self,
        order_repository: Optional[OrderRepository] = None,
        dropship_repository: Optional[DropshipRepository] = None,
        notification_repository: Optional[NotificationRepository] = None,
        prodigi_sdk: Optional[ProdigiSDK] = None,
        retry_manager: Optional[OrderRetryManager] = None,
    ):
        self.orders = order_repository or OrderRepository()
        self.dropships = dropship_repository or DropshipRepository()
        self.notifications = notification_repository or NotificationRepository()
        self._prodigi = prodigi_sdk
        self._retry_manager = retry_manager

    @property
    def prodigi(self) -> ProdigiSDK:
        if self._prodigi is None:
            self._prodigi = get_prodigi_sdk()
        return self._prodigi

    @property
    def retry_manager(self) -> OrderRetryManager:
        if self._retry_manager is None:
            self._retry_manager = get_order_retry_manager()
        return self._retry_manager

    async def _fetch_prodigi_status(self, provider_order_id: str) -> Dict[str, Any]:
        current = map_order_status(await self.prodigi.orders.get(provider_order_id))
        return {"id": provider_order_id, **current, "lastUpdated": _now_iso()}

    # === DETALLE ===

    async def get_order_status(self, order_id: str, user_id: str, is_admin: bool = False) -> Dict[str, Any]:
        """
        Detalle completo de un pedido.

        Si existe un envío de Prodigi se consulta su estado; cuando cambió
        se actualizan el envío, el log y (si trae tracking nuevo) el pedido.
        Un fallo de Prodigi no impide responder.

        Args:
            order_id: Pedido a consultar
            user_id: Usuario que consulta
            is_admin: Si el usuario es administrador

        Returns:
            Dict: ``{order, statusHistory, orderLogs, dropshipOrders, prodigiStatus, lastUpdated}``

        Raises:
            NotFoundException: Pedido inexistente
            PermissionDeniedException: El pedido es de otro usuario
        """
        order = await self.orders.get_with_items(order_id)
        if not order:
            raise NotFoundException("Order not found", resource="order", resource_id=order_id)

        if order.get("user_id") != user_id and not is_admin:
            raise PermissionDeniedException("Access denied")

        status_history = await self.orders.get_status_history(order_id)
        order_logs = await self.orders.get_logs(order_id)
        dropship_orders = await self.dropships.list_for_order(order_id)

        prodigi_status = None
        prodigi_dropship = _find_prodigi_dropship(dropship_orders)
        if prodigi_dropship:
            try:
                prodigi_status = await self._fetch_prodigi_status(prodigi_dropship["provider_order_id"])
                await self._apply_prodigi_status(order, prodigi_dropship, prodigi_status)
            except AppException as e:
                logger.warning(f"⚠️ Could not refresh Prodigi status for order {order_id}: {e.message}")
                prodigi_status = {
                    "error": "Failed to fetch latest status from Prodigi",
                    "lastAttempt": _now_iso(),
                }

        items = order.pop("order_items", None) or []
        return {
            "order": {**order, "items": items},
            "statusHistory": status_history,
            "orderLogs": order_logs,
            "dropshipOrders": dropship_orders,
            "prodigiStatus": prodigi_status,
            "lastUpdated": _now_iso(),
        }

    async def _apply_prodigi_status(
        self, order: Dict[str, Any], dropship: Dict[str, Any], current: Dict[str, Any]
    ) -> None:
        if dropship.get("status") == current["status"]:
            return

        await self.dropships.update(
            dropship["id"],
            {
                "status": current["status"],
                "tracking_number": current.get("trackingNumber"),
                "tracking_url": current.get("trackingUrl"),
                "estimated_delivery": current.get("estimatedDelivery"),
                "provider_response": current,
            },
        )
        await self.orders.add_log(
            order["id"],
            "prodigi_status_updated",
            {
                "old_status": dropship.get("status"),
                "new_status": current["status"],
                "tracking_number": current.get("trackingNumber"),
                "tracking_url": current.get("trackingUrl"),
            },
        )

        if current.get("trackingNumber") and not order.get("tracking_number"):
            await self.orders.update(
                order["id"],
                {
                    "tracking_number": current["trackingNumber"],
                    "tracking_url": current.get("trackingUrl"),
                    "estimated_delivery_date": current.get("estimatedDelivery"),
                    "status": "shipped" if current["status"] == "shipped" else order.get("status"),
                },
            )

    # === ADMINISTRACIÓN ===

    async def refresh_prodigi_status(self, order_id: str, admin_id: str) -> Dict[str, Any]:
        """
        Refresca a demanda el estado de Prodigi de un pedido.

        Raises:
            NotFoundException: Sin envío de Prodigi o sin ID de Prodigi
            FulfillmentException: Prodigi no respondió
        """
        dropship = await self.dropships.get_for_order(order_id, "prodigi")
        if not dropship:
            raise NotFoundException("No Prodigi order found", resource="dropship_order", resource_id=order_id)
        if not dropship.get("provider_order_id"):
            raise NotFoundException("No Prodigi order ID found", resource="dropship_order", resource_id=order_id)

        try:
            current = await self._fetch_prodigi_status(dropship["provider_order_id"])
        except AppException as e:
            raise FulfillmentException(
                "Failed to refresh Prodigi status",
                provider="prodigi",
                order_id=order_id,
                operation="refresh_status",
                details={"error": e.message},
            ) from e

        await self.dropships.update(
            dropship["id"],
            {
                "status": current["status"],
                "tracking_number": current.get("trackingNumber"),
                "tracking_url": current.get("trackingUrl"),
                "estimated_delivery": current.get("estimatedDelivery"),
                "provider_response": current,
            },
        )
        await self.orders.add_log(
            order_id,
            "manual_prodigi_refresh",
            {
                "old_status": dropship.get("status"),
                "new_status": current["status"],
                "tracking_number": current.get("trackingNumber"),
                "tracking_url": current.get("trackingUrl"),
                "refreshed_by": admin_id,
            },
            created_by=admin_id,
        )

        logger.info(f"🔄 Prodigi status refreshed for order {order_id}: {current['status']}")
        return {
            "success": True,
            "message": "Prodigi status refreshed successfully",
            "prodigiStatus": current,
        }

    async def update_status(self, admin_id: str, update: Dict[str, Any]) -> Dict[str, Any]:
        """
        Cambio manual de estado.

        Al cancelar se cancelan también los reintentos pendientes del pedido.

        Args:
            admin_id: Administrador que realiza el cambio
            update: ``{orderId, status, reason?, trackingNumber?, trackingUrl?, estimatedDelivery?, notes?}``

        Returns:
            Dict: ``{success, order, message}``

        Raises:
            NotFoundException: Pedido inexistente
        """
        order_id = update["orderId"]
        previous = await self.orders.get_by_id(order_id)
        if not previous:
            raise NotFoundException("Order not found", resource="order", resource_id=order_id)

        fields: Dict[str, Any] = {"status": update["status"]}
        for source, column in (
            ("trackingNumber", "tracking_number"),
            ("trackingUrl", "tracking_url"),
            ("estimatedDelivery", "estimated_delivery_date"),
            ("notes", "notes"),
        ):
            if update.get(source):
                fields[column] = update[source]

        updated_order = await self.orders.update(order_id, fields)

        await self.orders.add_status_history(
            order_id,
            update["status"],
            previous_status=previous.get("status"),
            reason=update.get("reason"),
            created_by=admin_id,
        )
        await self.orders.add_log(
            order_id,
            "status_updated",
            {
                "new_status": update["status"],
                "reason": update.get("reason"),
                "tracking_number": update.get("trackingNumber"),
                "tracking_url": update.get("trackingUrl"),
                "estimated_delivery": update.get("estimatedDelivery"),
                "notes": update.get("notes"),
                "updated_by": admin_id,
            },
            created_by=admin_id,
        )

        if update["status"] == "cancelled":
            await self.retry_manager.cancel_operations_for_order(order_id)

        notification = STATUS_NOTIFICATIONS.get(update["status"])
        if notification:
            notification_type, title, message = notification
            await self.notifications.create_for_order(
                order_id,
                notification_type,
                title,
                message,
                {
                    "tracking_number": update.get("trackingNumber"),
                    "tracking_url": update.get("trackingUrl"),
                    "estimated_delivery": update.get("estimatedDelivery"),
                    "reason": update.get("reason"),
                },
            )

        logger.info(f"✅ Order {order_id} status updated to {update['status']} by {admin_id}")
        return {"success": True, "order": updated_order, "message": "Order updated successfully"}


_order_status_service: Optional[OrderStatusService] = None


def get_order_status_service() -> OrderStatusService:
    global _order_status_service
    if _order_status_service is None:
        _order_status_service = OrderStatusService()
    return _order_status_service
