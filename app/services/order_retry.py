"""
Reintentos persistentes de operaciones de pedidos.

Las operaciones que dependen de servicios externos (crear el pedido en
Prodigi, refrescar su estado, reprocesar un evento de Stripe, enviar una
notificación) se guardan en ``retry_operations`` y se ejecutan con backoff
exponencial. El scheduler de fondo barre las operaciones vencidas.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.core.config import get_settings
from app.db.repositories import (
    DropshipRepository,
    NotificationRepository,
    OrderRepository,
    RetryOperationRepository,
)
from app.services.fulfillment.orchestrator import DropshipOrchestrator, build_provider_order_data
from app.services.prodigi.legacy import map_order_status
from app.utils.error_handler import ErrorAggregator, NotFoundException, ValidationException

settings = get_settings()
logger = logging.getLogger(__name__)

OPERATION_TYPES = ("prodigi_order_creation", "prodigi_status_update", "stripe_webhook", "notification_send")
OPERATION_STATUSES = ("pending", "processing", "completed", "failed", "cancelled")

COMPLETED_RETENTION_DAYS = 7
FAILED_RETENTION_DAYS = 30
STATS_WINDOW_HOURS = 24


class RetryConfig:
    """Parámetros de backoff exponencial."""

    def __init__(
        self,
        max_retries: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
        max_delay_ms: Optional[int] = None,
        backoff_multiplier: Optional[float] = None,
    ):
        self.max_retries = max_retries if max_retries is not None else settings.RETRY_MAX_ATTEMPTS
        self.base_delay_ms = base_delay_ms if base_delay_ms is not None else settings.RETRY_BASE_DELAY_MS
        self.max_delay_ms = max_delay_ms if max_delay_ms is not None else settings.RETRY_MAX_DELAY_MS
        self.backoff_multiplier = (
            backoff_multiplier if backoff_multiplier is not None else settings.RETRY_BACKOFF_MULTIPLIER
        )

    def calculate_delay_ms(self, attempt: int) -> int:
        """Espera antes del intento ``attempt`` (1 = primer reintento)."""
        delay = self.base_delay_ms * (self.backoff_multiplier ** (max(attempt, 1) - 1))
        return int(min(delay, self.max_delay_ms))


class OrderRetryManager:
    """
    Administra las operaciones guardadas en ``retry_operations``.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        retry_repository: Optional[RetryOperationRepository] = None,
        order_repository: Optional[OrderRepository] = None,
        dropship_repository: Optional[DropshipRepository] = None,
        notification_repository: Optional[NotificationRepository] = None,
        orchestrator: Optional[DropshipOrchestrator] = None,
        stripe_service=None,
    ):
        self.config = config or RetryConfig()
        self.operations = retry_repository or RetryOperationRepository()
        self.orders = order_repository or OrderRepository()
        self.dropships = dropship_repository or DropshipRepository()
        self.notifications = notification_repository or NotificationRepository()
        self.orchestrator = orchestrator or DropshipOrchestrator(self.orders, self.dropships)
        self._stripe_service = stripe_service

        self.executors: Dict[str, Callable[[str, Dict[str, Any]], Awaitable[Any]]] = {
            "prodigi_order_creation": self.execute_prodigi_order_creation,
            "prodigi_status_update": self.execute_prodigi_status_update,
            "stripe_webhook": self.execute_stripe_webhook,
            "notification_send": self.execute_notification_send,
        }

    @property
    def stripe_service(self):
        if self._stripe_service is None:
            from app.services.payments.stripe_service import get_stripe_service

            self._stripe_service = get_stripe_service()
        return self._stripe_service

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    # === PROGRAMACIÓN ===

    async def schedule_operation(
        self, operation_type: str, order_id: str, payload: Optional[Dict[str, Any]] = None, immediate: bool = False
    ) -> str:
        """
        Guarda una operación y opcionalmente la ejecuta en el momento.

        Args:
            operation_type: Uno de ``OPERATION_TYPES``
            order_id: Pedido asociado
            payload: Datos de la operación
            immediate: Ejecutar ya en vez de esperar al primer backoff

        Returns:
            str: ID de la operación

        Raises:
            ValidationException: Tipo de operación desconocido
        """
        if operation_type not in OPERATION_TYPES:
            raise ValidationException(
                f"Unknown operation type: {operation_type}", field="type", invalid_value=operation_type, status_code=400
            )

        operation_id = f"retry_{operation_type}_{order_id}_{int(time.time() * 1000)}"
        next_retry = self._now()
        if not immediate:
            next_retry += timedelta(milliseconds=self.config.calculate_delay_ms(1))

        await self.operations.create(operation_id, operation_type, order_id, payload or {}, next_retry)
        logger.info(f"🔄 Scheduled {operation_type} for order {order_id} ({operation_id})")

        if immediate:
            await self.process_operation(operation_id)

        return operation_id

    # === EJECUCIÓN ===

    async def process_operation(self, operation_id: str) -> bool:
        """
        Ejecuta un intento de la operación.

        Un fallo reprograma la operación con backoff hasta agotar
        ``max_retries``; después queda ``failed``.

        Returns:
            bool: True si la operación está completada (o cancelada)
        """
        operation = await self.operations.get(operation_id)
        if not operation:
            logger.error(f"❌ Retry operation not found: {operation_id}")
            return False

        if operation["status"] in ("completed", "cancelled"):
            return True

        attempts = int(operation.get("attempts") or 0)
        if attempts >= self.config.max_retries:
            await self.mark_operation_failed(operation_id, "Max retries exceeded")
            return False

        await self.operations.update(
            operation_id, {"status": "processing", "attempts": attempts + 1, "last_attempt": self._now()}
        )

        executor = self.executors.get(operation["type"])
        try:
            if executor is None:
                raise ValidationException(f"Unknown operation type: {operation['type']}", field="type")
            result = await executor(str(operation["order_id"]), operation.get("payload") or {})
        except Exception as e:
            error_message = getattr(e, "message", None) or str(e) or e.__class__.__name__
            logger.error(f"❌ Retry operation {operation_id} failed (attempt {attempts + 1}): {error_message}")

            if attempts + 1 < self.config.max_retries:
                next_retry = self._now() + timedelta(milliseconds=self.config.calculate_delay_ms(attempts + 1))
                await self.operations.update(
                    operation_id, {"status": "pending", "next_retry": next_retry, "error": error_message}
                )
            else:
                await self.mark_operation_failed(operation_id, error_message)
            return False

        await self.mark_operation_complete(operation_id, result)
        logger.info(f"✅ Retry operation {operation_id} completed")
        return True

    async def execute_prodigi_order_creation(self, order_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Crea en Prodigi el pedido de una orden pagada.

        Si la fila de dropship ya tiene ``provider_order_id``, o Prodigi ya
        tiene un pedido con la misma referencia, no se vuelve a crear.
        """
        existing = await self.dropships.get_for_order(order_id, "prodigi")
        if existing and existing.get("provider_order_id"):
            logger.info(f"Prodigi order already exists for {order_id}: {existing['provider_order_id']}")
            return {"id": existing["provider_order_id"], "skipped": True}

        order = await self.orders.get_with_items(order_id)
        if not order:
            raise NotFoundException(f"Order not found: {order_id}", resource="order", resource_id=order_id)

        for item in order.get("order_items") or []:
            product = item.get("products") or {}
            if not (product.get("sku") or "").strip():
                raise ValidationException(
                    f"Invalid SKU for product {product.get('id')}: {product.get('sku')}", field="sku"
                )

        order_data = build_provider_order_data(order)
        created = await self.orchestrator.find_prodigi_order(
            order_data["order_reference"]
        ) or await self.orchestrator.create_prodigi_order(order_data)

        await self.dropships.upsert_for_order(
            order_id,
            "prodigi",
            {
                "provider_order_id": created["provider_order_id"],
                "status": created["status"],
                "tracking_number": created.get("tracking_number"),
                "tracking_url": created.get("tracking_url"),
                "estimated_delivery": created.get("estimated_delivery"),
                "provider_response": created["response"],
                "error_message": None,
            },
        )
        await self.orders.update(order_id, {"status": "processing"})
        await self.orders.add_log(
            order_id,
            "prodigi_order_created",
            {"prodigi_order_id": created["provider_order_id"], "status": created["status"]},
        )
        return created["response"]

    async def execute_prodigi_status_update(self, order_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        dropship = await self.dropships.get_for_order(order_id, "prodigi")
        if not dropship or not dropship.get("provider_order_id"):
            raise NotFoundException("Prodigi order not found", resource="dropship_order", resource_id=order_id)

        prodigi_order = await self.orchestrator.prodigi.orders.get(dropship["provider_order_id"])
        current = map_order_status(prodigi_order)
        await self.dropships.update(
            dropship["id"],
            {
                "status": current["status"],
                "tracking_number": current.get("trackingNumber"),
                "tracking_url": current.get("trackingUrl"),
                "estimated_delivery": current.get("estimatedDelivery"),
                "provider_response": prodigi_order,
            },
        )
        return current

    async def execute_stripe_webhook(self, order_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Reprocesa un evento de Stripe guardado en ``payload['event']``."""
        event = payload.get("event")
        if not event:
            return {"success": True}
        return await self.stripe_service.handle_event(event)

    async def execute_notification_send(self, order_id: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self.notifications.create_for_order(
            order_id,
            payload.get("type") or "order_update",
            payload.get("title") or "Order Update",
            payload.get("message") or "",
            payload.get("metadata") or {},
        )

    # === ESTADO ===

    async def mark_operation_failed(self, operation_id: str, error: str) -> bool:
        updated = await self.operations.update(
            operation_id, {"status": "failed", "error": error, "failed_at": self._now()}
        )
        if updated:
            logger.warning(f"⚠️ Retry operation {operation_id} marked as failed: {error}")
        return bool(updated)

    async def mark_operation_complete(self, operation_id: str, result: Optional[Any] = None) -> bool:
        return bool(
            await self.operations.update(
                operation_id, {"status": "completed", "result": result, "completed_at": self._now(), "error": None}
            )
        )

    async def cancel_operations_for_order(self, order_id: str) -> int:
        cancelled = await self.operations.cancel_for_order(order_id)
        if cancelled:
            logger.info(f"Cancelled {cancelled} retry operations for order {order_id}")
        return cancelled

    async def get_pending_operations(self, limit: int = 100) -> List[Dict[str, Any]]:
        return await self.operations.list_due(self._now(), limit=limit)

    async def process_pending_operations(self, limit: int = 100) -> Dict[str, Any]:
        """
        Procesa todas las operaciones pendientes vencidas.

        Returns:
            Dict: ``{processed, failed, errors}``
        """
        aggregator = ErrorAggregator()
        processed = 0
        failed = 0

        for operation in await self.get_pending_operations(limit=limit):
            try:
                if await self.process_operation(operation["id"]):
                    processed += 1
                else:
                    failed += 1
            except Exception as e:
                failed += 1
                aggregator.add_error(e, {"operation_id": operation["id"], "type": operation.get("type")})
            aggregator.increment_processed()

        if processed or failed:
            logger.info(f"🔄 Retry sweep: {processed} completed, {failed} failed")

        summary = aggregator.get_summary()
        return {"processed": processed, "failed": failed, "errors": summary["error_count"] + summary["warning_count"]}

    async def get_retry_stats(self) -> Dict[str, Any]:
        """Estadísticas de las últimas 24 horas."""
        row = await self.operations.stats_since(self._now() - timedelta(hours=STATS_WINDOW_HOURS))
        stats = {status: int(row.get(status) or 0) for status in ("total",) + OPERATION_STATUSES}
        stats["avg_attempts"] = float(row.get("avg_attempts") or 0)
        stats["success_rate"] = float(row.get("success_rate") or 0)
        return stats

    async def retry_failed_operations(self, hours: int = 24, operation_type: Optional[str] = None) -> int:
        """Vuelve a encolar operaciones fallidas en las últimas ``hours`` horas."""
        now = self._now()
        return await self.operations.reschedule_failed(now - timedelta(hours=hours), now, operation_type)

    async def cleanup_old_operations(self) -> Dict[str, int]:
        """Elimina completadas de más de 7 días y fallidas de más de 30."""
        now = self._now()
        completed = await self.operations.delete_finished_before(
            "completed", now - timedelta(days=COMPLETED_RETENTION_DAYS)
        )
        failed = await self.operations.delete_finished_before("failed", now - timedelta(days=FAILED_RETENTION_DAYS))
        logger.info(f"🧹 Retry cleanup: {completed} completed and {failed} failed operations removed")
        return {"completed": completed, "failed": failed}


_retry_manager: Optional[OrderRetryManager] = None


def get_order_retry_manager() -> OrderRetryManager:
    global _retry_manager
    if _retry_manager is None:
        _retry_manager = OrderRetryManager()
    return _retry_manager
