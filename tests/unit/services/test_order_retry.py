"""Tests unitarios para el sistema de reintentos de operaciones de pedidos."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.services.order_retry import OrderRetryManager, RetryConfig
from app.utils.error_handler import ProdigiAPIException, ValidationException


def make_manager(operation=None, max_retries=3) -> OrderRetryManager:
    operations = MagicMock()
    operations.create = AsyncMock()
    operations.get = AsyncMock(return_value=operation)
    operations.update = AsyncMock(return_value={"id": "op-1"})
    operations.list_due = AsyncMock(return_value=[])
    operations.stats_since = AsyncMock(return_value={})
    operations.reschedule_failed = AsyncMock(return_value=2)
    operations.delete_finished_before = AsyncMock(return_value=1)
    operations.cancel_for_order = AsyncMock(return_value=2)

    orders = MagicMock()
    orders.get_with_items = AsyncMock()
    orders.update = AsyncMock()
    orders.add_log = AsyncMock()

    dropships = MagicMock()
    dropships.get_for_order = AsyncMock(return_value=None)
    dropships.upsert_for_order = AsyncMock()
    dropships.update = AsyncMock()

    notifications = MagicMock()
    notifications.create_for_order = AsyncMock(return_value={"id": "n1"})

    orchestrator = MagicMock()
    orchestrator.create_prodigi_order = AsyncMock()
    orchestrator.find_prodigi_order = AsyncMock(return_value=None)

    stripe_service = MagicMock()
    stripe_service.handle_event = AsyncMock(return_value={"received": True, "handled": True})

    return OrderRetryManager(
        config=RetryConfig(max_retries=max_retries, base_delay_ms=1000, max_delay_ms=300000, backoff_multiplier=2.0),
        retry_repository=operations,
        order_repository=orders,
        dropship_repository=dropships,
        notification_repository=notifications,
        orchestrator=orchestrator,
        stripe_service=stripe_service,
    )


def operation(**overrides) -> dict:
    row = {
        "id": "op-1",
        "type": "notification_send",
        "order_id": "order-1",
        "payload": {"type": "order_update", "title": "Hi", "message": "Update"},
        "status": "pending",
        "attempts": 0,
    }
    row.update(overrides)
    return row


class TestRetryConfig:
    def test_exponential_delay_with_cap(self):
        """Debe duplicar la espera hasta el máximo configurado."""
        config = RetryConfig(max_retries=5, base_delay_ms=1000, max_delay_ms=5000, backoff_multiplier=2.0)
        assert config.calculate_delay_ms(1) == 1000
        assert config.calculate_delay_ms(3) == 4000
        assert config.calculate_delay_ms(10) == 5000


class TestScheduleOperation:
    """Tests para la programación de operaciones."""

    @pytest.mark.asyncio
    async def test_schedules_with_backoff(self):
        manager = make_manager()

        operation_id = await manager.schedule_operation("prodigi_status_update", "order-1", {"a": 1})

        assert operation_id.startswith("retry_prodigi_status_update_order-1_")
        args = manager.operations.create.call_args.args
        assert args[1:4] == ("prodigi_status_update", "order-1", {"a": 1})
        manager.operations.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_immediate_runs_now(self):
        """Debe ejecutar la operación en el momento si es inmediata."""
        manager = make_manager(operation=operation())

        await manager.schedule_operation("notification_send", "order-1", immediate=True)

        manager.notifications.create_for_order.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_type(self):
        with pytest.raises(ValidationException):
            await make_manager().schedule_operation("email_blast", "order-1")


class TestProcessOperation:
    """Tests para un intento de ejecución."""

    @pytest.mark.asyncio
    async def test_success_marks_completed(self):
        manager = make_manager(operation=operation())

        assert await manager.process_operation("op-1") is True

        statuses = [call.args[1]["status"] for call in manager.operations.update.call_args_list]
        assert statuses == ["processing", "completed"]
        assert manager.operations.update.call_args_list[0].args[1]["attempts"] == 1
        assert manager.operations.update.call_args.args[1]["result"] == {"id": "n1"}

    @pytest.mark.asyncio
    async def test_completed_is_noop(self):
        manager = make_manager(operation=operation(status="completed"))
        assert await manager.process_operation("op-1") is True
        manager.operations.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_reschedules(self):
        """Debe volver a pending con el siguiente reintento."""
        manager = make_manager(operation=operation())
        manager.notifications.create_for_order = AsyncMock(side_effect=ProdigiAPIException("down", 503))

        assert await manager.process_operation("op-1") is False

        last_update = manager.operations.update.call_args.args[1]
        assert last_update["status"] == "pending"
        assert last_update["error"] == "down"
        assert "next_retry" in last_update

    @pytest.mark.asyncio
    async def test_last_attempt_marks_failed(self):
        """Debe marcar failed al fallar el último intento."""
        manager = make_manager(operation=operation(attempts=2), max_retries=3)
        manager.notifications.create_for_order = AsyncMock(side_effect=RuntimeError("boom"))

        assert await manager.process_operation("op-1") is False

        assert manager.operations.update.call_args.args[1]["status"] == "failed"

    @pytest.mark.asyncio
    async def test_exhausted_operation(self):
        manager = make_manager(operation=operation(attempts=3), max_retries=3)

        assert await manager.process_operation("op-1") is False

        fields = manager.operations.update.call_args.args[1]
        assert fields["status"] == "failed"
        assert fields["error"] == "Max retries exceeded"

    @pytest.mark.asyncio
    async def test_missing_operation(self):
        assert await make_manager(operation=None).process_operation("op-x") is False


class TestExecutors:
    """Tests para cada tipo de operación."""

    @pytest.mark.asyncio
    async def test_prodigi_creation_skips_existing(self):
        """Debe omitir la creación si ya existe el pedido en Prodigi."""
        manager = make_manager()
        manager.dropships.get_for_order = AsyncMock(return_value={"provider_order_id": "ord_1"})

        result = await manager.execute_prodigi_order_creation("order-1", {})

        assert result == {"id": "ord_1", "skipped": True}
        manager.orchestrator.create_prodigi_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_prodigi_creation(self):
        manager = make_manager()
        manager.orders.get_with_items = AsyncMock(
            return_value={
                "id": "order-1",
                "order_number": "ORD-1",
                "shipping_address": {"country": "US"},
                "order_items": [
                    {"quantity": 1, "products": {"id": "p1", "sku": "GLOBAL-CAN-10x10", "images": {"image_url": "https://x/a.png"}}}
                ],
            }
        )
        manager.orchestrator.create_prodigi_order = AsyncMock(
            return_value={"provider_order_id": "ord_9", "status": "processing", "response": {"id": "ord_9"}}
        )

        result = await manager.execute_prodigi_order_creation("order-1", {})

        assert result == {"id": "ord_9"}
        assert manager.dropships.upsert_for_order.call_args.args[2]["provider_order_id"] == "ord_9"
        manager.orders.update.assert_awaited_once_with("order-1", {"status": "processing"})

    @pytest.mark.asyncio
    async def test_prodigi_creation_reuses_order_with_same_reference(self):
        """Debe reutilizar el pedido que Prodigi ya tiene con la misma referencia."""
        manager = make_manager()
        manager.orders.get_with_items = AsyncMock(
            return_value={
                "id": "order-1",
                "order_number": "ORD-1",
                "shipping_address": {"country": "US"},
                "order_items": [
                    {"quantity": 1, "products": {"id": "p1", "sku": "GLOBAL-CAN-10x10", "images": {"image_url": "https://x/a.png"}}}
                ],
            }
        )
        manager.orchestrator.find_prodigi_order = AsyncMock(
            return_value={"provider_order_id": "ord_7", "status": "processing", "response": {"id": "ord_7"}}
        )

        result = await manager.execute_prodigi_order_creation("order-1", {})

        assert result == {"id": "ord_7"}
        manager.orchestrator.find_prodigi_order.assert_awaited_once_with("ORD-1")
        manager.orchestrator.create_prodigi_order.assert_not_awaited()
        assert manager.dropships.upsert_for_order.call_args.args[2]["provider_order_id"] == "ord_7"

    @pytest.mark.asyncio
    async def test_prodigi_creation_rejects_empty_sku(self):
        manager = make_manager()
        manager.orders.get_with_items = AsyncMock(
            return_value={"id": "order-1", "order_items": [{"products": {"id": "p1", "sku": " "}}]}
        )
        with pytest.raises(ValidationException):
            await manager.execute_prodigi_order_creation("order-1", {})

    @pytest.mark.asyncio
    async def test_stripe_webhook_redispatches_event(self):
        manager = make_manager()
        event = {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_1"}}}

        assert (await manager.execute_stripe_webhook("order-1", {"event": event}))["handled"] is True
        manager.stripe_service.handle_event.assert_awaited_once_with(event)
        assert await manager.execute_stripe_webhook("order-1", {}) == {"success": True}


class TestMaintenance:
    """Tests para barridos, estadísticas y limpieza."""

    @pytest.mark.asyncio
    async def test_process_pending(self):
        manager = make_manager(operation=operation())
        manager.operations.list_due = AsyncMock(return_value=[{"id": "op-1"}, {"id": "op-2"}])
        manager.process_operation = AsyncMock(side_effect=[True, False])

        result = await manager.process_pending_operations()

        assert result == {"processed": 1, "failed": 1, "errors": 0}

    @pytest.mark.asyncio
    async def test_stats(self):
        manager = make_manager()
        manager.operations.stats_since = AsyncMock(
            return_value={"total": 4, "completed": 3, "failed": 1, "avg_attempts": 1.5, "success_rate": 75.0}
        )

        stats = await manager.get_retry_stats()

        assert stats["total"] == 4
        assert stats["pending"] == 0
        assert stats["success_rate"] == 75.0

    @pytest.mark.asyncio
    async def test_retry_failed_and_cleanup(self):
        manager = make_manager()
        assert await manager.retry_failed_operations(hours=12, operation_type="stripe_webhook") == 2
        assert manager.operations.reschedule_failed.call_args.args[2] == "stripe_webhook"
        assert await manager.cleanup_old_operations() == {"completed": 1, "failed": 1}

    @pytest.mark.asyncio
    async def test_cancel_operations_for_order(self):
        manager = make_manager()
        assert await manager.cancel_operations_for_order("order-1") == 2
        manager.operations.cancel_for_order.assert_awaited_once_with("order-1")
