"""Tests unitarios para el detalle y la gestión de estado de pedidos."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.services.order_status import OrderStatusService
from app.services.prodigi import ProdigiClient, ProdigiSDK
from app.services.prodigi.errors import ProdigiAPIError
from app.utils.error_handler import FulfillmentException, NotFoundException, PermissionDeniedException

PRODIGI_ORDER = {
    "id": "ord_1",
    "status": {"stage": "Complete"},
    "shipments": [{"tracking": {"number": "TRK1", "url": "https://t/1"}}],
}


def make_service(order=None, dropships=None, prodigi_error=None) -> OrderStatusService:
    orders = MagicMock()
    orders.get_with_items = AsyncMock(return_value=order)
    orders.get_by_id = AsyncMock(return_value=order)
    orders.get_status_history = AsyncMock(return_value=[])
    orders.get_logs = AsyncMock(return_value=[])
    orders.update = AsyncMock(return_value={**(order or {}), "status": "shipped"})
    orders.add_log = AsyncMock()
    orders.add_status_history = AsyncMock()

    dropship_repo = MagicMock()
    dropship_repo.list_for_order = AsyncMock(return_value=dropships or [])
    dropship_repo.get_for_order = AsyncMock(return_value=(dropships or [None])[0])
    dropship_repo.update = AsyncMock()

    notifications = MagicMock()
    notifications.create_for_order = AsyncMock()

    prodigi = MagicMock()
    prodigi.orders.get = AsyncMock(return_value=PRODIGI_ORDER, side_effect=prodigi_error)

    retry_manager = MagicMock()
    retry_manager.cancel_operations_for_order = AsyncMock(return_value=1)

    return OrderStatusService(
        order_repository=orders,
        dropship_repository=dropship_repo,
        notification_repository=notifications,
        prodigi_sdk=prodigi,
        retry_manager=retry_manager,
    )


def an_order(**overrides) -> dict:
    order = {"id": "order-1", "user_id": "user-1", "status": "processing", "order_items": [{"id": "i1"}]}
    order.update(overrides)
    return order


PRODIGI_DROPSHIP = {"id": "d1", "provider": "prodigi", "provider_order_id": "ord_1", "status": "processing"}


class TestGetOrderStatus:
    """Tests para el detalle de pedido."""

    @pytest.mark.asyncio
    async def test_owner_gets_details_and_prodigi_refresh(self):
        """Debe devolver el detalle y aplicar el nuevo estado de Prodigi."""
        service = make_service(order=an_order(), dropships=[dict(PRODIGI_DROPSHIP)])

        result = await service.get_order_status("order-1", "user-1")

        assert result["order"]["items"] == [{"id": "i1"}]
        assert result["prodigiStatus"]["status"] == "shipped"
        assert result["prodigiStatus"]["trackingNumber"] == "TRK1"
        service.dropships.update.assert_awaited_once()
        order_fields = service.orders.update.call_args.args[1]
        assert order_fields["tracking_number"] == "TRK1"
        assert order_fields["status"] == "shipped"

    @pytest.mark.asyncio
    async def test_other_user_is_denied(self):
        with pytest.raises(PermissionDeniedException):
            await make_service(order=an_order()).get_order_status("order-1", "user-2")

    @pytest.mark.asyncio
    async def test_admin_can_read_any_order(self):
        result = await make_service(order=an_order()).get_order_status("order-1", "admin-1", is_admin=True)
        assert result["prodigiStatus"] is None

    @pytest.mark.asyncio
    async def test_not_found(self):
        with pytest.raises(NotFoundException):
            await make_service(order=None).get_order_status("order-1", "user-1")

    @pytest.mark.asyncio
    async def test_prodigi_failure_is_reported(self):
        """Debe responder aunque Prodigi falle."""
        service = make_service(
            order=an_order(), dropships=[dict(PRODIGI_DROPSHIP)], prodigi_error=ProdigiAPIError("down", 503)
        )

        result = await service.get_order_status("order-1", "user-1")

        assert result["prodigiStatus"]["error"] == "Failed to fetch latest status from Prodigi"
        assert "lastAttempt" in result["prodigiStatus"]


class TestAdminActions:
    """Tests para las acciones de administración."""

    @pytest.mark.asyncio
    async def test_refresh_prodigi_status(self):
        service = make_service(order=an_order(), dropships=[dict(PRODIGI_DROPSHIP)])

        result = await service.refresh_prodigi_status("order-1", "admin-1")

        assert result["success"] is True
        assert result["prodigiStatus"]["status"] == "shipped"
        assert service.orders.add_log.call_args.args[1] == "manual_prodigi_refresh"

    @pytest.mark.asyncio
    async def test_refresh_reflects_new_prodigi_stage(self):
        """Debe devolver el estado actual de Prodigi en cada refresco."""
        service = make_service(order=an_order(), dropships=[dict(PRODIGI_DROPSHIP)])
        client = ProdigiClient(api_key="test-key", environment="sandbox", min_request_interval=0)
        client._execute_request = AsyncMock(
            side_effect=[
                {"id": "ord_1", "status": {"stage": "InProgress"}, "shipments": []},
                {"id": "ord_1", "status": {"stage": "Complete"}, "shipments": []},
            ]
        )
        service._prodigi = ProdigiSDK(client=client)

        first = await service.refresh_prodigi_status("order-1", "admin-1")
        second = await service.refresh_prodigi_status("order-1", "admin-1")

        assert first["prodigiStatus"]["status"] == "processing"
        assert second["prodigiStatus"]["status"] == "shipped"
        assert client._execute_request.await_count == 2

    @pytest.mark.asyncio
    async def test_refresh_without_prodigi_order(self):
        with pytest.raises(NotFoundException):
            await make_service(order=an_order()).refresh_prodigi_status("order-1", "admin-1")

    @pytest.mark.asyncio
    async def test_refresh_provider_error(self):
        service = make_service(
            order=an_order(), dropships=[dict(PRODIGI_DROPSHIP)], prodigi_error=ProdigiAPIError("down", 503)
        )
        with pytest.raises(FulfillmentException):
            await service.refresh_prodigi_status("order-1", "admin-1")

    @pytest.mark.asyncio
    async def test_update_status(self):
        """Debe actualizar, registrar historial y log, y notificar."""
        service = make_service(order=an_order())

        result = await service.update_status(
            "admin-1", {"orderId": "order-1", "status": "shipped", "trackingNumber": "TRK9", "reason": "manual"}
        )

        assert result["success"] is True
        assert service.orders.update.call_args.args[1] == {"status": "shipped", "tracking_number": "TRK9"}
        history_kwargs = service.orders.add_status_history.call_args.kwargs
        assert history_kwargs["previous_status"] == "processing"
        assert history_kwargs["created_by"] == "admin-1"
        assert service.notifications.create_for_order.call_args.args[1] == "order_shipped"

    @pytest.mark.asyncio
    async def test_update_status_without_notification(self):
        service = make_service(order=an_order())
        await service.update_status("admin-1", {"orderId": "order-1", "status": "paid"})
        service.notifications.create_for_order.assert_not_awaited()
        service.retry_manager.cancel_operations_for_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_stops_pending_retries(self):
        """Debe cancelar los reintentos pendientes al cancelar el pedido."""
        service = make_service(order=an_order())

        await service.update_status("admin-1", {"orderId": "order-1", "status": "cancelled", "reason": "customer"})

        service.retry_manager.cancel_operations_for_order.assert_awaited_once_with("order-1")
        assert service.notifications.create_for_order.call_args.args[1] == "order_cancelled"

    @pytest.mark.asyncio
    async def test_update_missing_order(self):
        with pytest.raises(NotFoundException):
            await make_service(order=None).update_status("admin-1", {"orderId": "x", "status": "shipped"})
