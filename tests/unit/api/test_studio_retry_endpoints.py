"""
Tests unitarios para los endpoints de studio, dropship, notificaciones y reintentos.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.v1 import dependencies
from app.api.v1.endpoints.dropship import router as dropship_router
from app.api.v1.endpoints.notifications import router as notifications_router
from app.api.v1.endpoints.retry import router as retry_router
from app.api.v1.endpoints.studio import router as studio_router
from app.core.exception_handlers import configure_exception_handlers
from app.utils.error_handler import ConflictException, ErrorCode

USER_HEADERS = {"X-User-Id": "user-1"}


@pytest.fixture
def studio():
    orchestrator = MagicMock()
    orchestrator.chat = AsyncMock(
        return_value={
            "content": "A black frame suits it.",
            "agents": ["frame-advisor"],
            "responses": [{"agent": "frame-advisor", "content": "A black frame suits it.", "confidence": 0.85}],
        }
    )
    return orchestrator


@pytest.fixture
def pricing():
    service = MagicMock()
    service.quote_studio_config = AsyncMock(return_value={"total": 64.0, "currency": "USD"})
    return service


@pytest.fixture
def dropship():
    orchestrator = MagicMock()
    orchestrator.submit = AsyncMock(return_value={"success": True, "prodigiOrderId": "ord_1"})
    orchestrator.get_status = AsyncMock(return_value={"status": "processing"})
    return orchestrator


@pytest.fixture
def notifications():
    repo = MagicMock()
    repo.list_for_user = AsyncMock(return_value=[{"id": "n-1"}, {"id": "n-2"}])
    repo.count_unread = AsyncMock(return_value=1)
    repo.mark_read = AsyncMock(return_value=1)
    repo.mark_all_read = AsyncMock(return_value=2)
    repo.delete_read = AsyncMock(return_value=3)
    return repo


@pytest.fixture
def retry_manager():
    manager = MagicMock()
    manager.get_retry_stats = AsyncMock(return_value={"total": 4, "pending": 1})
    manager.retry_failed_operations = AsyncMock(return_value=2)
    manager.process_pending_operations = AsyncMock(return_value={"processed": 3, "failed": 0, "errors": 0})
    return manager


@pytest.fixture
def profiles():
    repo = MagicMock()
    repo.is_admin = AsyncMock(return_value=True)
    return repo


@pytest.fixture
def client(studio, pricing, dropship, notifications, retry_manager, profiles):
    app = FastAPI()
    configure_exception_handlers(app)
    app.include_router(studio_router, prefix="/api/studio")
    app.include_router(dropship_router, prefix="/api/dropship")
    app.include_router(notifications_router, prefix="/api/notifications")
    app.include_router(retry_router, prefix="/api/retry")

    app.dependency_overrides[dependencies.get_studio] = lambda: studio
    app.dependency_overrides[dependencies.get_pricing] = lambda: pricing
    app.dependency_overrides[dependencies.get_dropship] = lambda: dropship
    app.dependency_overrides[dependencies.get_notification_repository] = lambda: notifications
    app.dependency_overrides[dependencies.get_retry_manager] = lambda: retry_manager
    app.dependency_overrides[dependencies.get_profile_repository] = lambda: profiles
    return TestClient(app)


class TestStudioEndpoints:
    def test_chat_uses_last_user_message(self, client, studio):
        """Debe responder el último mensaje del usuario con el historial previo."""
        response = client.post(
            "/api/studio/chat",
            json={
                "messages": [
                    {"role": "user", "content": "I have a beach photo"},
                    {"role": "assistant", "content": "Nice!"},
                    {"role": "user", "content": "Which frame?"},
                ],
                "frameConfig": {"size": "16x20"},
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == {"role": "assistant", "content": "A black frame suits it."}
        assert body["agents"] == ["frame-advisor"]

        user_message, context = studio.chat.call_args.args
        assert user_message == "Which frame?"
        assert context.frame_config == {"size": "16x20"}
        assert [m["content"] for m in context.conversation_history] == ["I have a beach photo", "Nice!"]

    def test_chat_without_user_message_is_400(self, client, studio):
        """Debe responder 400 si no hay mensaje de usuario."""
        response = client.post("/api/studio/chat", json={"messages": [{"role": "assistant", "content": "Hi"}]})

        assert response.status_code == 400
        studio.chat.assert_not_awaited()

    def test_chat_requires_messages(self, client):
        """Debe rechazar una conversación vacía."""
        assert client.post("/api/studio/chat", json={"messages": []}).status_code == 400

    def test_pricing_uppercases_country(self, client, pricing):
        """Debe cotizar la configuración con el país en mayúsculas."""
        response = client.post("/api/studio/pricing", json={"config": {"sku": "GLOBAL-CFPM-16X20"}, "country": "gb"})

        assert response.status_code == 200
        pricing.quote_studio_config.assert_awaited_once_with({"sku": "GLOBAL-CFPM-16X20"}, "GB")


class TestDropshipEndpoints:
    def test_submit_prodigi(self, client, dropship):
        """Debe enviar el pedido a Prodigi."""
        response = client.post("/api/dropship/prodigi", json={"orderId": "order-1"}, headers=USER_HEADERS)

        assert response.status_code == 200
        dropship.submit.assert_awaited_once_with("order-1", "prodigi")

    def test_duplicate_submission_is_409(self, client, dropship):
        """Debe propagar el 409 de un envío duplicado."""
        dropship.submit.side_effect = ConflictException(
            "Dropship order already exists for this order", error_code=ErrorCode.DUPLICATE_SUBMISSION
        )

        response = client.post("/api/dropship/gelato", json={"orderId": "order-1"}, headers=USER_HEADERS)

        assert response.status_code == 409

    def test_status_requires_order_id(self, client):
        """Debe exigir orderId en la consulta."""
        response = client.get("/api/dropship/prodigi", headers=USER_HEADERS)

        assert response.status_code == 400
        assert response.json()["error"] == "Order ID is required"

    def test_gelato_status_checks_owner(self, client, dropship):
        """Debe consultar el estado de Gelato con el usuario para validar propiedad."""
        client.get("/api/dropship/gelato", params={"orderId": "order-1"}, headers=USER_HEADERS)

        dropship.get_status.assert_awaited_once_with("order-1", "gelato", user_id="user-1")

    def test_requires_authentication(self, client):
        """Debe responder 401 sin usuario."""
        assert client.post("/api/dropship/prodigi", json={"orderId": "order-1"}).status_code == 401


class TestNotificationEndpoints:
    def test_list_with_pagination(self, client, notifications):
        """Debe indicar hasMore cuando la página está llena."""
        response = client.get("/api/notifications", params={"limit": 2, "unreadOnly": "true"}, headers=USER_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["unreadCount"] == 1
        assert body["pagination"] == {"limit": 2, "offset": 0, "hasMore": True}
        assert notifications.list_for_user.call_args.kwargs["unread_only"] is True

    def test_mark_read(self, client, notifications):
        """Debe marcar como leídas las notificaciones indicadas."""
        response = client.patch("/api/notifications", json={"notificationIds": ["n-1"]}, headers=USER_HEADERS)

        assert response.status_code == 200
        notifications.mark_read.assert_awaited_once_with("user-1", ["n-1"])

    def test_bulk_actions(self, client, notifications):
        """Debe soportar mark_all_read y delete_read y rechazar otras acciones."""
        assert client.delete("/api/notifications?action=mark_all_read", headers=USER_HEADERS).status_code == 200
        assert client.delete("/api/notifications?action=delete_read", headers=USER_HEADERS).status_code == 200
        assert client.delete("/api/notifications?action=purge", headers=USER_HEADERS).status_code == 400

        notifications.mark_all_read.assert_awaited_once_with("user-1")
        notifications.delete_read.assert_awaited_once_with("user-1")


class TestRetryEndpoints:
    def test_stats(self, client):
        """Debe devolver estadísticas y estado del scheduler."""
        response = client.get("/api/retry/stats", headers=USER_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["stats"] == {"total": 4, "pending": 1}
        assert "running" in body["scheduler"]

    def test_stats_requires_admin(self, client, profiles):
        """Debe responder 403 a usuarios no administradores."""
        profiles.is_admin.return_value = False

        assert client.get("/api/retry/stats", headers=USER_HEADERS).status_code == 403

    def test_process_requeues_failed(self, client, retry_manager):
        """Debe reencolar fallidas y barrer pendientes."""
        response = client.post(
            "/api/retry/process",
            json={"retryFailedHours": 24, "operationType": "prodigi_order_creation", "limit": 10},
            headers=USER_HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {"processed": 3, "failed": 0, "errors": 0, "requeued": 2}
        retry_manager.retry_failed_operations.assert_awaited_once_with(
            hours=24, operation_type="prodigi_order_creation"
        )
        retry_manager.process_pending_operations.assert_awaited_once_with(limit=10)

    def test_process_unknown_operation_type(self, client, retry_manager):
        """Debe rechazar tipos de operación desconocidos."""
        response = client.post("/api/retry/process", json={"operationType": "email"}, headers=USER_HEADERS)

        assert response.status_code == 400
        retry_manager.process_pending_operations.assert_not_awaited()
