"""
Tests unitarios para los endpoints de webhooks y checkout.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.v1 import dependencies
from app.api.v1.endpoints.checkout import router as checkout_router
from app.api.v1.endpoints.webhooks import router as webhooks_router
from app.core.exception_handlers import configure_exception_handlers
from app.services.prodigi.webhooks import ProdigiWebhookProcessor
from app.utils.error_handler import (
    DatabaseConnectionException,
    PaymentException,
    ValidationException,
)

STRIPE_EVENT = {"id": "evt_1", "type": "checkout.session.completed", "data": {"object": {"id": "cs_1"}}}


@pytest.fixture
def stripe_service():
    service = MagicMock()
    service.construct_event = MagicMock(return_value=STRIPE_EVENT)
    service.handle_event = AsyncMock(return_value={"received": True, "handled": True})
    service.create_checkout_session = AsyncMock(
        return_value={"url": "https://checkout.stripe.com/c/cs_1", "sessionId": "cs_1"}
    )
    return service


@pytest.fixture
def webhook_processor():
    processor = MagicMock()
    processor.handle = AsyncMock(
        return_value={
            "success": True,
            "message": "Webhook processed",
            "orderId": "order-1",
            "statusChange": "submitted → complete",
        }
    )
    return processor


@pytest.fixture
def client(stripe_service, webhook_processor):
    app = FastAPI()
    configure_exception_handlers(app)
    app.include_router(webhooks_router, prefix="/api/webhooks")
    app.include_router(checkout_router, prefix="/api/checkout")
    app.dependency_overrides[dependencies.get_stripe] = lambda: stripe_service
    app.dependency_overrides[dependencies.get_prodigi_webhooks] = lambda: webhook_processor
    return TestClient(app)


class TestProdigiWebhookEndpoint:
    def test_passes_raw_body_and_signature(self, client, webhook_processor):
        """Debe entregar el cuerpo crudo y la firma al procesador."""
        body = json.dumps({"type": "com.prodigi.order.status.stage.changed#Complete"}).encode()

        response = client.post(
            "/api/webhooks/prodigi",
            content=body,
            headers={"x-prodigi-signature": "abc123", "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json()["statusChange"] == "submitted → complete"
        webhook_processor.handle.assert_awaited_once_with(body, "abc123")

    def test_invalid_signature_is_401(self, client, webhook_processor):
        """Debe propagar el 401 de una firma inválida."""
        webhook_processor.handle.side_effect = ValidationException("Invalid signature", status_code=401)

        response = client.post("/api/webhooks/prodigi", content=b"{}")

        assert response.status_code == 401

    def test_unknown_order_is_404_json(self):
        """Debe responder 404 con el cuerpo de error cuando Prodigi notifica un pedido desconocido."""
        dropships = MagicMock()
        dropships.get_by_provider_order_id = AsyncMock(return_value=None)
        processor = ProdigiWebhookProcessor(
            order_repository=MagicMock(),
            dropship_repository=dropships,
            notification_repository=MagicMock(),
            webhook_secret="",
        )
        app = FastAPI()
        configure_exception_handlers(app)
        app.include_router(webhooks_router, prefix="/api/webhooks")
        app.dependency_overrides[dependencies.get_prodigi_webhooks] = lambda: processor
        body = {"id": "evt_9", "data": {"order": {"id": "ord_unknown", "status": {"stage": "Complete"}}}}

        response = TestClient(app).post("/api/webhooks/prodigi", json=body)

        assert response.status_code == 404
        assert response.json()["error"] == "Order not found"
        assert "error_code" in response.json()
        dropships.get_by_provider_order_id.assert_awaited_once_with("ord_unknown")
        assert "evt_9" not in processor.processed_events

    def test_database_failure_is_500(self, client, webhook_processor):
        """Debe responder 500 ante errores de base de datos."""
        webhook_processor.handle.side_effect = DatabaseConnectionException("db down")

        response = client.post("/api/webhooks/prodigi", content=b"{}")

        assert response.status_code >= 500
        assert response.json()["error"] == "Database unavailable"

    def test_challenge(self, client):
        """Debe devolver el challenge de verificación."""
        assert client.get("/api/webhooks/prodigi", params={"challenge": "xyz"}).json() == {"challenge": "xyz"}

    def test_health_message_without_challenge(self, client):
        """Debe indicar que el endpoint está activo sin challenge."""
        body = client.get("/api/webhooks/prodigi").json()
        assert body["message"] == "Prodigi webhook endpoint is active"


class TestStripeWebhookEndpoint:
    def test_handles_verified_event(self, client, stripe_service):
        """Debe verificar la firma y despachar el evento."""
        body = json.dumps(STRIPE_EVENT).encode()

        response = client.post("/api/webhooks/stripe", content=body, headers={"stripe-signature": "t=1,v1=abc"})

        assert response.status_code == 200
        assert response.json() == {"received": True, "handled": True}
        stripe_service.construct_event.assert_called_once_with(body, "t=1,v1=abc")
        assert stripe_service.handle_event.call_args.args[0]["id"] == "evt_1"

    def test_missing_signature_is_400(self, client, stripe_service):
        """Debe responder 400 si falta la firma."""
        stripe_service.construct_event.side_effect = PaymentException(
            "Missing stripe-signature header", status_code=400
        )

        response = client.post("/api/webhooks/stripe", content=b"{}")

        assert response.status_code == 400
        assert response.json()["error"] == "Missing stripe-signature header"
        stripe_service.handle_event.assert_not_awaited()

    def test_processing_failure_is_500(self, client, stripe_service):
        """Debe responder 500 para que Stripe reintente el evento."""
        stripe_service.handle_event.side_effect = DatabaseConnectionException("db down")

        response = client.post(
            "/api/webhooks/stripe", content=json.dumps(STRIPE_EVENT).encode(), headers={"stripe-signature": "sig"}
        )

        assert response.status_code == 500
        assert response.json()["error"] == "Webhook processing failed"


class TestCheckoutEndpoint:
    def test_creates_session(self, client, stripe_service):
        """Debe crear la sesión con los items y la dirección."""
        response = client.post(
            "/api/checkout/create-session",
            json={
                "cartItemIds": ["c-1", "c-2"],
                "shippingAddress": {"countryCode": "us", "city": "Austin", "postalCode": "73301"},
            },
            headers={"X-User-Id": "user-1"},
        )

        assert response.status_code == 200
        assert response.json()["sessionId"] == "cs_1"
        user_id, cart_item_ids, address = stripe_service.create_checkout_session.call_args.args
        assert user_id == "user-1"
        assert cart_item_ids == ["c-1", "c-2"]
        assert address["countryCode"] == "US"
        assert address["city"] == "Austin"

    def test_requires_cart_items(self, client):
        """Debe rechazar una lista de items vacía."""
        response = client.post(
            "/api/checkout/create-session",
            json={"cartItemIds": [], "shippingAddress": {"countryCode": "US"}},
            headers={"X-User-Id": "user-1"},
        )

        assert response.status_code == 400

    def test_requires_authentication(self, client):
        """Debe responder 401 sin usuario."""
        response = client.post(
            "/api/checkout/create-session",
            json={"cartItemIds": ["c-1"], "shippingAddress": {"countryCode": "US"}},
        )

        assert response.status_code == 401
