"""Tests unitarios para el procesamiento de webhooks de Prodigi."""

import hashlib
import hmac
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.services.prodigi.webhooks import (
    MAX_PROCESSED_EVENTS,
    InvalidWebhookPayload,
    InvalidWebhookSignature,
    ProdigiWebhookProcessor,
    challenge_response,
    parse_webhook_payload,
)
from app.utils.error_handler import NotFoundException

SECRET = "whsec_test"

CLOUD_EVENT = {
    "specversion": "1.0",
    "type": "com.prodigi.order.status.stage.changed#Complete",
    "id": "evt_1",
    "time": "2024-05-01T10:00:00Z",
    "data": {
        "order": {
            "id": "ord_123",
            "merchantReference": "ORD-1",
            "status": {"stage": "Complete"},
            "shipments": [
                {
                    "tracking": {"number": "TRK123", "url": "https://track.example.com/TRK123"},
                    "estimatedDeliveryDate": "2024-05-05",
                }
            ],
        }
    },
}


def sign(body: bytes) -> str:
    return hmac.new(SECRET.encode("utf-8"), body, hashlib.sha256).hexdigest()


def make_processor(dropship=None, secret=SECRET) -> ProdigiWebhookProcessor:
    orders = MagicMock()
    orders.update = AsyncMock()
    orders.add_log = AsyncMock()
    dropships = MagicMock()
    dropships.get_by_provider_order_id = AsyncMock(return_value=dropship)
    dropships.update_for_order = AsyncMock()
    notifications = MagicMock()
    notifications.create_for_order = AsyncMock()
    return ProdigiWebhookProcessor(
        order_repository=orders,
        dropship_repository=dropships,
        notification_repository=notifications,
        webhook_secret=secret,
    )


class TestParseWebhookPayload:
    """Tests para la normalización de ambos formatos."""

    def test_cloud_event_format(self):
        """Debe leer estado y tracking desde data.order."""
        event = parse_webhook_payload(CLOUD_EVENT)
        assert event.prodigi_order_id == "ord_123"
        assert event.status == "complete"
        assert event.order_status == "shipped"
        assert event.tracking_number == "TRK123"
        assert event.estimated_delivery == "2024-05-05"

    def test_flat_format(self):
        """Debe aceptar el formato plano de callbacks."""
        event = parse_webhook_payload({"type": "order.error", "data": {"id": "ord_9", "status": "Error"}})
        assert event.prodigi_order_id == "ord_9"
        assert event.order_status == "cancelled"

    def test_missing_data_is_invalid(self):
        with pytest.raises(InvalidWebhookPayload):
            parse_webhook_payload({"type": "x"})
        with pytest.raises(InvalidWebhookPayload):
            parse_webhook_payload({"data": {"id": "ord_1"}})


class TestSignature:
    def test_valid_and_invalid_signature(self):
        processor = make_processor()
        body = b'{"a":1}'
        assert processor.verify_signature(body, sign(body))
        assert not processor.verify_signature(body, "deadbeef")
        assert not processor.verify_signature(body, None)

    def test_no_secret_skips_verification(self):
        """Debe aceptar cualquier firma si no hay secret configurado."""
        assert make_processor(secret="").verify_signature(b"{}", None)


class TestHandle:
    """Tests para el flujo completo del webhook."""

    @pytest.mark.asyncio
    async def test_processes_shipped_event(self):
        """Debe actualizar dropship, pedido, log y notificar al cliente."""
        processor = make_processor(dropship={"order_id": "order-1", "status": "submitted"})
        body = json.dumps(CLOUD_EVENT).encode("utf-8")

        result = await processor.handle(body, sign(body))

        assert result["success"] is True
        assert result["orderId"] == "order-1"
        assert result["statusChange"] == "submitted → complete"

        processor.dropships.update_for_order.assert_awaited_once()
        order_fields = processor.orders.update.call_args.args[1]
        assert order_fields["status"] == "shipped"
        assert order_fields["tracking_number"] == "TRK123"
        processor.orders.add_log.assert_awaited_once()

        notification_args = processor.notifications.create_for_order.call_args.args
        assert notification_args[1] == "order_shipped"
        assert "TRK123" in notification_args[3]

    @pytest.mark.asyncio
    async def test_duplicate_event_is_skipped(self):
        """Debe ignorar un evento ya procesado."""
        processor = make_processor(dropship={"order_id": "order-1", "status": "submitted"})
        body = json.dumps(CLOUD_EVENT).encode("utf-8")

        await processor.handle(body, sign(body))
        result = await processor.handle(body, sign(body))

        assert result["duplicate"] is True
        assert processor.dropships.update_for_order.await_count == 1

    @pytest.mark.asyncio
    async def test_dedupe_evicts_oldest_event_only(self):
        """Debe recordar los eventos recientes al superar el límite y olvidar solo el más antiguo."""
        processor = make_processor(dropship={"order_id": "order-1", "status": "submitted"}, secret="")
        for index in range(MAX_PROCESSED_EVENTS):
            processor.remember_event(f"evt_old_{index}")

        await processor.handle(json.dumps(CLOUD_EVENT).encode("utf-8"))

        assert len(processor.processed_events) == MAX_PROCESSED_EVENTS
        assert "evt_old_0" not in processor.processed_events
        assert "evt_old_1" in processor.processed_events
        assert next(reversed(processor.processed_events)) == "evt_1"

        result = await processor.handle(json.dumps(CLOUD_EVENT).encode("utf-8"))
        assert result["duplicate"] is True

    @pytest.mark.asyncio
    async def test_invalid_signature(self):
        processor = make_processor()
        with pytest.raises(InvalidWebhookSignature):
            await processor.handle(b"{}", "bad")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        processor = make_processor(secret="")
        with pytest.raises(InvalidWebhookPayload):
            await processor.handle(b"not json", None)

    @pytest.mark.asyncio
    async def test_unknown_order(self):
        """Debe responder 404 si no existe el dropship del pedido."""
        processor = make_processor(dropship=None, secret="")
        with pytest.raises(NotFoundException):
            await processor.handle(json.dumps(CLOUD_EVENT).encode("utf-8"))


def test_challenge_response():
    assert challenge_response("abc") == {"challenge": "abc"}
    assert "message" in challenge_response(None)
