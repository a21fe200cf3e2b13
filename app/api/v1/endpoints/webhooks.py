"""
Endpoints para webhooks de Prodigi y Stripe.

El cuerpo se lee crudo porque ambas firmas se calculan sobre los bytes
recibidos.
"""

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status

from app.api.v1.dependencies import get_prodigi_webhooks, get_stripe
from app.core.logging_config import log_webhook_received
from app.services.payments import StripeService
from app.services.prodigi.webhooks import ProdigiWebhookProcessor, challenge_response
from app.utils.error_handler import AppException, PaymentException

logger = logging.getLogger(__name__)

# Crear router
router = APIRouter()


# === PRODIGI ===


@router.post("/prodigi", status_code=status.HTTP_200_OK)
async def receive_prodigi_webhook(
    request: Request,
    signature: Optional[str] = Header(None, alias="x-prodigi-signature"),
    processor: ProdigiWebhookProcessor = Depends(get_prodigi_webhooks),
) -> Dict[str, Any]:
    """
    Actualización de estado de un pedido de Prodigi.

    Args:
        request: Request HTTP con el evento (CloudEvents o formato plano)
        signature: HMAC-SHA256 del cuerpo, si hay secreto configurado

    Returns:
        Dict: ``{success, message, orderId, statusChange}``
    """
    body = await request.body()
    result = await processor.handle(body, signature)
    log_webhook_received("prodigi", "order_status", order_id=result.get("orderId"))
    return result


@router.get("/prodigi")
async def verify_prodigi_webhook(challenge: Optional[str] = Query(None)) -> Dict[str, Any]:
    return challenge_response(challenge)


# === STRIPE ===


@router.post("/stripe", status_code=status.HTTP_200_OK)
async def receive_stripe_webhook(
    request: Request,
    signature: Optional[str] = Header(None, alias="stripe-signature"),
    stripe_service: StripeService = Depends(get_stripe),
) -> Dict[str, Any]:
    """
    Evento firmado de Stripe.

    Un fallo al procesar un evento válido responde 500 para que Stripe lo
    reenvíe.

    Returns:
        Dict: ``{received: True, handled: bool}``
    """
    body = await request.body()
    stripe_service.construct_event(body, signature)
    event = json.loads(body)

    log_webhook_received("stripe", event.get("type") or "unknown", event_id=event.get("id"))

    try:
        return await stripe_service.handle_event(event)
    except AppException as e:
        logger.error(f"❌ Error processing Stripe event {event.get('id')} ({event.get('type')}): {e.message}")
        raise PaymentException(
            "Webhook processing failed",
            status_code=500,
            details={"event_id": event.get("id"), "error": e.message},
        ) from e
