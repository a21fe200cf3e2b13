"""
Endpoint de checkout con Stripe.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from app.api.v1.dependencies import get_current_user_id, get_stripe
from app.api.v1.schemas.storefront_schemas import CheckoutSessionRequest
from app.services.payments import StripeService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/create-session")
async def create_checkout_session(
    request: CheckoutSessionRequest,
    user_id: str = Depends(get_current_user_id),
    stripe_service: StripeService = Depends(get_stripe),
) -> Dict[str, Any]:
    """
    Crea la sesión de Stripe Checkout para los items seleccionados.

    Returns:
        Dict: ``{url, sessionId}``
    """
    return await stripe_service.create_checkout_session(
        user_id,
        request.cart_item_ids,
        request.shipping_address.to_address(),
        customer_email=request.customer_email,
    )
