"""
Endpoints de envío a proveedores de impresión (Prodigi y Gelato).
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from app.api.v1.dependencies import get_current_user_id, get_dropship
from app.api.v1.schemas.storefront_schemas import DropshipOrderRequest
from app.services.fulfillment import DropshipOrchestrator
from app.utils.error_handler import ValidationException

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_order_id(order_id: Optional[str]) -> str:
    if not order_id:
        raise ValidationException("Order ID is required", field="orderId", status_code=400)
    return order_id


# === PRODIGI ===


@router.post("/prodigi")
async def submit_prodigi_order(
    request: DropshipOrderRequest,
    user_id: str = Depends(get_current_user_id),
    orchestrator: DropshipOrchestrator = Depends(get_dropship),
) -> Dict[str, Any]:
    """
    Envía un pedido pagado a Prodigi.

    Returns:
        Dict: ``{success, prodigiOrderId, trackingNumber, estimatedDelivery}``
    """
    logger.info(f"📦 User {user_id} requested Prodigi submission for order {request.order_id}")
    return await orchestrator.submit(request.order_id, "prodigi")


@router.get("/prodigi")
async def get_prodigi_order_status(
    order_id: Optional[str] = Query(None, alias="orderId"),
    user_id: str = Depends(get_current_user_id),
    orchestrator: DropshipOrchestrator = Depends(get_dropship),
) -> Dict[str, Any]:
    return await orchestrator.get_status(_require_order_id(order_id), "prodigi")


# === GELATO ===


@router.post("/gelato")
async def submit_gelato_order(
    request: DropshipOrderRequest,
    user_id: str = Depends(get_current_user_id),
    orchestrator: DropshipOrchestrator = Depends(get_dropship),
) -> Dict[str, Any]:
    logger.info(f"📦 User {user_id} requested Gelato submission for order {request.order_id}")
    return await orchestrator.submit(request.order_id, "gelato")


@router.get("/gelato")
async def get_gelato_order_status(
    order_id: Optional[str] = Query(None, alias="orderId"),
    user_id: str = Depends(get_current_user_id),
    orchestrator: DropshipOrchestrator = Depends(get_dropship),
) -> Dict[str, Any]:
    """
    Estado del envío de Gelato; el pedido debe ser del usuario.
    """
    return await orchestrator.get_status(_require_order_id(order_id), "gelato", user_id=user_id)
