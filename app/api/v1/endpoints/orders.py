"""
Endpoints de pedidos: listado del cliente, detalle de estado y gestión.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from app.api.v1.dependencies import (
    get_current_user_id,
    get_order_repository,
    get_order_status,
    get_profile_repository,
    require_admin,
)
from app.api.v1.schemas.storefront_schemas import OrderActionRequest, OrderStatusUpdateRequest
from app.db.repositories import OrderRepository, ProfileRepository
from app.domain.models.order import ORDER_LIST_STATUSES
from app.services.order_status import OrderStatusService
from app.utils.error_handler import ValidationException

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_ORDERS_PAGE = 100
ORDER_STATUS_ACTIONS = ("refresh_prodigi_status",)


def _check_status_filter(order_status: Optional[str]) -> None:
    if order_status and order_status not in ORDER_LIST_STATUSES:
        expected = ", ".join(f"'{s.value}'" for s in ORDER_LIST_STATUSES)
        raise ValidationException(
            f"Invalid status: expected one of {expected}",
            field="status",
            invalid_value=order_status,
            status_code=400,
        )


@router.get("")
async def list_orders(
    order_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(20, ge=1),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    orders: OrderRepository = Depends(get_order_repository),
) -> Dict[str, Any]:
    """
    Pedidos del usuario con sus items y envíos.
    """
    _check_status_filter(order_status)
    rows = await orders.list_for_user(user_id, status=order_status, limit=min(limit, MAX_ORDERS_PAGE), offset=offset)
    return {"orders": rows}


# === GESTIÓN (ADMIN) ===


@router.get("/management")
async def list_managed_orders(
    order_status: Optional[str] = Query(None, alias="status"),
    customer_id: Optional[str] = Query(None, alias="userId"),
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    admin_id: str = Depends(require_admin),
    orders: OrderRepository = Depends(get_order_repository),
) -> Dict[str, Any]:
    """
    Todos los pedidos con filtros y paginación.
    """
    _check_status_filter(order_status)
    limit = min(limit, MAX_ORDERS_PAGE)
    rows, total = await orders.list_all(
        status=order_status,
        user_id=customer_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return {
        "orders": rows,
        "pagination": {"total": total, "limit": limit, "offset": offset, "hasMore": offset + limit < total},
    }


@router.patch("/management")
async def update_managed_order(
    request: OrderStatusUpdateRequest,
    admin_id: str = Depends(require_admin),
    service: OrderStatusService = Depends(get_order_status),
) -> Dict[str, Any]:
    return await service.update_status(admin_id, request.to_update())


# === ESTADO ===


@router.get("/{order_id}/status")
async def get_order_status_detail(
    order_id: str,
    user_id: str = Depends(get_current_user_id),
    profiles: ProfileRepository = Depends(get_profile_repository),
    service: OrderStatusService = Depends(get_order_status),
) -> Dict[str, Any]:
    """
    Detalle del pedido con historial, logs, envíos y estado de Prodigi.

    El dueño del pedido o un administrador pueden consultarlo.
    """
    is_admin = await profiles.is_admin(user_id)
    return await service.get_order_status(order_id, user_id, is_admin=is_admin)


@router.post("/{order_id}/status")
async def run_order_status_action(
    order_id: str,
    request: OrderActionRequest,
    admin_id: str = Depends(require_admin),
    service: OrderStatusService = Depends(get_order_status),
) -> Dict[str, Any]:
    if request.action not in ORDER_STATUS_ACTIONS:
        raise ValidationException(
            "Invalid action",
            field="action",
            invalid_value=request.action,
            expected_format=", ".join(ORDER_STATUS_ACTIONS),
            status_code=400,
        )

    logger.info(f"🔧 Admin {admin_id} requested {request.action} for order {order_id}")
    return await service.refresh_prodigi_status(order_id, admin_id)
