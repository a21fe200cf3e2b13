"""
Endpoints de administración del sistema de reintentos de pedidos.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends

from app.api.v1.dependencies import get_retry_manager, require_admin
from app.api.v1.schemas.storefront_schemas import RetryProcessRequest
from app.core.scheduler import get_scheduler_status
from app.services.order_retry import OPERATION_TYPES, OrderRetryManager
from app.utils.error_handler import ValidationException

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/stats")
async def get_retry_stats(
    admin_id: str = Depends(require_admin),
    retry_manager: OrderRetryManager = Depends(get_retry_manager),
) -> Dict[str, Any]:
    """
    Estadísticas de las últimas 24 horas y estado del scheduler.
    """
    return {
        "stats": await retry_manager.get_retry_stats(),
        "scheduler": get_scheduler_status(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/process")
async def process_retry_operations(
    request: RetryProcessRequest,
    admin_id: str = Depends(require_admin),
    retry_manager: OrderRetryManager = Depends(get_retry_manager),
) -> Dict[str, Any]:
    """
    Barrido manual de operaciones pendientes.

    Con ``retryFailedHours`` primero se vuelven a encolar las operaciones
    fallidas en ese período (opcionalmente de un solo tipo).

    Returns:
        Dict: ``{processed, failed, errors, requeued}``
    """
    if request.operation_type and request.operation_type not in OPERATION_TYPES:
        raise ValidationException(
            f"Unknown operation type: {request.operation_type}",
            field="operationType",
            invalid_value=request.operation_type,
            expected_format=", ".join(OPERATION_TYPES),
            status_code=400,
        )

    requeued = 0
    if request.retry_failed_hours:
        requeued = await retry_manager.retry_failed_operations(
            hours=request.retry_failed_hours, operation_type=request.operation_type
        )

    logger.info(f"🔧 Manual retry sweep requested by {admin_id} (requeued {requeued})")
    result = await retry_manager.process_pending_operations(limit=request.limit)
    return {**result, "requeued": requeued}
