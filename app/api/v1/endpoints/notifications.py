"""
Endpoints de notificaciones del cliente.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from app.api.v1.dependencies import get_current_user_id, get_notification_repository
from app.api.v1.schemas.storefront_schemas import MarkNotificationsReadRequest
from app.db.repositories import NotificationRepository
from app.utils.error_handler import ValidationException

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def list_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    notification_type: Optional[str] = Query(None, alias="type"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    notifications: NotificationRepository = Depends(get_notification_repository),
) -> Dict[str, Any]:
    """
    Notificaciones del usuario con el pedido relacionado y el total sin leer.
    """
    rows = await notifications.list_for_user(
        user_id, unread_only=unread_only, notification_type=notification_type, limit=limit, offset=offset
    )
    unread_count = await notifications.count_unread(user_id)
    return {
        "notifications": rows,
        "unreadCount": unread_count,
        "pagination": {"limit": limit, "offset": offset, "hasMore": len(rows) == limit},
    }


@router.patch("")
async def mark_notifications_read(
    request: MarkNotificationsReadRequest,
    user_id: str = Depends(get_current_user_id),
    notifications: NotificationRepository = Depends(get_notification_repository),
) -> Dict[str, Any]:
    await notifications.mark_read(user_id, request.notification_ids)
    return {"success": True, "message": "Notifications marked as read"}


@router.delete("")
async def bulk_notification_action(
    action: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    notifications: NotificationRepository = Depends(get_notification_repository),
) -> Dict[str, Any]:
    """
    Acciones masivas: ``mark_all_read`` o ``delete_read``.
    """
    if action == "mark_all_read":
        await notifications.mark_all_read(user_id)
        return {"success": True, "message": "All notifications marked as read"}

    if action == "delete_read":
        deleted = await notifications.delete_read(user_id)
        logger.info(f"🧹 {deleted} read notifications deleted for user {user_id}")
        return {"success": True, "message": "Read notifications deleted"}

    raise ValidationException(
        "Invalid action",
        field="action",
        invalid_value=action,
        expected_format="mark_all_read, delete_read",
        status_code=400,
    )
