"""
Notification Repository for Supabase Postgres.

Customer notifications are created for order lifecycle changes and read
from the notifications endpoint.
"""

import logging
from typing import Any, Dict, List, Optional

from app.db.repositories.base import BaseRepository, log_operation, to_json

logger = logging.getLogger(__name__)


class NotificationRepository(BaseRepository):
    """Operaciones sobre ``customer_notifications``."""

    TABLES = ("customer_notifications",)

    @log_operation()
    async def create_for_order(
        self,
        order_id: str,
        notification_type: str,
        title: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Crea una notificación para el propietario de un pedido.

        Args:
            order_id: Pedido que origina la notificación
            notification_type: Tipo (p.ej. ``order_shipped``)
            title: Título visible
            message: Mensaje visible
            metadata: Datos adicionales (tracking, motivo)

        Returns:
            Optional[Dict]: Notificación creada, o None si el pedido no tiene usuario
        """
        return await self.execute_returning(
            """
            INSERT INTO customer_notifications (order_id, user_id, type, title, message, metadata)
            SELECT o.id, o.user_id, :type, :title, :message, CAST(:metadata AS jsonb)
            FROM orders o
            WHERE o.id = :order_id AND o.user_id IS NOT NULL
            RETURNING *
            """,
            {
                "order_id": order_id,
                "type": notification_type,
                "title": title,
                "message": message,
                "metadata": to_json(metadata or {}),
            },
        )

    async def list_for_user(
        self,
        user_id: str,
        unread_only: bool = False,
        notification_type: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        conditions = ["n.user_id = :user_id"]
        params: Dict[str, Any] = {"user_id": user_id, "limit": limit, "offset": offset}
        if unread_only:
            conditions.append("n.is_read = FALSE")
        if notification_type:
            conditions.append("n.type = :type")
            params["type"] = notification_type

        return await self.fetch_all(
            f"""
            SELECT n.*,
                CASE WHEN o.id IS NULL THEN NULL ELSE jsonb_build_object(
                    'id', o.id, 'order_number', o.order_number, 'status', o.status
                ) END AS orders
            FROM customer_notifications n
            LEFT JOIN orders o ON o.id = n.order_id
            WHERE {" AND ".join(conditions)}
            ORDER BY n.created_at DESC
            LIMIT :limit OFFSET :offset
            """,
            params,
        )

    async def count_unread(self, user_id: str) -> int:
        value = await self.fetch_value(
            "SELECT COUNT(*) FROM customer_notifications WHERE user_id = :user_id AND is_read = FALSE",
            {"user_id": user_id},
        )
        return int(value or 0)

    async def mark_read(self, user_id: str, notification_ids: List[str]) -> int:
        return await self.execute(
            """
            UPDATE customer_notifications SET is_read = TRUE
            WHERE user_id = :user_id AND CAST(id AS text) = ANY(:ids)
            """,
            {"user_id": user_id, "ids": list(notification_ids)},
        )

    async def mark_all_read(self, user_id: str) -> int:
        return await self.execute(
            "UPDATE customer_notifications SET is_read = TRUE WHERE user_id = :user_id AND is_read = FALSE",
            {"user_id": user_id},
        )

    async def delete_read(self, user_id: str) -> int:
        return await self.execute(
            "DELETE FROM customer_notifications WHERE user_id = :user_id AND is_read = TRUE",
            {"user_id": user_id},
        )
