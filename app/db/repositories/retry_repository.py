"""
Retry Operation Repository for Supabase Postgres.

Persists the operations the order retry manager schedules so that they
survive restarts and can be swept by the background scheduler.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.db.repositories.base import BaseRepository, build_set_clause, log_operation, to_json

logger = logging.getLogger(__name__)

UPDATABLE_COLUMNS = (
    "status",
    "attempts",
    "last_attempt",
    "next_retry",
    "error",
    "result",
    "completed_at",
    "failed_at",
    "cancelled_at",
)

JSON_COLUMNS = ("result",)


class RetryOperationRepository(BaseRepository):
    """Operaciones sobre ``retry_operations``."""

    TABLES = ("retry_operations",)

    @log_operation()
    async def create(
        self, operation_id: str, operation_type: str, order_id: str, payload: Dict[str, Any], next_retry: datetime
    ) -> None:
        """
        Inserta una operación pendiente.

        Args:
            operation_id: ID ``retry_{type}_{order}_{ms}``
            operation_type: Tipo de operación
            order_id: Pedido asociado
            payload: Datos necesarios para ejecutar la operación
            next_retry: Momento del próximo intento
        """
        await self.execute(
            """
            INSERT INTO retry_operations (
                id, type, order_id, payload, attempts, last_attempt, next_retry, status
            ) VALUES (
                :id, :type, :order_id, CAST(:payload AS jsonb), 0, NOW(), :next_retry, 'pending'
            )
            """,
            {
                "id": operation_id,
                "type": operation_type,
                "order_id": order_id,
                "payload": to_json(payload or {}),
                "next_retry": next_retry,
            },
        )

    async def get(self, operation_id: str) -> Optional[Dict[str, Any]]:
        return await self.fetch_one("SELECT * FROM retry_operations WHERE id = :id", {"id": operation_id})

    async def update(self, operation_id: str, fields: Dict[str, Any]) -> int:
        allowed = {key: value for key, value in fields.items() if key in UPDATABLE_COLUMNS}
        set_clause, params = build_set_clause(allowed, JSON_COLUMNS, touch_updated_at=False)
        return await self.execute(
            f"UPDATE retry_operations SET {set_clause} WHERE id = :id", {**params, "id": operation_id}
        )

    async def list_due(self, now: datetime, limit: int = 100) -> List[Dict[str, Any]]:
        """Operaciones pendientes cuyo próximo intento ya venció."""
        return await self.fetch_all(
            """
            SELECT * FROM retry_operations
            WHERE status = 'pending' AND next_retry <= :now
            ORDER BY next_retry ASC
            LIMIT :limit
            """,
            {"now": now, "limit": limit},
        )

    async def cancel_for_order(self, order_id: str) -> int:
        return await self.execute(
            """
            UPDATE retry_operations SET status = 'cancelled', cancelled_at = NOW()
            WHERE order_id = :order_id AND status IN ('pending', 'processing')
            """,
            {"order_id": order_id},
        )

    async def stats_since(self, since: datetime) -> Dict[str, Any]:
        """
        Conteo por estado, intentos promedio y tasa de éxito desde una fecha.

        Args:
            since: Límite inferior sobre ``created_at``

        Returns:
            Dict: total, conteos por estado, avg_attempts y success_rate (%)
        """
        row = await self.fetch_one(
            """
            SELECT
                COUNT(*) AS total,
                COUNT(*) FILTER (WHERE status = 'pending') AS pending,
                COUNT(*) FILTER (WHERE status = 'processing') AS processing,
                COUNT(*) FILTER (WHERE status = 'completed') AS completed,
                COUNT(*) FILTER (WHERE status = 'failed') AS failed,
                COUNT(*) FILTER (WHERE status = 'cancelled') AS cancelled,
                ROUND(AVG(attempts), 2) AS avg_attempts,
                ROUND(
                    COUNT(*) FILTER (WHERE status = 'completed') * 100.0
                    / NULLIF(COUNT(*) FILTER (WHERE status IN ('completed', 'failed')), 0),
                    2
                ) AS success_rate
            FROM retry_operations
            WHERE created_at >= :since
            """,
            {"since": since},
        )
        return row or {}

    async def reschedule_failed(self, since: datetime, next_retry: datetime, operation_type: Optional[str] = None) -> int:
        """Vuelve a ``pending`` las operaciones fallidas recientes."""
        return await self.execute(
            """
            UPDATE retry_operations
            SET status = 'pending', next_retry = :next_retry, attempts = 0, error = NULL
            WHERE status = 'failed'
              AND failed_at >= :since
              AND (CAST(:type AS text) IS NULL OR type = :type)
            """,
            {"since": since, "next_retry": next_retry, "type": operation_type},
        )

    @log_operation()
    async def delete_finished_before(self, status: str, before: datetime) -> int:
        """
        Elimina operaciones terminadas anteriores a una fecha.

        Args:
            status: ``completed`` o ``failed``
            before: Límite sobre ``completed_at`` o ``failed_at``

        Returns:
            int: Filas eliminadas
        """
        column = "completed_at" if status == "completed" else "failed_at"
        return await self.execute(
            f"DELETE FROM retry_operations WHERE status = :status AND {column} < :before",
            {"status": status, "before": before},
        )
