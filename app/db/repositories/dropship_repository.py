"""
Dropship Repository for Supabase Postgres.

One row of ``dropship_orders`` tracks the submission of a local order
(or order item) to a print provider and the status the provider reports.
"""

import logging
from typing import Any, Dict, List, Optional

from app.db.repositories.base import BaseRepository, build_set_clause, log_operation, parse_timestamp, to_json

logger = logging.getLogger(__name__)

UPDATABLE_COLUMNS = (
    "status",
    "provider_order_id",
    "provider_reference",
    "tracking_number",
    "tracking_url",
    "estimated_delivery",
    "actual_delivery",
    "shipping_cost",
    "provider_response",
    "error_message",
)

JSON_COLUMNS = ("provider_response",)


class DropshipRepository(BaseRepository):
    """Operaciones sobre ``dropship_orders``."""

    TABLES = ("dropship_orders",)

    async def get_for_order(self, order_id: str, provider: str) -> Optional[Dict[str, Any]]:
        """
        Primera fila de un pedido para un proveedor.

        Args:
            order_id: Pedido local
            provider: ``prodigi`` o ``gelato``

        Returns:
            Optional[Dict]: Fila o None
        """
        return await self.fetch_one(
            """
            SELECT * FROM dropship_orders
            WHERE order_id = :order_id AND provider = :provider
            ORDER BY created_at ASC
            LIMIT 1
            """,
            {"order_id": order_id, "provider": provider},
        )

    async def list_for_order(self, order_id: str) -> List[Dict[str, Any]]:
        return await self.fetch_all(
            "SELECT * FROM dropship_orders WHERE order_id = :order_id ORDER BY created_at ASC",
            {"order_id": order_id},
        )

    async def get_by_provider_order_id(self, provider_order_id: str) -> Optional[Dict[str, Any]]:
        return await self.fetch_one(
            "SELECT * FROM dropship_orders WHERE provider_order_id = :provider_order_id LIMIT 1",
            {"provider_order_id": provider_order_id},
        )

    async def find_active(self, order_id: str, provider: str) -> Optional[Dict[str, Any]]:
        """Fila existente cuyo estado no es ``failed`` (evita envíos duplicados)."""
        return await self.fetch_one(
            """
            SELECT * FROM dropship_orders
            WHERE order_id = :order_id AND provider = :provider AND status <> 'failed'
            LIMIT 1
            """,
            {"order_id": order_id, "provider": provider},
        )

    @log_operation()
    async def create(
        self,
        order_id: str,
        provider: str,
        order_item_id: Optional[str] = None,
        status: str = "pending",
        **fields: Any,
    ) -> Optional[Dict[str, Any]]:
        """
        Inserta una fila de dropship.

        Args:
            order_id: Pedido local
            provider: Proveedor de impresión
            order_item_id: Item del pedido (opcional)
            status: Estado inicial
            **fields: Columnas adicionales (tracking, respuesta del proveedor)

        Returns:
            Optional[Dict]: Fila insertada
        """
        return await self.execute_returning(
            """
            INSERT INTO dropship_orders (
                order_id, order_item_id, provider, status, provider_order_id,
                tracking_number, tracking_url, estimated_delivery, provider_response
            ) VALUES (
                :order_id, :order_item_id, :provider, :status, :provider_order_id,
                :tracking_number, :tracking_url, :estimated_delivery, CAST(:provider_response AS jsonb)
            )
            RETURNING *
            """,
            {
                "order_id": order_id,
                "order_item_id": order_item_id,
                "provider": provider,
                "status": status,
                "provider_order_id": fields.get("provider_order_id"),
                "tracking_number": fields.get("tracking_number"),
                "tracking_url": fields.get("tracking_url"),
                "estimated_delivery": parse_timestamp(fields.get("estimated_delivery")),
                "provider_response": to_json(fields.get("provider_response")),
            },
        )

    async def update(self, dropship_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        allowed = {key: value for key, value in fields.items() if key in UPDATABLE_COLUMNS}
        set_clause, params = build_set_clause(allowed, JSON_COLUMNS)
        return await self.execute_returning(
            f"UPDATE dropship_orders SET {set_clause} WHERE id = :dropship_id RETURNING *",
            {**params, "dropship_id": dropship_id},
        )

    async def update_for_order(self, order_id: str, provider: str, fields: Dict[str, Any]) -> int:
        """Actualiza todas las filas de un pedido para un proveedor."""
        allowed = {key: value for key, value in fields.items() if key in UPDATABLE_COLUMNS}
        set_clause, params = build_set_clause(allowed, JSON_COLUMNS)
        return await self.execute(
            f"UPDATE dropship_orders SET {set_clause} WHERE order_id = :order_id AND provider = :provider",
            {**params, "order_id": order_id, "provider": provider},
        )

    async def upsert_for_order(self, order_id: str, provider: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Actualiza las filas existentes del pedido o crea una nueva.

        Returns:
            Dict: Fila resultante
        """
        updated = await self.update_for_order(order_id, provider, fields)
        if updated:
            return await self.get_for_order(order_id, provider)

        extra = {key: value for key, value in fields.items() if key != "status"}
        return await self.create(order_id, provider, status=fields.get("status", "pending"), **extra)
