"""
Order Repository for Supabase Postgres.

Handles ``orders``, ``order_items``, ``order_logs`` and
``order_status_history``. Order reads embed their items with the product
and image columns the API returns.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from app.db.repositories.base import BaseRepository, build_set_clause, log_operation, to_json, with_retry

logger = logging.getLogger(__name__)

# Items of order ``o`` with their product and image, as a jsonb array
ORDER_ITEMS_JSON = """
    COALESCE((
        SELECT jsonb_agg(
            to_jsonb(oi.*) || jsonb_build_object(
                'products', to_jsonb(p.*) || jsonb_build_object(
                    'images', jsonb_build_object(
                        'id', i.id,
                        'prompt', i.prompt,
                        'image_url', i.image_url,
                        'thumbnail_url', i.thumbnail_url
                    )
                )
            )
        )
        FROM order_items oi
        JOIN products p ON p.id = oi.product_id
        LEFT JOIN images i ON i.id = p.image_id
        WHERE oi.order_id = o.id
    ), CAST('[]' AS jsonb)) AS order_items
"""

DROPSHIP_ORDERS_JSON = """
    COALESCE((
        SELECT jsonb_agg(to_jsonb(d.*) ORDER BY d.created_at)
        FROM dropship_orders d
        WHERE d.order_id = o.id
    ), CAST('[]' AS jsonb)) AS dropship_orders
"""

UPDATABLE_COLUMNS = (
    "status",
    "payment_status",
    "stripe_payment_intent_id",
    "tracking_number",
    "tracking_url",
    "estimated_delivery_date",
    "notes",
    "metadata",
    "shipping_address",
    "billing_address",
)

JSON_COLUMNS = ("metadata", "shipping_address", "billing_address")


class OrderRepository(BaseRepository):
    """Operaciones sobre pedidos y su historial."""

    TABLES = ("orders", "order_items", "order_logs", "order_status_history")

    # === LECTURA ===

    async def get_by_id(self, order_id: str) -> Optional[Dict[str, Any]]:
        return await self.fetch_one("SELECT * FROM orders WHERE id = :order_id", {"order_id": order_id})

    @with_retry(max_attempts=2, delay=0.5)
    async def get_with_items(self, order_id: str) -> Optional[Dict[str, Any]]:
        """
        Obtiene un pedido con sus items, productos e imágenes.

        Args:
            order_id: ID del pedido

        Returns:
            Optional[Dict]: Pedido con clave ``order_items`` o None
        """
        return await self.fetch_one(
            f"SELECT o.*, {ORDER_ITEMS_JSON} FROM orders o WHERE o.id = :order_id",
            {"order_id": order_id},
        )

    async def get_by_stripe_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return await self.fetch_one(
            "SELECT * FROM orders WHERE stripe_session_id = :session_id LIMIT 1",
            {"session_id": session_id},
        )

    async def get_by_payment_intent(self, payment_intent_id: str) -> Optional[Dict[str, Any]]:
        return await self.fetch_one(
            "SELECT * FROM orders WHERE stripe_payment_intent_id = :payment_intent_id LIMIT 1",
            {"payment_intent_id": payment_intent_id},
        )

    @log_operation()
    async def list_for_user(
        self, user_id: str, status: Optional[str] = None, limit: int = 20, offset: int = 0
    ) -> List[Dict[str, Any]]:
        """
        Lista los pedidos de un usuario, más recientes primero.

        Args:
            user_id: Usuario propietario
            status: Filtro opcional por estado
            limit: Tamaño de página
            offset: Desplazamiento

        Returns:
            List[Dict]: Pedidos con ``order_items`` y ``dropship_orders``
        """
        conditions = ["o.user_id = :user_id"]
        params: Dict[str, Any] = {"user_id": user_id, "limit": limit, "offset": offset}
        if status:
            conditions.append("o.status = :status")
            params["status"] = status

        return await self.fetch_all(
            f"""
            SELECT o.*, {ORDER_ITEMS_JSON}, {DROPSHIP_ORDERS_JSON}
            FROM orders o
            WHERE {" AND ".join(conditions)}
            ORDER BY o.created_at DESC
            LIMIT :limit OFFSET :offset
            """,
            params,
        )

    @log_operation()
    async def list_all(
        self,
        status: Optional[str] = None,
        user_id: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """
        Lista pedidos para administración con filtros opcionales.

        Returns:
            Tuple[List[Dict], int]: Página de pedidos y total sin paginar
        """
        conditions = ["1 = 1"]
        params: Dict[str, Any] = {}
        if status:
            conditions.append("o.status = :status")
            params["status"] = status
        if user_id:
            conditions.append("o.user_id = :user_id")
            params["user_id"] = user_id
        if date_from:
            conditions.append("o.created_at >= CAST(:date_from AS timestamptz)")
            params["date_from"] = date_from
        if date_to:
            conditions.append("o.created_at <= CAST(:date_to AS timestamptz)")
            params["date_to"] = date_to

        where = " AND ".join(conditions)
        total = await self.fetch_value(f"SELECT COUNT(*) FROM orders o WHERE {where}", params)
        orders = await self.fetch_all(
            f"""
            SELECT o.*, {ORDER_ITEMS_JSON}
            FROM orders o
            WHERE {where}
            ORDER BY o.created_at DESC
            LIMIT :limit OFFSET :offset
            """,
            {**params, "limit": limit, "offset": offset},
        )
        return orders, int(total or 0)

    # === ESCRITURA ===

    @log_operation()
    async def create(self, order: Dict[str, Any]) -> Dict[str, Any]:
        """
        Inserta un pedido nuevo.

        Args:
            order: Columnas del pedido (las direcciones y metadata como dict)

        Returns:
            Dict: Fila insertada
        """
        return await self.execute_returning(
            """
            INSERT INTO orders (
                user_id, order_number, stripe_session_id, stripe_payment_intent_id,
                status, payment_status, customer_email, customer_name, customer_phone,
                shipping_address, billing_address, subtotal, tax_amount, shipping_amount,
                discount_amount, total_amount, currency, metadata
            ) VALUES (
                :user_id, :order_number, :stripe_session_id, :stripe_payment_intent_id,
                :status, :payment_status, :customer_email, :customer_name, :customer_phone,
                CAST(:shipping_address AS jsonb), CAST(:billing_address AS jsonb), :subtotal, :tax_amount,
                :shipping_amount, :discount_amount, :total_amount, :currency, CAST(:metadata AS jsonb)
            )
            RETURNING *
            """,
            {
                "user_id": order.get("user_id"),
                "order_number": order["order_number"],
                "stripe_session_id": order.get("stripe_session_id"),
                "stripe_payment_intent_id": order.get("stripe_payment_intent_id"),
                "status": order.get("status", "pending"),
                "payment_status": order.get("payment_status", "pending"),
                "customer_email": order.get("customer_email") or "",
                "customer_name": order.get("customer_name"),
                "customer_phone": order.get("customer_phone"),
                "shipping_address": to_json(order.get("shipping_address") or {}),
                "billing_address": to_json(order.get("billing_address")),
                "subtotal": order.get("subtotal", 0),
                "tax_amount": order.get("tax_amount", 0),
                "shipping_amount": order.get("shipping_amount", 0),
                "discount_amount": order.get("discount_amount", 0),
                "total_amount": order.get("total_amount", 0),
                "currency": order.get("currency", "usd"),
                "metadata": to_json(order.get("metadata") or {}),
            },
        )

    async def create_items(self, order_id: str, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Inserta los items de un pedido.

        Args:
            order_id: Pedido padre
            items: Lista con product_id, quantity, unit_price y total_price

        Returns:
            List[Dict]: Filas insertadas
        """
        created = []
        for item in items:
            row = await self.execute_returning(
                """
                INSERT INTO order_items (order_id, product_id, quantity, unit_price, total_price)
                VALUES (:order_id, :product_id, :quantity, :unit_price, :total_price)
                RETURNING *
                """,
                {
                    "order_id": order_id,
                    "product_id": item["product_id"],
                    "quantity": item["quantity"],
                    "unit_price": item["unit_price"],
                    "total_price": item["total_price"],
                },
            )
            if row:
                created.append(row)
        return created

    async def has_items_for_product(self, product_id: str) -> bool:
        value = await self.fetch_value(
            "SELECT EXISTS (SELECT 1 FROM order_items WHERE product_id = :product_id)",
            {"product_id": product_id},
        )
        return bool(value)

    @log_operation()
    async def update(self, order_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Actualiza columnas de un pedido.

        Args:
            order_id: ID del pedido
            fields: Columnas a actualizar (solo las permitidas)

        Returns:
            Optional[Dict]: Pedido actualizado o None si no existe
        """
        allowed = {key: value for key, value in fields.items() if key in UPDATABLE_COLUMNS}
        if not allowed:
            return await self.get_by_id(order_id)

        set_clause, params = build_set_clause(allowed, JSON_COLUMNS)
        return await self.execute_returning(
            f"UPDATE orders SET {set_clause} WHERE id = :order_id RETURNING *",
            {**params, "order_id": order_id},
        )

    async def update_by_payment_intent(self, payment_intent_id: str, fields: Dict[str, Any]) -> int:
        allowed = {key: value for key, value in fields.items() if key in UPDATABLE_COLUMNS}
        set_clause, params = build_set_clause(allowed, JSON_COLUMNS)
        return await self.execute(
            f"UPDATE orders SET {set_clause} WHERE stripe_payment_intent_id = :payment_intent_id",
            {**params, "payment_intent_id": payment_intent_id},
        )

    async def update_by_stripe_session(self, session_id: str, fields: Dict[str, Any]) -> int:
        allowed = {key: value for key, value in fields.items() if key in UPDATABLE_COLUMNS}
        set_clause, params = build_set_clause(allowed, JSON_COLUMNS)
        return await self.execute(
            f"UPDATE orders SET {set_clause} WHERE stripe_session_id = :session_id",
            {**params, "session_id": session_id},
        )

    # === HISTORIAL ===

    async def add_log(
        self, order_id: str, action: str, details: Optional[Dict[str, Any]] = None, created_by: Optional[str] = None
    ) -> None:
        """
        Registra una entrada en ``order_logs``.

        Args:
            order_id: Pedido afectado
            action: Acción (p.ej. ``prodigi_webhook_update``)
            details: Detalles en jsonb
            created_by: Usuario que originó la acción
        """
        await self.execute(
            """
            INSERT INTO order_logs (order_id, action, details, created_by)
            VALUES (:order_id, :action, CAST(:details AS jsonb), :created_by)
            """,
            {"order_id": order_id, "action": action, "details": to_json(details or {}), "created_by": created_by},
        )

    async def get_logs(self, order_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        return await self.fetch_all(
            "SELECT * FROM order_logs WHERE order_id = :order_id ORDER BY created_at DESC LIMIT :limit",
            {"order_id": order_id, "limit": limit},
        )

    async def add_status_history(
        self,
        order_id: str,
        status: str,
        previous_status: Optional[str] = None,
        reason: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> None:
        await self.execute(
            """
            INSERT INTO order_status_history (order_id, status, previous_status, reason, created_by)
            VALUES (:order_id, :status, :previous_status, :reason, :created_by)
            """,
            {
                "order_id": order_id,
                "status": status,
                "previous_status": previous_status,
                "reason": reason,
                "created_by": created_by,
            },
        )

    async def get_status_history(self, order_id: str) -> List[Dict[str, Any]]:
        return await self.fetch_all(
            "SELECT * FROM order_status_history WHERE order_id = :order_id ORDER BY created_at ASC",
            {"order_id": order_id},
        )

    # === DIRECCIONES DE CHECKOUT ===

    async def get_session_address(self, session_id: str) -> Optional[Dict[str, Any]]:
        """
        Dirección guardada al crear la sesión de Stripe.

        Returns:
            Optional[Dict]: Fila de ``stripe_session_addresses`` o None
        """
        return await self.fetch_one(
            "SELECT * FROM stripe_session_addresses WHERE stripe_session_id = :session_id LIMIT 1",
            {"session_id": session_id},
        )

    async def save_session_address(self, session_id: str, user_id: str, address: Dict[str, Any]) -> None:
        await self.execute(
            """
            INSERT INTO stripe_session_addresses (stripe_session_id, user_id, shipping_address)
            VALUES (:session_id, :user_id, CAST(:address AS jsonb))
            """,
            {"session_id": session_id, "user_id": user_id, "address": to_json(address)},
        )
