"""
Cart Repository for Supabase Postgres.

Cart rows are per user and per product; reads embed the product and its
image under ``products``.
"""

import logging
from typing import Any, Dict, List, Optional

from app.db.repositories.base import BaseRepository, log_operation

logger = logging.getLogger(__name__)

CART_ITEM_WITH_PRODUCT = """
    SELECT ci.*,
        to_jsonb(p.*) || jsonb_build_object(
            'images', jsonb_build_object(
                'id', i.id,
                'prompt', i.prompt,
                'image_url', i.image_url,
                'thumbnail_url', i.thumbnail_url,
                'user_id', i.user_id,
                'created_at', i.created_at
            )
        ) AS products
    FROM cart_items ci
    JOIN products p ON p.id = ci.product_id
    LEFT JOIN images i ON i.id = p.image_id
"""


class CartRepository(BaseRepository):
    """Operaciones sobre ``cart_items``."""

    TABLES = ("cart_items",)

    @log_operation()
    async def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        return await self.fetch_all(
            f"{CART_ITEM_WITH_PRODUCT} WHERE ci.user_id = :user_id ORDER BY ci.created_at DESC",
            {"user_id": user_id},
        )

    async def get_items(self, user_id: str, cart_item_ids: List[str]) -> List[Dict[str, Any]]:
        """
        Items concretos del carrito de un usuario (checkout).

        Args:
            user_id: Propietario del carrito
            cart_item_ids: IDs de ``cart_items`` seleccionados

        Returns:
            List[Dict]: Items encontrados con su producto
        """
        if not cart_item_ids:
            return []
        return await self.fetch_all(
            f"""
            {CART_ITEM_WITH_PRODUCT}
            WHERE ci.user_id = :user_id AND CAST(ci.id AS text) = ANY(:cart_item_ids)
            ORDER BY ci.created_at DESC
            """,
            {"user_id": user_id, "cart_item_ids": list(cart_item_ids)},
        )

    async def get_item(self, cart_item_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        return await self.fetch_one(
            f"{CART_ITEM_WITH_PRODUCT} WHERE ci.id = :cart_item_id AND ci.user_id = :user_id",
            {"cart_item_id": cart_item_id, "user_id": user_id},
        )

    async def get_by_product(self, user_id: str, product_id: str) -> Optional[Dict[str, Any]]:
        return await self.fetch_one(
            "SELECT id, quantity FROM cart_items WHERE user_id = :user_id AND product_id = :product_id",
            {"user_id": user_id, "product_id": product_id},
        )

    async def add(self, user_id: str, product_id: str, quantity: int) -> Optional[Dict[str, Any]]:
        row = await self.execute_returning(
            """
            INSERT INTO cart_items (user_id, product_id, quantity)
            VALUES (:user_id, :product_id, :quantity)
            RETURNING id
            """,
            {"user_id": user_id, "product_id": product_id, "quantity": quantity},
        )
        return await self.get_item(row["id"], user_id) if row else None

    async def set_quantity(self, cart_item_id: str, user_id: str, quantity: int) -> Optional[Dict[str, Any]]:
        updated = await self.execute(
            """
            UPDATE cart_items SET quantity = :quantity, updated_at = NOW()
            WHERE id = :cart_item_id AND user_id = :user_id
            """,
            {"cart_item_id": cart_item_id, "user_id": user_id, "quantity": quantity},
        )
        if not updated:
            return None
        return await self.get_item(cart_item_id, user_id)

    async def remove(self, cart_item_id: str, user_id: str) -> int:
        return await self.execute(
            "DELETE FROM cart_items WHERE id = :cart_item_id AND user_id = :user_id",
            {"cart_item_id": cart_item_id, "user_id": user_id},
        )

    async def remove_product(self, user_id: str, product_id: str) -> int:
        return await self.execute(
            "DELETE FROM cart_items WHERE user_id = :user_id AND product_id = :product_id",
            {"user_id": user_id, "product_id": product_id},
        )

    @log_operation()
    async def clear(self, user_id: str, cart_item_ids: Optional[List[str]] = None) -> int:
        """
        Vacía el carrito del usuario, o solo los items indicados.

        Returns:
            int: Filas eliminadas
        """
        if cart_item_ids:
            return await self.execute(
                "DELETE FROM cart_items WHERE user_id = :user_id AND CAST(id AS text) = ANY(:cart_item_ids)",
                {"user_id": user_id, "cart_item_ids": list(cart_item_ids)},
            )
        return await self.execute("DELETE FROM cart_items WHERE user_id = :user_id", {"user_id": user_id})
