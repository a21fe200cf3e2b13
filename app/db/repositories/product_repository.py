"""
Product Repository for Supabase Postgres.

Products are framed prints of a generated image; reads embed the image
columns the storefront needs.
"""

import logging
from typing import Any, Dict, List, Optional

from app.db.repositories.base import BaseRepository, build_set_clause, log_operation, to_json

logger = logging.getLogger(__name__)

PRODUCT_WITH_IMAGE = """
    SELECT p.*,
        CASE WHEN i.id IS NULL THEN NULL ELSE jsonb_build_object(
            'id', i.id,
            'prompt', i.prompt,
            'image_url', i.image_url,
            'thumbnail_url', i.thumbnail_url,
            'user_id', i.user_id,
            'created_at', i.created_at
        ) END AS images
    FROM products p
    LEFT JOIN images i ON i.id = p.image_id
"""

UPDATABLE_COLUMNS = ("price", "cost", "status")


class ProductRepository(BaseRepository):
    """Consultas y altas de productos e imágenes."""

    TABLES = ("products", "images")

    @log_operation()
    async def list(
        self,
        status: str = "active",
        image_id: Optional[str] = None,
        frame_size: Optional[str] = None,
        frame_style: Optional[str] = None,
        frame_material: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """
        Lista productos con filtros opcionales.

        Args:
            status: Estado del producto (por defecto ``active``)
            image_id: Imagen de origen
            frame_size: Tamaño del marco
            frame_style: Estilo (color) del marco
            frame_material: Material del marco
            limit: Tamaño de página
            offset: Desplazamiento

        Returns:
            List[Dict]: Productos con su imagen en la clave ``images``
        """
        conditions = ["p.status = :status"]
        params: Dict[str, Any] = {"status": status, "limit": limit, "offset": offset}
        for column, value in (
            ("image_id", image_id),
            ("frame_size", frame_size),
            ("frame_style", frame_style),
            ("frame_material", frame_material),
        ):
            if value:
                conditions.append(f"p.{column} = :{column}")
                params[column] = value

        return await self.fetch_all(
            f"""
            {PRODUCT_WITH_IMAGE}
            WHERE {" AND ".join(conditions)}
            ORDER BY p.created_at DESC
            LIMIT :limit OFFSET :offset
            """,
            params,
        )

    async def get_by_id(self, product_id: str) -> Optional[Dict[str, Any]]:
        return await self.fetch_one(f"{PRODUCT_WITH_IMAGE} WHERE p.id = :product_id", {"product_id": product_id})

    async def get_active(self, product_id: str) -> Optional[Dict[str, Any]]:
        return await self.fetch_one(
            "SELECT id, status, price FROM products WHERE id = :product_id AND status = 'active'",
            {"product_id": product_id},
        )

    async def get_owned(self, product_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """Producto cuya imagen pertenece al usuario."""
        return await self.fetch_one(
            """
            SELECT p.* FROM products p
            JOIN images i ON i.id = p.image_id
            WHERE p.id = :product_id AND i.user_id = :user_id
            """,
            {"product_id": product_id, "user_id": user_id},
        )

    async def find_existing(
        self, image_id: str, frame_size: str, frame_style: str, frame_material: str
    ) -> Optional[Dict[str, Any]]:
        """Busca el producto ya creado para la misma imagen y configuración."""
        return await self.fetch_one(
            f"""
            {PRODUCT_WITH_IMAGE}
            WHERE p.image_id = :image_id
              AND p.frame_size = :frame_size
              AND p.frame_style = :frame_style
              AND p.frame_material = :frame_material
            LIMIT 1
            """,
            {
                "image_id": image_id,
                "frame_size": frame_size,
                "frame_style": frame_style,
                "frame_material": frame_material,
            },
        )

    async def get_user_image(self, image_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        return await self.fetch_one(
            "SELECT id, user_id, status, image_url FROM images WHERE id = :image_id AND user_id = :user_id",
            {"image_id": image_id, "user_id": user_id},
        )

    @log_operation()
    async def create(self, product: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Inserta un producto y lo retorna con su imagen.

        Args:
            product: Columnas del producto

        Returns:
            Optional[Dict]: Producto creado
        """
        row = await self.execute_returning(
            """
            INSERT INTO products (
                image_id, frame_size, frame_style, frame_material, price, cost,
                dimensions_cm, sku, name, status
            ) VALUES (
                :image_id, :frame_size, :frame_style, :frame_material, :price, :cost,
                CAST(:dimensions_cm AS jsonb), :sku, :name, :status
            )
            RETURNING id
            """,
            {
                "image_id": product["image_id"],
                "frame_size": product["frame_size"],
                "frame_style": product["frame_style"],
                "frame_material": product.get("frame_material", "wood"),
                "price": product["price"],
                "cost": product["cost"],
                "dimensions_cm": to_json(product.get("dimensions_cm") or {}),
                "sku": product.get("sku"),
                "name": product.get("name", "Framed Print"),
                "status": product.get("status", "active"),
            },
        )
        return await self.get_by_id(row["id"]) if row else None

    async def update(self, product_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        allowed = {key: value for key, value in fields.items() if key in UPDATABLE_COLUMNS and value is not None}
        if allowed:
            set_clause, params = build_set_clause(allowed)
            await self.execute(
                f"UPDATE products SET {set_clause} WHERE id = :product_id", {**params, "product_id": product_id}
            )
        return await self.get_by_id(product_id)

    async def delete(self, product_id: str) -> int:
        return await self.execute("DELETE FROM products WHERE id = :product_id", {"product_id": product_id})
