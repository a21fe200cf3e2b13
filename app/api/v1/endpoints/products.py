"""
Endpoints de productos enmarcados.

Un producto es una imagen generada con un tamaño, estilo y material de
marco; su SKU es el SKU base de Prodigi más el prefijo del ID de la imagen,
el estilo y el material.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.v1.dependencies import get_current_user_id, get_order_repository, get_product_repository
from app.api.v1.schemas.storefront_schemas import ProductCreateRequest, ProductUpdateRequest
from app.db.repositories import OrderRepository, ProductRepository
from app.domain.models.frame import (
    FRAME_DIMENSIONS_CM,
    FRAME_SIZES,
    PRODUCT_FILTER_MATERIALS,
    PRODUCT_FILTER_STYLES,
    describe_frame,
)
from app.services.prodigi.legacy import get_product_sku
from app.utils.error_handler import NotFoundException, ValidationException

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_COST_RATIO = 0.4
PRODUCT_STATUSES = ("active", "inactive", "discontinued")


def _check_choice(field: str, value: Optional[str], choices: tuple) -> None:
    if value and value not in choices:
        raise ValidationException(
            "Invalid parameters",
            field=field,
            invalid_value=value,
            expected_format=", ".join(choices),
            status_code=400,
        )


def build_product_sku(frame_size: str, frame_style: str, frame_material: str, image_id: str) -> str:
    base_sku = get_product_sku(frame_size, frame_style, frame_material)
    return f"{base_sku}-{image_id[:8]}-{frame_style}-{frame_material}"


@router.get("")
async def list_products(
    image_id: Optional[str] = Query(None, alias="imageId"),
    frame_size: Optional[str] = Query(None, alias="frameSize"),
    frame_style: Optional[str] = Query(None, alias="frameStyle"),
    frame_material: Optional[str] = Query(None, alias="frameMaterial"),
    product_status: str = Query("active", alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    products: ProductRepository = Depends(get_product_repository),
) -> Dict[str, Any]:
    """
    Lista productos con filtros opcionales (público).
    """
    _check_choice("frameSize", frame_size, FRAME_SIZES)
    _check_choice("frameStyle", frame_style, PRODUCT_FILTER_STYLES)
    _check_choice("frameMaterial", frame_material, PRODUCT_FILTER_MATERIALS)
    _check_choice("status", product_status, PRODUCT_STATUSES)

    rows = await products.list(
        status=product_status,
        image_id=image_id,
        frame_size=frame_size,
        frame_style=frame_style,
        frame_material=frame_material,
        limit=limit,
        offset=offset,
    )
    return {"products": rows}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_product(
    request: ProductCreateRequest,
    response: Response,
    user_id: str = Depends(get_current_user_id),
    products: ProductRepository = Depends(get_product_repository),
) -> Dict[str, Any]:
    """
    Crea el producto de una imagen propia.

    Es idempotente: si ya existe un producto con la misma imagen y marco se
    devuelve ese producto con 200. Un SKU repetido en la base responde 409.
    """
    image = await products.get_user_image(request.image_id, user_id)
    if not image:
        raise NotFoundException("Image not found or access denied", resource="image", resource_id=request.image_id)

    if image.get("status") != "completed":
        raise ValidationException(
            "Image must be completed before creating products", field="imageId", status_code=400
        )

    existing = await products.find_existing(
        request.image_id, request.frame_size, request.frame_style, request.frame_material
    )
    if existing:
        response.status_code = status.HTTP_200_OK
        return {"product": existing}

    sku = build_product_sku(request.frame_size, request.frame_style, request.frame_material, request.image_id)

    product = await products.create(
        {
            "image_id": request.image_id,
            "frame_size": request.frame_size,
            "frame_style": request.frame_style,
            "frame_material": request.frame_material,
            "price": request.price,
            "cost": request.cost or round(request.price * DEFAULT_COST_RATIO, 2),
            "dimensions_cm": FRAME_DIMENSIONS_CM.get(request.frame_size),
            "sku": sku,
            "name": describe_frame(request.frame_size, request.frame_style, request.frame_material),
            "status": "active",
        }
    )
    logger.info(f"✅ Product created: {sku}")
    return {"product": product}


@router.get("/{product_id}")
async def get_product(
    product_id: str, products: ProductRepository = Depends(get_product_repository)
) -> Dict[str, Any]:
    product = await products.get_by_id(product_id)
    if not product:
        raise NotFoundException("Product not found", resource="product", resource_id=product_id)
    return {"product": product}


@router.put("/{product_id}")
async def update_product(
    product_id: str,
    request: ProductUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    products: ProductRepository = Depends(get_product_repository),
) -> Dict[str, Any]:
    """
    Cambia precio, costo o estado de un producto cuya imagen es del usuario.
    """
    if not await products.get_owned(product_id, user_id):
        raise NotFoundException("Product not found or access denied", resource="product", resource_id=product_id)

    product = await products.update(product_id, request.model_dump(exclude_none=True))
    return {"product": product}


@router.delete("/{product_id}")
async def delete_product(
    product_id: str,
    user_id: str = Depends(get_current_user_id),
    products: ProductRepository = Depends(get_product_repository),
    orders: OrderRepository = Depends(get_order_repository),
) -> Dict[str, Any]:
    """
    Elimina un producto propio; si ya fue vendido se marca ``discontinued``.
    """
    if not await products.get_owned(product_id, user_id):
        raise NotFoundException("Product not found or access denied", resource="product", resource_id=product_id)

    if await orders.has_items_for_product(product_id):
        await products.update(product_id, {"status": "discontinued"})
        return {"message": "Product marked as discontinued due to existing orders"}

    await products.delete(product_id)
    logger.info(f"🧹 Product {product_id} deleted")
    return {"message": "Product deleted successfully"}
