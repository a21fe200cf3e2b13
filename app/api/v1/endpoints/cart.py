"""
Endpoints del carrito del usuario autenticado.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.v1.dependencies import (
    get_cart_repository,
    get_current_user_id,
    get_product_repository,
    get_shipping,
)
from app.api.v1.schemas.storefront_schemas import (
    MAX_CART_QUANTITY,
    CartAddRequest,
    CartItemQuantityRequest,
    CartUpdateRequest,
    ShippingAddressRequest,
)
from app.db.repositories import CartRepository, ProductRepository
from app.services.pricing import calculate_cart_totals
from app.services.shipping import ShippingService
from app.utils.error_handler import NotFoundException, ValidationException

logger = logging.getLogger(__name__)

router = APIRouter()


def _cart_item_not_found(cart_item_id: str) -> NotFoundException:
    return NotFoundException(
        "Cart item not found or access denied", resource="cart_item", resource_id=cart_item_id
    )


@router.get("")
async def get_cart(
    user_id: str = Depends(get_current_user_id),
    carts: CartRepository = Depends(get_cart_repository),
) -> Dict[str, Any]:
    """
    Items del carrito con su producto y los totales sin envío.
    """
    cart_items = await carts.list_for_user(user_id)
    return {"cartItems": cart_items, "totals": calculate_cart_totals(cart_items).to_dict()}


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_to_cart(
    request: CartAddRequest,
    response: Response,
    user_id: str = Depends(get_current_user_id),
    carts: CartRepository = Depends(get_cart_repository),
    products: ProductRepository = Depends(get_product_repository),
) -> Dict[str, Any]:
    """
    Agrega un producto activo al carrito.

    Si el producto ya está en el carrito se suman las cantidades, con un
    máximo de 10 por item.

    Raises:
        NotFoundException: Producto inexistente o no activo
        ValidationException: La cantidad resultante supera el máximo
    """
    product = await products.get_active(request.product_id)
    if not product:
        raise NotFoundException(
            "Product not found or not available", resource="product", resource_id=request.product_id
        )

    existing = await carts.get_by_product(user_id, request.product_id)
    if existing:
        quantity = int(existing.get("quantity") or 0) + request.quantity
        if quantity > MAX_CART_QUANTITY:
            raise ValidationException(
                f"Maximum quantity per item is {MAX_CART_QUANTITY}",
                field="quantity",
                invalid_value=quantity,
                status_code=400,
            )
        cart_item = await carts.set_quantity(existing["id"], user_id, quantity)
        response.status_code = status.HTTP_200_OK
        return {"cartItem": cart_item, "message": "Cart item updated successfully"}

    cart_item = await carts.add(user_id, request.product_id, request.quantity)
    logger.info(f"📦 Product {request.product_id} added to cart of user {user_id}")
    return {"cartItem": cart_item, "message": "Item added to cart successfully"}


@router.patch("")
async def update_cart_item(
    request: CartUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    carts: CartRepository = Depends(get_cart_repository),
) -> Dict[str, Any]:
    cart_item = await carts.set_quantity(request.cart_item_id, user_id, request.quantity)
    if not cart_item:
        raise _cart_item_not_found(request.cart_item_id)
    return {"cartItem": cart_item, "message": "Cart item updated successfully"}


@router.delete("")
async def remove_product_from_cart(
    product_id: Optional[str] = Query(None, alias="productId"),
    user_id: str = Depends(get_current_user_id),
    carts: CartRepository = Depends(get_cart_repository),
) -> Dict[str, Any]:
    if not product_id:
        raise ValidationException("Product ID is required", field="productId", status_code=400)

    await carts.remove_product(user_id, product_id)
    return {"message": "Item removed from cart successfully"}


@router.post("/shipping")
async def calculate_cart_shipping(
    address: ShippingAddressRequest,
    user_id: str = Depends(get_current_user_id),
    carts: CartRepository = Depends(get_cart_repository),
    shipping: ShippingService = Depends(get_shipping),
) -> Dict[str, Any]:
    """
    Envío del carrito completo a una dirección.

    Usa el cálculo garantizado: si Prodigi falla se devuelve una estimación
    marcada con ``isEstimated``.
    """
    cart_items = await carts.list_for_user(user_id)
    if not cart_items:
        return {"shippingCost": 0, "estimatedDays": 0, "serviceName": "No items in cart"}

    shipping_items = [
        {
            "sku": (row.get("products") or {}).get("sku"),
            "quantity": row.get("quantity") or 1,
            "price": float((row.get("products") or {}).get("price") or 0),
        }
        for row in cart_items
    ]
    result = await shipping.calculate_shipping_guaranteed(shipping_items, address.to_address())
    return result.to_dict()


@router.put("/{cart_item_id}")
async def set_cart_item_quantity(
    cart_item_id: str,
    request: CartItemQuantityRequest,
    user_id: str = Depends(get_current_user_id),
    carts: CartRepository = Depends(get_cart_repository),
) -> Dict[str, Any]:
    if not await carts.get_item(cart_item_id, user_id):
        raise _cart_item_not_found(cart_item_id)

    cart_item = await carts.set_quantity(cart_item_id, user_id, request.quantity)
    return {"cartItem": cart_item, "message": "Cart item updated successfully"}


@router.delete("/{cart_item_id}")
async def delete_cart_item(
    cart_item_id: str,
    user_id: str = Depends(get_current_user_id),
    carts: CartRepository = Depends(get_cart_repository),
) -> Dict[str, Any]:
    if not await carts.get_item(cart_item_id, user_id):
        raise _cart_item_not_found(cart_item_id)

    await carts.remove(cart_item_id, user_id)
    return {"message": "Cart item deleted successfully"}
