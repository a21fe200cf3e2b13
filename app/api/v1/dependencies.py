"""
Dependencias compartidas de los endpoints.

La identidad del usuario llega en el header ``X-User-Id`` (lo fija el
gateway de autenticación delante de la API). Repositorios y servicios se
exponen como dependencias para poder reemplazarlos en tests.
"""

import logging
from typing import Optional

from fastapi import Depends, Header

from app.db.repositories import (
    CartRepository,
    NotificationRepository,
    OrderRepository,
    ProductRepository,
    ProfileRepository,
)
from app.services.fulfillment import DropshipOrchestrator, get_dropship_orchestrator
from app.services.order_retry import OrderRetryManager, get_order_retry_manager
from app.services.order_status import OrderStatusService, get_order_status_service
from app.services.payments import StripeService, get_stripe_service
from app.services.pricing import PricingService, get_pricing_service
from app.services.prodigi.webhooks import ProdigiWebhookProcessor, get_webhook_processor
from app.services.shipping import ShippingService, get_shipping_service
from app.services.studio import StudioOrchestrator, get_studio_orchestrator
from app.utils.error_handler import AuthenticationException, PermissionDeniedException

logger = logging.getLogger(__name__)


# === IDENTIDAD ===


async def get_current_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """
    Usuario autenticado del request.

    Raises:
        AuthenticationException: Header ausente o vacío (401)
    """
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationException("Unauthorized")
    return x_user_id.strip()


def get_profile_repository() -> ProfileRepository:
    return ProfileRepository()


async def require_admin(
    user_id: str = Depends(get_current_user_id),
    profiles: ProfileRepository = Depends(get_profile_repository),
) -> str:
    """
    Usuario autenticado con ``profiles.is_admin``.

    Raises:
        PermissionDeniedException: El usuario no es administrador (403)
    """
    if not await profiles.is_admin(user_id):
        logger.warning(f"⚠️ Admin access denied for user {user_id}")
        raise PermissionDeniedException("Admin access required")
    return user_id


# === REPOSITORIOS ===


def get_product_repository() -> ProductRepository:
    return ProductRepository()


def get_cart_repository() -> CartRepository:
    return CartRepository()


def get_order_repository() -> OrderRepository:
    return OrderRepository()


def get_notification_repository() -> NotificationRepository:
    return NotificationRepository()


# === SERVICIOS ===


def get_shipping() -> ShippingService:
    return get_shipping_service()


def get_pricing() -> PricingService:
    return get_pricing_service()


def get_stripe() -> StripeService:
    return get_stripe_service()


def get_dropship() -> DropshipOrchestrator:
    return get_dropship_orchestrator()


def get_order_status() -> OrderStatusService:
    return get_order_status_service()


def get_studio() -> StudioOrchestrator:
    return get_studio_orchestrator()


def get_prodigi_webhooks() -> ProdigiWebhookProcessor:
    return get_webhook_processor()


def get_retry_manager() -> OrderRetryManager:
    return get_order_retry_manager()
