"""
Configuración centralizada de routers para la aplicación FastAPI.

Registra los endpoints base (raíz, health, info) y los routers de la API
bajo ``/api``.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from app.api.v1.endpoints.cart import router as cart_router
from app.api.v1.endpoints.checkout import router as checkout_router
from app.api.v1.endpoints.dropship import router as dropship_router
from app.api.v1.endpoints.notifications import router as notifications_router
from app.api.v1.endpoints.orders import router as orders_router
from app.api.v1.endpoints.pricing import router as pricing_router
from app.api.v1.endpoints.products import router as products_router
from app.api.v1.endpoints.retry import router as retry_router
from app.api.v1.endpoints.studio import router as studio_router
from app.api.v1.endpoints.webhooks import router as webhooks_router
from app.core.config import get_environment_info, get_settings
from app.core.health import get_health_status, get_health_status_fast
from app.core.scheduler import get_scheduler_status

settings = get_settings()
logger = logging.getLogger(__name__)

API_PREFIX = "/api"

# (router, prefijo, tag, respuestas documentadas)
API_ROUTERS = (
    (products_router, "/products", "Products", {404: {"description": "Product not found"}}),
    (cart_router, "/cart", "Cart", {404: {"description": "Cart item not found"}}),
    (orders_router, "/orders", "Orders", {403: {"description": "Access denied"}}),
    (checkout_router, "/checkout", "Checkout", {502: {"description": "Payment provider error"}}),
    (pricing_router, "/shared/pricing", "Pricing", {404: {"description": "SKU not found"}}),
    (studio_router, "/studio", "Studio", {}),
    (dropship_router, "/dropship", "Dropship", {409: {"description": "Dropship order already exists"}}),
    (webhooks_router, "/webhooks", "Webhooks", {401: {"description": "Invalid webhook signature"}}),
    (notifications_router, "/notifications", "Notifications", {}),
    (retry_router, "/retry", "Retry", {403: {"description": "Admin access required"}}),
)


def create_root_endpoints(app: FastAPI) -> None:
    """
    Crea endpoints raíz de la aplicación.

    Args:
        app: Instancia de FastAPI
    """

    @app.get("/", tags=["Root"], summary="API Info")
    async def root():
        return {
            "message": f"{settings.APP_NAME} API",
            "description": "Framed art storefront: products, cart, checkout, fulfillment and studio chat",
            "version": settings.APP_VERSION,
            "status": "running",
            "documentation": "/docs" if settings.ENABLE_DOCS else "disabled",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "endpoints": {
                "health": "/health",
                "info": "/info",
                **{tag.lower(): f"{API_PREFIX}{prefix}" for _, prefix, tag, _ in API_ROUTERS},
            },
        }

    @app.get("/ping", tags=["Root"], summary="Simple Ping")
    async def ping():
        return {"message": "pong", "timestamp": datetime.now(timezone.utc).isoformat()}


def create_health_endpoints(app: FastAPI) -> None:
    """
    Crea endpoints de health check.

    Args:
        app: Instancia de FastAPI
    """

    @app.get("/health", tags=["Health"], summary="Health Check (Fast)")
    async def health_check():
        """
        Health check rápido con cache: base de datos y memoria.
        """
        health_status = await get_health_status_fast()
        status_code = 200 if health_status["overall"] else 503

        return JSONResponse(
            status_code=status_code,
            content={
                "status": "healthy" if health_status["overall"] else "unhealthy",
                "version": settings.APP_VERSION,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "uptime": health_status.get("uptime"),
                "services": health_status["services"],
                "degraded": health_status.get("degraded", []),
                "environment": settings.ENVIRONMENT,
                "cache_info": health_status.get("cache_info", "unknown"),
            },
        )

    @app.get("/health/complete", tags=["Health"], summary="Complete Health Check")
    async def complete_health_check():
        """
        Health check completo: servicios, proveedores configurados y sistema.
        """
        health_status = await get_health_status()
        status_code = 200 if health_status["overall"] else 503

        return JSONResponse(
            status_code=status_code,
            content={
                "status": "healthy" if health_status["overall"] else "unhealthy",
                "version": settings.APP_VERSION,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "uptime": health_status.get("uptime"),
                "services": health_status["services"],
                "degraded": health_status.get("degraded", []),
                "providers": health_status.get("providers"),
                "system": health_status.get("system"),
                "retry_scheduler": get_scheduler_status(),
                "check_type": "complete",
            },
        )

    @app.get("/health/liveness", tags=["Health"], summary="Liveness Check")
    async def liveness_check():
        return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


def create_info_endpoints(app: FastAPI) -> None:
    """
    Crea endpoints informativos.

    Args:
        app: Instancia de FastAPI
    """

    @app.get("/info", tags=["Info"], summary="Application Info")
    async def app_info():
        """
        Versión, entorno y configuración no sensible.
        """
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": get_environment_info(),
            "routers": get_router_info(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


def configure_api_routers(app: FastAPI) -> None:
    """
    Registra los routers de la API bajo ``/api``.

    Args:
        app: Instancia de FastAPI
    """
    logger.info("🔧 Configurando routers de la API...")

    for router, prefix, tag, responses in API_ROUTERS:
        app.include_router(
            router,
            prefix=f"{API_PREFIX}{prefix}",
            tags=[tag],
            responses={**responses, 500: {"description": "Internal server error"}},
        )
        logger.info(f"✅ Router de {tag.lower()} configurado en {API_PREFIX}{prefix}")


def configure_all_routers(app: FastAPI) -> None:
    """
    Configura todos los routers de la aplicación.

    Args:
        app: Instancia de FastAPI
    """
    logger.info("🔧 Configurando todos los routers...")

    create_root_endpoints(app)
    create_health_endpoints(app)
    create_info_endpoints(app)
    configure_api_routers(app)

    logger.info("✅ Todos los routers configurados correctamente")


def get_router_info() -> Dict[str, Any]:
    """
    Obtiene información sobre los routers configurados.

    Returns:
        Dict con rutas base y funcionalidades habilitadas
    """
    return {
        "base_paths": {tag.lower(): f"{API_PREFIX}{prefix}" for _, prefix, tag, _ in API_ROUTERS},
        "features": {
            "retry_scheduler_enabled": settings.ENABLE_RETRY_SCHEDULER,
            "rate_limiting_enabled": settings.ENABLE_RATE_LIMITING,
            "docs_enabled": settings.ENABLE_DOCS,
        },
    }
