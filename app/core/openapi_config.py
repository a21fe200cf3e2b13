"""
Configuración personalizada de OpenAPI/Swagger para la aplicación FastAPI.

Agrega la descripción de los tags y el esquema de identidad por header
``X-User-Id`` que usan los endpoints autenticados.
"""

import logging
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi

from app.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

TAGS_METADATA = [
    {"name": "Products", "description": "Framed products created from generated images"},
    {"name": "Cart", "description": "Shopping cart and shipping estimates"},
    {"name": "Orders", "description": "Order history, status detail and admin management"},
    {"name": "Checkout", "description": "Stripe Checkout sessions"},
    {"name": "Pricing", "description": "Live Prodigi pricing with attribute validation and shipping options"},
    {"name": "Studio", "description": "Framing assistant chat and live pricing"},
    {"name": "Dropship", "description": "Print-on-demand submission to Prodigi or Gelato"},
    {"name": "Webhooks", "description": "Signed callbacks from Stripe and Prodigi"},
    {"name": "Notifications", "description": "Customer notifications"},
    {"name": "Retry", "description": "Retry queue statistics and manual sweeps (admin)"},
    {"name": "Health", "description": "Health checks"},
]

USER_ID_SCHEME = "UserIdHeader"


def get_custom_openapi_schema(app: FastAPI) -> Dict[str, Any]:
    """
    Genera esquema OpenAPI personalizado.

    Args:
        app: Instancia de FastAPI

    Returns:
        Dict: Esquema OpenAPI con tags y esquema de seguridad
    """
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
        tags=TAGS_METADATA,
    )

    components = openapi_schema.setdefault("components", {})
    components.setdefault("securitySchemes", {})[USER_ID_SCHEME] = {
        "type": "apiKey",
        "in": "header",
        "name": "X-User-Id",
        "description": "Authenticated user id set by the upstream gateway",
    }

    app.openapi_schema = openapi_schema
    return app.openapi_schema


def configure_openapi(app: FastAPI) -> None:
    """
    Reemplaza el generador OpenAPI por defecto.

    Args:
        app: Instancia de FastAPI
    """
    app.openapi = lambda: get_custom_openapi_schema(app)
    logger.info("✅ Documentación OpenAPI configurada")
