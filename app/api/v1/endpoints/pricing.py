"""
Endpoint de precios compartido por el carrito y el studio.

Cada item se valida contra los atributos que Prodigi publica para su SKU
antes de cotizar; el precio y las opciones de envío salen de la API de
quotes.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from app.api.v1.dependencies import get_pricing
from app.api.v1.schemas.storefront_schemas import PricingRequest
from app.services.pricing import PricingService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("")
async def calculate_pricing(
    request: PricingRequest, pricing: PricingService = Depends(get_pricing)
) -> Dict[str, Any]:
    """
    Precio en vivo de los items para el país de destino.

    Returns:
        Dict: ``{pricing, shippingOptions, recommended, country}``
    """
    country = request.destination_country()
    logger.info(f"💲 Pricing {len(request.items)} item(s) for {country} ({request.shipping_method})")
    return await pricing.quote_items(
        [item.to_pricing_item() for item in request.items], country, request.shipping_method
    )
