"""
Recurso Products de la API de Prodigi.

Los detalles de producto cambian poco, así que se guardan en Redis bajo
``prodigi:product:{sku}`` durante ``PRODIGI_CACHE_TTL`` segundos.
"""

import logging
from typing import Any, Dict, List, Optional

from app.core.redis_client import get_cache, set_cache
from app.services.prodigi.client import ProdigiClient
from app.services.prodigi.constants import TIMEOUTS, product_cache_key
from app.services.prodigi.errors import ProdigiNotFoundError, ProdigiValidationError
from app.services.prodigi.orders import is_valid_country_code, is_valid_sku

logger = logging.getLogger(__name__)


def _matches(variant: Dict[str, Any], attributes: Dict[str, str]) -> bool:
    variant_attributes = variant.get("attributes") or {}
    return all(variant_attributes.get(key) == value for key, value in attributes.items())


class ProductsAPI:
    def __init__(self, client: ProdigiClient):
        self.client = client

    async def get(self, sku: str) -> Dict[str, Any]:
        """
        Obtiene los detalles de un producto.

        Args:
            sku: SKU de Prodigi

        Returns:
            Dict: Producto con ``attributes`` (valores válidos por atributo) y ``variants``

        Raises:
            ProdigiValidationError: Si el SKU tiene formato inválido
            ProdigiNotFoundError: Si Prodigi no conoce el SKU
        """
        if not is_valid_sku(sku):
            raise ProdigiValidationError("Invalid SKU format")

        cache_key = product_cache_key(sku)
        cached = await get_cache(cache_key)
        if cached is not None:
            logger.debug(f"Product cache hit: {sku}")
            return cached

        try:
            response = await self.client.request("GET", f"/products/{sku}", timeout=TIMEOUTS["product"])
        except ProdigiNotFoundError:
            raise ProdigiNotFoundError(f"Product with SKU {sku}") from None

        product = response.get("product") or response
        await set_cache(cache_key, product, expire=self.client.cache_ttl)
        return product

    async def get_available_attributes(self, sku: str) -> Dict[str, List[str]]:
        product = await self.get(sku)
        return product.get("attributes") or {}

    async def get_variant_by_attributes(self, sku: str, attributes: Dict[str, str]) -> Optional[Dict[str, Any]]:
        product = await self.get(sku)
        return next((variant for variant in product.get("variants") or [] if _matches(variant, attributes)), None)

    async def is_available_for_country(self, sku: str, country_code: str) -> bool:
        if not is_valid_country_code(country_code):
            raise ProdigiValidationError("Invalid country code")

        try:
            product = await self.get(sku)
        except ProdigiNotFoundError:
            return False

        return any(country_code in (variant.get("shipsTo") or []) for variant in product.get("variants") or [])

    async def get_shipping_countries(self, sku: str, attributes: Optional[Dict[str, str]] = None) -> List[str]:
        """
        Países de destino del producto.

        Con ``attributes`` devuelve los de la variante que coincide (o lista
        vacía); sin ellos, la unión ordenada de todas las variantes.
        """
        product = await self.get(sku)
        variants = product.get("variants") or []

        if attributes:
            variant = next((variant for variant in variants if _matches(variant, attributes)), None)
            return list(variant.get("shipsTo") or []) if variant else []

        countries = set()
        for variant in variants:
            countries.update(variant.get("shipsTo") or [])
        return sorted(countries)
