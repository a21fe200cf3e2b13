"""
Prodigi v4 print-on-demand integration.

The SDK combines a single ``ProdigiClient`` transport with the resources
used by the application:

- orders: create, get, list, actions and cancel
- quotes: pricing per shipping method
- products: product details and valid attributes (cached in Redis)

Module-level helpers keep one SDK per process.
"""

import logging
from typing import Optional

from .client import ProdigiClient
from .errors import (
    ProdigiAPIError,
    ProdigiAuthenticationError,
    ProdigiNetworkError,
    ProdigiNotFoundError,
    ProdigiRateLimitError,
    ProdigiValidationError,
    is_retryable_error,
)
from .orders import OrdersAPI
from .products import ProductsAPI
from .quotes import QuotesAPI

logger = logging.getLogger(__name__)


class ProdigiSDK:
    """Acceso unificado a los recursos de Prodigi sobre un cliente compartido."""

    def __init__(self, client: Optional[ProdigiClient] = None, **client_options):
        self.client = client or ProdigiClient(**client_options)
        self.orders = OrdersAPI(self.client)
        self.quotes = QuotesAPI(self.client)
        self.products = ProductsAPI(self.client)

    @property
    def environment(self) -> str:
        return self.client.environment

    async def close(self):
        await self.client.close()

    def __repr__(self) -> str:
        return f"ProdigiSDK({self.client!r})"


_sdk_instance: Optional[ProdigiSDK] = None


def get_prodigi_sdk() -> ProdigiSDK:
    """
    Obtiene la instancia global del SDK.

    Raises:
        ValueError: Si ``PRODIGI_API_KEY`` no está configurada
    """
    global _sdk_instance
    if _sdk_instance is None:
        _sdk_instance = ProdigiSDK()
        logger.info(f"✅ Prodigi SDK ready ({_sdk_instance.environment})")
    return _sdk_instance


async def close_prodigi_sdk():
    global _sdk_instance
    if _sdk_instance is not None:
        await _sdk_instance.close()
        _sdk_instance = None


__all__ = [
    "ProdigiAPIError",
    "ProdigiAuthenticationError",
    "ProdigiClient",
    "ProdigiNetworkError",
    "ProdigiNotFoundError",
    "ProdigiRateLimitError",
    "ProdigiSDK",
    "ProdigiValidationError",
    "OrdersAPI",
    "ProductsAPI",
    "QuotesAPI",
    "close_prodigi_sdk",
    "get_prodigi_sdk",
    "is_retryable_error",
]
