"""
Recurso Quotes de la API de Prodigi.

Toda la aritmética de precios es del lado de Prodigi; aquí solo se
validan los requests y se eligen quotes por método de envío.
"""

import logging
from typing import Any, Dict, List, Optional

from app.services.prodigi.client import ProdigiClient
from app.services.prodigi.constants import DEFAULT_SHIPPING_METHOD, DELIVERY_ESTIMATES, MAX_COPIES, MIN_COPIES, TIMEOUTS
from app.services.prodigi.errors import ProdigiValidationError
from app.services.prodigi.orders import is_valid_country_code, is_valid_sku

logger = logging.getLogger(__name__)


def parse_price(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def quote_total(quote: Dict[str, Any]) -> float:
    return parse_price(((quote.get("costSummary") or {}).get("totalCost") or {}).get("amount"))


def validate_quote_request(request: Dict[str, Any]) -> None:
    errors: List[str] = []

    if not is_valid_country_code(request.get("destinationCountryCode")):
        errors.append("Valid destination country code is required (ISO 3166-1 alpha-2)")

    items = request.get("items") or []
    if not items:
        errors.append("At least one item is required")

    for index, item in enumerate(items, start=1):
        if not is_valid_sku(item.get("sku")):
            errors.append(f"Item {index}: Invalid SKU")
        if not MIN_COPIES <= (item.get("copies") or 0) <= MAX_COPIES:
            errors.append(f"Item {index}: Copies must be between {MIN_COPIES} and {MAX_COPIES}")
        assets = item.get("assets") or []
        if not assets:
            errors.append(f"Item {index}: At least one asset required")
        for asset_index, asset in enumerate(assets, start=1):
            if not str(asset.get("printArea") or "").strip():
                errors.append(f"Item {index}, Asset {asset_index}: Print area is required")

    if errors:
        raise ProdigiValidationError("Quote request validation failed", [{"message": message} for message in errors])


class QuotesAPI:
    def __init__(self, client: ProdigiClient):
        self.client = client

    async def create(self, request: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Solicita quotes para un destino y una lista de items.

        Args:
            request: ``{destinationCountryCode, items[{sku, copies, attributes, assets}], shippingMethod}``

        Returns:
            List[Dict]: Un quote por método de envío disponible
        """
        validate_quote_request(request)
        response = await self.client.request("POST", "/quotes", body=request, timeout=TIMEOUTS["quote"])
        return response.get("quotes") or []

    async def get_for_shipping_method(
        self, destination_country_code: str, items: List[Dict[str, Any]], shipping_method: str
    ) -> Optional[Dict[str, Any]]:
        quotes = await self.create(
            {"destinationCountryCode": destination_country_code, "items": items, "shippingMethod": shipping_method}
        )
        return next((quote for quote in quotes if quote.get("shipmentMethod") == shipping_method), None)

    async def compare_shipping_methods(
        self, destination_country_code: str, items: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """Quotes de todos los métodos ordenados por costo total ascendente."""
        quotes = await self.create(
            {
                "destinationCountryCode": destination_country_code,
                "items": items,
                "shippingMethod": DEFAULT_SHIPPING_METHOD,
            }
        )
        return sorted(quotes, key=quote_total)

    async def get_shipping_cost(
        self, destination_country_code: str, items: List[Dict[str, Any]], shipping_method: str
    ) -> Dict[str, Any]:
        quote = await self.get_for_shipping_method(destination_country_code, items, shipping_method)
        if not quote:
            raise ProdigiValidationError(f"No quote available for shipping method: {shipping_method}")

        shipping = (quote.get("costSummary") or {}).get("shipping") or {}
        return {"amount": parse_price(shipping.get("amount")), "currency": shipping.get("currency")}

    @staticmethod
    def estimate_delivery_time(shipping_method: str) -> Optional[Dict[str, int]]:
        return DELIVERY_ESTIMATES.get(shipping_method)
