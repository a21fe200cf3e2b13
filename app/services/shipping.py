"""
Cálculo de envío para carrito y checkout.

``calculate_shipping`` usa el quote Standard de Prodigi y falla si Prodigi
no responde; ``calculate_shipping_guaranteed`` cae a una estimación por
país y cantidad cuando Prodigi no está disponible.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from app.domain.models.pricing import ShippingOption, ShippingResult
from app.domain.value_objects.money import round_money
from app.services.prodigi import get_prodigi_sdk
from app.services.prodigi.legacy import calculate_shipping_cost
from app.services.pricing import FREE_SHIPPING_THRESHOLD
from app.utils.error_handler import AppException, PricingException, ValidationException

logger = logging.getLogger(__name__)

SHIPPING_TIMEOUT_SECONDS = 30
DEFAULT_ITEM_PRICE = 35.0

FALLBACK_BASE_COST = 8.99
FALLBACK_ADDITIONAL_ITEM_COST = 3.99
FALLBACK_LARGE_ITEM_SURCHARGE = 5.99
FALLBACK_EXPRESS_MULTIPLIER = 1.6
FALLBACK_DEFAULT_MULTIPLIER = 2.5
FALLBACK_COUNTRY_MULTIPLIERS = {
    "US": 1.0,
    "CA": 1.3,
    "GB": 1.8,
    "AU": 2.2,
    "DE": 1.9,
    "FR": 1.9,
    "IT": 2.0,
    "ES": 1.9,
}

SUPPORTED_COUNTRIES = (
    "US", "CA", "GB", "AU", "DE", "FR", "IT", "ES", "NL", "BE",
    "AT", "CH", "SE", "NO", "DK", "FI", "IE", "PT", "LU", "JP",
)


def validate_shipping_request(items: List[Dict[str, Any]], address: Dict[str, Any]) -> None:
    """
    Valida items y dirección antes de cotizar.

    Raises:
        ValidationException: Items vacíos o inválidos, o dirección incompleta
    """
    if not items:
        raise ValidationException("Items array cannot be empty", field="items", status_code=400)

    for index, item in enumerate(items):
        if not item.get("sku") or int(item.get("quantity") or 0) < 1:
            raise ValidationException(f"Invalid item at index {index}", field="items", status_code=400)

    if not address or not address.get("countryCode"):
        raise ValidationException("Shipping address is required", field="shippingAddress", status_code=400)

    if address["countryCode"] == "US" and not address.get("postalCode"):
        raise ValidationException(
            "Postal code is required for US addresses", field="postalCode", status_code=400
        )


def estimate_days_range(country_code: str, expedited: bool = False) -> Dict[str, int]:
    if country_code == "US":
        days = {"min": 4, "max": 6} if expedited else {"min": 5, "max": 8}
    elif country_code in ("CA", "GB"):
        days = {"min": 5, "max": 7} if expedited else {"min": 7, "max": 12}
    else:
        days = {"min": 7, "max": 10} if expedited else {"min": 10, "max": 15}
    minimum = max(days["min"], 4)
    return {"min": minimum, "max": max(days["max"], minimum + 1)}


def calculate_fallback_shipping(
    items: List[Dict[str, Any]], address: Dict[str, Any], expedited: bool = False
) -> ShippingResult:
    """
    Estimación de envío sin Prodigi.

    Tarifa base 8.99 USD por multiplicador de país, 3.99 por cada unidad
    adicional, 5.99 si hay tamaños grandes; Express cuesta 1.6 veces más.
    Con subtotal sobre el umbral el envío es gratis.
    """
    country_code = address.get("countryCode", "").upper()
    subtotal = sum(float(item.get("price") or DEFAULT_ITEM_PRICE) * int(item.get("quantity") or 1) for item in items)
    total_quantity = sum(int(item.get("quantity") or 1) for item in items)

    base_cost = FALLBACK_BASE_COST * FALLBACK_COUNTRY_MULTIPLIERS.get(country_code, FALLBACK_DEFAULT_MULTIPLIER)
    if total_quantity > 1:
        base_cost += (total_quantity - 1) * FALLBACK_ADDITIONAL_ITEM_COST
    if any("large" in (item.get("sku") or "") for item in items):
        base_cost += FALLBACK_LARGE_ITEM_SURCHARGE
    if expedited:
        base_cost *= 1.8

    days = estimate_days_range(country_code, expedited)
    express_days = {"min": max(4, int(days["min"] * 0.6)), "max": max(5, int(days["max"] * 0.6))}

    standard = ShippingOption(
        method="Express" if expedited else "Standard",
        cost=round_money(base_cost),
        currency="USD",
        estimated_days=days["max"],
        service_name="Express Shipping" if expedited else "Standard Shipping",
        carrier="Estimated",
    )
    express = ShippingOption(
        method="Express",
        cost=round_money(base_cost * FALLBACK_EXPRESS_MULTIPLIER),
        currency="USD",
        estimated_days=express_days["max"],
        service_name="Express Shipping",
        carrier="Estimated",
    )
    options = [express, standard] if expedited else [standard, express]

    free_shipping = subtotal >= FREE_SHIPPING_THRESHOLD
    if free_shipping:
        for option in options:
            option.cost = 0.0
            option.service_name = f"Free {option.service_name}"

    recommended = options[0]
    return ShippingResult(
        cost=recommended.cost,
        currency=recommended.currency,
        estimated_days=recommended.estimated_days,
        service_name=recommended.service_name,
        carrier="Estimated",
        is_estimated=True,
        provider="intelligent_fallback",
        options=options,
        free_shipping_available=free_shipping,
        free_shipping_threshold=None if free_shipping else FREE_SHIPPING_THRESHOLD,
    )


class ShippingService:
    """
    Envío con Prodigi como proveedor principal.
    """

    def __init__(self, quotes_api=None, timeout: float = SHIPPING_TIMEOUT_SECONDS):
        self._quotes_api = quotes_api
        self.timeout = timeout

    @property
    def quotes(self):
        if self._quotes_api is None:
            self._quotes_api = get_prodigi_sdk().quotes
        return self._quotes_api

    async def calculate_shipping(self, items: List[Dict[str, Any]], address: Dict[str, Any]) -> ShippingResult:
        """
        Envío Standard cotizado por Prodigi.

        Args:
            items: ``[{sku, quantity, price?, attributes?}]``
            address: ``{countryCode, stateOrCounty?, postalCode?}``

        Returns:
            ShippingResult: Costo, moneda y días estimados

        Raises:
            ValidationException: Request inválido
            PricingException: Prodigi falló o no respondió a tiempo
        """
        validate_shipping_request(items, address)

        try:
            quote = await asyncio.wait_for(
                calculate_shipping_cost(self.quotes, items, address["countryCode"]), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise PricingException(
                f"Shipping calculation timed out after {int(self.timeout * 1000)}ms",
                destination_country=address["countryCode"],
                status_code=504,
            ) from None
        except AppException as e:
            raise PricingException(
                "Failed to calculate shipping",
                destination_country=address["countryCode"],
                details={"error": e.message},
            ) from e

        if quote["cost"] < 0:
            raise PricingException("Invalid cost in shipping response", destination_country=address["countryCode"])

        option = ShippingOption(
            method="Standard",
            cost=round_money(quote["cost"]),
            currency=quote["currency"],
            estimated_days=quote["estimatedDays"],
            service_name=quote["serviceName"],
            carrier="Prodigi",
        )
        return ShippingResult(
            cost=option.cost,
            currency=option.currency,
            estimated_days=option.estimated_days,
            service_name=option.service_name,
            options=[option],
            free_shipping_available=False,
            free_shipping_threshold=FREE_SHIPPING_THRESHOLD,
        )

    async def calculate_shipping_guaranteed(
        self, items: List[Dict[str, Any]], address: Dict[str, Any], expedited: bool = False
    ) -> ShippingResult:
        """
        Igual que ``calculate_shipping`` pero nunca falla por Prodigi.

        Raises:
            ValidationException: Request inválido (no se estima en ese caso)
        """
        validate_shipping_request(items, address)
        try:
            return await self.calculate_shipping(items, address)
        except PricingException as e:
            logger.warning(f"⚠️ Primary shipping calculation failed, using fallback estimate: {e.message}")
            return calculate_fallback_shipping(items, address, expedited)

    @staticmethod
    def is_shipping_available(country_code: str) -> bool:
        return (country_code or "").upper() in SUPPORTED_COUNTRIES


_shipping_service: Optional[ShippingService] = None


def get_shipping_service() -> ShippingService:
    global _shipping_service
    if _shipping_service is None:
        _shipping_service = ShippingService()
    return _shipping_service
