"""Tests unitarios para el cálculo de envío y su estimación de respaldo."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.services.prodigi.errors import ProdigiAPIError
from app.services.shipping import (
    ShippingService,
    calculate_fallback_shipping,
    estimate_days_range,
    validate_shipping_request,
)
from app.utils.error_handler import PricingException, ValidationException

ITEMS = [{"sku": "GLOBAL-CAN-10x10", "quantity": 2, "price": 20}]
US_ADDRESS = {"countryCode": "US", "postalCode": "73301"}
QUOTE = {"shipmentMethod": "Standard", "costSummary": {"shipping": {"amount": "9.95", "currency": "USD"}}}


def make_service(quotes=None, error=None, create=None, timeout=30) -> ShippingService:
    quotes_api = MagicMock()
    quotes_api.create = create or AsyncMock(return_value=quotes or [], side_effect=error)
    return ShippingService(quotes_api=quotes_api, timeout=timeout)


class TestValidateShippingRequest:
    """Tests para la validación de la solicitud de envío."""

    def test_empty_items(self):
        with pytest.raises(ValidationException) as exc_info:
            validate_shipping_request([], US_ADDRESS)
        assert exc_info.value.message == "Items array cannot be empty"

    def test_missing_country(self):
        with pytest.raises(ValidationException):
            validate_shipping_request(ITEMS, {"postalCode": "1"})

    def test_us_requires_postal_code(self):
        """Debe exigir código postal en direcciones de EE.UU."""
        with pytest.raises(ValidationException):
            validate_shipping_request(ITEMS, {"countryCode": "US"})
        validate_shipping_request(ITEMS, {"countryCode": "GB"})

    def test_invalid_quantity(self):
        with pytest.raises(ValidationException):
            validate_shipping_request([{"sku": "A", "quantity": 0}], US_ADDRESS)


class TestFallbackShipping:
    """Tests para la estimación sin Prodigi."""

    def test_us_standard_estimate(self):
        """Debe cobrar la base más las unidades adicionales."""
        result = calculate_fallback_shipping(ITEMS, US_ADDRESS)

        assert result.cost == 12.98
        assert result.estimated_days == 8
        assert result.is_estimated is True
        assert result.provider == "intelligent_fallback"
        assert result.options[1].method == "Express"
        assert result.options[1].cost == 20.77
        assert result.free_shipping_threshold == 100.0

    def test_country_multiplier_and_large_surcharge(self):
        result = calculate_fallback_shipping([{"sku": "large-print", "quantity": 1, "price": 10}], {"countryCode": "GB"})
        assert result.cost == 22.17

    def test_free_shipping_over_threshold(self):
        """Debe dejar el envío en cero sobre el umbral."""
        result = calculate_fallback_shipping([{"sku": "A", "quantity": 2, "price": 60}], US_ADDRESS)

        assert result.cost == 0.0
        assert result.service_name == "Free Standard Shipping"
        assert result.free_shipping_available is True
        assert result.free_shipping_threshold is None

    def test_days_range(self):
        assert estimate_days_range("US") == {"min": 5, "max": 8}
        assert estimate_days_range("JP", expedited=True) == {"min": 7, "max": 10}


class TestShippingService:
    """Tests para el envío cotizado por Prodigi."""

    @pytest.mark.asyncio
    async def test_calculate_shipping(self):
        service = make_service([QUOTE])

        result = await service.calculate_shipping(ITEMS, US_ADDRESS)

        assert result.cost == 9.95
        assert result.service_name == "Standard"
        assert result.is_estimated is False

    @pytest.mark.asyncio
    async def test_provider_error(self):
        """Debe convertir fallos de Prodigi en PricingException."""
        service = make_service(error=ProdigiAPIError("down", 503))
        with pytest.raises(PricingException) as exc_info:
            await service.calculate_shipping(ITEMS, US_ADDRESS)
        assert exc_info.value.message == "Failed to calculate shipping"

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Debe responder 504 si Prodigi no responde a tiempo."""

        async def slow_create(request):
            await asyncio.sleep(1)
            return [QUOTE]

        service = make_service(create=slow_create, timeout=0.01)
        with pytest.raises(PricingException) as exc_info:
            await service.calculate_shipping(ITEMS, US_ADDRESS)
        assert exc_info.value.status_code == 504

    @pytest.mark.asyncio
    async def test_guaranteed_falls_back(self):
        """Debe usar la estimación cuando Prodigi falla."""
        service = make_service(error=ProdigiAPIError("down", 503))

        result = await service.calculate_shipping_guaranteed(ITEMS, US_ADDRESS)

        assert result.is_estimated is True
        assert result.cost == 12.98

    @pytest.mark.asyncio
    async def test_guaranteed_still_validates(self):
        service = make_service([QUOTE])
        with pytest.raises(ValidationException):
            await service.calculate_shipping_guaranteed([], US_ADDRESS)

    def test_is_shipping_available(self):
        assert ShippingService.is_shipping_available("us")
        assert not ShippingService.is_shipping_available("ZZ")
