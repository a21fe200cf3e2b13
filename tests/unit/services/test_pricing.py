"""Tests unitarios para PricingService y PricingCalculator."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.domain.models.pricing import ShippingOption, ShippingResult
from app.services.pricing import (
    PricingCalculator,
    PricingService,
    build_quote_items,
    calculate_cart_totals,
    select_quote,
)
from app.services.prodigi.errors import ProdigiAPIError, ProdigiNotFoundError
from app.utils.error_handler import PricingException

STANDARD_QUOTE = {
    "shipmentMethod": "Standard",
    "costSummary": {
        "items": {"amount": "40.00", "currency": "USD"},
        "shipping": {"amount": "10.00", "currency": "USD"},
        "totalCost": {"amount": "50.00", "currency": "USD"},
    },
    "shipment": {"sla": 4, "dispatchCountryCode": "GB"},
}

EXPRESS_QUOTE = {
    "shipmentMethod": "Express",
    "costSummary": {
        "items": {"amount": "40.00", "currency": "USD"},
        "shipping": {"amount": "25.00", "currency": "USD"},
    },
}


def make_quotes_api(quotes=None, error=None) -> MagicMock:
    quotes_api = MagicMock()
    quotes_api.create = AsyncMock(return_value=quotes or [], side_effect=error)
    return quotes_api


class TestBuildQuoteItems:
    """Tests para la conversión de items del carrito a items de quote."""

    def test_merges_same_sku_and_attributes(self):
        """Debe combinar items con el mismo SKU base y atributos."""
        items = [
            {"sku": "GLOBAL-CFPM-16X20-1a2b3c4d", "quantity": 1, "frame_config": {"color": "black"}},
            {"sku": "GLOBAL-CFPM-16X20", "quantity": 2, "frame_config": {"frameColor": "black"}},
        ]

        result = build_quote_items(items)

        assert len(result) == 1
        assert result[0]["copies"] == 3
        assert result[0]["attributes"] == {"color": "black"}

    def test_different_attributes_are_kept_apart(self):
        items = [
            {"sku": "GLOBAL-CFPM-16X20", "quantity": 1, "frame_config": {"color": "black"}},
            {"sku": "GLOBAL-CFPM-16X20", "quantity": 1, "frame_config": {"color": "white"}},
        ]
        assert len(build_quote_items(items)) == 2

    def test_omits_empty_attributes(self):
        """Debe omitir attributes cuando no hay ninguno."""
        result = build_quote_items([{"sku": "GLOBAL-FAP-16X24", "quantity": 1}])
        assert "attributes" not in result[0]

    def test_empty_sku_raises(self):
        with pytest.raises(PricingException):
            build_quote_items([{"sku": "", "quantity": 1}])

    def test_select_quote(self):
        """Debe elegir el método pedido, si no Standard, si no el primero."""
        quotes = [EXPRESS_QUOTE, STANDARD_QUOTE]
        assert select_quote(quotes, "express") is EXPRESS_QUOTE
        assert select_quote(quotes, "Overnight") is STANDARD_QUOTE
        assert select_quote([EXPRESS_QUOTE], "Budget") is EXPRESS_QUOTE
        assert select_quote([], "Standard") is None


class TestPricingService:
    """Tests para los precios contra Prodigi."""

    @pytest.mark.asyncio
    async def test_calculate_pricing_adds_country_tax(self):
        """Debe sumar impuesto sobre los items según el país."""
        service = PricingService(quotes_api=make_quotes_api([STANDARD_QUOTE]))

        result = await service.calculate_pricing([{"sku": "GLOBAL-FAP-16X24", "quantity": 1}], "US")

        assert result.subtotal == 40.0
        assert result.shipping == 10.0
        assert result.tax == 3.2
        assert result.total == 53.2
        assert result.currency == "usd"
        assert result.estimated_days == 6

    @pytest.mark.asyncio
    async def test_no_quotes_raises(self):
        service = PricingService(quotes_api=make_quotes_api([]))
        with pytest.raises(PricingException):
            await service.calculate_pricing([{"sku": "GLOBAL-FAP-16X24", "quantity": 1}], "US")

    @pytest.mark.asyncio
    async def test_provider_error_becomes_pricing_error(self):
        """Debe convertir errores de Prodigi en PricingException."""
        service = PricingService(quotes_api=make_quotes_api(error=ProdigiAPIError("down", 503)))
        with pytest.raises(PricingException) as exc_info:
            await service.calculate_pricing([{"sku": "GLOBAL-FAP-16X24", "quantity": 1}], "US")
        assert exc_info.value.details["error"] == "down"

    @pytest.mark.asyncio
    async def test_shipping_options_and_recommendation(self):
        service = PricingService(quotes_api=make_quotes_api([EXPRESS_QUOTE, STANDARD_QUOTE]))

        options = await service.get_shipping_options([{"sku": "GLOBAL-FAP-16X24", "quantity": 1}], "US")

        assert [option.method for option in options] == ["Express", "Standard"]
        assert options[0].cost == 25.0
        assert PricingService.get_recommended_method(options) == "Standard"
        assert PricingService.get_recommended_method([]) == "Standard"

    def test_recommendation_without_standard_is_cheapest(self):
        options = [
            ShippingOption(method="Express", cost=20, currency="USD", estimated_days=3),
            ShippingOption(method="Budget", cost=5, currency="USD", estimated_days=12),
        ]
        assert PricingService.get_recommended_method(options) == "Budget"

    @pytest.mark.asyncio
    async def test_studio_quote_without_sku_is_estimated(self):
        service = PricingService(quotes_api=make_quotes_api())
        result = await service.quote_studio_config({"frameColor": "black"})
        assert result["pricing"]["estimated"] is True
        service.quotes.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_studio_quote_uses_standard(self):
        """Debe devolver el precio Standard de la configuración."""
        service = PricingService(quotes_api=make_quotes_api([EXPRESS_QUOTE, STANDARD_QUOTE]))

        result = await service.quote_studio_config({"sku": "GLOBAL-CFPM-16X20", "frameColor": "black"}, "GB")

        pricing = result["pricing"]
        assert pricing["total"] == 40.0
        assert pricing["shipping"] == 10.0
        assert pricing["sla"] == 4
        assert pricing["productionCountry"] == "GB"
        assert pricing["estimated"] is False

    @pytest.mark.asyncio
    async def test_studio_quote_falls_back_on_error(self):
        service = PricingService(quotes_api=make_quotes_api(error=ProdigiAPIError("down", 503)))
        result = await service.quote_studio_config({"sku": "GLOBAL-CFPM-16X20"})
        assert result["pricing"]["estimated"] is True
        assert result["error"] == "down"


class TestQuoteItems:
    """Tests para el precio con atributos validados contra el producto."""

    VALID_ATTRIBUTES = {"color": ["black", "white"], "mount": ["No mount / Mat", "2.4mm"]}

    def make_service(self, quotes=None, error=None) -> PricingService:
        products_api = MagicMock()
        products_api.get_available_attributes = AsyncMock(return_value=self.VALID_ATTRIBUTES, side_effect=error)
        return PricingService(quotes_api=make_quotes_api(quotes), products_api=products_api)

    @pytest.mark.asyncio
    async def test_attributes_come_from_product_facets(self):
        """Debe cotizar con la capitalización del producto y completar los requeridos."""
        service = self.make_service([EXPRESS_QUOTE, STANDARD_QUOTE])

        result = await service.quote_items(
            [{"sku": "GLOBAL-CFPM-16X20-1a2b3c4d", "quantity": 1, "frame_config": {"color": "WHITE"}}], "US"
        )

        service.products.get_available_attributes.assert_awaited_once_with("GLOBAL-CFPM-16X20")
        quote_item = service.quotes.create.call_args.args[0]["items"][0]
        assert quote_item["sku"] == "GLOBAL-CFPM-16X20"
        assert quote_item["attributes"] == {"color": "white", "mount": "No mount / Mat"}

        assert result["pricing"]["total"] == 53.2
        assert result["pricing"]["shippingMethod"] == "Standard"
        assert [option["method"] for option in result["shippingOptions"]] == ["Express", "Standard"]
        assert result["shippingOptions"][0]["delivery"] == {"min": 2, "max": 3}
        assert result["recommended"] == "Standard"
        assert result["country"] == "US"

    @pytest.mark.asyncio
    async def test_unknown_sku_is_404(self):
        service = self.make_service(error=ProdigiNotFoundError("Product with SKU GLOBAL-NOPE-1"))

        with pytest.raises(PricingException) as exc_info:
            await service.quote_items([{"sku": "GLOBAL-NOPE-1", "quantity": 1}], "US")

        assert exc_info.value.status_code == 404
        service.quotes.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_product_lookup_failure_is_pricing_error(self):
        service = self.make_service(error=ProdigiAPIError("down", 503))

        with pytest.raises(PricingException) as exc_info:
            await service.quote_items([{"sku": "GLOBAL-CFPM-16X20", "quantity": 1}], "US")

        assert exc_info.value.status_code == 502
        assert exc_info.value.details["error"] == "down"

    def test_resolved_attributes_are_used_as_is(self):
        """Debe respetar atributos ya resueltos en vez de deducirlos del SKU."""
        items = [{"sku": "GLOBAL-CAN-10x10", "quantity": 1, "attributes": {"wrap": "Black"}, "frame_config": {}}]
        assert build_quote_items(items)[0]["attributes"] == {"wrap": "Black"}


class TestPricingCalculator:
    """Tests para los totales del carrito."""

    def test_total_with_shipping_and_discount(self):
        """Debe gravar solo el subtotal y limitar el descuento."""
        calculator = PricingCalculator(tax_rate=0.1)
        shipping = ShippingResult(cost=5.0, currency="USD", estimated_days=6, service_name="Standard")

        totals = calculator.calculate_total(
            [{"id": "a", "price": 20, "quantity": 2}, {"id": "b", "price": 10, "quantity": 1}],
            shipping=shipping,
            discount_amount=10,
        )

        assert totals.subtotal == 50.0
        assert totals.tax_amount == 5.0
        assert totals.shipping_amount == 5.0
        assert totals.discount_amount == 10.0
        assert totals.total == 50.0
        assert totals.item_count == 3

    def test_discount_never_exceeds_subtotal(self):
        totals = PricingCalculator(tax_rate=0).calculate_total([{"price": 10, "quantity": 1}], discount_amount=50)
        assert totals.discount_amount == 10.0
        assert totals.total == 0.0

    def test_invalid_values_raise(self):
        """Debe rechazar tasas, descuentos y líneas inválidas."""
        with pytest.raises(PricingException):
            PricingCalculator(tax_rate=1.5)
        with pytest.raises(PricingException):
            PricingCalculator(tax_rate=0.1).calculate_total([], discount_amount=-1)
        with pytest.raises(PricingException):
            PricingCalculator(tax_rate=0.1).calculate_subtotal([{"price": -5, "quantity": 1}])

    def test_free_shipping_threshold(self):
        assert PricingCalculator.qualifies_for_free_shipping(100)
        assert not PricingCalculator.qualifies_for_free_shipping(99.99)

    def test_cart_totals_from_rows(self):
        """Debe usar los precios del producto de cada fila del carrito."""
        rows = [
            {"id": "c1", "quantity": 2, "products": {"sku": "A", "price": "19.99", "name": "Print"}},
            {"id": "c2", "quantity": 1, "products": {"sku": "B", "price": 30, "name": "Canvas"}},
        ]

        totals = calculate_cart_totals(rows)

        assert totals.subtotal == 69.98
        assert totals.item_count == 3
        assert totals.shipping_amount == 0.0
