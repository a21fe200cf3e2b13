"""
Servicio de precios.

- ``PricingService``: precio real de Prodigi para items del carrito o del
  studio. Toda la aritmética de producto y envío la hace Prodigi con una
  sola llamada de quote; aquí solo se agrega el impuesto por país. Los
  atributos se validan contra los facets del producto (``validAttributes``).
- ``PricingCalculator``: totales del carrito a partir de los precios
  guardados en ``products`` (impuesto sobre el subtotal, sin gravar envío).
"""

import json
import logging
from typing import Any, Dict, List, Optional

from app.core.config import get_settings
from app.domain.models.frame import FrameConfig
from app.domain.models.pricing import CartTotals, PricingResult, ShippingOption, ShippingResult
from app.domain.value_objects.money import round_money
from app.services.prodigi import get_prodigi_sdk
from app.services.prodigi.attributes import build_prodigi_attributes, build_prodigi_attributes_heuristic
from app.services.prodigi.constants import DEFAULT_PRINT_AREA, DEFAULT_SHIPPING_METHOD
from app.services.prodigi.legacy import extract_base_sku
from app.services.prodigi.errors import ProdigiNotFoundError
from app.services.prodigi.quotes import QuotesAPI, parse_price
from app.utils.error_handler import PricingException, ProviderAPIException

settings = get_settings()
logger = logging.getLogger(__name__)

COUNTRY_TAX_RATES = {
    "US": 0.08,
    "CA": 0.13,
    "GB": 0.20,
    "AU": 0.10,
    "DE": 0.19,
    "FR": 0.20,
    "IT": 0.22,
    "ES": 0.21,
}

ESTIMATED_DAYS = {"Budget": 12, "Standard": 6, "Express": 3, "Overnight": 1}
DEFAULT_ESTIMATED_DAYS = 7

MAX_LINE_TOTAL = 999999.99
MAX_SHIPPING_COST = 999.99
FREE_SHIPPING_THRESHOLD = 100.00


def get_tax_rate(country_code: str) -> float:
    return COUNTRY_TAX_RATES.get((country_code or "").upper(), 0.0)


def estimate_delivery_days(shipping_method: Optional[str]) -> int:
    return ESTIMATED_DAYS.get(shipping_method or "", DEFAULT_ESTIMATED_DAYS)


def _clean_attributes(attributes: Dict[str, Any]) -> Dict[str, str]:
    return {key: str(value).strip() for key, value in attributes.items() if value not in (None, "")}


def build_quote_items(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Convierte items del carrito en items de quote de Prodigi.

    Items con el mismo SKU base y los mismos atributos se combinan sumando
    copias. Los atributos vacíos se omiten porque Prodigi rechaza ``{}``.
    Un item con ``attributes`` ya resueltos los usa tal cual; si no, se
    deducen de ``frame_config`` por la familia del SKU.

    Args:
        items: ``[{sku, quantity, frame_config?, attributes?}]``

    Returns:
        List[Dict]: ``[{sku, copies, assets, attributes?}]``

    Raises:
        PricingException: Si algún item no tiene SKU
    """
    merged: Dict[str, Dict[str, Any]] = {}

    for item in items:
        base_sku = extract_base_sku(item.get("sku"))
        if not base_sku.strip():
            raise PricingException(f"Invalid SKU: \"{item.get('sku')}\"", status_code=400)
        if base_sku != item.get("sku"):
            logger.debug(f"🔧 Extracted base SKU: {item.get('sku')} -> {base_sku}")

        if item.get("attributes") is not None:
            attributes = _clean_attributes(item["attributes"])
        else:
            config = FrameConfig.from_dict(item.get("frame_config"))
            attributes = _clean_attributes(build_prodigi_attributes_heuristic(config, base_sku))
        key = f"{base_sku}:{json.dumps(attributes, sort_keys=True)}"
        copies = int(item.get("quantity") or 1)

        if key in merged:
            merged[key]["copies"] += copies
            continue

        quote_item: Dict[str, Any] = {
            "sku": base_sku,
            "copies": copies,
            "assets": [{"printArea": DEFAULT_PRINT_AREA}],
        }
        if attributes:
            quote_item["attributes"] = attributes
        merged[key] = quote_item

    logger.debug(f"Combined {len(items)} cart items into {len(merged)} quote items")
    return list(merged.values())


def select_quote(quotes: List[Dict[str, Any]], shipping_method: str) -> Optional[Dict[str, Any]]:
    """Quote del método pedido (sin distinguir mayúsculas), si no Standard, si no el primero."""
    if not quotes:
        return None
    wanted = (shipping_method or "").lower()
    return (
        next((quote for quote in quotes if (quote.get("shipmentMethod") or "").lower() == wanted), None)
        or next((quote for quote in quotes if quote.get("shipmentMethod") == DEFAULT_SHIPPING_METHOD), None)
        or quotes[0]
    )


def _cost(quote: Dict[str, Any], key: str) -> Dict[str, Any]:
    return (quote.get("costSummary") or {}).get(key) or {}


class PricingService:
    """
    Precios en tiempo real contra la API de quotes de Prodigi.
    """

    def __init__(self, quotes_api=None, products_api=None):
        self._quotes_api = quotes_api
        self._products_api = products_api

    @property
    def quotes(self):
        if self._quotes_api is None:
            self._quotes_api = get_prodigi_sdk().quotes
        return self._quotes_api

    @property
    def products(self):
        if self._products_api is None:
            self._products_api = get_prodigi_sdk().products
        return self._products_api

    async def resolve_attributes(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Resuelve los atributos de cada item con los valores válidos del producto.

        Args:
            items: ``[{sku, quantity, frame_config?}]``

        Returns:
            List[Dict]: Los mismos items con ``sku`` base y ``attributes``

        Raises:
            PricingException: SKU vacío (400), desconocido (404) o Prodigi no responde
        """
        resolved = []
        for item in items:
            sku = extract_base_sku(item.get("sku"))
            if not sku.strip():
                raise PricingException(f"Invalid SKU: \"{item.get('sku')}\"", status_code=400)

            try:
                valid_attributes = await self.products.get_available_attributes(sku)
            except ProdigiNotFoundError as e:
                raise PricingException(f"SKU {sku} not found", status_code=404, details={"error": e.message}) from e
            except ProviderAPIException as e:
                raise PricingException("Failed to load product details", details={"sku": sku, "error": e.message}) from e

            config = FrameConfig.from_dict(item.get("frame_config"))
            resolved.append({**item, "sku": sku, "attributes": build_prodigi_attributes(config, valid_attributes)})
        return resolved

    async def quote_items(
        self, items: List[Dict[str, Any]], destination_country: str, shipping_method: str = DEFAULT_SHIPPING_METHOD
    ) -> Dict[str, Any]:
        """
        Precio completo de unos items: totales, opciones de envío y método recomendado.

        Returns:
            Dict: ``{pricing, shippingOptions, recommended, country}``
        """
        resolved = await self.resolve_attributes(items)
        pricing = await self.calculate_pricing(resolved, destination_country, shipping_method)
        options = await self.get_shipping_options(resolved, destination_country)

        return {
            "pricing": pricing.to_dict(),
            "shippingOptions": [
                {**option.to_dict(), "delivery": QuotesAPI.estimate_delivery_time(option.method)} for option in options
            ],
            "recommended": self.get_recommended_method(options),
            "country": destination_country,
        }

    async def calculate_pricing(
        self, items: List[Dict[str, Any]], destination_country: str, shipping_method: str = DEFAULT_SHIPPING_METHOD
    ) -> PricingResult:
        """
        Calcula subtotal, envío, impuesto y total para un destino.

        Args:
            items: ``[{sku, quantity, frame_config?}]``
            destination_country: Código ISO alpha-2
            shipping_method: Budget, Standard, Express u Overnight

        Returns:
            PricingResult: Montos redondeados a centavos

        Raises:
            PricingException: Si Prodigi no devuelve quotes o la llamada falla
        """
        quote_items = build_quote_items(items)

        try:
            quotes = await self.quotes.create(
                {
                    "destinationCountryCode": destination_country,
                    "items": quote_items,
                    "shippingMethod": shipping_method,
                }
            )
        except ProviderAPIException as e:
            logger.error(f"❌ Prodigi quote failed for {destination_country}: {e.message}")
            raise PricingException(
                "Failed to calculate pricing", destination_country=destination_country, details={"error": e.message}
            ) from e

        quote = select_quote(quotes, shipping_method)
        if not quote:
            raise PricingException(
                f"No quotes available for destination: {destination_country}", destination_country=destination_country
            )

        items_cost = parse_price(_cost(quote, "items").get("amount"))
        shipping_cost = parse_price(_cost(quote, "shipping").get("amount"))
        currency = _cost(quote, "items").get("currency") or "USD"
        tax = items_cost * get_tax_rate(destination_country)

        return PricingResult(
            subtotal=round_money(items_cost),
            shipping=round_money(shipping_cost),
            tax=round_money(tax),
            total=round_money(items_cost + shipping_cost + tax),
            currency=currency.lower(),
            shipping_method=quote.get("shipmentMethod") or shipping_method,
            estimated_days=estimate_delivery_days(quote.get("shipmentMethod")),
        )

    async def get_shipping_options(self, items: List[Dict[str, Any]], destination_country: str) -> List[ShippingOption]:
        """Un ``ShippingOption`` por método que Prodigi cotiza para el destino."""
        try:
            quotes = await self.quotes.create(
                {
                    "destinationCountryCode": destination_country,
                    "items": build_quote_items(items),
                    "shippingMethod": DEFAULT_SHIPPING_METHOD,
                }
            )
        except ProviderAPIException as e:
            raise PricingException(
                "Failed to get shipping options", destination_country=destination_country, details={"error": e.message}
            ) from e

        return [
            ShippingOption(
                method=quote.get("shipmentMethod"),
                cost=parse_price(_cost(quote, "shipping").get("amount")),
                currency=_cost(quote, "shipping").get("currency") or "USD",
                estimated_days=estimate_delivery_days(quote.get("shipmentMethod")),
                service_name=quote.get("shipmentMethod"),
            )
            for quote in quotes
        ]

    @staticmethod
    def get_recommended_method(options: List[ShippingOption]) -> str:
        if not options:
            return DEFAULT_SHIPPING_METHOD
        if any(option.method == DEFAULT_SHIPPING_METHOD for option in options):
            return DEFAULT_SHIPPING_METHOD
        return min(options, key=lambda option: option.cost).method

    async def quote_studio_config(self, config: Optional[Dict[str, Any]], country: str = "US") -> Dict[str, Any]:
        """
        Precio de una configuración del studio.

        Sin SKU, o si Prodigi falla, devuelve el bloque estimado en cero con
        ``estimated: True`` y el mensaje de error.
        """
        if not config or not config.get("sku"):
            return {"pricing": estimated_studio_pricing()}

        sku = extract_base_sku(config["sku"])
        attributes = _clean_attributes(build_prodigi_attributes_heuristic(FrameConfig.from_dict(config), sku))
        item: Dict[str, Any] = {"sku": sku, "copies": 1, "assets": [{"printArea": DEFAULT_PRINT_AREA}]}
        if attributes:
            item["attributes"] = attributes

        try:
            quotes = await self.quotes.create(
                {"destinationCountryCode": country, "shippingMethod": DEFAULT_SHIPPING_METHOD, "items": [item]}
            )
            standard = next((quote for quote in quotes if quote.get("shipmentMethod") == DEFAULT_SHIPPING_METHOD), None)
            if not standard:
                raise PricingException("No standard shipping quote available", destination_country=country)
        except (ProviderAPIException, PricingException) as e:
            logger.warning(f"⚠️ Studio pricing fell back to estimate for {sku}: {e.message}")
            return {"pricing": estimated_studio_pricing(), "error": e.message}

        items_cost = parse_price(_cost(standard, "items").get("amount"))
        shipment = standard.get("shipment") or {}
        return {
            "pricing": {
                "total": items_cost,
                "shipping": parse_price(_cost(standard, "shipping").get("amount")),
                "subtotal": items_cost,
                "sla": shipment.get("sla") or 5,
                "productionCountry": shipment.get("dispatchCountryCode") or "US",
                "currency": _cost(standard, "totalCost").get("currency") or "USD",
                "estimated": False,
            }
        }


def estimated_studio_pricing() -> Dict[str, Any]:
    return {
        "total": 0,
        "shipping": 0,
        "subtotal": 0,
        "sla": 5,
        "productionCountry": "US",
        "currency": "USD",
        "estimated": True,
    }


class PricingCalculator:
    """
    Totales del carrito con los precios del catálogo propio.
    """

    def __init__(self, tax_rate: Optional[float] = None, currency: str = "USD"):
        self.tax_rate = settings.DEFAULT_TAX_RATE if tax_rate is None else tax_rate
        if not 0 <= self.tax_rate <= 1:
            raise PricingException(f"Invalid tax rate: {self.tax_rate}", status_code=400)
        self.currency = currency

    def calculate_subtotal(self, items: List[Dict[str, Any]]) -> float:
        """
        Suma ``price * quantity`` de cada item.

        Raises:
            PricingException: Si alguna línea es negativa o excesiva
        """
        subtotal = 0.0
        for item in items:
            line_total = float(item.get("price") or 0) * int(item.get("quantity") or 0)
            if line_total < 0 or line_total > MAX_LINE_TOTAL:
                raise PricingException(f"Invalid line total for item {item.get('id')}: {line_total}", status_code=400)
            subtotal += line_total
        return round_money(subtotal)

    def calculate_tax(self, subtotal: float, shipping_amount: float = 0) -> float:
        if subtotal < 0:
            raise PricingException("Subtotal cannot be negative", status_code=400)
        if shipping_amount < 0:
            raise PricingException("Shipping amount cannot be negative", status_code=400)
        return round_money(subtotal * self.tax_rate)

    def calculate_total(
        self, items: List[Dict[str, Any]], shipping: Optional[ShippingResult] = None, discount_amount: float = 0
    ) -> CartTotals:
        """
        Totales de un conjunto de items.

        Args:
            items: ``[{id, price, quantity}]``
            shipping: Envío elegido, o None si aún no hay dirección
            discount_amount: Descuento fijo (nunca mayor al subtotal)

        Returns:
            CartTotals: subtotal, impuesto, envío, descuento y total
        """
        if discount_amount < 0:
            raise PricingException("Discount amount cannot be negative", status_code=400)

        subtotal = self.calculate_subtotal(items)
        shipping_amount = shipping.cost if shipping else 0.0
        if shipping_amount < 0 or shipping_amount > MAX_SHIPPING_COST:
            raise PricingException(f"Invalid shipping cost: {shipping_amount}", status_code=400)

        tax_amount = self.calculate_tax(subtotal, shipping_amount)
        discount = min(discount_amount, subtotal)
        total = max(0.0, subtotal - discount + tax_amount + shipping_amount)

        return CartTotals(
            subtotal=subtotal,
            tax_amount=tax_amount,
            shipping_amount=round_money(shipping_amount),
            discount_amount=round_money(discount),
            total=round_money(total),
            item_count=sum(int(item.get("quantity") or 0) for item in items),
            currency=self.currency,
        )

    @staticmethod
    def qualifies_for_free_shipping(subtotal: float, threshold: float = FREE_SHIPPING_THRESHOLD) -> bool:
        return subtotal >= threshold


def cart_pricing_items(cart_items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Filas de ``cart_items`` con su producto a items de precio."""
    items = []
    for row in cart_items:
        product = row.get("products") or {}
        items.append(
            {
                "id": row.get("id"),
                "sku": product.get("sku"),
                "price": float(product.get("price") or 0),
                "quantity": int(row.get("quantity") or 0),
                "name": product.get("name"),
            }
        )
    return items


def calculate_cart_totals(cart_items: List[Dict[str, Any]]) -> CartTotals:
    """Totales del carrito sin envío (se calcula cuando hay dirección)."""
    return PricingCalculator().calculate_total(cart_pricing_items(cart_items))


_pricing_service: Optional[PricingService] = None


def get_pricing_service() -> PricingService:
    global _pricing_service
    if _pricing_service is None:
        _pricing_service = PricingService()
    return _pricing_service
