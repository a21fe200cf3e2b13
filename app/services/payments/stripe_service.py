"""
Pagos con Stripe Checkout.

Crea la sesión de checkout a partir de items del carrito y procesa los
eventos firmados del webhook. Al completarse el checkout se crea el pedido
pagado, se vacía el carrito y se programa la creación del pedido en Prodigi
a través del sistema de reintentos.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

import stripe

from app.core.config import get_settings
from app.db.repositories import CartRepository, DropshipRepository, OrderRepository
from app.domain.models.frame import FRAME_MATERIAL_LABELS, FRAME_SIZE_LABELS, FRAME_STYLE_LABELS
from app.domain.models.order import generate_order_number
from app.domain.models.pricing import CartTotals, ShippingResult
from app.services.pricing import PricingCalculator, cart_pricing_items
from app.services.shipping import ShippingService, get_shipping_service
from app.utils.error_handler import (
    AppException,
    ErrorCode,
    NotFoundException,
    PaymentException,
    ValidationException,
)

settings = get_settings()
logger = logging.getLogger(__name__)

COUNTRY_CURRENCY_MAP = {
    "US": "usd",
    "CA": "cad",
    "GB": "gbp",
    "AU": "aud",
    "DE": "eur",
    "FR": "eur",
    "IT": "eur",
    "ES": "eur",
    "NL": "eur",
    "BE": "eur",
    "AT": "eur",
    "IE": "eur",
    "PT": "eur",
    "FI": "eur",
    "LU": "eur",
    "JP": "jpy",
    "KR": "krw",
    "SG": "sgd",
    "HK": "hkd",
    "CH": "chf",
    "SE": "sek",
    "NO": "nok",
    "DK": "dkk",
    "PL": "pln",
    "CZ": "czk",
    "HU": "huf",
    "MX": "mxn",
    "BR": "brl",
    "IN": "inr",
    "NZ": "nzd",
}
DEFAULT_CURRENCY = "usd"

PLACEHOLDER_ADDRESS = {
    "line1": "Address not provided",
    "line2": None,
    "city": "Unknown",
    "state": "Unknown",
    "postal_code": "00000",
}


def get_currency_for_country(country_code: Optional[str]) -> str:
    return COUNTRY_CURRENCY_MAP.get((country_code or "").upper(), DEFAULT_CURRENCY)


def to_cents(amount: float) -> int:
    return int(round(float(amount) * 100))


def build_line_items(
    cart_items: List[Dict[str, Any]], totals: CartTotals, currency: str, shipping_service_name: Optional[str]
) -> List[Dict[str, Any]]:
    """
    Líneas de Stripe: una por item del carrito más impuesto y envío.

    Args:
        cart_items: Filas de ``cart_items`` con ``products`` e ``images``
        totals: Totales calculados
        currency: Moneda ISO en minúsculas
        shipping_service_name: Nombre del servicio de envío elegido

    Returns:
        List[Dict]: ``line_items`` para ``checkout.Session.create``
    """
    line_items = []
    for item in cart_items:
        product = item.get("products") or {}
        image = product.get("images") or {}
        prompt = image.get("prompt") or product.get("name") or "Custom artwork"
        size = product.get("frame_size")
        style = product.get("frame_style")
        material = product.get("frame_material")

        product_data: Dict[str, Any] = {
            "name": (
                f"{prompt} - {FRAME_SIZE_LABELS.get(size, size)} "
                f"{FRAME_STYLE_LABELS.get(style, style)} {FRAME_MATERIAL_LABELS.get(material, material)}"
            ),
            "description": f"Framed print: {prompt}",
            "metadata": {
                "image_id": str(image.get("id") or ""),
                "frame_size": size or "",
                "frame_style": style or "",
                "frame_material": material or "",
                "sku": product.get("sku") or "",
            },
        }
        if image.get("image_url"):
            product_data["images"] = [image["image_url"]]

        line_items.append(
            {
                "price_data": {
                    "currency": currency,
                    "product_data": product_data,
                    "unit_amount": to_cents(product.get("price") or 0),
                },
                "quantity": int(item.get("quantity") or 1),
            }
        )

    line_items.append(
        {
            "price_data": {
                "currency": currency,
                "product_data": {"name": "Tax", "description": "Sales tax"},
                "unit_amount": to_cents(totals.tax_amount),
            },
            "quantity": 1,
        }
    )
    line_items.append(
        {
            "price_data": {
                "currency": currency,
                "product_data": {"name": "Shipping", "description": shipping_service_name or "Standard shipping"},
                "unit_amount": to_cents(totals.shipping_amount),
            },
            "quantity": 1,
        }
    )
    return line_items


def resolve_shipping_address(stored: Optional[Mapping[str, Any]], session: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Dirección de envío del pedido.

    Orden de preferencia: dirección guardada al crear la sesión (si tiene
    calle, ciudad y estado), dirección de ``customer_details`` de Stripe,
    y por último una dirección de relleno con el país según la moneda.
    """
    customer_details = session.get("customer_details") or {}
    name = customer_details.get("name")

    stored = stored or {}
    stored_state = stored.get("state") or stored.get("stateOrCounty")
    if stored.get("address1") and stored.get("city") and stored_state:
        return {
            "name": name,
            "line1": stored["address1"],
            "line2": stored.get("address2"),
            "city": stored["city"],
            "state": stored_state,
            "postal_code": stored.get("zip") or stored.get("postalCode") or "00000",
            "country": stored.get("country") or stored.get("countryCode") or "US",
        }

    stripe_address = customer_details.get("address")
    if stripe_address:
        return {
            "name": name,
            "line1": stripe_address.get("line1") or PLACEHOLDER_ADDRESS["line1"],
            "line2": stripe_address.get("line2"),
            "city": stripe_address.get("city") or PLACEHOLDER_ADDRESS["city"],
            "state": stripe_address.get("state") or PLACEHOLDER_ADDRESS["state"],
            "postal_code": stripe_address.get("postal_code") or PLACEHOLDER_ADDRESS["postal_code"],
            "country": stripe_address.get("country") or "US",
        }

    logger.warning(f"⚠️ No shipping address for session {session.get('id')}, using placeholder")
    country = "CA" if (session.get("currency") or "").upper() == "CAD" else "US"
    return {"name": name, **PLACEHOLDER_ADDRESS, "country": country}


class StripeService:
    """
    Checkout y webhooks de Stripe.
    """

    def __init__(
        self,
        order_repository: Optional[OrderRepository] = None,
        cart_repository: Optional[CartRepository] = None,
        dropship_repository: Optional[DropshipRepository] = None,
        shipping_service: Optional[ShippingService] = None,
        retry_manager=None,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
    ):
        self.orders = order_repository or OrderRepository()
        self.carts = cart_repository or CartRepository()
        self.dropships = dropship_repository or DropshipRepository()
        self.shipping = shipping_service or get_shipping_service()
        self._retry_manager = retry_manager
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET

        self.event_handlers = {
            "checkout.session.completed": self.handle_checkout_session_completed,
            "checkout.session.async_payment_succeeded": self.handle_async_payment_succeeded,
            "checkout.session.async_payment_failed": self.handle_async_payment_failed,
            "payment_intent.succeeded": self.handle_payment_intent_succeeded,
            "payment_intent.payment_failed": self.handle_payment_intent_failed,
            "payment_intent.requires_action": self.handle_payment_intent_requires_action,
            "charge.dispute.created": self.handle_charge_dispute_created,
        }

    @property
    def retry_manager(self):
        if self._retry_manager is None:
            from app.services.order_retry import get_order_retry_manager

            self._retry_manager = get_order_retry_manager()
        return self._retry_manager

    def is_configured(self) -> bool:
        return bool(self.api_key)

    # === CHECKOUT ===

    async def create_checkout_session(
        self,
        user_id: str,
        cart_item_ids: List[str],
        shipping_address: Dict[str, Any],
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Crea una sesión de Stripe Checkout para items del carrito.

        Args:
            user_id: Usuario que paga
            cart_item_ids: Items seleccionados del carrito
            shipping_address: ``{countryCode, stateOrCounty?, postalCode?}``
            customer_email: Email para precargar en Stripe

        Returns:
            Dict: ``{url, sessionId}``

        Raises:
            NotFoundException: Ningún item del carrito encontrado
            ValidationException: No se pudo calcular el envío (400)
            PaymentException: Stripe no configurado o rechazó la sesión
        """
        cart_items = await self.carts.get_items(user_id, cart_item_ids)
        if not cart_items:
            raise NotFoundException("Cart items not found", resource="cart_items")

        shipping_items = [
            {"sku": (row.get("products") or {}).get("sku"), "quantity": row.get("quantity") or 1}
            for row in cart_items
        ]
        try:
            shipping = await self.shipping.calculate_shipping(shipping_items, shipping_address)
        except AppException as e:
            logger.error(f"❌ Checkout shipping calculation failed for user {user_id}: {e.message}")
            raise ValidationException(
                "Failed to calculate shipping cost. Please check your address and try again.",
                field="shippingAddress",
                status_code=400,
            ) from e

        if not self.is_configured():
            raise PaymentException(
                "Stripe is not properly configured. Please set STRIPE_SECRET_KEY environment variable.",
                status_code=500,
                error_code=ErrorCode.CONFIGURATION_ERROR,
            )

        currency = get_currency_for_country(shipping_address.get("countryCode"))
        totals = PricingCalculator(currency=currency.upper()).calculate_total(cart_pricing_items(cart_items), shipping)

        params = self._session_params(user_id, cart_item_ids, cart_items, totals, currency, shipping, customer_email)
        try:
            session = await asyncio.to_thread(stripe.checkout.Session.create, api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe checkout session failed for user {user_id}: {e}")
            raise PaymentException(
                "Failed to create checkout session", stripe_code=getattr(e, "code", None), status_code=502
            ) from e

        try:
            await self.orders.save_session_address(session["id"], user_id, shipping_address)
        except AppException as e:
            logger.warning(f"⚠️ Could not store shipping address for session {session['id']}: {e.message}")

        logger.info(f"✅ Checkout session {session['id']} created for user {user_id} ({totals.total} {currency})")
        return {"url": session["url"], "sessionId": session["id"]}

    def _session_params(
        self,
        user_id: str,
        cart_item_ids: List[str],
        cart_items: List[Dict[str, Any]],
        totals: CartTotals,
        currency: str,
        shipping: ShippingResult,
        customer_email: Optional[str],
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "payment_method_types": ["card"],
            "mode": "payment",
            "line_items": build_line_items(cart_items, totals, currency, shipping.service_name),
            "metadata": {
                "userId": user_id,
                "cartItemIds": ",".join(cart_item_ids),
                "subtotal": str(totals.subtotal),
                "taxAmount": str(totals.tax_amount),
                "shippingAmount": str(totals.shipping_amount),
                "total": str(totals.total),
            },
            "success_url": f"{settings.PUBLIC_APP_URL}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{settings.PUBLIC_APP_URL}/cart",
        }
        if customer_email:
            params["customer_email"] = customer_email
        return params

    # === WEBHOOK ===

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Any:
        """
        Verifica la firma ``stripe-signature`` y construye el evento.

        Raises:
            PaymentException: Firma ausente o inválida, o payload ilegible (400)
        """
        if not signature:
            raise PaymentException(
                "Missing stripe-signature header", status_code=400, error_code=ErrorCode.INVALID_WEBHOOK_SIGNATURE
            )
        if not self.webhook_secret:
            logger.warning("⚠️ STRIPE_WEBHOOK_SECRET is not set, webhook signatures cannot be verified")

        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret or "")
        except stripe.SignatureVerificationError as e:
            logger.warning(f"❌ Stripe webhook signature verification failed: {e}")
            raise PaymentException(
                "Invalid webhook signature", status_code=400, error_code=ErrorCode.INVALID_WEBHOOK_SIGNATURE
            ) from e
        except ValueError as e:
            raise PaymentException(
                "Invalid webhook payload", status_code=400, error_code=ErrorCode.INVALID_WEBHOOK_PAYLOAD
            ) from e

    async def handle_event(self, event: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Despacha un evento a su handler.

        Returns:
            Dict: ``{received: True, handled: bool}``
        """
        event_type = event.get("type")
        handler = self.event_handlers.get(event_type)
        if handler is None:
            logger.info(f"Unhandled Stripe event type: {event_type}")
            return {"received": True, "handled": False}

        data_object = (event.get("data") or {}).get("object") or {}
        logger.info(f"🔄 Stripe event {event_type} ({event.get('id')})")
        await handler(data_object)
        return {"received": True, "handled": True}

    async def handle_checkout_session_completed(self, session: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Crea el pedido pagado de una sesión completada.

        Es idempotente por ``stripe_session_id``: si el pedido ya existe no
        se crea otro.

        Returns:
            Optional[Dict]: Pedido creado, o None si no se creó
        """
        session_id = session.get("id")
        metadata = session.get("metadata") or {}
        user_id = metadata.get("userId")
        cart_item_ids = [item_id for item_id in (metadata.get("cartItemIds") or "").split(",") if item_id]

        if not user_id or not cart_item_ids:
            logger.error(f"❌ Missing userId or cartItemIds in metadata of session {session_id}")
            return None

        existing = await self.orders.get_by_stripe_session(session_id)
        if existing:
            logger.info(f"🔄 Order already exists for session {session_id}: {existing['id']}")
            return None

        cart_items = await self.carts.get_items(user_id, cart_item_ids)
        if not cart_items:
            logger.error(f"❌ No cart items found for session {session_id} (user {user_id})")
            return None

        stored = await self.orders.get_session_address(session_id)
        shipping_address = resolve_shipping_address((stored or {}).get("shipping_address"), session)
        customer_details = session.get("customer_details") or {}

        order = await self.orders.create(
            {
                "order_number": generate_order_number(),
                "user_id": user_id,
                "stripe_session_id": session_id,
                "stripe_payment_intent_id": session.get("payment_intent"),
                "status": "paid",
                "payment_status": "paid",
                "customer_email": session.get("customer_email") or customer_details.get("email"),
                "customer_name": customer_details.get("name"),
                "customer_phone": customer_details.get("phone"),
                "shipping_address": shipping_address,
                "billing_address": customer_details.get("address") or shipping_address,
                "subtotal": float(metadata.get("subtotal") or 0),
                "tax_amount": float(metadata.get("taxAmount") or 0),
                "shipping_amount": float(metadata.get("shippingAmount") or 0),
                "total_amount": float(metadata.get("total") or 0),
                "currency": session.get("currency") or DEFAULT_CURRENCY,
                "metadata": {"stripe_session_id": session_id, "payment_intent_id": session.get("payment_intent")},
            }
        )
        logger.info(f"✅ Order {order['id']} created from session {session_id}")

        order_items = await self.orders.create_items(
            order["id"],
            [
                {
                    "product_id": row["product_id"],
                    "quantity": row["quantity"],
                    "unit_price": float((row.get("products") or {}).get("price") or 0),
                    "total_price": float((row.get("products") or {}).get("price") or 0) * row["quantity"],
                }
                for row in cart_items
            ],
        )

        await self.carts.clear(user_id, cart_item_ids)

        items_by_product = {str(item["product_id"]): item for item in order_items}
        for row in cart_items:
            order_item = items_by_product.get(str(row["product_id"]))
            try:
                await self.dropships.create(
                    order["id"], "prodigi", order_item_id=order_item["id"] if order_item else None, status="pending"
                )
            except AppException as e:
                logger.error(f"❌ Error creating dropship row for order {order['id']}: {e.message}")

        try:
            await self.retry_manager.schedule_operation(
                "prodigi_order_creation",
                order["id"],
                {"sessionId": session_id, "cartItemIds": cart_item_ids},
                immediate=True,
            )
        except AppException as e:
            logger.error(f"❌ Error scheduling Prodigi order creation for {order['id']}: {e.message}")

        logger.info(f"📦 Checkout completed: order {order['id']} with {len(cart_items)} items")
        return order

    async def handle_async_payment_succeeded(self, session: Mapping[str, Any]) -> None:
        await self.orders.update_by_stripe_session(session.get("id"), {"status": "paid", "payment_status": "paid"})

    async def handle_async_payment_failed(self, session: Mapping[str, Any]) -> None:
        await self.orders.update_by_stripe_session(
            session.get("id"), {"status": "cancelled", "payment_status": "failed"}
        )

    async def handle_payment_intent_succeeded(self, payment_intent: Mapping[str, Any]) -> None:
        await self.orders.update_by_payment_intent(
            payment_intent.get("id"), {"status": "paid", "payment_status": "paid"}
        )

    async def handle_payment_intent_failed(self, payment_intent: Mapping[str, Any]) -> None:
        await self.orders.update_by_payment_intent(
            payment_intent.get("id"), {"status": "cancelled", "payment_status": "failed"}
        )

    async def handle_payment_intent_requires_action(self, payment_intent: Mapping[str, Any]) -> None:
        await self.orders.update_by_payment_intent(
            payment_intent.get("id"), {"status": "pending", "payment_status": "requires_action"}
        )

    async def handle_charge_dispute_created(self, dispute: Mapping[str, Any]) -> None:
        logger.warning(f"⚠️ Charge dispute {dispute.get('id')} for payment intent {dispute.get('payment_intent')}")
        await self.orders.update_by_payment_intent(
            dispute.get("payment_intent"),
            {
                "status": "disputed",
                "payment_status": "disputed",
                "metadata": {
                    "dispute_id": dispute.get("id"),
                    "dispute_reason": dispute.get("reason"),
                    "dispute_amount": dispute.get("amount"),
                    "dispute_currency": dispute.get("currency"),
                },
            },
        )


_stripe_service: Optional[StripeService] = None


def get_stripe_service() -> StripeService:
    global _stripe_service
    if _stripe_service is None:
        _stripe_service = StripeService()
    return _stripe_service
