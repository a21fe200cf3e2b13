"""
Constantes de la API v4 de Prodigi.

Valores por defecto del cliente, estados de reintento, métodos de envío,
límites de validación y claves de cache compartidos por los recursos de
Prodigi.
"""

from app.core.config import PRODIGI_API_URLS

API_URLS = PRODIGI_API_URLS

# === CONFIGURACIÓN DEL CLIENTE ===
DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 1000
DEFAULT_CACHE_TTL_SECONDS = 3600
MAX_RETRY_DELAY_MS = 30000

TIMEOUTS = {
    "default": 30,
    "quote": 45,
    "order_create": 60,
    "product": 15,
}

RETRYABLE_STATUS_CODES = (408, 429, 500, 502, 503, 504)
RETRYABLE_ERROR_STATUS_CODES = (429, 500, 502, 503, 504)
DEFAULT_RATE_LIMIT_RETRY_AFTER = 30

# === MÉTODOS DE ENVÍO ===
SHIPPING_METHODS = ("Budget", "Standard", "Express", "Overnight")
DEFAULT_SHIPPING_METHOD = "Standard"

# Rango de días hábiles por método
DELIVERY_ESTIMATES = {
    "Budget": {"min": 10, "max": 14},
    "Standard": {"min": 5, "max": 7},
    "Express": {"min": 2, "max": 3},
    "Overnight": {"min": 1, "max": 1},
}

# === ESTADOS DE PEDIDO ===
ORDER_STATUS_DESCRIPTIONS = {
    "InProgress": "Order is being processed",
    "Complete": "Order has been completed and shipped",
    "Cancelled": "Order has been cancelled",
    "OnHold": "Order is on hold",
    "Error": "Order has encountered an error",
    "AwaitingPaymentAuthorisation": "Awaiting payment authorisation",
}

# === OPCIONES DE PRODUCTO ===
SIZING_OPTIONS = ("fillPrintArea", "fitPrintArea", "stretchToPrintArea")
DEFAULT_SIZING = "fillPrintArea"
DEFAULT_PRINT_AREA = "default"

WRAP_OPTIONS = ("Black", "White", "ImageWrap", "MirrorWrap")
COLOR_OPTIONS = ("black", "white", "brown", "dark grey", "light grey", "natural", "gold", "silver")
GLAZE_ACRYLIC = "Acrylic / Perspex"
DEFAULT_MOUNT_COLOR = "Snow white"

PREFERRED_FINISHES = ("high gloss", "satin", "mid-gloss", "sheer glossy", "sheer matte")
PREFERRED_WRAPS = ("ImageWrap", "Black", "White", "MirrorWrap")

# === PAGINACIÓN ===
DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 100

# === VALIDACIÓN ===
MAX_MERCHANT_REFERENCE_LENGTH = 100
MAX_METADATA_SIZE = 2000
MAX_ASSET_URL_LENGTH = 2048
MAX_SKU_LENGTH = 100
MIN_COPIES = 1
MAX_COPIES = 100

# === CLAVES DE CACHE ===
PRODUCT_CACHE_PREFIX = "prodigi:product:"
ORDER_CACHE_PREFIX = "prodigi:order:"
QUOTE_CACHE_PREFIX = "prodigi:quote:"

# === EVENTOS DE WEBHOOK ===
WEBHOOK_EVENTS = (
    "order.created",
    "order.shipment.shipped",
    "order.complete",
    "order.cancelled",
    "order.error",
)


def product_cache_key(sku: str) -> str:
    return f"{PRODUCT_CACHE_PREFIX}{sku}"


def order_cache_key(order_id: str) -> str:
    return f"{ORDER_CACHE_PREFIX}{order_id}"


def quote_cache_key(request_hash: str) -> str:
    return f"{QUOTE_CACHE_PREFIX}{request_hash}"
