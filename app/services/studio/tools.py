"""
Herramientas que los agentes del studio pueden invocar vía tool calling.

Cada herramienta se publica a OpenAI con su JSON schema y se ejecuta contra
los servicios reales: ``get_price_quote`` cotiza con Prodigi y
``lookup_sku`` consulta el catálogo de productos. Los errores se devuelven
al modelo como ``{"success": False, "error": ...}`` para que pueda
explicarlos en lugar de inventar datos.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.services.pricing import get_pricing_service
from app.services.prodigi import get_prodigi_sdk
from app.services.prodigi.legacy import extract_base_sku
from app.utils.error_handler import AppException

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any], Dict[str, Any]], Awaitable[Dict[str, Any]]]

# Campos de la configuración que el modelo puede sobrescribir al cotizar
QUOTE_CONFIG_FIELDS = ("sku", "frameColor", "frameStyle", "mount", "mountColor", "glaze", "wrap")


@dataclass(frozen=True)
class StudioTool:
    name: str
    description: str
    parameters: Dict[str, Any]
    handler: ToolHandler

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {"name": self.name, "description": self.description, "parameters": self.parameters},
        }


async def get_price_quote(arguments: Dict[str, Any], frame_config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Precio real de Prodigi para la configuración actual.

    Los argumentos del modelo se aplican sobre la configuración del studio;
    sin SKU no hay precio que pedir.

    Args:
        arguments: ``{sku?, frameColor?, mount?, glaze?, country?}``
        frame_config: Configuración actual del studio

    Returns:
        Dict: ``{success, sku, country, pricing}`` o ``{success: False, error}``
    """
    config = dict(frame_config or {})
    config.update({key: arguments[key] for key in QUOTE_CONFIG_FIELDS if arguments.get(key)})
    if not config.get("sku"):
        return {"success": False, "error": "No SKU selected. Ask the user for product type and size first."}

    country = (arguments.get("country") or "US").upper()
    result = await get_pricing_service().quote_studio_config(config, country)
    if result.get("error"):
        return {"success": False, "error": result["error"], "sku": config["sku"]}

    return {"success": True, "sku": config["sku"], "country": country, "pricing": result["pricing"]}


async def lookup_sku(arguments: Dict[str, Any], frame_config: Dict[str, Any]) -> Dict[str, Any]:
    """Detalles del producto de Prodigi para un SKU y los atributos que acepta."""
    raw_sku = arguments.get("sku") or (frame_config or {}).get("sku")
    if not raw_sku:
        return {"success": False, "error": "No SKU provided"}

    sku = extract_base_sku(raw_sku)
    product = await get_prodigi_sdk().products.get(sku)
    return {
        "success": True,
        "sku": sku,
        "description": product.get("description"),
        "attributes": product.get("attributes") or {},
        "message": f"Found SKU: {sku}",
    }


GET_PRICE_QUOTE = StudioTool(
    name="get_price_quote",
    description=(
        "Get real Prodigi pricing for the current frame configuration. Returns product, shipping and "
        "total cost. Always use this for pricing questions instead of estimating."
    ),
    parameters={
        "type": "object",
        "properties": {
            "sku": {"type": "string", "description": "Prodigi SKU (defaults to the current configuration)"},
            "frameColor": {"type": "string"},
            "mount": {"type": "string"},
            "glaze": {"type": "string"},
            "country": {"type": "string", "description": "ISO country code (defaults to US)"},
        },
    },
    handler=get_price_quote,
)

LOOKUP_SKU = StudioTool(
    name="lookup_sku",
    description=(
        "Look up a Prodigi SKU. Validates that the product exists and returns its description and the "
        "valid values for each attribute."
    ),
    parameters={
        "type": "object",
        "properties": {"sku": {"type": "string", "description": 'Prodigi SKU, e.g. "GLOBAL-CFPM-16X20"'}},
        "required": ["sku"],
    },
    handler=lookup_sku,
)


async def execute_tool(
    tools: List[StudioTool], name: str, raw_arguments: Optional[str], frame_config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Ejecuta la herramienta pedida por el modelo.

    Args:
        tools: Herramientas publicadas por el agente
        name: Nombre de la función en el tool call
        raw_arguments: Argumentos JSON tal como los envía OpenAI
        frame_config: Configuración actual del studio

    Returns:
        Dict: Resultado serializable para el mensaje ``role: tool``
    """
    tool = next((tool for tool in tools if tool.name == name), None)
    if tool is None:
        return {"success": False, "error": f"Unknown tool: {name}"}

    try:
        arguments = json.loads(raw_arguments or "{}")
    except json.JSONDecodeError:
        return {"success": False, "error": "Invalid tool arguments"}

    logger.info(f"🔧 Studio tool {name} {arguments}")
    try:
        return await tool.handler(arguments, frame_config)
    except (AppException, ValueError) as e:
        message = e.message if isinstance(e, AppException) else str(e)
        logger.warning(f"⚠️ Studio tool {name} failed: {message}")
        return {"success": False, "error": message}
