"""
Normalización y construcción de atributos de producto para Prodigi.

Prodigi rechaza pedidos y quotes con atributos que no están en el
``attributes`` del producto, y distingue mayúsculas en algunos valores
(``ImageWrap``). Este módulo traduce la configuración del cliente a un
set de atributos aceptado por el SKU.
"""

import logging
from typing import Any, Dict, List, Optional

from app.domain.models.frame import FrameConfig, looks_like_color
from app.services.prodigi.constants import COLOR_OPTIONS, GLAZE_ACRYLIC, PREFERRED_FINISHES, PREFERRED_WRAPS, WRAP_OPTIONS

logger = logging.getLogger(__name__)

WRAP_MAPPING = {wrap.lower(): wrap for wrap in WRAP_OPTIONS}
COLOR_MAPPING = {color: color for color in COLOR_OPTIONS}


# === NORMALIZACIÓN ===


def normalize_attribute_value(attribute_name: str, value: str) -> str:
    """
    Normaliza un valor al formato de Prodigi.

    ``wrap`` usa la capitalización oficial (``ImageWrap``); ``color`` y el
    resto de atributos van en minúsculas.
    """
    lower_value = value.lower()
    if attribute_name == "wrap":
        return WRAP_MAPPING.get(lower_value, value)
    if attribute_name == "color":
        return COLOR_MAPPING.get(lower_value, lower_value)
    return lower_value


def normalize_attributes(attributes: Dict[str, Optional[str]]) -> Dict[str, str]:
    return {key: normalize_attribute_value(key, value) for key, value in attributes.items() if value is not None}


def are_attribute_values_equal(attribute_name: str, value1: str, value2: str) -> bool:
    return normalize_attribute_value(attribute_name, value1) == normalize_attribute_value(attribute_name, value2)


def catalog_to_official_attributes(catalog_attributes: Dict[str, Any]) -> Dict[str, str]:
    """
    Convierte atributos del catálogo (listas, ``frameColour``) al formato de pedido.
    """
    official: Dict[str, str] = {}
    for key, value in catalog_attributes.items():
        if value is None:
            continue
        string_value = value[0] if isinstance(value, list) and value else value
        if not string_value or isinstance(string_value, list):
            continue
        official_key = "color" if key == "frameColour" else key
        official[official_key] = normalize_attribute_value(official_key, str(string_value))
    return official


def _finalize(attributes: Dict[str, Any]) -> Dict[str, str]:
    if attributes.get("wrap"):
        attributes["wrap"] = attributes["wrap"].lower()
    return {key: str(value).strip() for key, value in attributes.items() if value not in (None, "")}


# === CONSTRUCCIÓN CON FACETS ===


def _find_option(key: str, options: List[str], value: str) -> Optional[str]:
    return next((option for option in options if are_attribute_values_equal(key, option, value)), None)


def _preferred_option(key: str, options: List[str], preferred: tuple) -> str:
    for candidate in preferred:
        match = _find_option(key, options, candidate)
        if match:
            return match
    return options[0]


def build_prodigi_attributes(config: FrameConfig, valid_attributes: Optional[Dict[str, List[str]]] = None) -> Dict[str, str]:
    """
    Construye atributos usando los valores válidos del producto.

    Args:
        config: Opciones elegidas por el cliente
        valid_attributes: ``product.attributes`` de Prodigi (atributo -> valores)

    Returns:
        Dict[str, str]: Atributos con la capitalización exacta de Prodigi,
        completados con defaults para los atributos requeridos
    """
    valid_attributes = valid_attributes or {}
    attributes: Dict[str, str] = {}

    def has_options(key: str) -> bool:
        return bool(valid_attributes.get(key))

    def add_if_valid(key: str, value: Optional[str]):
        if not value or value == "none" or key not in valid_attributes:
            return
        match = _find_option(key, valid_attributes[key], value)
        if match:
            attributes[key] = match
        else:
            logger.warning(f"⚠️ Value '{value}' not valid for {key}. Valid: {valid_attributes[key]}")

    add_if_valid("color", config.frame_color)
    add_if_valid("wrap", config.wrap)
    add_if_valid("glaze", GLAZE_ACRYLIC if config.glaze == "acrylic" else config.glaze)

    if config.mount and config.mount != "none" and "mount" in valid_attributes:
        mounts = valid_attributes["mount"]
        matched = _find_option("mount", mounts, config.mount)
        if not matched and "mm" in config.mount:
            matched = next((mount for mount in mounts if config.mount.lower() in mount.lower()), None)
        if matched:
            attributes["mount"] = matched
            add_if_valid("mountColor", config.mount_color)

    if "mount" not in attributes and has_options("mount"):
        attributes["mount"] = valid_attributes["mount"][0]

    if "mount" in attributes and "mountColor" not in attributes and has_options("mountColor"):
        attributes["mountColor"] = valid_attributes["mountColor"][0]

    add_if_valid("paperType", config.paper_type)
    add_if_valid("finish", config.finish)
    add_if_valid("edge", config.edge)

    if config.frame_style:
        if looks_like_color(config.frame_style):
            logger.warning(f"⚠️ Skipping frame attribute: '{config.frame_style}' is a colour, not a frame style")
        else:
            add_if_valid("frame", config.frame_style)

    add_if_valid("substrateWeight", config.substrate_weight)
    add_if_valid("style", config.style)

    if "finish" not in attributes and has_options("finish"):
        attributes["finish"] = _preferred_option("finish", valid_attributes["finish"], PREFERRED_FINISHES)

    if "wrap" not in attributes and has_options("wrap"):
        attributes["wrap"] = _preferred_option("wrap", valid_attributes["wrap"], PREFERRED_WRAPS)

    for key in ("color", "paperType", "edge"):
        if key not in attributes and has_options(key):
            attributes[key] = valid_attributes[key][0]

    return _finalize(attributes)


# === CONSTRUCCIÓN HEURÍSTICA ===


def classify_sku(sku: Optional[str]) -> Dict[str, bool]:
    """Familia del producto deducida del SKU."""
    sku_lower = (sku or "").lower()
    return {
        "canvas": "can-" in sku_lower or "canvas" in sku_lower or sku_lower.startswith("global-can-"),
        "framed": "-fra-" in sku_lower or "-frame" in sku_lower or "-box-" in sku_lower,
        "metal": "met-" in sku_lower or "metal" in sku_lower or sku_lower.startswith("global-met-"),
        "acrylic": "acr-" in sku_lower or "acrylic" in sku_lower or sku_lower.startswith("global-acr-"),
        "paper": "pap-" in sku_lower
        or "poster" in sku_lower
        or "paper" in sku_lower
        or sku_lower.startswith("global-pap-")
        or "fineart" in sku_lower,
    }


def build_prodigi_attributes_heuristic(config: Optional[FrameConfig], sku: Optional[str] = None) -> Dict[str, str]:
    """
    Construye atributos sin conocer los valores válidos del producto.

    Se usa para quotes cuando no hay facets; la familia del SKU decide qué
    atributos aplican.
    """
    if config is None:
        return {}

    kind = classify_sku(sku)
    attributes: Dict[str, Any] = {}
    glossy_surface = kind["metal"] or kind["acrylic"]

    if config.frame_color and (not kind["canvas"] or kind["framed"]):
        attributes["color"] = config.frame_color

    if kind["canvas"]:
        attributes["wrap"] = "ImageWrap"

    if not kind["canvas"] and config.glaze and config.glaze != "none":
        attributes["glaze"] = GLAZE_ACRYLIC if config.glaze == "acrylic" else config.glaze

    if not kind["canvas"] and config.mount and config.mount != "none":
        attributes["mount"] = config.mount
        if config.mount_color:
            attributes["mountColor"] = config.mount_color

    if config.finish and config.finish != "none" and glossy_surface:
        attributes["finish"] = config.finish
    elif not config.finish and glossy_surface:
        attributes["finish"] = "high gloss"

    if kind["paper"] and config.paper_type:
        attributes["paperType"] = config.paper_type

    if not kind["canvas"] and config.edge:
        attributes["edge"] = config.edge

    if config.frame_style and not looks_like_color(config.frame_style):
        attributes["frame"] = config.frame_style

    if config.substrate_weight:
        attributes["substrateWeight"] = config.substrate_weight

    if config.style:
        attributes["style"] = config.style

    return _finalize(attributes)
