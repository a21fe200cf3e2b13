"""
Frame configuration domain model.

Captures the options a customer picks for a physical print (frame
colour, wrap, glaze, mount and paper) and the catalogue vocabulary for
the legacy size/style/material products.
"""

from dataclasses import dataclass, fields
from typing import Any

FRAME_SIZES = ("small", "medium", "large", "extra_large")
FRAME_STYLES = ("black", "white", "natural", "gold", "silver")
FRAME_MATERIALS = ("wood", "metal", "plastic", "bamboo")

# Filter vocabulary accepted by GET /api/products
PRODUCT_FILTER_STYLES = ("black", "white", "natural", "gold", "silver", "brown", "grey")
PRODUCT_FILTER_MATERIALS = ("wood", "metal", "plastic", "bamboo", "canvas", "acrylic")

# Colour names that can never be a Prodigi "frame" attribute value
COLOR_NAMES = ("black", "white", "brown", "natural", "gold", "silver", "dark grey", "light grey")

FRAME_SIZE_LABELS = {
    "small": 'Small (8" × 10")',
    "medium": 'Medium (12" × 16")',
    "large": 'Large (16" × 20")',
    "extra_large": 'Extra Large (20" × 24")',
}

FRAME_STYLE_LABELS = {
    "black": "Black",
    "white": "White",
    "natural": "Natural Wood",
    "gold": "Gold",
    "silver": "Silver",
}

FRAME_MATERIAL_LABELS = {
    "wood": "Wood",
    "metal": "Metal",
    "plastic": "Plastic",
    "bamboo": "Bamboo",
}

# Outer size of the finished frame (print size plus a 2cm border)
FRAME_DIMENSIONS_CM = {
    "small": {"width": 22, "height": 27, "depth": 2},
    "medium": {"width": 32, "height": 43, "depth": 2},
    "large": {"width": 43, "height": 53, "depth": 2},
    "extra_large": {"width": 53, "height": 63, "depth": 3},
}


def describe_frame(size: str, style: str, material: str) -> str:
    """Human readable ``Size Style Material`` label for a legacy product."""
    return " ".join(
        (
            FRAME_SIZE_LABELS.get(size, size),
            FRAME_STYLE_LABELS.get(style, style),
            FRAME_MATERIAL_LABELS.get(material, material),
        )
    )


def looks_like_color(value: str | None) -> bool:
    """True when a frame style value is really a colour name."""
    if not value:
        return False
    lowered = value.lower()
    return any(lowered == color or color in lowered for color in COLOR_NAMES)


_ALIASES = {
    "frame_color": ("frame_color", "frameColor", "color", "colour"),
    "wrap": ("wrap",),
    "glaze": ("glaze",),
    "mount": ("mount",),
    "mount_color": ("mount_color", "mountColor"),
    "paper_type": ("paper_type", "paperType"),
    "finish": ("finish",),
    "edge": ("edge",),
    "frame_style": ("frame_style", "frameStyle"),
    "substrate_weight": ("substrate_weight", "substrateWeight"),
    "style": ("style",),
}


@dataclass
class FrameConfig:
    """
    Customer options used to build Prodigi attributes.

    Every field is optional; ``None`` or an empty value means "not chosen".
    """

    frame_color: str | None = None
    wrap: str | None = None
    glaze: str | None = None
    mount: str | None = None
    mount_color: str | None = None
    paper_type: str | None = None
    finish: str | None = None
    edge: str | None = None
    frame_style: str | None = None
    substrate_weight: str | None = None
    style: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "FrameConfig":
        data = data or {}
        values: dict[str, Any] = {}
        for attr, keys in _ALIASES.items():
            for key in keys:
                if data.get(key) not in (None, ""):
                    values[attr] = str(data[key])
                    break
        return cls(**values)

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) in (None, "") for f in fields(self))
