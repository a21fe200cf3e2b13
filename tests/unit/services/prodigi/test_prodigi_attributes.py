"""Tests unitarios para la construcción de atributos de Prodigi."""

from app.domain.models.frame import FrameConfig
from app.services.prodigi.attributes import (
    are_attribute_values_equal,
    build_prodigi_attributes,
    build_prodigi_attributes_heuristic,
    catalog_to_official_attributes,
    classify_sku,
    normalize_attribute_value,
    normalize_attributes,
)


class TestNormalization:
    """Tests para la normalización de valores."""

    def test_wrap_uses_official_case(self):
        """Debe devolver ImageWrap con la capitalización oficial."""
        assert normalize_attribute_value("wrap", "imagewrap") == "ImageWrap"

    def test_color_is_lowercase(self):
        """Debe pasar colores a minúsculas."""
        assert normalize_attribute_value("color", "Black") == "black"

    def test_normalize_attributes_drops_none(self):
        assert normalize_attributes({"color": "White", "wrap": None}) == {"color": "white"}

    def test_values_compared_after_normalization(self):
        """Debe comparar valores sin distinguir mayúsculas."""
        assert are_attribute_values_equal("wrap", "MirrorWrap", "mirrorwrap")
        assert are_attribute_values_equal("color", "Black", "black")
        assert not are_attribute_values_equal("color", "black", "white")

    def test_catalog_to_official(self):
        """Debe tomar el primer valor de listas y renombrar frameColour."""
        result = catalog_to_official_attributes({"frameColour": ["Black"], "wrap": ["MirrorWrap"], "edge": []})
        assert result == {"color": "black", "wrap": "MirrorWrap"}


class TestBuildWithValidAttributes:
    """Tests para la construcción usando los facets del producto."""

    VALID = {
        "color": ["black", "white", "natural"],
        "mount": ["No mount / Mat", "2.4mm"],
        "mountColor": ["Snow white", "Black"],
        "glaze": ["Acrylic / Perspex", "Float glass"],
        "frame": ["Classic"],
    }

    def test_uses_exact_case_from_product(self):
        """Debe usar el valor exacto que publica Prodigi."""
        config = FrameConfig(frame_color="WHITE", glaze="acrylic", mount="2.4mm", mount_color="black")
        result = build_prodigi_attributes(config, self.VALID)
        assert result["color"] == "white"
        assert result["glaze"] == "Acrylic / Perspex"
        assert result["mount"] == "2.4mm"
        assert result["mountColor"] == "Black"

    def test_fills_required_defaults(self):
        """Debe completar color y mount con el primer valor válido."""
        result = build_prodigi_attributes(FrameConfig(), self.VALID)
        assert result["color"] == "black"
        assert result["mount"] == "No mount / Mat"
        assert result["mountColor"] == "Snow white"

    def test_invalid_value_is_skipped(self):
        """Debe ignorar valores que el producto no acepta."""
        result = build_prodigi_attributes(FrameConfig(glaze="diamond"), self.VALID)
        assert "glaze" not in result

    def test_color_as_frame_style_is_skipped(self):
        """Debe descartar un estilo de marco que en realidad es un color."""
        result = build_prodigi_attributes(FrameConfig(frame_style="black"), self.VALID)
        assert "frame" not in result
        assert build_prodigi_attributes(FrameConfig(frame_style="classic"), self.VALID)["frame"] == "Classic"

    def test_preferred_wrap_default_is_lowercased(self):
        """Debe elegir ImageWrap por defecto y enviarlo en minúsculas."""
        result = build_prodigi_attributes(FrameConfig(), {"wrap": ["Black", "ImageWrap"]})
        assert result == {"wrap": "imagewrap"}


class TestHeuristicBuild:
    """Tests para la construcción sin facets."""

    def test_classify_sku(self):
        assert classify_sku("GLOBAL-CAN-10x10")["canvas"]
        assert classify_sku("GLOBAL-FRA-CAN-30X40")["framed"]
        assert classify_sku("GLOBAL-MET-8X10")["metal"]
        assert classify_sku(None) == {k: False for k in ("canvas", "framed", "metal", "acrylic", "paper")}

    def test_canvas_gets_wrap_without_color(self):
        """Debe poner wrap en canvas y omitir el color si no es enmarcado."""
        result = build_prodigi_attributes_heuristic(FrameConfig(frame_color="black", glaze="acrylic"), "GLOBAL-CAN-10x10")
        assert result == {"wrap": "imagewrap"}

    def test_framed_canvas_keeps_color(self):
        result = build_prodigi_attributes_heuristic(FrameConfig(frame_color="black"), "GLOBAL-FRA-CAN-30X40")
        assert result["color"] == "black"

    def test_metal_defaults_to_high_gloss(self):
        """Debe usar acabado high gloss en metal sin acabado elegido."""
        result = build_prodigi_attributes_heuristic(FrameConfig(), "GLOBAL-MET-8X10")
        assert result["finish"] == "high gloss"

    def test_none_config_returns_empty(self):
        assert build_prodigi_attributes_heuristic(None, "GLOBAL-CFPM-16X20") == {}
