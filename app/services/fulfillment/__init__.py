"""
Envío de pedidos pagados a los proveedores de impresión.
"""

from .image_urls import get_public_image_url
from .orchestrator import DropshipOrchestrator, build_provider_order_data, get_dropship_orchestrator

__all__ = ["DropshipOrchestrator", "build_provider_order_data", "get_dropship_orchestrator", "get_public_image_url"]
