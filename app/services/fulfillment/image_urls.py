"""
URLs públicas de imágenes guardadas en Supabase Storage.

Los proveedores de impresión descargan el asset desde una URL absoluta;
las imágenes generadas se guardan como path relativo al bucket.
"""

from typing import Optional

from app.core.config import get_settings

DEFAULT_BUCKET = "images"
CURATED_BUCKET = "curated-images"


def get_bucket_for_path(path: str) -> str:
    if "curated" in path or "public-" in path:
        return CURATED_BUCKET
    return DEFAULT_BUCKET


def get_public_image_url(path: Optional[str]) -> Optional[str]:
    """
    Convierte un path de storage en URL pública.

    Args:
        path: URL absoluta o path dentro del bucket

    Returns:
        Optional[str]: URL pública, o None si no hay path
    """
    if not path:
        return None
    if path.startswith("http://") or path.startswith("https://"):
        return path

    base_url = get_settings().storage_public_base_url
    return f"{base_url}/{get_bucket_for_path(path)}/{path.lstrip('/')}"
