"""
Cliente Redis para cache de datos JSON.

Este módulo proporciona funciones de cache sobre Redis con un cache en
memoria como respaldo cuando ``REDIS_URL`` no está configurado o Redis no
responde. Se usa para los detalles de producto de Prodigi.
"""

import json
import logging
import time
from typing import Any, Dict, Optional

import redis.asyncio as redis

from app.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# Global Redis client instance
_redis_client: Optional[redis.Redis] = None
_redis_available = False

# In-memory cache fallback: key -> {"data": ..., "expires_at": epoch | None}
_memory_cache: Dict[str, Dict[str, Any]] = {}


def get_redis_client() -> redis.Redis:
    """
    Returns a Redis client instance.

    Returns:
        redis.Redis: Redis client instance

    Raises:
        RuntimeError: If Redis URL is not configured
    """
    global _redis_client

    if not settings.REDIS_URL:
        raise RuntimeError("Redis URL not configured")

    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        )
        logger.debug("Redis client instance created")

    return _redis_client


async def test_redis_connection() -> bool:
    """
    Verifica la conectividad con Redis.

    Returns:
        bool: True si la conexión es exitosa, False en caso contrario
    """
    if not settings.REDIS_URL:
        logger.warning("Redis URL not configured")
        return False

    try:
        return bool(await get_redis_client().ping())
    except Exception as e:
        logger.error(f"Redis connection test failed: {e}")
        return False


def _memory_get(key: str) -> Optional[Any]:
    entry = _memory_cache.get(key)
    if entry is None:
        return None
    expires_at = entry.get("expires_at")
    if expires_at is not None and time.time() > expires_at:
        del _memory_cache[key]
        return None
    return entry["data"]


def _memory_set(key: str, data: Any, expire: Optional[int]) -> None:
    _memory_cache[key] = {"data": data, "expires_at": time.time() + expire if expire else None}


async def get_cache(key: str) -> Optional[Any]:
    """
    Obtiene un valor JSON del cache.

    Args:
        key: Clave del cache

    Returns:
        Optional[Any]: Valor deserializado o None si no existe o expiró
    """
    if _redis_available:
        try:
            raw = await get_redis_client().get(key)
            return json.loads(raw) if raw is not None else None
        except Exception as e:
            logger.warning(f"⚠️ Redis get failed for {key}, using memory cache: {e}")

    return _memory_get(key)


async def set_cache(key: str, value: Any, expire: Optional[int] = None) -> bool:
    """
    Guarda un valor serializable a JSON en el cache.

    Args:
        key: Clave del cache
        value: Valor a almacenar
        expire: Tiempo de expiración en segundos

    Returns:
        bool: True si fue exitoso
    """
    if _redis_available:
        try:
            await get_redis_client().set(key, json.dumps(value, default=str), ex=expire)
            return True
        except Exception as e:
            logger.warning(f"⚠️ Redis set failed for {key}, using memory cache: {e}")

    _memory_set(key, value, expire)
    return True


async def delete_cache(key: str) -> bool:
    """
    Elimina un valor del cache.

    Args:
        key: Clave del cache

    Returns:
        bool: True si la clave existía
    """
    existed = _memory_cache.pop(key, None) is not None
    if _redis_available:
        try:
            existed = bool(await get_redis_client().delete(key)) or existed
        except Exception as e:
            logger.warning(f"⚠️ Redis delete failed for {key}: {e}")
    return existed


async def clear_cache(prefix: str) -> int:
    """
    Elimina todas las claves que empiezan con un prefijo.

    Args:
        prefix: Prefijo de las claves (p.ej. ``prodigi:product:``)

    Returns:
        int: Cantidad de claves eliminadas
    """
    removed = 0
    for key in [key for key in _memory_cache if key.startswith(prefix)]:
        del _memory_cache[key]
        removed += 1

    if _redis_available:
        try:
            client = get_redis_client()
            async for key in client.scan_iter(match=f"{prefix}*"):
                removed += await client.delete(key)
        except Exception as e:
            logger.warning(f"⚠️ Redis clear failed for prefix {prefix}: {e}")

    return removed


def get_cache_info() -> Dict[str, Any]:
    return {
        "backend": "redis" if _redis_available else "memory",
        "memory_entries": len(_memory_cache),
    }


async def initialize_redis():
    """
    Inicializa Redis si está configurado; si no, queda el cache en memoria.
    """
    global _redis_available

    if not settings.REDIS_URL:
        logger.info("Redis not configured, using memory cache")
        _redis_available = False
        return

    _redis_available = await test_redis_connection()
    if _redis_available:
        logger.info("✅ Redis connection established")
    else:
        logger.warning("⚠️ Redis not available, using memory cache")


async def close_redis():
    """
    Cierra el cliente Redis y limpia el cache en memoria.
    """
    global _redis_client, _redis_available

    if _redis_client is not None:
        try:
            await _redis_client.aclose()
        except Exception as e:
            logger.warning(f"Error closing Redis client: {e}")
    _redis_client = None
    _redis_available = False
    _memory_cache.clear()
