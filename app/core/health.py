"""
Sistema de health checks para monitoreo de servicios.

Este módulo verifica la base de datos, Redis, la configuración de los
proveedores externos (Prodigi, Stripe, OpenAI) y los recursos del host.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import psutil

from app.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# Variable global para tracking de uptime
_app_start_time = datetime.now(timezone.utc)

# Cache global para health checks
_health_cache: Dict[str, Any] = {}
_cache_timestamp: Dict[str, datetime] = {}

# Servicios sin los cuales la API no puede atender pedidos
CRITICAL_SERVICES = ("database",)


async def get_health_status_fast() -> Dict[str, Any]:
    """
    Obtiene el estado de salud rápido usando cache.

    Solo verifica la base de datos y la memoria, con timeouts cortos.

    Returns:
        Dict: Estado de salud básico (desde cache si está disponible)
    """
    cache_key = "health_status"
    now = datetime.now(timezone.utc)

    if (
        cache_key in _health_cache
        and cache_key in _cache_timestamp
        and (now - _cache_timestamp[cache_key]).total_seconds() < settings.HEALTH_CHECK_CACHE_TTL
    ):
        logger.debug("Returning cached health status")
        return _health_cache[cache_key]

    quick_checks = [
        ("database", check_database_health),
        ("memory", check_memory_usage),
    ]
    health_results = await _run_checks(quick_checks, timeout=settings.HEALTH_CHECK_INDIVIDUAL_TIMEOUT)

    health_response = {
        "overall": _is_overall_healthy(health_results),
        "services": health_results,
        "degraded": _degraded_services(health_results),
        "uptime": get_uptime_info(),
        "timestamp": now.isoformat(),
        "cache_info": "fast_check",
    }

    _health_cache[cache_key] = health_response
    _cache_timestamp[cache_key] = now

    return health_response


async def get_health_status() -> Dict[str, Any]:
    """
    Obtiene el estado de salud completo de todos los servicios.

    Returns:
        Dict: Estado de salud completo del sistema
    """
    health_checks = [
        ("database", check_database_health),
        ("redis", check_redis_health),
        ("disk_space", check_disk_space),
        ("memory", check_memory_usage),
        ("cpu", check_cpu_usage),
    ]
    health_results = await _run_checks(health_checks, timeout=settings.HEALTH_CHECK_INDIVIDUAL_TIMEOUT)

    return {
        "overall": _is_overall_healthy(health_results),
        "services": health_results,
        "degraded": _degraded_services(health_results),
        "providers": get_provider_configuration(),
        "uptime": get_uptime_info(),
        "system": get_system_info(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def _run_checks(checks, timeout: float) -> Dict[str, Dict[str, Any]]:
    """
    Ejecuta verificaciones en paralelo con timeout individual y global.

    Args:
        checks: Lista de ``(nombre, función)``
        timeout: Timeout por verificación en segundos

    Returns:
        Dict: Resultado por servicio
    """
    results: Dict[str, Dict[str, Any]] = {}
    tasks = [
        asyncio.create_task(run_health_check_with_timeout(name, func, timeout), name=f"health_check_{name}")
        for name, func in checks
    ]

    try:
        outcomes = await asyncio.wait_for(
            asyncio.gather(*tasks, return_exceptions=True), timeout=settings.HEALTH_CHECK_TIMEOUT
        )
    except asyncio.TimeoutError:
        logger.error("Health check timeout exceeded")
        return {name: {"status": "timeout", "error": "Health check timeout", "latency_ms": None} for name, _ in checks}

    for (name, _), outcome in zip(checks, outcomes):
        if isinstance(outcome, Exception):
            results[name] = {"status": "unhealthy", "error": str(outcome), "latency_ms": None}
        else:
            results[name] = outcome
    return results


def _is_overall_healthy(results: Dict[str, Dict[str, Any]]) -> bool:
    """Sano si responden los servicios críticos; el resto solo degrada."""
    return all(results.get(service, {}).get("status") == "healthy" for service in CRITICAL_SERVICES)


def _degraded_services(results: Dict[str, Dict[str, Any]]) -> List[str]:
    return sorted(name for name, result in results.items() if result.get("status") != "healthy")


async def run_health_check_with_timeout(service_name: str, check_func, timeout: float) -> Dict[str, Any]:
    """
    Ejecuta una verificación de salud individual con timeout específico.

    Args:
        service_name: Nombre del servicio
        check_func: Función de verificación
        timeout: Timeout en segundos

    Returns:
        Dict: Resultado de la verificación
    """
    start_time = time.time()

    try:
        result = await asyncio.wait_for(check_func(), timeout=timeout)
        latency_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy" if result else "unhealthy",
            "latency_ms": round(latency_ms, 2),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    except asyncio.TimeoutError:
        latency_ms = (time.time() - start_time) * 1000
        logger.warning(f"Health check timeout for {service_name} after {timeout}s")

        return {
            "status": "timeout",
            "error": f"Health check timeout after {timeout}s",
            "latency_ms": round(latency_ms, 2),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    except Exception as e:
        latency_ms = (time.time() - start_time) * 1000
        logger.error(f"Health check failed for {service_name}: {e}")

        return {
            "status": "unhealthy",
            "error": str(e),
            "latency_ms": round(latency_ms, 2),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


async def check_database_health() -> bool:
    """
    Verifica la conectividad con Postgres.

    Returns:
        bool: True si la base de datos responde
    """
    from app.db.connection import get_db_connection

    conn_db = get_db_connection()
    if not conn_db.is_initialized():
        return False

    health_info = await conn_db.health_check()
    return health_info.get("test_passed", False) and health_info.get("connection_initialized", False)


async def check_redis_health() -> bool:
    """
    Verifica la conectividad con Redis.

    Returns:
        bool: True si Redis está disponible o no está configurado
    """
    if not settings.REDIS_URL:
        return True  # Redis es opcional

    from app.core.redis_client import test_redis_connection

    return await test_redis_connection()


async def check_disk_space() -> bool:
    """
    Verifica que quede al menos 10% de disco libre.
    """
    disk_usage = psutil.disk_usage("/")
    free_percent = (disk_usage.free / disk_usage.total) * 100
    return free_percent > 10


async def check_memory_usage() -> bool:
    memory = psutil.virtual_memory()
    return memory.percent < (settings.MEMORY_USAGE_THRESHOLD or 90)


async def check_cpu_usage() -> bool:
    cpu_percent = await asyncio.to_thread(psutil.cpu_percent, 0.5)
    return cpu_percent < (settings.CPU_USAGE_THRESHOLD or 95)


def get_provider_configuration() -> Dict[str, Any]:
    """
    Indica qué proveedores externos tienen credenciales configuradas.

    Returns:
        Dict: Estado de configuración por proveedor (sin secretos)
    """
    return {
        "prodigi": {"configured": bool(settings.PRODIGI_API_KEY), "environment": settings.PRODIGI_ENVIRONMENT},
        "gelato": {"configured": bool(settings.GELATO_API_KEY), "environment": settings.GELATO_ENVIRONMENT},
        "stripe": {"configured": bool(settings.STRIPE_SECRET_KEY)},
        "openai": {"configured": bool(settings.OPENAI_API_KEY), "model": settings.OPENAI_MODEL},
    }


def get_uptime_info() -> Dict[str, Any]:
    """
    Obtiene información de uptime de la aplicación.

    Returns:
        Dict: Información de uptime
    """
    current_time = datetime.now(timezone.utc)
    uptime_delta = current_time - _app_start_time

    return {
        "start_time": _app_start_time.isoformat(),
        "current_time": current_time.isoformat(),
        "uptime_seconds": int(uptime_delta.total_seconds()),
        "uptime_human": format_uptime(uptime_delta),
    }


def get_system_info() -> Dict[str, Any]:
    """
    Obtiene información del sistema.

    Returns:
        Dict: CPU, memoria y disco del host
    """
    try:
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage("/")
        return {
            "cpu_count": psutil.cpu_count(),
            "memory_total_gb": round(memory.total / (1024**3), 2),
            "memory_usage_percent": memory.percent,
            "memory_available_gb": round(memory.available / (1024**3), 2),
            "disk_total_gb": round(disk.total / (1024**3), 2),
            "disk_free_gb": round(disk.free / (1024**3), 2),
            "disk_usage_percent": round(((disk.total - disk.free) / disk.total) * 100, 2),
        }
    except OSError as e:
        logger.error(f"Error getting system info: {e}")
        return {"error": "Unable to retrieve system information"}


def format_uptime(uptime_delta: timedelta) -> str:
    """
    Formatea el uptime en formato legible.

    Args:
        uptime_delta: Delta de tiempo de uptime

    Returns:
        str: Uptime formateado, p. ej. ``1d 2h 3m 4s``
    """
    days = uptime_delta.days
    hours, remainder = divmod(uptime_delta.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds or not parts:
        parts.append(f"{seconds}s")

    return " ".join(parts)


def reset_health_cache() -> None:
    """
    Limpia el cache de health checks (útil para testing).
    """
    _health_cache.clear()
    _cache_timestamp.clear()
