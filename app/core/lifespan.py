"""
Gestión del ciclo de vida de la aplicación FastAPI.

Este módulo maneja los eventos de startup y shutdown de la aplicación:
logging, validación de configuración, base de datos, cache, scheduler de
reintentos y cierre de clientes HTTP.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI

from app.core.config import get_settings, validate_required_settings
from app.core.logging_config import setup_logging

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Gestión del ciclo de vida de la aplicación.
    Maneja eventos de startup y shutdown de manera ordenada.

    Args:
        app: Instancia de FastAPI
    """
    # === STARTUP ===
    logger.info(f"🚀 Iniciando {settings.APP_NAME} v{settings.APP_VERSION}...")

    try:
        # 1. Configurar logging
        await startup_configure_logging()

        # 2. Verificar configuración
        await startup_verify_configuration()

        # 3. Base de datos y cache
        await startup_initialize_services()

        # 4. Scheduler de reintentos
        await startup_configure_scheduled_tasks()

        # 5. Resumen de configuración
        await startup_final_checks()

        logger.info("🎉 Aplicación iniciada correctamente")

    except Exception as e:
        logger.error(f"❌ Error durante el startup: {e}")
        await cleanup_on_startup_failure()
        sys.exit(1)

    # === YIELD (aplicación corriendo) ===
    yield

    # === SHUTDOWN ===
    logger.info(f"🛑 Cerrando {settings.APP_NAME}...")

    # 1. Detener scheduler
    await shutdown_stop_scheduled_tasks()

    # 2. Cerrar clientes HTTP de proveedores
    await shutdown_cleanup_services()

    # 3. Cerrar conexiones
    await shutdown_close_connections()

    logger.info("👋 Aplicación cerrada correctamente")


# === FUNCIONES DE STARTUP ===


async def startup_configure_logging():
    """Configura el sistema de logging."""
    setup_logging()
    logger.info("✅ Sistema de logging configurado")


async def startup_verify_configuration():
    """
    Verifica que la configuración sea válida.

    Raises:
        ValueError: Faltan variables requeridas para el entorno
    """
    validate_required_settings()

    if not settings.PRODIGI_API_KEY:
        logger.warning("⚠️ PRODIGI_API_KEY no configurada: el fulfillment fallará")
    if not settings.STRIPE_SECRET_KEY:
        logger.warning("⚠️ STRIPE_SECRET_KEY no configurada: el checkout no estará disponible")
    if not settings.OPENAI_API_KEY:
        logger.warning("⚠️ OPENAI_API_KEY no configurada: el studio responderá con mensajes de respaldo")

    logger.info("✅ Configuración verificada")


async def startup_initialize_services():
    """
    Inicializa la base de datos (crítica) y el cache (opcional).

    Raises:
        DatabaseConnectionException: No se pudo conectar a Postgres
    """
    from app.core import redis_client
    from app.db import initialize_database

    await initialize_database()
    logger.info("✅ Conexión a base de datos inicializada")

    await redis_client.initialize_redis()
    logger.info(f"✅ Cache inicializado ({redis_client.get_cache_info()['backend']})")


async def startup_configure_scheduled_tasks():
    """Inicia el scheduler de reintentos si está habilitado."""
    if not settings.ENABLE_RETRY_SCHEDULER:
        logger.info("ℹ️ Scheduler de reintentos deshabilitado")
        return

    from app.core.scheduler import start_scheduler

    await start_scheduler()
    logger.info("✅ Scheduler de reintentos iniciado")


async def startup_final_checks():
    """Registra la configuración activa."""
    logger.info("🔧 Configuración activa:")
    logger.info(f"   - Entorno: {settings.ENVIRONMENT}")
    logger.info(f"   - Debug: {settings.DEBUG}")
    logger.info(f"   - Prodigi: {settings.PRODIGI_ENVIRONMENT}")
    logger.info(f"   - Rate Limiting: {settings.ENABLE_RATE_LIMITING}")
    logger.info(f"   - Scheduler de reintentos: {settings.ENABLE_RETRY_SCHEDULER}")


async def cleanup_on_startup_failure():
    """Limpia recursos en caso de fallo durante startup."""
    logger.info("🧹 Limpiando recursos tras fallo en startup...")
    await shutdown_stop_scheduled_tasks()
    await shutdown_close_connections()


# === FUNCIONES DE SHUTDOWN ===


async def shutdown_stop_scheduled_tasks():
    """Detiene el scheduler de reintentos."""
    from app.core.scheduler import stop_scheduler

    try:
        await stop_scheduler()
    except Exception as e:
        logger.error(f"Error deteniendo scheduler: {e}")


async def shutdown_cleanup_services():
    """Cierra la sesión HTTP del SDK de Prodigi."""
    from app.services.prodigi import close_prodigi_sdk

    try:
        await close_prodigi_sdk()
        logger.info("✅ Cliente Prodigi cerrado")
    except Exception as e:
        logger.error(f"Error cerrando cliente Prodigi: {e}")


async def shutdown_close_connections():
    """Cierra conexiones de manera limpia."""
    from app.core import redis_client
    from app.db import close_database

    try:
        await close_database()
        logger.info("✅ Conexión a base de datos cerrada")
    except Exception as e:
        logger.error(f"Error cerrando conexión a base de datos: {e}")

    await redis_client.close_redis()


def get_startup_info() -> Dict[str, Any]:
    """
    Obtiene información sobre el estado del startup.

    Returns:
        Dict: Información del startup
    """
    return {
        "app_name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "debug": settings.DEBUG,
        "features": {
            "retry_scheduler": settings.ENABLE_RETRY_SCHEDULER,
            "rate_limiting": settings.ENABLE_RATE_LIMITING,
        },
        "services": {
            "redis_enabled": bool(settings.REDIS_URL),
            "prodigi_configured": bool(settings.PRODIGI_API_KEY),
            "gelato_configured": bool(settings.GELATO_API_KEY),
            "stripe_configured": bool(settings.STRIPE_SECRET_KEY),
            "openai_configured": bool(settings.OPENAI_API_KEY),
        },
    }
