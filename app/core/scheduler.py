"""
Scheduler de reintentos de pedidos.

Loop de fondo que barre las operaciones pendientes de ``retry_operations``
cada ``RETRY_SWEEP_INTERVAL_SECONDS`` y una vez al día, a la hora
``RETRY_CLEANUP_HOUR`` de ``RETRY_CLEANUP_TIMEZONE``, elimina las
operaciones terminadas antiguas.
"""

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional

import pytz

from app.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# Global scheduler state
_scheduler_running = False
_scheduler_task: Optional[asyncio.Task] = None
_retry_manager = None
_last_cleanup_date: Optional[date] = None
_last_sweep_at: Optional[datetime] = None
_last_sweep_result: Optional[Dict[str, Any]] = None


async def start_scheduler(retry_manager=None):
    """
    Inicia el loop de reintentos.

    Args:
        retry_manager: ``OrderRetryManager`` a usar (por defecto el global)
    """
    global _scheduler_running, _scheduler_task, _retry_manager

    if _scheduler_running:
        logger.warning("Scheduler ya está ejecutándose")
        return

    logger.info(f"🕒 Iniciando scheduler de reintentos cada {settings.RETRY_SWEEP_INTERVAL_SECONDS}s")

    if retry_manager is None:
        from app.services.order_retry import get_order_retry_manager

        retry_manager = get_order_retry_manager()

    _retry_manager = retry_manager
    _scheduler_running = True
    _scheduler_task = asyncio.create_task(_scheduler_loop())

    logger.info("✅ Scheduler iniciado correctamente")


async def stop_scheduler():
    """
    Detiene el loop de reintentos.
    """
    global _scheduler_running, _scheduler_task

    if not _scheduler_running:
        logger.info("Scheduler no está ejecutándose")
        return

    logger.info("🛑 Deteniendo scheduler")
    _scheduler_running = False

    if _scheduler_task and not _scheduler_task.done():
        _scheduler_task.cancel()
        try:
            await _scheduler_task
        except asyncio.CancelledError:
            pass

    _scheduler_task = None
    logger.info("✅ Scheduler detenido correctamente")


async def _scheduler_loop():
    """
    Loop principal: barrido de pendientes y limpieza diaria.
    """
    while _scheduler_running:
        try:
            await run_retry_sweep()
            await _check_scheduled_cleanup()
            await asyncio.sleep(settings.RETRY_SWEEP_INTERVAL_SECONDS)

        except asyncio.CancelledError:
            logger.info("Loop del scheduler cancelado")
            break
        except Exception as e:
            logger.error(f"Error en loop del scheduler: {e}")
            # Continuar ejecutándose a pesar del error
            await asyncio.sleep(settings.RETRY_SWEEP_INTERVAL_SECONDS)


async def run_retry_sweep() -> Dict[str, Any]:
    """
    Procesa las operaciones pendientes vencidas.

    Returns:
        Dict: ``{processed, failed, errors}``
    """
    global _last_sweep_at, _last_sweep_result

    result = await _retry_manager.process_pending_operations()
    _last_sweep_at = datetime.now(timezone.utc)
    _last_sweep_result = result
    return result


async def _check_scheduled_cleanup():
    """
    Ejecuta la limpieza diaria dentro de la hora configurada.
    """
    global _last_cleanup_date

    tz = pytz.timezone(settings.RETRY_CLEANUP_TIMEZONE)
    current_time = datetime.now(tz)
    current_date = current_time.date()

    if current_time.hour != settings.RETRY_CLEANUP_HOUR:
        return

    # Verificar si ya se ejecutó hoy
    if _last_cleanup_date == current_date:
        return

    logger.info(f"🌙 Limpieza programada de reintentos ({current_time.strftime('%Y-%m-%d %H:%M:%S %Z')})")
    await _retry_manager.cleanup_old_operations()
    _last_cleanup_date = current_date


def get_scheduler_status() -> Dict[str, Any]:
    """
    Obtiene el estado actual del scheduler.

    Returns:
        Dict: Información del estado
    """
    return {
        "running": _scheduler_running,
        "task_active": _scheduler_task is not None and not _scheduler_task.done(),
        "sweep_interval_seconds": settings.RETRY_SWEEP_INTERVAL_SECONDS,
        "last_sweep_at": _last_sweep_at.isoformat() if _last_sweep_at else None,
        "last_sweep_result": _last_sweep_result,
        "cleanup_schedule": {
            "hour": settings.RETRY_CLEANUP_HOUR,
            "timezone": settings.RETRY_CLEANUP_TIMEZONE,
            "last_cleanup_date": _last_cleanup_date.isoformat() if _last_cleanup_date else None,
            "next_cleanup_estimate": _get_next_cleanup_time(),
        },
    }


def _get_next_cleanup_time() -> Optional[str]:
    """
    Calcula la próxima limpieza programada.

    Returns:
        Optional[str]: Fecha ISO o None si la zona horaria es inválida
    """
    try:
        tz = pytz.timezone(settings.RETRY_CLEANUP_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        logger.error(f"Zona horaria inválida: {settings.RETRY_CLEANUP_TIMEZONE}")
        return None

    now = datetime.now(tz)
    next_cleanup = now.replace(hour=settings.RETRY_CLEANUP_HOUR, minute=0, second=0, microsecond=0)
    if now >= next_cleanup:
        next_cleanup = next_cleanup + timedelta(days=1)
    return next_cleanup.isoformat()
