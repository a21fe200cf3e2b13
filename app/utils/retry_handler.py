"""
Reintentos con backoff exponencial y circuit breaker para APIs de proveedores.

Lo usa el cliente de Gelato (backup de fulfillment). Prodigi mantiene su
propio ciclo de reintentos dentro de ``ProdigiClient``.
"""

import asyncio
import logging
import random
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type

from app.utils.error_handler import AppException, ErrorCode, GelatoAPIException, RateLimitException

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class RetryPolicy:
    """
    Cuándo y cada cuánto reintentar.

    Las ``AppException`` deciden por su flag ``is_retryable``; el resto
    de excepciones solo se reintentan si están en ``retry_on``.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    retry_on: List[Type[Exception]] = field(default_factory=lambda: [AppException])
    stop_on: List[Type[Exception]] = field(default_factory=list)

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        if attempt >= self.max_attempts:
            return False
        if isinstance(exception, tuple(self.stop_on)):
            return False
        if isinstance(exception, AppException):
            return exception.is_retryable
        return isinstance(exception, tuple(self.retry_on))

    def calculate_delay(self, attempt: int, exception: Optional[Exception] = None) -> float:
        """
        Segundos a esperar antes del intento ``attempt + 1``.

        Un ``retry_after`` informado por el proveedor (429) reemplaza al
        backoff, acotado por ``max_delay``.
        """
        retry_after = getattr(exception, "retry_after", None)
        if retry_after:
            return min(float(retry_after), self.max_delay)

        delay = self.base_delay * self.exponential_base ** (attempt - 1)
        if self.jitter:
            delay *= random.uniform(0.9, 1.1)

        return max(0.0, min(delay, self.max_delay))


class CircuitBreaker:
    """
    Corta las llamadas a un proveedor tras ``failure_threshold`` fallas
    consecutivas y vuelve a probar pasado ``reset_timeout`` segundos.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        success_threshold: int = 3,
        timeout: float = 60.0,
        reset_timeout: float = 300.0,
    ):
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.timeout = timeout
        self.reset_timeout = reset_timeout

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self._opened_at: Optional[float] = None
        self.last_failure: Optional[datetime] = None

    def can_execute(self) -> bool:
        if self.state != CircuitState.OPEN:
            return True

        if self._opened_at is not None and time.monotonic() - self._opened_at >= self.reset_timeout:
            self.state = CircuitState.HALF_OPEN
            self.success_count = 0
            logger.info("🟡 Circuit breaker HALF_OPEN - probando proveedor")
            return True

        return False

    def record_success(self) -> None:
        self.failure_count = 0
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self.state = CircuitState.CLOSED
                logger.info("🟢 Circuit breaker CLOSED - proveedor recuperado")

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure = datetime.now(timezone.utc)

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != CircuitState.OPEN:
                logger.warning(f"🔴 Circuit breaker OPEN - {self.failure_count} fallas consecutivas")
            self.state = CircuitState.OPEN
            self._opened_at = time.monotonic()

    def get_state_info(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "last_failure": self.last_failure.isoformat() if self.last_failure else None,
        }


class RetryHandler:
    """
    Ejecuta llamadas a un proveedor aplicando ``RetryPolicy`` y, opcionalmente,
    un ``CircuitBreaker`` con timeout por intento.
    """

    def __init__(
        self,
        name: str,
        retry_policy: Optional[RetryPolicy] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        enable_circuit_breaker: bool = True,
    ):
        self.name = name
        self.retry_policy = retry_policy or RetryPolicy()
        self.circuit_breaker = (circuit_breaker or CircuitBreaker()) if enable_circuit_breaker else None
        self.metrics: Counter = Counter()

    async def execute(self, func: Callable, *args, context: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        """
        Ejecuta ``func`` con reintentos.

        Args:
            func: Función (async o sync) a ejecutar
            context: Datos extra para los logs (ej. orderReference)

        Returns:
            Any: Resultado de la función

        Raises:
            AppException: Circuito abierto (503) o timeout (504)
            Exception: La última excepción si se agotan los intentos
        """
        context = context or {}
        breaker = self.circuit_breaker

        if breaker and not breaker.can_execute():
            raise AppException(
                message=f"Circuit breaker is OPEN for {self.name}",
                error_code=ErrorCode.SERVICE_UNAVAILABLE,
                details={"circuit": breaker.get_state_info(), "context": context},
                status_code=503,
            )

        attempts = self.retry_policy.max_attempts
        last_exception: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            self.metrics["total_attempts"] += 1
            try:
                call = self._call(func, *args, **kwargs)
                result = await (asyncio.wait_for(call, timeout=breaker.timeout) if breaker else call)
            except asyncio.TimeoutError:
                last_exception = AppException(
                    message=f"Operation {self.name} timed out",
                    status_code=504,
                    is_retryable=True,
                    details={"context": context},
                )
            except Exception as e:
                last_exception = e
            else:
                self.metrics["total_successes"] += 1
                if breaker:
                    breaker.record_success()
                return result

            self.metrics["total_failures"] += 1
            if breaker:
                breaker.record_failure()

            if not self.retry_policy.should_retry(last_exception, attempt):
                if attempt < attempts:
                    logger.warning(f"⚠️ {self.name}: no se reintenta {type(last_exception).__name__}: {last_exception}")
                break

            delay = self.retry_policy.calculate_delay(attempt, last_exception)
            self.metrics["total_retries"] += 1
            logger.info(f"🔄 {self.name}: reintento {attempt + 1}/{attempts} en {delay:.2f}s - {last_exception}")
            await asyncio.sleep(delay)

        logger.error(f"❌ {self.name}: fallaron todos los intentos - {last_exception}", extra={"context": context})
        raise last_exception  # type: ignore[misc]

    @staticmethod
    async def _call(func: Callable, *args, **kwargs) -> Any:
        if asyncio.iscoroutinefunction(func):
            return await func(*args, **kwargs)
        return func(*args, **kwargs)

    def get_metrics(self) -> Dict[str, Any]:
        metrics: Dict[str, Any] = {
            "handler_name": self.name,
            "total_attempts": self.metrics["total_attempts"],
            "total_successes": self.metrics["total_successes"],
            "total_failures": self.metrics["total_failures"],
            "total_retries": self.metrics["total_retries"],
        }
        if self.circuit_breaker:
            metrics["circuit_breaker"] = self.circuit_breaker.get_state_info()
        return metrics


def create_gelato_retry_handler() -> RetryHandler:
    return RetryHandler(
        name="gelato_api",
        retry_policy=RetryPolicy(
            max_attempts=3,
            base_delay=1.0,
            max_delay=30.0,
            retry_on=[GelatoAPIException, RateLimitException],
        ),
        circuit_breaker=CircuitBreaker(failure_threshold=5, success_threshold=2, timeout=60.0, reset_timeout=120.0),
    )


GELATO_RETRY_HANDLER = create_gelato_retry_handler()


def get_handler(service: str) -> RetryHandler:
    """Handler global del servicio o uno nuevo con la política por defecto."""
    handlers = {"gelato": GELATO_RETRY_HANDLER}
    return handlers.get(service.lower(), RetryHandler(name=service))
