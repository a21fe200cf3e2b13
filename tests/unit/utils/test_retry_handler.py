"""
Tests unitarios para RetryHandler, RetryPolicy y CircuitBreaker.
"""

from unittest.mock import AsyncMock, patch

import pytest

from app.utils.error_handler import AppException, GelatoAPIException, ValidationException
from app.utils.retry_handler import (
    GELATO_RETRY_HANDLER,
    CircuitBreaker,
    CircuitState,
    RetryHandler,
    RetryPolicy,
    get_handler,
)


def fast_handler(max_attempts=3, circuit_breaker=None, enable_circuit_breaker=False):
    return RetryHandler(
        "test",
        RetryPolicy(max_attempts=max_attempts, base_delay=0, jitter=False),
        circuit_breaker=circuit_breaker,
        enable_circuit_breaker=enable_circuit_breaker,
    )


class TestRetryPolicy:
    def test_retryable_app_exceptions(self):
        """Debe respetar is_retryable de AppException."""
        policy = RetryPolicy(max_attempts=3)

        assert policy.should_retry(GelatoAPIException("down", api_response_code=503), 1) is True
        assert policy.should_retry(GelatoAPIException("bad", api_response_code=400), 1) is False
        assert policy.should_retry(GelatoAPIException("down", api_response_code=503), 3) is False

    def test_retry_on_and_stop_on(self):
        """Debe reintentar solo las excepciones listadas y parar en stop_on."""
        policy = RetryPolicy(retry_on=[ConnectionError], stop_on=[ValueError])

        assert policy.should_retry(ConnectionError("reset"), 1) is True
        assert policy.should_retry(ValueError("bad"), 1) is False
        assert policy.should_retry(KeyError("x"), 1) is False

    def test_exponential_delay_capped(self):
        """Debe crecer exponencialmente sin superar max_delay."""
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=False)

        assert [policy.calculate_delay(attempt) for attempt in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]

    def test_retry_after_takes_priority(self):
        """Debe usar Retry-After del proveedor cuando existe."""
        policy = RetryPolicy(base_delay=1.0, max_delay=60.0, jitter=False)
        error = GelatoAPIException("slow down", api_response_code=429, rate_limited=True, retry_after=7)

        assert policy.calculate_delay(1, error) == 7


class TestCircuitBreaker:
    def test_opens_after_threshold(self):
        """Debe abrirse tras las fallas consecutivas configuradas."""
        breaker = CircuitBreaker(failure_threshold=2, reset_timeout=300)

        breaker.record_failure()
        assert breaker.can_execute() is True
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.can_execute() is False

    def test_half_open_then_closed(self):
        """Debe pasar a half-open tras el reset y cerrarse con éxitos."""
        breaker = CircuitBreaker(failure_threshold=1, success_threshold=1, reset_timeout=0)
        breaker.record_failure()

        assert breaker.can_execute() is True
        assert breaker.state == CircuitState.HALF_OPEN

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED


class TestRetryHandler:
    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        """Debe reintentar errores retryables y devolver el resultado."""
        func = AsyncMock(side_effect=[GelatoAPIException("down", api_response_code=503), {"id": "g-1"}])
        handler = fast_handler()

        with patch("app.utils.retry_handler.asyncio.sleep", new=AsyncMock()):
            result = await handler.execute(func, "arg", context={"op": "create"})

        assert result == {"id": "g-1"}
        assert func.await_count == 2
        metrics = handler.get_metrics()
        assert metrics["total_retries"] == 1
        assert metrics["total_successes"] == 1

    @pytest.mark.asyncio
    async def test_non_retryable_error_raises_immediately(self):
        """No debe reintentar errores de validación."""
        func = AsyncMock(side_effect=ValidationException("bad input"))
        handler = fast_handler()

        with pytest.raises(ValidationException):
            await handler.execute(func)

        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_exhausted_attempts_raise_last_error(self):
        """Debe propagar la última excepción al agotar intentos."""
        func = AsyncMock(side_effect=GelatoAPIException("down", api_response_code=502))
        handler = fast_handler(max_attempts=2)

        with patch("app.utils.retry_handler.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(GelatoAPIException):
                await handler.execute(func)

        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self):
        """Debe fallar con 503 sin ejecutar cuando el circuito está abierto."""
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=300)
        breaker.record_failure()
        handler = fast_handler(circuit_breaker=breaker, enable_circuit_breaker=True)
        func = AsyncMock()

        with pytest.raises(AppException) as exc_info:
            await handler.execute(func)

        assert exc_info.value.status_code == 503
        func.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sync_functions_are_supported(self):
        """Debe ejecutar también funciones síncronas."""
        assert await fast_handler().execute(lambda value: value * 2, 21) == 42

    def test_get_handler(self):
        """Debe devolver el handler global de Gelato y crear uno para otros servicios."""
        assert get_handler("Gelato") is GELATO_RETRY_HANDLER
        assert get_handler("other").name == "other"
