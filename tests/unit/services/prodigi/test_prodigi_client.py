"""Tests unitarios para el cliente HTTP de Prodigi y sus errores."""

from unittest.mock import AsyncMock, patch

import pytest

from app.services.prodigi.client import ProdigiClient, build_url, calculate_retry_delay, sanitize_for_logging
from app.services.prodigi.errors import (
    ProdigiAPIError,
    ProdigiNetworkError,
    ProdigiNotFoundError,
    ProdigiRateLimitError,
    ProdigiValidationError,
    is_retryable_error,
    parse_prodigi_error,
    parse_retry_after,
)


def make_client(**kwargs) -> ProdigiClient:
    return ProdigiClient(api_key="test-key", environment="sandbox", min_request_interval=0, **kwargs)


class TestHelpers:
    """Tests para las funciones auxiliares del cliente."""

    def test_build_url_skips_none(self):
        assert build_url("https://x/Orders", {"Top": 1, "Status": None}) == "https://x/Orders?Top=1"
        assert build_url("https://x/Orders", {"Status": None}) == "https://x/Orders"

    def test_retry_delay_grows_and_caps(self):
        """Debe crecer exponencialmente con tope de 30 segundos."""
        with patch("app.services.prodigi.client.random.random", return_value=0):
            assert calculate_retry_delay(1, 1000) == 1000
            assert calculate_retry_delay(3, 1000) == 4000
            assert calculate_retry_delay(10, 1000) == 30000

    def test_sanitize_for_logging(self):
        """Debe ocultar credenciales y emails."""
        result = sanitize_for_logging({"apiKey": "k", "email": "a@b.c", "sku": "X"})
        assert result == {"apiKey": "[REDACTED]", "email": "[EMAIL]", "sku": "X"}

    def test_requires_api_key(self):
        """Debe fallar sin API key."""
        with patch("app.services.prodigi.client.get_settings") as mock_settings:
            mock_settings.return_value.PRODIGI_API_KEY = None
            with pytest.raises(ValueError):
                ProdigiClient()


class TestErrorParsing:
    """Tests para la conversión de respuestas de error."""

    def test_retry_after_priority(self):
        """Debe priorizar header, luego cuerpo, luego texto y por último 30s."""
        assert parse_retry_after({"Retry-After": "12"}, {"retryAfter": 5}) == 12
        assert parse_retry_after({}, {"retryAfter": 5}) == 5
        assert parse_retry_after({}, {}, "maximum admitted 30 per 60s") == 60
        assert parse_retry_after({}, {}) == 30

    def test_status_mapping(self):
        """Debe devolver la excepción tipada según el status."""
        assert isinstance(parse_prodigi_error(404, {}, {}, endpoint="/Orders/ord_1"), ProdigiNotFoundError)
        assert isinstance(parse_prodigi_error(422, {}, {"statusText": "bad"}), ProdigiValidationError)
        assert isinstance(parse_prodigi_error(429, {"Retry-After": "3"}, {}), ProdigiRateLimitError)
        error = parse_prodigi_error(500, {}, {"message": "boom"})
        assert type(error) is ProdigiAPIError
        assert error.message == "boom"

    def test_validation_errors_are_kept(self):
        error = parse_prodigi_error(400, {}, {"statusText": "Invalid", "data": {"errors": [{"property": "sku"}]}})
        assert error.validation_errors == [{"property": "sku"}]
        assert error.status_code == 400

    def test_rate_limit_error(self):
        error = parse_prodigi_error(429, {"Retry-After": "7"}, {})
        assert error.retry_after == 7
        assert error.status_code == 429

    def test_is_retryable_error(self):
        assert is_retryable_error(ProdigiNetworkError("down"))
        assert is_retryable_error(ProdigiAPIError("boom", 503))
        assert not is_retryable_error(ProdigiValidationError("bad"))
        assert not is_retryable_error(ValueError("x"))


class TestRequestRetries:
    """Tests para los reintentos del cliente."""

    @pytest.mark.asyncio
    async def test_retries_server_errors_then_succeeds(self):
        """Debe reintentar errores 5xx y devolver la respuesta exitosa."""
        client = make_client(retries=3)
        client._execute_request = AsyncMock(side_effect=[ProdigiAPIError("boom", 502), {"id": "ord_1"}])

        with patch("app.services.prodigi.client.asyncio.sleep", new=AsyncMock()) as mock_sleep:
            result = await client.request("POST", "/Orders", body={"a": 1})

        assert result == {"id": "ord_1"}
        assert client._execute_request.await_count == 2
        mock_sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_does_not_retry_validation_errors(self):
        """Debe propagar errores 400 sin reintentar."""
        client = make_client(retries=3)
        client._execute_request = AsyncMock(side_effect=ProdigiValidationError("bad"))

        with patch("app.services.prodigi.client.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(ProdigiValidationError):
                await client.request("POST", "/Orders", body={})

        assert client._execute_request.await_count == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        """Debe propagar el último error al agotar los intentos."""
        client = make_client(retries=2)
        client._execute_request = AsyncMock(side_effect=ProdigiNetworkError("down"))

        with patch("app.services.prodigi.client.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(ProdigiNetworkError):
                await client.request("GET", "/Orders/ord_1")

        assert client._execute_request.await_count == 2

    @pytest.mark.asyncio
    async def test_get_responses_are_cached(self):
        """Debe servir un GET repetido desde el cache."""
        client = make_client()
        client._execute_request = AsyncMock(return_value={"sku": "GLOBAL-CAN-10x10"})

        first = await client.request("GET", "/products/GLOBAL-CAN-10x10")
        second = await client.request("GET", "/products/GLOBAL-CAN-10x10")

        assert first == second
        assert client._execute_request.await_count == 1
        assert client.get_cache_stats()["size"] == 1

        client.clear_cache()
        assert client.get_cache_stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_uncached_get_always_hits_api(self):
        """Debe consultar la API en cada GET con use_cache=False."""
        client = make_client()
        client._execute_request = AsyncMock(
            side_effect=[{"id": "ord_1", "status": {"stage": "InProgress"}}, {"id": "ord_1", "status": {"stage": "Complete"}}]
        )

        first = await client.request("GET", "/Orders/ord_1", use_cache=False)
        second = await client.request("GET", "/Orders/ord_1", use_cache=False)

        assert first["status"]["stage"] == "InProgress"
        assert second["status"]["stage"] == "Complete"
        assert client._execute_request.await_count == 2
        assert client.get_cache_stats()["size"] == 0
