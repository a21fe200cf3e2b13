"""
Cliente HTTP base para la API v4 de Prodigi.

Gestiona la sesión aiohttp, el intervalo mínimo entre requests, el cache
en memoria de respuestas GET y los reintentos con backoff exponencial.
Los recursos (orders, quotes, products) se construyen sobre este cliente.
"""

import asyncio
import json
import logging
import random
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import aiohttp
from aiohttp import ClientTimeout

from app.core.config import get_settings
from app.core.logging_config import log_api_call
from app.services.prodigi.constants import (
    API_URLS,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_TIMEOUT_SECONDS,
    MAX_RETRY_DELAY_MS,
    RETRYABLE_STATUS_CODES,
)
from app.services.prodigi.errors import (
    ProdigiAPIError,
    ProdigiNetworkError,
    ProdigiRateLimitError,
    ProdigiTimeoutError,
    parse_prodigi_error,
)
from app.utils.error_handler import ProdigiAPIException

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = ("apikey", "api_key", "password", "token", "secret")


def build_url(base_url: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Agrega los parámetros no nulos como query string."""
    if not params:
        return base_url
    filtered = {key: str(value) for key, value in params.items() if value is not None}
    return f"{base_url}?{urlencode(filtered)}" if filtered else base_url


def calculate_retry_delay(attempt: int, base_delay_ms: int = DEFAULT_RETRY_DELAY_MS) -> float:
    """
    Delay en milisegundos para el intento ``attempt`` (1-based).

    ``base * 2**(attempt-1)`` más hasta 1 segundo de jitter, con tope de 30 s.
    """
    exponential = base_delay_ms * (2 ** (attempt - 1))
    return min(exponential + random.random() * 1000, MAX_RETRY_DELAY_MS)


def sanitize_for_logging(data: Any) -> Any:
    if not isinstance(data, dict):
        return data
    sanitized = dict(data)
    for key in sanitized:
        if any(sensitive in key.lower() for sensitive in SENSITIVE_KEYS):
            sanitized[key] = "[REDACTED]"
        elif key == "email" and sanitized[key]:
            sanitized[key] = "[EMAIL]"
    return sanitized


class ProdigiClient:
    """
    Cliente base para la API REST de Prodigi.

    Provee el transporte común (autenticación por ``X-API-Key``, timeouts,
    cache de GET, rate limiting y reintentos) que usan los recursos.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        environment: Optional[str] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
        callback_url: Optional[str] = None,
        enable_cache: bool = True,
        cache_ttl: Optional[int] = None,
        min_request_interval: Optional[float] = None,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.PRODIGI_API_KEY
        if not self.api_key:
            raise ValueError("Prodigi API key is required")

        self.environment = environment or settings.PRODIGI_ENVIRONMENT
        self.base_url = API_URLS[self.environment]
        self.timeout = timeout or settings.PRODIGI_TIMEOUT or DEFAULT_TIMEOUT_SECONDS
        self.retries = retries if retries is not None else settings.PRODIGI_MAX_RETRIES
        self.retry_delay_ms = retry_delay_ms or settings.PRODIGI_RETRY_DELAY_MS or DEFAULT_RETRY_DELAY_MS
        self.callback_url = callback_url or settings.PRODIGI_CALLBACK_URL
        self.enable_cache = enable_cache
        self.cache_ttl = cache_ttl or settings.PRODIGI_CACHE_TTL or DEFAULT_CACHE_TTL_SECONDS
        self.user_agent = f"{settings.APP_NAME}/{settings.APP_VERSION}"

        # Session and rate limiting
        self.session: Optional[aiohttp.ClientSession] = None
        self._last_request_time = 0.0
        self._min_request_interval = (
            min_request_interval if min_request_interval is not None else settings.PRODIGI_MIN_REQUEST_INTERVAL
        )

        # url -> (expires_at, data)
        self._cache: Dict[str, tuple] = {}

        logger.info(
            f"Initialized Prodigi client ({self.environment}) for {self.base_url} "
            f"timeout={self.timeout}s retries={self.retries} cache={self.enable_cache}"
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=ClientTimeout(total=self.timeout, connect=10),
                connector=aiohttp.TCPConnector(limit=50, limit_per_host=20),
                headers={
                    "X-API-Key": self.api_key,
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                    "User-Agent": self.user_agent,
                },
            )
        return self.session

    async def close(self):
        """Close the HTTP session and clean up resources."""
        if self.session:
            await self.session.close()
            self.session = None
            logger.info("Prodigi client closed")

    async def request(
        self,
        method: str,
        endpoint: str,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
        timeout: Optional[float] = None,
        use_cache: bool = True,
    ) -> Dict[str, Any]:
        """
        Ejecuta un request contra Prodigi.

        Args:
            method: Método HTTP
            endpoint: Ruta relativa (``/Orders``, ``/quotes``...)
            body: Cuerpo JSON
            params: Query params; los valores None se omiten
            idempotency_key: Header ``Idempotency-Key``
            timeout: Timeout específico en segundos
            use_cache: Leer y guardar GETs en el cache de respuestas

        Returns:
            Dict: Respuesta JSON; si trae ``order`` se devuelve ese objeto

        Raises:
            ProdigiAPIException: Si el request falla tras los reintentos
        """
        method = method.upper()
        url = build_url(f"{self.base_url}{endpoint}", params)
        cacheable = method == "GET" and use_cache and self.enable_cache

        if cacheable:
            cached = self._cache_get(url)
            if cached is not None:
                logger.debug(f"Prodigi cache hit: {url}")
                return cached

        await self._check_rate_limit()

        attempt = 1
        while True:
            try:
                data = await self._execute_request(method, url, endpoint, body, idempotency_key, timeout)
                if cacheable:
                    self._cache[url] = (time.time() + self.cache_ttl, data)
                return data

            except ProdigiAPIException as e:
                if not self._should_retry(e, attempt):
                    logger.error(f"❌ Prodigi {method} {endpoint} failed after {attempt} attempt(s): {e.message}")
                    raise

                delay_ms = calculate_retry_delay(attempt, self.retry_delay_ms)
                if isinstance(e, ProdigiRateLimitError) and e.retry_after:
                    delay_ms = min(max(delay_ms, e.retry_after * 1000), MAX_RETRY_DELAY_MS)

                logger.warning(
                    f"🔄 Retrying Prodigi {method} {endpoint} in {delay_ms / 1000:.1f}s "
                    f"(attempt {attempt}/{self.retries}): {e.message}"
                )
                await asyncio.sleep(delay_ms / 1000)
                attempt += 1

    async def _execute_request(
        self,
        method: str,
        url: str,
        endpoint: str,
        body: Optional[Dict[str, Any]],
        idempotency_key: Optional[str],
        timeout: Optional[float],
    ) -> Dict[str, Any]:
        session = await self._get_session()
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        request_timeout = ClientTimeout(total=timeout) if timeout else None
        effective_timeout = timeout or self.timeout

        if body:
            logger.debug(f"{method} {url} body={sanitize_for_logging(body)}")

        started = time.time()
        try:
            async with session.request(
                method, url, json=body, headers=headers, timeout=request_timeout
            ) as response:
                self._last_request_time = time.time()
                raw_text = await response.text()
                log_api_call(method, endpoint, response.status, time.time() - started, provider="prodigi")

                if response.status >= 400:
                    data = self._parse_json(raw_text) or {}
                    logger.error(f"❌ Prodigi {method} {endpoint} - {response.status}: {raw_text[:500]}")
                    raise parse_prodigi_error(
                        response.status,
                        response.headers,
                        data,
                        response.reason or "",
                        endpoint,
                        method,
                        raw_text,
                    )

                logger.debug(f"✅ Prodigi {method} {endpoint} - {response.status}")

                if not raw_text:
                    return {}

                data = self._parse_json(raw_text)
                if data is None:
                    raise ProdigiAPIError(
                        "Failed to parse response",
                        response.status,
                        response.reason,
                        {"body": raw_text[:500]},
                        response.headers.get("traceparent"),
                        endpoint,
                        method,
                    )

                if isinstance(data, dict) and isinstance(data.get("order"), dict):
                    return data["order"]
                return data

        except asyncio.TimeoutError as e:
            raise ProdigiTimeoutError(effective_timeout) from e
        except aiohttp.ClientError as e:
            raise ProdigiNetworkError(f"Network error: {str(e)}", e) from e

    @staticmethod
    def _parse_json(raw_text: str) -> Optional[Any]:
        try:
            return json.loads(raw_text)
        except ValueError:
            return None

    def _should_retry(self, error: ProdigiAPIException, attempt: int) -> bool:
        if attempt >= self.retries:
            return False
        if isinstance(error, (ProdigiTimeoutError, ProdigiNetworkError)):
            return True
        return error.api_response_code in RETRYABLE_STATUS_CODES

    async def _check_rate_limit(self):
        """
        Implement basic rate limiting to avoid overwhelming Prodigi's API.
        """
        time_since_last_request = time.time() - self._last_request_time

        if time_since_last_request < self._min_request_interval:
            await asyncio.sleep(self._min_request_interval - time_since_last_request)

    def _cache_get(self, url: str) -> Optional[Any]:
        entry = self._cache.get(url)
        if entry is None:
            return None
        expires_at, data = entry
        if time.time() > expires_at:
            del self._cache[url]
            return None
        return data

    def clear_cache(self):
        self._cache.clear()
        logger.info("Prodigi cache cleared")

    def get_cache_stats(self) -> Dict[str, Any]:
        now = time.time()
        for url in [url for url, (expires_at, _) in self._cache.items() if now > expires_at]:
            del self._cache[url]
        return {"size": len(self._cache), "enabled": self.enable_cache}

    def get_config(self) -> Dict[str, Any]:
        return {
            "environment": self.environment,
            "baseUrl": self.base_url,
            "timeout": self.timeout,
            "retries": self.retries,
            "cacheEnabled": self.enable_cache,
        }

    def __repr__(self):
        return (
            f"ProdigiClient("
            f"environment='{self.environment}', "
            f"base_url='{self.base_url}', "
            f"initialized={self.session is not None})"
        )
