"""
Middleware de la aplicación FastAPI.

- CORS para el frontend de la tienda
- TrustedHost (producción)
- Request logging con request id propagado a los logs
- Security headers
- Rate limiting por usuario o IP, con un límite propio para el chat del studio
"""

import logging
import time
import uuid
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Deque, Dict, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.logging_config import request_id_var

settings = get_settings()
logger = logging.getLogger(__name__)

# Webhooks (los proveedores reintentan por su cuenta) y health checks
RATE_LIMIT_EXEMPT_PREFIXES = ("/api/webhooks/", "/health")
STUDIO_CHAT_PATH = "/api/studio/chat"

RATE_LIMIT_WINDOW_SECONDS = 60

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
}


class SlidingWindowLimiter:
    """
    Limitador en memoria con ventana deslizante por clave.

    Cada proceso lleva su propia cuenta; con varios workers el límite
    efectivo se multiplica por el número de workers.
    """

    def __init__(self, limit: int, window_seconds: int = RATE_LIMIT_WINDOW_SECONDS):
        self.limit = limit
        self.window_seconds = window_seconds
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)

    def hit(self, key: str, now: Optional[float] = None) -> Tuple[bool, int, int]:
        """
        Registra un request para ``key``.

        Args:
            key: Usuario o IP
            now: Timestamp actual (por defecto ``time.time()``)

        Returns:
            Tuple[bool, int, int]: (permitido, restantes, reset epoch)
        """
        now = time.time() if now is None else now
        hits = self._hits[key]
        while hits and hits[0] <= now - self.window_seconds:
            hits.popleft()

        reset_at = int((hits[0] if hits else now) + self.window_seconds)
        if len(hits) >= self.limit:
            return False, 0, reset_at

        hits.append(now)
        return True, self.limit - len(hits), reset_at

    def prune(self, now: Optional[float] = None) -> None:
        """Elimina las claves sin requests dentro de la ventana."""
        now = time.time() if now is None else now
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= now - self.window_seconds]
        for key in stale:
            del self._hits[key]


def configure_cors_middleware(app: FastAPI) -> None:
    """
    CORS para el frontend (``PUBLIC_APP_URL``) y los hosts configurados.

    Args:
        app: Instancia de FastAPI
    """
    allowed_origins = [settings.PUBLIC_APP_URL, *(settings.ALLOWED_HOSTS or [])] if not settings.DEBUG else ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=not settings.DEBUG,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Accept", "Content-Type", "Authorization", "X-User-Id", "X-Request-ID"],
        expose_headers=["X-Process-Time", "X-Request-ID", "X-Rate-Limit-Remaining", "X-Rate-Limit-Reset"],
    )

    logger.info(f"✅ CORS configurado - Origins permitidos: {allowed_origins}")


def configure_trusted_host_middleware(app: FastAPI) -> None:
    if settings.DEBUG or not settings.ALLOWED_HOSTS:
        return

    allowed_hosts = settings.ALLOWED_HOSTS + ["localhost", "127.0.0.1"]
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts)
    logger.info(f"✅ TrustedHost configurado - Hosts permitidos: {allowed_hosts}")


def configure_request_logging_middleware(app: FastAPI) -> None:
    """
    Loggea cada request con su request id, usuario y duración.

    El id llega en ``X-Request-ID`` o se genera; queda en
    ``request.state.request_id`` y en el contexto de logging.

    Args:
        app: Instancia de FastAPI
    """

    @app.middleware("http")
    async def log_requests_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        start_time = time.time()
        path = request.url.path
        quiet = path.startswith("/health")
        user_id = request.headers.get("X-User-Id") or "anonymous"

        if not quiet:
            logger.info(f"📨 [{request_id}] {request.method} {path} - User: {user_id} - Client: {get_client_ip(request)}")

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"❌ [{request_id}] {request.method} {path} - Error: {e} - Time: {time.time() - start_time:.3f}s"
            )
            raise
        finally:
            request_id_var.reset(token)

        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = f"{process_time:.3f}"
        response.headers["X-Request-ID"] = request_id

        if not quiet:
            logger.info(
                f"{get_status_emoji(response.status_code)} [{request_id}] {request.method} {path} - "
                f"Status: {response.status_code} - Time: {process_time:.3f}s"
            )
        if process_time > settings.SLOW_REQUEST_THRESHOLD:
            logger.warning(f"🐌 [{request_id}] Slow request {path}: {process_time:.3f}s")

        return response


def configure_security_headers_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        response = await call_next(request)
        response.headers.update(SECURITY_HEADERS)

        # HSTS solo en producción con HTTPS
        if not settings.DEBUG and request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


def configure_rate_limiting_middleware(app: FastAPI) -> None:
    """
    Rate limiting por usuario autenticado (``X-User-Id``) o por IP.

    El chat del studio tiene su propio límite, más bajo.

    Args:
        app: Instancia de FastAPI
    """
    if not settings.ENABLE_RATE_LIMITING:
        return

    limiters = {
        "api": SlidingWindowLimiter(settings.RATE_LIMIT_PER_MINUTE),
        "studio": SlidingWindowLimiter(settings.STUDIO_RATE_LIMIT_PER_MINUTE),
    }
    last_prune = {"at": time.time()}

    @app.middleware("http")
    async def rate_limiting_middleware(request: Request, call_next):
        path = request.url.path
        if path.startswith(RATE_LIMIT_EXEMPT_PREFIXES) or request.method == "OPTIONS":
            return await call_next(request)

        now = time.time()
        if now - last_prune["at"] > 300:
            for limiter in limiters.values():
                limiter.prune(now)
            last_prune["at"] = now

        limiter = limiters["studio"] if path == STUDIO_CHAT_PATH else limiters["api"]
        key = get_rate_limit_key(request)
        allowed, remaining, reset_at = limiter.hit(key, now)

        if not allowed:
            retry_after = max(1, reset_at - int(now))
            logger.warning(f"🚫 Rate limit exceeded for {key} on {path}")
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Rate limit exceeded",
                    "message": f"Maximum {limiter.limit} requests per minute allowed",
                    "retry_after": retry_after,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
                headers={
                    "Retry-After": str(retry_after),
                    "X-Rate-Limit-Limit": str(limiter.limit),
                    "X-Rate-Limit-Remaining": "0",
                    "X-Rate-Limit-Reset": str(reset_at),
                },
            )

        response = await call_next(request)
        response.headers["X-Rate-Limit-Limit"] = str(limiter.limit)
        response.headers["X-Rate-Limit-Remaining"] = str(remaining)
        response.headers["X-Rate-Limit-Reset"] = str(reset_at)
        return response


def configure_all_middleware(app: FastAPI) -> None:
    """
    Configura todos los middlewares.
    Se ejecutan en orden inverso al que se agregan.

    Args:
        app: Instancia de FastAPI
    """
    logger.info("🔧 Configurando middlewares...")

    configure_rate_limiting_middleware(app)
    configure_security_headers_middleware(app)
    configure_request_logging_middleware(app)
    configure_trusted_host_middleware(app)
    # CORS al final para que responda primero los preflight
    configure_cors_middleware(app)

    logger.info("✅ Todos los middlewares configurados correctamente")


# === FUNCIONES AUXILIARES ===


def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]


def get_client_ip(request: Request) -> str:
    """
    IP del cliente considerando proxies (``X-Forwarded-For``, ``X-Real-IP``).
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


def get_rate_limit_key(request: Request) -> str:
    """
    Clave del cupo: la IP del cliente, o el usuario si el gateway es de confianza.

    ``X-User-Id`` solo cuenta con ``TRUST_GATEWAY_USER_HEADER`` activo.
    """
    if settings.TRUST_GATEWAY_USER_HEADER:
        user_id = (request.headers.get("X-User-Id") or "").strip()
        if user_id:
            return f"user:{user_id}"
    return f"ip:{get_client_ip(request)}"


def get_status_emoji(status_code: int) -> str:
    if status_code < 300:
        return "✅"
    if status_code < 400:
        return "↩️"
    if status_code < 500:
        return "⚠️"
    return "❌"
