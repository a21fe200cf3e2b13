"""
Errores de la API de Prodigi.

Todas las excepciones derivan de ``ProdigiAPIException`` para que los
manejadores de FastAPI las rendericen con la forma ``{error}`` estándar.
"""

import re
from typing import Any, Dict, List, Mapping, Optional

from app.services.prodigi.constants import DEFAULT_RATE_LIMIT_RETRY_AFTER, RETRYABLE_ERROR_STATUS_CODES
from app.utils.error_handler import ErrorCode, ProdigiAPIException

RATE_LIMIT_TEXT_PATTERN = re.compile(r"maximum admitted (\d+) per (\d+)s")

USER_MESSAGES = {
    401: "Authentication failed. Please check your API key.",
    403: "You do not have permission to perform this action.",
    404: "The requested resource was not found.",
    429: "Too many requests. Please try again later.",
    500: "Server error. Please try again later.",
}


class ProdigiAPIError(ProdigiAPIException):
    """
    Error HTTP devuelto por Prodigi.

    ``api_response_code`` es el status de Prodigi; ``status_code`` es el
    status con el que responde nuestra API.
    """

    def __init__(
        self,
        message: str,
        api_response_code: Optional[int] = None,
        status_text: Optional[str] = None,
        data: Any = None,
        trace_parent: Optional[str] = None,
        endpoint: Optional[str] = None,
        method: Optional[str] = None,
        **kwargs,
    ):
        kwargs.setdefault("is_retryable", api_response_code in RETRYABLE_ERROR_STATUS_CODES)
        super().__init__(message, api_response_code=api_response_code, endpoint=endpoint, **kwargs)
        self.status_text = status_text
        self.data = data
        self.trace_parent = trace_parent
        self.method = method
        self.details.update({"status_text": status_text, "trace_parent": trace_parent, "method": method})

    def user_message(self) -> str:
        """Mensaje apto para mostrar al cliente final."""
        return USER_MESSAGES.get(self.api_response_code, self.message)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"data": self.data, "user_message": self.user_message()})
        return result


class ProdigiAuthenticationError(ProdigiAPIError):
    def __init__(self, message: str = "Invalid or missing API key", data: Any = None, trace_parent: Optional[str] = None):
        super().__init__(message, 401, "Unauthorized", data, trace_parent)


class ProdigiAuthorizationError(ProdigiAPIError):
    def __init__(self, message: str = "Insufficient permissions", data: Any = None, trace_parent: Optional[str] = None):
        super().__init__(message, 403, "Forbidden", data, trace_parent)


class ProdigiNotFoundError(ProdigiAPIError):
    def __init__(self, resource: str, data: Any = None, trace_parent: Optional[str] = None):
        super().__init__(f"Resource not found: {resource}", 404, "Not Found", data, trace_parent, status_code=404)
        self.resource = resource


class ProdigiValidationError(ProdigiAPIError):
    """Petición rechazada por validación local o por Prodigi (400/422)."""

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[Any]] = None,
        data: Any = None,
        trace_parent: Optional[str] = None,
    ):
        super().__init__(message, 400, "Bad Request", data, trace_parent, status_code=400)
        self.error_code = ErrorCode.VALIDATION_ERROR
        self.validation_errors = validation_errors or []
        self.details["validation_errors"] = self.validation_errors


class ProdigiRateLimitError(ProdigiAPIError):
    def __init__(self, retry_after: Optional[int] = None, data: Any = None, trace_parent: Optional[str] = None):
        if retry_after:
            message = f"Rate limit exceeded. Retry after {retry_after} seconds."
        else:
            message = "Rate limit exceeded. Please try again later."
        super().__init__(
            message,
            429,
            "Too Many Requests",
            data,
            trace_parent,
            rate_limited=True,
            retry_after=retry_after,
            status_code=429,
        )


class ProdigiNetworkError(ProdigiAPIException):
    """Fallo de red antes de obtener respuesta de Prodigi."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message, is_retryable=True, status_code=503)
        self.original_error = original_error


class ProdigiTimeoutError(ProdigiAPIException):
    def __init__(self, timeout_seconds: float):
        super().__init__(f"Request timed out after {int(timeout_seconds * 1000)}ms", is_retryable=True, status_code=504)
        self.timeout_seconds = timeout_seconds


def parse_retry_after(headers: Mapping[str, str], data: Any, raw_text: str = "") -> int:
    """
    Segundos a esperar tras un 429.

    Prioridad: header ``Retry-After``, ``retryAfter`` en el cuerpo, texto
    "maximum admitted N per Ss" y por último 30 segundos.
    """
    header_value = headers.get("Retry-After") if headers else None
    if header_value:
        try:
            return int(header_value)
        except ValueError:
            pass

    if isinstance(data, dict) and data.get("retryAfter"):
        try:
            return int(data["retryAfter"])
        except (TypeError, ValueError):
            pass

    match = RATE_LIMIT_TEXT_PATTERN.search(raw_text or "")
    if match:
        return int(match.group(2))

    return DEFAULT_RATE_LIMIT_RETRY_AFTER


def parse_prodigi_error(
    status: int,
    headers: Mapping[str, str],
    data: Any,
    status_text: str = "",
    endpoint: Optional[str] = None,
    method: Optional[str] = None,
    raw_text: str = "",
) -> ProdigiAPIError:
    """
    Convierte una respuesta de error de Prodigi en la excepción apropiada.

    Args:
        status: Status HTTP de Prodigi
        headers: Headers de la respuesta
        data: Cuerpo JSON (o {} si no era JSON)
        status_text: Razón HTTP
        endpoint: Endpoint llamado
        method: Método HTTP
        raw_text: Cuerpo crudo, usado para el texto de rate limit

    Returns:
        ProdigiAPIError: Excepción tipada según el status
    """
    data = data if isinstance(data, dict) else {}
    trace_parent = data.get("traceParent") or (headers.get("traceparent") if headers else None)
    message = data.get("statusText") or data.get("message") or status_text or raw_text or "Unknown error"
    payload = data.get("data")

    if status == 401:
        return ProdigiAuthenticationError(message, payload, trace_parent)
    if status == 403:
        return ProdigiAuthorizationError(message, payload, trace_parent)
    if status == 404:
        return ProdigiNotFoundError(endpoint or "Unknown resource", payload, trace_parent)
    if status in (400, 422):
        errors = (payload or {}).get("errors") if isinstance(payload, dict) else None
        return ProdigiValidationError(message, errors or data.get("errors") or [], payload, trace_parent)
    if status == 429:
        return ProdigiRateLimitError(parse_retry_after(headers, data, raw_text), payload or data, trace_parent)

    return ProdigiAPIError(message, status, status_text, payload, trace_parent, endpoint, method)


def is_retryable_error(error: Exception) -> bool:
    """Errores de red y timeouts siempre; errores HTTP según su status."""
    if isinstance(error, (ProdigiNetworkError, ProdigiTimeoutError)):
        return True
    if isinstance(error, ProdigiAPIException):
        return error.is_retryable
    return False
