"""
Sistema de manejo de errores personalizado.

Este módulo define todas las excepciones personalizadas de la aplicación
y proporciona utilidades para manejo consistente de errores.
"""

import logging
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    """
    Códigos de error estandardizados para la aplicación.
    """

    # Errores generales
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Errores de conexión
    DATABASE_CONNECTION_FAILED = "DATABASE_CONNECTION_FAILED"
    DATABASE_QUERY_FAILED = "DATABASE_QUERY_FAILED"
    REDIS_CONNECTION_FAILED = "REDIS_CONNECTION_FAILED"

    # Errores de proveedores
    PRODIGI_API_ERROR = "PRODIGI_API_ERROR"
    GELATO_API_ERROR = "GELATO_API_ERROR"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    LLM_API_ERROR = "LLM_API_ERROR"

    # Errores de fulfillment
    FULFILLMENT_FAILED = "FULFILLMENT_FAILED"
    PRICING_FAILED = "PRICING_FAILED"
    DUPLICATE_SUBMISSION = "DUPLICATE_SUBMISSION"

    # Errores de API
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INVALID_WEBHOOK_SIGNATURE = "INVALID_WEBHOOK_SIGNATURE"
    INVALID_WEBHOOK_PAYLOAD = "INVALID_WEBHOOK_PAYLOAD"

    # Errores de sistema
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class ErrorSeverity(Enum):
    """
    Niveles de severidad para errores.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AppException(Exception):
    """
    Excepción base para todas las excepciones personalizadas de la aplicación.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        is_retryable: bool = False,
        is_critical: bool = False,
    ):
        """
        Inicializa la excepción.

        Args:
            message: Mensaje de error
            error_code: Código de error estandardizado
            details: Información adicional del error
            status_code: Código HTTP asociado
            severity: Severidad del error
            is_retryable: Si la operación puede reintentarse
            is_critical: Si requiere alerta inmediata
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code
        self.severity = severity
        self.is_retryable = is_retryable
        self.is_critical = is_critical
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convierte la excepción a diccionario.

        Returns:
            Dict: Representación de la excepción
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code.value,
            "details": self.details,
            "status_code": self.status_code,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
            "is_critical": self.is_critical,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        return f"{self.error_code.value}: {self.message}"


class ValidationException(AppException):
    """
    Excepción para errores de validación de datos.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        invalid_value: Any = None,
        expected_format: Optional[str] = None,
        status_code: int = 422,
        **kwargs,
    ):
        """
        Inicializa la excepción de validación.

        Args:
            message: Mensaje de error
            field: Campo que falló la validación
            invalid_value: Valor que causó el error
            expected_format: Formato esperado
            status_code: Código HTTP (400 para reglas de negocio)
            **kwargs: Argumentos adicionales para AppException
        """
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=status_code,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )
        self.field = field
        self.invalid_value = invalid_value
        self.expected_format = expected_format

        self.details.update(
            {
                "field": field,
                "invalid_value": str(invalid_value) if invalid_value is not None else None,
                "expected_format": expected_format,
            }
        )


class NotFoundException(AppException):
    """
    Excepción para recursos inexistentes.
    """

    def __init__(self, message: str, resource: Optional[str] = None, resource_id: Optional[str] = None, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.NOT_FOUND,
            status_code=404,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )
        self.resource = resource
        self.resource_id = resource_id
        self.details.update({"resource": resource, "resource_id": resource_id})


class ConflictException(AppException):
    """
    Excepción para operaciones que chocan con el estado actual.
    """

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.CONFLICT, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=409,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )


class AuthenticationException(AppException):
    """
    Excepción para requests sin identidad de usuario.
    """

    def __init__(self, message: str = "Unauthorized", **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.UNAUTHORIZED,
            status_code=401,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )


class PermissionDeniedException(AppException):
    """
    Excepción para usuarios sin permisos sobre el recurso.
    """

    def __init__(self, message: str = "Forbidden", **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.FORBIDDEN,
            status_code=403,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )


class DatabaseConnectionException(AppException):
    """
    Excepción para errores de conexión con la base de datos.
    """

    def __init__(
        self,
        message: str,
        db_host: Optional[str] = None,
        connection_type: str = "database",
        **kwargs,
    ):
        """
        Inicializa la excepción de conexión a base de datos.

        Args:
            message: Mensaje de error
            db_host: Host de la base de datos
            connection_type: Tipo de conexión
            **kwargs: Argumentos adicionales para AppException
        """
        super().__init__(
            message=message,
            error_code=ErrorCode.DATABASE_CONNECTION_FAILED,
            status_code=503,
            severity=ErrorSeverity.HIGH,
            is_retryable=True,
            is_critical=True,
            **kwargs,
        )
        self.db_host = db_host
        self.connection_type = connection_type

        self.details.update({"db_host": db_host, "connection_type": connection_type})


class ProviderAPIException(AppException):
    """
    Excepción base para errores de APIs de proveedores externos.
    """

    provider = "provider"
    default_error_code = ErrorCode.SERVICE_UNAVAILABLE

    def __init__(
        self,
        message: str,
        api_response_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        rate_limited: bool = False,
        retry_after: Optional[int] = None,
        **kwargs,
    ):
        """
        Inicializa la excepción de API de proveedor.

        Args:
            message: Mensaje de error
            api_response_code: Código de respuesta del proveedor
            endpoint: Endpoint que falló
            rate_limited: Si es por rate limiting
            retry_after: Segundos para reintentar
            **kwargs: Argumentos adicionales para AppException
        """
        error_code = self.default_error_code
        severity = ErrorSeverity.MEDIUM

        if rate_limited:
            error_code = ErrorCode.RATE_LIMIT_EXCEEDED
            severity = ErrorSeverity.LOW
        elif api_response_code and api_response_code >= 500:
            severity = ErrorSeverity.HIGH

        kwargs.setdefault("is_retryable", rate_limited or (api_response_code or 503) >= 500)

        super().__init__(
            message=message,
            error_code=error_code,
            status_code=kwargs.pop("status_code", None) or 502,
            severity=severity,
            **kwargs,
        )

        self.api_response_code = api_response_code
        self.endpoint = endpoint
        self.rate_limited = rate_limited
        self.retry_after = retry_after

        self.details.update(
            {
                "provider": self.provider,
                "api_response_code": api_response_code,
                "endpoint": endpoint,
                "rate_limited": rate_limited,
                "retry_after": retry_after,
            }
        )


class ProdigiAPIException(ProviderAPIException):
    """Error devuelto por la API de Prodigi."""

    provider = "prodigi"
    default_error_code = ErrorCode.PRODIGI_API_ERROR


class GelatoAPIException(ProviderAPIException):
    """Error devuelto por la API de Gelato."""

    provider = "gelato"
    default_error_code = ErrorCode.GELATO_API_ERROR


class LLMAPIException(ProviderAPIException):
    """Error devuelto por la API de OpenAI."""

    provider = "openai"
    default_error_code = ErrorCode.LLM_API_ERROR


class PaymentException(AppException):
    """
    Excepción para errores de Stripe.
    """

    def __init__(self, message: str, stripe_code: Optional[str] = None, status_code: int = 400, **kwargs):
        super().__init__(
            message=message,
            error_code=kwargs.pop("error_code", ErrorCode.PAYMENT_FAILED),
            status_code=status_code,
            severity=ErrorSeverity.HIGH,
            **kwargs,
        )
        self.stripe_code = stripe_code
        self.details.update({"stripe_code": stripe_code})


class FulfillmentException(AppException):
    """
    Excepción para fallos al enviar o consultar pedidos en el proveedor de impresión.
    """

    def __init__(
        self,
        message: str,
        provider: str,
        order_id: Optional[str] = None,
        operation: Optional[str] = None,
        retry_suggested: bool = True,
        **kwargs,
    ):
        """
        Inicializa la excepción de fulfillment.

        Args:
            message: Mensaje de error
            provider: Proveedor involucrado (prodigi, gelato)
            order_id: Pedido local afectado
            operation: Operación que falló
            retry_suggested: Si se sugiere reintentar
            **kwargs: Argumentos adicionales para AppException
        """
        super().__init__(
            message=message,
            error_code=ErrorCode.FULFILLMENT_FAILED,
            status_code=kwargs.pop("status_code", 500),
            severity=ErrorSeverity.HIGH,
            is_retryable=retry_suggested,
            **kwargs,
        )
        self.provider = provider
        self.order_id = order_id
        self.operation = operation

        self.details.update(
            {
                "provider": provider,
                "order_id": order_id,
                "operation": operation,
                "retry_suggested": retry_suggested,
            }
        )


class PricingException(AppException):
    """
    Excepción para cotizaciones que no pudieron calcularse.
    """

    def __init__(self, message: str, destination_country: Optional[str] = None, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.PRICING_FAILED,
            status_code=kwargs.pop("status_code", 502),
            severity=ErrorSeverity.MEDIUM,
            is_retryable=True,
            **kwargs,
        )
        self.destination_country = destination_country
        self.details.update({"destination_country": destination_country})


class RateLimitException(AppException):
    """
    Excepción para errores de rate limiting.
    """

    def __init__(self, message: str, limit: int, reset_time: int, retry_after: int, **kwargs):
        """
        Inicializa la excepción de rate limiting.

        Args:
            message: Mensaje de error
            limit: Límite de requests
            reset_time: Timestamp de reset
            retry_after: Segundos para reintentar
            **kwargs: Argumentos adicionales para AppException
        """
        super().__init__(
            message=message,
            error_code=ErrorCode.RATE_LIMIT_EXCEEDED,
            status_code=429,
            severity=ErrorSeverity.LOW,
            is_retryable=True,
            **kwargs,
        )

        self.limit = limit
        self.reset_time = reset_time
        self.retry_after = retry_after

        self.details.update({"limit": limit, "reset_time": reset_time, "retry_after": retry_after})


# === FUNCIONES DE UTILIDAD ===


def convert_to_app_exception(exception: Exception, context: Optional[Dict[str, Any]] = None) -> AppException:
    """
    Convierte una excepción estándar a AppException.

    Args:
        exception: Excepción a convertir
        context: Contexto adicional

    Returns:
        AppException: Excepción convertida
    """
    context = context or {}
    exception_type = type(exception).__name__
    message = str(exception)
    lowered = message.lower()

    if isinstance(exception, AppException):
        exception.details.update(context)
        return exception

    if "connection" in lowered or "timeout" in lowered:
        if "postgres" in lowered or "sql" in lowered or "database" in lowered:
            return DatabaseConnectionException(message=f"Database connection error: {message}", details=context)
        if "prodigi" in lowered:
            return ProdigiAPIException(message=f"Prodigi connection error: {message}", details=context)
        if "gelato" in lowered:
            return GelatoAPIException(message=f"Gelato connection error: {message}", details=context)

    elif "validation" in lowered or "invalid" in lowered:
        return ValidationException(
            message=message,
            field=context.get("field", "unknown"),
            invalid_value=context.get("value"),
            details=context,
        )

    elif "rate limit" in lowered:
        return RateLimitException(
            message=message,
            limit=context.get("limit", 0),
            reset_time=context.get("reset_time", 0),
            retry_after=context.get("retry_after", 60),
            details=context,
        )

    return AppException(
        message=f"{exception_type}: {message}",
        details={"original_exception": exception_type, **context},
    )


def log_error(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    level: int = logging.ERROR,
) -> None:
    """
    Loggea un error de manera consistente.

    Args:
        exception: Excepción a loggear
        context: Contexto adicional
        level: Nivel de logging
    """
    context = context or {}

    log_data = {
        "exception_type": type(exception).__name__,
        "exception_message": str(exception),
        "traceback": traceback.format_exc(),
        **context,
    }

    if isinstance(exception, AppException):
        message = f"{exception.error_code.value}: {exception.message}"
        log_data.update(
            {
                "error_code": exception.error_code.value,
                "severity": exception.severity.value,
                "is_retryable": exception.is_retryable,
                "is_critical": exception.is_critical,
            }
        )
    else:
        message = f"Unhandled exception: {type(exception).__name__}: {str(exception)}"

    logger.log(level, message, extra=log_data)


class ErrorAggregator:
    """
    Agregador de errores para procesos batch (barridos de reintentos).
    """

    def __init__(self):
        self.errors: List[AppException] = []
        self.warnings: List[AppException] = []
        self.total_processed = 0
        self.start_time = datetime.now(timezone.utc)

    def add_error(self, exception: Union[AppException, Exception], context: Optional[Dict] = None):
        """
        Agrega un error al agregador.

        Args:
            exception: Excepción a agregar
            context: Contexto adicional
        """
        exception = convert_to_app_exception(exception, context)

        if exception.severity in [ErrorSeverity.LOW, ErrorSeverity.MEDIUM]:
            self.warnings.append(exception)
        else:
            self.errors.append(exception)

        if exception.is_critical:
            log_error(exception, context, logging.CRITICAL)

    def increment_processed(self):
        self.total_processed += 1

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def get_summary(self) -> Dict[str, Any]:
        """
        Obtiene resumen de errores.

        Returns:
            Dict: Resumen de errores
        """
        end_time = datetime.now(timezone.utc)
        duration = (end_time - self.start_time).total_seconds()

        return {
            "total_processed": self.total_processed,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "success_count": self.total_processed - len(self.errors) - len(self.warnings),
            "duration_seconds": duration,
            "start_time": self.start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "errors": [error.to_dict() for error in self.errors],
            "warnings": [warning.to_dict() for warning in self.warnings],
        }
