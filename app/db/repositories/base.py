"""
Base Repository for Supabase Postgres operations.

This module provides the base class for all repository classes,
implementing common functionality like connection management, session
handling, error handling and table access verification.

Repositories use raw SQL through ``sqlalchemy.text`` and return rows as
plain dictionaries so that route handlers can serialise them directly.
"""

import asyncio
import functools
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, AsyncContextManager, Callable, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.connection import ConnDB, get_db_connection
from app.utils.error_handler import ConflictException, DatabaseConnectionException, ErrorCode

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def with_retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple = (DatabaseConnectionException,),
) -> Callable:
    """
    Decorator for retrying database operations with exponential backoff.

    Args:
        max_attempts: Maximum number of retry attempts
        delay: Initial delay between retries in seconds
        backoff: Multiplier for exponential backoff
        exceptions: Tuple of exceptions to catch and retry

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            current_delay = delay

            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts - 1:
                        logger.error(f"All {max_attempts} attempts failed for {func.__name__}")
                        raise
                    logger.warning(
                        f"Attempt {attempt + 1}/{max_attempts} failed for {func.__name__}: {e}. "
                        f"Retrying in {current_delay:.1f}s..."
                    )
                    await asyncio.sleep(current_delay)
                    current_delay *= backoff

        return wrapper

    return decorator


def log_operation(operation_name: Optional[str] = None) -> Callable:
    """
    Decorator for logging repository operations.

    Args:
        operation_name: Optional custom name for the operation

    Returns:
        Decorated function with logging
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            op_name = operation_name or f"{self.__class__.__name__}.{func.__name__}"
            logger.debug(f"Starting operation: {op_name}")

            try:
                result = await func(self, *args, **kwargs)
                logger.debug(f"Operation successful: {op_name}")
                return result
            except Exception as e:
                logger.error(f"Operation failed: {op_name} - {e}")
                raise

        return wrapper

    return decorator


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(value: Any) -> Optional[str]:
    """Serialise a value for a ``CAST(:param AS jsonb)`` placeholder."""
    if value is None:
        return None
    return json.dumps(value, default=_json_default)


# Columnas timestamptz que pueden llegar como ISO 8601 desde proveedores
DATETIME_COLUMNS = (
    "estimated_delivery",
    "estimated_delivery_date",
    "actual_delivery",
    "last_attempt",
    "next_retry",
    "completed_at",
    "failed_at",
    "cancelled_at",
)

# Columnas jsonb y agregados jsonb de las consultas
JSON_RESULT_COLUMNS = (
    "metadata",
    "shipping_address",
    "billing_address",
    "provider_response",
    "result",
    "payload",
    "details",
    "dimensions_cm",
    "order_items",
    "dropship_orders",
    "products",
    "images",
    "orders",
)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO 8601 (con o sin ``Z``) a datetime; None y vacío quedan en None."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def build_set_clause(
    fields: Dict[str, Any], json_columns: Tuple[str, ...] = (), touch_updated_at: bool = True
) -> Tuple[str, Dict[str, Any]]:
    """
    Construye la cláusula SET de un UPDATE a partir de un diccionario.

    Args:
        fields: Columnas y valores a actualizar
        json_columns: Columnas que se envían como jsonb
        touch_updated_at: Si se agrega ``updated_at = NOW()``

    Returns:
        Tuple[str, Dict]: Cláusula SET y parámetros con prefijo ``set_``
    """
    parts = []
    params: Dict[str, Any] = {}
    for column, value in fields.items():
        key = f"set_{column}"
        if column in json_columns:
            parts.append(f"{column} = CAST(:{key} AS jsonb)")
            params[key] = to_json(value)
        elif column in DATETIME_COLUMNS:
            parts.append(f"{column} = :{key}")
            params[key] = parse_timestamp(value)
        else:
            parts.append(f"{column} = :{key}")
            params[key] = value
    if touch_updated_at:
        parts.append("updated_at = NOW()")
    return ", ".join(parts), params


def is_unique_violation(error: IntegrityError) -> bool:
    """True si Postgres rechazó la fila por una clave única (SQLSTATE 23505)."""
    orig = error.orig
    return UNIQUE_VIOLATION in (getattr(orig, "sqlstate", None), getattr(orig, "pgcode", None))


def row_to_dict(row: Any) -> Dict[str, Any]:
    """
    Convierte una fila de SQLAlchemy en diccionario serializable.

    UUID, Decimal y fechas se convierten a str, float e ISO 8601.
    Las columnas jsonb (que asyncpg entrega como texto en consultas
    ``text()``) se decodifican.
    """
    data = dict(row._mapping)
    for key, value in data.items():
        if key in JSON_RESULT_COLUMNS and isinstance(value, str):
            data[key] = json.loads(value)
        elif isinstance(value, UUID):
            data[key] = str(value)
        elif isinstance(value, Decimal):
            data[key] = float(value)
        elif isinstance(value, (datetime, date)):
            data[key] = value.isoformat()
    return data


class BaseRepository:
    """
    Base repository for Supabase Postgres operations.

    Subclasses list the tables they touch in ``TABLES``; ``initialize``
    verifies access to each of them.
    """

    TABLES: Tuple[str, ...] = ()

    def __init__(self, conn_db: Optional[ConnDB] = None):
        """
        Initialize the base repository.

        Args:
            conn_db: Optional database connection. If not provided, uses global connection.
        """
        self.conn_db: ConnDB = conn_db or get_db_connection()
        self._initialized: bool = False
        self._repository_name: str = self.__class__.__name__

    @log_operation("repository_initialization")
    @with_retry(max_attempts=3, delay=1.0)
    async def initialize(self) -> None:
        """
        Initialize the repository ensuring database connection is available.

        Raises:
            DatabaseConnectionException: If initialization fails
        """
        try:
            if not self.conn_db.is_initialized():
                await self.conn_db.initialize()

            await self._verify_table_access()

            self._initialized = True
            logger.info(f"{self._repository_name} initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize {self._repository_name}: {e}")
            raise DatabaseConnectionException(
                message=f"Failed to initialize {self._repository_name}: {str(e)}",
                db_host=self.conn_db.db_host,
                connection_type="repository_initialization",
            ) from e

    async def _verify_table_access(self) -> None:
        """
        Verify access to the tables required by this repository.

        Raises:
            DatabaseConnectionException: If a table is not reachable
        """
        async with self.get_session() as session:
            for table in self.TABLES:
                await session.execute(text(f"SELECT 1 FROM {table} LIMIT 1"))

    def is_initialized(self) -> bool:
        return self._initialized and self.conn_db.is_initialized()

    def get_session(self) -> AsyncContextManager[AsyncSession]:
        """
        Get a database session from the connection pool.

        Returns:
            AsyncContextManager[AsyncSession]: Database session context manager

        Raises:
            DatabaseConnectionException: If the connection is not initialized
        """
        return self.conn_db.get_session()

    async def fetch_one(self, query: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """
        Ejecuta una consulta y retorna la primera fila.

        Args:
            query: Consulta SQL
            params: Parámetros de la consulta

        Returns:
            Optional[Dict]: Fila como diccionario o None
        """
        try:
            async with self.get_session() as session:
                result = await session.execute(text(query), params or {})
                row = result.first()
                return row_to_dict(row) if row is not None else None
        except DatabaseConnectionException:
            raise
        except Exception as e:
            raise self._query_error(e, "fetch_one") from e

    async def fetch_all(self, query: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Ejecuta una consulta y retorna todas las filas.

        Args:
            query: Consulta SQL
            params: Parámetros de la consulta

        Returns:
            List[Dict]: Filas como diccionarios
        """
        try:
            async with self.get_session() as session:
                result = await session.execute(text(query), params or {})
                return [row_to_dict(row) for row in result.fetchall()]
        except DatabaseConnectionException:
            raise
        except Exception as e:
            raise self._query_error(e, "fetch_all") from e

    async def fetch_value(self, query: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Ejecuta una consulta escalar (COUNT, EXISTS)."""
        try:
            async with self.get_session() as session:
                result = await session.execute(text(query), params or {})
                return result.scalar()
        except DatabaseConnectionException:
            raise
        except Exception as e:
            raise self._query_error(e, "fetch_value") from e

    async def execute(self, query: str, params: Optional[Dict[str, Any]] = None) -> int:
        """
        Ejecuta una sentencia de escritura con commit automático.

        Args:
            query: Sentencia SQL (INSERT, UPDATE, DELETE)
            params: Parámetros de la sentencia

        Returns:
            int: Filas afectadas
        """
        try:
            async with self.get_session() as session:
                result = await session.execute(text(query), params or {})
                await session.commit()
                return result.rowcount or 0
        except DatabaseConnectionException:
            raise
        except Exception as e:
            raise self._query_error(e, "execute") from e

    async def execute_returning(
        self, query: str, params: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Ejecuta una sentencia con ``RETURNING`` y commit automático.

        Returns:
            Optional[Dict]: Primera fila retornada o None
        """
        try:
            async with self.get_session() as session:
                result = await session.execute(text(query), params or {})
                row = result.first()
                await session.commit()
                return row_to_dict(row) if row is not None else None
        except DatabaseConnectionException:
            raise
        except IntegrityError as e:
            if is_unique_violation(e):
                raise ConflictException(
                    "Resource already exists", details={"constraint": getattr(e.orig, "constraint_name", None)}
                ) from e
            raise self._query_error(e, "execute_returning") from e
        except Exception as e:
            raise self._query_error(e, "execute_returning") from e

    def _query_error(self, error: Exception, operation: str) -> DatabaseConnectionException:
        logger.error(f"❌ {self._repository_name}.{operation} failed: {error}")
        exc = DatabaseConnectionException(
            message=f"Query execution failed: {str(error)}",
            db_host=self.conn_db.db_host,
            connection_type=operation,
        )
        exc.error_code = ErrorCode.DATABASE_QUERY_FAILED
        exc.status_code = 500
        return exc

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check on the repository.

        Returns:
            Dict containing health status information
        """
        try:
            if not self.conn_db.is_initialized():
                return {
                    "status": "unhealthy",
                    "repository": self._repository_name,
                    "initialized": False,
                    "error": "Database not initialized",
                }

            await self.fetch_value("SELECT 1")

            return {"status": "healthy", "repository": self._repository_name, "initialized": True}

        except Exception as e:
            return {
                "status": "unhealthy",
                "repository": self._repository_name,
                "initialized": self._initialized,
                "error": str(e),
            }

    def __repr__(self) -> str:
        return f"<{self._repository_name}(initialized={self._initialized})>"
