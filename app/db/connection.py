# app/db/connection.py
"""
Conexión a Supabase Postgres vía SQLAlchemy async + asyncpg.

Un único engine por proceso (``ConnDB`` es singleton). Los repositorios
piden sesiones con ``get_session()`` y ejecutan SQL con ``text()``.
"""

import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import get_settings
from app.utils.error_handler import DatabaseConnectionException

settings = get_settings()
logger = logging.getLogger(__name__)

# Puerto del pooler de Supabase en modo transacción (pgbouncer)
SUPABASE_POOLER_PORT = 6543

# Tablas que la API necesita para arrancar
REQUIRED_TABLES = ("orders", "products", "cart_items", "dropship_orders", "retry_operations", "profiles")


def normalize_database_url(url: str) -> str:
    """
    Convierte la URL de Supabase (``postgres://`` / ``postgresql://``) al
    driver asyncpg que usa SQLAlchemy.

    Args:
        url: URL tal como la entrega el dashboard de Supabase

    Returns:
        str: URL con esquema ``postgresql+asyncpg://``
    """
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix) :]
    return url


def build_connect_args(url: str) -> Dict[str, Any]:
    """
    Argumentos de asyncpg según el destino.

    Detrás de pgbouncer no se pueden usar prepared statements cacheados.
    """
    connect_args: Dict[str, Any] = {
        "server_settings": {"application_name": f"{settings.APP_NAME}_v{settings.APP_VERSION}"}
    }
    try:
        port = urlparse(url).port
    except ValueError:
        port = None
    if port == SUPABASE_POOLER_PORT:
        connect_args["statement_cache_size"] = 0
    return connect_args


def _db_host(url: str) -> Optional[str]:
    try:
        return urlparse(url).hostname
    except ValueError:
        return None


class ConnDB:
    """
    Engine y pool de conexiones a la base de datos de Supabase.
    """

    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ConnDB, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.engine: Optional[AsyncEngine] = None
            self.session_factory: Optional[async_sessionmaker] = None
            self.connection_string = normalize_database_url(settings.DATABASE_URL)
            self.db_host = _db_host(self.connection_string)
            self._connection_tested = False
            self.missing_tables: list = []
            ConnDB._initialized = True

    async def initialize(self):
        """
        Crea el engine, abre el pool y verifica el esquema.

        Raises:
            DatabaseConnectionException: Si Postgres no responde
        """
        if self.engine is not None:
            logger.info("Database connection already initialized")
            return

        logger.info(f"🔄 Initializing database connection to {self.db_host}...")

        try:
            self.engine = create_async_engine(
                self.connection_string,
                pool_size=settings.DB_POOL_SIZE,
                max_overflow=settings.DB_MAX_OVERFLOW,
                pool_pre_ping=True,
                pool_recycle=settings.DB_POOL_RECYCLE,
                pool_timeout=settings.DB_POOL_TIMEOUT,
                echo=settings.DB_ECHO,
                connect_args=build_connect_args(self.connection_string),
            )
            self.session_factory = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

            await self._verify_schema()
            self._connection_tested = True

        except Exception as e:
            logger.error(f"❌ Failed to initialize database connection: {e}")
            await self._dispose()
            raise DatabaseConnectionException(
                message=f"Failed to initialize database connection: {str(e)}",
                db_host=self.db_host,
                connection_type="initialization",
            ) from e

        logger.info("✅ Database connection initialized successfully")

    async def _verify_schema(self):
        """
        Comprueba la conexión y que existan las tablas de la tienda.

        Una tabla faltante solo se advierte: las migraciones de Supabase
        pueden ir por detrás del deploy.
        """
        async with self.session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            if result.scalar() != 1:
                raise DatabaseConnectionException(
                    message="Connection test returned unexpected value",
                    db_host=self.db_host,
                    connection_type="test",
                )

            result = await session.execute(
                text(
                    "SELECT table_name FROM information_schema.tables "
                    "WHERE table_schema = 'public' AND table_name = ANY(:tables)"
                ),
                {"tables": list(REQUIRED_TABLES)},
            )
            present = {row[0] for row in result.fetchall()}

        self.missing_tables = [table for table in REQUIRED_TABLES if table not in present]
        if self.missing_tables:
            logger.warning(f"⚠️ Missing tables in public schema: {', '.join(self.missing_tables)}")

    async def _dispose(self):
        try:
            if self.engine:
                await self.engine.dispose()
        finally:
            self.engine = None
            self.session_factory = None
            self._connection_tested = False

    def get_session(self) -> AsyncSession:
        """
        Nueva sesión para un repositorio.

        Raises:
            DatabaseConnectionException: Si no hay conexión inicializada
        """
        if not self.is_initialized():
            raise DatabaseConnectionException(
                message="Database connection not initialized. Call initialize() first.",
                db_host=self.db_host,
                connection_type="session_creation",
            )

        return self.session_factory()

    def is_initialized(self) -> bool:
        return self.engine is not None and self.session_factory is not None and self._connection_tested

    async def test_connection(self) -> bool:
        if not self.is_initialized():
            return False

        try:
            async with self.get_session() as session:
                result = await session.execute(text("SELECT 1"))
                return result.scalar() == 1
        except Exception as e:
            logger.error(f"Connection test failed: {e}")
            return False

    async def close(self):
        """Cierra el engine y libera el pool."""
        if self.engine is None:
            return

        logger.info("Closing database connection...")
        try:
            await self._dispose()
        except Exception as e:
            raise DatabaseConnectionException(
                message=f"Error closing database connection: {str(e)}",
                db_host=self.db_host,
                connection_type="close",
            ) from e

        logger.info("✅ Database connection closed successfully")

    def get_engine_info(self) -> Dict[str, Any]:
        if not self.engine:
            return {"status": "not_initialized"}

        pool = self.engine.pool
        return {
            "status": "initialized",
            "host": self.db_host,
            "pool_size": getattr(pool, "size", lambda: 0)(),
            "checked_out": getattr(pool, "checkedout", lambda: 0)(),
            "overflow": getattr(pool, "overflow", lambda: 0)(),
            "missing_tables": self.missing_tables,
        }

    async def health_check(self) -> Dict[str, Any]:
        """
        Estado de la conexión para ``/health``.

        Returns:
            dict: connection_initialized, test_passed, response_time_ms, engine_info
        """
        start_time = time.time()
        test_passed = await self.test_connection()

        return {
            "connection_initialized": self.is_initialized(),
            "test_passed": test_passed,
            "response_time_ms": round((time.time() - start_time) * 1000, 2),
            "engine_info": self.get_engine_info(),
        }

    def __repr__(self) -> str:
        return f"ConnDB(initialized={self.is_initialized()}, host={self.db_host})"


_conn_db_instance = None


def get_db_connection() -> ConnDB:
    global _conn_db_instance

    if _conn_db_instance is None:
        _conn_db_instance = ConnDB()

    return _conn_db_instance


async def initialize_database():
    await get_db_connection().initialize()


async def close_database():
    await get_db_connection().close()
