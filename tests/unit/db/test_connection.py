"""
Tests unitarios para la conexión a Supabase Postgres.
"""

import pytest

from app.db.connection import ConnDB, build_connect_args, normalize_database_url
from app.utils.error_handler import DatabaseConnectionException


class TestDatabaseUrl:
    def test_normalizes_supabase_urls(self):
        """Debe usar el driver asyncpg para URLs postgres:// y postgresql://."""
        assert (
            normalize_database_url("postgres://user:pw@db.supabase.co:5432/postgres")
            == "postgresql+asyncpg://user:pw@db.supabase.co:5432/postgres"
        )
        assert normalize_database_url("postgresql://u@h/db") == "postgresql+asyncpg://u@h/db"
        assert normalize_database_url("postgresql+asyncpg://u@h/db") == "postgresql+asyncpg://u@h/db"

    def test_pooler_disables_statement_cache(self):
        """Debe desactivar el cache de statements detrás del pooler."""
        pooled = build_connect_args("postgresql+asyncpg://u:p@pooler.supabase.com:6543/postgres")
        direct = build_connect_args("postgresql+asyncpg://u:p@db.supabase.co:5432/postgres")

        assert pooled["statement_cache_size"] == 0
        assert "statement_cache_size" not in direct
        assert "application_name" in direct["server_settings"]


class TestConnDB:
    def test_session_requires_initialization(self):
        """Debe fallar al pedir sesión sin inicializar."""
        conn_db = ConnDB()
        conn_db.engine = None
        conn_db.session_factory = None

        with pytest.raises(DatabaseConnectionException):
            conn_db.get_session()

    @pytest.mark.asyncio
    async def test_health_check_without_engine(self):
        """Debe reportar la conexión como no inicializada."""
        conn_db = ConnDB()
        conn_db.engine = None
        conn_db.session_factory = None

        health = await conn_db.health_check()

        assert health["connection_initialized"] is False
        assert health["test_passed"] is False
        assert health["engine_info"] == {"status": "not_initialized"}
