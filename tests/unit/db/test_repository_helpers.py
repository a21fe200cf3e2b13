"""
Tests unitarios para los helpers de repositorios (SET dinámico, filas a dict).
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import pytest
from sqlalchemy.exc import IntegrityError

from app.db.repositories.base import (
    BaseRepository,
    build_set_clause,
    parse_timestamp,
    row_to_dict,
    to_json,
)
from app.db.repositories.cart_repository import CartRepository
from app.db.repositories.order_repository import OrderRepository
from app.utils.error_handler import ConflictException, DatabaseConnectionException, ErrorCode


class FakeRow:
    def __init__(self, **values):
        self._mapping = values


def make_conn_db(result=None, error=None):
    """ConnDB falso cuya sesión devuelve ``result`` o lanza ``error``."""
    session = MagicMock()
    if error is not None:
        session.execute = AsyncMock(side_effect=error)
    else:
        session.execute = AsyncMock(return_value=result)
    session.commit = AsyncMock()

    @asynccontextmanager
    async def get_session():
        yield session

    conn_db = MagicMock()
    conn_db.db_host = "db.test"
    conn_db.is_initialized.return_value = True
    conn_db.get_session = get_session
    return conn_db, session


class TestBuildSetClause:
    def test_plain_json_and_datetime_columns(self):
        """Debe tipar jsonb y timestamps y agregar updated_at."""
        clause, params = build_set_clause(
            {
                "status": "shipped",
                "metadata": {"source": "webhook"},
                "estimated_delivery_date": "2024-05-01T10:00:00Z",
            },
            json_columns=("metadata",),
        )

        assert clause == (
            "status = :set_status, metadata = CAST(:set_metadata AS jsonb), "
            "estimated_delivery_date = :set_estimated_delivery_date, updated_at = NOW()"
        )
        assert params["set_status"] == "shipped"
        assert json.loads(params["set_metadata"]) == {"source": "webhook"}
        assert params["set_estimated_delivery_date"] == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_without_updated_at(self):
        """No debe tocar updated_at cuando se indica."""
        clause, _ = build_set_clause({"attempts": 2}, touch_updated_at=False)
        assert clause == "attempts = :set_attempts"


class TestConversions:
    def test_to_json_handles_decimal_and_uuid(self):
        """Debe serializar Decimal, UUID y fechas."""
        value = {"total": Decimal("10.50"), "id": UUID("12345678-1234-5678-1234-567812345678")}
        assert json.loads(to_json(value)) == {"total": 10.5, "id": "12345678-1234-5678-1234-567812345678"}
        assert to_json(None) is None

    def test_parse_timestamp(self):
        """Debe aceptar ISO con Z, datetime y valores vacíos."""
        assert parse_timestamp("") is None
        assert parse_timestamp(None) is None
        assert parse_timestamp("2024-01-02T03:04:05Z").tzinfo is not None
        now = datetime.now(timezone.utc)
        assert parse_timestamp(now) is now

    def test_row_to_dict(self):
        """Debe convertir UUID, Decimal, fechas y decodificar columnas jsonb."""
        row = FakeRow(
            id=UUID("12345678-1234-5678-1234-567812345678"),
            total_amount=Decimal("53.20"),
            created_at=datetime(2024, 1, 1, 12, 0),
            shipping_address='{"city": "Austin"}',
            notes="{not json column}",
        )

        data = row_to_dict(row)

        assert data == {
            "id": "12345678-1234-5678-1234-567812345678",
            "total_amount": 53.2,
            "created_at": "2024-01-01T12:00:00",
            "shipping_address": {"city": "Austin"},
            "notes": "{not json column}",
        }


class TestBaseRepository:
    @pytest.mark.asyncio
    async def test_fetch_one_returns_dict(self):
        """Debe devolver la primera fila como diccionario."""
        result = MagicMock()
        result.first.return_value = FakeRow(id="order-1", status="paid")
        conn_db, _ = make_conn_db(result)

        row = await BaseRepository(conn_db).fetch_one("SELECT 1")

        assert row == {"id": "order-1", "status": "paid"}

    @pytest.mark.asyncio
    async def test_fetch_one_none(self):
        """Debe devolver None si no hay filas."""
        result = MagicMock()
        result.first.return_value = None
        conn_db, _ = make_conn_db(result)

        assert await BaseRepository(conn_db).fetch_one("SELECT 1") is None

    @pytest.mark.asyncio
    async def test_execute_commits_and_returns_rowcount(self):
        """Debe hacer commit y devolver las filas afectadas."""
        result = MagicMock()
        result.rowcount = 3
        conn_db, session = make_conn_db(result)

        assert await BaseRepository(conn_db).execute("DELETE FROM x") == 3
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_query_errors_are_wrapped(self):
        """Debe envolver errores del driver como DATABASE_QUERY_FAILED."""
        conn_db, _ = make_conn_db(error=RuntimeError("syntax error"))

        with pytest.raises(DatabaseConnectionException) as exc_info:
            await BaseRepository(conn_db).fetch_all("SELECT nope")

        assert exc_info.value.error_code == ErrorCode.DATABASE_QUERY_FAILED
        assert "syntax error" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unique_violation_is_conflict(self):
        """Debe convertir una clave única repetida en ConflictException."""

        class UniqueViolation(Exception):
            sqlstate = "23505"
            constraint_name = "products_sku_key"

        conn_db, _ = make_conn_db(error=IntegrityError("INSERT INTO products", {}, UniqueViolation("duplicate key")))

        with pytest.raises(ConflictException) as exc_info:
            await BaseRepository(conn_db).execute_returning("INSERT INTO products VALUES (1) RETURNING id")

        assert exc_info.value.status_code == 409
        assert exc_info.value.details["constraint"] == "products_sku_key"

    @pytest.mark.asyncio
    async def test_health_check_unhealthy_when_not_initialized(self):
        """Debe reportar unhealthy sin conexión inicializada."""
        conn_db, _ = make_conn_db()
        conn_db.is_initialized.return_value = False

        health = await BaseRepository(conn_db).health_check()

        assert health["status"] == "unhealthy"
        assert health["initialized"] is False


class TestRepositories:
    @pytest.mark.asyncio
    async def test_cart_get_items_empty_ids_skips_query(self):
        """No debe consultar cuando no hay IDs seleccionados."""
        conn_db, session = make_conn_db()

        assert await CartRepository(conn_db).get_items("user-1", []) == []
        session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_order_update_filters_columns(self):
        """Debe ignorar columnas no actualizables al construir el UPDATE."""
        repo = OrderRepository(make_conn_db()[0])
        repo.execute_returning = AsyncMock(return_value={"id": "order-1", "status": "shipped"})

        await repo.update("order-1", {"status": "shipped", "user_id": "hijack"})

        query, params = repo.execute_returning.call_args.args
        assert "status = :set_status" in query
        assert "user_id" not in query
        assert params == {"set_status": "shipped", "order_id": "order-1"}

    @pytest.mark.asyncio
    async def test_order_update_without_allowed_fields_reads_order(self):
        """Debe devolver el pedido actual si no hay columnas permitidas."""
        repo = OrderRepository(make_conn_db()[0])
        repo.get_by_id = AsyncMock(return_value={"id": "order-1"})
        repo.execute_returning = AsyncMock()

        assert await repo.update("order-1", {"unknown": 1}) == {"id": "order-1"}
        repo.execute_returning.assert_not_awaited()
