"""
Módulo de acceso a base de datos para Art Framer.

- ConnDB: engine y pool de Supabase Postgres
- Repositorios: operaciones por tabla (app.db.repositories)
"""

from app.db.connection import (
    ConnDB,
    close_database,
    get_db_connection,
    initialize_database,
)

__all__ = [
    "ConnDB",
    "get_db_connection",
    "initialize_database",
    "close_database",
]
