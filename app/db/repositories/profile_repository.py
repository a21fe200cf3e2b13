"""
Profile Repository for Supabase Postgres.

Read-only access to ``profiles`` for admin checks and customer emails.
"""

from typing import Any, Dict, Optional

from app.db.repositories.base import BaseRepository


class ProfileRepository(BaseRepository):
    TABLES = ("profiles",)

    async def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self.fetch_one("SELECT * FROM profiles WHERE id = :user_id", {"user_id": user_id})

    async def is_admin(self, user_id: str) -> bool:
        value = await self.fetch_value(
            "SELECT is_admin FROM profiles WHERE id = :user_id", {"user_id": user_id}
        )
        return bool(value)
