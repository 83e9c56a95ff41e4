"""Supabase database client for profile lookups."""

import asyncio
import logging
from typing import Any, Protocol

from pydantic import ValidationError
from supabase import Client, create_client

from kitchen_pos.config import get_settings
from kitchen_pos.models.identity import Profile, Role

logger = logging.getLogger(__name__)


class ProfileStore(Protocol):
    """Read access to the profile table."""

    async def fetch_by_auth_id(self, auth_user_id: str) -> Profile | None:
        """Get the profile linked to an auth identity, or None."""
        ...


class DatabaseClient:
    """Client for Supabase profile table operations."""

    def __init__(self, client: Client | None = None, table: str | None = None) -> None:
        settings = get_settings()
        self.client: Client = client or create_client(
            settings.supabase_url,
            settings.supabase_key,
        )
        self.table = table or settings.profiles_table

    async def _execute(self, query: Any) -> list[dict[str, Any]]:
        result = await asyncio.to_thread(query.execute)
        return result.data or []

    @staticmethod
    def _to_profile(row: dict[str, Any]) -> Profile | None:
        try:
            return Profile.model_validate(row)
        except ValidationError as e:
            logger.error(f"Invalid profile row {row.get('id')}: {e.error_count()} errors")
            return None

    async def fetch_by_auth_id(self, auth_user_id: str) -> Profile | None:
        """Get the profile row for an auth user.

        Args:
            auth_user_id: The credential store subject id

        Returns:
            The profile, or None if missing or malformed
        """
        rows = await self._execute(
            self.client.table(self.table)
            .select("*")
            .eq("auth_user_id", auth_user_id)
            .limit(1)
        )
        if not rows:
            logger.debug(f"No profile for auth user {auth_user_id}")
            return None
        return self._to_profile(rows[0])

    async def get_profile_by_email(
        self,
        email: str,
        role: Role | None = None,
    ) -> Profile | None:
        """Get a profile by email, optionally restricted to a role."""
        query = self.client.table(self.table).select("*").eq("email", email)
        if role is not None:
            query = query.eq("role", role.value)

        rows = await self._execute(query.limit(1))
        if not rows:
            return None
        return self._to_profile(rows[0])

    async def upsert_super_admin(
        self,
        auth_user_id: str,
        email: str,
        full_name: str,
    ) -> Profile:
        """Link or create the super-admin profile for an auth user.

        Args:
            auth_user_id: The credential store subject id
            email: Admin email address
            full_name: Display name for a newly created row

        Returns:
            The stored profile
        """
        existing = await self.get_profile_by_email(email, Role.SUPER_ADMIN)

        if existing is not None:
            rows = await self._execute(
                self.client.table(self.table)
                .update({"auth_user_id": auth_user_id, "is_active": True})
                .eq("id", str(existing.id))
            )
            logger.info(f"Re-linked super admin profile {existing.id}")
        else:
            rows = await self._execute(
                self.client.table(self.table).insert({
                    "auth_user_id": auth_user_id,
                    "email": email,
                    "full_name": full_name,
                    "role": Role.SUPER_ADMIN.value,
                    "restaurant_id": None,
                    "is_active": True,
                })
            )
            logger.info(f"Created super admin profile for {email}")

        if not rows:
            raise RuntimeError(f"Profile write for {email} returned no rows")
        profile = self._to_profile(rows[0])
        if profile is None:
            raise RuntimeError(f"Profile write for {email} returned an invalid row")
        return profile
