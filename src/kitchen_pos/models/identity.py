"""Identity and profile models for multi-tenant support."""

from datetime import UTC, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class Role(str, Enum):
    """Application roles stored on the profile row."""

    SUPER_ADMIN = "super_admin"      # Platform operator, no tenant
    KITCHEN_OWNER = "kitchen_owner"  # Owns one restaurant
    MANAGER = "manager"              # Restaurant staff with elevated rights
    STAFF = "staff"                  # Restaurant staff

    @property
    def is_staff(self) -> bool:
        return self in (Role.MANAGER, Role.STAFF)


class Identity(BaseModel):
    """Authenticated identity as issued by the credential store.

    Read-only from the application's point of view.
    """

    model_config = ConfigDict(frozen=True)

    subject_id: str
    email: str | None = None
    email_confirmed: bool = False
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        """Whether the session token behind this identity has lapsed."""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.now(UTC))


class Profile(BaseModel):
    """Application-level user record, keyed by the identity subject id."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: UUID
    auth_user_id: str
    email: str
    full_name: str | None = None
    role: Role
    restaurant_id: UUID | None = None  # None for platform admins
    is_active: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
