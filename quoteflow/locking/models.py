"""Edit lock models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class LockState(str, Enum):
    """Client-side view of an edit lock."""
    UNLOCKED = "unlocked"
    LOCKED_BY_ME = "locked_by_me"
    LOCKED_BY_OTHER = "locked_by_other"


class UserRef(BaseModel):
    """The acting user."""

    id: str = Field(..., description="User ID")
    name: Optional[str] = Field(default=None, description="Display name")

    model_config = ConfigDict(frozen=True)


class LockStatus(BaseModel):
    """Lock state as reported by the server."""

    is_locked: bool = Field(default=False, description="Whether the resource is locked")
    locked_by: Optional[str] = Field(default=None, description="ID of the lock holder")
    locked_by_name: Optional[str] = Field(default=None, description="Name of the lock holder")
    locked_at: Optional[datetime] = Field(default=None, description="When the lock was taken")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LockInfo(BaseModel):
    """Cached lock state of one resource, relative to the current user."""

    resource_type: str = Field(..., description="Lockable resource type")
    resource_id: str = Field(..., description="Resource ID")
    is_locked: bool = Field(default=False, description="Whether the resource is locked")
    locked_by_user_id: Optional[str] = Field(default=None, description="ID of the lock holder")
    locked_by_name: Optional[str] = Field(default=None, description="Name of the lock holder")
    locked_at: Optional[datetime] = Field(default=None, description="When the lock was taken")
    is_locked_by_current_user: bool = Field(
        default=False, description="Whether the current user holds the lock"
    )

    model_config = ConfigDict(frozen=True)

    @classmethod
    def unlocked(cls, resource_type: str, resource_id: str) -> "LockInfo":
        return cls(resource_type=resource_type, resource_id=resource_id)

    @classmethod
    def held_by(cls, resource_type: str, resource_id: str, user: UserRef) -> "LockInfo":
        """Optimistic view of a lock held by ``user``; the server sets ``locked_at``."""
        return cls(
            resource_type=resource_type,
            resource_id=resource_id,
            is_locked=True,
            locked_by_user_id=user.id,
            locked_by_name=user.name,
            is_locked_by_current_user=True,
        )

    @classmethod
    def from_status(
        cls,
        resource_type: str,
        resource_id: str,
        status: LockStatus,
        current_user_id: str,
    ) -> "LockInfo":
        return cls(
            resource_type=resource_type,
            resource_id=resource_id,
            is_locked=status.is_locked,
            locked_by_user_id=status.locked_by,
            locked_by_name=status.locked_by_name,
            locked_at=status.locked_at,
            is_locked_by_current_user=status.is_locked and status.locked_by == current_user_id,
        )

    @property
    def state(self) -> LockState:
        if not self.is_locked:
            return LockState.UNLOCKED
        if self.is_locked_by_current_user:
            return LockState.LOCKED_BY_ME
        return LockState.LOCKED_BY_OTHER

    @property
    def can_edit(self) -> bool:
        return not self.is_locked or self.is_locked_by_current_user
