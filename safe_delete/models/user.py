"""User-related models.

``users`` is the principal table; every other model in this module hangs off
it by ``user_id`` or, for the verification tables, by the alternate email or
phone key.
"""

import enum
from typing import Any

from sqlalchemy import JSON, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from safe_delete.models.base import BaseModel


class UserRole(str, enum.Enum):
    """Role of a marketplace principal."""

    CUSTOMER = "customer"
    VENDOR = "vendor"
    DRIVER = "driver"
    ADMIN = "admin"


class User(BaseModel):
    """Marketplace account (the deletion principal)."""

    __tablename__ = "users"

    username: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), unique=True, nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UserRole.CUSTOMER,
    )

    def __repr__(self) -> str:
        """String representation of the user."""
        return f"<User(id={self.id}, role={self.role})>"


class UserPreference(BaseModel):
    """Personalisation settings."""

    __tablename__ = "user_preferences"

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    preferences: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)


class UserBehavior(BaseModel):
    """Browsing/purchase behaviour events used for recommendations."""

    __tablename__ = "user_behavior"

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(36), nullable=True)


class SearchLog(BaseModel):
    """Search query history."""

    __tablename__ = "search_logs"

    user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    query: Mapped[str] = mapped_column(Text, nullable=False)
    result_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Notification(BaseModel):
    """In-app notification addressed to a user."""

    __tablename__ = "notifications"

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)


class EmailVerification(BaseModel):
    """Pending email verification keyed by address (no foreign key)."""

    __tablename__ = "email_verifications"

    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(16), nullable=False)


class PhoneVerification(BaseModel):
    """Pending phone verification keyed by number (no foreign key)."""

    __tablename__ = "phone_verifications"

    phone: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(16), nullable=False)
