"""Security, fraud and audit models.

Several of these reference ``users`` twice: once for the subject of the record
and once for the staff member who acted on it (``resolved_by``, ``reviewed_by``,
``verified_by``, ``investigated_by``, ``added_by``). Both sides block deletion
of a user.
"""

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from safe_delete.models.base import BaseModel


class SecurityEvent(BaseModel):
    """Security-relevant event (login anomaly, token reuse, ...)."""

    __tablename__ = "security_events"

    user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    resolved_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)


class FraudAnalysis(BaseModel):
    """Fraud scoring result."""

    __tablename__ = "fraud_analysis"

    user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    risk_level: Mapped[str] = mapped_column(String(20), nullable=False, default="low")


class UserVerification(BaseModel):
    """Identity verification submitted by a user."""

    __tablename__ = "user_verifications"

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    verified_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    document_type: Mapped[str] = mapped_column(String(50), nullable=False)


class SuspiciousActivity(BaseModel):
    """Flagged behaviour under investigation."""

    __tablename__ = "suspicious_activities"

    user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    investigated_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class Blacklist(BaseModel):
    """Blocked identifier (email, phone, IP, device) added by staff."""

    __tablename__ = "blacklist"

    added_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class RateLimitViolation(BaseModel):
    """Recorded rate-limit breach."""

    __tablename__ = "rate_limit_violations"

    user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    endpoint: Mapped[str] = mapped_column(String(255), nullable=False)
