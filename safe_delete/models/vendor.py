"""Vendor and driver profiles (owned secondary entities of a principal)."""

from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from safe_delete.models.base import BaseModel


class Vendor(BaseModel):
    """Storefront operated by a user."""

    __tablename__ = "vendors"

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class Driver(BaseModel):
    """Delivery driver profile."""

    __tablename__ = "drivers"

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    vehicle_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class VendorTrustScore(BaseModel):
    """Computed trust score for a vendor."""

    __tablename__ = "vendor_trust_scores"

    vendor_id: Mapped[str] = mapped_column(String(36), ForeignKey("vendors.id"), nullable=False, index=True)
    score: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))


class VendorNotificationSettings(BaseModel):
    """Per-vendor-user notification preferences."""

    __tablename__ = "vendor_notification_settings"

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    email_orders: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sms_orders: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
