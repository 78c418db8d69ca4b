"""Catalog, order, cart and review models."""

from decimal import Decimal

from sqlalchemy import ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from safe_delete.models.base import BaseModel


class Product(BaseModel):
    """Catalog item listed by a vendor."""

    __tablename__ = "products"

    vendor_id: Mapped[str] = mapped_column(String(36), ForeignKey("vendors.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Order(BaseModel):
    """Customer order fulfilled by a vendor and optionally delivered by a driver."""

    __tablename__ = "orders"

    customer_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    vendor_id: Mapped[str] = mapped_column(String(36), ForeignKey("vendors.id"), nullable=False, index=True)
    driver_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("drivers.id"), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))


class OrderItem(BaseModel):
    """Line item of an order."""

    __tablename__ = "order_items"

    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class Payment(BaseModel):
    """Payment recorded against an order."""

    __tablename__ = "payments"

    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    provider_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)


class CartItem(BaseModel):
    """Shopping cart line."""

    __tablename__ = "cart"

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class Review(BaseModel):
    """Product/vendor review written by a user, optionally tied to an order."""

    __tablename__ = "reviews"

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    product_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("products.id"), nullable=True, index=True)
    vendor_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("vendors.id"), nullable=True, index=True)
    order_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("orders.id"), nullable=True, index=True)
    rating: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)


class ReviewVote(BaseModel):
    """Helpful/unhelpful vote cast on a review."""

    __tablename__ = "review_votes"

    review_id: Mapped[str] = mapped_column(String(36), ForeignKey("reviews.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    is_helpful: Mapped[bool] = mapped_column(nullable=False, default=True)


class ReviewResponse(BaseModel):
    """Vendor reply to a review."""

    __tablename__ = "review_responses"

    review_id: Mapped[str] = mapped_column(String(36), ForeignKey("reviews.id"), nullable=False, index=True)
    vendor_id: Mapped[str] = mapped_column(String(36), ForeignKey("vendors.id"), nullable=False, index=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
