"""Database models for the marketplace schema known to the deletion engine.

The engine itself works on lightweight table clauses and never imports these
models. Their metadata is the reference schema: ``check_registry_coverage``
runs against it in the test suite, and the test stores are created from it.
"""

# Import all models to register them with SQLAlchemy metadata
from safe_delete.models.base import Base, BaseModel, new_id
from safe_delete.models.commerce import (
    CartItem,
    Order,
    OrderItem,
    Payment,
    Product,
    Review,
    ReviewResponse,
    ReviewVote,
)
from safe_delete.models.messaging import ChatParticipant, ChatRoom, Message
from safe_delete.models.security import (
    Blacklist,
    FraudAnalysis,
    RateLimitViolation,
    SecurityEvent,
    SuspiciousActivity,
    UserVerification,
)
from safe_delete.models.user import (
    EmailVerification,
    Notification,
    PhoneVerification,
    SearchLog,
    User,
    UserBehavior,
    UserPreference,
    UserRole,
)
from safe_delete.models.vendor import Driver, Vendor, VendorNotificationSettings, VendorTrustScore

__all__ = [
    # Base
    "Base",
    "BaseModel",
    "new_id",
    # User models
    "User",
    "UserRole",
    "UserPreference",
    "UserBehavior",
    "SearchLog",
    "Notification",
    "EmailVerification",
    "PhoneVerification",
    # Vendor models
    "Vendor",
    "Driver",
    "VendorTrustScore",
    "VendorNotificationSettings",
    # Commerce models
    "Product",
    "Order",
    "OrderItem",
    "Payment",
    "CartItem",
    "Review",
    "ReviewVote",
    "ReviewResponse",
    # Messaging models
    "ChatRoom",
    "ChatParticipant",
    "Message",
    # Security models
    "SecurityEvent",
    "FraudAnalysis",
    "UserVerification",
    "SuspiciousActivity",
    "Blacklist",
    "RateLimitViolation",
]
