"""Reference registry for the marketplace schema.

The registry is data: every (table, column) that can point at an entity being
deleted is listed once, together with the key it is matched against and the
category that decides its default phase. Plans are derived from it by
``safe_delete.deletion.planner``; nothing else in the engine hard-codes table
order.

``uncovered_foreign_keys`` compares foreign keys with the registry. The service
runs it against the live schema whenever the schema probe is enabled; the test suite runs it
against the model metadata through ``check_registry_coverage``.
"""

import enum
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import MetaData

from safe_delete.deletion.probe import LiveForeignKey


class EntityKind(enum.StrEnum):
    """Root entities the engine can delete."""

    USER = "user"
    PRODUCT = "product"


class KeyKind(enum.StrEnum):
    """Values a dependent row can be matched on."""

    PRINCIPAL_ID = "principal_id"
    PRINCIPAL_EMAIL = "principal_email"
    PRINCIPAL_PHONE = "principal_phone"
    VENDOR_ID = "vendor_id"
    DRIVER_ID = "driver_id"
    PRODUCT_ID = "product_id"
    ORDER_ID = "order_id"
    REVIEW_ID = "review_id"
    CHAT_ROOM_ID = "chat_room_id"


class ReferenceAction(enum.StrEnum):
    """What a step does to the dependent rows it matches."""

    DELETE = "delete"
    # Clear the column; the row itself belongs to someone else
    NULLIFY = "nullify"


class Category(enum.IntEnum):
    """Default phase rank of a dependent table; the foreign-key graph may push a table later."""

    ACTIVITY = 1
    SECURITY = 2
    CATALOG = 3
    REVIEWS = 4
    ORDERS = 5
    CART_AND_PAYMENTS = 6
    MESSAGING = 7
    NOTIFICATIONS = 8
    VERIFICATION = 9
    PROFILES = 10
    ROOT = 11


@dataclass(frozen=True)
class Reference:
    """Rows of ``table`` whose ``column`` holds a ``key`` value must go before the key's owner."""

    table: str
    column: str
    key: KeyKind
    category: Category
    action: ReferenceAction = ReferenceAction.DELETE

    @property
    def label(self) -> str:
        return f"{self.table}.{self.column}"


@dataclass(frozen=True)
class Derivation:
    """``key`` values are the ids of ``table`` rows whose ``column`` matches a ``source`` value."""

    key: KeyKind
    table: str
    column: str
    source: KeyKind
    select_column: str = "id"


@dataclass(frozen=True)
class RootSpec:
    """How a root entity maps onto the registry."""

    entity: EntityKind
    table: str
    id_column: str
    id_key: KeyKind
    # Alternate keys read from the root row itself, e.g. the principal's email
    alternate_keys: tuple[tuple[KeyKind, str], ...] = ()


# Key -> (owning table, column holding the key value)
KEY_OWNERS: dict[KeyKind, tuple[str, str]] = {
    KeyKind.PRINCIPAL_ID: ("users", "id"),
    KeyKind.PRINCIPAL_EMAIL: ("users", "email"),
    KeyKind.PRINCIPAL_PHONE: ("users", "phone"),
    KeyKind.VENDOR_ID: ("vendors", "id"),
    KeyKind.DRIVER_ID: ("drivers", "id"),
    KeyKind.PRODUCT_ID: ("products", "id"),
    KeyKind.ORDER_ID: ("orders", "id"),
    KeyKind.REVIEW_ID: ("reviews", "id"),
    KeyKind.CHAT_ROOM_ID: ("chat_rooms", "id"),
}

ROOTS: dict[EntityKind, RootSpec] = {
    EntityKind.USER: RootSpec(
        entity=EntityKind.USER,
        table="users",
        id_column="id",
        id_key=KeyKind.PRINCIPAL_ID,
        alternate_keys=(
            (KeyKind.PRINCIPAL_EMAIL, "email"),
            (KeyKind.PRINCIPAL_PHONE, "phone"),
        ),
    ),
    EntityKind.PRODUCT: RootSpec(
        entity=EntityKind.PRODUCT,
        table="products",
        id_column="id",
        id_key=KeyKind.PRODUCT_ID,
    ),
}

# Ordered: a derivation may only consume keys produced by an earlier entry or seeded by the root
DERIVATIONS: tuple[Derivation, ...] = (
    Derivation(KeyKind.VENDOR_ID, "vendors", "user_id", KeyKind.PRINCIPAL_ID),
    Derivation(KeyKind.DRIVER_ID, "drivers", "user_id", KeyKind.PRINCIPAL_ID),
    Derivation(KeyKind.PRODUCT_ID, "products", "vendor_id", KeyKind.VENDOR_ID),
    Derivation(KeyKind.ORDER_ID, "orders", "customer_id", KeyKind.PRINCIPAL_ID),
    Derivation(KeyKind.ORDER_ID, "orders", "vendor_id", KeyKind.VENDOR_ID),
    Derivation(KeyKind.REVIEW_ID, "reviews", "user_id", KeyKind.PRINCIPAL_ID),
    Derivation(KeyKind.REVIEW_ID, "reviews", "product_id", KeyKind.PRODUCT_ID),
    Derivation(KeyKind.REVIEW_ID, "reviews", "vendor_id", KeyKind.VENDOR_ID),
    Derivation(KeyKind.REVIEW_ID, "reviews", "order_id", KeyKind.ORDER_ID),
    Derivation(KeyKind.CHAT_ROOM_ID, "chat_rooms", "created_by", KeyKind.PRINCIPAL_ID),
)


def _refs(
    category: Category,
    key: KeyKind,
    *labels: str,
    action: ReferenceAction = ReferenceAction.DELETE,
) -> list[Reference]:
    refs = []
    for label in labels:
        table, column = label.split(".")
        refs.append(Reference(table, column, key, category, action))
    return refs


REFERENCES: tuple[Reference, ...] = (
    # Activity and preference logs
    *_refs(
        Category.ACTIVITY,
        KeyKind.PRINCIPAL_ID,
        "user_preferences.user_id",
        "user_behavior.user_id",
        "search_logs.user_id",
        "rate_limit_violations.user_id",
    ),
    # Security, fraud and audit records, as subject or as acting staff member
    *_refs(
        Category.SECURITY,
        KeyKind.PRINCIPAL_ID,
        "security_events.user_id",
        "security_events.resolved_by",
        "fraud_analysis.user_id",
        "fraud_analysis.reviewed_by",
        "user_verifications.user_id",
        "user_verifications.verified_by",
        "suspicious_activities.user_id",
        "suspicious_activities.investigated_by",
        "blacklist.added_by",
    ),
    # Catalog sub-cascade
    *_refs(Category.CATALOG, KeyKind.VENDOR_ID, "vendor_trust_scores.vendor_id", "products.vendor_id"),
    # Reviews, after their votes and vendor responses
    *_refs(Category.REVIEWS, KeyKind.REVIEW_ID, "review_votes.review_id", "review_responses.review_id"),
    *_refs(Category.REVIEWS, KeyKind.PRINCIPAL_ID, "review_votes.user_id", "reviews.user_id"),
    *_refs(Category.REVIEWS, KeyKind.VENDOR_ID, "review_responses.vendor_id", "reviews.vendor_id"),
    *_refs(Category.REVIEWS, KeyKind.PRODUCT_ID, "reviews.product_id"),
    *_refs(Category.REVIEWS, KeyKind.ORDER_ID, "reviews.order_id"),
    # Orders and their line items
    *_refs(Category.ORDERS, KeyKind.ORDER_ID, "order_items.order_id"),
    *_refs(Category.ORDERS, KeyKind.PRODUCT_ID, "order_items.product_id"),
    *_refs(Category.ORDERS, KeyKind.PRINCIPAL_ID, "orders.customer_id"),
    *_refs(Category.ORDERS, KeyKind.VENDOR_ID, "orders.vendor_id"),
    # Orders assigned to the principal's driver profile are kept, unassigned
    *_refs(Category.ORDERS, KeyKind.DRIVER_ID, "orders.driver_id", action=ReferenceAction.NULLIFY),
    # Cart and payments
    *_refs(Category.CART_AND_PAYMENTS, KeyKind.PRINCIPAL_ID, "cart.user_id"),
    *_refs(Category.CART_AND_PAYMENTS, KeyKind.PRODUCT_ID, "cart.product_id"),
    *_refs(Category.CART_AND_PAYMENTS, KeyKind.ORDER_ID, "payments.order_id"),
    # Messaging
    *_refs(Category.MESSAGING, KeyKind.CHAT_ROOM_ID, "messages.chat_room_id", "chat_participants.chat_room_id"),
    *_refs(Category.MESSAGING, KeyKind.PRINCIPAL_ID, "messages.sender_id", "chat_participants.user_id"),
    *_refs(Category.MESSAGING, KeyKind.PRINCIPAL_ID, "chat_rooms.created_by"),
    # Notifications
    *_refs(
        Category.NOTIFICATIONS,
        KeyKind.PRINCIPAL_ID,
        "notifications.user_id",
        "vendor_notification_settings.user_id",
    ),
    # Alternate-key verification rows, email then phone
    *_refs(Category.VERIFICATION, KeyKind.PRINCIPAL_EMAIL, "email_verifications.email"),
    *_refs(Category.VERIFICATION, KeyKind.PRINCIPAL_PHONE, "phone_verifications.phone"),
    # Owned profiles
    *_refs(Category.PROFILES, KeyKind.PRINCIPAL_ID, "vendors.user_id", "drivers.user_id"),
)

# Foreign keys the store resolves itself; they never block a delete
_SELF_RESOLVING_ACTIONS = frozenset({"CASCADE", "SET NULL", "SET DEFAULT"})


def uncovered_foreign_keys(foreign_keys: Iterable[LiveForeignKey]) -> list[str]:
    """
    List foreign keys to a key owner that no registry entry covers.

    A foreign key is covered when the registry has a reference on the same
    (table, column), or when its ON DELETE action resolves the dependency
    without the engine. Foreign keys to tables the engine never deletes from
    are ignored.

    Args:
        foreign_keys: Foreign keys of the known or deployed schema

    Returns:
        Sorted ``"table.column"`` labels of uncovered foreign keys
    """
    covered = {ref.label for ref in REFERENCES}
    owners = set(KEY_OWNERS.values())
    uncovered = set()
    for fk in foreign_keys:
        if (fk.referred_table, fk.referred_column) not in owners:
            continue
        if fk.ondelete and fk.ondelete.upper() in _SELF_RESOLVING_ACTIONS:
            continue
        if fk.label not in covered:
            uncovered.add(fk.label)
    return sorted(uncovered)


def check_registry_coverage(metadata: MetaData) -> list[str]:
    """Run ``uncovered_foreign_keys`` over every single-column foreign key in ``metadata``."""
    return uncovered_foreign_keys(
        LiveForeignKey(table.name, fk.parent.name, fk.column.table.name, fk.column.name, fk.ondelete)
        for table in metadata.tables.values()
        for fk in table.foreign_keys
    )
