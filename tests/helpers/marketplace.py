"""Marketplace test data helpers.

Databases are real SQLite files driven through aiosqlite with foreign keys
enforced, so dependency ordering is checked by the store itself.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sqlalchemy import event, func, insert, select, text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from safe_delete.models import (
    Base,
    BaseModel,
    CartItem,
    Driver,
    Notification,
    Order,
    OrderItem,
    Payment,
    Product,
    Review,
    ReviewResponse,
    ReviewVote,
    User,
    UserRole,
    Vendor,
    VendorNotificationSettings,
    VendorTrustScore,
    new_id,
)

MUTATING_PREFIXES = ("DELETE", "UPDATE", "INSERT")

# Matches the PROTECTED_EMAILS value set in conftest
PROTECTED_EMAIL = "owner@marketplace.example"


def create_test_engine(db_path: Path) -> AsyncEngine:
    """
    Create an engine on a SQLite file with foreign keys enforced.

    SQLAlchemy emits ``BEGIN IMMEDIATE`` itself so SAVEPOINTs work and
    concurrent writers queue on the busy timeout instead of failing.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


async def create_schema(engine: AsyncEngine, *, exclude: Iterable[str] = ()) -> None:
    """Create the known schema, leaving out ``exclude`` tables to simulate drift."""
    excluded = set(exclude)
    tables = [t for t in Base.metadata.sorted_tables if t.name not in excluded]
    async with engine.begin() as conn:
        await conn.run_sync(lambda sync_conn: Base.metadata.create_all(sync_conn, tables=tables))


async def execute_sql(engine: AsyncEngine, *statements: str) -> None:
    async with engine.begin() as conn:
        for statement in statements:
            await conn.exec_driver_sql(statement)


async def insert_row(engine: AsyncEngine, model: type[BaseModel], **values: Any) -> str:
    """Insert one row and return its id."""
    values.setdefault("id", new_id())
    async with engine.begin() as conn:
        await conn.execute(insert(model).values(**values))
    return str(values["id"])


async def count_rows(engine: AsyncEngine, model: type[BaseModel], **filters: Any) -> int:
    statement = select(func.count()).select_from(model)
    for name, value in filters.items():
        statement = statement.where(getattr(model, name) == value)
    async with engine.connect() as conn:
        return int((await conn.execute(statement)).scalar_one())


async def count_table(engine: AsyncEngine, table_name: str) -> int:
    async with engine.connect() as conn:
        return int((await conn.execute(text(f'SELECT COUNT(*) FROM "{table_name}"'))).scalar_one())


async def create_user(engine: AsyncEngine, **values: Any) -> str:
    suffix = new_id()[:8]
    values.setdefault("email", f"user-{suffix}@example.com")
    values.setdefault("username", f"user-{suffix}")
    values.setdefault("role", UserRole.CUSTOMER)
    return await insert_row(engine, User, **values)


async def create_product(engine: AsyncEngine, vendor_id: str, **values: Any) -> str:
    values.setdefault("name", f"Product {new_id()[:8]}")
    return await insert_row(engine, Product, vendor_id=vendor_id, **values)


async def create_order(engine: AsyncEngine, customer_id: str, vendor_id: str, **values: Any) -> str:
    return await insert_row(engine, Order, customer_id=customer_id, vendor_id=vendor_id, **values)


async def add_notifications(engine: AsyncEngine, user_id: str, count: int) -> list[str]:
    return [await insert_row(engine, Notification, user_id=user_id, title=f"Notice {i}") for i in range(count)]


def pin_rows(table_name: str) -> str:
    """DDL for a trigger that silently skips every DELETE on ``table_name``."""
    return (
        f"CREATE TRIGGER pin_{table_name} BEFORE DELETE ON {table_name} "
        "BEGIN SELECT RAISE(IGNORE); END"
    )


class StatementRecorder:
    """Records every SQL statement an engine sends to the driver."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self.statements: list[str] = []
        event.listen(engine.sync_engine, "before_cursor_execute", self._record)

    def _record(self, conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: bool) -> None:
        self.statements.append(" ".join(statement.split()))

    @property
    def mutations(self) -> list[str]:
        return [s for s in self.statements if s.upper().startswith(MUTATING_PREFIXES)]

    def deleted_tables(self) -> list[str]:
        """Tables targeted by DELETE statements, in first-seen order."""
        tables: list[str] = []
        for statement in self.statements:
            if statement.upper().startswith("DELETE FROM "):
                name = statement.split()[2].strip('"')
                if name not in tables:
                    tables.append(name)
        return tables

    def close(self) -> None:
        event.remove(self._engine.sync_engine, "before_cursor_execute", self._record)


@dataclass
class SimpleCustomer:
    user_id: str
    vendor_owner_id: str
    vendor_id: str
    order_id: str
    order_item_ids: list[str]
    cart_item_id: str


async def seed_simple_customer(engine: AsyncEngine) -> SimpleCustomer:
    """Customer with one order of two line items and one cart entry, no reviews."""
    owner_id = await create_user(engine, role=UserRole.VENDOR)
    vendor_id = await insert_row(engine, Vendor, user_id=owner_id, business_name="Corner Shop")
    product_a = await create_product(engine, vendor_id)
    product_b = await create_product(engine, vendor_id)

    user_id = await create_user(engine, phone="+447700900123")
    order_id = await create_order(engine, user_id, vendor_id)
    item_ids = [
        await insert_row(engine, OrderItem, order_id=order_id, product_id=product_a, quantity=1),
        await insert_row(engine, OrderItem, order_id=order_id, product_id=product_b, quantity=2),
    ]
    cart_item_id = await insert_row(engine, CartItem, user_id=user_id, product_id=product_a)
    return SimpleCustomer(
        user_id=user_id,
        vendor_owner_id=owner_id,
        vendor_id=vendor_id,
        order_id=order_id,
        order_item_ids=item_ids,
        cart_item_id=cart_item_id,
    )


@dataclass
class VendorCatalog:
    owner_id: str
    vendor_id: str
    product_ids: list[str]
    reviewed_product_id: str
    review_ids: list[str]
    cart_item_id: str
    customer_id: str
    extra_ids: dict[str, str] = field(default_factory=dict)


async def seed_vendor_with_catalog(engine: AsyncEngine) -> VendorCatalog:
    """Vendor principal with 3 products; one has 2 reviews and 1 cart reference."""
    owner_id = await create_user(engine, role=UserRole.VENDOR)
    vendor_id = await insert_row(engine, Vendor, user_id=owner_id, business_name="Craft Corner")
    product_ids = [await create_product(engine, vendor_id) for _ in range(3)]
    reviewed = product_ids[0]

    customer_id = await create_user(engine)
    other_id = await create_user(engine)
    review_ids = [
        await insert_row(engine, Review, user_id=customer_id, product_id=reviewed, rating=5),
        await insert_row(engine, Review, user_id=other_id, product_id=reviewed, rating=3),
    ]
    cart_item_id = await insert_row(engine, CartItem, user_id=customer_id, product_id=reviewed)

    extra_ids = {
        "review_vote": await insert_row(engine, ReviewVote, review_id=review_ids[0], user_id=other_id),
        "review_response": await insert_row(
            engine, ReviewResponse, review_id=review_ids[1], vendor_id=vendor_id, body="Thanks!"
        ),
        "trust_score": await insert_row(engine, VendorTrustScore, vendor_id=vendor_id),
        "notification_settings": await insert_row(engine, VendorNotificationSettings, user_id=owner_id),
    }
    return VendorCatalog(
        owner_id=owner_id,
        vendor_id=vendor_id,
        product_ids=product_ids,
        reviewed_product_id=reviewed,
        review_ids=review_ids,
        cart_item_id=cart_item_id,
        customer_id=customer_id,
        extra_ids=extra_ids,
    )


async def seed_vendor_with_sales(engine: AsyncEngine) -> tuple[VendorCatalog, str, str]:
    """Catalog vendor whose reviewed product was also ordered and paid for by the customer."""
    catalog = await seed_vendor_with_catalog(engine)
    order_id = await create_order(engine, catalog.customer_id, catalog.vendor_id)
    await insert_row(engine, OrderItem, order_id=order_id, product_id=catalog.reviewed_product_id)
    payment_id = await insert_row(engine, Payment, order_id=order_id)
    return catalog, order_id, payment_id


@dataclass
class DriverDelivery:
    customer: SimpleCustomer
    driver_user_id: str
    driver_id: str
    order_id: str


async def seed_driver_with_delivery(engine: AsyncEngine) -> DriverDelivery:
    """Driver principal assigned to a second order of a simple customer."""
    customer = await seed_simple_customer(engine)
    driver_user_id = await create_user(engine, role=UserRole.DRIVER)
    driver_id = await insert_row(engine, Driver, user_id=driver_user_id, vehicle_type="bike")
    order_id = await create_order(engine, customer.user_id, customer.vendor_id, driver_id=driver_id)
    return DriverDelivery(
        customer=customer,
        driver_user_id=driver_user_id,
        driver_id=driver_id,
        order_id=order_id,
    )
