"""Tests for the sub-cascade resolver."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine

from safe_delete.deletion.errors import CascadeStepError
from safe_delete.deletion.planner import build_plan
from safe_delete.deletion.probe import SchemaProbe
from safe_delete.deletion.registry import EntityKind, KeyKind
from safe_delete.deletion.resolver import SubCascadeResolver
from safe_delete.deletion.steps import AutocommitRunner
from safe_delete.models import ChatRoom, Driver, Review
from tests.helpers.marketplace import (
    create_order,
    create_schema,
    create_user,
    insert_row,
    seed_vendor_with_sales,
)


async def _resolver(engine: AsyncEngine) -> SubCascadeResolver:
    runner = AutocommitRunner(engine)
    return SubCascadeResolver(runner, await runner.load_probe())


@pytest.mark.asyncio
async def test_resolve_owned_products(engine: AsyncEngine) -> None:
    catalog, _, _ = await seed_vendor_with_sales(engine)
    resolver = await _resolver(engine)

    products = await resolver.resolve_owned_products(catalog.owner_id)

    assert sorted(products) == sorted(catalog.product_ids)


@pytest.mark.asyncio
async def test_resolve_owned_orders_includes_placed_and_received(engine: AsyncEngine) -> None:
    """Orders the principal placed as a customer and orders their vendor profile received."""
    catalog, received_order_id, _ = await seed_vendor_with_sales(engine)
    placed_order_id = await create_order(engine, catalog.owner_id, catalog.vendor_id)
    resolver = await _resolver(engine)

    vendor_orders = await resolver.resolve_owned_orders(catalog.owner_id)
    customer_orders = await resolver.resolve_owned_orders(catalog.customer_id)

    assert sorted(vendor_orders) == sorted([received_order_id, placed_order_id])
    assert customer_orders == [received_order_id]


@pytest.mark.asyncio
async def test_resolve_captures_every_owned_key(engine: AsyncEngine) -> None:
    catalog, order_id, _ = await seed_vendor_with_sales(engine)
    driver_id = await insert_row(engine, Driver, user_id=catalog.owner_id)
    room_id = await insert_row(engine, ChatRoom, created_by=catalog.owner_id)
    own_review = await insert_row(engine, Review, user_id=catalog.owner_id, vendor_id=catalog.vendor_id)
    resolver = await _resolver(engine)

    keys = await resolver.resolve({KeyKind.PRINCIPAL_ID: [catalog.owner_id]}, build_plan(EntityKind.USER).derivations)

    assert keys[KeyKind.VENDOR_ID] == [catalog.vendor_id]
    assert keys[KeyKind.DRIVER_ID] == [driver_id]
    assert keys[KeyKind.ORDER_ID] == [order_id]
    assert keys[KeyKind.CHAT_ROOM_ID] == [room_id]
    assert sorted(keys[KeyKind.REVIEW_ID]) == sorted([*catalog.review_ids, own_review])


@pytest.mark.asyncio
async def test_resolve_for_principal_without_secondary_entities(engine: AsyncEngine) -> None:
    user_id = await create_user(engine)
    resolver = await _resolver(engine)

    assert await resolver.resolve_owned_products(user_id) == []
    assert await resolver.resolve_owned_orders(user_id) == []


@pytest.mark.asyncio
async def test_lookup_against_absent_table_is_empty(bare_engine: AsyncEngine) -> None:
    await create_schema(bare_engine, exclude={"chat_rooms", "chat_participants", "messages"})
    user_id = await create_user(bare_engine)
    resolver = await _resolver(bare_engine)

    keys = await resolver.resolve({KeyKind.PRINCIPAL_ID: [user_id]}, build_plan(EntityKind.USER).derivations)

    assert keys[KeyKind.CHAT_ROOM_ID] == []


@pytest.mark.asyncio
async def test_lookup_with_real_error_raises_cascade_step_error() -> None:
    runner = AsyncMock(spec=AutocommitRunner)
    runner.scalars.side_effect = OperationalError("SELECT vendors.id", {}, Exception("database is locked"))
    resolver = SubCascadeResolver(runner, SchemaProbe.disabled())

    with pytest.raises(CascadeStepError) as exc_info:
        await resolver.resolve_owned_products("user-1")

    assert exc_info.value.table == "vendors"
    assert exc_info.value.cause == "database is locked"
