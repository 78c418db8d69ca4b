"""Pytest configuration and fixtures."""

import os

# Set test configuration BEFORE any safe_delete imports
# This must be done before safe_delete.core.config loads settings
os.environ["DEBUG"] = "true"
os.environ.setdefault("SECRET_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["PROTECTED_EMAILS"] = "Owner@Marketplace.example, ops@marketplace.example"
os.environ["OTEL_SDK_DISABLED"] = "true"

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from safe_delete.deletion.guard import ProtectedEntityGuard
from safe_delete.deletion.service import DeletionService
from tests.helpers.marketplace import create_schema, create_test_engine

pytest_plugins = ["tests.fixtures.otel"]


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "marketplace.db"


@pytest.fixture
async def bare_engine(db_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Engine on an empty SQLite file (no tables).

    Tests that simulate schema drift create their own subset of tables.
    """
    engine = create_test_engine(db_path)
    yield engine
    await engine.dispose()


@pytest.fixture
async def engine(bare_engine: AsyncEngine) -> AsyncEngine:
    """Engine on a SQLite file with the full known schema."""
    await create_schema(bare_engine)
    return bare_engine


@pytest.fixture
def service(engine: AsyncEngine) -> DeletionService:
    """Deletion service with the configured protected emails and default settings."""
    return DeletionService(engine, guard=ProtectedEntityGuard.from_settings())
