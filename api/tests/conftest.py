"""
Pytest configuration and fixtures for Inventory Recon tests.

Every test gets its own file-backed SQLite database (aiosqlite) with the
full schema created from the ORM metadata.
"""
import os
import tempfile
from datetime import datetime, timedelta, timezone

# Set test environment before importing app modules
_TEST_ROOT = tempfile.mkdtemp(prefix="inventory-recon-tests-")
os.environ["INVENTORY_DATA_ROOT"] = _TEST_ROOT
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_ROOT}/health.db"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, select

from inventory_recon.database import build_engine, build_session_factory, create_all, get_session
from inventory_recon.db_models import TransitRecord
from inventory_recon.services.purchasing import PurchasingService
from inventory_recon.services.receiving import ProductLocks
from inventory_recon.services.snapshot import snapshot_cache


class StepClock:
    """Deterministic clock: every call is one step later than the previous."""

    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.now = start or datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self):
        self.now = self.now + self.step
        return self.now


def _sqlite_transactions(engine):
    """pysqlite/aiosqlite need explicit BEGIN for SAVEPOINT to work."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'recon.db'}")
    _sqlite_transactions(engine)
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def locks() -> ProductLocks:
    return ProductLocks()


@pytest.fixture
def save_po(db, clock):
    """Save and book a purchase order, committed. Lines are dicts."""

    async def _save(lines, supplier="Acme Supplies", invoice_number=None, invoice_date=None):
        saved = await PurchasingService(db, clock=clock).save_purchase_order(
            {"name": supplier},
            {"invoice_number": invoice_number, "invoice_date": invoice_date},
            lines,
        )
        await db.commit()
        return saved

    return _save


@pytest.fixture
def transit_for(db):
    """Transit records of a product, oldest first."""

    async def _records(product_id):
        stmt = (
            select(TransitRecord)
            .where(TransitRecord.product_id == product_id)
            .order_by(TransitRecord.created_at, TransitRecord.id)
        )
        return list((await db.execute(stmt)).scalars())

    return _records


@pytest_asyncio.fixture
async def client(session_factory):
    from inventory_recon.main import app

    async def _session_override():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = _session_override
    snapshot_cache.clear()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
    snapshot_cache.clear()
