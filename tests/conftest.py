"""
Pytest fixtures for the inventory kernel test suite.

Provides:
- A database engine and tables created once per test session
- Per-test sessions isolated by transaction rollback
- Committing session factories (facade, sweeper, concurrency tests)
- Reference data factories: units, conversions, products, overrides

Environment Variables:
- DATABASE_URL: database URL.  PostgreSQL runs the full suite including
  the ``postgres``-marked concurrency tests.  If not set, a temporary
  SQLite file is used and those tests are skipped.

SQLite note: every transaction takes the database write lock, so a test
must use either ``session`` or ``session_factory``, never both.
"""

import json
import logging
import os
import threading
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from inventory_kernel.db.base import Base
from inventory_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from inventory_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from inventory_kernel.domain.clock import DeterministicClock
from inventory_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from inventory_kernel.models.uom import UnitCategory
from inventory_kernel.selectors.reservation_selector import ReservationSelector
from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_kernel.services.conversion_resolver import UnitConversionResolver
from inventory_kernel.services.movement_service import MovementService
from inventory_kernel.services.reference_data_service import ReferenceDataService
from inventory_kernel.services.reservation_service import ReservationService

# Organization used by every test unless it needs a second tenant
TEST_ORG_ID = UUID("00000000-0000-4000-8000-000000000001")

# (code, name, category, is_packaging)
STANDARD_UNITS = (
    ("EA", "Each", UnitCategory.COUNT, False),
    ("PK", "Pack", UnitCategory.COUNT, True),
    ("CS", "Case", UnitCategory.COUNT, True),
    ("PAL", "Pallet", UnitCategory.COUNT, True),
    ("KGM", "Kilogram", UnitCategory.MASS, False),
    ("GRM", "Gram", UnitCategory.MASS, False),
    ("LTR", "Litre", UnitCategory.VOLUME, False),
    ("MLT", "Millilitre", UnitCategory.VOLUME, False),
)

# 1 from = factor to, for every product
STANDARD_CONVERSIONS = (
    ("PK", "EA", "6"),
    ("CS", "EA", "24"),
    ("KGM", "GRM", "1000"),
    ("LTR", "MLT", "1000"),
)


def seed_standard_units(session: Session) -> None:
    """Create STANDARD_UNITS and STANDARD_CONVERSIONS in ``session``."""
    reference = ReferenceDataService(session)
    for code, name, category, is_packaging in STANDARD_UNITS:
        reference.create_unit(code, name, category=category, is_packaging=is_packaging)
    for from_unit, to_unit, factor in STANDARD_CONVERSIONS:
        reference.create_conversion(from_unit, to_unit, factor)


def is_postgres_url(url: str) -> bool:
    return url.startswith("postgresql")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture inventory_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, movement_service):
            movement_service.receive(...)
            assert any(r["message"] == "stock_received" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("inventory_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Markers
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL row locking"
    )


def pytest_collection_modifyitems(config, items):
    if is_postgres_url(os.environ.get("DATABASE_URL", "")):
        return
    skip = pytest.mark.skip(reason="needs DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip)


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def database_url(tmp_path_factory) -> str:
    url = os.environ.get("DATABASE_URL")
    if url:
        return url
    return f"sqlite:///{tmp_path_factory.mktemp('db') / 'inventory_test.db'}"


@pytest.fixture(scope="session")
def db_engine(database_url):
    """Single engine for the entire test session."""
    eng = init_engine_from_url(
        database_url, echo=False,
        pool_size=30, max_overflow=20, pool_timeout=10,
    )
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end.

    Immutability listeners are registered once and remain active.
    """
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


def _delete_all_rows(engine) -> None:
    """Remove committed test data.

    PostgreSQL uses TRUNCATE, which row-level immutability triggers do not
    see; SQLite has no triggers, so a Core DELETE per table is enough.
    """
    tables = reversed(Base.metadata.sorted_tables)
    with engine.begin() as conn:
        if engine.dialect.name == "postgresql":
            conn.execute(text("TRUNCATE " + ", ".join(t.name for t in tables) + " CASCADE"))
        else:
            for table in tables:
                conn.execute(table.delete())


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection; its
    own commits and the services' savepoints become SAVEPOINTs, and the
    outer transaction is rolled back at teardown.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Committing fixtures (real commits + DELETE cleanup)
# =============================================================================


@pytest.fixture
def session_factory(db_engine, db_tables):
    """Provide a tracked session factory whose sessions really commit.

    On teardown every tracked session is closed and all rows are deleted.
    """
    factory = get_session_factory()
    created_sessions = []
    lock = threading.Lock()
    closed = False

    def tracked_factory():
        with lock:
            if closed:
                raise RuntimeError("session_factory closed (fixture teardown)")
            s = factory()
            created_sessions.append(s)
            return s

    yield tracked_factory

    with lock:
        closed = True
    for s in created_sessions:
        if s.is_active:
            s.rollback()
        s.close()
    _delete_all_rows(db_engine)


@pytest.fixture
def committed_catalog(session_factory):
    """
    Standard units plus one product (base unit EA) committed to the database.

    Returns a dict with ``product_id`` and ``organization_id``.
    """
    with session_scope(session_factory) as sess:
        seed_standard_units(sess)
        product = ReferenceDataService(sess).create_product(
            TEST_ORG_ID, f"SKU-{uuid4().hex[:8]}", "Committed widget", "EA",
        )
        product_id = product.id
    return {"organization_id": TEST_ORG_ID, "product_id": product_id}


# =============================================================================
# Clock and identity fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def org_id() -> UUID:
    return TEST_ORG_ID


# =============================================================================
# Reference data fixtures
# =============================================================================


@pytest.fixture
def reference_data(session) -> ReferenceDataService:
    return ReferenceDataService(session)


@pytest.fixture
def standard_units(session):
    """Seed the standard unit catalog and global conversions."""
    seed_standard_units(session)
    return {code for code, *_ in STANDARD_UNITS}


@pytest.fixture
def create_product(reference_data, standard_units, org_id):
    """Factory fixture to create test products.  Returns the product id."""

    def _create(
        base_unit_code: str = "EA",
        sku: str | None = None,
        is_physical: bool = True,
        organization_id: UUID | None = None,
        overrides: dict[str, str] | None = None,
    ) -> UUID:
        product = reference_data.create_product(
            organization_id or org_id,
            sku or f"SKU-{uuid4().hex[:8]}",
            "Test product",
            base_unit_code,
            is_physical=is_physical,
        )
        for unit_code, quantity in (overrides or {}).items():
            reference_data.set_product_override(product.id, unit_code, quantity)
        return product.id

    return _create


@pytest.fixture
def product_id(create_product) -> UUID:
    """A physical product counted in EA with only global conversions."""
    return create_product()


# =============================================================================
# Service and selector fixtures
# =============================================================================


@pytest.fixture
def resolver(session) -> UnitConversionResolver:
    return UnitConversionResolver(session)


@pytest.fixture
def stock_selector(session, deterministic_clock) -> StockSelector:
    return StockSelector(session, deterministic_clock)


@pytest.fixture
def movement_service(session, deterministic_clock) -> MovementService:
    return MovementService(session, deterministic_clock)


@pytest.fixture
def reservation_service(session, deterministic_clock) -> ReservationService:
    return ReservationService(session, deterministic_clock)


@pytest.fixture
def reservation_selector(session, deterministic_clock) -> ReservationSelector:
    return ReservationSelector(session, deterministic_clock)


@pytest.fixture
def on_hand(stock_selector, org_id):
    """Loose on-hand stock of a product, in its base unit."""

    def _on_hand(product_id: UUID, warehouse_id: UUID | None = None) -> Decimal:
        return stock_selector.current_stock(org_id, product_id, warehouse_id).on_hand

    return _on_hand
