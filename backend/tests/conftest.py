"""
Pytest configuration and shared test fixtures.

Integration-style fixtures run the real repositories against a temporary
SQLite database (aiosqlite) and a temporary local blob directory.
"""

from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from src.core.config import Settings
from src.database.connection import (
    create_all_tables,
    create_engine,
    create_session_factory,
)
from src.database.models.transaction import TransactionEvent
from src.services.items.service import InventoryService
from src.services.storage.blob_store import LocalBlobStore

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n%%EOF\n"


def pdf(label: str) -> bytes:
    """Distinct valid PDF content per label."""
    return PDF_BYTES + f"% {label}\n".encode()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """
    Settings for tests.

    Returns:
        Settings pointing at a temporary database and blob directory
    """
    return Settings(
        environment="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}",
        attachment_local_root=str(tmp_path / "blobs"),
        attachment_max_bytes=64 * 1024,
        status_commit_retries=2,
        status_commit_backoff_seconds=0,
        saga_recovery_interval_seconds=0,
        transaction_scan_window=1000,
        transaction_scan_timeout_seconds=5.0,
        extraction_confidence_threshold=0.5,
    )


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh schema per test."""
    engine = create_engine(settings.database_url)
    await create_all_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def blob_root(tmp_path: Path) -> Path:
    return tmp_path / "blobs"


@pytest.fixture
def blob_store(blob_root: Path) -> LocalBlobStore:
    return LocalBlobStore(blob_root)


@pytest.fixture
def make_pdf():
    """Factory for distinct valid PDF payloads."""
    return pdf


@pytest_asyncio.fixture
async def client(
    session: AsyncSession, blob_store: LocalBlobStore
) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTP client for the API wired to the test database and blob directory.

    Lifespan events are not run, so no background recovery task starts.
    """
    from src.api.deps import get_blob_store
    from src.database.connection import get_db
    from src.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as http_client:
        yield http_client

    app.dependency_overrides.clear()


@pytest.fixture
def stock(session: AsyncSession):
    """
    Register items with a ``Stock_In/Active`` event each.

    Example:
        events = await stock("SN-1", "SN-2", location="Warehouse B")
    """

    async def _stock(*serial_numbers: str, location: str = "HQ") -> list[TransactionEvent]:
        service = InventoryService(session)
        events = []
        for serial in serial_numbers:
            _, event = await service.stock_in(
                serial_number=serial,
                equipment_category="Ultrasound",
                model="US-200",
                size="M",
                batch="B1",
                location=location,
            )
            events.append(event)
        return events

    return _stock
