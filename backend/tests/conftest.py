"""Shared pytest fixtures for Chatport tests."""

import pytest
from httpx import ASGITransport, AsyncClient

from chatport.db.connection import Database
from chatport.gateway.sqlite import SqliteGateway
from chatport.importer.router import get_import_service
from chatport.importer.service import ImportService
from chatport.importer.store import ImportRunStore
from chatport.main import app


@pytest.fixture
async def db():
    """In-memory database for tests."""
    database = await Database.connect(":memory:")
    yield database
    await database.close()


@pytest.fixture
async def gateway(db):
    """SqliteGateway backed by in-memory database."""
    return SqliteGateway(db)


@pytest.fixture
async def run_store(db):
    return ImportRunStore(db)


@pytest.fixture
async def import_service(gateway, run_store):
    service = ImportService(gateway, run_store)
    yield service
    await service.shutdown()


@pytest.fixture
async def client(import_service):
    """Async test client with the in-memory import service wired into the app."""
    app.dependency_overrides[get_import_service] = lambda: import_service
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    app.dependency_overrides.clear()
