"""Fixtures for HTTP-level tests."""

import pytest
from httpx import ASGITransport, AsyncClient

from app.main import app


@pytest.fixture
async def client(database, catalog):
    """Async client bound to the app, with a fresh catalog per test."""
    app.state.catalog = catalog
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
