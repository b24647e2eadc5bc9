"""Shared fixtures: a throwaway SQLite database per test and partner/inquiry factories."""

import os
import tempfile
from datetime import date, timedelta
from pathlib import Path

# Settings are read at import time; point them at SQLite before importing leads.
os.environ.setdefault("DB_URL", f"sqlite+aiosqlite:///{Path(tempfile.gettempdir()) / 'leads_import.db'}")
os.environ.setdefault("LOG_FORMAT", "text")

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from leads.models import Base, ServiceCategory, VerificationStatus  # noqa: E402
from leads.pipelines.partners import register_partner  # noqa: E402


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def event_date():
    return date.today() + timedelta(days=30)


@pytest.fixture
def make_partner(session):
    """Register a verified Mumbai wedding photographer, with overrides."""

    async def _make(**overrides):
        fields = {
            "business_name": "Studio",
            "categories": [ServiceCategory.WEDDING],
            "experience_years": 5,
            "price_min": 20000,
            "price_max": 60000,
            "city": "Mumbai",
            "state": "Maharashtra",
            "verification_status": VerificationStatus.VERIFIED,
            "rating_average": 4.0,
            "rating_count": 10,
        }
        fields.update(overrides)
        return await register_partner(session, **fields)

    return _make


@pytest.fixture
def inquiry_fields(event_date):
    return {
        "client_id": "client-1",
        "category": ServiceCategory.WEDDING,
        "city": "Mumbai",
        "state": "Maharashtra",
        "venue": "Grand Ballroom",
        "budget_min": 25000,
        "budget_max": 75000,
        "event_date": event_date,
        "event_time": "18:00",
        "duration_hours": 8,
        "guest_count": 200,
    }
