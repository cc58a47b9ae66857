"""Pytest configuration and fixtures."""

from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from therapy_progress.core.models import Base
from therapy_progress.core.repository import SqlTherapyStore
from therapy_progress.tracking.models import (
    BaselineData,
    MasteryCriteria,
    TargetData,
    TherapyGoal,
    TherapyTask,
    TherapyType,
)


@pytest.fixture
async def session():
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as sess:
        yield sess
        await sess.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def store(session: AsyncSession) -> SqlTherapyStore:
    return SqlTherapyStore(session)


@pytest.fixture
def make_goal():
    """Factory for goals with baseline 0, target 10, thresholds 80/70."""

    def _make(**overrides) -> TherapyGoal:
        data = dict(
            patient_id="patient-1",
            therapist_id="therapist-1",
            therapy_type=TherapyType.SPEECH,
            title="Request preferred items",
            category="Communication",
            baseline=BaselineData(
                frequency=0,
                accuracy=0,
                independence=0,
                date=datetime(2026, 1, 5, tzinfo=timezone.utc),
            ),
            target=TargetData(frequency=10, accuracy=80, independence=70, timeframe_days=30),
            mastery_criteria=MasteryCriteria(
                consecutive_days=3, accuracy_threshold=80, independence_threshold=70
            ),
        )
        data.update(overrides)
        return TherapyGoal(**data)

    return _make


@pytest.fixture
def make_task():
    def _make(**overrides) -> TherapyTask:
        data = dict(title="Request preferred item", description="Use AAC to request an item")
        data.update(overrides)
        return TherapyTask(**data)

    return _make
