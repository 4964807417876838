from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from zoneinfo import ZoneInfo

from taskbot.database import init_db
from taskbot.service import TaskService
from taskbot.store import TaskStore

TZ = ZoneInfo("Europe/Moscow")


@pytest.fixture
def now():
    # Tuesday
    return datetime(2025, 7, 15, 10, 0, tzinfo=TZ)


@pytest.fixture
def store():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_db(engine)
    yield TaskStore(sessionmaker(bind=engine, autoflush=False, autocommit=False))
    engine.dispose()


@pytest.fixture
def service(store):
    return TaskService(store, max_attempts=3)
