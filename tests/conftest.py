import fnmatch
import os
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ledger.infrastructure.db import models  # noqa: F401
from ledger.infrastructure.db.session import Base, get_db
from ledger.main import app

USE_POSTGRES = os.environ.get("LEDGER_TEST_POSTGRES") == "1"


class FakeRedisClient:
    """In-memory stand-in for the handful of Redis commands the ledger uses."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}

    def ping(self) -> bool:
        return True

    def get(self, key: str) -> str | None:
        return self.store.get(key)

    def setex(self, key: str, _ttl: int, value: str) -> bool:
        self.store[key] = value
        return True

    def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    def eval(self, _script: str, _numkeys: int, key: str, token: str) -> int:
        if self.store.get(key) == token:
            del self.store[key]
            return 1
        return 0

    def keys(self, pattern: str = "*") -> list[str]:
        return [key for key in self.store if fnmatch.fnmatch(key, pattern)]


def run_migrations(database_url: str) -> None:
    from ledger.config import settings

    os.environ["DATABASE_URL"] = database_url
    settings.database_url = database_url
    alembic_config = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    command.upgrade(alembic_config, "head")


@pytest.fixture(scope="session")
def engine():
    if USE_POSTGRES:
        from testcontainers.postgres import PostgresContainer

        with PostgresContainer("postgres:16-alpine") as postgres:
            url = postgres.get_connection_url().replace("postgresql://", "postgresql+psycopg2://", 1)
            run_migrations(database_url=url)
            postgres_engine = create_engine(url, future=True)
            try:
                yield postgres_engine
            finally:
                postgres_engine.dispose()
        return

    sqlite_engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(sqlite_engine)
    try:
        yield sqlite_engine
    finally:
        sqlite_engine.dispose()


@pytest.fixture(autouse=True)
def clean_database(engine):
    with engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture
def testing_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(testing_session_factory):
    session = testing_session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    redis_client = FakeRedisClient()
    monkeypatch.setattr("ledger.infrastructure.cache.cache_service.get_redis_client", lambda: redis_client)
    monkeypatch.setattr("ledger.interfaces.api.v1.routes.ping.get_redis_client", lambda: redis_client)
    return redis_client


@pytest.fixture
def client(db_session):
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
