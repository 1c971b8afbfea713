import os

# diaryapi.config 가 import 되기 전에 테스트 환경 설정
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("INTERNAL_API_TOKEN", "test-internal-token")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from diaryapi.models import points  # noqa: F401
from diaryapi.models.base import Base
from diaryapi.services.point_service import PointService
from diaryapi.services.point_settings_service import (
    PointSettingsCache,
    PointSettingsService,
)


@pytest.fixture
def engine():
    """테스트마다 새 인메모리 SQLite 데이터베이스"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    Session = sessionmaker(
        bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
    )
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings_cache():
    return PointSettingsCache(ttl_seconds=30)


@pytest.fixture
def settings_service(db_session, settings_cache):
    return PointSettingsService(db_session, cache=settings_cache)


@pytest.fixture
def point_service(db_session, settings_service):
    service = PointService(db_session, settings_store=settings_service)
    service.retry_backoff_seconds = 0
    return service
