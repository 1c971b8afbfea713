import logging
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text

from diaryapi.config import settings
from diaryapi.database.connection import engine
from diaryapi.database.session import get_db_context
from diaryapi.logging_config import setup_logging
from diaryapi.models import points  # noqa: F401  테이블 등록
from diaryapi.models.base import Base
from diaryapi.repositories.point_settings_repository import PointSettingsRepository
from diaryapi.services.point_settings_service import (
    DEFAULT_POINT_SETTINGS,
    SETTING_DESCRIPTIONS,
)

logger = logging.getLogger("diaryapi.scripts.init_db")


def seed_point_settings() -> int:
    """저장되지 않은 포인트 설정 키를 기본값으로 채움 (기존 값은 유지)"""
    created = 0
    with get_db_context() as db:
        repo = PointSettingsRepository(db)
        for key, value in DEFAULT_POINT_SETTINGS.items():
            if repo.get_by_key(key.value) is not None:
                continue
            repo.upsert(
                key=key.value,
                value=value,
                updated_by=None,
                description=SETTING_DESCRIPTIONS[key],
            )
            created += 1
    return created


def init_db():
    """데이터베이스 초기화"""
    try:
        # 스키마 생성
        if engine.dialect.name == "postgresql":
            with engine.connect() as conn:
                conn.execute(
                    text(f"CREATE SCHEMA IF NOT EXISTS {settings.POSTGRES_SCHEMA}")
                )
                conn.commit()

        # 테이블 생성
        Base.metadata.create_all(bind=engine)
        created = seed_point_settings()
        logger.info(
            f"Database initialized with schema {settings.POSTGRES_SCHEMA}, "
            f"seeded {created} point settings"
        )

    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
        raise


if __name__ == "__main__":
    setup_logging(settings.LOG_LEVEL)
    init_db()
