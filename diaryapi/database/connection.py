from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from diaryapi.config import Settings, settings


def build_engine(app_settings: Settings) -> Engine:
    """설정값으로 SQLAlchemy 엔진 생성

    PostgreSQL에서는 잠금/구문 타임아웃을 세션 옵션으로 지정하여
    사용자 포인트 행 잠금 대기가 무한정 길어지지 않도록 합니다.
    """
    url = app_settings.database_url

    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=app_settings.DEBUG,
        )

    options = (
        f"-csearch_path={app_settings.POSTGRES_SCHEMA}"
        f" -clock_timeout={app_settings.DB_LOCK_TIMEOUT_MS}"
        f" -cstatement_timeout={app_settings.DB_STATEMENT_TIMEOUT_MS}"
    )
    return create_engine(
        url,
        pool_size=app_settings.DB_POOL_SIZE,
        max_overflow=app_settings.DB_MAX_OVERFLOW,
        pool_timeout=app_settings.DB_POOL_TIMEOUT_SECONDS,
        pool_pre_ping=True,  # 연결 유효성 검사
        pool_recycle=3600,  # 1시간마다 연결 재생성
        echo=app_settings.DEBUG,  # 디버그 모드에서 SQL 로깅
        connect_args={"options": options},
    )


engine = build_engine(settings)

# Use expire_on_commit=False to avoid DetachedInstanceError when accessing
# attributes after commit within the same request scope (common FastAPI pattern).
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,
)
