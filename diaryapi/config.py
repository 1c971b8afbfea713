from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from urllib.parse import quote_plus


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="diaryapi/.env",
        env_file_encoding="utf-8",
        extra="allow",
    )
    # Application
    APP_NAME: str = "Diary Points API"
    PROJECT_NAME: str = "Diary Points API"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USERNAME: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DATABASE: str = "postgres"
    POSTGRES_SCHEMA: str = "diary"

    # 지정되면 POSTGRES_* 조합 대신 그대로 사용 (테스트용 sqlite 등)
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT_SECONDS: int = 10
    DB_LOCK_TIMEOUT_MS: int = 3000  # 사용자 포인트 행 잠금 대기 한도
    DB_STATEMENT_TIMEOUT_MS: int = 10000

    @property
    def database_url(self) -> str:
        """Construct database URL from individual components"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # URL encode the password to handle special characters
        encoded_password = quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+psycopg2://{self.POSTGRES_USERNAME}:{encoded_password}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"

    # Security
    SECRET_KEY: str = ""
    JWT_ALGORITHM: str = "HS256"
    INTERNAL_API_TOKEN: str = ""  # 일기 작성/결제 플로우에서 호출하는 내부 API 토큰

    # Point Ledger
    LEDGER_MAX_RETRIES: int = 3  # 잠금 충돌 등 일시적 오류 재시도 횟수
    LEDGER_RETRY_BACKOFF_SECONDS: float = 0.05
    SETTINGS_CACHE_TTL_SECONDS: int = 30  # 포인트 설정 캐시 유지 시간

    # Pagination
    HISTORY_DEFAULT_LIMIT: int = 20
    HISTORY_MAX_LIMIT: int = 100


settings = Settings()
