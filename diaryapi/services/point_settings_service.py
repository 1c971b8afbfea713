import logging
import threading
import time
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from diaryapi.core.exceptions import InvalidSettingError, TransientStorageError
from diaryapi.repositories.point_settings_repository import PointSettingsRepository
from diaryapi.schemas.points import PointSettingEntry, PointSettingKey

logger = logging.getLogger(__name__)

# 설정 테이블이 비어 있어도 시스템이 동작하도록 하는 기본값 (1 포인트 = 1원)
DEFAULT_POINT_SETTINGS: Dict[PointSettingKey, int] = {
    PointSettingKey.POINTS_ENABLED: 1,
    PointSettingKey.STREAK_ENABLED: 1,
    PointSettingKey.DIARY_WRITE_POINTS: 100,
    PointSettingKey.FIRST_DIARY_BONUS: 500,
    PointSettingKey.STREAK_7_BONUS: 300,
    PointSettingKey.STREAK_14_BONUS: 700,
    PointSettingKey.STREAK_30_BONUS: 1500,
    PointSettingKey.STREAK_60_BONUS: 3500,
    PointSettingKey.STREAK_100_BONUS: 7000,
}

FLAG_SETTING_KEYS = frozenset(
    {PointSettingKey.POINTS_ENABLED, PointSettingKey.STREAK_ENABLED}
)

SETTING_DESCRIPTIONS: Dict[PointSettingKey, str] = {
    PointSettingKey.POINTS_ENABLED: "포인트 시스템 활성화 (0/1)",
    PointSettingKey.STREAK_ENABLED: "연속 작성 시스템 활성화 (0/1)",
    PointSettingKey.DIARY_WRITE_POINTS: "일기 작성 시 적립 포인트",
    PointSettingKey.FIRST_DIARY_BONUS: "첫 일기 보너스 포인트",
    PointSettingKey.STREAK_7_BONUS: "7일 연속 작성 보너스",
    PointSettingKey.STREAK_14_BONUS: "14일 연속 작성 보너스",
    PointSettingKey.STREAK_30_BONUS: "30일 연속 작성 보너스",
    PointSettingKey.STREAK_60_BONUS: "60일 연속 작성 보너스",
    PointSettingKey.STREAK_100_BONUS: "100일 연속 작성 보너스",
}


def default_settings() -> Dict[str, int]:
    return {key.value: value for key, value in DEFAULT_POINT_SETTINGS.items()}


class PointSettingsCache:
    """프로세스 단위 포인트 설정 캐시

    컨테이너에서 Singleton으로 주입되며, 설정 변경 시 무효화됩니다.
    다른 워커 프로세스의 변경은 TTL이 지나면 반영됩니다.
    """

    def __init__(
        self, ttl_seconds: float = 30, clock: Callable[[], float] = time.monotonic
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._values: Optional[Dict[str, int]] = None
        self._loaded_at = 0.0

    def get(self) -> Optional[Dict[str, int]]:
        with self._lock:
            if self._values is None:
                return None
            if self._clock() - self._loaded_at >= self.ttl_seconds:
                return None
            return dict(self._values)

    def last_known(self) -> Optional[Dict[str, int]]:
        with self._lock:
            return dict(self._values) if self._values is not None else None

    def put(self, values: Mapping[str, int]) -> None:
        with self._lock:
            self._values = dict(values)
            self._loaded_at = self._clock()

    def invalidate(self) -> None:
        with self._lock:
            self._loaded_at = float("-inf")


class PointSettingsService:
    """포인트 설정 저장소 - 기본값 위에 관리자 설정을 덮어쓴 전체 맵 제공"""

    def __init__(self, db: Session, cache: Optional[PointSettingsCache] = None):
        self.db = db
        self.repo = PointSettingsRepository(db)
        self.cache = cache if cache is not None else PointSettingsCache(ttl_seconds=0)

    def get_settings(self) -> Dict[str, int]:
        """모든 설정 키의 값을 반환 (저장소 오류 시에도 예외 없이 기본값 사용)

        Returns:
            Dict[str, int]: 인식되는 모든 설정 키 -> 값
        """
        cached = self.cache.get()
        if cached is not None:
            return cached

        try:
            rows = self.repo.get_all()
        except SQLAlchemyError as e:
            self.db.rollback()
            fallback = self.cache.last_known() or default_settings()
            logger.warning(f"Failed to load point settings, using fallback: {str(e)}")
            return fallback

        settings = default_settings()
        for row in rows:
            if row.key not in settings:
                logger.warning(f"Ignoring unknown point setting key in storage: {row.key}")
                continue
            settings[row.key] = int(row.value)

        self.cache.put(settings)
        return dict(settings)

    def get(self, key: PointSettingKey) -> int:
        return self.get_settings()[key.value]

    def list_setting_entries(self) -> List[PointSettingEntry]:
        """관리 화면용 설정 목록 (저장되지 않은 키는 기본값과 빈 감사 정보)"""
        rows = {row.key: row for row in self.repo.get_all()}
        entries = []
        for key, default in DEFAULT_POINT_SETTINGS.items():
            row = rows.get(key.value)
            entries.append(
                PointSettingEntry(
                    key=key,
                    value=int(row.value) if row else default,
                    description=(row.description if row else None)
                    or SETTING_DESCRIPTIONS[key],
                    updated_at=row.updated_at if row else None,
                    updated_by=row.updated_by if row else None,
                )
            )
        return entries

    @staticmethod
    def validate_setting(key: str, value: object) -> Tuple[PointSettingKey, int]:
        """설정 키/값 검증

        Raises:
            InvalidSettingError: 알 수 없는 키, 정수가 아닌 값, 음수, 0/1이 아닌 플래그
        """
        try:
            setting_key = PointSettingKey(key)
        except ValueError:
            raise InvalidSettingError(
                f"Unknown point setting: {key}", details={"key": key}
            )

        # bool은 int의 하위 타입이므로 명시적으로 거부
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidSettingError(
                f"Setting {key} must be an integer",
                details={"key": key, "value": repr(value)},
            )

        if setting_key in FLAG_SETTING_KEYS and value not in (0, 1):
            raise InvalidSettingError(
                f"Setting {key} must be 0 or 1",
                details={"key": key, "value": value},
            )

        if value < 0:
            raise InvalidSettingError(
                f"Setting {key} must be non-negative",
                details={"key": key, "value": value},
            )

        return setting_key, value

    def update_setting(
        self, key: str, value: int, actor_id: str
    ) -> PointSettingEntry:
        """단일 설정 변경 (관리자)"""
        setting_key, setting_value = self.validate_setting(key, value)
        self._apply({setting_key: setting_value}, actor_id)
        logger.info(f"Point setting {setting_key.value}={setting_value} updated by {actor_id}")

        row = self.repo.get_by_key(setting_key.value)
        return PointSettingEntry(
            key=setting_key,
            value=int(row.value),
            description=row.description,
            updated_at=row.updated_at,
            updated_by=row.updated_by,
        )

    def update_settings(
        self, values: Mapping[str, int], actor_id: str
    ) -> Dict[str, int]:
        """여러 설정을 한 번에 변경 - 모두 검증한 뒤 하나의 커밋으로 반영"""
        validated = dict(
            self.validate_setting(key, value) for key, value in values.items()
        )
        self._apply(validated, actor_id)
        logger.info(
            f"Point settings {sorted(k.value for k in validated)} updated by {actor_id}"
        )
        return self.get_settings()

    def _apply(self, values: Mapping[PointSettingKey, int], actor_id: str) -> None:
        try:
            for key, value in values.items():
                self.repo.upsert(
                    key=key.value,
                    value=value,
                    updated_by=actor_id,
                    description=SETTING_DESCRIPTIONS[key],
                )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to update point settings: {str(e)}")
            raise TransientStorageError(
                "Failed to update point settings", details={"error": str(e)}
            )
        finally:
            self.cache.invalidate()
