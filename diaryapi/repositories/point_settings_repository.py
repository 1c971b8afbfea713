from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from diaryapi.models.points import PointSetting
from diaryapi.repositories.base import BaseRepository
from diaryapi.schemas.points import PointSettingEntry


class PointSettingsRepository(BaseRepository[PointSetting, PointSettingEntry]):
    """포인트 설정 테이블 접근"""

    def __init__(self, db: Session):
        super().__init__(PointSetting, PointSettingEntry, db)

    def get_all(self) -> List[PointSetting]:
        return self.db.query(PointSetting).all()

    def get_by_key(self, key: str) -> Optional[PointSetting]:
        return self.db.query(PointSetting).filter(PointSetting.key == key).first()

    def upsert(
        self,
        key: str,
        value: int,
        updated_by: Optional[str],
        description: Optional[str] = None,
    ) -> PointSetting:
        """설정 값 저장 (flush만 수행, 커밋은 서비스에서)"""
        row = self.get_by_key(key)
        now = datetime.now(timezone.utc)

        if row is None:
            row = PointSetting(
                key=key,
                value=value,
                description=description,
                updated_at=now,
                updated_by=updated_by,
            )
            self.db.add(row)
        else:
            row.value = value
            row.updated_at = now
            row.updated_by = updated_by
            if description and not row.description:
                row.description = description

        self.db.flush()
        return row
