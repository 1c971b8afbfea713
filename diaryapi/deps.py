from dependency_injector.wiring import Provide, inject
from fastapi import Depends
from sqlalchemy.orm import Session

from diaryapi.config import Settings
from diaryapi.containers import Container
from diaryapi.database.session import get_db

# Services
from diaryapi.services.point_history_service import PointHistoryService
from diaryapi.services.point_service import PointService
from diaryapi.services.point_settings_service import (
    PointSettingsCache,
    PointSettingsService,
)

# 요청마다 새 DB 세션을 사용하고, 설정/설정 캐시는 컨테이너의 Singleton을 공유


@inject
def get_point_settings_service(
    db: Session = Depends(get_db),
    cache: PointSettingsCache = Depends(Provide[Container.services.settings_cache]),
) -> PointSettingsService:
    return PointSettingsService(db=db, cache=cache)


@inject
def get_point_service(
    db: Session = Depends(get_db),
    settings_service: PointSettingsService = Depends(get_point_settings_service),
    config: Settings = Depends(Provide[Container.config.config]),
) -> PointService:
    return PointService(db=db, settings_store=settings_service, settings=config)


@inject
def get_point_history_service(
    db: Session = Depends(get_db),
    config: Settings = Depends(Provide[Container.config.config]),
) -> PointHistoryService:
    return PointHistoryService(db=db, settings=config)
