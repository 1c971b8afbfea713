from dependency_injector import containers, providers

from diaryapi.config import Settings
from diaryapi.services.point_settings_service import PointSettingsCache


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(Settings)


class ServiceModule(containers.DeclarativeContainer):
    """Service layer dependencies shared across requests."""

    config = providers.DependenciesContainer()

    # 프로세스 단위 포인트 설정 캐시 (설정 변경 시 무효화)
    settings_cache = providers.Singleton(
        PointSettingsCache,
        ttl_seconds=config.config.provided.SETTINGS_CACHE_TTL_SECONDS,
    )


class Container(containers.DeclarativeContainer):
    """Application container."""

    wiring_config = containers.WiringConfiguration(
        modules=[
            "diaryapi.deps",
        ],
    )

    config = providers.Container(ConfigModule)
    services = providers.Container(ServiceModule, config=config)
