# Repository layer - Data access with Pydantic responses

from .base import BaseRepository
from .points_repository import PointsRepository
from .point_settings_repository import PointSettingsRepository
