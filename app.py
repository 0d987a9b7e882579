import logging

from config import load_settings
from events import EventBus
from settings_schema import SettingsSchema
from snapshot_service import SnapshotService
from stats_service import AsyncStatisticsService, StatisticsService
from db import load_default_catalog
from store import WorkoutStore

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


class LiftLogApp:
    """Wires the store, event bus, analytics and snapshot services together."""

    def __init__(
        self,
        db_path: str | None = None,
        yaml_path: str = "settings.yaml",
        *,
        settings: SettingsSchema | None = None,
    ) -> None:
        self.settings = settings or load_settings(yaml_path)
        self.db_path = db_path or self.settings.db_path
        self.bus = EventBus()
        catalog = load_default_catalog(self.settings.catalog_path)
        self.store = WorkoutStore(self.db_path, self.bus, catalog=catalog)
        if self.settings.seed_defaults:
            self.store.seed_default_exercises()
        self.statistics = StatisticsService(
            self.store, self.bus, debounce_window=self.settings.debounce_ms / 1000
        )
        self.async_statistics = AsyncStatisticsService(self.db_path)
        self.snapshots = SnapshotService(self.store)

    def close(self) -> None:
        self.statistics.close()
