"""Process-wide step counting service shared by the API and background workers."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from ..core import database
from ..core.config import Settings, get_settings
from ..core.errors import SensorUnavailableError
from ..repositories.daily_steps import DailyStepsRepository
from .daily_store import DailyStepStore
from .sensors import PushSensorSource
from .tracker import SensorBaselineTracker, StepCounterListener, StepUpdate

logger = logging.getLogger(__name__)


@dataclass
class ServiceNotification:
    title: str
    text: str


class StepCounterService(StepCounterListener):
    """Owns the single store, sensor source and tracker of this process."""

    def __init__(
        self,
        store: DailyStepStore,
        sensor: PushSensorSource,
        settings: Settings,
    ):
        self.settings = settings
        self.store = store
        self.sensor = sensor
        self.tracker = SensorBaselineTracker(
            store,
            sensor_permitted=lambda: self.settings.sensor_access_permitted,
            sensor_source=sensor,
            save_interval=settings.save_interval,
        )
        self.tracker.add_listener(self)
        self.notification = ServiceNotification("Step counter", "Service created")

    def start(self) -> bool:
        try:
            started = self.tracker.start()
        except SensorUnavailableError as e:
            logger.error(f"[StepCounterService] {e}")
            self.notification = ServiceNotification("Step counter", "No step sensor available")
            return False

        if started:
            total = self.tracker.current_display_total()
            self.notification = ServiceNotification("Counting steps", f"Today: {total} steps")
        else:
            self.notification = ServiceNotification("Step counter", "Sensor access not permitted")
        return started

    def stop(self) -> None:
        self.tracker.stop()
        self.notification = ServiceNotification("Step counter", "Service stopped")
        logger.info("[StepCounterService] Stopped")

    @property
    def running(self) -> bool:
        return self.tracker.running

    def on_steps_updated(self, update: StepUpdate) -> None:
        self.notification = ServiceNotification(
            "Counting steps", f"Today: {update.display_total} steps"
        )

    def on_new_day(self) -> None:
        logger.info("[StepCounterService] New day started")

    def on_reboot(self) -> None:
        logger.info("[StepCounterService] Device reboot detected")


_service: Optional[StepCounterService] = None
_service_lock = threading.Lock()


def build_step_service(settings: Optional[Settings] = None) -> StepCounterService:
    settings = settings or get_settings()
    store = DailyStepStore(DailyStepsRepository(database.engine))
    return StepCounterService(store, PushSensorSource(), settings)


def get_step_service() -> StepCounterService:
    """Return the shared service, creating and starting it on first use."""
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                service = build_step_service()
                service.start()
                _service = service
    return _service


def shutdown_step_service() -> None:
    global _service
    with _service_lock:
        if _service is not None:
            _service.stop()
            _service = None
