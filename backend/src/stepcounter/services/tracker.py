"""Turns raw cumulative step counter readings into today's step count.

The hardware counter only ever grows, except that it restarts at zero when
the device boots. A tracking session remembers the reading it started from
(the baseline) and reports everything above it as live steps, flushing them
into the :class:`DailyStepStore` every ``save_interval`` steps.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional

from ..core.errors import PersistenceError, SensorUnavailableError, TrackerNotReadyError
from .daily_store import DailyStepStore
from .sensors import SensorSource

logger = logging.getLogger(__name__)

DEFAULT_SAVE_INTERVAL = 10


@dataclass
class TrackerState:
    day: Optional[date] = None
    baseline: Optional[int] = None  # None until the first reading
    live_steps: int = 0
    last_sensor_value: int = 0
    today_steps: int = 0
    monthly_steps: int = 0
    flush_pending: bool = False

    @property
    def display_total(self) -> int:
        return self.today_steps + self.live_steps


@dataclass(frozen=True)
class StepUpdate:
    display_total: int
    live_steps: int
    sensor_snapshot: int
    today_steps: int
    monthly_steps: int


@dataclass(frozen=True)
class TrackerSnapshot:
    day: str
    display_total: int
    today_steps: int
    live_steps: int
    sensor_value: int
    baseline: Optional[int]
    monthly_steps: int
    tracking: bool
    permitted: bool


class StepCounterListener:
    """Receives tracker events. Override only the hooks you care about."""

    def on_steps_updated(self, update: StepUpdate) -> None:
        return

    def on_steps_saved(self, total_steps: int) -> None:
        return

    def on_new_day(self) -> None:
        return

    def on_reboot(self) -> None:
        return

    def on_persistence_error(self, error: PersistenceError) -> None:
        return


class SensorBaselineTracker:
    def __init__(
        self,
        store: DailyStepStore,
        sensor_permitted: Callable[[], bool] = lambda: True,
        sensor_source: Optional[SensorSource] = None,
        save_interval: int = DEFAULT_SAVE_INTERVAL,
    ):
        if save_interval < 1:
            raise ValueError("save_interval must be at least 1")
        self.store = store
        self.save_interval = save_interval
        self._permitted = sensor_permitted
        self._source = sensor_source
        self._state = TrackerState()
        self._listeners: List[StepCounterListener] = []
        self._lock = threading.RLock()
        self._registered = False
        self._sensor_missing = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Subscribe to the sensor source.

        Returns False when sensor access is not permitted or the sensor was
        already found missing. Raises :class:`SensorUnavailableError` the
        first time the source reports no step counter.
        """
        if not self._permitted():
            logger.warning("[Tracker] Sensor access not permitted, staying idle")
            return False
        if self._sensor_missing:
            return False
        if self._registered:
            return True
        if self._source is None or not self._source.register(self.on_reading):
            self._sensor_missing = True
            raise SensorUnavailableError("no step counter sensor on this device")

        self._registered = True
        logger.info("[Tracker] Step sensor registered")
        self._load_persisted_totals()
        return True

    def stop(self) -> None:
        if self._registered and self._source is not None:
            self._source.unregister(self.on_reading)
            self._registered = False
            logger.info("[Tracker] Step sensor unregistered")

    @property
    def running(self) -> bool:
        return self._registered

    def __enter__(self) -> "SensorBaselineTracker":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _load_persisted_totals(self) -> None:
        try:
            today_steps = self.store.get_today_steps()
            monthly_steps = self.store.get_current_month_total()
        except PersistenceError as e:
            self._report_failure("loading persisted totals", e)
            return
        with self._lock:
            if self._state.baseline is None:
                self._state.today_steps = today_steps
            self._state.monthly_steps = monthly_steps

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: StepCounterListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: StepCounterListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, hook: str, *args) -> None:
        for listener in list(self._listeners):
            try:
                getattr(listener, hook)(*args)
            except Exception:
                logger.exception(f"[Tracker] Listener {listener!r} failed in {hook}")

    def _emit_update(self) -> None:
        state = self._state
        self._emit(
            "on_steps_updated",
            StepUpdate(
                display_total=state.display_total,
                live_steps=state.live_steps,
                sensor_snapshot=state.last_sensor_value,
                today_steps=state.today_steps,
                monthly_steps=state.monthly_steps,
            ),
        )

    def _report_failure(self, action: str, error: PersistenceError) -> None:
        logger.warning(f"[Tracker] {action} failed, will retry on next event: {error}")
        self._emit("on_persistence_error", error)

    # ------------------------------------------------------------------
    # Sensor readings
    # ------------------------------------------------------------------

    def on_reading(self, raw: int) -> None:
        if raw < 0:
            logger.warning(f"[Tracker] Ignoring negative sensor value {raw}")
            return
        if not self._permitted():
            logger.debug("[Tracker] Sensor access not permitted, reading dropped")
            return

        with self._lock:
            state = self._state
            state.last_sensor_value = raw

            if state.baseline is None:
                self._begin_session(raw)
            elif state.day != self.store.today():
                logger.info(f"[Tracker] Date changed from {state.day}, starting new day")
                self._begin_session(raw)
            elif raw < state.baseline:
                self._handle_reboot(raw)
            else:
                self._track_progress(raw)

    def _begin_session(self, raw: int) -> None:
        try:
            self._start_session(raw)
        except PersistenceError as e:
            self._report_failure("initializing today's data", e)

    def _start_session(self, raw: int) -> None:
        today_steps, is_new_day = self.store.start_today(raw)

        state = self._state
        state.day = self.store.today()
        state.today_steps = today_steps
        state.baseline = raw
        state.live_steps = 0
        state.flush_pending = False
        self._refresh_monthly()
        logger.info(f"[Tracker] Tracking from baseline={raw}, today_steps={today_steps}")

        if is_new_day:
            self._emit("on_new_day")
        self._emit_update()

    def _handle_reboot(self, raw: int) -> None:
        logger.info(f"[Tracker] Reboot detected: {raw} < baseline {self._state.baseline}")
        try:
            today_steps, _ = self.store.start_today(raw)
        except PersistenceError as e:
            self._report_failure("reconciling after reboot", e)
            return

        state = self._state
        state.today_steps = today_steps
        state.baseline = raw
        state.live_steps = 0
        state.flush_pending = False

        self._emit("on_reboot")
        self._emit_update()

    def _track_progress(self, raw: int) -> None:
        state = self._state
        delta = raw - state.baseline
        changed = delta != state.live_steps
        if changed:
            state.live_steps = delta
            self._emit_update()

        due = changed and state.live_steps > 0 and state.live_steps % self.save_interval == 0
        if due or (state.flush_pending and state.live_steps > 0):
            try:
                self._commit(raw)
            except PersistenceError as e:
                state.flush_pending = True
                self._report_failure("periodic save", e)

    def _commit(self, raw: int) -> int:
        """Write today's total and rebase on ``raw``; state moves only on success."""
        state = self._state
        total = state.today_steps + state.live_steps
        self.store.save_today_steps(total, raw)

        state.today_steps = total
        state.live_steps = 0
        state.baseline = raw
        state.flush_pending = False
        logger.debug(f"[Tracker] Saved {total}, new baseline={raw}")

        self._refresh_monthly()
        self._emit("on_steps_saved", total)
        self._emit_update()
        return total

    def _refresh_monthly(self) -> None:
        try:
            self._state.monthly_steps = self.store.get_current_month_total()
        except PersistenceError as e:
            logger.warning(f"[Tracker] Could not refresh monthly total: {e}")

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    def manual_save(self) -> int:
        """Flush live steps now, ignoring the save cadence. Returns the saved total."""
        with self._lock:
            state = self._state
            if state.baseline is None:
                raise TrackerNotReadyError("no sensor reading received yet")
            if state.day != self.store.today():
                # yesterday is closed; the save starts today's session instead
                logger.info(f"[Tracker] Date changed from {state.day}, starting new day")
                self._start_session(state.last_sensor_value)
                return state.today_steps
            if state.last_sensor_value >= state.baseline:
                state.live_steps = state.last_sensor_value - state.baseline
            return self._commit(state.last_sensor_value)

    def refresh(self) -> None:
        """Reload persisted totals and clear the live delta.

        The baseline is kept, so steps that were live but unsaved come back
        with the next reading. On a new calendar day today's session starts
        instead.
        """
        with self._lock:
            state = self._state
            if state.baseline is not None and state.day != self.store.today():
                logger.info(f"[Tracker] Date changed from {state.day}, starting new day")
                self._start_session(state.last_sensor_value)
                return

            today_steps = self.store.get_today_steps()
            state.today_steps = today_steps
            state.live_steps = 0
            self._refresh_monthly()
            logger.info(f"[Tracker] Refreshed, today_steps={today_steps}")
            self._emit_update()

    def reset(self) -> None:
        with self._lock:
            self._state.baseline = None
            self._state.day = None
            self._state.live_steps = 0
            self._state.flush_pending = False
        logger.info("[Tracker] Baseline reset")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def state(self) -> TrackerState:
        with self._lock:
            return TrackerState(**vars(self._state))

    def current_display_total(self) -> int:
        with self._lock:
            return self._state.display_total

    def snapshot(self) -> TrackerSnapshot:
        with self._lock:
            state = self._state
            return TrackerSnapshot(
                day=(state.day or self.store.today()).isoformat(),
                display_total=state.display_total,
                today_steps=state.today_steps,
                live_steps=state.live_steps,
                sensor_value=state.last_sensor_value,
                baseline=state.baseline,
                monthly_steps=state.monthly_steps,
                tracking=state.baseline is not None,
                permitted=self._permitted(),
            )
