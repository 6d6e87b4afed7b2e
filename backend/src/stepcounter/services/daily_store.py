"""Date-keyed step ledger with reconciliation of steps taken while no tracker ran."""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Tuple, Union

from ..models.steps import DailyStepPoint, DailySteps
from ..repositories.daily_steps import DailyStepsRepository

logger = logging.getLogger(__name__)

DayLike = Union[date, str]


def day_key(day: DayLike) -> str:
    """Normalize a date or ``yyyy-MM-dd`` string to the stored key format."""
    if isinstance(day, datetime):
        return day.date().isoformat()
    if isinstance(day, date):
        return day.isoformat()
    return date.fromisoformat(day).isoformat()


def month_prefix(year: int, month: int) -> str:
    if not 1 <= month <= 12:
        raise ValueError(f"month must be in 1..12, got {month}")
    return f"{year:04d}-{month:02d}"


class DailyStepStore:
    """Durable per-day step totals shared by every tracking session.

    ``clock`` decides what "today" is; it defaults to local wall-clock time.
    All read-modify-write sequences run under one process-wide lock.
    """

    def __init__(
        self,
        repository: DailyStepsRepository,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self._clock = clock or datetime.now
        self._lock = threading.RLock()

    def today(self) -> date:
        return self._clock().date()

    def _now_millis(self) -> int:
        return int(self._clock().timestamp() * 1000)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def initialize_today_data(self, current_sensor_value: int) -> int:
        """Return today's reconciled total, folding in steps taken while absent.

        A missing record means a new calendar day: it starts at zero with the
        current reading as snapshot. Otherwise the difference to the stored
        snapshot is added when positive; a negative difference means the
        counter was reset by a reboot, so only the snapshot is rebased.
        """
        accumulated, _ = self.start_today(current_sensor_value)
        return accumulated

    def start_today(self, current_sensor_value: int) -> Tuple[int, bool]:
        """Like :meth:`initialize_today_data`, also reporting whether today's
        record was created by this call.

        Creation and reconciliation are each a single conditional statement,
        so a second process working on the same row cannot make either
        half apply twice.
        """
        today = self.today().isoformat()
        with self._lock:
            created = self.repository.insert_if_absent(
                DailySteps(
                    date=today,
                    accumulated_steps=0,
                    sensor_snapshot=current_sensor_value,
                    timestamp=self._now_millis(),
                )
            )
            if created:
                logger.info(
                    f"[DailyStepStore] New day {today}, snapshot={current_sensor_value}"
                )
                return 0, True

            record = self.repository.apply_sensor_value(
                today, current_sensor_value, self._now_millis()
            )
            if record is None:
                # deleted between the two statements
                return self.start_today(current_sensor_value)

            logger.info(
                f"[DailyStepStore] Reconciled {today}: {record.accumulated_steps} steps, "
                f"snapshot={current_sensor_value}"
            )
            return record.accumulated_steps, False

    def save_today_steps(self, accumulated_steps: int, sensor_snapshot: int) -> bool:
        """Persist today's total; ignored unless it grows the stored value."""
        today = self.today().isoformat()
        now = self._now_millis()
        with self._lock:
            created = self.repository.insert_if_absent(
                DailySteps(
                    date=today,
                    accumulated_steps=accumulated_steps,
                    sensor_snapshot=sensor_snapshot,
                    timestamp=now,
                )
            )
            if created:
                logger.debug(f"[DailyStepStore] Saved {accumulated_steps} for {today}")
                return True

            saved = self.repository.update_fields(
                today, accumulated_steps, sensor_snapshot, now, only_if_greater=True
            )
            if saved:
                logger.debug(f"[DailyStepStore] Updated {today} to {accumulated_steps}")
            else:
                logger.debug(
                    f"[DailyStepStore] Ignored stale write {accumulated_steps} for {today}"
                )
            return saved

    def has_today_record(self) -> bool:
        return self.repository.get_by_date(self.today().isoformat()) is not None

    def handle_date_change(self) -> bool:
        """True when tracking starts on a day that has no record yet."""
        is_new_day = not self.has_today_record()
        if is_new_day:
            logger.info(f"[DailyStepStore] No record for {self.today()}, new day")
        return is_new_day

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_steps_for_date(self, day: DayLike) -> int:
        record = self.repository.get_by_date(day_key(day))
        return record.accumulated_steps if record else 0

    def get_today_steps(self) -> int:
        return self.get_steps_for_date(self.today())

    def get_steps_in_range(self, start: DayLike, end: DayLike) -> List[DailyStepPoint]:
        """One point per calendar day in ``[start, end]``, zero-filled."""
        start_day = date.fromisoformat(day_key(start))
        end_day = date.fromisoformat(day_key(end))
        if start_day > end_day:
            return []

        rows = self.repository.list_between(start_day.isoformat(), end_day.isoformat())
        by_date = {row.date: row.accumulated_steps for row in rows}

        points = []
        current = start_day
        while current <= end_day:
            key = current.isoformat()
            points.append(DailyStepPoint(date=key, steps=by_date.get(key, 0)))
            current += timedelta(days=1)

        logger.debug(
            f"[DailyStepStore] Range {start_day} ~ {end_day}: {len(points)} days"
        )
        return points

    def get_total_in_range(self, start: DayLike, end: DayLike) -> int:
        return self.repository.sum_between(day_key(start), day_key(end)) or 0

    def get_monthly_total(self, year: int, month: int) -> int:
        return self.repository.sum_by_month_prefix(month_prefix(year, month)) or 0

    def get_current_month_total(self) -> int:
        today = self.today()
        return self.get_monthly_total(today.year, today.month)

    def get_recent_steps(self, limit: int = 7) -> List[DailyStepPoint]:
        return [
            DailyStepPoint(date=row.date, steps=row.accumulated_steps)
            for row in self.repository.list_recent(limit)
        ]

    def get_all_steps(self) -> List[DailyStepPoint]:
        return [
            DailyStepPoint(date=row.date, steps=row.accumulated_steps)
            for row in self.repository.list_all()
        ]

    # ------------------------------------------------------------------
    # Wipes
    # ------------------------------------------------------------------

    def delete_date(self, day: DayLike) -> None:
        key = day_key(day)
        with self._lock:
            self.repository.delete_by_date(key)
        logger.info(f"[DailyStepStore] Deleted {key}")

    def delete_all(self) -> None:
        with self._lock:
            self.repository.delete_all()
        logger.info("[DailyStepStore] Deleted all step data")
