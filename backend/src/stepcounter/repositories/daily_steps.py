from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import case, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, func, select

from ..core.errors import PersistenceError
from ..models.steps import DailySteps

logger = logging.getLogger(__name__)


def _latest(timestamp: int):
    # stored timestamp never moves backwards
    return case((DailySteps.timestamp > timestamp, DailySteps.timestamp), else_=timestamp)


class DailyStepsRepository:
    """CRUD access to the ``daily_steps`` table.

    Every method runs in its own session and commits or rolls back as a whole,
    so a record is never left half-updated. SQLAlchemy failures surface as
    :class:`PersistenceError`.
    """

    def __init__(self, engine: Engine):
        self._engine = engine

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        with Session(self._engine, expire_on_commit=False) as session:
            try:
                yield session
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"[DailyStepsRepository] {action} failed: {e}")
                raise PersistenceError(f"{action} failed: {e}") from e

    def get_by_date(self, day: str) -> Optional[DailySteps]:
        with self._session("get_by_date") as session:
            return session.get(DailySteps, day)

    def upsert(self, record: DailySteps) -> DailySteps:
        with self._session("upsert") as session:
            row = session.get(DailySteps, record.date)
            if row is None:
                row = DailySteps(
                    date=record.date,
                    accumulated_steps=record.accumulated_steps,
                    sensor_snapshot=record.sensor_snapshot,
                    timestamp=record.timestamp,
                )
            else:
                row.accumulated_steps = record.accumulated_steps
                row.sensor_snapshot = record.sensor_snapshot
                row.timestamp = max(row.timestamp, record.timestamp)
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    def insert_if_absent(self, record: DailySteps) -> bool:
        """Insert ``record`` unless its date already has a row.

        Returns whether the row was created. A concurrent writer that created
        the row first wins; its values are left untouched.
        """
        with self._session("insert_if_absent") as session:
            session.add(
                DailySteps(
                    date=record.date,
                    accumulated_steps=record.accumulated_steps,
                    sensor_snapshot=record.sensor_snapshot,
                    timestamp=record.timestamp,
                )
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
            return True

    def update_fields(
        self,
        day: str,
        accumulated_steps: int,
        sensor_snapshot: int,
        timestamp: int,
        *,
        only_if_greater: bool = False,
    ) -> bool:
        """Update both counters of an existing row with one UPDATE statement.

        With ``only_if_greater`` the condition is part of the statement, so
        the write is skipped unless ``accumulated_steps`` exceeds the value
        stored at write time, whichever process wrote it. Returns whether a
        row was written.
        """
        stmt = (
            update(DailySteps)
            .where(DailySteps.date == day)
            .values(
                accumulated_steps=accumulated_steps,
                sensor_snapshot=sensor_snapshot,
                timestamp=_latest(timestamp),
            )
        )
        if only_if_greater:
            stmt = stmt.where(DailySteps.accumulated_steps < accumulated_steps)

        with self._session("update_fields") as session:
            result = session.connection().execute(stmt)
            session.commit()
            return result.rowcount > 0

    def apply_sensor_value(self, day: str, sensor_value: int, timestamp: int) -> Optional[DailySteps]:
        """Reconcile a row with a fresh sensor value in one UPDATE statement.

        Steps counted since the stored snapshot are added to
        ``accumulated_steps``; a lower value (counter reset) only moves the
        snapshot. Nothing is written when the snapshot already matches.
        Returns the row as stored afterwards, or None when it is missing.
        """
        stmt = (
            update(DailySteps)
            .where(DailySteps.date == day, DailySteps.sensor_snapshot != sensor_value)
            .values(
                accumulated_steps=case(
                    (
                        DailySteps.sensor_snapshot < sensor_value,
                        DailySteps.accumulated_steps + (sensor_value - DailySteps.sensor_snapshot),
                    ),
                    else_=DailySteps.accumulated_steps,
                ),
                sensor_snapshot=sensor_value,
                timestamp=_latest(timestamp),
            )
        )
        with self._session("apply_sensor_value") as session:
            session.connection().execute(stmt)
            row = session.get(DailySteps, day)
            session.commit()
            return row

    def sum_between(self, start: str, end: str) -> Optional[int]:
        with self._session("sum_between") as session:
            stmt = select(func.sum(DailySteps.accumulated_steps)).where(
                DailySteps.date >= start,
                DailySteps.date <= end,
            )
            return session.exec(stmt).one()

    def sum_by_month_prefix(self, month_prefix: str) -> Optional[int]:
        with self._session("sum_by_month_prefix") as session:
            stmt = select(func.sum(DailySteps.accumulated_steps)).where(
                DailySteps.date.like(f"{month_prefix}-%")
            )
            return session.exec(stmt).one()

    def list_between(self, start: str, end: str) -> List[DailySteps]:
        with self._session("list_between") as session:
            stmt = (
                select(DailySteps)
                .where(DailySteps.date >= start, DailySteps.date <= end)
                .order_by(DailySteps.date)
            )
            return list(session.exec(stmt).all())

    def list_recent(self, limit: int) -> List[DailySteps]:
        with self._session("list_recent") as session:
            stmt = select(DailySteps).order_by(DailySteps.date.desc()).limit(limit)
            return list(session.exec(stmt).all())

    def list_all(self) -> List[DailySteps]:
        with self._session("list_all") as session:
            stmt = select(DailySteps).order_by(DailySteps.date.desc())
            return list(session.exec(stmt).all())

    def delete_by_date(self, day: str) -> None:
        with self._session("delete_by_date") as session:
            row = session.get(DailySteps, day)
            if row is not None:
                session.delete(row)
                session.commit()

    def delete_all(self) -> None:
        with self._session("delete_all") as session:
            for row in session.exec(select(DailySteps)).all():
                session.delete(row)
            session.commit()
