import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from stepcounter.core.errors import PersistenceError
from stepcounter.models.steps import DailySteps
from stepcounter.repositories.daily_steps import DailyStepsRepository


def test_upsert_overwrites_existing_row(repository):
    repository.upsert(DailySteps(date="2024-01-01", accumulated_steps=5, sensor_snapshot=50, timestamp=10))
    repository.upsert(DailySteps(date="2024-01-01", accumulated_steps=7, sensor_snapshot=70, timestamp=5))

    row = repository.get_by_date("2024-01-01")
    assert row.accumulated_steps == 7
    assert row.sensor_snapshot == 70
    assert row.timestamp == 10


def test_update_fields_only_if_greater(repository):
    repository.upsert(DailySteps(date="2024-01-01", accumulated_steps=5, sensor_snapshot=50, timestamp=1))

    assert repository.update_fields("2024-01-01", 4, 40, 2, only_if_greater=True) is False
    assert repository.update_fields("2024-01-01", 6, 60, 3, only_if_greater=True) is True
    assert repository.update_fields("2024-01-02", 6, 60, 3) is False

    row = repository.get_by_date("2024-01-01")
    assert (row.accumulated_steps, row.sensor_snapshot, row.timestamp) == (6, 60, 3)


def test_sums_are_none_without_rows(repository):
    assert repository.sum_between("2024-01-01", "2024-12-31") is None
    assert repository.sum_by_month_prefix("2024-01") is None


def test_month_prefix_does_not_match_other_years(repository):
    repository.upsert(DailySteps(date="2024-01-31", accumulated_steps=3, sensor_snapshot=0, timestamp=0))
    repository.upsert(DailySteps(date="2025-01-01", accumulated_steps=4, sensor_snapshot=0, timestamp=0))

    assert repository.sum_by_month_prefix("2024-01") == 3


def test_list_between_ascending(repository):
    for day in ["2024-01-03", "2024-01-01", "2024-01-02", "2024-01-09"]:
        repository.upsert(DailySteps(date=day, accumulated_steps=1, sensor_snapshot=0, timestamp=0))

    rows = repository.list_between("2024-01-01", "2024-01-03")
    assert [r.date for r in rows] == ["2024-01-01", "2024-01-02", "2024-01-03"]


def test_storage_errors_become_persistence_errors(tmp_path):
    from sqlmodel import create_engine

    # No tables created: every query fails with "no such table"
    repository = DailyStepsRepository(create_engine(f"sqlite:///{tmp_path / 'empty.db'}"))

    with pytest.raises(PersistenceError) as exc_info:
        repository.get_by_date("2024-01-01")
    assert isinstance(exc_info.value.__cause__, OperationalError)


@pytest.fixture
def statements(engine):
    seen = []

    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        seen.append(statement.strip().split()[0].upper())

    event.listen(engine, "before_cursor_execute", before_cursor_execute)
    yield seen
    event.remove(engine, "before_cursor_execute", before_cursor_execute)


def test_guarded_update_is_a_single_statement(repository, statements):
    repository.upsert(DailySteps(date="2024-01-01", accumulated_steps=20, sensor_snapshot=120, timestamp=1))
    statements.clear()

    assert repository.update_fields("2024-01-01", 25, 125, 2, only_if_greater=True) is True

    # no SELECT before the write, so another process cannot slip in between
    assert statements == ["UPDATE"]


def test_stale_writer_from_second_process_is_rejected(engine, repository):
    other_process = DailyStepsRepository(engine)
    repository.upsert(DailySteps(date="2024-01-01", accumulated_steps=20, sensor_snapshot=120, timestamp=1))

    # both writers started from 20; the one with the larger total lands first
    assert repository.update_fields("2024-01-01", 30, 130, 3, only_if_greater=True) is True
    assert other_process.update_fields("2024-01-01", 25, 125, 2, only_if_greater=True) is False

    row = other_process.get_by_date("2024-01-01")
    assert (row.accumulated_steps, row.sensor_snapshot, row.timestamp) == (30, 130, 3)


def test_insert_if_absent_keeps_existing_row(engine, repository):
    other_process = DailyStepsRepository(engine)

    assert repository.insert_if_absent(
        DailySteps(date="2024-01-01", accumulated_steps=0, sensor_snapshot=500, timestamp=1)
    ) is True
    assert other_process.insert_if_absent(
        DailySteps(date="2024-01-01", accumulated_steps=0, sensor_snapshot=700, timestamp=2)
    ) is False

    assert repository.get_by_date("2024-01-01").sensor_snapshot == 500


def test_apply_sensor_value(repository, statements):
    repository.upsert(DailySteps(date="2024-01-01", accumulated_steps=100, sensor_snapshot=5000, timestamp=1))
    statements.clear()

    row = repository.apply_sensor_value("2024-01-01", 5050, 2)
    assert (row.accumulated_steps, row.sensor_snapshot, row.timestamp) == (150, 5050, 2)
    assert statements[0] == "UPDATE"

    # a second writer reporting the same reading finds nothing left to add
    row = repository.apply_sensor_value("2024-01-01", 5050, 3)
    assert (row.accumulated_steps, row.timestamp) == (150, 2)

    row = repository.apply_sensor_value("2024-01-01", 40, 4)
    assert (row.accumulated_steps, row.sensor_snapshot, row.timestamp) == (150, 40, 4)

    assert repository.apply_sensor_value("2024-01-02", 40, 4) is None
