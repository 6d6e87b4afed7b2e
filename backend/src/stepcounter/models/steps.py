from typing import Optional

from sqlalchemy import BigInteger, Column
from sqlmodel import Field, SQLModel


class DailySteps(SQLModel, table=True):
    __tablename__ = "daily_steps"

    date: str = Field(primary_key=True, max_length=10, description="yyyy-MM-dd")
    accumulated_steps: int = Field(
        default=0, ge=0, sa_column=Column(BigInteger, nullable=False, default=0)
    )
    sensor_snapshot: int = Field(
        default=0, ge=0, sa_column=Column(BigInteger, nullable=False, default=0)
    )
    timestamp: int = Field(
        default=0, description="epoch millis of the last write",
        sa_column=Column(BigInteger, nullable=False, default=0),
    )


class DailyStepPoint(SQLModel):
    date: str
    steps: int = 0


class SensorReadingIn(SQLModel):
    value: int = Field(ge=0, description="raw cumulative step counter value")


class TrackerSnapshotRead(SQLModel):
    day: str
    display_total: int
    today_steps: int
    live_steps: int
    sensor_value: int
    baseline: Optional[int] = None
    monthly_steps: int = 0
    tracking: bool = False
    permitted: bool = True


class StepTotalRead(SQLModel):
    date_from: str
    date_to: str
    total: int


class MonthlyTotalRead(SQLModel):
    year: int
    month: int
    total: int


class ServiceStatusRead(SQLModel):
    title: str
    text: str
    running: bool
