"""Background task runs — outcome record for fire-and-forget work."""

from sqlalchemy import Column, Float, Index, Integer, String, Text

from .base import Base, UTCDateTime, utcnow
from .enums import TaskOutcome, enum_column


class BackgroundTaskRun(Base):
    """Log of each background task run (order sync, confirmation email, ...)."""

    __tablename__ = "background_task_runs"
    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    entity_type = Column(String(30))
    entity_id = Column(Integer)
    outcome = Column(enum_column(TaskOutcome, length=20), nullable=False, default=TaskOutcome.RUNNING)
    detail = Column(Text)
    started_at = Column(UTCDateTime, default=utcnow, nullable=False)
    finished_at = Column(UTCDateTime)
    duration_seconds = Column(Float)

    __table_args__ = (Index("ix_task_runs_name_time", "name", "started_at"),)
