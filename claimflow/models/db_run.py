"""
Postgres-backed workflow run record — one row per extraction/submission run.
"""
from sqlalchemy import Column, Text, Integer, Boolean, DateTime, JSON
from sqlalchemy.sql import func

from claimflow.database import Base


class DbRun(Base):
    __tablename__ = 'rpa_extraction_runs'

    id = Column(Text, primary_key=True)
    run_type = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default='pending', index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    total_records = Column(Integer, default=0)
    completed_count = Column(Integer, default=0)
    failed_count = Column(Integer, default=0)
    error_message = Column(Text, nullable=True)
    # 'metadata' is reserved on declarative classes
    run_metadata = Column('metadata', JSON, default=dict)
    cancel_requested = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
