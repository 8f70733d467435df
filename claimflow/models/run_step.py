"""
RunStep model — append-only step log for a workflow run.

A step writes a 'start' row before it executes and may add a 'result' row with
the same ordinal afterwards. Rows are never updated.
"""
from sqlalchemy import Column, Integer, Text, DateTime, JSON, ForeignKey, Index
from sqlalchemy.sql import func

from claimflow.database import Base


class RunStep(Base):
    __tablename__ = 'rpa_run_steps'

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Text, ForeignKey('rpa_extraction_runs.id', ondelete='CASCADE'), nullable=False)
    ordinal = Column(Integer, nullable=False)
    label = Column(Text, nullable=False)
    phase = Column(Text, nullable=False, default='start')
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('ix_rpa_run_steps_run_ordinal', 'run_id', 'ordinal'),
    )

    def to_dict(self):
        return {
            'ordinal': self.ordinal,
            'label': self.label,
            'phase': self.phase,
            'payload': self.payload or {},
            'timestamp': self.created_at.isoformat() if self.created_at else None,
        }
