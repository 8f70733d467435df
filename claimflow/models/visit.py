"""
Visit model — one clinic visit, the unit both flows operate on.

Extraction fills the clinical fields from the source system; submission
pushes them into the insurer portal selected by pay_type.
"""
from sqlalchemy import Column, Integer, Text, Float, Date, DateTime, JSON, Index, UniqueConstraint
from sqlalchemy.sql import func

from claimflow.database import Base


EXTRACTION_STATUSES = ('in_progress', 'completed', 'failed')
SUBMISSION_STATUSES = ('draft', 'submitted', 'error')


class Visit(Base):
    __tablename__ = 'visits'

    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(Text, nullable=False, default='clinic_assist')
    visit_date = Column(Date, nullable=False)
    patient_name = Column(Text, nullable=False, default='')
    pcno = Column(Text, nullable=True)
    nric = Column(Text, nullable=True)
    pay_type = Column(Text, nullable=True)
    visit_type = Column(Text, nullable=True)
    total_amount = Column(Float, nullable=True)
    diagnosis_description = Column(Text, nullable=True)
    treatment_detail = Column(JSON, nullable=True)
    referral_clinic = Column(Text, nullable=True)
    mc_days = Column(Integer, default=0)

    extraction_status = Column(Text, nullable=True)
    extracted_at = Column(DateTime(timezone=True), nullable=True)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    extraction_attempts = Column(Integer, default=0)
    extraction_metadata = Column(JSON, nullable=True)

    submission_status = Column(Text, nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    submission_metadata = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('source', 'visit_date', 'pcno', 'patient_name', name='uq_visits_source_key'),
        Index('ix_visits_visit_date', 'visit_date'),
        Index('ix_visits_extraction_status', 'extraction_status'),
    )

    @property
    def source_key(self):
        return f"{self.visit_date.isoformat() if self.visit_date else ''}:{self.pcno or self.patient_name}"

    def to_dict(self):
        return {
            'id': self.id,
            'source': self.source,
            'visit_date': self.visit_date.isoformat() if self.visit_date else None,
            'patient_name': self.patient_name,
            'pcno': self.pcno,
            'nric': self.nric,
            'pay_type': self.pay_type,
            'visit_type': self.visit_type,
            'total_amount': self.total_amount,
            'diagnosis_description': self.diagnosis_description,
            'treatment_detail': self.treatment_detail or [],
            'referral_clinic': self.referral_clinic,
            'mc_days': self.mc_days or 0,
            'extraction_status': self.extraction_status,
            'extracted_at': self.extracted_at.isoformat() if self.extracted_at else None,
            'last_attempt_at': self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            'extraction_metadata': self.extraction_metadata or {},
            'submission_status': self.submission_status,
            'submitted_at': self.submitted_at.isoformat() if self.submitted_at else None,
            'submission_metadata': self.submission_metadata or {},
        }
