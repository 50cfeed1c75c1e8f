"""
Run — one discovery batch for a business-type/location query.
"""
import uuid

from sqlalchemy import Column, Text, Integer, Boolean, DateTime, JSON
from sqlalchemy.sql import func

from leadflow.database import Base


GRADE_COUNTER_COLUMNS = {
    'A': 'grade_a_count',
    'B': 'grade_b_count',
    'C': 'grade_c_count',
    'D': 'grade_d_count',
    'F': 'grade_f_count',
}


def _new_run_id():
    return str(uuid.uuid4())


class Run(Base):
    __tablename__ = 'runs'

    id = Column(Text, primary_key=True, default=_new_run_id)
    user_id = Column(Text, nullable=False, index=True)
    business_types = Column(JSON, nullable=False, default=list)
    location = Column(Text, nullable=False)
    target_count = Column(Integer, nullable=False)
    status = Column(Text, nullable=False, default='pending')
    is_paused = Column(Boolean, nullable=False, default=False)
    progress = Column(Integer, nullable=False, default=0)
    total_leads = Column(Integer, nullable=False, default=0)
    grade_a_count = Column(Integer, nullable=False, default=0)
    grade_b_count = Column(Integer, nullable=False, default=0)
    grade_c_count = Column(Integer, nullable=False, default=0)
    grade_d_count = Column(Integer, nullable=False, default=0)
    grade_f_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    paused_at = Column(DateTime(timezone=True), nullable=True)
    resumed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def business_type(self):
        """Display label: the run's business types joined with commas."""
        return ', '.join(self.business_types or [])

    def grade_counts(self):
        return {grade: getattr(self, column) or 0 for grade, column in GRADE_COUNTER_COLUMNS.items()}

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'business_types': list(self.business_types or []),
            'business_type': self.business_type,
            'location': self.location,
            'target_count': self.target_count,
            'status': self.status,
            'is_paused': bool(self.is_paused),
            'progress': self.progress or 0,
            'total_leads': self.total_leads or 0,
            'grade_counts': self.grade_counts(),
            'error_message': self.error_message,
            'created_at': _iso(self.created_at),
            'started_at': _iso(self.started_at),
            'paused_at': _iso(self.paused_at),
            'resumed_at': _iso(self.resumed_at),
            'completed_at': _iso(self.completed_at),
        }


def _iso(value):
    return value.isoformat() if value else None
