"""
ProgressLogEntry — append-only audit trail of run events.
"""
from sqlalchemy import Column, Integer, Text, DateTime, JSON, ForeignKey
from sqlalchemy.sql import func

from leadflow.database import Base


class ProgressLogEntry(Base):
    __tablename__ = 'progress_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Text, ForeignKey('runs.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = Column(Text, nullable=True)
    event_type = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self):
        return {
            'id': self.id,
            'run_id': self.run_id,
            'event_type': self.event_type,
            'message': self.message,
            'details': self.details,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
