"""
EmailRecord — one discovered email address for a Lead, tagged by provider.
"""
from sqlalchemy import Column, Integer, Text, DateTime, JSON, ForeignKey
from sqlalchemy.sql import func

from leadflow.database import Base


class EmailRecord(Base):
    __tablename__ = 'lead_emails'

    id = Column(Integer, primary_key=True, autoincrement=True)
    lead_id = Column(Integer, ForeignKey('leads.id', ondelete='CASCADE'), nullable=False, index=True)
    provider = Column(Text, nullable=False)  # hunter | tomba | ai
    email = Column(Text, nullable=False)
    type = Column(Text, nullable=True)  # generic | personal
    confidence = Column(Integer, nullable=True)  # 0-100 across providers
    first_name = Column(Text, nullable=True)
    last_name = Column(Text, nullable=True)
    position = Column(Text, nullable=True)
    department = Column(Text, nullable=True)
    seniority = Column(Text, nullable=True)
    verification_status = Column(Text, nullable=False, default='unknown')
    verification_date = Column(DateTime(timezone=True), nullable=True)
    sources = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self):
        return {
            'id': self.id,
            'lead_id': self.lead_id,
            'provider': self.provider,
            'email': self.email,
            'type': self.type,
            'confidence': self.confidence,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'position': self.position,
            'department': self.department,
            'seniority': self.seniority,
            'verification_status': self.verification_status,
        }
