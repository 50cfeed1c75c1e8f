"""
ContactTracking — one row per domain with its cadence window.
"""
from sqlalchemy import Column, Integer, Text, DateTime

from leadflow.database import Base


class ContactTracking(Base):
    __tablename__ = 'domain_contact_tracking'

    domain = Column(Text, primary_key=True)
    last_contacted_at = Column(DateTime(timezone=True), nullable=False)
    can_contact_after = Column(DateTime(timezone=True), nullable=False)
    contact_count = Column(Integer, nullable=False, default=1)
