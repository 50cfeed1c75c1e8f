"""
SuppressionEntry — an email (or a whole domain) that must never be contacted.

Rows with an email are synced from SendGrid. Rows with only a domain block
every address at that domain.
"""
from sqlalchemy import Column, Integer, Text, DateTime
from sqlalchemy.sql import func

from leadflow.database import Base


class SuppressionEntry(Base):
    __tablename__ = 'email_suppression'

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(Text, nullable=True, unique=True)
    domain = Column(Text, nullable=True, index=True)
    source = Column(Text, nullable=False)  # bounce | block | invalid | spam_report | unsubscribe | group_unsubscribe | manual
    reason = Column(Text, nullable=True)
    group_id = Column(Integer, nullable=True)
    group_name = Column(Text, nullable=True)
    provider_created_at = Column(DateTime(timezone=True), nullable=True)
    synced_at = Column(DateTime(timezone=True), server_default=func.now())
