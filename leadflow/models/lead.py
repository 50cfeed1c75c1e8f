"""
Lead model — one candidate business within a Run.
"""
import re

from sqlalchemy import Column, Integer, Float, Text, Boolean, DateTime, JSON, ForeignKey
from sqlalchemy.sql import func

from leadflow.database import Base


class Lead(Base):
    __tablename__ = 'leads'

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Text, ForeignKey('runs.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = Column(Text, nullable=False)

    # Identity (from discovery, retained across resets)
    name = Column(Text, nullable=False)
    address = Column(Text, nullable=True)
    phone = Column(Text, nullable=True)
    website = Column(Text, nullable=True)
    google_maps_url = Column(Text, nullable=True)
    place_id = Column(Text, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    email_domain = Column(Text, nullable=True, index=True)

    research_status = Column(Text, nullable=False, default='pending', index=True)
    error_message = Column(Text, nullable=True)

    # Prescreen
    prescreened = Column(Boolean, nullable=False, default=False)
    prescreen_result = Column(Text, nullable=True)  # research | skip
    prescreen_reason = Column(Text, nullable=True)
    is_franchise = Column(Boolean, nullable=True)
    is_national_brand = Column(Boolean, nullable=True)
    prescreen_confidence = Column(Text, nullable=True)  # high | medium | low
    prescreened_at = Column(DateTime(timezone=True), nullable=True)

    # Scraped website content
    website_content = Column(Text, nullable=True)
    about_content = Column(Text, nullable=True)
    team_content = Column(Text, nullable=True)
    has_multiple_locations = Column(Boolean, nullable=True)
    team_size = Column(Text, nullable=True)

    # Research outputs
    compatibility_grade = Column(Text, nullable=True)
    grade_reasoning = Column(Text, nullable=True)
    ai_report = Column(Text, nullable=True)
    suggested_hooks = Column(JSON, nullable=True)
    pain_points = Column(JSON, nullable=True)
    opportunities = Column(JSON, nullable=True)
    researched_at = Column(DateTime(timezone=True), nullable=True)

    # Deep research (supplementary, never changes compatibility_grade)
    deep_research_status = Column(Text, nullable=True)
    deep_report = Column(Text, nullable=True)
    deep_grade = Column(Text, nullable=True)
    deep_grade_reasoning = Column(Text, nullable=True)
    deep_researched_at = Column(DateTime(timezone=True), nullable=True)

    # Per-provider email search metadata, e.g. {'tomba': {'searched_at': ..., 'pattern': ...}}
    email_search_meta = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self):
        return {
            'id': self.id,
            'run_id': self.run_id,
            'name': self.name,
            'address': self.address,
            'phone': self.phone,
            'website': self.website,
            'google_maps_url': self.google_maps_url,
            'email_domain': self.email_domain,
            'research_status': self.research_status,
            'error_message': self.error_message,
            'prescreened': bool(self.prescreened),
            'prescreen_result': self.prescreen_result,
            'prescreen_reason': self.prescreen_reason,
            'is_franchise': self.is_franchise,
            'is_national_brand': self.is_national_brand,
            'prescreen_confidence': self.prescreen_confidence,
            'compatibility_grade': self.compatibility_grade,
            'grade_reasoning': self.grade_reasoning,
            'suggested_hooks': self.suggested_hooks or [],
            'pain_points': self.pain_points or [],
            'opportunities': self.opportunities or [],
            'deep_research_status': self.deep_research_status,
            'deep_grade': self.deep_grade,
        }


# ── Field wipes used by clear-research / reset-prescreening / restarts ──────

PRESCREEN_RESET = {
    'prescreened': False,
    'prescreen_result': None,
    'prescreen_reason': None,
    'is_franchise': None,
    'is_national_brand': None,
    'prescreen_confidence': None,
    'prescreened_at': None,
}

RESEARCH_RESET = {
    'research_status': 'pending',
    'error_message': None,
    'website_content': None,
    'about_content': None,
    'team_content': None,
    'has_multiple_locations': None,
    'team_size': None,
    'compatibility_grade': None,
    'grade_reasoning': None,
    'ai_report': None,
    'suggested_hooks': None,
    'pain_points': None,
    'opportunities': None,
    'researched_at': None,
    'deep_research_status': None,
    'deep_report': None,
    'deep_grade': None,
    'deep_grade_reasoning': None,
    'deep_researched_at': None,
}


def derived_field_reset():
    """Every derived field back to its initial value; identity fields untouched."""
    return {**PRESCREEN_RESET, **RESEARCH_RESET}


_SCHEME_RE = re.compile(r'^https?://', re.IGNORECASE)
_WWW_RE = re.compile(r'^www\.', re.IGNORECASE)


def domain_from_website(website):
    """
    'https://www.Example.com.au/contact' -> 'example.com.au'.

    Returns None for empty input.
    """
    if not website:
        return None
    host = _SCHEME_RE.sub('', website.strip())
    host = _WWW_RE.sub('', host)
    host = re.split(r'[/?#]', host, maxsplit=1)[0]
    host = host.split(':', 1)[0].lower()
    return host or None
