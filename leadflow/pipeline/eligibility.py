"""
Eligibility Gate — may this email be contacted right now?

Two independent lookups, both always evaluated so callers can report every
reason at once:
  - suppression: the address, or its whole domain, is on the do-not-contact list
  - cadence: the domain was contacted less than CONTACT_CADENCE_MONTHS ago
"""
import calendar
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, and_

from leadflow.config import CONTACT_CADENCE_MONTHS
from leadflow.database import get_session, session_scope, utcnow, as_utc
from leadflow.models.contact_tracking import ContactTracking
from leadflow.models.email_record import EmailRecord
from leadflow.models.lead import Lead
from leadflow.models.suppression import SuppressionEntry
from leadflow.pipeline.base import LeadNotFoundError, OwnershipError

logger = logging.getLogger('pipeline.eligibility')


@dataclass
class EligibilityResult:
    email: str
    domain: Optional[str]
    suppressed: bool
    reason: Optional[str]
    source: Optional[str]
    cadence_ok: bool
    cadence_retry_after: Optional[datetime]

    @property
    def can_contact(self):
        return not self.suppressed and self.cadence_ok

    def to_dict(self):
        data = asdict(self)
        data['can_contact'] = self.can_contact
        if self.cadence_retry_after is not None:
            data['cadence_retry_after'] = self.cadence_retry_after.isoformat()
        return data


def email_domain(email):
    """Right-hand side of the address, lowercased. None if there isn't one."""
    if not email or '@' not in email:
        return None
    domain = email.rsplit('@', 1)[1].strip().lower()
    return domain or None


def add_months(when, months):
    """Calendar-month arithmetic, clamping the day (Aug 31 + 6 months -> Feb 28/29)."""
    month_index = when.month - 1 + months
    year = when.year + month_index // 12
    month = month_index % 12 + 1
    day = min(when.day, calendar.monthrange(year, month)[1])
    return when.replace(year=year, month=month, day=day)


class EligibilityGate:

    def __init__(self, session_factory=None, cadence_months=CONTACT_CADENCE_MONTHS):
        self.session_factory = session_factory or get_session
        self.cadence_months = cadence_months

    # ── Single address ───────────────────────────────────────────────────

    def check_eligibility(self, email, now=None):
        now = now or utcnow()
        domain = email_domain(email)
        session = self.session_factory()
        try:
            return self._check(session, email, domain, now)
        finally:
            session.close()

    def _check(self, session, email, domain, now):
        suppression = self._find_suppression(session, email, domain)
        retry_after = self._cadence_retry_after(session, domain, now)
        return EligibilityResult(
            email=email,
            domain=domain,
            suppressed=suppression is not None,
            reason=suppression.reason if suppression else None,
            source=suppression.source if suppression else None,
            cadence_ok=retry_after is None,
            cadence_retry_after=retry_after,
        )

    def _find_suppression(self, session, email, domain):
        matches = []
        if email:
            matches.append(SuppressionEntry.email.in_(sorted({email, email.strip().lower()})))
        if domain:
            matches.append(and_(SuppressionEntry.email.is_(None), SuppressionEntry.domain == domain))
        if not matches:
            return None
        return (
            session.query(SuppressionEntry)
            .filter(or_(*matches))
            .order_by(SuppressionEntry.id)
            .first()
        )

    def _cadence_retry_after(self, session, domain, now):
        if not domain:
            return None
        row = session.get(ContactTracking, domain)
        if row is None:
            return None
        can_contact_after = as_utc(row.can_contact_after)
        if as_utc(now) < can_contact_after:
            return can_contact_after
        return None

    # ── Every email of a lead ────────────────────────────────────────────

    def check_lead_eligibility(self, lead_id, now=None, user_id=None):
        """
        Check every EmailRecord of a lead. With `user_id` the lead must
        belong to that user.

        Overall status:
          safe      — every address can be contacted
          warning   — some addresses are blocked
          blocked   — none can be contacted
          no_emails — the lead has no email records yet
        """
        now = now or utcnow()
        session = self.session_factory()
        try:
            lead = session.get(Lead, lead_id)
            if lead is None:
                raise LeadNotFoundError(lead_id)
            if user_id is not None and lead.user_id != user_id:
                raise OwnershipError(f"Lead {lead_id} does not belong to this user")
            emails = [
                row.email for row in
                session.query(EmailRecord).filter(EmailRecord.lead_id == lead_id).order_by(EmailRecord.id)
            ]
            # Same address from two providers is only checked once
            unique = list(dict.fromkeys(emails))
            results = [self._check(session, email, email_domain(email), now) for email in unique]
        finally:
            session.close()

        contactable = sum(1 for r in results if r.can_contact)
        if not results:
            status = 'no_emails'
        elif contactable == len(results):
            status = 'safe'
        elif contactable == 0:
            status = 'blocked'
        else:
            status = 'warning'

        return {
            'lead_id': lead_id,
            'status': status,
            'total': len(results),
            'contactable': contactable,
            'results': [r.to_dict() for r in results],
        }

    # ── Outreach recording (called by whatever sends mail, never by the pipeline) ─

    def record_contact(self, domain, when=None):
        """Upsert the domain's cadence window after an outreach was sent."""
        when = when or utcnow()
        domain = domain.strip().lower()
        can_contact_after = add_months(when, self.cadence_months)
        with session_scope(self.session_factory) as session:
            row = session.get(ContactTracking, domain)
            if row is None:
                session.add(ContactTracking(
                    domain=domain,
                    last_contacted_at=when,
                    can_contact_after=can_contact_after,
                    contact_count=1,
                ))
            else:
                row.last_contacted_at = when
                row.can_contact_after = can_contact_after
                row.contact_count = (row.contact_count or 0) + 1
        logger.info("Recorded contact with %s; next allowed %s", domain, can_contact_after.isoformat())
        return can_contact_after
