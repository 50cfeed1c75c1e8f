"""
Provider Email Merge — re-sync one provider's emails for a lead.

Delete-then-insert is scoped to (lead_id, provider): a Tomba re-search never
touches Hunter rows and vice versa, and re-running the same provider is
idempotent.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import delete

from leadflow.config import EMAIL_PROVIDERS
from leadflow.database import get_session, session_scope, utcnow
from leadflow.models.email_record import EmailRecord
from leadflow.models.lead import Lead
from leadflow.pipeline.base import LeadNotFoundError, OwnershipError, PolicyError

logger = logging.getLogger('pipeline.email_merge')

_RECORD_FIELDS = (
    'type', 'first_name', 'last_name', 'position',
    'department', 'seniority', 'sources',
)


def parse_verification_date(value):
    """Provider date strings ('2024-05-01', ISO timestamps) -> datetime, else None."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None


def normalize_confidence(value):
    """Provider scores -> int 0-100. Unparseable values become None."""
    if value is None or value == '':
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    return max(0, min(100, int(round(score))))


class ProviderEmailMerge:

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or get_session

    def merge_provider_emails(self, lead_id, provider: str, records: List[Dict[str, Any]]) -> int:
        """
        Replace the lead's `provider` emails with `records`, in one transaction.

        Returns the number of rows inserted.
        """
        if provider not in EMAIL_PROVIDERS:
            raise PolicyError(f"Unknown email provider: {provider}")

        rows = []
        seen = set()
        for record in records:
            email = (record.get('email') or '').strip()
            if not email or email.lower() in seen:
                continue
            seen.add(email.lower())
            row = EmailRecord(
                lead_id=lead_id,
                provider=provider,
                email=email,
                confidence=normalize_confidence(record.get('confidence')),
                verification_status=record.get('verification_status') or 'unknown',
                verification_date=parse_verification_date(record.get('verification_date')),
            )
            for name in _RECORD_FIELDS:
                if record.get(name) is not None:
                    setattr(row, name, record[name])
            rows.append(row)

        with session_scope(self.session_factory) as session:
            if session.get(Lead, lead_id) is None:
                raise LeadNotFoundError(lead_id)
            deleted = session.execute(
                delete(EmailRecord).where(
                    EmailRecord.lead_id == lead_id,
                    EmailRecord.provider == provider,
                )
            ).rowcount
            session.add_all(rows)

        logger.info("Lead %s: %s emails re-synced (%d removed, %d added)", lead_id, provider, deleted or 0, len(rows))
        return len(rows)

    def record_search_meta(self, lead_id, provider: str, meta: Dict[str, Any]):
        """Store per-provider search metadata (organization, pattern, totals) on the lead."""
        with session_scope(self.session_factory) as session:
            lead = session.get(Lead, lead_id)
            if lead is None:
                raise LeadNotFoundError(lead_id)
            current = dict(lead.email_search_meta or {})
            current[provider] = {**meta, 'searched_at': utcnow().isoformat()}
            # Reassign so SQLAlchemy sees the JSON change
            lead.email_search_meta = current

    def list_emails(self, lead_id, provider=None, user_id=None):
        """A lead's email records, oldest first. With `user_id` the lead must belong to that user."""
        session = self.session_factory()
        try:
            if user_id is not None:
                lead = session.get(Lead, lead_id)
                if lead is None:
                    raise LeadNotFoundError(lead_id)
                if lead.user_id != user_id:
                    raise OwnershipError(f"Lead {lead_id} does not belong to this user")
            query = session.query(EmailRecord).filter(EmailRecord.lead_id == lead_id)
            if provider:
                query = query.filter(EmailRecord.provider == provider)
            return [row.to_dict() for row in query.order_by(EmailRecord.id)]
        finally:
            session.close()
