"""
SendGrid suppression sync — one-way, read-only import into email_suppression.

Pulls bounces, blocks, invalid addresses, spam reports, global unsubscribes
and per-group unsubscribes. Nothing is ever written back to SendGrid and no
mail is sent.
"""
import logging
from datetime import datetime, timezone

import requests

from leadflow.config import SENDGRID_API_KEY, SENDGRID_API_URL
from leadflow.database import get_session, session_scope, utcnow
from leadflow.models.suppression import SuppressionEntry
from leadflow.pipeline.base import ProviderError
from leadflow.pipeline.eligibility import email_domain
from leadflow.services.circuit_breaker import get_breaker

logger = logging.getLogger('services.sendgrid')

PAGE_SIZE = 500

# endpoint → source label
SUPPRESSION_LISTS = {
    'suppression/bounces': 'bounce',
    'suppression/blocks': 'block',
    'suppression/invalid_emails': 'invalid',
    'suppression/spam_reports': 'spam_report',
    'suppression/unsubscribes': 'unsubscribe',
}


def _epoch(value):
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


class SendGridSuppressionSync:

    def __init__(self, session_factory=None, api_key=SENDGRID_API_KEY, http=None):
        self.session_factory = session_factory or get_session
        self.api_key = api_key
        self.http = http or requests.Session()

    def _get(self, path, params=None):
        def _request():
            resp = self.http.get(
                f'{SENDGRID_API_URL}/{path}',
                headers={'Authorization': f'Bearer {self.api_key}'},
                params=params or {},
                timeout=30,
            )
            resp.raise_for_status()
            return resp.json()

        try:
            return get_breaker('sendgrid').call(_request)
        except requests.RequestException as e:
            raise ProviderError('sendgrid', f'{path}: {e}') from e

    def _paged(self, path):
        offset = 0
        while True:
            page = self._get(path, {'limit': PAGE_SIZE, 'offset': offset}) or []
            yield from page
            if len(page) < PAGE_SIZE:
                return
            offset += PAGE_SIZE

    def fetch_entries(self):
        """Every suppressed address as a dict, list by list."""
        for path, source in SUPPRESSION_LISTS.items():
            for item in self._paged(path):
                yield {
                    'email': item.get('email'),
                    'source': source,
                    'reason': item.get('reason') or item.get('status'),
                    'provider_created_at': _epoch(item.get('created')),
                }

        for group in self._get('asm/groups') or []:
            for email in self._get(f"asm/groups/{group['id']}/suppressions") or []:
                yield {
                    'email': email,
                    'source': 'group_unsubscribe',
                    'reason': f"Unsubscribed from {group.get('name')}",
                    'group_id': group['id'],
                    'group_name': group.get('name'),
                }

    def sync(self):
        """Upsert every SendGrid suppression. Returns counts per source."""
        if not self.api_key:
            raise ProviderError('sendgrid', 'SENDGRID_API_KEY is not configured')

        latest = {}
        for entry in self.fetch_entries():
            email = (entry.get('email') or '').strip().lower()
            if email:
                latest[email] = entry

        counts = {}
        now = utcnow()
        with session_scope(self.session_factory) as session:
            existing = {
                row.email: row for row in
                session.query(SuppressionEntry).filter(SuppressionEntry.email.isnot(None))
            }
            for email, entry in latest.items():
                row = existing.get(email)
                if row is None:
                    row = SuppressionEntry(email=email)
                    session.add(row)
                elif row.source == 'manual':
                    continue
                row.domain = email_domain(email)
                row.source = entry['source']
                row.reason = entry.get('reason')
                row.group_id = entry.get('group_id')
                row.group_name = entry.get('group_name')
                row.provider_created_at = entry.get('provider_created_at')
                row.synced_at = now
                counts[entry['source']] = counts.get(entry['source'], 0) + 1

        logger.info("SendGrid suppression sync: %s", counts)
        return counts
