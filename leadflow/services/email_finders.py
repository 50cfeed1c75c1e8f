"""
Email enrichment providers — Hunter and Tomba domain search, plus an
OpenAI finder that reports publicly listed addresses for a domain.

All return an EmailSearchResult whose records are plain dicts ready for
ProviderEmailMerge.merge_provider_emails (confidence on a 0-100 scale).
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

import requests

from leadflow.config import (
    HUNTER_API_KEY, HUNTER_API_URL, TOMBA_API_KEY, TOMBA_SECRET, TOMBA_API_URL, OPENAI_MODEL,
)
from leadflow.pipeline.base import ProviderError
from leadflow.services.circuit_breaker import get_breaker
from leadflow.services.openai_client import _json_completion

logger = logging.getLogger('services.email_finders')


@dataclass
class EmailSearchResult:
    provider: str
    domain: str
    meta: Dict[str, Any] = field(default_factory=dict)
    records: List[Dict[str, Any]] = field(default_factory=list)


def _get_json(provider, url, **kwargs):
    def _request():
        resp = requests.get(url, timeout=30, **kwargs)
        if resp.status_code == 429:
            raise ProviderError(provider, 'rate limit reached, try again later')
        resp.raise_for_status()
        return resp.json()

    try:
        return get_breaker(provider).call(_request)
    except requests.RequestException as e:
        raise ProviderError(provider, str(e)) from e
    except ValueError as e:
        raise ProviderError(provider, f'invalid JSON: {e}') from e


def _verification(item):
    verification = item.get('verification') or {}
    return verification.get('status') or 'unknown', verification.get('date')


class HunterClient:
    provider = 'hunter'

    def __init__(self, api_key=HUNTER_API_KEY):
        self.api_key = api_key

    def domain_search(self, domain) -> EmailSearchResult:
        if not self.api_key:
            raise ProviderError(self.provider, 'HUNTER_API_KEY is not configured')
        payload = _get_json(self.provider, f'{HUNTER_API_URL}/domain-search',
                            params={'domain': domain, 'api_key': self.api_key})
        return self.parse(domain, payload)

    def parse(self, domain, payload) -> EmailSearchResult:
        data = payload.get('data') or {}
        records = []
        for item in data.get('emails') or []:
            status, date = _verification(item)
            records.append({
                'email': item.get('value'),
                'type': item.get('type') or 'personal',
                'confidence': item.get('confidence'),
                'first_name': item.get('first_name'),
                'last_name': item.get('last_name'),
                'position': item.get('position'),
                'department': item.get('department'),
                'seniority': item.get('seniority'),
                'verification_status': status,
                'verification_date': date,
                'sources': item.get('sources') or [],
            })
        meta = {
            'organization': data.get('organization'),
            'pattern': data.get('pattern'),
            'total_emails': (payload.get('meta') or {}).get('results', len(records)),
        }
        logger.info("Hunter found %d emails for %s", len(records), domain)
        return EmailSearchResult(self.provider, domain, meta, records)


class TombaClient:
    provider = 'tomba'

    def __init__(self, api_key=TOMBA_API_KEY, secret=TOMBA_SECRET):
        self.api_key = api_key
        self.secret = secret

    def domain_search(self, domain) -> EmailSearchResult:
        if not self.api_key:
            raise ProviderError(self.provider, 'TOMBA_API_KEY is not configured')
        headers = {'X-Tomba-Key': self.api_key}
        if self.secret:
            headers['X-Tomba-Secret'] = self.secret
        payload = _get_json(self.provider, f'{TOMBA_API_URL}/domain-search',
                            params={'domain': domain}, headers=headers)
        return self.parse(domain, payload)

    def parse(self, domain, payload) -> EmailSearchResult:
        data = payload.get('data') or {}
        records = []
        for item in data.get('emails') or []:
            status, date = _verification(item)
            records.append({
                'email': item.get('email'),
                'type': 'generic' if item.get('type') == 'generic' else 'personal',
                'confidence': item.get('score') or 0,
                'first_name': item.get('first_name'),
                'last_name': item.get('last_name'),
                'position': item.get('position'),
                'department': item.get('department'),
                'seniority': item.get('seniority'),
                'verification_status': status,
                'verification_date': date,
                'sources': item.get('sources') or [],
            })
        organization = data.get('organization')
        if isinstance(organization, dict):
            organization = organization.get('organization') or organization.get('name')
        meta = {
            'organization': organization,
            'pattern': data.get('pattern'),
            'total_emails': (payload.get('meta') or {}).get('total', len(records)),
        }
        logger.info("Tomba found %d emails for %s", len(records), domain)
        return EmailSearchResult(self.provider, domain, meta, records)


AI_FINDER_SYSTEM = """You find business contact emails through public sources: the company's \
own website, LinkedIn, business directories and professional networks.
Never fabricate or guess an address. Cite where each address was seen and rate \
confidence 0-100 by how well it is verified. Prefer decision makers (owners, \
managers, directors) over generic inboxes."""

AI_FINDER_PROMPT = """Find publicly listed contact emails for the business at this domain.

Domain: {domain}

Only return addresses on this domain that you have seen in a public source.

Respond with a JSON object:
{{
  "emails": [
    {{"email": "jane.smith@{domain}", "first_name": "Jane", "last_name": "Smith",
      "position": "Owner", "department": "Executive", "confidence": 85,
      "source": "Contact page"}}
  ],
  "organization": "Company name",
  "email_pattern": "{{first}}.{{last}}@{domain}",
  "summary": "One sentence on what was found"
}}
Return an empty "emails" list if nothing is found."""

GENERIC_PREFIXES = frozenset({
    'info', 'contact', 'hello', 'support', 'sales', 'enquiries', 'enquiry',
    'admin', 'office', 'reception', 'mail', 'help',
})


def _confidence(value):
    try:
        return max(0, min(100, int(round(float(value)))))
    except (TypeError, ValueError):
        return 0


class AIEmailFinder:
    """Ask the OpenAI model for addresses it can attribute to a public source."""
    provider = 'ai'

    def __init__(self, model=OPENAI_MODEL):
        self.model = model

    def domain_search(self, domain) -> EmailSearchResult:
        data = _json_completion(self.model, AI_FINDER_SYSTEM, AI_FINDER_PROMPT.format(domain=domain))
        return self.parse(domain, data)

    def parse(self, domain, data) -> EmailSearchResult:
        records = []
        for item in data.get('emails') or []:
            if not isinstance(item, dict):
                continue
            email = str(item.get('email') or '').strip().lower()
            # Addresses off the searched domain are not this lead's
            if not email.endswith('@' + domain.lower()):
                continue
            local = email.split('@', 1)[0]
            source = item.get('source')
            records.append({
                'email': email,
                'type': 'generic' if local in GENERIC_PREFIXES else 'personal',
                'confidence': _confidence(item.get('confidence')),
                'first_name': item.get('first_name'),
                'last_name': item.get('last_name'),
                'position': item.get('position'),
                'department': item.get('department'),
                'seniority': None,
                'verification_status': 'unknown',
                'verification_date': None,
                'sources': [{'url': source, 'type': 'ai_web_search'}] if source else [],
            })
        meta = {
            'organization': data.get('organization'),
            'pattern': data.get('email_pattern'),
            'total_emails': len(records),
        }
        if not records and data.get('summary'):
            meta['summary'] = str(data['summary'])
        logger.info("AI finder found %d emails for %s", len(records), domain)
        return EmailSearchResult(self.provider, domain, meta, records)


FINDERS = {
    'hunter': HunterClient,
    'tomba': TombaClient,
    'ai': AIEmailFinder,
}
