"""
OpenAI analyzer — prescreen classification, lead research, deep research.

Every call goes through the 'openai' circuit breaker and asks for a JSON
object back.
"""
import json
import logging
from typing import Any, Dict

import openai

from leadflow.config import OPENAI_MODEL, OPENAI_DEEP_MODEL
from leadflow.extensions import openai_client as client
from leadflow.pipeline.base import LeadAnalyzer, PrescreenVerdict, ResearchReport, ProviderError, ScrapedSite

logger = logging.getLogger('services.openai')

# Characters of each scraped page sent to the model
_CONTENT_BUDGET = {'main': 6000, 'about': 3000, 'team': 2000}


def _chat_completion(**kwargs):
    """Route chat completion through the OpenAI circuit breaker."""
    from leadflow.services.circuit_breaker import get_breaker
    if client is None:
        raise ProviderError('openai', 'OPENAI_API_KEY not set')
    cb = get_breaker('openai')
    try:
        return cb.call(client.chat.completions.create, **kwargs)
    except openai.OpenAIError as e:
        raise ProviderError('openai', str(e)) from e


def _json_completion(model, system, user) -> Dict[str, Any]:
    response = _chat_completion(
        model=model,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
        response_format={"type": "json_object"},
        temperature=0.2,
    )
    content = response.choices[0].message.content or ''
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise ProviderError('openai', f'unparseable response: {e}') from e


def _as_list(value):
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v]


def parse_prescreen(data) -> PrescreenVerdict:
    """Model JSON → verdict. Anything unrecognisable fails open to research."""
    decision = str(data.get('decision', '')).strip().lower()
    if decision not in ('research', 'skip'):
        return PrescreenVerdict.fail_open()
    confidence = str(data.get('confidence', 'medium')).strip().lower()
    return PrescreenVerdict(
        should_research=decision == 'research',
        reason=str(data.get('reason') or '').strip() or 'No reason given',
        is_franchise=bool(data.get('is_franchise')),
        is_national_brand=bool(data.get('is_national_brand')),
        confidence=confidence if confidence in ('high', 'medium', 'low') else 'low',
    )


def parse_report(data) -> ResearchReport:
    return ResearchReport(
        grade=str(data.get('grade', '')).strip().upper(),
        grade_reasoning=str(data.get('grade_reasoning') or '').strip(),
        report=str(data.get('report') or ''),
        suggested_hooks=_as_list(data.get('suggested_hooks')),
        pain_points=_as_list(data.get('pain_points')),
        opportunities=_as_list(data.get('opportunities')),
    )


def _describe(lead, site: ScrapedSite = None):
    parts = [
        f"Business: {lead.get('name')}",
        f"Address: {lead.get('address') or 'unknown'}",
        f"Website: {lead.get('website') or 'none'}",
    ]
    if site is not None:
        parts.append(f"Multiple locations: {'yes' if site.has_multiple_locations else 'no'}")
        parts.append(f"Team size: {site.team_size or 'unknown'}")
        parts.append(f"HOMEPAGE:\n{(site.main_content or '')[:_CONTENT_BUDGET['main']]}")
        if site.about_content:
            parts.append(f"ABOUT:\n{site.about_content[:_CONTENT_BUDGET['about']]}")
        if site.team_content:
            parts.append(f"TEAM:\n{site.team_content[:_CONTENT_BUDGET['team']]}")
    return '\n'.join(parts)


class OpenAIAnalyzer(LeadAnalyzer):
    name = 'openai'

    def prescreen(self, lead, business_type):
        data = _json_completion(
            OPENAI_MODEL,
            "You classify local businesses. Answer with JSON keys: decision (research|skip), "
            "is_franchise, is_national_brand, confidence (high|medium|low), reason.",
            f"Searched business type: {business_type}\n{_describe(lead)}",
        )
        verdict = parse_prescreen(data)
        logger.debug("Prescreen %s: %s (%s)", lead.get('name'), verdict.result, verdict.reason)
        return verdict

    def research(self, lead, site, business_type):
        data = _json_completion(
            OPENAI_MODEL,
            "You qualify small businesses as outreach prospects. Answer with JSON keys: grade (A|B|C|D|F), "
            "grade_reasoning, report, suggested_hooks, pain_points, opportunities.",
            f"Business type: {business_type}\n{_describe(lead, site)}",
        )
        return parse_report(data)

    def deep_research(self, lead, site, business_type):
        data = _json_completion(
            OPENAI_DEEP_MODEL,
            "You write an in-depth prospect brief for a small business. Answer with JSON keys: grade (A|B|C|D|F), "
            "grade_reasoning, report, suggested_hooks, pain_points, opportunities.",
            f"Business type: {business_type}\n{_describe(lead, site)}",
        )
        return parse_report(data)
