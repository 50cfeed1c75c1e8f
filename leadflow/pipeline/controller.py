"""
Pipeline Controller — composition root.

Builds every component around one store (session factory) and one
dispatcher, maps workflow event names to state-machine transitions, and
exposes the operations the HTTP layer calls.

RQ workers enter through handle_event(name, data).
"""
import logging
from typing import Any, Dict, Optional

from leadflow.config import MOCK_PIPELINE
from leadflow.database import get_session
from leadflow.models.lead import Lead, domain_from_website
from leadflow.pipeline.base import (
    BusinessDiscovery, WebsiteScraper, LeadAnalyzer, WebsiteFinder,
    PolicyError, LeadNotFoundError, OwnershipError, ProviderError,
)
from leadflow.pipeline.eligibility import EligibilityGate
from leadflow.pipeline.email_merge import ProviderEmailMerge
from leadflow.pipeline.events import (
    Dispatcher, RQDispatcher,
    RUN_CREATED, PRESCREEN_TRIGGERED, RESEARCH_TRIGGERED, RESEARCH_ALL_TRIGGERED,
    DEEP_RESEARCH_TRIGGERED, DEEP_RESEARCH_MULTIPLE_TRIGGERED,
)
from leadflow.pipeline.lead_machine import LeadStateMachine
from leadflow.pipeline.prescreen import PrescreenGate
from leadflow.pipeline.progress import ProgressAggregator
from leadflow.pipeline.run_machine import RunStateMachine
from leadflow.services.progress_log import ProgressLogger

logger = logging.getLogger('pipeline.controller')

# Bulk email search detail status -> summary counter
_BULK_COUNTERS = {'success': 'successful', 'skipped': 'skipped', 'failed': 'failed'}


class PipelineController:

    def __init__(self, dispatcher: Dispatcher, discovery: BusinessDiscovery,
                 scraper: WebsiteScraper, analyzer: LeadAnalyzer,
                 session_factory=None, website_finder: Optional[WebsiteFinder] = None,
                 email_finders: Optional[Dict[str, Any]] = None, suppression_sync=None):
        self.session_factory = session_factory or get_session
        self.dispatcher = dispatcher
        self.progress_log = ProgressLogger(self.session_factory)
        self.progress = ProgressAggregator(self.session_factory)
        self.eligibility = EligibilityGate(self.session_factory)
        self.emails = ProviderEmailMerge(self.session_factory)
        self.prescreen_gate = PrescreenGate(analyzer, self.progress, self.session_factory, self.progress_log)
        self.leads = LeadStateMachine(
            scraper, analyzer, self.progress, dispatcher,
            self.session_factory, self.progress_log, website_finder=website_finder,
        )
        self.runs = RunStateMachine(dispatcher, discovery, self.progress, self.session_factory, self.progress_log)
        self.email_finders = email_finders or {}
        self.suppression_sync = suppression_sync

        self.handlers = {
            RUN_CREATED: self._on_run_created,
            PRESCREEN_TRIGGERED: self._on_prescreen,
            RESEARCH_TRIGGERED: self._on_research,
            RESEARCH_ALL_TRIGGERED: self._on_research_all,
            DEEP_RESEARCH_TRIGGERED: self._on_deep_research,
            DEEP_RESEARCH_MULTIPLE_TRIGGERED: self._on_deep_research_multiple,
        }

    # ── Event handling ───────────────────────────────────────────────────

    def handle(self, name, data):
        handler = self.handlers.get(name)
        if handler is None:
            raise ValueError(f"No handler registered for event '{name}'")
        logger.info("Handling %s %s", name, data)
        result = handler(data or {})
        logger.info("Handled %s → %s", name, result.get('status') if isinstance(result, dict) else result)
        return result

    def _on_run_created(self, data):
        return self.runs.scrape(data['runId'])

    def _on_prescreen(self, data):
        run_id = data['runId']
        result = self.prescreen_gate.prescreen(run_id, data.get('businessType'))
        result['ready'] = self.runs.mark_prescreened_if_complete(run_id)
        return result

    def _on_research(self, data):
        result = self.leads.research(data['leadId'])
        run_id = data.get('runId') or result.get('run_id')
        if run_id:
            result['run_completed'] = self.runs.check_completion(run_id)
        return result

    def _on_research_all(self, data):
        return self.runs.fan_out_research(data['runId'])

    def _on_deep_research(self, data):
        return self.leads.deep_research(data['leadId'])

    def _on_deep_research_multiple(self, data):
        return self.leads.fan_out_deep_research(
            data['runId'],
            filter_grade=data.get('filterGrade'),
            lead_ids=data.get('leadIds'),
        )

    # ── Email enrichment ─────────────────────────────────────────────────

    def search_lead_emails(self, lead_id, user_id, provider) -> Dict[str, Any]:
        """Run one provider's domain search for a lead and re-sync that provider's emails."""
        finder = self.email_finders.get(provider)
        if finder is None:
            raise PolicyError(f"Unsupported email provider: {provider}")

        session = self.session_factory()
        try:
            lead = session.get(Lead, lead_id)
            if lead is None:
                raise LeadNotFoundError(lead_id)
            if lead.user_id != user_id:
                raise OwnershipError(f"Lead {lead_id} does not belong to this user")
            domain = lead.email_domain or domain_from_website(lead.website)
        finally:
            session.close()
        if not domain:
            raise PolicyError("Lead has no website domain to search")

        result = finder.domain_search(domain)
        inserted = self.emails.merge_provider_emails(lead_id, provider, result.records)
        self.emails.record_search_meta(lead_id, provider, result.meta)
        return {
            'lead_id': lead_id,
            'provider': provider,
            'domain': domain,
            'emails_saved': inserted,
            **result.meta,
        }

    def search_run_emails(self, run_id, user_id, provider, lead_ids=None, only_missing=True) -> Dict[str, Any]:
        """
        Bulk domain search over a run's leads (or the given subset).

        Skipped leads and leads without a domain are passed over, as are
        leads already searched by any provider when `only_missing` is set.
        A provider error fails that lead only; an open circuit stops the batch.
        """
        if provider not in self.email_finders:
            raise PolicyError(f"Unsupported email provider: {provider}")
        self.runs.get_run(run_id, user_id)

        session = self.session_factory()
        try:
            query = session.query(Lead).filter(Lead.run_id == run_id)
            if lead_ids:
                query = query.filter(Lead.id.in_(lead_ids))
            leads = [
                (lead.id, lead.name, lead.research_status, lead.email_domain or domain_from_website(lead.website),
                 bool(lead.email_search_meta))
                for lead in query.order_by(Lead.id)
            ]
        finally:
            session.close()

        results = {'total': len(leads), 'successful': 0, 'skipped': 0, 'failed': 0, 'details': []}
        for lead_id, name, research_status, domain, searched in leads:
            detail = {'lead_id': lead_id, 'name': name}
            if research_status == 'skipped':
                detail.update(status='skipped', reason='Lead was excluded by prescreening')
            elif not domain:
                detail.update(status='skipped', reason='No website domain')
            elif only_missing and searched:
                detail.update(status='skipped', reason='Already searched')
            else:
                try:
                    found = self.search_lead_emails(lead_id, user_id, provider)
                    detail.update(status='success', domain=domain, emails_saved=found['emails_saved'])
                except ProviderError as e:
                    logger.warning("Email search failed for lead %s: %s", lead_id, e)
                    detail.update(status='failed', reason=str(e))
            results[_BULK_COUNTERS[detail['status']]] += 1
            results['details'].append(detail)

        logger.info(
            "Run %s %s email search: %d successful, %d skipped, %d failed",
            run_id, provider, results['successful'], results['skipped'], results['failed'],
        )
        return results

    def sync_suppressions(self):
        if self.suppression_sync is None:
            raise PolicyError("Suppression sync is not configured")
        return self.suppression_sync.sync()


# ── Process-wide instance (lazy, so importing never needs Redis or API keys) ──

_controller = None


def build_controller(session_factory=None, dispatcher=None) -> PipelineController:
    from leadflow.services.email_finders import FINDERS
    from leadflow.services.sendgrid import SendGridSuppressionSync

    if MOCK_PIPELINE:
        from leadflow.pipeline.mock_adapters import MockDiscovery, MockWebsiteScraper, MockAnalyzer
        logger.info("MOCK_PIPELINE active — using fake collaborators")
        discovery, scraper, analyzer, finder = MockDiscovery(), MockWebsiteScraper(), MockAnalyzer(), None
    else:
        from leadflow.services.scrapingdog import ScrapingdogMaps, ScrapingdogWebsiteFinder
        from leadflow.services.website import HttpWebsiteScraper
        from leadflow.services.openai_client import OpenAIAnalyzer
        discovery, scraper, analyzer = ScrapingdogMaps(), HttpWebsiteScraper(), OpenAIAnalyzer()
        finder = ScrapingdogWebsiteFinder()

    return PipelineController(
        dispatcher=dispatcher or RQDispatcher(),
        discovery=discovery,
        scraper=scraper,
        analyzer=analyzer,
        session_factory=session_factory,
        website_finder=finder,
        email_finders={name: cls() for name, cls in FINDERS.items()},
        suppression_sync=SendGridSuppressionSync(session_factory),
    )


def get_controller() -> PipelineController:
    global _controller
    if _controller is None:
        _controller = build_controller()
    return _controller


def handle_event(name, data):
    """RQ job entry point for every workflow event."""
    return get_controller().handle(name, data)
