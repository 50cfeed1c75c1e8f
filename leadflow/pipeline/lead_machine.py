"""
Lead State Machine — research one lead from pending to a terminal state.

    pending → scraping → analyzing → completed
                 └──────────┴──────→ failed

Every transition is a conditional UPDATE on research_status, which doubles as
the per-lead lock: a redelivered or concurrent event that loses the claim
returns without calling any provider. The claim also requires a prescreened,
non-skipped lead on a researching, unpaused run, so events left in the queue
across a clear-research or reset-prescreening are dropped.

Provider failures are business outcomes (the lead becomes `failed`). Any other
exception releases the claim and propagates so the dispatcher retries.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, or_

from leadflow.config import GRADES, MANUAL_F_REASONING, TERMINAL_LEAD_STATUSES
from leadflow.database import get_session, session_scope, utcnow
from leadflow.models.lead import Lead, domain_from_website
from leadflow.models.run import Run
from leadflow.pipeline.base import (
    LeadAnalyzer, WebsiteScraper, WebsiteFinder, ScrapedSite,
    ProviderError, PolicyError, LeadNotFoundError, OwnershipError,
)
from leadflow.pipeline.events import Dispatcher, deep_research_event, send_in_batches
from leadflow.pipeline.prescreen import lead_snapshot
from leadflow.services.progress_log import ProgressLogger

logger = logging.getLogger('pipeline.lead_machine')

NO_WEBSITE_MESSAGE = 'No website found via Google Maps or Google Search'


class LeadStateMachine:

    def __init__(self, scraper: WebsiteScraper, analyzer: LeadAnalyzer, progress,
                 dispatcher: Dispatcher, session_factory=None, progress_log=None,
                 website_finder: Optional[WebsiteFinder] = None):
        self.scraper = scraper
        self.analyzer = analyzer
        self.progress = progress
        self.dispatcher = dispatcher
        self.session_factory = session_factory or get_session
        self.progress_log = progress_log or ProgressLogger(self.session_factory)
        self.website_finder = website_finder

    # ── Research ─────────────────────────────────────────────────────────

    def research(self, lead_id) -> Dict[str, Any]:
        """Handle one lead/research.triggered event."""
        with session_scope(self.session_factory) as session:
            lead = session.get(Lead, lead_id)
            if lead is None:
                logger.warning("Research skipped — lead %s not found", lead_id)
                return {'status': 'lead_not_found', 'lead_id': lead_id}

            run_id = lead.run_id
            if lead.research_status in TERMINAL_LEAD_STATUSES:
                return {'status': 'already_done', 'lead_id': lead_id, 'run_id': run_id,
                        'research_status': lead.research_status}

            run = session.get(Run, run_id)
            if run is not None and run.is_paused:
                # Left pending; resume re-queues it
                return {'status': 'run_paused', 'lead_id': lead_id, 'run_id': run_id}
            if run is None or run.status != 'researching':
                # Stale event from before a clear-research or reset-prescreening
                return {'status': 'not_researching', 'lead_id': lead_id, 'run_id': run_id,
                        'run_status': run.status if run else None}
            if not lead.prescreened or lead.prescreen_result == 'skip':
                return {'status': 'not_prescreened', 'lead_id': lead_id, 'run_id': run_id}

            researching_runs = select(Run.id).where(
                Run.id == run_id, Run.status == 'researching', Run.is_paused.is_(False),
            )
            claimed = session.execute(
                update(Lead)
                .where(
                    Lead.id == lead_id,
                    Lead.research_status == 'pending',
                    Lead.prescreened.is_(True),
                    or_(Lead.prescreen_result.is_(None), Lead.prescreen_result != 'skip'),
                    Lead.run_id.in_(researching_runs),
                )
                .values(research_status='scraping', error_message=None)
                .execution_options(synchronize_session=False)
            ).rowcount
            if not claimed:
                return {'status': 'in_flight', 'lead_id': lead_id, 'run_id': run_id,
                        'research_status': lead.research_status}

            snapshot = lead_snapshot(lead)
            context = {
                'run_id': run_id,
                'user_id': lead.user_id,
                'business_type': run.business_type if run else 'business',
                'location': run.location if run else '',
            }

        self.progress_log.log(
            context['run_id'], 'lead_research_started',
            f"Researching {snapshot['name']}", {'lead_id': lead_id},
            user_id=context['user_id'],
        )

        try:
            return self._execute(lead_id, snapshot, context)
        except Exception:
            self._release(lead_id)
            raise

    def _execute(self, lead_id, snapshot, context):
        run_id = context['run_id']

        website = snapshot['website'] or self._find_website(lead_id, snapshot, context)
        if not website:
            return self._fail(lead_id, snapshot, context, NO_WEBSITE_MESSAGE)

        try:
            site = self.scraper.scrape(website)
        except ProviderError as e:
            return self._fail(lead_id, snapshot, context, f"Website scrape failed: {e}")

        moved = self._transition(
            lead_id, ('scraping',),
            research_status='analyzing',
            website_content=site.main_content,
            about_content=site.about_content,
            team_content=site.team_content,
            has_multiple_locations=site.has_multiple_locations,
            team_size=site.team_size,
        )
        if not moved:
            return {'status': 'claim_lost', 'lead_id': lead_id, 'run_id': run_id}

        try:
            report = self.analyzer.research(snapshot, site, context['business_type'])
        except ProviderError as e:
            return self._fail(lead_id, snapshot, context, f"Analysis failed: {e}")

        grade = (report.grade or '').strip().upper()
        if grade not in GRADES:
            return self._fail(lead_id, snapshot, context, f"Analysis returned invalid grade {report.grade!r}")

        moved = self._transition(
            lead_id, ('analyzing',),
            research_status='completed',
            compatibility_grade=grade,
            grade_reasoning=report.grade_reasoning,
            ai_report=report.report,
            suggested_hooks=list(report.suggested_hooks),
            pain_points=list(report.pain_points),
            opportunities=list(report.opportunities),
            researched_at=utcnow(),
            error_message=None,
        )
        if not moved:
            return {'status': 'claim_lost', 'lead_id': lead_id, 'run_id': run_id}

        self.progress_log.log(
            run_id, 'lead_research_completed',
            f"{snapshot['name']} graded {grade}",
            {'lead_id': lead_id, 'grade': grade}, user_id=context['user_id'],
        )
        self.progress.recompute(run_id)
        logger.info("Lead %s researched — grade %s", lead_id, grade)
        return {'status': 'completed', 'lead_id': lead_id, 'run_id': run_id, 'grade': grade}

    def _find_website(self, lead_id, snapshot, context):
        if self.website_finder is None:
            return None
        try:
            website = self.website_finder.find_website(snapshot['name'], context['location'])
        except ProviderError as e:
            logger.warning("Website lookup failed for lead %s: %s", lead_id, e)
            return None
        if website:
            self._transition(
                lead_id, ('scraping',),
                website=website,
                email_domain=domain_from_website(website),
            )
            snapshot['website'] = website
            snapshot['email_domain'] = domain_from_website(website)
        return website

    def _fail(self, lead_id, snapshot, context, message):
        run_id = context['run_id']
        moved = self._transition(
            lead_id, ('scraping', 'analyzing'),
            research_status='failed',
            error_message=message,
        )
        if not moved:
            return {'status': 'claim_lost', 'lead_id': lead_id, 'run_id': run_id}
        self.progress_log.log(
            run_id, 'lead_research_failed',
            f"{snapshot['name']}: {message}",
            {'lead_id': lead_id, 'error': message}, user_id=context['user_id'],
        )
        self.progress.recompute(run_id)
        logger.info("Lead %s failed: %s", lead_id, message)
        return {'status': 'failed', 'lead_id': lead_id, 'run_id': run_id, 'error': message}

    def _transition(self, lead_id, expected, **values):
        """Conditional write; True when the lead was still in one of `expected`."""
        with session_scope(self.session_factory) as session:
            return bool(session.execute(
                update(Lead)
                .where(Lead.id == lead_id, Lead.research_status.in_(expected))
                .values(**values)
            ).rowcount)

    def _release(self, lead_id):
        """Hand a claimed lead back to pending so a retried event can claim it again."""
        try:
            self._transition(lead_id, ('scraping', 'analyzing'), research_status='pending')
            logger.warning("Lead %s released back to pending after handler error", lead_id)
        except Exception:
            logger.error("Could not release lead %s", lead_id, exc_info=True)

    # ── Deep research ────────────────────────────────────────────────────

    def _deep_candidates(self, session, run_id):
        return session.query(Lead).filter(
            Lead.run_id == run_id,
            Lead.research_status == 'completed',
            Lead.website_content.isnot(None),
            or_(Lead.deep_research_status.is_(None),
                Lead.deep_research_status.notin_(('queued', 'running'))),
        )

    def request_deep_research(self, lead_id, user_id) -> Dict[str, Any]:
        """Queue a deep research pass for one completed lead."""
        with session_scope(self.session_factory) as session:
            lead = self._load_owned_lead(session, lead_id, user_id)
            if lead.research_status != 'completed':
                raise PolicyError("Deep research requires a lead whose research is completed")
            if not lead.website_content:
                raise PolicyError("No website content available. Run regular research first.")
            if lead.deep_research_status in ('queued', 'running'):
                raise PolicyError("Deep research is already in progress for this lead")
            lead.deep_research_status = 'queued'
            run_id = lead.run_id

        self.dispatcher.send(deep_research_event(lead_id, run_id))
        return {'status': 'queued', 'lead_id': lead_id, 'run_id': run_id}

    def fan_out_deep_research(self, run_id, filter_grade=None, lead_ids: Optional[List[int]] = None) -> Dict[str, Any]:
        """Handle lead/deep-research-multiple.triggered: queue a filtered set of completed leads."""
        with session_scope(self.session_factory) as session:
            run = session.get(Run, run_id)
            if run is None:
                return {'status': 'run_not_found', 'run_id': run_id}
            query = self._deep_candidates(session, run_id)
            if lead_ids:
                query = query.filter(Lead.id.in_(lead_ids))
            elif filter_grade and filter_grade != 'all':
                query = query.filter(Lead.compatibility_grade == filter_grade)
            leads = query.order_by(Lead.id).all()
            for lead in leads:
                lead.deep_research_status = 'queued'
            ids = [lead.id for lead in leads]
            user_id = run.user_id

        sent = send_in_batches(self.dispatcher, [deep_research_event(i, run_id) for i in ids])
        self.progress_log.log(
            run_id, 'deep_research_batch_started',
            f"Deep research queued for {sent} leads",
            {'count': sent, 'filter_grade': filter_grade, 'lead_ids': lead_ids},
            user_id=user_id,
        )
        return {'status': 'queued', 'run_id': run_id, 'count': sent}

    def deep_research(self, lead_id) -> Dict[str, Any]:
        """Handle lead/deep-research.triggered. Never changes research_status or compatibility_grade."""
        with session_scope(self.session_factory) as session:
            claimed = session.execute(
                update(Lead)
                .where(
                    Lead.id == lead_id,
                    Lead.research_status == 'completed',
                    Lead.deep_research_status == 'queued',
                )
                .values(deep_research_status='running')
            ).rowcount
            if not claimed:
                return {'status': 'not_queued', 'lead_id': lead_id}
            lead = session.get(Lead, lead_id)
            snapshot = lead_snapshot(lead)
            site = ScrapedSite(
                main_content=lead.website_content or '',
                about_content=lead.about_content,
                team_content=lead.team_content,
                has_multiple_locations=bool(lead.has_multiple_locations),
                team_size=lead.team_size,
            )
            run = session.get(Run, lead.run_id)
            run_id = lead.run_id
            user_id = lead.user_id
            business_type = run.business_type if run else 'business'

        try:
            report = self.analyzer.deep_research(snapshot, site, business_type)
        except ProviderError as e:
            self._deep_write(lead_id, deep_research_status='failed', deep_grade_reasoning=f"Deep research failed: {e}")
            logger.info("Deep research failed for lead %s: %s", lead_id, e)
            return {'status': 'failed', 'lead_id': lead_id, 'error': str(e)}
        except Exception:
            self._deep_write(lead_id, deep_research_status='queued')
            raise

        grade = (report.grade or '').strip().upper()
        self._deep_write(
            lead_id,
            deep_research_status='completed',
            deep_report=report.report,
            deep_grade=grade if grade in GRADES else None,
            deep_grade_reasoning=report.grade_reasoning,
            deep_researched_at=utcnow(),
        )
        self.progress_log.log(
            run_id, 'lead_deep_research_completed',
            f"Deep research completed for {snapshot['name']}",
            {'lead_id': lead_id, 'grade': grade}, user_id=user_id,
        )
        return {'status': 'completed', 'lead_id': lead_id, 'grade': grade}

    def _deep_write(self, lead_id, **values):
        with session_scope(self.session_factory) as session:
            session.execute(
                update(Lead)
                .where(Lead.id == lead_id, Lead.deep_research_status == 'running')
                .values(**values)
            )

    # ── Manual override ──────────────────────────────────────────────────

    def set_grade(self, lead_id, user_id, grade) -> Dict[str, Any]:
        """Set a grade by hand. Does not touch research_status."""
        grade = (grade or '').strip().upper()
        if grade not in GRADES:
            raise PolicyError("Invalid grade. Must be A, B, C, D, or F")

        with session_scope(self.session_factory) as session:
            lead = self._load_owned_lead(session, lead_id, user_id)
            lead.compatibility_grade = grade
            if grade == 'F':
                lead.grade_reasoning = MANUAL_F_REASONING
            run_id = lead.run_id
            data = lead.to_dict()

        self.progress.recompute(run_id)
        logger.info("Lead %s grade manually set to %s", lead_id, grade)
        return data

    def _load_owned_lead(self, session, lead_id, user_id):
        lead = session.get(Lead, lead_id)
        if lead is None:
            raise LeadNotFoundError(lead_id)
        if lead.user_id != user_id:
            raise OwnershipError(f"Lead {lead_id} does not belong to this user")
        return lead
