"""
Prescreen Gate — cheap franchise / national-brand filter before research.

One event per run. Every un-prescreened lead is its own unit of work: it is
claimed (pending → prescreening), classified by the analyzer, and written
back on its own.

A classifier ProviderError fails open: the lead is kept for research with low
confidence. Any other exception releases that lead un-prescreened, the loop
moves on, and the first such exception is re-raised once the loop is done so
the dispatcher retries the event.
"""
import logging

from sqlalchemy import update

from leadflow.config import PRESCREEN_CONFIDENCES
from leadflow.database import get_session, session_scope, utcnow
from leadflow.models.lead import Lead
from leadflow.models.run import Run
from leadflow.pipeline.base import LeadAnalyzer, PrescreenVerdict, ProviderError
from leadflow.services.progress_log import ProgressLogger

logger = logging.getLogger('pipeline.prescreen')


def lead_snapshot(lead):
    """Plain dict of the fields collaborators see."""
    return {
        'id': lead.id,
        'name': lead.name,
        'address': lead.address,
        'phone': lead.phone,
        'website': lead.website,
        'email_domain': lead.email_domain,
    }


class PrescreenGate:

    def __init__(self, analyzer: LeadAnalyzer, progress, session_factory=None, progress_log=None):
        self.analyzer = analyzer
        self.progress = progress
        self.session_factory = session_factory or get_session
        self.progress_log = progress_log or ProgressLogger(self.session_factory)

    def prescreen(self, run_id, business_type=None):
        """Classify every un-prescreened lead of the run."""
        session = self.session_factory()
        try:
            run = session.get(Run, run_id)
            if run is None:
                logger.warning("Prescreen skipped — run %s not found", run_id)
                return {'status': 'run_not_found'}
            user_id = run.user_id
            business_type = business_type or run.business_type or 'business'
            lead_ids = [
                row.id for row in
                session.query(Lead.id)
                .filter(
                    Lead.run_id == run_id,
                    Lead.prescreened.is_(False),
                    Lead.research_status == 'pending',
                )
                .order_by(Lead.id)
            ]
        finally:
            session.close()

        self.progress_log.log(
            run_id, 'prescreening_started',
            f"Prescreening {len(lead_ids)} businesses",
            {'count': len(lead_ids)}, user_id=user_id,
        )

        counts = {'research': 0, 'skip': 0, 'fallback': 0, 'errors': 0, 'claimed_elsewhere': 0}
        first_error = None
        for lead_id in lead_ids:
            try:
                outcome = self._prescreen_lead(run_id, lead_id, business_type)
            except Exception as e:
                logger.error("Prescreen failed for lead %s: %s", lead_id, e, exc_info=True)
                self._release(lead_id, error=str(e))
                first_error = first_error or e
                outcome = 'errors'
            if outcome == 'fallback':
                counts['fallback'] += 1
                outcome = 'research'
            counts[outcome] += 1

        excluded = counts['skip']
        self.progress_log.log(
            run_id, 'prescreening_completed',
            f"Ready to research {counts['research']} businesses ({excluded} excluded)",
            dict(counts), user_id=user_id,
        )
        logger.info(
            "Run %s prescreen: %d research, %d skip, %d errors",
            run_id, counts['research'], counts['skip'], counts['errors'],
        )
        if first_error is not None:
            raise first_error
        return {'status': 'done', **counts}

    def _prescreen_lead(self, run_id, lead_id, business_type):
        with session_scope(self.session_factory) as session:
            claimed = session.execute(
                update(Lead)
                .where(
                    Lead.id == lead_id,
                    Lead.prescreened.is_(False),
                    Lead.research_status == 'pending',
                )
                .values(research_status='prescreening')
            ).rowcount
            if not claimed:
                return 'claimed_elsewhere'
            snapshot = lead_snapshot(session.get(Lead, lead_id))

        fell_back = False
        try:
            verdict = self.analyzer.prescreen(snapshot, business_type)
        except ProviderError as e:
            logger.warning("Prescreen classifier error for lead %s, proceeding with research: %s", lead_id, e)
            verdict = PrescreenVerdict.fail_open()
            fell_back = True

        confidence = verdict.confidence if verdict.confidence in PRESCREEN_CONFIDENCES else 'low'
        now = utcnow()
        values = {
            'prescreened': True,
            'prescreen_result': verdict.result,
            'prescreen_reason': verdict.reason,
            'is_franchise': bool(verdict.is_franchise),
            'is_national_brand': bool(verdict.is_national_brand),
            'prescreen_confidence': confidence,
            'prescreened_at': now,
            'error_message': None,
        }
        if verdict.should_research:
            values['research_status'] = 'pending'
        else:
            values['research_status'] = 'skipped'
            values['grade_reasoning'] = f"Skipped - {verdict.reason}"
            values['researched_at'] = now

        with session_scope(self.session_factory) as session:
            session.execute(
                update(Lead)
                .where(Lead.id == lead_id, Lead.research_status == 'prescreening')
                .values(**values)
            )

        if not verdict.should_research:
            self.progress.recompute(run_id)
        return 'fallback' if fell_back else verdict.result

    def _release(self, lead_id, error=None):
        """Put a claimed lead back to pending, still un-prescreened."""
        try:
            with session_scope(self.session_factory) as session:
                session.execute(
                    update(Lead)
                    .where(Lead.id == lead_id, Lead.research_status == 'prescreening')
                    .values(research_status='pending', error_message=error)
                )
        except Exception:
            logger.error("Could not release lead %s after prescreen failure", lead_id, exc_info=True)
