"""
Run State Machine — one discovery batch from creation to completion.

    pending → scraping → prescreening → ready → researching → completed
       └─────────┴── failed (no leads could be produced)

is_paused is orthogonal and only meaningful while researching. Automatic
transitions are conditional UPDATEs on status so redelivered events are
no-ops; control operations check ownership and raise PolicyError when their
guard fails, leaving state untouched.
"""
import logging
from typing import Any, Dict, Iterable, List

from sqlalchemy import func, update, or_

from leadflow.config import (
    MIN_TARGET_COUNT, MAX_TARGET_COUNT, DEFAULT_TARGET_COUNT,
    TERMINAL_LEAD_STATUSES, IN_FLIGHT_LEAD_STATUSES,
)
from leadflow.database import get_session, session_scope, utcnow
from leadflow.models.lead import Lead, derived_field_reset, domain_from_website
from leadflow.models.run import Run, GRADE_COUNTER_COLUMNS
from leadflow.pipeline.base import (
    BusinessDiscovery, BusinessRecord, ProviderError,
    PolicyError, RunNotFoundError, OwnershipError,
)
from leadflow.pipeline.events import (
    Dispatcher, Event, RUN_CREATED, PRESCREEN_TRIGGERED, RESEARCH_ALL_TRIGGERED,
    DEEP_RESEARCH_MULTIPLE_TRIGGERED, research_event, send_in_batches,
)
from leadflow.services.notifications import notify_run_complete, notify_run_failed
from leadflow.services.progress_log import ProgressLogger

logger = logging.getLogger('pipeline.run_machine')

# Statuses in which the run has leads that can be reset or restarted
_HAS_LEADS = ('prescreening', 'ready', 'researching', 'completed')


def clamp_target_count(value):
    """Requested lead count → int within [MIN_TARGET_COUNT, MAX_TARGET_COUNT]."""
    try:
        count = int(value)
    except (TypeError, ValueError):
        count = DEFAULT_TARGET_COUNT
    return max(MIN_TARGET_COUNT, min(MAX_TARGET_COUNT, count))


def parse_business_types(value) -> List[str]:
    """'plumbers, electricians' or ['plumbers'] → de-duplicated list of queries."""
    if isinstance(value, str):
        value = value.split(',')
    seen = []
    for item in value or []:
        item = (item or '').strip()
        if item and item not in seen:
            seen.append(item)
    return seen


def maps_url(latitude, longitude):
    if latitude is None or longitude is None:
        return None
    return f'https://www.google.com/maps/search/?api=1&query={latitude},{longitude}'


def _needs_research():
    """Pending leads not excluded by prescreen."""
    return (
        Lead.research_status == 'pending',
        or_(Lead.prescreen_result.is_(None), Lead.prescreen_result != 'skip'),
    )


class RunStateMachine:

    def __init__(self, dispatcher: Dispatcher, discovery: BusinessDiscovery, progress,
                 session_factory=None, progress_log=None):
        self.dispatcher = dispatcher
        self.discovery = discovery
        self.progress = progress
        self.session_factory = session_factory or get_session
        self.progress_log = progress_log or ProgressLogger(self.session_factory)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _load_owned(self, session, run_id, user_id):
        run = session.get(Run, run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        if run.user_id != user_id:
            raise OwnershipError(f"Run {run_id} does not belong to this user")
        return run

    def _set_status(self, session, run_id, expected: Iterable[str], **values):
        """Conditional run update; True when the run was still in one of `expected`."""
        return bool(session.execute(
            update(Run)
            .where(Run.id == run_id, Run.status.in_(tuple(expected)))
            .values(**values)
        ).rowcount)

    def _count_leads(self, session, run_id, *criteria):
        return session.query(func.count(Lead.id)).filter(Lead.run_id == run_id, *criteria).scalar() or 0

    def _pending_research_ids(self, session, run_id):
        return [
            row.id for row in
            session.query(Lead.id).filter(Lead.run_id == run_id, *_needs_research()).order_by(Lead.id)
        ]

    def _send_research(self, run_id, lead_ids):
        return send_in_batches(self.dispatcher, [research_event(lead_id, run_id) for lead_id in lead_ids])

    def _send_prescreen(self, run_id, business_type):
        self.dispatcher.send(Event(PRESCREEN_TRIGGERED, {
            'runId': run_id,
            'businessType': business_type or 'business',
        }))

    def get_run(self, run_id, user_id) -> Dict[str, Any]:
        session = self.session_factory()
        try:
            return self._load_owned(session, run_id, user_id).to_dict()
        finally:
            session.close()

    def progress_logs(self, run_id, user_id, limit=100):
        self.get_run(run_id, user_id)
        return self.progress_log.recent(run_id, limit=limit)

    # ── Creation + scraping ──────────────────────────────────────────────

    def create_run(self, user_id, business_types, location, target_count=None) -> Dict[str, Any]:
        queries = parse_business_types(business_types)
        if not queries:
            raise PolicyError("At least one business type is required")
        location = (location or '').strip()
        if not location:
            raise PolicyError("Location is required")

        with session_scope(self.session_factory) as session:
            run = Run(
                user_id=user_id,
                business_types=queries,
                location=location,
                target_count=clamp_target_count(target_count),
                status='pending',
            )
            session.add(run)
            session.flush()
            data = run.to_dict()

        self.progress_log.log(
            data['id'], 'status_update',
            f"Run created: {data['business_type']} in {location}",
            {'target_count': data['target_count']}, user_id=user_id,
        )
        self.dispatcher.send(Event(RUN_CREATED, {
            'runId': data['id'],
            'userId': user_id,
            'queries': queries,
            'location': location,
            'targetCount': data['target_count'],
        }))
        logger.info("Run %s created (%s in %s, target %d)", data['id'][:8], data['business_type'], location, data['target_count'])
        return data

    def scrape(self, run_id) -> Dict[str, Any]:
        """Handle run.created: discover businesses and persist them as leads."""
        with session_scope(self.session_factory) as session:
            run = session.get(Run, run_id)
            if run is None:
                logger.warning("Scrape skipped — run %s not found", run_id)
                return {'status': 'run_not_found', 'run_id': run_id}
            claimed = self._set_status(session, run_id, ('pending',), status='scraping', started_at=utcnow())
            if not claimed:
                # A redelivery after a crashed attempt has no leads yet and scrapes again
                if run.status != 'scraping' or self._count_leads(session, run_id):
                    return {'status': 'already_started', 'run_id': run_id, 'run_status': run.status}
            queries = list(run.business_types or [])
            location = run.location
            target = run.target_count
            user_id = run.user_id

        self.progress_log.log(
            run_id, 'run_started',
            f"Searching for {', '.join(queries)} in {location}",
            {'queries': queries, 'target_count': target}, user_id=user_id,
        )

        records = self._discover(run_id, user_id, queries, location, target)
        if not records:
            return self._fail_run(run_id, user_id, f"No businesses found for {', '.join(queries)} in {location}")

        with session_scope(self.session_factory) as session:
            if not self._count_leads(session, run_id):
                session.add_all([self._lead_from_record(run_id, user_id, r) for r in records])
            self._set_status(session, run_id, ('scraping',), status='prescreening')

        self.progress_log.log(
            run_id, 'scraping_completed',
            f"Found {len(records)} businesses",
            {'count': len(records)}, user_id=user_id,
        )
        self.progress.recompute(run_id)
        self._send_prescreen(run_id, ', '.join(queries))
        return {'status': 'prescreening', 'run_id': run_id, 'leads': len(records)}

    def _discover(self, run_id, user_id, queries, location, target) -> List[BusinessRecord]:
        found = []
        seen = set()
        for query in queries:
            if len(found) >= target:
                break
            self.progress_log.log(
                run_id, 'scraping_query', f"Searching: {query} in {location}",
                {'query': query}, user_id=user_id,
            )
            try:
                results = self.discovery.search(query, location, target)
            except ProviderError as e:
                logger.warning("Run %s discovery query %r failed: %s", run_id, query, e)
                self.progress_log.log(
                    run_id, 'scraping_query', f"Search failed for {query}: {e}",
                    {'query': query, 'error': str(e)}, user_id=user_id,
                )
                continue

            added = 0
            for record in results:
                key = record.dedup_key or f'name_{record.name}_{record.address}'
                if key in seen:
                    continue
                seen.add(key)
                found.append(record)
                added += 1
                if len(found) >= target:
                    break
            logger.info("Run %s query %r: %d results, %d new", run_id, query, len(results), added)
        return found

    @staticmethod
    def _lead_from_record(run_id, user_id, record: BusinessRecord):
        return Lead(
            run_id=run_id,
            user_id=user_id,
            name=record.name,
            address=record.address,
            phone=record.phone,
            website=record.website,
            google_maps_url=record.maps_url or maps_url(record.latitude, record.longitude),
            place_id=record.place_id,
            latitude=record.latitude,
            longitude=record.longitude,
            email_domain=domain_from_website(record.website),
            research_status='pending',
            prescreened=False,
        )

    def _fail_run(self, run_id, user_id, message):
        with session_scope(self.session_factory) as session:
            self._set_status(
                session, run_id, ('pending', 'scraping', 'prescreening', 'ready', 'researching'),
                status='failed', error_message=message,
            )
            run = session.get(Run, run_id)
            data = run.to_dict() if run else None
        self.progress_log.log(run_id, 'run_failed', message, user_id=user_id)
        logger.warning("Run %s failed: %s", run_id, message)
        if data:
            notify_run_failed(data)
        return {'status': 'failed', 'run_id': run_id, 'error': message}

    # ── Automatic transitions ────────────────────────────────────────────

    def mark_prescreened_if_complete(self, run_id) -> bool:
        """prescreening → ready once every lead is prescreened."""
        with session_scope(self.session_factory) as session:
            remaining = self._count_leads(session, run_id, Lead.prescreened.is_(False))
            if remaining:
                logger.info("Run %s: %d leads still awaiting prescreen", run_id, remaining)
                return False
            moved = self._set_status(session, run_id, ('prescreening',), status='ready')
            user_id = session.query(Run.user_id).filter(Run.id == run_id).scalar()
        if moved:
            self.progress_log.log(run_id, 'status_update', "Prescreening finished; ready to research", user_id=user_id)
        return moved

    def fan_out_research(self, run_id) -> Dict[str, Any]:
        """Handle lead/research-all.triggered."""
        with session_scope(self.session_factory) as session:
            run = session.get(Run, run_id)
            if run is None or run.status != 'researching':
                return {'status': 'not_researching', 'run_id': run_id}
            if run.is_paused:
                return {'status': 'paused', 'run_id': run_id}
            lead_ids = self._pending_research_ids(session, run_id)
            user_id = run.user_id

        sent = self._send_research(run_id, lead_ids)
        self.progress_log.log(
            run_id, 'status_update', f"Queued {sent} leads for research",
            {'count': sent}, user_id=user_id,
        )
        self.check_completion(run_id)
        return {'status': 'queued', 'run_id': run_id, 'count': sent}

    def check_completion(self, run_id) -> bool:
        """researching → completed once every lead is terminal."""
        with session_scope(self.session_factory) as session:
            total = self._count_leads(session, run_id)
            open_leads = self._count_leads(session, run_id, Lead.research_status.notin_(TERMINAL_LEAD_STATUSES))
            if not total or open_leads:
                return False
            moved = self._set_status(
                session, run_id, ('researching',),
                status='completed', completed_at=utcnow(), is_paused=False,
            )
        if not moved:
            return False

        self.progress.recompute(run_id)
        session = self.session_factory()
        try:
            data = session.get(Run, run_id).to_dict()
        finally:
            session.close()
        self.progress_log.log(
            run_id, 'run_completed', f"Research complete for {total} leads",
            {'grade_counts': data['grade_counts']}, user_id=data['user_id'],
        )
        logger.info("Run %s completed", run_id)
        notify_run_complete(data)
        return True

    # ── Control operations ───────────────────────────────────────────────

    def start_research(self, run_id, user_id) -> Dict[str, Any]:
        with session_scope(self.session_factory) as session:
            run = self._load_owned(session, run_id, user_id)
            if run.status != 'ready':
                raise PolicyError(f"Run must be ready before research can start. Current status: {run.status}")
            unscreened = self._count_leads(session, run_id, Lead.prescreened.is_(False))
            if unscreened:
                raise PolicyError(f"Prescreening has not finished for {unscreened} leads")
            if not self._set_status(session, run_id, ('ready',), status='researching', is_paused=False):
                raise PolicyError("Run status changed; try again")
            session.refresh(run)
            data = run.to_dict()

        self.progress_log.log(run_id, 'status_update', "Research started", user_id=user_id)
        self.dispatcher.send(Event(RESEARCH_ALL_TRIGGERED, {'runId': run_id}))
        return data

    def pause(self, run_id, user_id) -> Dict[str, Any]:
        with session_scope(self.session_factory) as session:
            run = self._load_owned(session, run_id, user_id)
            if run.status != 'researching':
                raise PolicyError(f"Can only pause runs that are actively researching. Current status: {run.status}")
            if run.is_paused:
                raise PolicyError("Run is already paused")
            moved = bool(session.execute(
                update(Run)
                .where(Run.id == run_id, Run.status == 'researching', Run.is_paused.is_(False))
                .values(is_paused=True, paused_at=utcnow())
            ).rowcount)
            if not moved:
                raise PolicyError("Run status changed; try again")
            session.refresh(run)
            data = run.to_dict()

        self.progress_log.log(run_id, 'run_paused', "Research paused by user", user_id=user_id)
        logger.info("Run %s paused", run_id)
        return data

    def resume(self, run_id, user_id) -> Dict[str, Any]:
        with session_scope(self.session_factory) as session:
            run = self._load_owned(session, run_id, user_id)
            if not run.is_paused:
                raise PolicyError("Run is not paused")
            moved = bool(session.execute(
                update(Run)
                .where(Run.id == run_id, Run.is_paused.is_(True))
                .values(is_paused=False, resumed_at=utcnow())
            ).rowcount)
            if not moved:
                raise PolicyError("Run is not paused")
            lead_ids = self._pending_research_ids(session, run_id)
            session.refresh(run)
            data = run.to_dict()

        self.progress_log.log(run_id, 'run_resumed', "Research resumed by user", user_id=user_id)
        sent = self._send_research(run_id, lead_ids)
        self.progress_log.log(
            run_id, 'status_update', f"Re-queued {sent} pending leads for research",
            {'count': sent}, user_id=user_id,
        )
        logger.info("Run %s resumed, %d leads re-queued", run_id, sent)
        return {'run': data, 'pending_leads_triggered': sent}

    def restart_prescreen(self, run_id, user_id) -> Dict[str, Any]:
        with session_scope(self.session_factory) as session:
            run = self._load_owned(session, run_id, user_id)
            if run.status not in ('prescreening', 'ready'):
                raise PolicyError(f"Prescreening can only be restarted before research starts. Current status: {run.status}")
            session.execute(
                update(Lead)
                .where(Lead.run_id == run_id, Lead.research_status == 'prescreening')
                .values(research_status='pending')
            )
            self._set_status(session, run_id, ('prescreening', 'ready'), status='prescreening')
            business_type = run.business_type
            session.refresh(run)
            data = run.to_dict()

        self.progress_log.log(run_id, 'status_update', "Prescreening restarted", user_id=user_id)
        self._send_prescreen(run_id, business_type)
        return data

    def _wipe_leads(self, session, run_id):
        counters = {column: 0 for column in GRADE_COUNTER_COLUMNS.values()}
        session.execute(update(Lead).where(Lead.run_id == run_id).values(**derived_field_reset()))
        return counters

    def reset_prescreening(self, run_id, user_id) -> Dict[str, Any]:
        """Wipe every derived lead field and prescreen the whole batch again."""
        with session_scope(self.session_factory) as session:
            run = self._load_owned(session, run_id, user_id)
            if run.status not in _HAS_LEADS:
                raise PolicyError(f"Run has no leads to reset. Current status: {run.status}")
            counters = self._wipe_leads(session, run_id)
            self._set_status(
                session, run_id, _HAS_LEADS,
                status='prescreening', is_paused=False, progress=0, completed_at=None, **counters,
            )
            business_type = run.business_type
            session.refresh(run)
            data = run.to_dict()

        self.progress_log.log(run_id, 'status_update', "Prescreening reset; all leads will be prescreened again", user_id=user_id)
        self._send_prescreen(run_id, business_type)
        return data

    def clear_research(self, run_id, user_id) -> Dict[str, Any]:
        """
        Wipe every derived lead field and put the run back to ready.

        The wiped leads are un-prescreened, so the prescreen event is sent
        again; start_research is accepted once it has finished.
        """
        with session_scope(self.session_factory) as session:
            run = self._load_owned(session, run_id, user_id)
            if run.status not in _HAS_LEADS:
                raise PolicyError(f"Run has no leads to clear. Current status: {run.status}")
            counters = self._wipe_leads(session, run_id)
            self._set_status(
                session, run_id, _HAS_LEADS,
                status='ready', is_paused=False, progress=0, completed_at=None, **counters,
            )
            business_type = run.business_type
            session.refresh(run)
            data = run.to_dict()

        self.progress_log.log(
            run_id, 'status_update',
            "Research cleared for all leads; prescreening again before research can start",
            user_id=user_id,
        )
        self._send_prescreen(run_id, business_type)
        logger.info("Run %s research cleared", run_id)
        return data

    def mark_complete(self, run_id, user_id) -> Dict[str, Any]:
        with session_scope(self.session_factory) as session:
            run = self._load_owned(session, run_id, user_id)
            if run.status == 'archived':
                raise PolicyError("Archived runs cannot be modified")
            run.status = 'completed'
            run.progress = 100
            run.is_paused = False
            run.completed_at = utcnow()
            session.flush()
            data = run.to_dict()

        self.progress_log.log(run_id, 'status_update', "Run manually marked as complete", user_id=user_id)
        return data

    def force_restart(self, run_id, user_id) -> Dict[str, Any]:
        """Sweep leads stuck mid-flight back to pending and re-trigger the work that remains."""
        with session_scope(self.session_factory) as session:
            run = self._load_owned(session, run_id, user_id)
            if run.status not in _HAS_LEADS or not self._count_leads(session, run_id):
                raise PolicyError("No leads found for this run")
            stale = session.execute(
                update(Lead)
                .where(Lead.run_id == run_id, Lead.research_status.in_(IN_FLIGHT_LEAD_STATUSES))
                .values(research_status='pending', error_message=None)
            ).rowcount or 0
            unscreened = self._count_leads(session, run_id, Lead.prescreened.is_(False))
            new_status = 'prescreening' if unscreened else 'researching'
            self._set_status(
                session, run_id, _HAS_LEADS,
                status=new_status, is_paused=False, completed_at=None,
            )
            lead_ids = [] if unscreened else self._pending_research_ids(session, run_id)
            business_type = run.business_type

        if unscreened:
            self._send_prescreen(run_id, business_type)
        sent = self._send_research(run_id, lead_ids)
        self.progress_log.log(
            run_id, 'run_restarted',
            f"Run restarted: {stale} stale leads reset, {unscreened} to prescreen, {sent} queued for research",
            {'stale_reset': stale, 'prescreen': unscreened, 'research': sent}, user_id=user_id,
        )
        self.progress.recompute(run_id)
        if new_status == 'researching':
            self.check_completion(run_id)
        return {
            'status': new_status,
            'run_id': run_id,
            'stale_reset': stale,
            'prescreen_pending': unscreened,
            'research_triggered': sent,
        }

    def trigger_deep_research(self, run_id, user_id, filter_grade=None, lead_ids=None) -> Dict[str, Any]:
        with session_scope(self.session_factory) as session:
            self._load_owned(session, run_id, user_id)
            completed = self._count_leads(session, run_id, Lead.research_status == 'completed')
        if not completed:
            raise PolicyError("No completed leads to deep research")
        self.dispatcher.send(Event(DEEP_RESEARCH_MULTIPLE_TRIGGERED, {
            'runId': run_id,
            'filterGrade': filter_grade or 'all',
            'leadIds': lead_ids or None,
        }))
        return {'status': 'queued', 'run_id': run_id}
