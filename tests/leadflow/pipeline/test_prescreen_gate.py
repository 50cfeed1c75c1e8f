"""Tests for leadflow.pipeline.prescreen — franchise / national-brand gate."""
import pytest

from leadflow.models.lead import Lead
from leadflow.models.progress_log import ProgressLogEntry
from leadflow.models.run import Run
from leadflow.pipeline.base import PRESCREEN_FALLBACK_REASON
from leadflow.pipeline.events import PRESCREEN_TRIGGERED
from leadflow.pipeline.prescreen import PrescreenGate, lead_snapshot
from leadflow.pipeline.progress import ProgressAggregator


@pytest.fixture
def prescreen_run(make_run, make_lead):
    """A prescreening run with three un-prescreened leads."""
    run_id = make_run(status='prescreening', target_count=3)
    ids = [
        make_lead(run_id, name=name, prescreened=False, prescreen_result=None)
        for name in ('Harbourside Plumbing', "McDonald's", 'Bright Spark Electrical')
    ]
    return run_id, ids


def _gate(analyzer, session_factory):
    return PrescreenGate(analyzer, ProgressAggregator(session_factory), session_factory)


class TestPrescreen:

    def test_classifies_every_lead(self, session_factory, make_analyzer, prescreen_run, load):
        run_id, (plumber, chain, electrician) = prescreen_run
        analyzer = make_analyzer(skip={"McDonald's"})

        result = _gate(analyzer, session_factory).prescreen(run_id)

        assert result['status'] == 'done'
        assert result['research'] == 2
        assert result['skip'] == 1
        assert result['errors'] == 0

        kept = load(Lead, plumber)
        assert kept.prescreened is True
        assert kept.prescreen_result == 'research'
        assert kept.research_status == 'pending'
        assert kept.prescreen_confidence == 'medium'

        skipped = load(Lead, chain)
        assert skipped.prescreened is True
        assert skipped.prescreen_result == 'skip'
        assert skipped.research_status == 'skipped'
        assert skipped.is_national_brand is True
        assert skipped.grade_reasoning == 'Skipped - National chain'
        assert skipped.compatibility_grade is None

    def test_skip_updates_run_progress(self, session_factory, make_analyzer, prescreen_run, load):
        run_id, _ = prescreen_run

        _gate(make_analyzer(skip={"McDonald's"}), session_factory).prescreen(run_id)

        assert load(Run, run_id).progress == 33

    def test_classifier_provider_error_fails_open(self, session_factory, make_analyzer, prescreen_run, load):
        run_id, (plumber, chain, electrician) = prescreen_run
        analyzer = make_analyzer(prescreen_errors={"McDonald's"})

        result = _gate(analyzer, session_factory).prescreen(run_id)

        assert result['errors'] == 0
        assert result['fallback'] == 1
        assert result['research'] == 3
        kept = load(Lead, chain)
        assert kept.prescreened is True
        assert kept.prescreen_result == 'research'
        assert kept.research_status == 'pending'
        assert kept.prescreen_confidence == 'low'
        assert kept.prescreen_reason == PRESCREEN_FALLBACK_REASON

    def test_provider_error_still_lets_run_become_ready(self, controller, make_analyzer, prescreen_run, load):
        run_id, _ = prescreen_run
        controller.prescreen_gate.analyzer = make_analyzer(prescreen_errors={"McDonald's"})

        result = controller.handle(PRESCREEN_TRIGGERED, {'runId': run_id})

        assert result['ready'] is True
        assert load(Run, run_id).status == 'ready'

    def test_unexpected_exception_releases_lead_and_reraises(self, session_factory, make_analyzer, prescreen_run, load):
        run_id, (plumber, chain, electrician) = prescreen_run
        analyzer = make_analyzer()

        def _boom(lead, business_type):
            if lead['name'] == 'Harbourside Plumbing':
                raise RuntimeError('unexpected')
            return make_analyzer().prescreen(lead, business_type)
        analyzer.prescreen = _boom

        with pytest.raises(RuntimeError, match='unexpected'):
            _gate(analyzer, session_factory).prescreen(run_id)

        released = load(Lead, plumber)
        assert released.prescreened is False
        assert released.research_status == 'pending'
        assert 'unexpected' in released.error_message
        assert load(Lead, chain).prescreened is True
        assert load(Lead, electrician).prescreened is True

    def test_retry_after_unexpected_exception_finishes_the_run(self, controller, make_analyzer, prescreen_run, load):
        run_id, _ = prescreen_run
        flaky = make_analyzer()
        calls = []

        def _once(lead, business_type):
            calls.append(lead['name'])
            if lead['name'] == 'Harbourside Plumbing' and calls.count(lead['name']) == 1:
                raise RuntimeError('store hiccup')
            return make_analyzer().prescreen(lead, business_type)
        flaky.prescreen = _once
        controller.prescreen_gate.analyzer = flaky

        with pytest.raises(RuntimeError):
            controller.handle(PRESCREEN_TRIGGERED, {'runId': run_id})
        assert load(Run, run_id).status == 'prescreening'

        retried = controller.handle(PRESCREEN_TRIGGERED, {'runId': run_id})

        assert retried['research'] == 1
        assert load(Run, run_id).status == 'ready'

    def test_redelivery_classifies_nothing_twice(self, session_factory, make_analyzer, prescreen_run):
        run_id, _ = prescreen_run
        analyzer = make_analyzer()
        gate = _gate(analyzer, session_factory)

        gate.prescreen(run_id)
        second = gate.prescreen(run_id)

        assert len(analyzer.prescreen_calls) == 3
        assert second['research'] == 0

    def test_leads_claimed_elsewhere_are_left_alone(self, session_factory, make_analyzer, make_run, make_lead, load):
        run_id = make_run(status='prescreening')
        busy = make_lead(run_id, prescreened=False, prescreen_result=None, research_status='prescreening')
        analyzer = make_analyzer()

        _gate(analyzer, session_factory).prescreen(run_id)

        assert analyzer.prescreen_calls == []
        assert load(Lead, busy).research_status == 'prescreening'

    def test_run_not_found(self, session_factory, make_analyzer):
        assert _gate(make_analyzer(), session_factory).prescreen('missing')['status'] == 'run_not_found'

    def test_writes_progress_log(self, session_factory, make_analyzer, prescreen_run, db_session):
        run_id, _ = prescreen_run

        _gate(make_analyzer(skip={"McDonald's"}), session_factory).prescreen(run_id)

        events = [row.event_type for row in db_session.query(ProgressLogEntry).order_by(ProgressLogEntry.id)]
        assert events[0] == 'prescreening_started'
        assert events[-1] == 'prescreening_completed'
        completed = db_session.query(ProgressLogEntry).filter_by(event_type='prescreening_completed').one()
        assert completed.message == 'Ready to research 2 businesses (1 excluded)'


class TestLeadSnapshot:

    def test_exposes_identity_fields_only(self, make_run, make_lead, load):
        lead = load(Lead, make_lead(make_run(), name='Acme', website='https://acme.com.au'))
        snapshot = lead_snapshot(lead)
        assert snapshot['name'] == 'Acme'
        assert snapshot['email_domain'] == 'acme.com.au'
        assert 'research_status' not in snapshot
