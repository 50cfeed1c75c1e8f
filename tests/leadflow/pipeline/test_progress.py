"""Tests for leadflow.pipeline.progress — derived Run counters."""
import pytest

from leadflow.models.run import Run
from leadflow.pipeline.progress import compute_progress, ProgressAggregator


class TestComputeProgress:

    @pytest.mark.parametrize('terminal,target,expected', [
        (10, 10, 100),
        (6, 10, 60),
        (0, 10, 0),
        (1, 3, 33),
        (2, 3, 67),
    ])
    def test_share_of_target(self, terminal, target, expected):
        assert compute_progress(terminal, target) == expected

    def test_capped_at_100_when_more_leads_than_target(self):
        assert compute_progress(15, 10) == 100

    def test_zero_or_negative_target_is_zero(self):
        assert compute_progress(5, 0) == 0
        assert compute_progress(5, -1) == 0
        assert compute_progress(5, None) == 0


class TestRecompute:
    """ProgressAggregator.recompute() rewrites counters from lead rows."""

    def test_all_terminal_reaches_100(self, session_factory, make_run, make_lead, load):
        run_id = make_run(target_count=10)
        for _ in range(7):
            make_lead(run_id, research_status='completed', compatibility_grade='A')
        for _ in range(2):
            make_lead(run_id, research_status='failed')
        make_lead(run_id, research_status='skipped', prescreen_result='skip')

        values = ProgressAggregator(session_factory).recompute(run_id)

        assert values['progress'] == 100
        run = load(Run, run_id)
        assert run.progress == 100
        assert run.total_leads == 10
        assert run.grade_a_count == 7

    def test_partial_progress(self, session_factory, make_run, make_lead, load):
        run_id = make_run(target_count=10)
        for _ in range(4):
            make_lead(run_id, research_status='completed', compatibility_grade='B')
        for _ in range(2):
            make_lead(run_id, research_status='failed')
        for _ in range(4):
            make_lead(run_id, research_status='pending')

        ProgressAggregator(session_factory).recompute(run_id)

        run = load(Run, run_id)
        assert run.progress == 60
        assert run.total_leads == 10

    def test_grade_counts_by_letter(self, session_factory, make_run, make_lead, load):
        run_id = make_run()
        for grade in ['A', 'A', 'B', 'C', 'F']:
            make_lead(run_id, research_status='completed', compatibility_grade=grade)

        ProgressAggregator(session_factory).recompute(run_id)

        assert load(Run, run_id).grade_counts() == {'A': 2, 'B': 1, 'C': 1, 'D': 0, 'F': 1}

    def test_manual_grade_without_terminal_status_counts_grade_only(self, session_factory, make_run, make_lead, load):
        run_id = make_run(target_count=10)
        make_lead(run_id, research_status='pending', compatibility_grade='F')

        ProgressAggregator(session_factory).recompute(run_id)

        run = load(Run, run_id)
        assert run.grade_f_count == 1
        assert run.progress == 0

    def test_recompute_is_idempotent(self, session_factory, make_run, make_lead):
        run_id = make_run(target_count=5)
        make_lead(run_id, research_status='completed', compatibility_grade='C')
        aggregator = ProgressAggregator(session_factory)

        assert aggregator.recompute(run_id) == aggregator.recompute(run_id)

    def test_missing_run_returns_none(self, session_factory):
        assert ProgressAggregator(session_factory).recompute('no-such-run') is None
