"""
Progress Aggregator — recomputes a Run's derived counters from its leads.

Called after every lead write that changes research_status or
compatibility_grade. The counters are pure derived state, so concurrent
recomputes for the same run are harmless (last write wins).
"""
import logging

from sqlalchemy import func, update

from leadflow.config import TERMINAL_LEAD_STATUSES
from leadflow.database import get_session, session_scope
from leadflow.models.lead import Lead
from leadflow.models.run import Run, GRADE_COUNTER_COLUMNS

logger = logging.getLogger('pipeline.progress')


def compute_progress(terminal_count, target_count):
    """Share of the requested batch that reached a terminal state, 0-100."""
    if not target_count or target_count <= 0:
        return 0
    return min(100, int(round(100 * terminal_count / target_count)))


class ProgressAggregator:

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or get_session

    def recompute(self, run_id):
        """Rewrite total_leads, per-grade counts and progress for one run."""
        with session_scope(self.session_factory) as session:
            target_count = session.query(Run.target_count).filter(Run.id == run_id).scalar()
            if target_count is None:
                logger.warning("Recompute skipped — run %s not found", run_id)
                return None

            total = session.query(func.count(Lead.id)).filter(Lead.run_id == run_id).scalar() or 0

            grade_rows = (
                session.query(Lead.compatibility_grade, func.count(Lead.id))
                .filter(Lead.run_id == run_id, Lead.compatibility_grade.isnot(None))
                .group_by(Lead.compatibility_grade)
                .all()
            )
            by_grade = {grade: count for grade, count in grade_rows}

            terminal = (
                session.query(func.count(Lead.id))
                .filter(Lead.run_id == run_id, Lead.research_status.in_(TERMINAL_LEAD_STATUSES))
                .scalar()
            ) or 0

            values = {
                column: by_grade.get(grade, 0)
                for grade, column in GRADE_COUNTER_COLUMNS.items()
            }
            values['total_leads'] = total
            values['progress'] = compute_progress(terminal, target_count)

            session.execute(update(Run).where(Run.id == run_id).values(**values))

        logger.debug("Run %s progress=%d%% (%d/%d terminal)", run_id, values['progress'], terminal, target_count)
        return values
