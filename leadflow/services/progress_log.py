"""
Progress log writer — the run's append-only audit trail.

Writes use their own session so a log failure never rolls back pipeline
state, and never raises.
"""
import logging

from leadflow.database import get_session
from leadflow.models.progress_log import ProgressLogEntry

logger = logging.getLogger('services.progress_log')


class ProgressLogger:
    """Appends ProgressLogEntry rows for one store."""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or get_session

    def log(self, run_id, event_type, message, details=None, user_id=None):
        session = self.session_factory()
        try:
            session.add(ProgressLogEntry(
                run_id=run_id,
                user_id=user_id,
                event_type=event_type,
                message=message,
                details=details,
            ))
            session.commit()
        except Exception:
            session.rollback()
            logger.warning("Failed to write progress log %s for run %s", event_type, run_id, exc_info=True)
        finally:
            session.close()

    def recent(self, run_id, limit=100):
        """Newest-first log entries for a run."""
        session = self.session_factory()
        try:
            rows = (
                session.query(ProgressLogEntry)
                .filter(ProgressLogEntry.run_id == run_id)
                .order_by(ProgressLogEntry.id.desc())
                .limit(limit)
                .all()
            )
            return [row.to_dict() for row in rows]
        finally:
            session.close()
