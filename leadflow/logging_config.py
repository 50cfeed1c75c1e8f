"""
Logging setup shared by the web app and the RQ worker.

LOG_FORMAT picks the output: "text" for humans, "json" for log aggregation.
LOG_LEVEL defaults to INFO. Records emitted inside an RQ job are tagged with
the job id so a lead's research can be followed across retries.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone

from rq import get_current_job

TEXT_FORMAT = '[%(asctime)s] %(levelname)s %(name)s%(job_tag)s: %(message)s'
TEXT_DATEFMT = '%Y-%m-%d %H:%M:%S'

QUIET_LOGGERS = ('urllib3', 'openai', 'httpcore', 'httpx', 'rq.worker')


class JobContextFilter(logging.Filter):
    """Stamp `job_id` / `job_tag` on records logged while an RQ job is running."""

    def filter(self, record):
        if not getattr(record, 'job_id', None):
            job = get_current_job()
            record.job_id = job.id if job is not None else None
        record.job_tag = f' [job {record.job_id[:8]}]' if record.job_id else ''
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record):
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        job_id = getattr(record, 'job_id', None)
        if job_id:
            entry['job_id'] = job_id
        if record.exc_info and record.exc_info[0] is not None:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry)


def _level_from_env():
    return getattr(logging, os.getenv('LOG_LEVEL', 'INFO').upper(), logging.INFO)


def _formatter_from_env():
    if os.getenv('LOG_FORMAT', 'text').lower() == 'json':
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT)


def configure_logging(app=None):
    """
    (Re)build the root logger from LOG_LEVEL / LOG_FORMAT.

    Safe to call more than once: existing root handlers are replaced, not
    stacked. When a Flask app is passed its logger follows the same level.
    """
    level = _level_from_env()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(_formatter_from_env())
    handler.addFilter(JobContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if app is not None:
        app.logger.setLevel(level)
