"""
Slack notifications for finished runs.

Posting is best-effort: a Slack outage is logged and never reaches the
pipeline.
"""
import logging
import requests

from leadflow.config import SLACK_WEBHOOK_URL, GRADES

logger = logging.getLogger('services.notifications')


def _post(blocks):
    requests.post(SLACK_WEBHOOK_URL, json={"blocks": blocks}, timeout=10)


def _header(text):
    return {"type": "header", "text": {"type": "plain_text", "text": text}}


def _label(run):
    return f"{run['business_type']} in {run['location']}"


def _send(run, kind, build):
    if not SLACK_WEBHOOK_URL:
        return
    run_ref = (run.get('id') or '?')[:8]
    try:
        _post(build(run))
        logger.info("Run %s %s notification sent", run_ref, kind)
    except Exception:
        logger.error("Failed to send %s notification for run %s", kind, run_ref, exc_info=True)


def completion_blocks(run):
    """Header plus a field per grade. `run` is Run.to_dict()."""
    grades = run.get('grade_counts') or {}
    fields = [
        {"type": "mrkdwn", "text": f"*Leads:* {run.get('total_leads', 0)}"},
        {"type": "mrkdwn", "text": f"*Progress:* {run.get('progress', 0)}%"},
    ]
    fields += [{"type": "mrkdwn", "text": f"*Grade {g}:* {grades.get(g, 0)}"} for g in GRADES]
    return [
        _header(f"Lead Run Completed: {_label(run)}"),
        {"type": "section", "fields": fields},
    ]


def failure_blocks(run):
    blocks = [_header(f"Lead Run FAILED: {_label(run)}")]
    if run.get('error_message'):
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Error:* ```{run['error_message'][:500]}```"},
        })
    return blocks


def notify_run_complete(run):
    _send(run, 'completion', completion_blocks)


def notify_run_failed(run):
    _send(run, 'failure', failure_blocks)
