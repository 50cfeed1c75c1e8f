"""
Workflow events and the at-least-once dispatcher.

Events are delivered to leadflow.pipeline.controller.handle_event by RQ
workers. RQ retries a job when the handler raises, so every handler must be
idempotent under redelivery.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from leadflow.config import (
    RQ_QUEUE_NAME, EVENT_JOB_TIMEOUT, EVENT_MAX_RETRIES,
    EVENT_RETRY_INTERVALS, EVENT_BATCH_SIZE,
)

logger = logging.getLogger('pipeline.events')


# ── Event names ───────────────────────────────────────────────────────────────

RUN_CREATED = 'run.created'
PRESCREEN_TRIGGERED = 'lead/prescreen.triggered'
RESEARCH_TRIGGERED = 'lead/research.triggered'
RESEARCH_ALL_TRIGGERED = 'lead/research-all.triggered'
DEEP_RESEARCH_TRIGGERED = 'lead/deep-research.triggered'
DEEP_RESEARCH_MULTIPLE_TRIGGERED = 'lead/deep-research-multiple.triggered'

EVENT_NAMES = (
    RUN_CREATED,
    PRESCREEN_TRIGGERED,
    RESEARCH_TRIGGERED,
    RESEARCH_ALL_TRIGGERED,
    DEEP_RESEARCH_TRIGGERED,
    DEEP_RESEARCH_MULTIPLE_TRIGGERED,
)

HANDLER_PATH = 'leadflow.pipeline.controller.handle_event'


@dataclass
class Event:
    name: str
    data: Dict[str, Any] = field(default_factory=dict)


def research_event(lead_id, run_id) -> Event:
    return Event(RESEARCH_TRIGGERED, {'leadId': lead_id, 'runId': run_id})


def deep_research_event(lead_id, run_id) -> Event:
    return Event(DEEP_RESEARCH_TRIGGERED, {'leadId': lead_id, 'runId': run_id})


# ── Dispatchers ───────────────────────────────────────────────────────────────

class Dispatcher(ABC):
    """Delivers workflow events to handlers, at least once."""

    @abstractmethod
    def send(self, event: Event) -> None:
        ...

    def send_many(self, events: List[Event]) -> None:
        for event in events:
            self.send(event)


class RQDispatcher(Dispatcher):
    """
    Enqueues one RQ job per event on the events queue.

    The queue is created lazily so importing this module never touches Redis.
    """

    def __init__(self, queue=None, queue_name=RQ_QUEUE_NAME):
        self._queue = queue
        self.queue_name = queue_name

    @property
    def queue(self):
        if self._queue is None:
            from rq import Queue
            from leadflow.extensions import rq_connection
            self._queue = Queue(self.queue_name, connection=rq_connection)
        return self._queue

    @staticmethod
    def _retry():
        from rq import Retry
        return Retry(max=EVENT_MAX_RETRIES, interval=EVENT_RETRY_INTERVALS)

    def send(self, event: Event) -> None:
        self.queue.enqueue(
            HANDLER_PATH, event.name, event.data,
            job_timeout=EVENT_JOB_TIMEOUT,
            retry=self._retry(),
        )
        logger.debug("Enqueued %s %s", event.name, event.data)

    def send_many(self, events: List[Event]) -> None:
        if not events:
            return
        from rq import Queue
        jobs = [
            Queue.prepare_data(
                HANDLER_PATH,
                args=(event.name, event.data),
                timeout=EVENT_JOB_TIMEOUT,
                retry=self._retry(),
            )
            for event in events
        ]
        self.queue.enqueue_many(jobs)
        logger.debug("Enqueued %d events", len(jobs))


def send_in_batches(dispatcher: Dispatcher, events: Iterable[Event],
                    batch_size: int = EVENT_BATCH_SIZE) -> int:
    """
    Send events in chunks of batch_size to bound burst size.

    Returns the number of events sent.
    """
    events = list(events)
    for start in range(0, len(events), batch_size):
        batch = events[start:start + batch_size]
        dispatcher.send_many(batch)
        if len(events) > 50:
            logger.info("Queued %d/%d events", start + len(batch), len(events))
    return len(events)
