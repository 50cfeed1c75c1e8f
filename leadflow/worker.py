"""
RQ worker entry point — consumes workflow events from the leadflow queue.

Retries are scheduled jobs, so the worker runs with the RQ scheduler on.
"""
import logging
import os

from rq import Queue, Worker

from leadflow.config import RQ_QUEUE_NAME
from leadflow.extensions import rq_connection
from leadflow.logging_config import configure_logging

logger = logging.getLogger('leadflow.worker')


def run():
    configure_logging()

    if os.getenv('INIT_DB'):
        from leadflow.database import init_db
        init_db()
        logger.info("Database tables created")

    queue = Queue(RQ_QUEUE_NAME, connection=rq_connection)
    logger.info("Starting worker on queue '%s'", RQ_QUEUE_NAME)
    Worker([queue], connection=rq_connection).work(with_scheduler=True)


if __name__ == '__main__':
    run()
