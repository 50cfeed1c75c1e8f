"""
Process-wide clients: Redis (breaker state), Redis (RQ), OpenAI.

Nothing here opens a connection at import time, so tests can import freely
without Redis running or API keys set.
"""
import logging

import redis
from openai import OpenAI

from leadflow.config import REDIS_URL, OPENAI_API_KEY

logger = logging.getLogger('leadflow.extensions')


def _build_openai_client():
    if not OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set; AI prescreen and research will fail")
        return None
    # RQ owns retries; the SDK's own backoff would hold the job open
    return OpenAI(api_key=OPENAI_API_KEY, max_retries=0, timeout=90)


# ── Redis ─────────────────────────────────────────────────────────────────────
redis_client = redis.from_url(REDIS_URL, decode_responses=True)

# RQ pickles job payloads, so its connection must return bytes
rq_connection = redis.from_url(REDIS_URL)

# ── OpenAI ────────────────────────────────────────────────────────────────────
openai_client = _build_openai_client()
