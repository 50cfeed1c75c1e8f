"""
Per-provider circuit breakers backed by Redis.

Each breaker keeps one Redis hash `cb:<provider>` with its state, consecutive
failure count, last failure time and lifetime success/failure totals, so all
workers share one view of a provider's health.

  closed    → calls pass through
  open      → calls fail fast with CircuitOpenError until reset_timeout passes
  half_open → trial calls reach the provider; a success closes, a failure re-opens

CircuitOpenError is not a ProviderError: the lead is left untouched and the
event handler raises, so the dispatcher retries later.
"""
import logging
import time
from functools import wraps

logger = logging.getLogger('services.circuit_breaker')

CLOSED = 'closed'
OPEN = 'open'
HALF_OPEN = 'half_open'


class CircuitOpenError(Exception):
    """Raised when calling through an open circuit breaker."""
    def __init__(self, name, retry_after=None):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{name}' is open; provider unavailable")


class CircuitBreaker:
    """
    Usage:
        cb = CircuitBreaker('hunter', redis_client, failure_threshold=3, reset_timeout=300)
        data = cb.call(requests.get, url, params=params, timeout=30)
    """

    PREFIX = 'cb'

    def __init__(self, name, redis_client, failure_threshold=3, reset_timeout=300):
        self.name = name
        self.redis = redis_client
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout

    @property
    def key(self):
        return f'{self.PREFIX}:{self.name}'

    def _read(self):
        # Redis being down must never take providers down with it
        try:
            return self.redis.hgetall(self.key) or {}
        except Exception:
            return {}

    def _write(self, **fields):
        try:
            self.redis.hset(self.key, mapping={k: str(v) for k, v in fields.items()})
        except Exception:
            logger.debug("Could not persist breaker '%s' state", self.name, exc_info=True)

    def _bump(self, field):
        try:
            return int(self.redis.hincrby(self.key, field, 1))
        except Exception:
            return 0

    @property
    def state(self):
        data = self._read()
        current = data.get('state', CLOSED)
        if current == OPEN and self._seconds_since_failure(data) > self.reset_timeout:
            self._write(state=HALF_OPEN)
            return HALF_OPEN
        return current

    @staticmethod
    def _seconds_since_failure(data):
        last = data.get('last_failure')
        return time.time() - float(last) if last else float('inf')

    @property
    def failure_count(self):
        return int(self._read().get('failures', 0))

    def call(self, func, *args, **kwargs):
        """Execute func through the breaker."""
        if self.state == OPEN:
            elapsed = self._seconds_since_failure(self._read())
            raise CircuitOpenError(self.name, retry_after=max(0, self.reset_timeout - elapsed))

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def _on_success(self):
        self._write(state=CLOSED, failures=0)
        self._bump('total_success')

    def _on_failure(self, error):
        count = self._bump('failures')
        self._bump('total_failure')
        fields = {'last_failure': time.time(), 'last_error': str(error)[:200]}
        if count >= self.failure_threshold:
            fields['state'] = OPEN
            logger.warning(
                "Circuit '%s' opened after %d failures (threshold=%d): %s",
                self.name, count, self.failure_threshold, error,
            )
        else:
            logger.info("Circuit '%s' failure %d/%d: %s", self.name, count, self.failure_threshold, error)
        self._write(**fields)

    def reset(self):
        """Manually close the breaker."""
        try:
            self.redis.delete(self.key)
            logger.info("Circuit '%s' manually reset", self.name)
        except Exception as e:
            logger.error("Failed to reset circuit '%s': %s", self.name, e)

    def get_health(self):
        data = self._read()
        return {
            'name': self.name,
            'state': self.state,
            'failure_count': int(data.get('failures', 0)),
            'failure_threshold': self.failure_threshold,
            'total_success': int(data.get('total_success', 0)),
            'total_failure': int(data.get('total_failure', 0)),
            'last_error': data.get('last_error', ''),
        }

    def protect(self, func):
        """Decorator form of call()."""
        @wraps(func)
        def wrapper(*args, **kwargs):
            return self.call(func, *args, **kwargs)
        return wrapper


# ── Registry ──────────────────────────────────────────────────────────────

# name → (failure_threshold, reset_timeout seconds)
PROVIDER_LIMITS = {
    'scrapingdog': (3, 300),
    'openai': (5, 60),
    'hunter': (3, 180),
    'tomba': (3, 180),
    'sendgrid': (3, 300),
}

_registry = {}


def get_breaker(name, redis_client=None):
    """Get or create the named breaker (one per provider per process)."""
    if name not in _registry:
        if redis_client is None:
            from leadflow.extensions import redis_client
        threshold, timeout = PROVIDER_LIMITS.get(name, (3, 300))
        _registry[name] = CircuitBreaker(name, redis_client, failure_threshold=threshold, reset_timeout=timeout)
    return _registry[name]


def all_health():
    return [get_breaker(name).get_health() for name in PROVIDER_LIMITS]
