"""
Shared route helpers — caller identity and error → HTTP status mapping.
"""
from flask import request, jsonify, abort

from leadflow.pipeline.base import (
    PolicyError, RunNotFoundError, LeadNotFoundError, OwnershipError, ProviderError,
)
from leadflow.services.circuit_breaker import CircuitOpenError

USER_HEADER = 'X-User-Id'

_STATUS_BY_ERROR = [
    (PolicyError, 400),
    (OwnershipError, 403),
    (RunNotFoundError, 404),
    (LeadNotFoundError, 404),
    (ProviderError, 502),
    (CircuitOpenError, 503),
]


def current_user_id():
    """Caller identity set by the auth proxy in front of the API."""
    user_id = request.headers.get(USER_HEADER, '').strip()
    if not user_id:
        response = jsonify({'error': 'Unauthorized'})
        response.status_code = 401
        abort(response)
    return user_id


def register_error_handlers(bp):
    for error_cls, status in _STATUS_BY_ERROR:
        def _handler(e, status=status):
            return jsonify({'error': str(e)}), status
        bp.register_error_handler(error_cls, _handler)
