"""
Workflow error taxonomy and the unified API exception handler.

Every API error is rendered as ``{'ok': False, 'error': {'code', 'message'}}``.
"""
from __future__ import annotations

import logging

from rest_framework.views import exception_handler as drf_exception_handler
from rest_framework.response import Response

logger = logging.getLogger(__name__)


class WorkflowError(Exception):
    """Base class for approval workflow failures."""
    code = 'workflow_error'
    status_code = 500

    def __init__(self, message: str = '', **context):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context


class TransitionRejected(WorkflowError):
    """A state transition was refused; never retried."""
    code = 'transition_rejected'
    status_code = 400


class Unauthorized(TransitionRejected):
    code = 'unauthorized'
    status_code = 403


class AlreadyDecided(TransitionRejected):
    """The entity already left the state the transition starts from."""
    code = 'already_decided'
    status_code = 409


class NotFound(TransitionRejected):
    code = 'not_found'
    status_code = 404


class IllegalTransition(TransitionRejected):
    code = 'illegal_transition'
    status_code = 400


class ScheduleConflict(TransitionRejected):
    """The requested slot overlaps another booking of the same person."""
    code = 'schedule_conflict'
    status_code = 409


class StoreUnavailable(WorkflowError):
    """Transient storage or network failure."""
    code = 'store_unavailable'
    status_code = 503


class FanoutFailed(WorkflowError):
    """Notification rows could not be written; the state change stands."""
    code = 'fanout_failed'
    status_code = 500


def api_exception_handler(exc, context):
    if isinstance(exc, WorkflowError):
        if exc.status_code >= 500:
            logger.warning("Workflow error %s: %s", exc.code, exc.message)
        return Response({'ok': False, 'error': {'code': exc.code, 'message': exc.message}}, status=exc.status_code)
    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception("Unhandled API error", exc_info=exc)
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': str(exc)}}, status=500)
    # normalize response
    detail = None
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = str(resp.data)
    return Response({'ok': False, 'error': {'code': 'api_error', 'message': detail}}, status=resp.status_code)
