"""
Plain HTTP endpoints that sit in front of the procedure layer.

Provides endpoints for:
- POST /api/feedback          public feedback form
- POST /api/admin/set-role    role change for scripts and the admin console

Both enforce, in order: body size ceiling (413), rate limit (429 with
Retry-After), then their own checks, then the operation.
"""

import logging
from typing import Optional

from flask import Blueprint, jsonify, request
from markupsafe import Markup, escape

from logbook.authz import RequestInfo, external_id_from_request
from logbook.errors import (
    LogbookError,
    NotFoundError,
    PayloadTooLargeError,
    PermissionDeniedError,
    RateLimitedError,
    UnauthenticatedError,
    ValidationFailed,
)
from logbook.models import Role
from logbook.schemas import FeedbackSubmission, SetRoleRequest, parse
from logbook.services.container import AppServices, get_services
from logbook.services.rate_limit import get_rate_limit_key

logger = logging.getLogger(__name__)

endpoints_bp = Blueprint('endpoints', __name__, url_prefix='/api')

FEEDBACK_ENDPOINT = '/api/feedback'


def http_error(err: LogbookError):
    body = {'success': False, 'error': err.message, 'code': err.code.value}
    if err.details:
        body['details'] = err.details
    response = jsonify(body)
    response.status_code = err.http_status
    if isinstance(err, RateLimitedError):
        response.headers['Retry-After'] = str(err.retry_after)
    return response


def caller_key() -> str:
    return get_rate_limit_key(
        request.headers.get('X-Forwarded-For'),
        request.remote_addr,
        request.headers.get('User-Agent'),
    )


def enforce_limits(
    services: AppServices,
    bucket: str,
    max_body_bytes: int,
    max_requests: int,
    window_ms: int,
) -> str:
    """
    Body ceiling then fixed-window limit. Returns the caller key.

    Raises:
        PayloadTooLargeError, RateLimitedError
    """
    declared = request.content_length or 0
    if declared > max_body_bytes or len(request.get_data()) > max_body_bytes:
        raise PayloadTooLargeError(f'Request body too large (max {max_body_bytes // 1024}KB)')

    key = caller_key()
    limiter = services.rate_limiter
    result = limiter.check(f'{bucket}:{key}', max_requests, window_ms)
    if not result.allowed:
        raise RateLimitedError(result.retry_after(limiter.now_ms()))
    return key


def read_json() -> Optional[dict]:
    payload = request.get_json(silent=True)
    if payload is None and request.get_data():
        raise ValidationFailed(form_errors=['Request body is not valid JSON'])
    return payload


def sanitize_text(text: str) -> str:
    """Drop markup, then escape whatever is left for HTML embedding."""
    return str(escape(Markup(text).striptags()))


@endpoints_bp.route('/feedback', methods=['POST'])
def submit_feedback():
    """
    Accept a feedback message.

    Suspicious content is logged by the payload monitor but does not by
    itself reject the submission.
    """
    services = get_services()
    limits = services.config.rate_limit
    try:
        key = enforce_limits(
            services, 'feedback',
            limits.feedback_max_body_bytes,
            limits.feedback_max_requests,
            limits.feedback_window_ms,
        )
        payload = read_json()

        raw = payload.get('feedback') if isinstance(payload, dict) else None
        if isinstance(raw, str):
            services.monitor.analyze(raw, key, FEEDBACK_ENDPOINT)

        submission = parse(FeedbackSubmission, payload)
    except LogbookError as e:
        return http_error(e)

    feedback = sanitize_text(submission.feedback)
    email = sanitize_text(submission.email) if submission.email else 'N/A'
    logger.info(f'Feedback received from {key} ({len(feedback)} chars, reply-to {email})')

    return jsonify({'success': True})


@endpoints_bp.route('/admin/set-role', methods=['POST'])
def set_role():
    """
    Change a user's role.

    Body: {"userId": "<internal or identity-provider id>", "role": "ADMIN" | "PILOT" | "USER"}
    """
    services = get_services()
    limits = services.config.rate_limit
    try:
        enforce_limits(
            services, 'set-role',
            limits.set_role_max_body_bytes,
            limits.set_role_max_requests,
            limits.set_role_window_ms,
        )

        external_id = external_id_from_request(services, request)
        if not external_id:
            raise UnauthenticatedError('Unauthorized')

        data = parse(SetRoleRequest, read_json())

        requester = services.roles.find_by_external_id(external_id)
        if requester is None or requester.role != Role.ADMIN:
            raise PermissionDeniedError('Forbidden: Admin access required')

        target = services.roles.resolve_target(data.user_id)
        if target is None:
            raise NotFoundError('User not found')

        info = RequestInfo.from_request(request)
        user = services.roles.change_role(
            actor_id=requester.id,
            target_id=target.id,
            role=data.role,
            ip_address=info.ip_address,
            user_agent=info.user_agent,
        )
    except LogbookError as e:
        return http_error(e)

    return jsonify({
        'success': True,
        'message': f'User {data.user_id} role updated to {data.role.value}',
        'result': user.to_dict(),
    })
