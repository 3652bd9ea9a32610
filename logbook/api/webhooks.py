"""
Identity-provider webhook receiver.

POST /api/webhooks/clerk

- user.created / user.updated: inbound sync, then push the local role back
- user.deleted: remove the local user (absent is fine)
- anything else: acknowledged and ignored

Deliveries are verified before the payload is trusted, and each delivery
id is processed at most once.
"""

import logging

from flask import Blueprint, request
from sqlalchemy.exc import IntegrityError

from logbook.models import WebhookEvent
from logbook.services.container import get_services
from logbook.services.identity_provider import IdentityProfile
from logbook.services.webhook import WebhookVerificationError

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/api/webhooks')

SYNC_EVENTS = ('user.created', 'user.updated')
DELETE_EVENT = 'user.deleted'


def _already_processed(services, delivery_id: str) -> bool:
    with services.db.session() as session:
        return session.get(WebhookEvent, delivery_id) is not None


def _mark_processed(services, delivery_id: str, event_type: str, subject_id: str) -> bool:
    """Record the delivery. False if a concurrent delivery got there first."""
    try:
        with services.db.session() as session:
            session.add(WebhookEvent(
                delivery_id=delivery_id,
                event_type=event_type,
                subject_id=subject_id,
            ))
        return True
    except IntegrityError:
        return False


@webhooks_bp.route('/clerk', methods=['POST'])
def clerk_webhook():
    services = get_services()

    verifier = services.webhook_verifier
    if verifier is None:
        logger.error('CLERK_WEBHOOK_SECRET is not configured')
        return 'Webhook secret not configured', 500

    body = request.get_data(as_text=True)
    try:
        event = verifier.verify(body, request.headers)
    except WebhookVerificationError as e:
        logger.warning(f'Rejected webhook delivery: {e}')
        return f'Error verifying webhook: {e}', 400

    delivery_id = request.headers['svix-id']
    event_type = event.get('type', '')
    data = event.get('data') or {}
    subject_id = data.get('id') or ''

    if _already_processed(services, delivery_id):
        logger.info(f'Duplicate webhook delivery {delivery_id} ({event_type}), skipping')
        return 'Webhook already processed', 200

    if event_type in SYNC_EVENTS:
        profile = IdentityProfile.from_payload(data)
        if profile is None:
            return 'Error: event has no user id', 400
        user = services.roles.sync_inbound(profile)
        services.roles.push_role(user)
    elif event_type == DELETE_EVENT:
        if subject_id:
            services.roles.delete_by_external_id(subject_id)
    else:
        logger.debug(f'Ignoring webhook event {event_type}')

    if not _mark_processed(services, delivery_id, event_type, subject_id):
        logger.info(f'Webhook delivery {delivery_id} recorded concurrently')

    logger.info(f'Processed webhook {delivery_id} ({event_type}) for {subject_id}')
    return 'Webhook processed', 200
