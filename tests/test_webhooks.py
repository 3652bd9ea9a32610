import base64
import json

import pytest
from sqlalchemy import func, select

from logbook.models import Flight, Role, WebhookEvent
from logbook.services.webhook import WebhookVerificationError, WebhookVerifier

from conftest import ADMIN_ID, PILOT_ID, WEBHOOK_SECRET, FakeClock


def user_event(event_type, external_id, email='new@example.com', role=None):
    data = {
        'id': external_id,
        'email_addresses': [
            {'id': 'idn_2', 'email_address': 'secondary@example.com'},
            {'id': 'idn_1', 'email_address': email},
        ],
        'primary_email_address_id': 'idn_1',
        'first_name': 'New',
        'last_name': 'Pilot',
        'public_metadata': {'role': role} if role else {},
        'private_metadata': {},
    }
    return json.dumps({'type': event_type, 'data': data})


def signed(verifier, body, msg_id='msg_1', timestamp=None):
    ts = str(int(timestamp if timestamp is not None else verifier._clock()))
    return {
        'svix-id': msg_id,
        'svix-timestamp': ts,
        'svix-signature': f'v1,{verifier.sign(msg_id, ts, body)}',
    }


# ---------------------------------------------------------------------------
# Verifier
# ---------------------------------------------------------------------------

@pytest.fixture
def verifier():
    return WebhookVerifier(WEBHOOK_SECRET, tolerance_seconds=300, clock=FakeClock(start=1_700_000_000))


def test_valid_signature_returns_payload(verifier):
    body = user_event('user.created', 'user_x')
    payload = verifier.verify(body, signed(verifier, body))
    assert payload['type'] == 'user.created'
    assert payload['data']['id'] == 'user_x'


def test_any_matching_signature_is_enough(verifier):
    body = '{"type": "user.updated", "data": {}}'
    headers = signed(verifier, body)
    headers['svix-signature'] = 'v1,AAAA ' + headers['svix-signature']
    assert verifier.verify(body, headers)['type'] == 'user.updated'


def test_tampered_body_rejected(verifier):
    body = user_event('user.created', 'user_x')
    headers = signed(verifier, body)
    with pytest.raises(WebhookVerificationError, match='No matching signature'):
        verifier.verify(body.replace('user_x', 'user_y'), headers)


def test_stale_timestamp_rejected(verifier):
    body = '{}'
    headers = signed(verifier, body, timestamp=1_700_000_000 - 301)
    with pytest.raises(WebhookVerificationError, match='tolerance'):
        verifier.verify(body, headers)


def test_missing_headers_rejected(verifier):
    with pytest.raises(WebhookVerificationError, match='Missing'):
        verifier.verify('{}', {'svix-id': 'msg_1'})


def test_non_json_body_rejected(verifier):
    body = 'not json'
    with pytest.raises(WebhookVerificationError, match='JSON'):
        verifier.verify(body, signed(verifier, body))


def test_secret_prefix_is_optional():
    raw = base64.b64encode(b'key').decode('ascii')
    assert WebhookVerifier(raw).sign('m', '1', 'b') == WebhookVerifier('whsec_' + raw).sign('m', '1', 'b')


def test_bad_secrets():
    with pytest.raises(ValueError):
        WebhookVerifier('')
    with pytest.raises(ValueError):
        WebhookVerifier('whsec_abc')


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------

def deliver(client, services, body, msg_id='msg_1'):
    return client.post(
        '/api/webhooks/clerk',
        data=body,
        content_type='application/json',
        headers=signed(services.webhook_verifier, body, msg_id=msg_id),
    )


def test_user_created_provisions_and_pushes_role(client, services, provider):
    resp = deliver(client, services, user_event('user.created', 'user_new', role='PILOT'))
    assert resp.status_code == 200

    user = services.roles.find_by_external_id('user_new')
    assert user.role is Role.PILOT
    assert user.email == 'new@example.com'
    assert ('user_new', {'role': 'PILOT'}) in provider.metadata_updates


def test_duplicate_delivery_is_not_reprocessed(client, services):
    body = user_event('user.created', 'user_new')
    deliver(client, services, body, msg_id='msg_dup')

    with services.db.session() as session:
        assert session.get(WebhookEvent, 'msg_dup').event_type == 'user.created'

    resp = deliver(client, services, body, msg_id='msg_dup')
    assert resp.status_code == 200
    assert resp.get_data(as_text=True) == 'Webhook already processed'


def test_admin_role_survives_inbound_update(client, services, provider):
    services.roles.ensure_user(ADMIN_ID)
    provider.metadata_updates.clear()

    resp = deliver(client, services, user_event('user.updated', ADMIN_ID, email='renamed@example.com', role='USER'))

    assert resp.status_code == 200
    user = services.roles.find_by_external_id(ADMIN_ID)
    assert user.role is Role.ADMIN
    assert user.email == 'renamed@example.com'
    assert provider.metadata_updates == [(ADMIN_ID, {'role': 'ADMIN'})]


def test_user_deleted_removes_local_data(client, services, make_aircraft, make_flight):
    aircraft = make_aircraft()
    make_flight(aircraft['id'])

    resp = deliver(client, services, json.dumps({'type': 'user.deleted', 'data': {'id': PILOT_ID}}))
    assert resp.status_code == 200
    assert services.roles.find_by_external_id(PILOT_ID) is None
    with services.db.session() as session:
        assert session.scalar(select(func.count()).select_from(Flight)) == 0

    again = deliver(client, services, json.dumps({'type': 'user.deleted', 'data': {'id': PILOT_ID}}), msg_id='msg_2')
    assert again.status_code == 200


def test_unknown_event_acknowledged(client, services):
    resp = deliver(client, services, json.dumps({'type': 'session.created', 'data': {'id': 'sess_1'}}))
    assert resp.status_code == 200


def test_bad_signature_rejected(client, services):
    body = user_event('user.created', 'user_new')
    headers = signed(services.webhook_verifier, body)
    headers['svix-signature'] = 'v1,' + base64.b64encode(b'forged').decode('ascii')
    resp = client.post('/api/webhooks/clerk', data=body, headers=headers)
    assert resp.status_code == 400
    assert services.roles.find_by_external_id('user_new') is None


def test_missing_svix_headers_rejected(client):
    resp = client.post('/api/webhooks/clerk', data='{}')
    assert resp.status_code == 400


def test_missing_secret_is_server_error(client, services):
    services.webhook_verifier = None
    resp = client.post('/api/webhooks/clerk', data='{}')
    assert resp.status_code == 500
