import pytest

from logbook.models import Role

from conftest import ADMIN_ID, OTHER_ID, PILOT_ID


@pytest.fixture
def people(services):
    admin, _ = services.roles.ensure_user(ADMIN_ID)
    pilot, _ = services.roles.ensure_user(PILOT_ID)
    other, _ = services.roles.ensure_user(OTHER_ID)
    return {'admin': admin, 'pilot': pilot, 'other': other}


def test_system_stats(rpc, people, make_aircraft, make_flight):
    aircraft = make_aircraft()
    make_flight(aircraft['id'])
    make_aircraft(user=OTHER_ID)

    stats = rpc.data(rpc.query('admin.getStats', user=ADMIN_ID))
    assert stats == {'totalUsers': 3, 'totalFlights': 1, 'totalAircraft': 2}


def test_recent_users_capped_at_five(rpc, people, provider, services):
    for i in range(4):
        provider.add(f'user_extra_{i}', email=f'extra{i}@example.com')
        services.roles.ensure_user(f'user_extra_{i}')

    rows = rpc.data(rpc.query('admin.recentUsers', user=ADMIN_ID))
    assert len(rows) == 5
    assert rows[0]['externalId'] == 'user_extra_3'


def test_get_all_users_paginates(rpc, people):
    page = rpc.data(rpc.query('admin.getAllUsers', {'skip': 1, 'take': 1}, user=ADMIN_ID))
    assert page['total'] == 3
    assert len(page['users']) == 1

    resp = rpc.query('admin.getAllUsers', {'take': 101}, user=ADMIN_ID)
    assert resp.status_code == 400


def test_verify_pilot_round_trip(rpc, people):
    target = people['pilot'].id

    verified = rpc.data(rpc.mutate('admin.verifyPilot', {'userId': target, 'verified': True}, user=ADMIN_ID))
    assert verified['role'] == 'PILOT'

    logs = rpc.data(rpc.query('admin.getAuditLogs', {'action': 'VERIFY'}, user=ADMIN_ID))
    assert logs['total'] == 1
    [entry] = logs['logs']
    assert entry['entityId'] == target
    assert entry['userId'] == people['admin'].id
    assert entry['oldValues'] == {'role': 'USER'}
    assert entry['newValues'] == {'role': 'PILOT'}

    reverted = rpc.data(rpc.mutate('admin.verifyPilot', {'userId': target, 'verified': False}, user=ADMIN_ID))
    assert reverted['role'] == 'USER'


def test_verify_pilot_unknown_user(rpc, people):
    resp = rpc.mutate('admin.verifyPilot', {'userId': 'missing', 'verified': True}, user=ADMIN_ID)
    assert resp.status_code == 404


def test_verify_pilot_requires_boolean(rpc, people):
    resp = rpc.mutate('admin.verifyPilot', {'userId': people['pilot'].id, 'verified': 'yes'}, user=ADMIN_ID)
    assert resp.status_code == 400


def test_update_user_role_pushes_to_provider(rpc, people, provider, services):
    updated = rpc.data(rpc.mutate(
        'admin.updateUserRole', {'userId': people['other'].id, 'role': 'ADMIN'}, user=ADMIN_ID,
    ))
    assert updated['role'] == 'ADMIN'
    assert (OTHER_ID, {'role': 'ADMIN'}) in provider.metadata_updates
    assert services.roles.find_by_external_id(OTHER_ID).role is Role.ADMIN


def test_non_admin_cannot_change_roles(rpc, people):
    resp = rpc.mutate('admin.updateUserRole', {'userId': people['pilot'].id, 'role': 'ADMIN'}, user=PILOT_ID)
    assert resp.status_code == 403


def test_delete_user(rpc, people, services):
    snapshot = rpc.data(rpc.mutate('admin.deleteUser', {'userId': people['other'].id}, user=ADMIN_ID))
    assert snapshot['email'] == 'other@example.com'
    assert services.roles.find_by_external_id(OTHER_ID) is None

    history = rpc.data(rpc.query(
        'admin.getEntityHistory', {'entityType': 'User', 'entityId': people['other'].id}, user=ADMIN_ID,
    ))
    assert history[0]['action'] == 'DELETE'
    assert history[0]['oldValues']['externalId'] == OTHER_ID


def test_admin_cannot_delete_self(rpc, people, services):
    resp = rpc.mutate('admin.deleteUser', {'userId': people['admin'].id}, user=ADMIN_ID)
    assert resp.status_code == 403
    assert services.roles.find_by_external_id(ADMIN_ID) is not None


def test_delete_unknown_user(rpc, people):
    assert rpc.mutate('admin.deleteUser', {'userId': 'missing'}, user=ADMIN_ID).status_code == 404


def test_audit_log_query_is_capped(rpc, people, services):
    for _ in range(3):
        rpc.data(rpc.mutate('admin.verifyPilot', {'userId': people['pilot'].id, 'verified': True}, user=ADMIN_ID))

    logs = rpc.data(rpc.query('admin.getAuditLogs', {'limit': 100000}, user=ADMIN_ID))
    assert logs['total'] == 3
    assert len(logs['logs']) == 3

    page = rpc.data(rpc.query('admin.getAuditLogs', {'limit': 1, 'skip': 1}, user=ADMIN_ID))
    assert len(page['logs']) == 1


def test_user_activity(rpc, people):
    rpc.data(rpc.mutate('admin.updateUserRole', {'userId': people['pilot'].id, 'role': 'PILOT'}, user=ADMIN_ID))
    activity = rpc.data(rpc.query('admin.getUserActivity', {'userId': people['admin'].id}, user=ADMIN_ID))
    assert [a['action'] for a in activity] == ['ROLE_CHANGE']


def test_suspicious_activity(rpc, people, client):
    client.post('/api/feedback', json={'feedback': '<script>alert(1)</script> nice app'})
    rows = rpc.data(rpc.query('admin.getSuspiciousActivity', user=ADMIN_ID))
    assert rows[0]['reason'] == 'malformed'
    assert rows[0]['endpoint'] == '/api/feedback'
