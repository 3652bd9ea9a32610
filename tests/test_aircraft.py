from logbook.models import AuditAction

from conftest import OTHER_ID, PILOT_ID


def test_create_normalizes_and_audits(rpc, services, make_aircraft):
    aircraft = make_aircraft(registration='n172sp', imageUrl='https://example.com/172.jpg')
    assert aircraft['registration'] == 'N172SP'
    assert aircraft['status'] == 'operational'
    assert aircraft['isArchived'] is False

    [entry] = services.audit.for_entity('Aircraft', aircraft['id'])
    assert entry.action is AuditAction.CREATE
    assert entry.new_values['registration'] == 'N172SP'


def test_get_all_hides_archived_by_default(rpc, make_aircraft):
    kept = make_aircraft(registration='N1')
    archived = make_aircraft(registration='N2')
    rpc.data(rpc.mutate('aircraft.delete', {'id': archived['id']}, user=PILOT_ID))

    active = rpc.data(rpc.query('aircraft.getAll', user=PILOT_ID))
    assert [a['id'] for a in active] == [kept['id']]

    everything = rpc.data(rpc.query('aircraft.getAll', {'includeArchived': True}, user=PILOT_ID))
    assert {a['id'] for a in everything} == {kept['id'], archived['id']}


def test_get_all_is_owner_scoped(rpc, make_aircraft):
    make_aircraft()
    make_aircraft(user=OTHER_ID, registration='G-ABCD')
    mine = rpc.data(rpc.query('aircraft.getAll', user=PILOT_ID))
    assert [a['registration'] for a in mine] == ['N12345']


def test_get_by_id(rpc, make_aircraft):
    aircraft = make_aircraft()
    assert rpc.data(rpc.query('aircraft.getById', {'id': aircraft['id']}, user=PILOT_ID))['id'] == aircraft['id']
    assert rpc.data(rpc.query('aircraft.getById', {'id': aircraft['id']}, user=OTHER_ID)) is None
    assert rpc.data(rpc.query('aircraft.getById', {'id': 'missing'}, user=PILOT_ID)) is None


def test_update(rpc, services, make_aircraft):
    aircraft = make_aircraft()
    updated = rpc.data(rpc.mutate(
        'aircraft.update', {'id': aircraft['id'], 'status': 'maintenance', 'make': None}, user=PILOT_ID,
    ))
    assert updated['status'] == 'maintenance'
    assert updated['make'] == 'Cessna'

    entry = services.audit.for_entity('Aircraft', aircraft['id'])[0]
    assert entry.action is AuditAction.UPDATE
    assert entry.old_values['status'] == 'operational'
    assert entry.new_values['status'] == 'maintenance'


def test_update_without_changes_returns_row(rpc, make_aircraft):
    aircraft = make_aircraft()
    same = rpc.data(rpc.mutate('aircraft.update', {'id': aircraft['id']}, user=PILOT_ID))
    assert same['registration'] == aircraft['registration']


def test_archive_and_restore(rpc, services, make_aircraft):
    aircraft = make_aircraft()
    archived = rpc.data(rpc.mutate('aircraft.delete', {'id': aircraft['id']}, user=PILOT_ID))
    assert archived['isArchived'] is True

    restored = rpc.data(rpc.mutate('aircraft.restore', {'id': aircraft['id']}, user=PILOT_ID))
    assert restored['isArchived'] is False

    actions = [e.action for e in services.audit.for_entity('Aircraft', aircraft['id'])]
    assert AuditAction.DELETE in actions and AuditAction.RESTORE in actions


def test_other_users_cannot_touch_aircraft(rpc, make_aircraft):
    aircraft = make_aircraft()
    payloads = [
        ('aircraft.update', {'id': aircraft['id'], 'status': 'stolen'}),
        ('aircraft.delete', {'id': aircraft['id']}),
        ('aircraft.restore', {'id': aircraft['id']}),
        ('aircraft.deletePermanent', {'id': aircraft['id']}),
    ]
    for path, payload in payloads:
        resp = rpc.mutate(path, payload, user=OTHER_ID)
        assert resp.status_code == 404, path
        assert rpc.error(resp)['code'] == 'NOT_FOUND'

    missing = rpc.mutate('aircraft.update', {'id': 'missing', 'status': 'x'}, user=PILOT_ID)
    assert rpc.error(missing) == rpc.error(rpc.mutate('aircraft.update', {'id': aircraft['id'], 'status': 'x'}, user=OTHER_ID))

    still = rpc.data(rpc.query('aircraft.getById', {'id': aircraft['id']}, user=PILOT_ID))
    assert still['status'] == 'operational'
    assert still['isArchived'] is False


def test_archive_then_permanent_delete(rpc, make_aircraft):
    aircraft = make_aircraft()
    rpc.data(rpc.mutate('aircraft.delete', {'id': aircraft['id']}, user=PILOT_ID))
    result = rpc.data(rpc.mutate('aircraft.deletePermanent', {'id': aircraft['id']}, user=PILOT_ID))
    assert result == {'success': True, 'id': aircraft['id']}
    assert rpc.data(rpc.query('aircraft.getById', {'id': aircraft['id']}, user=PILOT_ID)) is None


def test_permanent_delete_blocked_by_flights(rpc, make_aircraft, make_flight):
    aircraft = make_aircraft()
    make_flight(aircraft['id'])

    resp = rpc.mutate('aircraft.deletePermanent', {'id': aircraft['id']}, user=PILOT_ID)
    assert resp.status_code == 409
    error = rpc.error(resp)
    assert error['code'] == 'CONFLICT'
    assert error['data']['flightCount'] == 1

    still = rpc.data(rpc.query('aircraft.getById', {'id': aircraft['id']}, user=PILOT_ID))
    assert still['isArchived'] is False
