import pytest
from sqlalchemy import event, select

from logbook.config import AdminConfig
from logbook.errors import InternalError, NotFoundError, UnauthenticatedError
from logbook.models import AuditAction, AuditLog, Role, UserPreferences
from logbook.roles import derive_role, is_admin_by_env
from logbook.services.identity_provider import IdentityProfile, IdentityProviderError

from conftest import ADMIN_ID, OTHER_ID, PILOT_ID

ADMINS = AdminConfig(external_ids=('user_boss',), emails=('Chief@Example.com',))


# ---------------------------------------------------------------------------
# Role derivation
# ---------------------------------------------------------------------------

def test_metadata_role_wins():
    profile = IdentityProfile('user_boss', public_metadata={'role': 'PILOT'})
    assert derive_role(profile, ADMINS) is Role.PILOT


def test_private_metadata_beats_public():
    profile = IdentityProfile(
        'u1', public_metadata={'role': 'USER'}, private_metadata={'role': 'ADMIN'},
    )
    assert derive_role(profile, ADMINS) is Role.ADMIN


def test_invalid_metadata_role_falls_through_to_allow_list():
    profile = IdentityProfile('user_boss', public_metadata={'role': 'SUPERUSER'})
    assert derive_role(profile, ADMINS) is Role.ADMIN


def test_email_allow_list_is_case_insensitive():
    assert is_admin_by_env('u1', 'chief@example.COM', ADMINS)
    assert derive_role(IdentityProfile('u1', email='chief@example.com'), ADMINS) is Role.ADMIN


def test_default_role_is_user():
    assert derive_role(IdentityProfile('u1', email='someone@example.com'), ADMINS) is Role.USER
    assert not is_admin_by_env(None, None, ADMINS)


def test_profile_from_payload_picks_primary_email():
    profile = IdentityProfile.from_payload({
        'id': 'user_1',
        'email_addresses': [
            {'id': 'a', 'email_address': 'old@example.com'},
            {'id': 'b', 'email_address': 'primary@example.com'},
        ],
        'primary_email_address_id': 'b',
        'first_name': '',
        'public_metadata': None,
    })
    assert profile.email == 'primary@example.com'
    assert profile.first_name is None
    assert profile.public_metadata == {}
    assert IdentityProfile.from_payload({'email_addresses': []}) is None


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------

def test_ensure_user_provisions_once(services, provider):
    user, created = services.roles.ensure_user(PILOT_ID)
    assert created is True
    assert user.role is Role.USER
    assert user.email == 'pilot@example.com'

    again, created = services.roles.ensure_user(PILOT_ID)
    assert created is False
    assert again.id == user.id
    assert provider.get_calls == 1

    with services.db.session() as session:
        prefs = session.scalars(
            select(UserPreferences).where(UserPreferences.user_id == user.id)
        ).first()
        assert prefs.favorite_airport == 'KJFK'


def test_allow_listed_account_provisioned_as_admin(services):
    user, _ = services.roles.ensure_user(ADMIN_ID)
    assert user.role is Role.ADMIN


def test_unknown_account_is_unauthenticated(services):
    with pytest.raises(UnauthenticatedError):
        services.roles.ensure_user('user_ghost')


def test_provider_timeout_is_retryable(services, provider):
    provider.get_error = IdentityProviderError('timed out', retryable=True)
    with pytest.raises(InternalError) as exc:
        services.roles.ensure_user(PILOT_ID)
    assert exc.value.retryable is True
    assert exc.value.http_status == 503


def test_insert_race_uses_existing_row(services, provider):
    profile = provider.profiles[PILOT_ID]
    first, created = services.roles._insert(profile)
    second, created_again = services.roles._insert(profile)
    assert created is True
    assert created_again is False
    assert second.id == first.id


def test_inbound_sync_creates_then_updates_profile(services):
    profile = IdentityProfile('user_new', email='new@example.com', first_name='N')
    user = services.roles.sync_inbound(profile)
    assert user.role is Role.USER

    services.roles.change_role(actor_id='system', target_id=user.id, role=Role.PILOT)
    updated = services.roles.sync_inbound(
        IdentityProfile('user_new', email='changed@example.com', public_metadata={'role': 'USER'})
    )
    assert updated.email == 'changed@example.com'
    assert updated.role is Role.PILOT


def test_inbound_sync_after_concurrent_provisioning(services):
    first_request = IdentityProfile('user_race', email='old@example.com', public_metadata={'role': 'PILOT'})
    webhook = IdentityProfile('user_race', email='new@example.com', first_name='Rae')

    def provision_first(session, flush_context, instances):
        services.roles._insert(first_request)

    event.listen(services.db.SessionLocal, 'before_flush', provision_first, once=True)
    user = services.roles.sync_inbound(webhook)

    assert user.role is Role.PILOT
    stored = services.roles.find_by_external_id('user_race')
    assert stored.id == user.id
    assert (stored.email, stored.first_name) == ('new@example.com', 'Rae')


def test_delete_by_external_id_is_idempotent(services):
    services.roles.ensure_user(OTHER_ID)
    assert services.roles.delete_by_external_id(OTHER_ID) is True
    assert services.roles.delete_by_external_id(OTHER_ID) is False


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def test_change_role_pushes_and_audits(services, provider):
    admin, _ = services.roles.ensure_user(ADMIN_ID)
    pilot, _ = services.roles.ensure_user(PILOT_ID)

    user = services.roles.change_role(admin.id, pilot.id, Role.ADMIN, ip_address='10.0.0.1')

    assert user.role is Role.ADMIN
    assert (PILOT_ID, {'role': 'ADMIN'}) in provider.metadata_updates
    [entry] = services.audit.for_entity('User', pilot.id)
    assert entry.action is AuditAction.ROLE_CHANGE
    assert entry.old_values == {'role': 'USER'}
    assert entry.new_values == {'role': 'ADMIN'}
    assert entry.ip_address == '10.0.0.1'


def test_push_failure_keeps_local_change(services, provider):
    admin, _ = services.roles.ensure_user(ADMIN_ID)
    pilot, _ = services.roles.ensure_user(PILOT_ID)
    provider.update_error = IdentityProviderError('unreachable', retryable=True)

    services.roles.change_role(admin.id, pilot.id, Role.PILOT)

    assert services.roles.find_by_external_id(PILOT_ID).role is Role.PILOT
    assert len(services.audit.for_entity('User', pilot.id)) == 1


def test_change_role_unknown_target(services):
    admin, _ = services.roles.ensure_user(ADMIN_ID)
    with pytest.raises(NotFoundError):
        services.roles.change_role(admin.id, 'missing', Role.PILOT)


def test_admin_may_demote_self(services):
    admin, _ = services.roles.ensure_user(ADMIN_ID)
    assert services.roles.change_role(admin.id, admin.id, Role.USER).role is Role.USER


def test_verify_and_unverify(services):
    admin, _ = services.roles.ensure_user(ADMIN_ID)
    pilot, _ = services.roles.ensure_user(PILOT_ID)

    assert services.roles.verify_pilot(admin.id, pilot.id, True).role is Role.PILOT
    assert services.roles.verify_pilot(admin.id, pilot.id, False).role is Role.USER

    with services.db.session() as session:
        actions = session.scalars(
            select(AuditLog.action).where(AuditLog.entity_id == pilot.id)
        ).all()
    assert sorted(a.value for a in actions) == ['UNVERIFY', 'VERIFY']


def test_resolve_target_by_either_id(services):
    pilot, _ = services.roles.ensure_user(PILOT_ID)
    assert services.roles.resolve_target(pilot.id).id == pilot.id
    assert services.roles.resolve_target(PILOT_ID).id == pilot.id
    assert services.roles.resolve_target('nobody') is None


def test_list_admins(services):
    services.roles.ensure_user(ADMIN_ID)
    services.roles.ensure_user(PILOT_ID)
    assert [u.external_id for u in services.roles.list_admins()] == [ADMIN_ID]
