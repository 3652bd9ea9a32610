import base64
import json
import time
from datetime import datetime, timedelta, timezone

import pytest

from logbook.app import create_app
from logbook.config import (
    AdminConfig,
    AppConfig,
    DatabaseConfig,
    IdentityConfig,
    MonitorConfig,
    RateLimitConfig,
    WeatherConfig,
)
from logbook.services.container import EXTENSION_KEY
from logbook.services.identity_provider import IdentityProfile, IdentityProviderError

WEBHOOK_SECRET = 'whsec_' + base64.b64encode(b'logbook-test-signing-key').decode('ascii')
IDENTITY_HEADER = 'X-Clerk-User-Id'

ADMIN_ID = 'user_admin'
PILOT_ID = 'user_pilot'
OTHER_ID = 'user_other'


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start=None):
        self.value = start if start is not None else time.time()

    def __call__(self):
        return self.value

    def advance(self, seconds):
        self.value += seconds


class FakeIdentityProvider:
    """In-memory stand-in for the Clerk client."""

    def __init__(self):
        self.profiles = {}
        self.metadata_updates = []
        self.get_error = None
        self.update_error = None
        self.get_calls = 0

    def add(self, external_id, email='', first_name=None, last_name=None, role=None):
        self.profiles[external_id] = IdentityProfile(
            external_id=external_id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            public_metadata={'role': role} if role else {},
        )
        return self.profiles[external_id]

    def get_user(self, external_id):
        self.get_calls += 1
        if self.get_error is not None:
            raise self.get_error
        if external_id not in self.profiles:
            raise IdentityProviderError('User not found at identity provider', not_found=True)
        return self.profiles[external_id]

    def update_public_metadata(self, external_id, metadata):
        if self.update_error is not None:
            raise self.update_error
        self.metadata_updates.append((external_id, dict(metadata)))


class RpcClient:
    """Calls /api/rpc procedures the way the frontend does."""

    def __init__(self, client):
        self.client = client

    def _headers(self, user, extra=None):
        headers = dict(extra or {})
        if user:
            headers[IDENTITY_HEADER] = user
        return headers

    def query(self, path, input=None, user=None, headers=None):
        params = {}
        if input is not None:
            params['input'] = json.dumps(input)
        return self.client.get(
            f'/api/rpc/{path}', query_string=params, headers=self._headers(user, headers)
        )

    def mutate(self, path, input=None, user=None, headers=None):
        return self.client.post(
            f'/api/rpc/{path}', json=input if input is not None else {},
            headers=self._headers(user, headers),
        )

    @staticmethod
    def data(resp):
        assert resp.status_code == 200, resp.get_json()
        return resp.get_json()['result']['data']

    @staticmethod
    def error(resp):
        return resp.get_json()['error']


def iso_days_ago(days, hours=0):
    """Naive UTC ISO timestamp `days` (and `hours`) before now."""
    moment = datetime.now(timezone.utc) - timedelta(days=days, hours=hours)
    return moment.replace(tzinfo=None).isoformat(timespec='seconds')


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    fake = FakeIdentityProvider()
    fake.add(ADMIN_ID, email='admin@example.com', first_name='Ada', last_name='Admin')
    fake.add(PILOT_ID, email='pilot@example.com', first_name='Pat', last_name='Pilot')
    fake.add(OTHER_ID, email='other@example.com', first_name='Oli', last_name='Other')
    return fake


@pytest.fixture
def app_config(tmp_path):
    return AppConfig(
        database=DatabaseConfig(url=f'sqlite:///{tmp_path / "logbook.db"}', timeout_seconds=5),
        identity=IdentityConfig(
            secret_key='',
            webhook_secret=WEBHOOK_SECRET,
            session_header=IDENTITY_HEADER,
        ),
        admin=AdminConfig(external_ids=(ADMIN_ID,), emails=()),
        rate_limit=RateLimitConfig(),
        monitor=MonitorConfig(),
        weather=WeatherConfig(api_key=''),
        secret_key='test-secret',
        debug=False,
        testing=True,
    )


@pytest.fixture
def app(app_config, provider, clock):
    application = create_app(app_config, identity_provider=provider, clock=clock)
    yield application
    application.extensions[EXTENSION_KEY].db.dispose()


@pytest.fixture
def services(app):
    return app.extensions[EXTENSION_KEY]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def rpc(client):
    return RpcClient(client)


@pytest.fixture
def make_aircraft(rpc):
    def _make(user=PILOT_ID, **fields):
        payload = {'make': 'Cessna', 'model': '172', 'registration': 'N12345'}
        payload.update(fields)
        return rpc.data(rpc.mutate('aircraft.create', payload, user=user))
    return _make


@pytest.fixture
def make_flight(rpc):
    def _make(aircraft_id, user=PILOT_ID, **fields):
        payload = {
            'aircraftId': aircraft_id,
            'date': iso_days_ago(1),
            'departureCode': 'KJFK',
            'arrivalCode': 'KBOS',
            'duration': 1.5,
            'picTime': 1.5,
            'dualTime': 0,
            'dayLandings': 1,
            'nightLandings': 0,
        }
        payload.update(fields)
        return rpc.data(rpc.mutate('flight.create', payload, user=user))
    return _make
