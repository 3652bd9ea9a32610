"""
Clerk Backend API client.

Handles communication with the identity provider's REST API:
- Fetching a user's profile at first provisioning
- Writing role and display preferences into public metadata
- Classifying transport failures so callers can tell timeouts from 404s

Clerk user payload (relevant fields):
    id                        - External user id (user_...)
    email_addresses           - [{id, email_address}, ...]
    primary_email_address_id  - Which entry is primary
    first_name / last_name    - Nullable
    public_metadata           - Visible to the frontend; carries `role`
    private_metadata          - Backend only; may also carry `role`

The same shape arrives as `data` in user.created / user.updated webhooks.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from logbook.config import IdentityConfig

logger = logging.getLogger(__name__)


class IdentityProviderError(Exception):
    """
    Identity provider call failed.

    retryable: timeout or connection failure, a retry may succeed
    not_found: the provider has no such user
    """

    def __init__(self, message: str, retryable: bool = False, not_found: bool = False):
        super().__init__(message)
        self.retryable = retryable
        self.not_found = not_found


@dataclass
class IdentityProfile:
    """
    Parsed identity-provider user.

    Normalizes the raw JSON into a typed dataclass. Metadata dicts are
    never None.
    """
    external_id: str
    email: str = ''
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    public_metadata: Dict[str, Any] = field(default_factory=dict)
    private_metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> Optional['IdentityProfile']:
        """
        Parse a Clerk user object.

        Returns None if the payload has no usable id.
        """
        if not isinstance(data, dict):
            return None

        external_id = data.get('id')
        if not external_id or not isinstance(external_id, str):
            return None

        addresses = data.get('email_addresses') or []
        primary_id = data.get('primary_email_address_id')
        email = ''
        for entry in addresses:
            if not isinstance(entry, dict):
                continue
            if entry.get('id') == primary_id:
                email = entry.get('email_address') or ''
                break
        if not email and addresses and isinstance(addresses[0], dict):
            email = addresses[0].get('email_address') or ''

        return cls(
            external_id=external_id,
            email=email,
            first_name=data.get('first_name') or None,
            last_name=data.get('last_name') or None,
            public_metadata=data.get('public_metadata') or {},
            private_metadata=data.get('private_metadata') or {},
        )

    @property
    def metadata_role(self) -> Optional[str]:
        """Role claimed in metadata; private metadata wins over public."""
        return self.private_metadata.get('role') or self.public_metadata.get('role')


class ClerkClient:
    """
    Client for the Clerk Backend API.

    Handles:
    - GET /users/{id}
    - PATCH /users/{id}/metadata (deep merge of public_metadata)
    - Bearer authentication with the instance secret key
    - A fixed short timeout on every call
    """

    def __init__(
        self,
        secret_key: str,
        base_url: str = 'https://api.clerk.com/v1',
        timeout: float = 5.0,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

        self.session = requests.Session()
        if secret_key:
            self.session.headers['Authorization'] = f'Bearer {secret_key}'
            logger.info('Clerk client initialized')
        else:
            logger.warning('Clerk secret key not configured - provider calls will fail')

    @classmethod
    def from_config(cls, identity_config: IdentityConfig) -> 'ClerkClient':
        """Create client from application configuration."""
        return cls(
            secret_key=identity_config.secret_key,
            base_url=identity_config.api_url,
            timeout=identity_config.timeout_seconds,
        )

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f'{self.base_url}{path}'
        logger.debug(f'Clerk {method} {url}')

        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response.json()

        except requests.exceptions.Timeout:
            logger.error(f'Clerk API timeout on {method} {path}')
            raise IdentityProviderError('Identity provider timed out', retryable=True)
        except requests.exceptions.ConnectionError as e:
            logger.error(f'Clerk API unreachable: {e}')
            raise IdentityProviderError('Identity provider unreachable', retryable=True)
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code
            if status == 404:
                raise IdentityProviderError('User not found at identity provider', not_found=True)
            if status == 429:
                logger.warning('Clerk rate limit exceeded')
                raise IdentityProviderError('Identity provider rate limited', retryable=True)
            logger.error(f'Clerk API error: {status}')
            raise IdentityProviderError(f'Identity provider error {status}', retryable=status >= 500)
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f'Clerk request failed: {e}')
            raise IdentityProviderError(f'Identity provider request failed: {e}')

    def get_user(self, external_id: str) -> IdentityProfile:
        """
        Fetch a user profile.

        Raises:
            IdentityProviderError on transport failure or unknown user
        """
        data = self._request('GET', f'/users/{external_id}')
        profile = IdentityProfile.from_payload(data)
        if profile is None:
            raise IdentityProviderError('Malformed user payload from identity provider')
        return profile

    def update_public_metadata(self, external_id: str, metadata: Dict[str, Any]) -> None:
        """Merge keys into the user's public metadata."""
        self._request(
            'PATCH',
            f'/users/{external_id}/metadata',
            json={'public_metadata': metadata},
        )
        logger.info(f'Updated public metadata for {external_id}: {sorted(metadata)}')
