"""
Signature verification for identity-provider webhooks (Svix scheme).

Signed content is "{svix-id}.{svix-timestamp}.{raw body}", HMAC-SHA256 with
the base64 key that follows the `whsec_` prefix of the signing secret. The
svix-signature header carries one or more space separated "v1,<base64>"
entries; any one matching is enough.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

SECRET_PREFIX = 'whsec_'


class WebhookVerificationError(Exception):
    pass


class WebhookVerifier:

    def __init__(
        self,
        secret: str,
        tolerance_seconds: int = 300,
        clock: Optional[Callable[[], float]] = None,
    ):
        if not secret:
            raise ValueError('Webhook signing secret is required')
        raw = secret[len(SECRET_PREFIX):] if secret.startswith(SECRET_PREFIX) else secret
        try:
            self._key = base64.b64decode(raw)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f'Webhook signing secret is not valid base64: {e}')
        self.tolerance_seconds = tolerance_seconds
        self._clock = clock or time.time

    def sign(self, msg_id: str, timestamp: str, body: str) -> str:
        """Compute the v1 signature for a delivery."""
        content = f'{msg_id}.{timestamp}.{body}'.encode('utf-8')
        digest = hmac.new(self._key, content, hashlib.sha256).digest()
        return base64.b64encode(digest).decode('ascii')

    def verify(self, body: str, headers: Mapping[str, str]) -> Dict[str, Any]:
        """
        Check a delivery and return its decoded JSON payload.

        Raises:
            WebhookVerificationError if headers are missing, the timestamp is
            outside tolerance, no signature matches, or the body is not JSON
        """
        msg_id = headers.get('svix-id')
        timestamp = headers.get('svix-timestamp')
        signature_header = headers.get('svix-signature')
        if not msg_id or not timestamp or not signature_header:
            raise WebhookVerificationError('Missing svix headers')

        try:
            sent_at = int(timestamp)
        except ValueError:
            raise WebhookVerificationError('Invalid svix-timestamp')

        now = int(self._clock())
        if abs(now - sent_at) > self.tolerance_seconds:
            raise WebhookVerificationError('Timestamp outside tolerance')

        expected = self.sign(msg_id, timestamp, body)
        for entry in signature_header.split(' '):
            version, _, candidate = entry.partition(',')
            if version == 'v1' and hmac.compare_digest(candidate, expected):
                break
        else:
            logger.warning(f'Webhook {msg_id} signature mismatch')
            raise WebhookVerificationError('No matching signature')

        try:
            payload = json.loads(body)
        except ValueError:
            raise WebhookVerificationError('Body is not valid JSON')
        if not isinstance(payload, dict):
            raise WebhookVerificationError('Body is not a JSON object')
        return payload
