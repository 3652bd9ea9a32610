"""
Stateful collaborators injected into the app.

Each service owns its own state (caches, counters, rings) and is built once
per application instance, so tests get isolated copies.
"""

from logbook.services.audit import AuditLogger, AuditQueryFilters, summarize_changes
from logbook.services.identity_provider import ClerkClient, IdentityProfile, IdentityProviderError
from logbook.services.rate_limit import RateLimiter, RateLimitResult, get_rate_limit_key
from logbook.services.security_monitor import PayloadMonitor, SuspiciousPayload
from logbook.services.weather import MetarReport, MetarService
from logbook.services.webhook import WebhookVerifier, WebhookVerificationError

__all__ = [
    'AuditLogger',
    'AuditQueryFilters',
    'summarize_changes',
    'ClerkClient',
    'IdentityProfile',
    'IdentityProviderError',
    'RateLimiter',
    'RateLimitResult',
    'get_rate_limit_key',
    'PayloadMonitor',
    'SuspiciousPayload',
    'MetarReport',
    'MetarService',
    'WebhookVerifier',
    'WebhookVerificationError',
]
