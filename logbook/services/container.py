"""
Per-application service container.

create_app builds one AppServices and stores it in app.extensions; request
handlers reach it through get_services().
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from flask import current_app

from logbook.config import AppConfig
from logbook.models import Database
from logbook.roles import RoleService
from logbook.services.audit import AuditLogger
from logbook.services.rate_limit import RateLimiter
from logbook.services.security_monitor import PayloadMonitor
from logbook.services.weather import MetarService
from logbook.services.webhook import WebhookVerifier

EXTENSION_KEY = 'logbook'


@dataclass
class AppServices:
    config: AppConfig
    db: Database
    identity_provider: object
    roles: RoleService
    audit: AuditLogger
    rate_limiter: RateLimiter
    monitor: PayloadMonitor
    metar: MetarService
    webhook_verifier: Optional[WebhookVerifier] = None
    clock: Callable[[], float] = field(default=time.time)

    def now(self) -> datetime:
        """Current time as naive UTC, from the injected clock."""
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc).replace(tzinfo=None)


def get_services() -> AppServices:
    return current_app.extensions[EXTENSION_KEY]
