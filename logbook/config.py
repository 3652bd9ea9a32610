"""
Configuration management for the pilot logbook.

Loads settings from environment variables with sensible defaults.
All configuration is centralized here to avoid magic strings scattered
throughout the codebase.
"""

import os
from dataclasses import dataclass, field
from typing import Tuple

from dotenv import load_dotenv

load_dotenv()


def _parse_list(value: str) -> Tuple[str, ...]:
    """Parse a comma-separated env value into a tuple of trimmed entries."""
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(',') if item.strip())


@dataclass(frozen=True)
class DatabaseConfig:
    """Record store configuration."""
    url: str = os.getenv('DATABASE_URL', 'sqlite:///logbook.db')
    timeout_seconds: float = float(os.getenv('STORE_TIMEOUT_SECONDS', '5'))

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith('sqlite')


@dataclass(frozen=True)
class IdentityConfig:
    """Identity provider (Clerk) configuration."""
    secret_key: str = os.getenv('CLERK_SECRET_KEY', '')
    api_url: str = os.getenv('CLERK_API_URL', 'https://api.clerk.com/v1')
    webhook_secret: str = os.getenv('CLERK_WEBHOOK_SECRET', '')
    timeout_seconds: float = float(os.getenv('IDENTITY_TIMEOUT_SECONDS', '5'))

    # Set by the authenticating edge in front of the app
    session_header: str = os.getenv('IDENTITY_SESSION_HEADER', 'X-Clerk-User-Id')

    # Accepted clock skew for signed webhook deliveries
    webhook_tolerance_seconds: int = 300

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)


@dataclass(frozen=True)
class AdminConfig:
    """Environment allow-lists that grant ADMIN at first provisioning."""
    external_ids: Tuple[str, ...] = _parse_list(os.getenv('ADMIN_CLERK_IDS', ''))
    emails: Tuple[str, ...] = _parse_list(os.getenv('ADMIN_EMAILS', ''))


@dataclass(frozen=True)
class RateLimitConfig:
    """Throttling and body-size ceilings for the public endpoints."""
    feedback_max_requests: int = 5
    feedback_window_ms: int = 60 * 60 * 1000
    feedback_max_body_bytes: int = 10 * 1024

    set_role_max_requests: int = 20
    set_role_window_ms: int = 60 * 1000
    set_role_max_body_bytes: int = 5 * 1024

    # Expired windows are swept at most this often
    sweep_interval_ms: int = 5 * 60 * 1000


@dataclass(frozen=True)
class MonitorConfig:
    """Suspicious payload heuristics."""
    max_normal_size: int = 5000
    min_diversity_size: int = 100
    min_diversity_ratio: float = 0.05
    ring_capacity: int = 1000


@dataclass(frozen=True)
class WeatherConfig:
    """AVWX METAR feed configuration."""
    api_key: str = os.getenv('AVWX_API_KEY', '')
    base_url: str = 'https://avwx.rest/api'
    cache_ttl_seconds: int = int(os.getenv('METAR_CACHE_TTL_SECONDS', '600'))
    timeout_seconds: float = 5.0
    default_airport: str = 'KJFK'

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""
    database: DatabaseConfig
    identity: IdentityConfig
    admin: AdminConfig
    rate_limit: RateLimitConfig
    monitor: MonitorConfig
    weather: WeatherConfig

    # Flask settings
    secret_key: str
    debug: bool
    testing: bool = field(default=False)


def load_config() -> AppConfig:
    """Load and validate all configuration."""
    return AppConfig(
        database=DatabaseConfig(),
        identity=IdentityConfig(),
        admin=AdminConfig(),
        rate_limit=RateLimitConfig(),
        monitor=MonitorConfig(),
        weather=WeatherConfig(),
        secret_key=os.getenv('SECRET_KEY', 'dev-key-change-in-prod'),
        debug=os.getenv('FLASK_DEBUG', '0') == '1',
    )


# Singleton instance
config = load_config()
