"""
Database models for the pilot logbook.

Schema priorities:
1. Every owned row carries user_id so owner-scoped reads and writes are
   single-predicate queries
2. Audit rows are append-only and independent of the rows they describe
3. The users table is the record of truth for roles
"""

from logbook.models.base import Base, Database, new_id, utcnow
from logbook.models.user import User, UserPreferences, Role, Theme, UnitSystem
from logbook.models.aircraft import Aircraft
from logbook.models.flight import Flight
from logbook.models.audit_log import AuditLog, AuditAction
from logbook.models.webhook_event import WebhookEvent

__all__ = [
    'Base',
    'Database',
    'new_id',
    'utcnow',
    'User',
    'UserPreferences',
    'Role',
    'Theme',
    'UnitSystem',
    'Aircraft',
    'Flight',
    'AuditLog',
    'AuditAction',
    'WebhookEvent',
]
