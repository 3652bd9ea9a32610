"""
Pilot Logbook Backend Package.

Flight logbook service built with Flask, SQLAlchemy, pydantic, and NumPy.

Modules:
    api/         RPC procedures, public HTTP endpoints, identity webhooks
    models/      SQLAlchemy ORM models (User, Aircraft, Flight, AuditLog)
    analytics/   NumPy-based logbook statistics and currency
    services/    Identity provider client, rate limiting, payload monitor,
                 audit logger, METAR feed
    schemas.py   Input validation with field and cross-field checks
    roles.py     Role reconciliation with the identity provider
    authz.py     Per-request identity, provisioning and role gates
    config.py    Centralized configuration from environment variables
"""

__version__ = '1.0.0'
