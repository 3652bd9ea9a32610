"""
API module for the pilot logbook.

Provides:
- The RPC blueprint serving every registered procedure router
- Public HTTP endpoints (feedback, set-role)
- The identity-provider webhook receiver
"""

from logbook.api.rpc import rpc_bp
from logbook.api.endpoints import endpoints_bp
from logbook.api.webhooks import webhooks_bp

# Importing the procedure modules registers their routers
from logbook.api import aircraft, admin, flights, preferences, stats, users, weather  # noqa: F401

__all__ = ['rpc_bp', 'endpoints_bp', 'webhooks_bp']
