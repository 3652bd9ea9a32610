"""
Display preference procedures.

- preferences.getPreferences()       stored row, or defaults if none
- preferences.updatePreferences(...) upsert; theme and unit system are
                                     mirrored to the identity provider on a
                                     best-effort basis
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import select

from logbook.api.aircraft import get_owned as get_owned_aircraft
from logbook.api.rpc import Router, register_router
from logbook.authz import ProcedureContext
from logbook.errors import NotFoundError
from logbook.models import UserPreferences
from logbook.schemas import PreferencesUpdate

logger = logging.getLogger(__name__)

preferences = register_router(Router('preferences'))

MIRRORED = {'theme': 'theme', 'unit_system': 'unitSystem'}


def upsert_preferences(session, user_id: str, changes: Dict[str, Any]) -> UserPreferences:
    """Apply changes to the user's preferences row, creating it with defaults."""
    row: Optional[UserPreferences] = session.scalars(
        select(UserPreferences).where(UserPreferences.user_id == user_id)
    ).first()
    if row is None:
        row = UserPreferences(user_id=user_id)
        session.add(row)
    for key, value in changes.items():
        setattr(row, key, value)
    session.flush()
    return row


@preferences.query('getPreferences')
def get_preferences(ctx: ProcedureContext, data):
    user = ctx.require_user()
    with ctx.db.session() as session:
        row = session.scalars(
            select(UserPreferences).where(UserPreferences.user_id == user.id)
        ).first()
        return row.to_dict() if row else dict(UserPreferences.DEFAULTS)


@preferences.mutation('updatePreferences', schema=PreferencesUpdate)
def update_preferences(ctx: ProcedureContext, data: PreferencesUpdate):
    user = ctx.require_user()
    changes = data.model_dump(exclude_unset=True)
    for key in ('theme', 'unit_system', 'currency'):
        if changes.get(key, '') is None:
            changes.pop(key)

    with ctx.db.session() as session:
        if changes.get('default_aircraft_id'):
            if get_owned_aircraft(session, changes['default_aircraft_id'], user.id) is None:
                raise NotFoundError('Aircraft not found or unauthorized')
        result = upsert_preferences(session, user.id, changes).to_dict()

    mirrored = {
        wire: changes[key].value
        for key, wire in MIRRORED.items()
        if changes.get(key) is not None
    }
    ctx.services.roles.push_preferences(user.external_id, mirrored)
    return result
