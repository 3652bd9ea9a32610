"""
User profile procedures.

- user.health()          public liveness probe
- user.getProfile()
- user.getOrCreate()     provisioning entry point; back-fills missing
                         email/name from the identity provider
- user.updateProfile(firstName?, lastName?, license?, licenseExpiry?)
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from logbook.api.rpc import Router, register_router
from logbook.authz import ProcedureContext
from logbook.errors import NotFoundError
from logbook.models import User, utcnow
from logbook.schemas import ProfileUpdate
from logbook.services.identity_provider import IdentityProviderError

logger = logging.getLogger(__name__)

user_router = register_router(Router('user'))


def _load(session, user_id: str) -> User:
    row = session.scalars(
        select(User).options(selectinload(User.preferences)).where(User.id == user_id)
    ).first()
    if row is None:
        raise NotFoundError('User not found')
    return row


@user_router.query('health', kind='public')
def health(ctx: ProcedureContext, data):
    return {'status': 'ok', 'timestamp': datetime.now(timezone.utc).isoformat()}


@user_router.query('getProfile')
def get_profile(ctx: ProcedureContext, data):
    user = ctx.require_user()
    with ctx.db.session() as session:
        return _load(session, user.id).to_dict(include_preferences=True)


@user_router.query('getOrCreate')
def get_or_create(ctx: ProcedureContext, data):
    user = ctx.require_user()
    with ctx.db.session() as session:
        row = _load(session, user.id)
        if row.email and row.first_name and row.last_name:
            return row.to_dict(include_preferences=True)

        try:
            profile = ctx.services.identity_provider.get_user(row.external_id)
        except IdentityProviderError as e:
            logger.warning(f'Could not back-fill profile for {row.id}: {e}')
            return row.to_dict(include_preferences=True)

        row.email = row.email or profile.email
        row.first_name = row.first_name or profile.first_name
        row.last_name = row.last_name or profile.last_name
        row.updated_at = utcnow()
        session.flush()
        logger.info(f'Back-filled profile fields for {row.id}')
        return row.to_dict(include_preferences=True)


@user_router.mutation('updateProfile', schema=ProfileUpdate)
def update_profile(ctx: ProcedureContext, data: ProfileUpdate):
    user = ctx.require_user()
    changes = data.model_dump(exclude_unset=True)
    with ctx.db.session() as session:
        row = _load(session, user.id)
        for key, value in changes.items():
            if key in ('first_name', 'last_name') and value is None:
                continue
            setattr(row, key, value)
        session.flush()
        return row.to_dict(include_preferences=True)
