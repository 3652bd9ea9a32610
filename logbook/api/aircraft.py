"""
Aircraft procedures.

All operations are owner-scoped. Mutations are single UPDATE/DELETE
statements whose WHERE clause combines id and owner, so a row that does not
exist and a row owned by someone else fail identically with NOT_FOUND.

- aircraft.getAll(includeArchived?)
- aircraft.getById(id)              -> aircraft or null
- aircraft.create(fields)
- aircraft.update(id, fields)
- aircraft.delete(id)               soft: archives
- aircraft.restore(id)
- aircraft.deletePermanent(id)      CONFLICT while any flight references it
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import delete, func, select, update

from logbook.api.rpc import Router, register_router
from logbook.authz import ProcedureContext
from logbook.errors import ConflictError, NotFoundError
from logbook.models import Aircraft, AuditAction, Flight, utcnow
from logbook.schemas import AircraftCreate, AircraftListInput, AircraftUpdate, IdInput

logger = logging.getLogger(__name__)

aircraft = register_router(Router('aircraft'))

ENTITY = 'Aircraft'


def get_owned(session, aircraft_id: str, user_id: str) -> Optional[Aircraft]:
    return session.scalars(
        select(Aircraft).where(Aircraft.id == aircraft_id, Aircraft.user_id == user_id)
    ).first()


def _owned_update(ctx: ProcedureContext, aircraft_id: str, values: Dict[str, Any]) -> Aircraft:
    """Apply values to the caller's aircraft in one statement and return the row."""
    user = ctx.require_user()
    with ctx.db.session() as session:
        result = session.execute(
            update(Aircraft)
            .where(Aircraft.id == aircraft_id, Aircraft.user_id == user.id)
            .values(**values, updated_at=utcnow())
        )
        if result.rowcount == 0:
            raise NotFoundError()
        return get_owned(session, aircraft_id, user.id)


@aircraft.query('getAll', schema=AircraftListInput)
def get_all(ctx: ProcedureContext, data: AircraftListInput):
    user = ctx.require_user()
    stmt = select(Aircraft).where(Aircraft.user_id == user.id)
    if not data.include_archived:
        stmt = stmt.where(Aircraft.is_archived.is_(False))
    with ctx.db.session() as session:
        rows = session.scalars(stmt.order_by(Aircraft.created_at.desc())).all()
        return [a.to_dict() for a in rows]


@aircraft.query('getById', schema=IdInput)
def get_by_id(ctx: ProcedureContext, data: IdInput):
    user = ctx.require_user()
    with ctx.db.session() as session:
        row = get_owned(session, data.id, user.id)
        return row.to_dict() if row else None


@aircraft.mutation('create', schema=AircraftCreate)
def create(ctx: ProcedureContext, data: AircraftCreate):
    user = ctx.require_user()
    with ctx.db.session() as session:
        row = Aircraft(user_id=user.id, **data.model_dump())
        session.add(row)
        session.flush()
        result = row.to_dict()
        snapshot = row.snapshot()

    logger.info(f'User {user.id} added aircraft {result["id"]} ({result["registration"]})')
    ctx.audit(AuditAction.CREATE, ENTITY, result['id'], new_values=snapshot)
    return result


@aircraft.mutation('update', schema=AircraftUpdate)
def update_aircraft(ctx: ProcedureContext, data: AircraftUpdate):
    user = ctx.require_user()
    changes = data.changes()

    with ctx.db.session() as session:
        before = get_owned(session, data.id, user.id)
        if before is None:
            raise NotFoundError()
        old_values = before.snapshot()

    if not changes:
        return before.to_dict()

    row = _owned_update(ctx, data.id, changes)
    ctx.audit(AuditAction.UPDATE, ENTITY, row.id, old_values=old_values, new_values=row.snapshot())
    return row.to_dict()


@aircraft.mutation('delete', schema=IdInput)
def archive(ctx: ProcedureContext, data: IdInput):
    row = _owned_update(ctx, data.id, {'is_archived': True})
    ctx.audit(AuditAction.DELETE, ENTITY, row.id,
              old_values={'isArchived': False}, new_values={'isArchived': True})
    return row.to_dict()


@aircraft.mutation('restore', schema=IdInput)
def restore(ctx: ProcedureContext, data: IdInput):
    row = _owned_update(ctx, data.id, {'is_archived': False})
    ctx.audit(AuditAction.RESTORE, ENTITY, row.id,
              old_values={'isArchived': True}, new_values={'isArchived': False})
    return row.to_dict()


@aircraft.mutation('deletePermanent', schema=IdInput)
def delete_permanent(ctx: ProcedureContext, data: IdInput):
    user = ctx.require_user()
    with ctx.db.session() as session:
        row = get_owned(session, data.id, user.id)
        if row is None:
            raise NotFoundError()

        flight_count = session.scalar(
            select(func.count()).select_from(Flight).where(Flight.aircraft_id == row.id)
        )
        if flight_count:
            raise ConflictError(
                f'Cannot permanently delete aircraft with {flight_count} logged flight(s). '
                'Archive it instead.',
                details={'flightCount': flight_count},
            )

        snapshot = row.snapshot()
        result = session.execute(
            delete(Aircraft).where(Aircraft.id == row.id, Aircraft.user_id == user.id)
        )
        if result.rowcount == 0:
            raise NotFoundError()

    logger.info(f'User {user.id} permanently deleted aircraft {data.id}')
    ctx.audit(AuditAction.DELETE, ENTITY, data.id, old_values=snapshot)
    return {'success': True, 'id': data.id}
