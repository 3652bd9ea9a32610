"""
Flight procedures.

Owner-scoped logbook entries. Every write checks that the referenced
aircraft belongs to the caller; mutations use a combined id + owner
predicate so another user's flight is indistinguishable from a missing one.

- flight.getAll(search?, startDate?, endDate?, flightType?)
- flight.get(id)
- flight.getRecent(limit=10)
- flight.create(fields)
- flight.update(id, fields)
- flight.delete(id)
- flight.getStats()             zero-valued for callers without a user
- flight.getUserAircraft()      distinct aircraft used in the caller's flights
"""

import logging
from typing import Any, Dict

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import selectinload

from logbook.analytics import FlightStats, compute_stats
from logbook.api.aircraft import get_owned as get_owned_aircraft
from logbook.api.rpc import Router, register_router
from logbook.authz import ProcedureContext
from logbook.errors import NotFoundError, ValidationFailed
from logbook.models import Aircraft, AuditAction, Flight, utcnow
from logbook.schemas import (
    FlightCreate,
    FlightFilters,
    FlightUpdate,
    IdInput,
    RecentFlightsInput,
    duration_violations,
)

logger = logging.getLogger(__name__)

flight = register_router(Router('flight'))

ENTITY = 'Flight'

# flightType filter -> predicate
FLIGHT_TYPES = {
    'PIC': lambda: Flight.pic_time > 0,
    'DUAL': lambda: Flight.dual_time > 0,
    'SOLO': lambda: (Flight.pic_time > 0) & (Flight.dual_time == 0),
}


def _require_aircraft(session, aircraft_id: str, user_id: str) -> Aircraft:
    row = get_owned_aircraft(session, aircraft_id, user_id)
    if row is None:
        raise NotFoundError('Aircraft not found or unauthorized')
    return row


def _get_owned(session, flight_id: str, user_id: str):
    return session.scalars(
        select(Flight)
        .options(selectinload(Flight.aircraft))
        .where(Flight.id == flight_id, Flight.user_id == user_id)
    ).first()


@flight.query('getAll', schema=FlightFilters)
def get_all(ctx: ProcedureContext, data: FlightFilters):
    user = ctx.require_user()
    stmt = (
        select(Flight)
        .options(selectinload(Flight.aircraft))
        .where(Flight.user_id == user.id)
    )

    if data.search:
        pattern = f'%{data.search}%'
        stmt = stmt.outerjoin(Flight.aircraft).where(or_(
            Flight.departure_code.ilike(pattern),
            Flight.arrival_code.ilike(pattern),
            Flight.remarks.ilike(pattern),
            Aircraft.registration.ilike(pattern),
        ))
    if data.start_date:
        stmt = stmt.where(Flight.date >= data.start_date)
    if data.end_date:
        stmt = stmt.where(Flight.date <= data.end_date)
    if data.flight_type:
        stmt = stmt.where(FLIGHT_TYPES[data.flight_type]())

    with ctx.db.session() as session:
        rows = session.scalars(stmt.order_by(Flight.date.desc())).all()
        return [f.to_dict(include_aircraft=True) for f in rows]


@flight.query('get', schema=IdInput)
def get_one(ctx: ProcedureContext, data: IdInput):
    user = ctx.require_user()
    with ctx.db.session() as session:
        row = _get_owned(session, data.id, user.id)
        if row is None:
            raise NotFoundError()
        return row.to_dict(include_aircraft=True)


@flight.query('getRecent', schema=RecentFlightsInput)
def get_recent(ctx: ProcedureContext, data: RecentFlightsInput):
    user = ctx.require_user()
    stmt = (
        select(Flight)
        .options(selectinload(Flight.aircraft))
        .where(Flight.user_id == user.id)
        .order_by(Flight.date.desc())
        .limit(data.limit)
    )
    with ctx.db.session() as session:
        return [f.to_dict(include_aircraft=True) for f in session.scalars(stmt).all()]


@flight.mutation('create', schema=FlightCreate)
def create(ctx: ProcedureContext, data: FlightCreate):
    user = ctx.require_user()
    with ctx.db.session() as session:
        _require_aircraft(session, data.aircraft_id, user.id)
        row = Flight(
            user_id=user.id,
            landings=data.day_landings + data.night_landings,
            **data.model_dump(),
        )
        session.add(row)
        session.flush()
        session.refresh(row, attribute_names=['aircraft'])
        result = row.to_dict(include_aircraft=True)
        snapshot = row.snapshot()

    logger.info(f'User {user.id} logged flight {result["id"]} ({data.duration}h)')
    ctx.audit(AuditAction.CREATE, ENTITY, result['id'], new_values=snapshot)
    return result


@flight.mutation('update', schema=FlightUpdate)
def update_flight(ctx: ProcedureContext, data: FlightUpdate):
    user = ctx.require_user()
    changes: Dict[str, Any] = data.changes()

    with ctx.db.session() as session:
        existing = _get_owned(session, data.id, user.id)
        if existing is None:
            raise NotFoundError()
        old_values = existing.snapshot()

        # Time invariants hold for the merged record, not just the patch
        merged = {
            'duration': changes.get('duration', existing.duration),
            'pic_time': changes.get('pic_time', existing.pic_time),
            'dual_time': changes.get('dual_time', existing.dual_time),
        }
        violations = duration_violations(merged['duration'], merged['pic_time'], merged['dual_time'])
        if violations:
            field_errors = {}
            for name, message in violations:
                field_errors.setdefault(name, []).append(message)
            raise ValidationFailed(field_errors=field_errors)

        new_aircraft = changes.get('aircraft_id')
        if new_aircraft and new_aircraft != existing.aircraft_id:
            _require_aircraft(session, new_aircraft, user.id)

        if 'day_landings' in changes or 'night_landings' in changes:
            changes['landings'] = (
                changes.get('day_landings', existing.day_landings or 0)
                + changes.get('night_landings', existing.night_landings or 0)
            )

        if changes:
            result = session.execute(
                update(Flight)
                .where(Flight.id == data.id, Flight.user_id == user.id)
                .values(**changes, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFoundError()
            session.expire_all()

        row = _get_owned(session, data.id, user.id)
        response = row.to_dict(include_aircraft=True)
        new_values = row.snapshot()

    if changes:
        ctx.audit(AuditAction.UPDATE, ENTITY, data.id, old_values=old_values, new_values=new_values)
    return response


@flight.mutation('delete', schema=IdInput)
def delete_flight(ctx: ProcedureContext, data: IdInput):
    user = ctx.require_user()
    with ctx.db.session() as session:
        existing = _get_owned(session, data.id, user.id)
        if existing is None:
            raise NotFoundError()
        snapshot = existing.snapshot()

        result = session.execute(
            delete(Flight)
            .where(Flight.id == data.id, Flight.user_id == user.id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError()

    logger.info(f'User {user.id} deleted flight {data.id}')
    ctx.audit(AuditAction.DELETE, ENTITY, data.id, old_values=snapshot)
    return {'success': True, 'id': data.id}


@flight.query('getStats', kind='viewer')
def get_stats(ctx: ProcedureContext, data):
    if ctx.user is None:
        return FlightStats().to_dict()
    with ctx.db.session() as session:
        rows = session.scalars(select(Flight).where(Flight.user_id == ctx.user.id)).all()
    return compute_stats(rows, ctx.now).to_dict()


@flight.query('getUserAircraft')
def get_user_aircraft(ctx: ProcedureContext, data):
    user = ctx.require_user()
    used = select(Flight.aircraft_id).where(Flight.user_id == user.id).distinct()
    stmt = (
        select(Aircraft)
        .where(Aircraft.user_id == user.id, Aircraft.id.in_(used))
        .order_by(Aircraft.registration)
    )
    with ctx.db.session() as session:
        return [a.to_dict() for a in session.scalars(stmt).all()]
