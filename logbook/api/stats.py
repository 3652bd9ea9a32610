"""
Dashboard statistics procedures.

Read paths consumed by charts: a caller without a provisioned user gets
zero-valued structures instead of an error.

- stats.getSummary()
- stats.getHoursByMonth()   always 12 entries, oldest first
- stats.getHoursByType()
"""

from sqlalchemy import select

from logbook.analytics import FlightSummary, compute_summary, hours_by_month, hours_by_type
from logbook.api.rpc import Router, register_router
from logbook.authz import ProcedureContext
from logbook.models import Aircraft, Flight

stats = register_router(Router('stats'))


def _user_flights(ctx: ProcedureContext):
    with ctx.db.session() as session:
        return session.scalars(select(Flight).where(Flight.user_id == ctx.user.id)).all()


@stats.query('getSummary', kind='viewer')
def get_summary(ctx: ProcedureContext, data):
    if ctx.user is None:
        return FlightSummary().to_dict()
    return compute_summary(_user_flights(ctx)).to_dict()


@stats.query('getHoursByMonth', kind='viewer')
def get_hours_by_month(ctx: ProcedureContext, data):
    flights = _user_flights(ctx) if ctx.user is not None else []
    return hours_by_month(flights, ctx.now)


@stats.query('getHoursByType', kind='viewer')
def get_hours_by_type(ctx: ProcedureContext, data):
    if ctx.user is None:
        return []
    flights = _user_flights(ctx)
    with ctx.db.session() as session:
        names = dict(session.execute(
            select(Aircraft.id, Aircraft.model).where(Aircraft.user_id == ctx.user.id)
        ).all())
    return hours_by_type(flights, names)
