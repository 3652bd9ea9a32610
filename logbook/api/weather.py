"""
Weather procedures backed by the injected MetarService.

- weather.getMetar(icao)               public
- weather.getFavoriteAirportMetar()    caller's favorite airport, KJFK default
- weather.setFavoriteAirport(icao)     upserts preferences; stations the feed
                                       cannot confirm are accepted anyway
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from logbook.api.preferences import upsert_preferences
from logbook.api.rpc import Router, register_router
from logbook.authz import ProcedureContext
from logbook.models import UserPreferences
from logbook.schemas import FavoriteAirportInput, StationInput

logger = logging.getLogger(__name__)

weather = register_router(Router('weather'))


@weather.query('getMetar', kind='public', schema=StationInput)
def get_metar(ctx: ProcedureContext, data: StationInput):
    return ctx.services.metar.get_metar(data.icao).to_dict()


@weather.query('getFavoriteAirportMetar')
def get_favorite_airport_metar(ctx: ProcedureContext, data):
    user = ctx.require_user()
    default = ctx.services.config.weather.default_airport
    try:
        with ctx.db.session() as session:
            icao = session.scalar(
                select(UserPreferences.favorite_airport).where(UserPreferences.user_id == user.id)
            )
    except SQLAlchemyError as e:
        logger.error(f'Could not read favorite airport for {user.id}: {e}')
        icao = None
    return ctx.services.metar.get_metar(icao or default).to_dict()


@weather.mutation('setFavoriteAirport', schema=FavoriteAirportInput)
def set_favorite_airport(ctx: ProcedureContext, data: FavoriteAirportInput):
    user = ctx.require_user()
    if ctx.services.metar.fetch(data.icao) is None:
        logger.warning(f'Could not verify airport {data.icao}, setting it anyway')
    with ctx.db.session() as session:
        return upsert_preferences(session, user.id, {'favorite_airport': data.icao}).to_dict()
