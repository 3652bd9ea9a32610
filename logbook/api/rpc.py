"""
RPC-style procedure dispatch.

Procedures are registered on named routers and served by one blueprint:

- GET  /api/rpc/<router>.<procedure>?input=<json>   (queries)
- POST /api/rpc/<router>.<procedure>   body: <json> (mutations)

Responses:
- success: {"result": {"data": ...}}
- failure: {"error": {"code", "message", "data": {"httpStatus", ...}}}

Pipeline per call: authorization stage for the procedure kind, then input
schema, then the handler.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Type

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from logbook.authz import (
    ProcedureContext,
    ProcedureKind,
    RequestInfo,
    external_id_from_request,
    resolve_user,
)
from logbook.errors import InternalError, LogbookError, NotFoundError, ValidationFailed
from logbook.schemas import Schema, parse
from logbook.services.container import get_services

logger = logging.getLogger(__name__)

rpc_bp = Blueprint('rpc', __name__, url_prefix='/api/rpc')

QUERY = 'query'
MUTATION = 'mutation'


@dataclass
class Procedure:
    name: str
    kind: ProcedureKind
    op_type: str
    handler: Callable[[ProcedureContext, Any], Any]
    schema: Optional[Type[Schema]] = None

    @property
    def http_method(self) -> str:
        return 'GET' if self.op_type == QUERY else 'POST'


class Router:
    """
    Named group of procedures.

    Usage:
        aircraft = Router('aircraft')

        @aircraft.query('getAll', schema=AircraftListInput)
        def get_all(ctx, data): ...
    """

    def __init__(self, name: str):
        self.name = name
        self.procedures: Dict[str, Procedure] = {}

    def _register(self, op_type, name, kind, schema):
        def decorator(fn):
            self.procedures[name] = Procedure(
                name=name,
                kind=ProcedureKind(kind),
                op_type=op_type,
                handler=fn,
                schema=schema,
            )
            return fn
        return decorator

    def query(self, name: str, kind: str = 'protected', schema: Optional[Type[Schema]] = None):
        return self._register(QUERY, name, kind, schema)

    def mutation(self, name: str, kind: str = 'protected', schema: Optional[Type[Schema]] = None):
        return self._register(MUTATION, name, kind, schema)


_routers: Dict[str, Router] = {}


def register_router(router: Router) -> Router:
    _routers[router.name] = router
    return router


def lookup(path: str) -> Optional[Procedure]:
    router_name, _, proc_name = path.partition('.')
    router = _routers.get(router_name)
    if router is None:
        return None
    return router.procedures.get(proc_name)


def error_response(err: LogbookError):
    response = jsonify({'error': err.to_dict()})
    response.status_code = err.http_status
    retry_after = err.details.get('retryAfter')
    if retry_after is not None:
        response.headers['Retry-After'] = str(retry_after)
    return response


def _read_input(procedure: Procedure) -> Any:
    if procedure.op_type == QUERY:
        raw = request.args.get('input')
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            raise ValidationFailed(form_errors=['input is not valid JSON'])

    if not request.get_data():
        return None
    payload = request.get_json(silent=True)
    if payload is None:
        raise ValidationFailed(form_errors=['Request body is not valid JSON'])
    return payload


@rpc_bp.route('/<path:path>', methods=['GET', 'POST'])
def dispatch(path: str):
    procedure = lookup(path)
    if procedure is None:
        return error_response(NotFoundError(f'No procedure {path}'))

    if request.method != procedure.http_method:
        response = jsonify({'error': {
            'code': 'METHOD_NOT_SUPPORTED',
            'message': f'{path} is a {procedure.op_type}, use {procedure.http_method}',
            'data': {'httpStatus': 405},
        }})
        response.status_code = 405
        response.headers['Allow'] = procedure.http_method
        return response

    services = get_services()

    try:
        external_id = external_id_from_request(services, request)
        ctx = ProcedureContext(
            services=services,
            external_id=external_id,
            user=resolve_user(procedure.kind, services, external_id),
            request_info=RequestInfo.from_request(request),
        )
        payload = _read_input(procedure)
        data = parse(procedure.schema, payload, now=services.now()) if procedure.schema else payload
        result = procedure.handler(ctx, data)
    except LogbookError as e:
        if e.http_status >= 500:
            logger.error(f'{path} failed: {e.message}')
        else:
            logger.debug(f'{path} rejected: {e.code.value} {e.message}')
        return error_response(e)
    except OperationalError as e:
        logger.error(f'{path} store failure: {e}')
        return error_response(InternalError('Record store unavailable', retryable=True))
    except SQLAlchemyError as e:
        logger.exception(f'{path} store error: {e}')
        return error_response(InternalError())

    return jsonify({'result': {'data': result}})
