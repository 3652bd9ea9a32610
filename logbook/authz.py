"""
Request-scoped authorization pipeline.

Every procedure declares a kind:

    public     no identity needed
    viewer     identity resolved when possible; an absent or unprovisionable
               caller yields user=None instead of an error
    protected  identity required, local user provisioned lazily
    admin      protected, plus role == ADMIN read from the store at request time

The caller's external id comes from a header set by the authenticating
edge in front of the app; tokens are never parsed here.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from flask import Request
from sqlalchemy.exc import SQLAlchemyError

from logbook.errors import (
    InternalError,
    LogbookError,
    PermissionDeniedError,
    UnauthenticatedError,
)
from logbook.models import Role, User
from logbook.services.container import AppServices

logger = logging.getLogger(__name__)


class ProcedureKind(str, Enum):
    PUBLIC = 'public'
    VIEWER = 'viewer'
    PROTECTED = 'protected'
    ADMIN = 'admin'


@dataclass
class RequestInfo:
    """Caller metadata captured for audit entries."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> 'RequestInfo':
        forwarded = request.headers.get('X-Forwarded-For', '')
        ip = forwarded.split(',')[0].strip() or request.remote_addr
        return cls(ip_address=ip or None, user_agent=request.headers.get('User-Agent'))


@dataclass
class ProcedureContext:
    """Everything a procedure handler may touch."""
    services: AppServices
    external_id: Optional[str]
    user: Optional[User]
    request_info: RequestInfo

    @property
    def db(self):
        return self.services.db

    @property
    def now(self) -> datetime:
        return self.services.now()

    def require_user(self) -> User:
        if self.user is None:
            raise UnauthenticatedError()
        return self.user

    def audit(self, action, entity_type: str, entity_id: str, old_values=None, new_values=None):
        """Record an audit entry attributed to the caller. Never raises."""
        return self.services.audit.record(
            actor_id=self.require_user().id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            old_values=old_values,
            new_values=new_values,
            ip_address=self.request_info.ip_address,
            user_agent=self.request_info.user_agent,
        )


def external_id_from_request(services: AppServices, request: Request) -> Optional[str]:
    value = request.headers.get(services.config.identity.session_header, '')
    return value.strip() or None


def resolve_user(
    kind: ProcedureKind,
    services: AppServices,
    external_id: Optional[str],
) -> Optional[User]:
    """
    Run the identity and role stages for one procedure kind.

    Raises:
        UnauthenticatedError when a protected/admin call has no identity
        PermissionDeniedError when an admin call comes from a non-admin
        InternalError when the store or provider fails on a protected path
    """
    if kind is ProcedureKind.PUBLIC:
        return None

    if kind is ProcedureKind.VIEWER:
        if not external_id:
            return None
        try:
            user, _ = services.roles.ensure_user(external_id)
            return user
        except (LogbookError, SQLAlchemyError) as e:
            logger.warning(f'Viewer {external_id} unresolved, serving empty view: {e}')
            return None

    if not external_id:
        raise UnauthenticatedError()

    try:
        user, created = services.roles.ensure_user(external_id)
    except SQLAlchemyError as e:
        logger.error(f'Store failure resolving {external_id}: {e}')
        raise InternalError('Record store unavailable', retryable=True)

    if created:
        logger.info(f'First request from {external_id}, provisioned {user.id}')

    if kind is ProcedureKind.ADMIN and user.role != Role.ADMIN:
        logger.warning(f'Non-admin {user.id} denied admin procedure')
        raise PermissionDeniedError('Admin access required')

    return user
