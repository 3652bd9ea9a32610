"""
Admin procedures. Every call passes the ADMIN role gate first.

- admin.getStats()                      system-wide counts
- admin.recentUsers()                   five newest users
- admin.getAllUsers(skip, take)         page + total
- admin.verifyPilot(userId, verified)   USER <-> PILOT
- admin.updateUserRole(userId, role)
- admin.deleteUser(userId)              never the caller's own account
- admin.getAuditLogs(filters)           page size capped at 500
- admin.getEntityHistory(entityType, entityId, limit)
- admin.getUserActivity(userId, limit)
- admin.getSuspiciousActivity(limit)    payload monitor ring, newest first
"""

import logging

from sqlalchemy import func, select

from logbook.api.rpc import Router, register_router
from logbook.authz import ProcedureContext
from logbook.errors import NotFoundError, PermissionDeniedError
from logbook.models import Aircraft, AuditAction, Flight, User
from logbook.schemas import (
    AuditLogQuery,
    EntityHistoryInput,
    PaginationInput,
    SuspiciousActivityInput,
    UpdateRoleInput,
    UserActivityInput,
    UserIdInput,
    VerifyPilotInput,
)
from logbook.services.audit import AuditQueryFilters

logger = logging.getLogger(__name__)

admin = register_router(Router('admin'))

RECENT_USERS = 5


@admin.query('getStats', kind='admin')
def get_stats(ctx: ProcedureContext, data):
    with ctx.db.session() as session:
        return {
            'totalUsers': session.scalar(select(func.count()).select_from(User)),
            'totalFlights': session.scalar(select(func.count()).select_from(Flight)),
            'totalAircraft': session.scalar(select(func.count()).select_from(Aircraft)),
        }


@admin.query('recentUsers', kind='admin')
def recent_users(ctx: ProcedureContext, data):
    with ctx.db.session() as session:
        rows = session.scalars(
            select(User).order_by(User.created_at.desc()).limit(RECENT_USERS)
        ).all()
        return [u.to_dict() for u in rows]


@admin.query('getAllUsers', kind='admin', schema=PaginationInput)
def get_all_users(ctx: ProcedureContext, data: PaginationInput):
    with ctx.db.session() as session:
        rows = session.scalars(
            select(User).order_by(User.created_at.desc()).offset(data.skip).limit(data.take)
        ).all()
        total = session.scalar(select(func.count()).select_from(User))
        return {'users': [u.to_dict() for u in rows], 'total': total}


@admin.mutation('verifyPilot', kind='admin', schema=VerifyPilotInput)
def verify_pilot(ctx: ProcedureContext, data: VerifyPilotInput):
    user = ctx.services.roles.verify_pilot(
        actor_id=ctx.user.id,
        target_id=data.user_id,
        verified=data.verified,
        ip_address=ctx.request_info.ip_address,
        user_agent=ctx.request_info.user_agent,
    )
    return user.to_dict()


@admin.mutation('updateUserRole', kind='admin', schema=UpdateRoleInput)
def update_user_role(ctx: ProcedureContext, data: UpdateRoleInput):
    user = ctx.services.roles.change_role(
        actor_id=ctx.user.id,
        target_id=data.user_id,
        role=data.role,
        ip_address=ctx.request_info.ip_address,
        user_agent=ctx.request_info.user_agent,
    )
    return user.to_dict()


@admin.mutation('deleteUser', kind='admin', schema=UserIdInput)
def delete_user(ctx: ProcedureContext, data: UserIdInput):
    if data.user_id == ctx.user.id:
        raise PermissionDeniedError('Cannot delete your own account')

    with ctx.db.session() as session:
        target = session.get(User, data.user_id)
        if target is None:
            raise NotFoundError('User not found')
        snapshot = {
            'id': target.id,
            'externalId': target.external_id,
            'email': target.email,
            'firstName': target.first_name,
            'lastName': target.last_name,
            'role': target.role.value,
        }
        session.delete(target)

    logger.warning(f'Admin {ctx.user.id} deleted user {data.user_id} ({snapshot["email"]})')
    ctx.audit(AuditAction.DELETE, 'User', data.user_id, old_values=snapshot)
    return snapshot


@admin.query('getAuditLogs', kind='admin', schema=AuditLogQuery)
def get_audit_logs(ctx: ProcedureContext, data: AuditLogQuery):
    filters = AuditQueryFilters(
        action=data.action,
        start_date=data.start_date,
        end_date=data.end_date,
    )
    rows, total = ctx.services.audit.query(filters, limit=data.limit, skip=data.skip)
    return {'logs': [r.to_dict() for r in rows], 'total': total}


@admin.query('getEntityHistory', kind='admin', schema=EntityHistoryInput)
def get_entity_history(ctx: ProcedureContext, data: EntityHistoryInput):
    rows = ctx.services.audit.for_entity(data.entity_type, data.entity_id, limit=data.limit)
    return [r.to_dict() for r in rows]


@admin.query('getUserActivity', kind='admin', schema=UserActivityInput)
def get_user_activity(ctx: ProcedureContext, data: UserActivityInput):
    rows = ctx.services.audit.for_actor(data.user_id, limit=data.limit)
    return [r.to_dict() for r in rows]


@admin.query('getSuspiciousActivity', kind='admin', schema=SuspiciousActivityInput)
def get_suspicious_activity(ctx: ProcedureContext, data: SuspiciousActivityInput):
    return [d.to_dict() for d in ctx.services.monitor.recent(data.limit)]
