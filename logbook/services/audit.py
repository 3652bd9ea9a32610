"""
Audit logger: append-only persistence and queries for sensitive mutations.

Writes go through their own session, after the triggering operation has
committed, and never raise: an audit failure is logged and the caller's
operation still succeeds.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, func, select

from logbook.models import AuditAction, AuditLog, Database

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500
DEFAULT_HISTORY_LIMIT = 50
MAX_SUMMARY_LENGTH = 1000


@dataclass
class AuditQueryFilters:
    action: Optional[AuditAction] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


def _fmt(value: Any) -> str:
    if value is None:
        return 'none'
    return str(value)


def summarize_changes(
    old_values: Optional[Dict[str, Any]],
    new_values: Optional[Dict[str, Any]],
    action: Optional[AuditAction] = None,
) -> str:
    """Human-readable one-liner for the `changes` column. Display only."""
    if action is AuditAction.DELETE or (old_values and not new_values):
        return 'Deleted'
    if not old_values:
        return 'Created' if new_values else ''

    parts = []
    for key in sorted(set(old_values) | set(new_values)):
        before, after = old_values.get(key), new_values.get(key)
        if before != after:
            parts.append(f'{key}: {_fmt(before)} → {_fmt(after)}')

    summary = ', '.join(parts) or 'No changes'
    return summary[:MAX_SUMMARY_LENGTH]


class AuditLogger:

    def __init__(self, db: Database):
        self.db = db

    def record(
        self,
        actor_id: str,
        action: AuditAction,
        entity_type: str,
        entity_id: str,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        changes: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """
        Append one audit entry.

        Returns the stored entry, or None if the write failed.
        """
        try:
            entry = AuditLog(
                user_id=actor_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                old_values=old_values,
                new_values=new_values,
                changes=changes if changes is not None else summarize_changes(old_values, new_values, action),
                ip_address=ip_address,
                user_agent=user_agent[:512] if user_agent else None,
            )
            with self.db.session() as session:
                session.add(entry)
            logger.info(f'Audit {action.value} {entity_type}:{entity_id} by {actor_id}')
            return entry
        except Exception as e:
            logger.error(f'Failed to write audit entry {action.value} {entity_type}:{entity_id}: {e}')
            return None

    def for_entity(
        self, entity_type: str, entity_id: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> List[AuditLog]:
        """History of one entity, newest first."""
        stmt = (
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at.desc())
            .limit(min(limit, MAX_PAGE_SIZE))
        )
        with self.db.session() as session:
            return list(session.scalars(stmt).all())

    def for_actor(self, actor_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[AuditLog]:
        """Everything one user did, newest first."""
        stmt = (
            select(AuditLog)
            .where(AuditLog.user_id == actor_id)
            .order_by(AuditLog.created_at.desc())
            .limit(min(limit, MAX_PAGE_SIZE))
        )
        with self.db.session() as session:
            return list(session.scalars(stmt).all())

    def query(
        self, filters: AuditQueryFilters, limit: int = 100, skip: int = 0
    ) -> Tuple[List[AuditLog], int]:
        """Admin-wide search. The page size is capped at MAX_PAGE_SIZE."""
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        skip = max(0, skip)

        stmt = select(AuditLog)
        conds = []
        if filters.action is not None:
            conds.append(AuditLog.action == filters.action)
        if filters.start_date:
            conds.append(AuditLog.created_at >= filters.start_date)
        if filters.end_date:
            conds.append(AuditLog.created_at <= filters.end_date)
        if conds:
            stmt = stmt.where(and_(*conds))

        with self.db.session() as session:
            total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
            rows = session.scalars(
                stmt.order_by(AuditLog.created_at.desc()).limit(limit).offset(skip)
            ).all()
            return list(rows), int(total)
