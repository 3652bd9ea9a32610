"""
AuditLog model - append-only record of sensitive mutations.

Rows are never updated or deleted by the application. old_values and
new_values hold the structured snapshots verbatim; `changes` is a
human-readable summary for display only.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, String, DateTime, Index, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from logbook.models.base import Base, new_id, utcnow


class AuditAction(str, Enum):
    CREATE = 'CREATE'
    UPDATE = 'UPDATE'
    DELETE = 'DELETE'
    RESTORE = 'RESTORE'
    ROLE_CHANGE = 'ROLE_CHANGE'
    VERIFY = 'VERIFY'
    UNVERIFY = 'UNVERIFY'


class AuditLog(Base):
    """One audited action."""

    __tablename__ = 'audit_logs'

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)

    # Not a foreign key: entries outlive the actors they describe
    user_id: Mapped[str] = mapped_column(String(32), nullable=False, comment='Acting user')

    action: Mapped[AuditAction] = mapped_column(
        SAEnum(AuditAction, name='audit_action', native_enum=False),
        nullable=False,
    )
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)

    old_values: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    new_values: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    changes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_audit_logs_entity', 'entity_type', 'entity_id', 'created_at'),
        Index('ix_audit_logs_actor', 'user_id', 'created_at'),
        Index('ix_audit_logs_action', 'action', 'created_at'),
    )

    def __repr__(self) -> str:
        return f'<AuditLog {self.action.value} {self.entity_type}:{self.entity_id} by {self.user_id}>'

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'userId': self.user_id,
            'action': self.action.value,
            'entityType': self.entity_type,
            'entityId': self.entity_id,
            'oldValues': self.old_values,
            'newValues': self.new_values,
            'changes': self.changes,
            'ipAddress': self.ip_address,
            'userAgent': self.user_agent,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }
