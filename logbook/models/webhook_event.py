"""
WebhookEvent model - delivery ids of processed identity-provider notifications.

The provider retries deliveries; a delivery id seen before is acknowledged
without being applied a second time.
"""

from datetime import datetime

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from logbook.models.base import Base, utcnow


class WebhookEvent(Base):

    __tablename__ = 'webhook_events'

    delivery_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False, default='')
    processed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f'<WebhookEvent {self.delivery_id} {self.event_type}>'
