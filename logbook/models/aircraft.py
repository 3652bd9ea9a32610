"""
Aircraft model - a pilot's own fleet entry.

Each aircraft belongs to exactly one user. "Deleting" an aircraft normally
archives it; a permanent delete is only allowed once no flight references it.
"""

from datetime import datetime
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import String, DateTime, Boolean, Float, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from logbook.models.base import Base, new_id, utcnow

if TYPE_CHECKING:
    from logbook.models.flight import Flight
    from logbook.models.user import User


class Aircraft(Base):
    """
    Aircraft owned by a single user.

    Fields:
        make: Manufacturer (e.g., 'Cessna')
        model: Model designation (e.g., '172')
        registration: Tail number (e.g., 'N12345'), stored uppercase
        status: Free-text status, defaults to 'operational'
        image_url: Optional photo URL
        is_archived: Soft-delete flag, reversible via restore
    """

    __tablename__ = 'aircraft'

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)

    user_id: Mapped[str] = mapped_column(
        ForeignKey('users.id', ondelete='CASCADE'),
        nullable=False,
        comment='Owning user'
    )

    make: Mapped[str] = mapped_column(String(100), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)

    registration: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
        comment='Aircraft registration (tail number)'
    )

    status: Mapped[str] = mapped_column(String(50), default='operational')
    image_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)

    # Hours flown before the aircraft entered this logbook
    flight_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    user: Mapped['User'] = relationship(back_populates='aircraft')
    flights: Mapped[List['Flight']] = relationship(back_populates='aircraft')

    __table_args__ = (
        # Owner-scoped fleet listing
        Index('ix_aircraft_user_archived', 'user_id', 'is_archived'),
    )

    def __repr__(self) -> str:
        return f'<Aircraft {self.id} {self.registration} {self.make} {self.model}>'

    @property
    def display_name(self) -> str:
        """Name used in charts and dropdowns."""
        return self.model or 'Unknown'

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict for API responses."""
        return {
            'id': self.id,
            'userId': self.user_id,
            'make': self.make,
            'model': self.model,
            'registration': self.registration,
            'status': self.status,
            'imageUrl': self.image_url,
            'flightHours': self.flight_hours,
            'isArchived': self.is_archived,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }

    def snapshot(self) -> dict:
        """Audit-friendly subset of fields."""
        return {
            'make': self.make,
            'model': self.model,
            'registration': self.registration,
            'status': self.status,
            'isArchived': self.is_archived,
        }
