"""
Flight model - one logbook entry.

Design notes:
- Owned by one user, references one aircraft owned by the same user
- Times are decimal hours; landings are split day/night
- `landings` is the day+night total, kept for older readers and
  maintained at write time
"""

from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Float, Integer, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from logbook.models.base import Base, new_id, utcnow

if TYPE_CHECKING:
    from logbook.models.aircraft import Aircraft
    from logbook.models.user import User


class Flight(Base):
    """A single logged flight."""

    __tablename__ = 'flights'

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)

    user_id: Mapped[str] = mapped_column(
        ForeignKey('users.id', ondelete='CASCADE'),
        nullable=False,
    )

    # No ondelete: permanent aircraft deletes are pre-checked for references
    aircraft_id: Mapped[str] = mapped_column(
        ForeignKey('aircraft.id'),
        nullable=False,
        index=True,
    )

    date: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        comment='Flight date, naive UTC'
    )

    departure_code: Mapped[str] = mapped_column(String(4), nullable=False)
    arrival_code: Mapped[str] = mapped_column(String(4), nullable=False)

    duration: Mapped[float] = mapped_column(Float, nullable=False, comment='Total time, hours')
    pic_time: Mapped[float] = mapped_column(Float, default=0.0, comment='Pilot-in-command, hours')
    dual_time: Mapped[float] = mapped_column(Float, default=0.0, comment='Dual received, hours')

    day_landings: Mapped[int] = mapped_column(Integer, default=0)
    night_landings: Mapped[int] = mapped_column(Integer, default=0)
    landings: Mapped[int] = mapped_column(Integer, default=0)

    remarks: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    user: Mapped['User'] = relationship(back_populates='flights')
    aircraft: Mapped['Aircraft'] = relationship(back_populates='flights')

    __table_args__ = (
        # Owner-scoped date range queries (stats, filters)
        Index('ix_flights_user_date', 'user_id', 'date'),
    )

    def __repr__(self) -> str:
        return f'<Flight {self.id} {self.departure_code}->{self.arrival_code} {self.duration or 0:.1f}h>'

    @property
    def total_landings(self) -> int:
        return (self.day_landings or 0) + (self.night_landings or 0)

    def to_dict(self, include_aircraft: bool = False) -> dict:
        """Convert to JSON-serializable dict for API responses."""
        result = {
            'id': self.id,
            'userId': self.user_id,
            'aircraftId': self.aircraft_id,
            'date': self.date.isoformat() if self.date else None,
            'departureCode': self.departure_code,
            'arrivalCode': self.arrival_code,
            'duration': self.duration,
            'picTime': self.pic_time,
            'dualTime': self.dual_time,
            'dayLandings': self.day_landings,
            'nightLandings': self.night_landings,
            'landings': self.landings,
            'remarks': self.remarks,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_aircraft:
            result['aircraft'] = self.aircraft.to_dict() if self.aircraft else None
        return result

    def snapshot(self) -> dict:
        """Audit-friendly copy of the logged values."""
        return {
            'date': self.date.isoformat() if self.date else None,
            'departureCode': self.departure_code,
            'arrivalCode': self.arrival_code,
            'duration': self.duration,
            'picTime': self.pic_time,
            'dualTime': self.dual_time,
            'dayLandings': self.day_landings,
            'nightLandings': self.night_landings,
            'remarks': self.remarks,
            'aircraftId': self.aircraft_id,
        }
