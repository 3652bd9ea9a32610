"""
User and UserPreferences models.

A User mirrors one identity-provider account (external_id). The role column
is the record of truth for authorization decisions; identity-provider
metadata is only consulted when the row is first created.
"""

from datetime import date, datetime
from enum import Enum
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import String, DateTime, Date, ForeignKey, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from logbook.models.base import Base, new_id, utcnow

if TYPE_CHECKING:
    from logbook.models.aircraft import Aircraft
    from logbook.models.flight import Flight


class Role(str, Enum):
    USER = 'USER'
    PILOT = 'PILOT'
    ADMIN = 'ADMIN'


class Theme(str, Enum):
    LIGHT = 'LIGHT'
    DARK = 'DARK'
    SYSTEM = 'SYSTEM'


class UnitSystem(str, Enum):
    METRIC = 'METRIC'
    IMPERIAL = 'IMPERIAL'


class User(Base):
    """Local identity record, one per identity-provider account."""

    __tablename__ = 'users'

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)

    # Unique constraint is the backstop for concurrent first requests
    external_id: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        comment='Identity provider user id'
    )

    email: Mapped[str] = mapped_column(String(255), default='')
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    role: Mapped[Role] = mapped_column(
        SAEnum(Role, name='user_role', native_enum=False),
        default=Role.USER,
        nullable=False,
    )

    license: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    license_expiry: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    preferences: Mapped[Optional['UserPreferences']] = relationship(
        back_populates='user',
        cascade='all, delete-orphan',
        uselist=False,
    )
    aircraft: Mapped[List['Aircraft']] = relationship(
        back_populates='user',
        cascade='all, delete-orphan',
        passive_deletes=True,
    )
    flights: Mapped[List['Flight']] = relationship(
        back_populates='user',
        cascade='all, delete-orphan',
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f'<User {self.id} {self.email or "?"} {self.role.value}>'

    @property
    def display_name(self) -> str:
        name = ' '.join(part for part in (self.first_name, self.last_name) if part)
        return name or self.email or self.external_id

    def to_dict(self, include_preferences: bool = False) -> dict:
        """Convert to JSON-serializable dict for API responses."""
        result = {
            'id': self.id,
            'externalId': self.external_id,
            'email': self.email,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'role': self.role.value,
            'license': self.license,
            'licenseExpiry': self.license_expiry.isoformat() if self.license_expiry else None,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_preferences:
            result['preferences'] = self.preferences.to_dict() if self.preferences else None
        return result


class UserPreferences(Base):
    """Per-user display preferences. Not security-sensitive."""

    __tablename__ = 'user_preferences'

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        ForeignKey('users.id', ondelete='CASCADE'),
        unique=True,
        nullable=False,
    )

    theme: Mapped[Theme] = mapped_column(
        SAEnum(Theme, name='theme', native_enum=False), default=Theme.SYSTEM
    )
    unit_system: Mapped[UnitSystem] = mapped_column(
        SAEnum(UnitSystem, name='unit_system', native_enum=False), default=UnitSystem.METRIC
    )
    currency: Mapped[str] = mapped_column(String(3), default='USD')
    default_aircraft_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    favorite_airport: Mapped[Optional[str]] = mapped_column(String(4), nullable=True, default='KJFK')

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    user: Mapped[User] = relationship(back_populates='preferences')

    DEFAULTS = {
        'theme': Theme.SYSTEM.value,
        'unitSystem': UnitSystem.METRIC.value,
        'currency': 'USD',
        'defaultAircraftId': None,
        'favoriteAirport': 'KJFK',
    }

    def to_dict(self) -> dict:
        return {
            'theme': self.theme.value,
            'unitSystem': self.unit_system.value,
            'currency': self.currency,
            'defaultAircraftId': self.default_aircraft_id,
            'favoriteAirport': self.favorite_airport,
        }
