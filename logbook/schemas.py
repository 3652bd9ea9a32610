"""
Input schemas for every logbook operation.

Pydantic models validate and normalize inbound payloads. Field names are
snake_case in Python and camelCase on the wire. `parse()` runs a schema and
turns any failure into a single ValidationFailed listing every offending
field, including the cross-field time checks on flights.

Date policy: flight dates are compared against the current UTC instant at
second granularity. Naive datetimes are taken as UTC, aware ones are
converted, and a date-only value means 00:00 UTC of that day. A time later
today is therefore rejected as not yet flown, while a date-only value for
today is accepted.
"""

import re
from datetime import date as date_type, datetime, time, timedelta, timezone
from typing import Any, ClassVar, Dict, List, Literal, Optional, Set, Tuple, Type, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    StrictBool,
    StrictInt,
    TypeAdapter,
    ValidationError,
    ValidationInfo,
    field_validator,
)
from pydantic.alias_generators import to_camel

from logbook.errors import ValidationFailed
from logbook.models import AuditAction, Role, Theme, UnitSystem

MIN_DURATION_HOURS = 0.1
EXCEEDS_DURATION = 'PIC or Dual time cannot exceed total flight duration'

_URL = TypeAdapter(HttpUrl)
_AIRPORT_PATTERN = re.compile(r'^[A-Z]{4}$')
_STATION_PATTERN = re.compile(r'^[A-Z0-9]{4}$')
_EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

S = TypeVar('S', bound='Schema')


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize a datetime to the naive-UTC storage convention."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _coerce_date_only(value: Any) -> Any:
    """Turn 'YYYY-MM-DD' strings and date objects into midnight datetimes."""
    if isinstance(value, str) and len(value.strip()) == 10:
        return datetime.combine(date_type.fromisoformat(value.strip()), time.min)
    if isinstance(value, date_type) and not isinstance(value, datetime):
        return datetime.combine(value, time.min)
    return value


def _airport_code(value: str) -> str:
    value = value.upper()
    if not _AIRPORT_PATTERN.match(value):
        raise ValueError('Airport code must be exactly 4 letters')
    return value


def _number(value: Any) -> Optional[float]:
    """Lenient numeric read used for cross-field checks on rejected input."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def duration_violations(
    duration: Optional[float],
    pic_time: Optional[float],
    dual_time: Optional[float],
) -> List[Tuple[str, str]]:
    """
    PIC and dual time may not exceed the total duration.

    Violations are reported against picTime / dualTime, never duration.
    """
    violations = []
    if duration is None:
        return violations
    if pic_time is not None and pic_time > duration:
        violations.append(('picTime', EXCEEDS_DURATION))
    if dual_time is not None and dual_time > duration:
        violations.append(('dualTime', EXCEEDS_DURATION))
    return violations


class Schema(BaseModel):
    """Base for all input schemas."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra='ignore',
        allow_inf_nan=False,
    )

    @classmethod
    def cross_field_errors(
        cls, parsed: Optional['Schema'], raw: Dict[str, Any]
    ) -> List[Tuple[str, str]]:
        """Invariants spanning several fields. Runs even if field checks failed."""
        return []


def parse(schema_cls: Type[S], payload: Any, now: Optional[datetime] = None) -> S:
    """
    Validate payload against schema_cls.

    now, when given, is the naive-UTC instant date checks compare against.

    Raises ValidationFailed with every violated field; never short-circuits
    on the first error.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationFailed(form_errors=['Expected a JSON object'])

    field_errors: Dict[str, List[str]] = {}
    form_errors: List[str] = []
    parsed = None

    try:
        parsed = schema_cls.model_validate(payload, context={'now': now})
    except ValidationError as exc:
        for error in exc.errors():
            name = '.'.join(str(part) for part in error['loc'])
            message = error['msg'].removeprefix('Value error, ')
            if name:
                field_errors.setdefault(name, []).append(message)
            else:
                form_errors.append(message)

    for name, message in schema_cls.cross_field_errors(parsed, payload):
        messages = field_errors.setdefault(name, [])
        if message not in messages:
            messages.append(message)

    if field_errors or form_errors:
        raise ValidationFailed(field_errors=field_errors, form_errors=form_errors)
    return parsed


# ============================================================================
# Common
# ============================================================================

class IdInput(Schema):
    id: str = Field(min_length=1)


class PaginationInput(Schema):
    skip: int = Field(default=0, ge=0)
    take: int = Field(default=10, ge=1, le=100)


# ============================================================================
# Aircraft
# ============================================================================

class _AircraftFields(Schema):

    @field_validator('registration', check_fields=False)
    @classmethod
    def _upper_registration(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value

    @field_validator('image_url', check_fields=False)
    @classmethod
    def _check_image_url(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        try:
            _URL.validate_python(value)
        except ValidationError:
            raise ValueError('Image URL must be a valid URL')
        return value


class AircraftCreate(_AircraftFields):
    make: str = Field(min_length=1, max_length=100)
    model: str = Field(min_length=1, max_length=100)
    registration: str = Field(min_length=1, max_length=20)
    image_url: Optional[str] = None
    status: str = Field(default='operational', max_length=50)
    flight_hours: Optional[float] = Field(default=None, ge=0)


class AircraftUpdate(_AircraftFields):
    id: str = Field(min_length=1)
    make: Optional[str] = Field(default=None, min_length=1, max_length=100)
    model: Optional[str] = Field(default=None, min_length=1, max_length=100)
    registration: Optional[str] = Field(default=None, min_length=1, max_length=20)
    image_url: Optional[str] = None
    status: Optional[str] = Field(default=None, max_length=50)
    flight_hours: Optional[float] = Field(default=None, ge=0)

    NOT_NULL: ClassVar[Set[str]] = {'make', 'model', 'registration', 'status'}

    def changes(self) -> Dict[str, Any]:
        """Fields the caller actually sent, minus nulls on required columns."""
        data = self.model_dump(exclude_unset=True, exclude={'id'})
        return {k: v for k, v in data.items() if not (k in self.NOT_NULL and v is None)}


class AircraftListInput(Schema):
    include_archived: StrictBool = False


# ============================================================================
# Flights
# ============================================================================

class _FlightFields(Schema):

    @field_validator('date', mode='before', check_fields=False)
    @classmethod
    def _coerce_date(cls, value: Any) -> Any:
        return _coerce_date_only(value)

    @field_validator('date', check_fields=False)
    @classmethod
    def _not_in_future(cls, value: Optional[datetime], info: ValidationInfo) -> Optional[datetime]:
        if value is None:
            return value
        value = to_naive_utc(value)
        now = (info.context or {}).get('now') or utcnow()
        if value > now:
            raise ValueError('Flight date cannot be in the future')
        return value

    @field_validator('departure_code', 'arrival_code', check_fields=False)
    @classmethod
    def _upper_code(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value

    @classmethod
    def cross_field_errors(cls, parsed, raw):
        if parsed is not None:
            return duration_violations(parsed.duration, parsed.pic_time, parsed.dual_time)
        return duration_violations(
            _number(raw.get('duration')),
            _number(raw.get('picTime', raw.get('pic_time'))),
            _number(raw.get('dualTime', raw.get('dual_time'))),
        )


class FlightCreate(_FlightFields):
    aircraft_id: str = Field(min_length=1)
    date: datetime
    departure_code: str = Field(min_length=3, max_length=4)
    arrival_code: str = Field(min_length=3, max_length=4)
    duration: float = Field(ge=MIN_DURATION_HOURS)
    pic_time: float = Field(default=0.0, ge=0)
    dual_time: float = Field(default=0.0, ge=0)
    day_landings: StrictInt = Field(default=0, ge=0)
    night_landings: StrictInt = Field(default=0, ge=0)
    remarks: Optional[str] = Field(default=None, max_length=500)


class FlightUpdate(_FlightFields):
    id: str = Field(min_length=1)
    aircraft_id: Optional[str] = Field(default=None, min_length=1)
    date: Optional[datetime] = None
    departure_code: Optional[str] = Field(default=None, min_length=3, max_length=4)
    arrival_code: Optional[str] = Field(default=None, min_length=3, max_length=4)
    duration: Optional[float] = Field(default=None, ge=MIN_DURATION_HOURS)
    pic_time: Optional[float] = Field(default=None, ge=0)
    dual_time: Optional[float] = Field(default=None, ge=0)
    day_landings: Optional[StrictInt] = Field(default=None, ge=0)
    night_landings: Optional[StrictInt] = Field(default=None, ge=0)
    remarks: Optional[str] = Field(default=None, max_length=500)

    NOT_NULL: ClassVar[Set[str]] = {
        'aircraft_id', 'date', 'departure_code', 'arrival_code', 'duration',
        'pic_time', 'dual_time', 'day_landings', 'night_landings',
    }

    def changes(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_unset=True, exclude={'id'})
        return {k: v for k, v in data.items() if not (k in self.NOT_NULL and v is None)}


class FlightFilters(Schema):
    search: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    flight_type: Optional[Literal['PIC', 'DUAL', 'SOLO']] = None

    @field_validator('start_date', mode='before')
    @classmethod
    def _start_of_day(cls, value: Any) -> Any:
        return _coerce_date_only(value)

    @field_validator('end_date', mode='before')
    @classmethod
    def _end_of_day(cls, value: Any) -> Any:
        # A date-only end bound includes the whole day
        if isinstance(value, str) and len(value.strip()) == 10:
            day = date_type.fromisoformat(value.strip())
            return datetime.combine(day, time.min) + timedelta(days=1) - timedelta(microseconds=1)
        return _coerce_date_only(value)

    @field_validator('start_date', 'end_date')
    @classmethod
    def _naive(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value else value


class RecentFlightsInput(Schema):
    limit: int = Field(default=10, ge=1, le=100)


# ============================================================================
# Users & preferences
# ============================================================================

class ProfileUpdate(Schema):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    license: Optional[str] = Field(default=None, max_length=100)
    license_expiry: Optional[date_type] = None


class PreferencesUpdate(Schema):
    theme: Optional[Theme] = None
    unit_system: Optional[UnitSystem] = None
    currency: Optional[str] = Field(default=None, min_length=1, max_length=3)
    default_aircraft_id: Optional[str] = None
    favorite_airport: Optional[str] = None

    @field_validator('currency')
    @classmethod
    def _upper_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value

    @field_validator('favorite_airport')
    @classmethod
    def _favorite_airport(cls, value: Optional[str]) -> Optional[str]:
        return _airport_code(value) if value is not None else value


class StationInput(Schema):
    icao: str

    @field_validator('icao')
    @classmethod
    def _station(cls, value: str) -> str:
        value = value.upper()
        if not _STATION_PATTERN.match(value):
            raise ValueError('ICAO station identifier must be 4 characters')
        return value


class FavoriteAirportInput(Schema):
    """Stored as the user's favorite airport, so held to the preferences rule."""

    icao: str

    @field_validator('icao')
    @classmethod
    def _airport(cls, value: str) -> str:
        return _airport_code(value)


# ============================================================================
# Admin
# ============================================================================

class VerifyPilotInput(Schema):
    user_id: str = Field(min_length=1)
    verified: StrictBool


class UpdateRoleInput(Schema):
    user_id: str = Field(min_length=1)
    role: Role


class UserIdInput(Schema):
    user_id: str = Field(min_length=1)


class AuditLogQuery(Schema):
    action: Optional[AuditAction] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: int = Field(default=100, ge=1)
    skip: int = Field(default=0, ge=0)

    @field_validator('start_date', 'end_date', mode='before')
    @classmethod
    def _coerce(cls, value: Any) -> Any:
        return _coerce_date_only(value)

    @field_validator('start_date', 'end_date')
    @classmethod
    def _naive(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value else value


class EntityHistoryInput(Schema):
    entity_type: str = Field(min_length=1)
    entity_id: str = Field(min_length=1)
    limit: int = Field(default=50, ge=1, le=500)


class UserActivityInput(Schema):
    user_id: str = Field(min_length=1)
    limit: int = Field(default=50, ge=1, le=500)


class SuspiciousActivityInput(Schema):
    limit: int = Field(default=50, ge=1, le=1000)


# ============================================================================
# Public HTTP endpoints
# ============================================================================

class FeedbackSubmission(Schema):
    feedback: str = Field(min_length=10, max_length=2000)
    email: Optional[str] = None

    @field_validator('email')
    @classmethod
    def _email(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        if not _EMAIL_PATTERN.match(value):
            raise ValueError('Invalid email address')
        return value


class SetRoleRequest(Schema):
    user_id: str = Field(min_length=1)
    role: Role
