"""
Logbook statistics using NumPy.

Every function works on the full flight set of one user and is pure: the
caller loads the rows (owner-scoped) and passes `now` explicitly.

Computed views:
1. Totals: flights, hours, PIC, dual, landings
2. Currency: landings in the trailing 90 days against the fixed threshold
3. Summary: total hours, flight count, average flight length
4. Hours by aircraft type and by calendar month

Missing numeric values count as zero. Results never contain NaN.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)

CURRENCY_WINDOW_DAYS = 90

# Regulatory passenger-carrying currency: 3 landings in 90 days
CURRENCY_MIN_LANDINGS = 3

MONTHS_IN_SERIES = 12
MONTH_ABBR = ('Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun',
              'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec')
UNKNOWN_AIRCRAFT = 'Unknown'


def _column(flights: Sequence[Any], attr: str) -> np.ndarray:
    values = np.array([getattr(f, attr, None) or 0 for f in flights], dtype=np.float64)
    return np.nan_to_num(values, nan=0.0, posinf=0.0, neginf=0.0)


def _round(value: float) -> float:
    return round(float(value), 2)


@dataclass
class FlightSeries:
    """
    Column view of a user's flights.

    Building it once lets each statistic be a vectorized reduction instead
    of a Python loop over ORM rows.
    """
    dates: np.ndarray
    duration: np.ndarray
    pic_time: np.ndarray
    dual_time: np.ndarray
    landings: np.ndarray
    aircraft_ids: List[Optional[str]]

    @classmethod
    def from_flights(cls, flights: Sequence[Any]) -> 'FlightSeries':
        dates = np.array(
            [f.date if f.date is not None else datetime.min for f in flights],
            dtype='datetime64[us]',
        )
        return cls(
            dates=dates,
            duration=_column(flights, 'duration'),
            pic_time=_column(flights, 'pic_time'),
            dual_time=_column(flights, 'dual_time'),
            landings=_column(flights, 'day_landings') + _column(flights, 'night_landings'),
            aircraft_ids=[getattr(f, 'aircraft_id', None) for f in flights],
        )

    def __len__(self) -> int:
        return len(self.duration)

    def since(self, cutoff: datetime) -> np.ndarray:
        """Boolean mask of flights dated at or after cutoff."""
        return self.dates >= np.datetime64(cutoff, 'us')


@dataclass
class FlightStats:
    total_flights: int = 0
    total_hours: float = 0.0
    total_pic_hours: float = 0.0
    total_dual_hours: float = 0.0
    total_landings: int = 0
    last_90_days_flights: int = 0
    last_90_days_landings: int = 0
    is_current: bool = False

    def to_dict(self) -> dict:
        return {
            'totalFlights': self.total_flights,
            'totalHours': self.total_hours,
            'totalPicHours': self.total_pic_hours,
            'totalDualHours': self.total_dual_hours,
            'totalLandings': self.total_landings,
            'recency': {
                'last90DaysFlights': self.last_90_days_flights,
                'last90DaysLandings': self.last_90_days_landings,
                'isCurrent': self.is_current,
            },
        }


@dataclass
class FlightSummary:
    total_hours: float = 0.0
    total_flights: int = 0
    average_flight_hours: float = 0.0

    def to_dict(self) -> dict:
        return {
            'totalHours': self.total_hours,
            'totalFlights': self.total_flights,
            'averageFlightHours': self.average_flight_hours,
        }


def compute_stats(flights: Sequence[Any], now: datetime) -> FlightStats:
    """Lifetime totals plus the 90-day currency block."""
    series = FlightSeries.from_flights(flights)
    if not len(series):
        return FlightStats()

    recent = series.since(now - timedelta(days=CURRENCY_WINDOW_DAYS))
    recent_landings = int(series.landings[recent].sum())

    return FlightStats(
        total_flights=len(series),
        total_hours=_round(series.duration.sum()),
        total_pic_hours=_round(series.pic_time.sum()),
        total_dual_hours=_round(series.dual_time.sum()),
        total_landings=int(series.landings.sum()),
        last_90_days_flights=int(recent.sum()),
        last_90_days_landings=recent_landings,
        is_current=recent_landings >= CURRENCY_MIN_LANDINGS,
    )


def compute_summary(flights: Sequence[Any]) -> FlightSummary:
    """Total hours, flight count and average flight length."""
    series = FlightSeries.from_flights(flights)
    count = len(series)
    if not count:
        return FlightSummary()

    total = _round(series.duration.sum())
    return FlightSummary(
        total_hours=total,
        total_flights=count,
        average_flight_hours=_round(total / count),
    )


def hours_by_type(
    flights: Sequence[Any],
    aircraft_names: Mapping[str, str],
) -> List[Dict[str, Any]]:
    """
    Hours per aircraft, largest first.

    aircraft_names maps aircraft id to display name; ids missing from it
    (deleted aircraft) are labelled 'Unknown'.
    """
    series = FlightSeries.from_flights(flights)
    if not len(series):
        return []

    ids = np.array([a or '' for a in series.aircraft_ids], dtype=object)
    rows = []
    for aircraft_id in dict.fromkeys(ids):
        hours = series.duration[ids == aircraft_id].sum()
        rows.append({
            'aircraftId': aircraft_id or None,
            'aircraftName': aircraft_names.get(aircraft_id) or UNKNOWN_AIRCRAFT,
            'totalHours': _round(hours),
        })

    rows.sort(key=lambda r: r['totalHours'], reverse=True)
    return rows


def month_label(year: int, month: int) -> str:
    return f'{MONTH_ABBR[month - 1]} {year}'


def trailing_months(now: datetime, count: int = MONTHS_IN_SERIES) -> List[tuple]:
    """(year, month) pairs for the last `count` months, oldest first, ending at now."""
    months = []
    year, month = now.year, now.month
    for _ in range(count):
        months.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    months.reverse()
    return months


def hours_by_month(flights: Sequence[Any], now: datetime) -> List[Dict[str, Any]]:
    """
    Exactly 12 entries, one per calendar month up to and including the
    current one, oldest first. Months without flights report 0 hours.
    """
    months = trailing_months(now)
    index = {ym: i for i, ym in enumerate(months)}
    totals = np.zeros(len(months), dtype=np.float64)

    series = FlightSeries.from_flights(flights)
    if len(series):
        years = series.dates.astype('datetime64[Y]').astype(int) + 1970
        month_nums = series.dates.astype('datetime64[M]').astype(int) % 12 + 1
        for pos, key in enumerate(zip(years.tolist(), month_nums.tolist())):
            slot = index.get(key)
            if slot is not None:
                totals[slot] += series.duration[pos]

    return [
        {'month': month_label(year, month), 'hours': _round(totals[i])}
        for i, (year, month) in enumerate(months)
    ]
