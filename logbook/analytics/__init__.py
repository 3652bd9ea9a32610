"""
Analytics module for the pilot logbook.

Derived statistics over a user's flights, computed with NumPy:
- Lifetime totals and 90-day landing currency
- Summary averages
- Hours per aircraft and per calendar month
"""

from logbook.analytics.statistics import (
    FlightSeries,
    FlightStats,
    FlightSummary,
    compute_stats,
    compute_summary,
    hours_by_type,
    hours_by_month,
)

__all__ = [
    'FlightSeries',
    'FlightStats',
    'FlightSummary',
    'compute_stats',
    'compute_summary',
    'hours_by_type',
    'hours_by_month',
]
