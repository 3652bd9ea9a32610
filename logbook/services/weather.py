"""
METAR service - current airport weather from AVWX.

Best-effort external feed:
- Reports are cached per station for a fixed TTL
- Any provider failure (no key, HTTP error, timeout, bad payload) falls
  back to a clearly labelled mock observation, which is cached the same way
- Ceiling is the lowest BKN/OVC layer in feet; metre visibilities are
  converted to statute miles
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from logbook.config import WeatherConfig

logger = logging.getLogger(__name__)

METRES_PER_STATUTE_MILE = 1609.34
CEILING_LAYERS = ('BKN', 'OVC')


@dataclass
class MetarReport:
    """Parsed observation for one station."""
    icao: str
    raw: str
    station: str
    flight_category: str
    wind_direction: Optional[float] = None
    wind_speed: Optional[float] = None
    wind_gust: Optional[float] = None
    wind_unit: str = 'KT'
    visibility: Optional[float] = None
    visibility_unit: str = 'SM'
    ceiling: Optional[int] = None
    temperature: Optional[float] = None
    dewpoint: Optional[float] = None
    time: str = ''
    is_mock: bool = False

    @classmethod
    def from_avwx(cls, icao: str, data: Dict[str, Any]) -> 'MetarReport':
        """Build a report from an AVWX /metar response."""
        units = data.get('units') or {}

        ceiling = None
        for layer in data.get('clouds') or []:
            altitude = layer.get('altitude')
            if layer.get('type') in CEILING_LAYERS and altitude is not None:
                feet = int(altitude) * 100
                if ceiling is None or feet < ceiling:
                    ceiling = feet

        visibility = _value(data.get('visibility'))
        visibility_unit = units.get('visibility') or 'm'
        if visibility_unit == 'm' and visibility is not None:
            visibility = round(visibility / METRES_PER_STATUTE_MILE, 1)
            visibility_unit = 'SM'

        station = data.get('station') or icao
        return cls(
            icao=station,
            raw=data.get('raw') or '',
            station=station,
            flight_category=data.get('flight_rules') or 'UNKNOWN',
            wind_direction=_value(data.get('wind_direction')),
            wind_speed=_value(data.get('wind_speed')),
            wind_gust=_value(data.get('wind_gust')),
            wind_unit=units.get('wind_speed') or 'KT',
            visibility=visibility,
            visibility_unit=visibility_unit,
            ceiling=ceiling,
            temperature=_value(data.get('temperature')),
            dewpoint=_value(data.get('dewpoint')),
            time=(data.get('time') or {}).get('dt') or _now_iso(),
        )

    @classmethod
    def mock(cls, icao: str) -> 'MetarReport':
        """Fixed VFR observation used when the feed is unavailable."""
        icao = icao.upper()
        return cls(
            icao=icao,
            raw=f'{icao} 031851Z 31008KT 10SM FEW250 M04/M17 A3034 RMK AO2 SLP279 T10441172',
            station=f'{icao} (Mock Data)',
            flight_category='VFR',
            wind_direction=310,
            wind_speed=8,
            visibility=10,
            temperature=-4,
            dewpoint=-17,
            time=_now_iso(),
            is_mock=True,
        )

    def to_dict(self) -> dict:
        return {
            'icao': self.icao,
            'raw': self.raw,
            'station': self.station,
            'flightCategory': self.flight_category,
            'wind': {
                'direction': self.wind_direction,
                'speed': self.wind_speed,
                'gust': self.wind_gust,
                'unit': self.wind_unit,
            },
            'visibility': {'value': self.visibility, 'unit': self.visibility_unit},
            'ceiling': {'value': self.ceiling, 'unit': 'FT'},
            'temperature': self.temperature,
            'dewpoint': self.dewpoint,
            'time': self.time,
        }


def _value(field: Any) -> Optional[float]:
    if isinstance(field, dict):
        return field.get('value')
    return None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MetarService:
    """
    Fetches METAR observations with a per-station TTL cache.

    The cache and lock live on the instance; construct one per app.
    """

    def __init__(
        self,
        weather_config: Optional[WeatherConfig] = None,
        clock: Optional[Callable[[], float]] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = weather_config or WeatherConfig()
        self._clock = clock or time.time
        self.session = session or requests.Session()
        self.session.headers.setdefault('User-Agent', 'PilotLogbook/1.0')

        # Cache: icao -> (MetarReport, fetched_at)
        self._cache: Dict[str, Tuple[MetarReport, float]] = {}
        self._lock = threading.RLock()

        if not self.config.is_configured:
            logger.warning('AVWX API key not configured - METAR lookups will use mock data')

    def get_metar(self, icao: str) -> MetarReport:
        """Cached report for icao; never raises."""
        icao = icao.strip().upper()

        cached = self._get_cached(icao)
        if cached is not None:
            logger.debug(f'METAR cache hit for {icao}')
            return cached

        report = self.fetch(icao)
        if report is None:
            logger.info(f'Using mock METAR data for {icao}')
            report = MetarReport.mock(icao)

        self._set_cached(icao, report)
        return report

    def fetch(self, icao: str) -> Optional[MetarReport]:
        """Uncached AVWX lookup. Returns None on any failure."""
        if not self.config.is_configured:
            return None

        try:
            response = self.session.get(
                f'{self.config.base_url}/metar/{icao}',
                params={'token': self.config.api_key},
                timeout=self.config.timeout_seconds,
            )
            if response.status_code != 200:
                logger.warning(f'AVWX API error for {icao}: {response.status_code}')
                return None

            data = response.json()
            if not isinstance(data, dict) or data.get('error'):
                logger.warning(f'AVWX error for {icao}: {data}')
                return None

            report = MetarReport.from_avwx(icao, data)
            logger.info(f'Fetched METAR for {icao}: {report.flight_category}')
            return report

        except requests.RequestException as e:
            logger.error(f'Failed to fetch METAR for {icao}: {e}')
            return None
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f'Error parsing METAR for {icao}: {e}')
            return None

    def _get_cached(self, icao: str) -> Optional[MetarReport]:
        with self._lock:
            if icao in self._cache:
                report, fetched_at = self._cache[icao]
                if self._clock() - fetched_at <= self.config.cache_ttl_seconds:
                    return report
                del self._cache[icao]
        return None

    def _set_cached(self, icao: str, report: MetarReport) -> None:
        with self._lock:
            self._cache[icao] = (report, self._clock())

            # Limit cache size
            if len(self._cache) > 500:
                sorted_items = sorted(self._cache.items(), key=lambda x: x[1][1])
                for key, _ in sorted_items[:100]:
                    del self._cache[key]

    @property
    def stats(self) -> dict:
        """Get service statistics."""
        with self._lock:
            return {
                'cache_size': len(self._cache),
                'api_configured': self.config.is_configured,
            }
