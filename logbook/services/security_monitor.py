"""
Heuristic inspection of free-text submissions.

Flags three kinds of suspicious payload:
- oversized: content longer than a fixed threshold
- repeated_pattern: very low character diversity on large input (fuzzing)
- malformed: known script-injection or SQL-injection markers

Detections are logged and kept in a bounded ring for admin review. They
never reject a request on their own.
"""

import logging
import re
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, List, Optional

from logbook.config import MonitorConfig
from logbook.models.base import utcnow

logger = logging.getLogger(__name__)

SUSPICIOUS_PATTERNS = [
    re.compile(r'<script', re.IGNORECASE),
    re.compile(r'javascript:', re.IGNORECASE),
    re.compile(r'onerror\s*=', re.IGNORECASE),
    re.compile(r'onclick\s*=', re.IGNORECASE),
    re.compile(r"'.*or.*'.*=", re.IGNORECASE),
    re.compile(r';\s*drop\s+table', re.IGNORECASE),
]


@dataclass
class SuspiciousPayload:
    """One detection."""
    reason: str
    ip: str
    endpoint: str
    payload_size: int
    detail: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            'reason': self.reason,
            'ip': self.ip,
            'endpoint': self.endpoint,
            'payloadSize': self.payload_size,
            'detail': self.detail,
            'timestamp': self.timestamp.isoformat(),
        }


class PayloadMonitor:
    """Bounded, thread-safe log of suspicious submissions."""

    def __init__(self, monitor_config: Optional[MonitorConfig] = None):
        self.config = monitor_config or MonitorConfig()
        self._events: Deque[SuspiciousPayload] = deque(maxlen=self.config.ring_capacity)
        self._lock = threading.Lock()

    def analyze(self, content: str, ip: str, endpoint: str) -> List[SuspiciousPayload]:
        """
        Inspect content and record every heuristic it trips.

        Returns the detections (empty when the payload looks normal).
        """
        content = content or ''
        size = len(content)
        detections = []

        if size > self.config.max_normal_size:
            detections.append(SuspiciousPayload(
                reason='oversized', ip=ip, endpoint=endpoint, payload_size=size,
                detail=f'{size} chars exceeds {self.config.max_normal_size}',
            ))

        if size > self.config.min_diversity_size:
            ratio = len(set(content)) / size
            if ratio < self.config.min_diversity_ratio:
                detections.append(SuspiciousPayload(
                    reason='repeated_pattern', ip=ip, endpoint=endpoint, payload_size=size,
                    detail=f'unique character ratio {ratio:.3f}',
                ))

        for pattern in SUSPICIOUS_PATTERNS:
            if pattern.search(content):
                detections.append(SuspiciousPayload(
                    reason='malformed', ip=ip, endpoint=endpoint, payload_size=size,
                    detail=f'matched {pattern.pattern}',
                ))
                break

        for detection in detections:
            self.record(detection)
        return detections

    def record(self, detection: SuspiciousPayload) -> None:
        with self._lock:
            self._events.append(detection)
        logger.warning(
            f'Suspicious payload on {detection.endpoint} from {detection.ip}: '
            f'{detection.reason} ({detection.detail})'
        )

    def recent(self, limit: int = 50) -> List[SuspiciousPayload]:
        """Newest detections first."""
        with self._lock:
            events = list(self._events)
        events.reverse()
        return events[:limit]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
