from typing import Iterable, Optional

from postguard.schemas.security_event import (
    Alert,
    AlertThreshold,
    EventCategory,
    SecurityEvent,
    Severity,
)

DEFAULT_THRESHOLDS: dict[EventCategory, AlertThreshold] = {
    EventCategory.LOGIN_FAILURE: AlertThreshold(count=3, window_ms=900_000),
    EventCategory.RATE_LIMIT_HIT: AlertThreshold(count=5, window_ms=300_000),
    EventCategory.XSS_ATTEMPT: AlertThreshold(count=1, window_ms=0),
    EventCategory.INJECTION_ATTEMPT: AlertThreshold(count=1, window_ms=0),
    EventCategory.SUSPICIOUS_PATTERN: AlertThreshold(count=3, window_ms=600_000),
}


def alert_severity(category: EventCategory) -> Severity:
    if category in (EventCategory.XSS_ATTEMPT, EventCategory.INJECTION_ATTEMPT):
        return Severity.CRITICAL
    if category in (EventCategory.LOGIN_FAILURE, EventCategory.SUSPICIOUS_PATTERN):
        return Severity.ERROR
    if category == EventCategory.RATE_LIMIT_HIT:
        return Severity.WARNING
    return Severity.INFO


def alert_message(category: EventCategory, count: int) -> str:
    if category == EventCategory.LOGIN_FAILURE:
        return f"Multiple failed login attempts detected ({count} attempts)"
    if category == EventCategory.RATE_LIMIT_HIT:
        return f"Rate limiting triggered repeatedly ({count} hits)"
    if category == EventCategory.XSS_ATTEMPT:
        return "XSS attack attempt detected"
    if category == EventCategory.INJECTION_ATTEMPT:
        return "Injection attempt detected"
    if category == EventCategory.SUSPICIOUS_PATTERN:
        return f"Suspicious behaviour pattern detected ({count} events)"
    return f"Security alert: {category.value} ({count} events)"


class AlertCorrelator:
    """Turns bursts of same-category events from one actor into an Alert.

    An event contributes to at most one alert; once a threshold fires, the
    next alert for that (category, actor) needs a fresh batch of events.
    """

    def __init__(self, thresholds: Optional[dict[EventCategory, AlertThreshold]] = None):
        self.thresholds = dict(DEFAULT_THRESHOLDS if thresholds is None else thresholds)
        self._consumed: set[str] = set()

    def evaluate(self, event: SecurityEvent, history: Iterable[SecurityEvent]) -> Optional[Alert]:
        threshold = self.thresholds.get(event.category)
        if threshold is None:
            return None

        contributing = [
            e for e in history
            if e.category == event.category
            and e.actor_id == event.actor_id
            and e.id not in self._consumed
            and (threshold.window_ms == 0 or event.timestamp - e.timestamp <= threshold.window_ms)
        ]

        if len(contributing) < threshold.count:
            return None

        self._consumed.update(e.id for e in contributing)

        return Alert(
            timestamp=event.timestamp,
            category=event.category,
            severity=alert_severity(event.category),
            message=alert_message(event.category, len(contributing)),
            triggering_events=[e.id for e in contributing],
            actor_id=event.actor_id,
        )

    def forget(self, event_id: str) -> None:
        self._consumed.discard(event_id)

    def reset(self) -> None:
        self._consumed.clear()
