import threading
from collections import Counter, deque
from typing import Any, Callable, Optional

from postguard.config import Settings, settings as default_settings
from postguard.core.clock import SystemClock
from postguard.core.logger import logger
from postguard.schemas.security_event import (
    Alert,
    EventCategory,
    EventFilter,
    EventStats,
    SecurityEvent,
    Severity,
    TimeRange,
)
from postguard.services.false_positive import FalsePositiveFilter
from postguard.services.alert_correlator import AlertCorrelator

CRITICAL_VALIDATION_FIELDS = frozenset({"password", "email", "admin", "token"})

AlertListener = Callable[[Alert], None]


class EventLog:
    """Bounded, append-only security event log with derived alerts.

    Events and alerts live in ring buffers; the oldest entries are evicted
    once capacity is reached. Correlation runs under the append lock, so an
    event is always correlated before it can be evicted and an alert is
    stored after every event it references.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock=None,
        correlator: Optional[AlertCorrelator] = None,
        false_positive_filter: Optional[FalsePositiveFilter] = None,
    ):
        self.settings = settings or default_settings
        self.clock = clock or SystemClock()
        self.correlator = correlator or AlertCorrelator()
        self.false_positive_filter = false_positive_filter or FalsePositiveFilter(
            self.settings.benign_sources,
            self.settings.long_content_threshold,
        )
        self._events: deque[SecurityEvent] = deque(maxlen=self.settings.event_log_capacity)
        self._alerts: deque[Alert] = deque(maxlen=self.settings.alert_capacity)
        self._lock = threading.RLock()
        self._listeners: list[AlertListener] = []

    def append(self, event: SecurityEvent) -> Optional[Alert]:
        with self._lock:
            if len(self._events) == self._events.maxlen:
                self.correlator.forget(self._events[0].id)
            self._events.append(event)

            alert = self.correlator.evaluate(event, self._events)
            if alert is not None:
                self._alerts.append(alert)

        logger.info(
            "security_event_logged",
            event_id=event.id,
            category=event.category.value,
            severity=event.severity.value,
            actor_id=event.actor_id
        )

        if alert is not None:
            self._notify(alert)

        return alert

    def log_event(
        self,
        category: EventCategory,
        severity: Severity,
        message: str,
        details: Optional[dict[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> SecurityEvent:
        event = SecurityEvent(
            timestamp=self.clock.now_ms(),
            category=category,
            severity=severity,
            message=message,
            details=details or {},
            actor_id=actor_id,
        )
        self.append(event)
        return event

    def log_detector_event(
        self,
        category: EventCategory,
        message: str,
        input: str,
        source: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> SecurityEvent:
        """Log a detector hit, downgrading it when it looks like a false positive.

        Only the first ``forensic_input_chars`` characters of ``input`` are kept.
        """
        payload = dict(details or {})
        payload["input"] = input[: self.settings.forensic_input_chars]
        if source:
            payload["source"] = source

        if self.false_positive_filter.is_real_threat(input, source):
            return self.log_event(category, Severity.CRITICAL, message, payload, actor_id)

        payload["suppressed_category"] = category.value
        return self.log_event(
            EventCategory.SUSPICIOUS_INPUT,
            Severity.INFO,
            f"Probable false positive: {message}",
            payload,
            actor_id
        )

    def raise_alert(
        self,
        category: EventCategory,
        severity: Severity,
        message: str,
        events: list[SecurityEvent],
        actor_id: Optional[str] = None,
    ) -> Alert:
        alert = Alert(
            timestamp=self.clock.now_ms(),
            category=category,
            severity=severity,
            message=message,
            triggering_events=[e.id for e in events],
            actor_id=actor_id,
        )
        with self._lock:
            self._alerts.append(alert)

        self._notify(alert)
        return alert

    def add_alert_listener(self, listener: AlertListener) -> None:
        self._listeners.append(listener)

    def _notify(self, alert: Alert) -> None:
        logger.warning(
            "security_alert_raised",
            alert_id=alert.id,
            category=alert.category.value,
            severity=alert.severity.value,
            actor_id=alert.actor_id,
            events=len(alert.triggering_events)
        )

        for listener in list(self._listeners):
            try:
                listener(alert)
            except Exception as e:
                logger.error("alert_listener_error", alert_id=alert.id, error=str(e))

    def query(self, filter: Optional[EventFilter] = None) -> list[SecurityEvent]:
        filter = filter or EventFilter()

        with self._lock:
            events = list(reversed(self._events))

        if filter.category:
            events = [e for e in events if e.category == filter.category]

        if filter.severity:
            events = [e for e in events if e.severity == filter.severity]

        if filter.actor_id:
            events = [e for e in events if e.actor_id == filter.actor_id]

        if filter.time_range:
            start, end = filter.time_range.start, filter.time_range.end
            events = [e for e in events if start <= e.timestamp <= end]

        events.sort(key=lambda e: e.timestamp, reverse=True)

        if filter.limit:
            events = events[: filter.limit]

        return events

    def get_alerts(self, acknowledged: Optional[bool] = None) -> list[Alert]:
        with self._lock:
            alerts = list(self._alerts)

        if acknowledged is not None:
            alerts = [a for a in alerts if a.acknowledged == acknowledged]

        alerts.reverse()
        return alerts

    def acknowledge(self, alert_id: str) -> bool:
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id:
                    alert.acknowledged = True
                    logger.info("security_alert_acknowledged", alert_id=alert_id)
                    return True

        logger.warning("security_alert_not_found", alert_id=alert_id)
        return False

    def get_stats(self, time_range: Optional[TimeRange] = None) -> EventStats:
        events = self.query(EventFilter(time_range=time_range))

        with self._lock:
            alerts = list(self._alerts)

        return EventStats(
            total_events=len(events),
            events_by_category=dict(Counter(e.category.value for e in events)),
            events_by_severity=dict(Counter(e.severity.value for e in events)),
            alerts_count=len(alerts),
            unacknowledged_alerts=sum(1 for a in alerts if not a.acknowledged),
        )

    def cleanup(self, max_age_ms: Optional[int] = None) -> int:
        if max_age_ms is None:
            max_age_ms = self.settings.event_retention_days * 86_400_000
        cutoff = self.clock.now_ms() - max_age_ms

        with self._lock:
            kept_events = [e for e in self._events if e.timestamp > cutoff]
            removed = len(self._events) - len(kept_events)
            for event in self._events:
                if event.timestamp <= cutoff:
                    self.correlator.forget(event.id)
            self._events.clear()
            self._events.extend(kept_events)

            kept_alerts = [a for a in self._alerts if a.timestamp > cutoff]
            self._alerts.clear()
            self._alerts.extend(kept_alerts)

        logger.info("security_log_cleanup", removed_events=removed)
        return removed

    def export(self) -> dict[str, Any]:
        with self._lock:
            events = [e.model_dump(mode="json") for e in self._events]
            alerts = [a.model_dump(mode="json") for a in self._alerts]

        return {
            "logs": events,
            "alerts": alerts,
            "exported_at": self.clock.now_ms(),
        }

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._alerts.clear()
            self.correlator.reset()

    def log_rate_limit_hit(self, action: str, actor_id: Optional[str] = None, **details) -> SecurityEvent:
        return self.log_event(
            EventCategory.RATE_LIMIT_HIT,
            Severity.WARNING,
            f"Rate limit hit for action: {action}",
            {"action": action, **details},
            actor_id
        )

    def log_admin_action(self, action: str, actor_id: Optional[str] = None, **details) -> SecurityEvent:
        return self.log_event(
            EventCategory.ADMIN_ACTION,
            Severity.INFO,
            f"Administrative action: {action}",
            {"action": action, **details},
            actor_id
        )

    def log_validation_error(
        self,
        field: str,
        value: str,
        error: str,
        actor_id: Optional[str] = None,
    ) -> Optional[SecurityEvent]:
        if field.lower() not in CRITICAL_VALIDATION_FIELDS:
            return None

        return self.log_event(
            EventCategory.VALIDATION_ERROR,
            Severity.INFO,
            f"Validation error on field {field}",
            {"field": field, "value": (value or "")[:50], "error": error},
            actor_id
        )

    def log_sanitization_triggered(
        self,
        input: str,
        output: str,
        actor_id: Optional[str] = None,
        **details,
    ) -> Optional[SecurityEvent]:
        if not input:
            return None
        if abs(len(input) - len(output)) / len(input) < 0.1:
            return None

        return self.log_event(
            EventCategory.SANITIZATION_TRIGGERED,
            Severity.INFO,
            "Input sanitization triggered",
            {
                "original_length": len(input),
                "sanitized_length": len(output),
                "changed": input != output,
                **details,
            },
            actor_id
        )
