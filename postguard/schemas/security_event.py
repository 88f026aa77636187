import enum
import uuid
from typing import Any, Optional

from pydantic import BaseModel, Field


class EventCategory(str, enum.Enum):
    LOGIN_ATTEMPT = "login_attempt"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILURE = "login_failure"
    LOGIN_BLOCKED = "login_blocked"

    RATE_LIMIT_HIT = "rate_limit_hit"
    RATE_LIMIT_BLOCKED = "rate_limit_blocked"
    RATE_LIMIT_VIOLATION = "rate_limit_violation"

    XSS_ATTEMPT = "xss_attempt"
    INJECTION_ATTEMPT = "injection_attempt"
    CSRF_VIOLATION = "csrf_violation"
    SUSPICIOUS_INPUT = "suspicious_input"

    SUSPICIOUS_PATTERN = "suspicious_pattern"
    ANOMALOUS_BEHAVIOR = "anomalous_behavior"
    MULTIPLE_FAILURES = "multiple_failures"

    INTEGRITY_VIOLATION = "integrity_violation"
    UNAUTHORIZED_ACCESS = "unauthorized_access"

    ADMIN_ACTION = "admin_action"
    CONFIG_CHANGE = "config_change"

    VALIDATION_ERROR = "validation_error"
    SANITIZATION_TRIGGERED = "sanitization_triggered"

    STORAGE_FAILURE = "storage_failure"


class Severity(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def new_id() -> str:
    return uuid.uuid4().hex


class SecurityEvent(BaseModel):
    id: str = Field(default_factory=new_id)
    timestamp: int
    category: EventCategory
    severity: Severity
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    actor_id: Optional[str] = None


class Alert(BaseModel):
    id: str = Field(default_factory=new_id)
    timestamp: int
    category: EventCategory
    severity: Severity
    message: str
    triggering_events: list[str] = Field(default_factory=list)
    actor_id: Optional[str] = None
    acknowledged: bool = False


class AlertThreshold(BaseModel):
    count: int = Field(ge=1)
    window_ms: int = Field(ge=0)


class TimeRange(BaseModel):
    start: int
    end: int


class EventFilter(BaseModel):
    category: Optional[EventCategory] = None
    severity: Optional[Severity] = None
    actor_id: Optional[str] = None
    time_range: Optional[TimeRange] = None
    limit: Optional[int] = Field(default=None, ge=1)


class EventStats(BaseModel):
    total_events: int
    events_by_category: dict[str, int]
    events_by_severity: dict[str, int]
    alerts_count: int
    unacknowledged_alerts: int
