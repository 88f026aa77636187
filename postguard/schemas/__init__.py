from postguard.schemas.security_event import (
    Alert,
    AlertThreshold,
    EventCategory,
    EventFilter,
    EventStats,
    SecurityEvent,
    Severity,
    TimeRange,
)
from postguard.schemas.rate_limit import (
    AdmissionDecision,
    DenialReason,
    RateLimitRecord,
    RateLimitStats,
    RateLimitTier,
)
from postguard.schemas.detection import (
    AttackBlock,
    AttackCategory,
    AttackConfig,
    AttackStats,
    DetectionVerdict,
    ValidationContext,
    ValidationResult,
)
from postguard.schemas.integrity import (
    ChangeType,
    IntegrityChange,
    IntegrityStats,
    MonitoringConfig,
    MonitorStatus,
    ResourceReading,
    ResourceSnapshot,
    ResourceType,
)

__all__ = [
    "Alert",
    "AlertThreshold",
    "EventCategory",
    "EventFilter",
    "EventStats",
    "SecurityEvent",
    "Severity",
    "TimeRange",
    "AdmissionDecision",
    "DenialReason",
    "RateLimitRecord",
    "RateLimitStats",
    "RateLimitTier",
    "AttackBlock",
    "AttackCategory",
    "AttackConfig",
    "AttackStats",
    "DetectionVerdict",
    "ValidationContext",
    "ValidationResult",
    "ChangeType",
    "IntegrityChange",
    "IntegrityStats",
    "MonitoringConfig",
    "MonitorStatus",
    "ResourceReading",
    "ResourceSnapshot",
    "ResourceType",
]
