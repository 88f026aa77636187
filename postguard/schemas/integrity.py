import enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from postguard.schemas.security_event import Severity, new_id


class ResourceType(str, enum.Enum):
    KEY_VALUE_STORE = "key_value_store"
    SESSION_STORE = "session_store"
    DOCUMENT = "document"
    SCRIPT = "script"
    STYLESHEET = "stylesheet"
    COOKIES = "cookies"
    CONFIGURATION = "configuration"
    USER_DATA = "user_data"


HIGH_SENSITIVITY_TYPES = frozenset({ResourceType.SCRIPT, ResourceType.CONFIGURATION})
STRUCTURAL_TYPES = frozenset({ResourceType.SCRIPT, ResourceType.CONFIGURATION, ResourceType.DOCUMENT})


class ChangeType(str, enum.Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    SUSPICIOUS = "suspicious"


class ResourceReading(BaseModel):
    content: bytes = b""
    metadata: dict[str, Any] = Field(default_factory=dict)


class ResourceSnapshot(BaseModel):
    id: str = Field(default_factory=new_id)
    resource_id: str
    resource_type: ResourceType
    timestamp: int
    checksum: str
    byte_size: int
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class IntegrityChange(BaseModel):
    id: str = Field(default_factory=new_id)
    resource_id: str
    resource_type: ResourceType
    change_type: ChangeType
    timestamp: int
    severity: Severity
    authorized: bool
    details: dict[str, Any] = Field(default_factory=dict)


class MonitoringConfig(BaseModel):
    enabled: bool = True
    interval_seconds: float = Field(default=30.0, gt=0)
    resources: Optional[list[str]] = None
    auto_restore: bool = False


class MonitorStatus(BaseModel):
    is_active: bool
    last_check_at: Optional[int] = None
    total_snapshots: int
    total_changes: int
    recent_changes: list[IntegrityChange] = Field(default_factory=list)


class IntegrityStats(BaseModel):
    changes_by_resource: dict[str, int]
    changes_by_severity: dict[str, int]
    unauthorized_changes: int
    suspicious_changes: int
    resource_health: dict[str, str]
