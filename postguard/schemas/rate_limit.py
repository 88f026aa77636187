import enum
from typing import Optional

from pydantic import BaseModel, Field


class DenialReason(str, enum.Enum):
    NONE = "none"
    BLOCKED = "blocked"
    PROGRESSIVE_DELAY = "progressive_delay"
    LIMIT_EXCEEDED = "limit_exceeded"
    UNAVAILABLE = "unavailable"


class RateLimitTier(BaseModel):
    max_attempts: int = Field(ge=1)
    window_ms: int = Field(gt=0)
    block_duration_ms: Optional[int] = Field(default=None, gt=0)
    progressive_delay: bool = False
    escalation_factor: float = Field(default=1.0, ge=1.0)

    @property
    def base_block_ms(self) -> int:
        return self.block_duration_ms or self.window_ms


class RateLimitRecord(BaseModel):
    count: int
    window_start: int
    last_attempt_at: int
    blocked_until: Optional[int] = None
    violation_count: int = 0


class AdmissionDecision(BaseModel):
    allowed: bool
    retry_after_ms: int = 0
    reason: DenialReason = DenialReason.NONE
    blocked_by: Optional[str] = None
    degraded: bool = False
    error: Optional[str] = None


class RateLimitStats(BaseModel):
    count: int
    remaining_attempts: int
    reset_at: int
    violation_count: int
    is_blocked: bool
