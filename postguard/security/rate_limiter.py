from typing import Optional

from postguard.config import Settings, settings as default_settings
from postguard.core.clock import SystemClock
from postguard.core.logger import logger
from postguard.schemas.rate_limit import (
    AdmissionDecision,
    DenialReason,
    RateLimitRecord,
    RateLimitStats,
    RateLimitTier,
)
from postguard.schemas.security_event import EventCategory, Severity
from postguard.services.event_logger import EventLog
from postguard.storage.base import RecordStore, StoreError, load_record

MINUTE_MS = 60_000
HOUR_MS = 3_600_000

DEFAULT_TIERS: dict[str, RateLimitTier] = {
    "comment": RateLimitTier(max_attempts=5, window_ms=MINUTE_MS, block_duration_ms=5 * MINUTE_MS, progressive_delay=True),
    "comment_hourly": RateLimitTier(max_attempts=50, window_ms=HOUR_MS, block_duration_ms=30 * MINUTE_MS, progressive_delay=True),
    "feedback": RateLimitTier(max_attempts=10, window_ms=MINUTE_MS, block_duration_ms=3 * MINUTE_MS, progressive_delay=True),
    "feedback_hourly": RateLimitTier(max_attempts=100, window_ms=HOUR_MS, block_duration_ms=15 * MINUTE_MS, progressive_delay=True),
    "newsletter": RateLimitTier(max_attempts=1, window_ms=MINUTE_MS, block_duration_ms=10 * MINUTE_MS, progressive_delay=True),
    "newsletter_hourly": RateLimitTier(max_attempts=5, window_ms=HOUR_MS, block_duration_ms=HOUR_MS, progressive_delay=True),
    "admin_login": RateLimitTier(max_attempts=3, window_ms=15 * MINUTE_MS, block_duration_ms=30 * MINUTE_MS, progressive_delay=True),
    "contact": RateLimitTier(max_attempts=2, window_ms=MINUTE_MS, block_duration_ms=5 * MINUTE_MS, progressive_delay=True),
    "contact_hourly": RateLimitTier(max_attempts=10, window_ms=HOUR_MS, block_duration_ms=30 * MINUTE_MS, progressive_delay=True),
    "search": RateLimitTier(max_attempts=30, window_ms=MINUTE_MS, block_duration_ms=2 * MINUTE_MS),
    "api_general": RateLimitTier(max_attempts=100, window_ms=MINUTE_MS, block_duration_ms=5 * MINUTE_MS),
}

HOURLY_SUFFIX = "_hourly"


class RateLimiter:
    """Per (actor, action) admission control with escalating blocks.

    ``check`` both decides and consumes: an allowed call counts as one
    attempt. Records are read, updated and written back while holding the
    store's per-key lock so concurrent callers cannot both slip under the
    limit.
    """

    KEY_PREFIX = "rate_limit"

    def __init__(
        self,
        store: RecordStore,
        event_log: EventLog,
        settings: Optional[Settings] = None,
        clock=None,
        tiers: Optional[dict[str, RateLimitTier]] = None,
    ):
        self.store = store
        self.event_log = event_log
        self.settings = settings or default_settings
        self.clock = clock or SystemClock()
        self.tiers = dict(DEFAULT_TIERS if tiers is None else tiers)

    def _key(self, actor_id: str, action: str) -> str:
        return f"{self.KEY_PREFIX}:{action}:{actor_id}"

    def configure(self, action: str, tier: RateLimitTier) -> None:
        self.tiers[action] = tier
        logger.info("rate_limit_tier_configured", action=action, max_attempts=tier.max_attempts, window_ms=tier.window_ms)

    def progressive_delay_ms(self, violation_count: int) -> int:
        if violation_count <= 0:
            return 0
        return min(2 ** (violation_count - 1) * 1000, self.settings.rate_limit_max_progressive_delay_ms)

    def block_duration_ms(self, tier: RateLimitTier, violation_count: int) -> int:
        duration = tier.base_block_ms * tier.escalation_factor ** max(violation_count - 1, 0)
        return int(min(duration, self.settings.rate_limit_max_block_ms))

    def check(self, actor_id: str, action: str, tier: Optional[RateLimitTier] = None) -> AdmissionDecision:
        if not self.settings.rate_limiting_enabled:
            return AdmissionDecision(allowed=True)

        tier = tier or self.tiers.get(action)
        if tier is None:
            logger.warning("rate_limit_unconfigured_action", action=action, actor_id=actor_id)
            return AdmissionDecision(allowed=True)

        key = self._key(actor_id, action)

        try:
            with self.store.lock(key):
                decision = self._evaluate(key, tier)
        except StoreError as e:
            return self._degraded(actor_id, action, e)

        if not decision.allowed:
            decision.blocked_by = action
            logger.warning(
                "rate_limit_exceeded",
                actor_id=actor_id,
                action=action,
                reason=decision.reason.value,
                retry_after_ms=decision.retry_after_ms
            )
            self.event_log.log_rate_limit_hit(
                action,
                actor_id=actor_id,
                reason=decision.reason.value,
                retry_after_ms=decision.retry_after_ms
            )

        return decision

    def _evaluate(self, key: str, tier: RateLimitTier) -> AdmissionDecision:
        now = self.clock.now_ms()
        raw = self.store.get(key)

        if raw is None:
            self._save(key, RateLimitRecord(count=1, window_start=now, last_attempt_at=now))
            return AdmissionDecision(allowed=True)

        record = load_record(RateLimitRecord, raw, key)

        if record.blocked_until is not None and now < record.blocked_until:
            return AdmissionDecision(
                allowed=False,
                retry_after_ms=record.blocked_until - now,
                reason=DenialReason.BLOCKED
            )

        if now - record.window_start > tier.window_ms:
            self._save(key, RateLimitRecord(
                count=1,
                window_start=now,
                last_attempt_at=now,
                violation_count=max(0, record.violation_count - 1)
            ))
            return AdmissionDecision(allowed=True)

        if tier.progressive_delay and record.violation_count > 0:
            required = self.progressive_delay_ms(record.violation_count)
            elapsed = now - record.last_attempt_at
            if elapsed < required:
                return AdmissionDecision(
                    allowed=False,
                    retry_after_ms=required - elapsed,
                    reason=DenialReason.PROGRESSIVE_DELAY
                )

        if record.count >= tier.max_attempts:
            record.violation_count += 1
            duration = self.block_duration_ms(tier, record.violation_count)
            record.blocked_until = now + duration
            record.last_attempt_at = now
            self._save(key, record)
            return AdmissionDecision(
                allowed=False,
                retry_after_ms=duration,
                reason=DenialReason.LIMIT_EXCEEDED
            )

        record.count += 1
        record.last_attempt_at = now
        self._save(key, record)
        return AdmissionDecision(allowed=True)

    def _save(self, key: str, record: RateLimitRecord) -> None:
        self.store.set(key, record.model_dump())

    def _degraded(self, actor_id: str, action: str, error: StoreError) -> AdmissionDecision:
        fail_open = self.settings.rate_limit_fail_open
        logger.warning(
            "rate_limit_store_unavailable",
            actor_id=actor_id,
            action=action,
            fail_open=fail_open,
            error=str(error)
        )
        self.event_log.log_event(
            EventCategory.STORAGE_FAILURE,
            Severity.WARNING,
            f"Rate limit store unavailable for action: {action}",
            {"action": action, "fail_open": fail_open, "error": str(error)},
            actor_id
        )
        return AdmissionDecision(
            allowed=fail_open,
            reason=DenialReason.NONE if fail_open else DenialReason.UNAVAILABLE,
            blocked_by=None if fail_open else action,
            degraded=True,
            error=str(error)
        )

    def check_multi_tier(
        self,
        actor_id: str,
        action: str,
        tiers: Optional[list[RateLimitTier]] = None,
    ) -> AdmissionDecision:
        """Admit only if every tier of ``action`` admits; the first denial wins."""
        actions = [action, f"{action}{HOURLY_SUFFIX}"]
        degraded = False
        errors = []

        for i, tier_action in enumerate(actions):
            tier = tiers[i] if tiers and i < len(tiers) else None
            if i > 0 and tier is None and tier_action not in self.tiers:
                continue

            decision = self.check(actor_id, tier_action, tier)
            degraded = degraded or decision.degraded
            if decision.error:
                errors.append(decision.error)

            if not decision.allowed:
                decision.blocked_by = tier_action
                return decision

        return AdmissionDecision(
            allowed=True,
            degraded=degraded,
            error="; ".join(errors) or None
        )

    def get_stats(self, actor_id: str, action: str) -> Optional[RateLimitStats]:
        tier = self.tiers.get(action)
        if tier is None:
            return None

        key = self._key(actor_id, action)
        raw = self.store.get(key)
        if raw is None:
            return RateLimitStats(
                count=0,
                remaining_attempts=tier.max_attempts,
                reset_at=0,
                violation_count=0,
                is_blocked=False
            )

        record = load_record(RateLimitRecord, raw, key)
        now = self.clock.now_ms()

        return RateLimitStats(
            count=record.count,
            remaining_attempts=max(0, tier.max_attempts - record.count),
            reset_at=record.window_start + tier.window_ms,
            violation_count=record.violation_count,
            is_blocked=record.blocked_until is not None and now < record.blocked_until
        )

    def clear(self, actor_id: str, action: Optional[str] = None) -> int:
        if action:
            keys = [self._key(actor_id, action)]
        else:
            keys = [k for k in self.store.keys(f"{self.KEY_PREFIX}:") if k.split(":", 2)[-1] == actor_id]

        for key in keys:
            self.store.delete(key)

        self.event_log.log_admin_action(
            "clear_rate_limits",
            actor_id=actor_id,
            target_action=action,
            cleared=len(keys)
        )
        return len(keys)
