from collections import Counter
from typing import Any, Optional

from postguard.config import Settings, settings as default_settings
from postguard.core.clock import SystemClock
from postguard.core.logger import logger
from postguard.schemas.detection import (
    AttackAttempt,
    AttackBlock,
    AttackCategory,
    AttackConfig,
    AttackStats,
    DetectionVerdict,
)
from postguard.schemas.security_event import EventCategory, Severity
from postguard.security.detectors import BaseDetector, default_signature_library
from postguard.services.event_logger import EventLog
from postguard.storage.base import RecordStore, StoreError, load_record

MAX_ESCALATION_LEVEL = 10
MAX_BLOCK_MS = 30 * 86_400_000

CRITICAL_CATEGORIES = frozenset({
    AttackCategory.SQL_INJECTION,
    AttackCategory.XSS,
    AttackCategory.COMMAND_INJECTION,
})

_IMMEDIATE = AttackConfig(max_attempts=1, time_window_ms=0, block_duration_ms=7_200_000, escalation_factor=3)
_REPEATED = AttackConfig(max_attempts=2, time_window_ms=300_000, block_duration_ms=3_600_000, escalation_factor=2.5)

DEFAULT_ATTACK_CONFIGS: dict[AttackCategory, AttackConfig] = {
    AttackCategory.BRUTE_FORCE: AttackConfig(
        max_attempts=5, time_window_ms=900_000, block_duration_ms=3_600_000, escalation_factor=2
    ),
    AttackCategory.ENUMERATION: AttackConfig(
        max_attempts=10, time_window_ms=300_000, block_duration_ms=1_800_000, escalation_factor=1.5
    ),
    AttackCategory.CSRF: AttackConfig(
        max_attempts=3, time_window_ms=600_000, block_duration_ms=1_800_000, escalation_factor=2
    ),
    AttackCategory.SQL_INJECTION: _IMMEDIATE,
    AttackCategory.XSS: _IMMEDIATE,
    AttackCategory.COMMAND_INJECTION: _IMMEDIATE,
    AttackCategory.SSRF: _IMMEDIATE,
    AttackCategory.XXE: _IMMEDIATE,
    AttackCategory.DESERIALIZATION: _IMMEDIATE,
    AttackCategory.PROTOTYPE_POLLUTION: _IMMEDIATE,
    AttackCategory.PATH_TRAVERSAL: _REPEATED,
    AttackCategory.LDAP_INJECTION: _REPEATED,
    AttackCategory.XML_INJECTION: _REPEATED,
    AttackCategory.NOSQL_INJECTION: _REPEATED,
}

EVENT_CATEGORIES: dict[AttackCategory, EventCategory] = {
    AttackCategory.SQL_INJECTION: EventCategory.INJECTION_ATTEMPT,
    AttackCategory.NOSQL_INJECTION: EventCategory.INJECTION_ATTEMPT,
    AttackCategory.LDAP_INJECTION: EventCategory.INJECTION_ATTEMPT,
    AttackCategory.XML_INJECTION: EventCategory.INJECTION_ATTEMPT,
    AttackCategory.XSS: EventCategory.XSS_ATTEMPT,
    AttackCategory.BRUTE_FORCE: EventCategory.LOGIN_FAILURE,
}


def event_category_for(category: AttackCategory) -> EventCategory:
    return EVENT_CATEGORIES.get(category, EventCategory.SUSPICIOUS_PATTERN)


def recommendation_for(categories: list[AttackCategory], confidence: float) -> str:
    if confidence > 0.8:
        return "High-confidence attack detected. Blocking recommended."
    if AttackCategory.SQL_INJECTION in categories:
        return "Possible SQL injection detected. Validate input and use parameterized queries."
    if AttackCategory.XSS in categories:
        return "Possible XSS detected. Sanitize input and enforce a content security policy."
    if AttackCategory.COMMAND_INJECTION in categories:
        return "Possible command injection detected. Validate input and avoid shell execution."
    if AttackCategory.BRUTE_FORCE in categories:
        return "Possible brute force detected. Apply rate limiting."
    return "Suspicious pattern detected. Monitor activity."


class AttackDetector:
    ATTEMPT_PREFIX = "attack:attempt"
    BLOCK_PREFIX = "attack:block"

    def __init__(
        self,
        store: RecordStore,
        event_log: EventLog,
        settings: Optional[Settings] = None,
        clock=None,
        detectors: Optional[list[BaseDetector]] = None,
        configs: Optional[dict[AttackCategory, AttackConfig]] = None,
    ):
        self.store = store
        self.event_log = event_log
        self.settings = settings or default_settings
        self.clock = clock or SystemClock()
        self.detectors = detectors if detectors is not None else default_signature_library()
        self.by_category = {d.category: d for d in self.detectors}
        self.configs = dict(DEFAULT_ATTACK_CONFIGS if configs is None else configs)

    def detect(
        self,
        input: Any,
        context: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> DetectionVerdict:
        if not self.settings.attack_detection_enabled:
            return DetectionVerdict()

        if not input or not isinstance(input, str):
            return DetectionVerdict()

        try:
            return self._scan(input, self.detectors, len(self.detectors), context, actor_id)
        except Exception as e:
            return self._failed(input, context, actor_id, e)

    def _scan(
        self,
        input: str,
        detectors: list[BaseDetector],
        category_count: int,
        context: Optional[str],
        actor_id: Optional[str],
    ) -> DetectionVerdict:
        verdict = DetectionVerdict()
        total_confidence = 0.0

        for detector in detectors:
            matched = detector.match(input)
            if not matched:
                continue

            category_confidence = min(len(matched) / len(detector), 1.0)
            total_confidence += category_confidence
            verdict.categories.append(detector.category)
            verdict.matched_patterns.extend(matched)

            self._record_attack(detector.category, input, context, actor_id, {
                "patterns": matched,
                "confidence": category_confidence,
            })

        if not verdict.categories:
            return verdict

        verdict.is_attack = True
        verdict.confidence = min(total_confidence / max(category_count, 1), 1.0)
        verdict.should_block = self.should_block(verdict.categories, verdict.confidence)
        verdict.recommendation = recommendation_for(verdict.categories, verdict.confidence)

        logger.warning(
            "attack_detected",
            categories=[c.value for c in verdict.categories],
            confidence=round(verdict.confidence, 4),
            should_block=verdict.should_block,
            context=context,
            actor_id=actor_id
        )

        return verdict

    def _failed(self, input: str, context: Optional[str], actor_id: Optional[str], error: Exception) -> DetectionVerdict:
        logger.error("attack_detection_error", error=str(error), context=context, actor_id=actor_id)
        self.event_log.log_event(
            EventCategory.VALIDATION_ERROR,
            Severity.ERROR,
            "Internal error during attack detection",
            {
                "error": str(error),
                "context": context,
                "input": input[: self.settings.forensic_input_chars],
            },
            actor_id
        )
        return DetectionVerdict(
            recommendation="Detection engine failed; input was not blocked.",
            degraded=True,
        )

    def should_block(self, categories: list[AttackCategory], confidence: float) -> bool:
        if any(c in CRITICAL_CATEGORIES for c in categories):
            return True
        return confidence > self.settings.attack_block_confidence

    def check_for_sql_injection(self, input: Any, context: Optional[str] = None, actor_id: Optional[str] = None) -> DetectionVerdict:
        return self._check_category(AttackCategory.SQL_INJECTION, input, context, actor_id)

    def check_for_xss(self, input: Any, context: Optional[str] = None, actor_id: Optional[str] = None) -> DetectionVerdict:
        return self._check_category(AttackCategory.XSS, input, context, actor_id)

    def check_for_command_injection(self, input: Any, context: Optional[str] = None, actor_id: Optional[str] = None) -> DetectionVerdict:
        return self._check_category(AttackCategory.COMMAND_INJECTION, input, context, actor_id)

    def check_for_path_traversal(self, input: Any, context: Optional[str] = None, actor_id: Optional[str] = None) -> DetectionVerdict:
        return self._check_category(AttackCategory.PATH_TRAVERSAL, input, context, actor_id)

    def _check_category(
        self,
        category: AttackCategory,
        input: Any,
        context: Optional[str],
        actor_id: Optional[str],
    ) -> DetectionVerdict:
        if not self.settings.attack_detection_enabled:
            return DetectionVerdict()

        if not input or not isinstance(input, str):
            return DetectionVerdict()

        detector = self.by_category.get(category)
        if detector is None:
            logger.warning("attack_detector_missing", category=category.value)
            return DetectionVerdict()

        try:
            return self._scan(input, [detector], 1, context, actor_id)
        except Exception as e:
            return self._failed(input, context, actor_id, e)

    def _record_attack(
        self,
        category: AttackCategory,
        input: str,
        context: Optional[str],
        actor_id: Optional[str],
        details: dict[str, Any],
    ) -> None:
        attempt = self._count_attempt(category, actor_id) if actor_id else None

        payload = {"attack_type": category.value, "context": context, **details}
        if attempt is not None:
            payload["attempt_count"] = attempt.count
            payload["escalation_level"] = attempt.escalation_level

        self.event_log.log_detector_event(
            event_category_for(category),
            f"{category.value} attempt detected",
            input,
            source=context,
            details=payload,
            actor_id=actor_id
        )

    def _attempt_key(self, actor_id: str, category: AttackCategory) -> str:
        return f"{self.ATTEMPT_PREFIX}:{category.value}:{actor_id}"

    def _block_key(self, actor_id: str, category: AttackCategory) -> str:
        return f"{self.BLOCK_PREFIX}:{category.value}:{actor_id}"

    def _count_attempt(self, category: AttackCategory, actor_id: str) -> Optional[AttackAttempt]:
        config = self.configs.get(category)
        if config is None:
            logger.warning("attack_config_missing", category=category.value)
            return None

        key = self._attempt_key(actor_id, category)
        now = self.clock.now_ms()

        try:
            with self.store.lock(key):
                raw = self.store.get(key)
                if raw is None:
                    attempt = AttackAttempt(first_attempt=now, last_attempt=now)
                else:
                    attempt = load_record(AttackAttempt, raw, key)

                if config.time_window_ms > 0 and now - attempt.first_attempt > config.time_window_ms:
                    attempt = AttackAttempt(first_attempt=now, last_attempt=now)

                attempt.count += 1
                attempt.last_attempt = now

                if attempt.count >= config.max_attempts:
                    self._block(actor_id, category, config, attempt)
                    attempt.escalation_level += 1
                    attempt.count = 0

                self.store.set(key, attempt.model_dump())
        except StoreError as e:
            logger.warning("attack_store_unavailable", category=category.value, actor_id=actor_id, error=str(e))
            self.event_log.log_event(
                EventCategory.STORAGE_FAILURE,
                Severity.WARNING,
                "Attack attempt store unavailable",
                {"attack_type": category.value, "error": str(e)},
                actor_id
            )
            return None

        return attempt

    def block_duration_ms(self, config: AttackConfig, escalation_level: int) -> int:
        level = max(1, min(escalation_level, MAX_ESCALATION_LEVEL))
        duration = config.block_duration_ms * config.escalation_factor ** (level - 1)
        return int(min(duration, MAX_BLOCK_MS))

    def _block(self, actor_id: str, category: AttackCategory, config: AttackConfig, attempt: AttackAttempt) -> AttackBlock:
        duration = self.block_duration_ms(config, attempt.escalation_level)
        block = AttackBlock(
            actor_id=actor_id,
            category=category,
            blocked_until=self.clock.now_ms() + duration,
            attempt_count=attempt.escalation_level,
            escalation_level=attempt.escalation_level,
        )
        self.store.set(self._block_key(actor_id, category), block.model_dump(mode="json"))

        logger.warning(
            "actor_blocked",
            actor_id=actor_id,
            category=category.value,
            escalation_level=attempt.escalation_level,
            duration_ms=duration
        )
        self.event_log.log_event(
            EventCategory.LOGIN_BLOCKED,
            Severity.CRITICAL,
            f"Actor blocked for {category.value}",
            {
                "attack_type": category.value,
                "escalation_level": attempt.escalation_level,
                "block_duration_minutes": duration / 60_000,
            },
            actor_id
        )
        return block

    def is_actor_blocked(self, actor_id: str, category: Optional[AttackCategory] = None) -> Optional[AttackBlock]:
        if category is not None:
            keys = [self._block_key(actor_id, category)]
        else:
            keys = [
                k for k in self.store.keys(f"{self.BLOCK_PREFIX}:")
                if k.split(":", 3)[-1] == actor_id
            ]

        now = self.clock.now_ms()
        for key in keys:
            raw = self.store.get(key)
            if raw is None:
                continue

            block = load_record(AttackBlock, raw, key)
            if block.blocked_until > now:
                return block

            self.store.delete(key)

        return None

    def record_login_failure(self, actor_id: str, **details) -> Optional[AttackAttempt]:
        self.event_log.log_event(
            EventCategory.LOGIN_FAILURE,
            Severity.WARNING,
            "Login failure",
            {"attack_type": AttackCategory.BRUTE_FORCE.value, **details},
            actor_id
        )
        return self._count_attempt(AttackCategory.BRUTE_FORCE, actor_id)

    def record_enumeration(self, actor_id: str, **details) -> Optional[AttackAttempt]:
        self.event_log.log_event(
            EventCategory.SUSPICIOUS_PATTERN,
            Severity.WARNING,
            "Possible enumeration attempt",
            {"attack_type": AttackCategory.ENUMERATION.value, **details},
            actor_id
        )
        return self._count_attempt(AttackCategory.ENUMERATION, actor_id)

    def get_attack_stats(self) -> AttackStats:
        by_category: Counter = Counter()

        for key in self.store.keys(f"{self.ATTEMPT_PREFIX}:"):
            raw = self.store.get(key)
            if raw is None:
                continue
            category = key[len(self.ATTEMPT_PREFIX) + 1:].split(":", 1)[0]
            by_category[category] += load_record(AttackAttempt, raw, key).count

        now = self.clock.now_ms()
        active_blocks = 0
        for key in self.store.keys(f"{self.BLOCK_PREFIX}:"):
            raw = self.store.get(key)
            if raw is not None and load_record(AttackBlock, raw, key).blocked_until > now:
                active_blocks += 1

        return AttackStats(
            total_attempts=sum(by_category.values()),
            attacks_by_category=dict(by_category),
            active_blocks=active_blocks,
            top_categories=[
                {"category": category, "count": count}
                for category, count in by_category.most_common(5)
            ],
        )

    def cleanup_expired_blocks(self) -> int:
        now = self.clock.now_ms()
        removed = 0

        for key in self.store.keys(f"{self.BLOCK_PREFIX}:"):
            raw = self.store.get(key)
            if raw is None:
                continue
            if load_record(AttackBlock, raw, key).blocked_until <= now:
                self.store.delete(key)
                removed += 1

        if removed:
            logger.info("attack_blocks_cleaned", removed=removed)
        return removed

    def clear_blocks(self, actor_id: str) -> int:
        keys = [
            k for prefix in (self.BLOCK_PREFIX, self.ATTEMPT_PREFIX)
            for k in self.store.keys(f"{prefix}:")
            if k.split(":", 3)[-1] == actor_id
        ]
        for key in keys:
            self.store.delete(key)

        self.event_log.log_admin_action("clear_attack_blocks", actor_id=actor_id, cleared=len(keys))
        return len(keys)
