import pytest

from postguard.config import Settings
from postguard.schemas.detection import AttackCategory
from postguard.schemas.security_event import EventCategory, EventFilter, Severity
from postguard.security.attack_detector import DEFAULT_ATTACK_CONFIGS, AttackDetector
from postguard.security.detectors import BaseDetector
from postguard.storage.base import StoreError

SQL_PAYLOAD = "SELECT * FROM users WHERE id='1' OR '1'='1'"
TRAVERSAL_PAYLOAD = "../../etc/passwd"


class BrokenDetector(BaseDetector):
    category = AttackCategory.SQL_INJECTION
    PATTERNS = ("select",)

    def match(self, payload):
        raise RuntimeError("signature table corrupted")


@pytest.fixture
def detector(store, event_log, test_settings, clock):
    return AttackDetector(store, event_log, test_settings, clock)


def test_detect_sql_injection(detector, event_log):
    verdict = detector.detect(SQL_PAYLOAD)

    assert verdict.is_attack is True
    assert AttackCategory.SQL_INJECTION in verdict.categories
    assert verdict.should_block is True
    assert verdict.confidence == pytest.approx(2 / 18 / 10)
    assert "SQL injection" in verdict.recommendation

    events = event_log.query(EventFilter(category=EventCategory.INJECTION_ATTEMPT))
    assert len(events) == 1
    assert events[0].severity == Severity.CRITICAL
    assert events[0].details["input"] == SQL_PAYLOAD

    alerts = event_log.get_alerts()
    assert len(alerts) == 1
    assert alerts[0].severity == Severity.CRITICAL


def test_detect_safe_input(detector, event_log):
    verdict = detector.detect("Weekly digest: five tips for better sleep")

    assert verdict.is_attack is False
    assert verdict.categories == []
    assert verdict.confidence == 0.0
    assert verdict.recommendation == "Input is safe"
    assert event_log.query() == []


@pytest.mark.parametrize("value", ["", None, 42, ["' OR 1=1"]])
def test_detect_non_text_input(detector, value):
    verdict = detector.detect(value)
    assert verdict.is_attack is False
    assert verdict.should_block is False


def test_confidence_stays_bounded(detector):
    payload = (
        "<script>alert(document.cookie)</script> ' OR 1=1; DROP TABLE users-- "
        "../../etc/passwd; cat /etc/shadow | bash -i http://127.0.0.1/ __proto__ $ne $where"
    )
    verdict = detector.detect(payload)

    assert len(verdict.categories) >= 5
    assert 0.0 < verdict.confidence <= 1.0
    assert verdict.should_block is True


def test_non_critical_low_confidence_not_blocked(detector):
    verdict = detector.detect(TRAVERSAL_PAYLOAD)

    assert verdict.categories == [AttackCategory.PATH_TRAVERSAL]
    assert verdict.should_block is False
    assert verdict.recommendation == "Suspicious pattern detected. Monitor activity."


def test_should_block_threshold(detector):
    assert detector.should_block([AttackCategory.PATH_TRAVERSAL], 0.75) is True
    assert detector.should_block([AttackCategory.PATH_TRAVERSAL], 0.7) is False
    assert detector.should_block([AttackCategory.XSS], 0.01) is True


def test_immediate_block_and_escalation(detector, clock):
    detector.detect(SQL_PAYLOAD, actor_id="mallory")

    block = detector.is_actor_blocked("mallory")
    assert block.category == AttackCategory.SQL_INJECTION
    assert block.escalation_level == 1
    assert block.blocked_until == clock.now_ms() + 7_200_000

    detector.detect(SQL_PAYLOAD, actor_id="mallory")

    block = detector.is_actor_blocked("mallory", AttackCategory.SQL_INJECTION)
    assert block.escalation_level == 2
    assert block.blocked_until == clock.now_ms() + 21_600_000


def test_block_logs_critical_event(detector, event_log):
    detector.detect(SQL_PAYLOAD, actor_id="mallory")

    blocked = event_log.query(EventFilter(category=EventCategory.LOGIN_BLOCKED))
    assert len(blocked) == 1
    assert blocked[0].severity == Severity.CRITICAL
    assert blocked[0].actor_id == "mallory"


def test_attempts_untracked_without_actor(detector, store):
    detector.detect(SQL_PAYLOAD)

    assert store.keys("attack:") == []


def test_repeated_category_needs_two_attempts(detector):
    detector.check_for_path_traversal(TRAVERSAL_PAYLOAD, actor_id="eve")
    assert detector.is_actor_blocked("eve") is None

    detector.check_for_path_traversal(TRAVERSAL_PAYLOAD, actor_id="eve")
    block = detector.is_actor_blocked("eve")
    assert block.category == AttackCategory.PATH_TRAVERSAL


def test_expired_block_is_removed(detector, store, clock):
    detector.detect(SQL_PAYLOAD, actor_id="mallory")
    clock.advance(7_200_001)

    assert detector.is_actor_blocked("mallory") is None
    assert store.keys("attack:block:") == []


def test_single_category_checks(detector):
    assert detector.check_for_sql_injection("1' UNION SELECT * FROM users--").is_attack is True
    assert detector.check_for_xss("<script>alert(1)</script>").categories == [AttackCategory.XSS]
    assert detector.check_for_command_injection("test && whoami").should_block is True
    assert detector.check_for_path_traversal("/api/users/123").is_attack is False


def test_login_failures_block_brute_force(detector, event_log):
    for _ in range(4):
        detector.record_login_failure("mallory", username="admin")
    assert detector.is_actor_blocked("mallory") is None

    detector.record_login_failure("mallory", username="admin")

    block = detector.is_actor_blocked("mallory")
    assert block.category == AttackCategory.BRUTE_FORCE
    alerts = [a for a in event_log.get_alerts() if a.category == EventCategory.LOGIN_FAILURE]
    assert len(alerts) == 1
    assert len(alerts[0].triggering_events) == 3


def test_enumeration_blocks_after_threshold(detector):
    for _ in range(9):
        detector.record_enumeration("crawler", path="/users/1")
    assert detector.is_actor_blocked("crawler") is None

    detector.record_enumeration("crawler", path="/users/10")
    assert detector.is_actor_blocked("crawler").category == AttackCategory.ENUMERATION


def test_attack_stats(detector):
    detector.check_for_path_traversal(TRAVERSAL_PAYLOAD, actor_id="eve")

    stats = detector.get_attack_stats()
    assert stats.total_attempts == 1
    assert stats.attacks_by_category == {"path_traversal": 1}
    assert stats.top_categories == [{"category": "path_traversal", "count": 1}]
    assert stats.active_blocks == 0

    detector.detect(SQL_PAYLOAD, actor_id="mallory")
    assert detector.get_attack_stats().active_blocks == 1


def test_cleanup_expired_blocks(detector, clock):
    detector.detect(SQL_PAYLOAD, actor_id="mallory")
    assert detector.cleanup_expired_blocks() == 0

    clock.advance(7_200_001)
    assert detector.cleanup_expired_blocks() == 1


def test_clear_blocks(detector, event_log):
    detector.detect(SQL_PAYLOAD, actor_id="mallory")

    assert detector.clear_blocks("mallory") == 2
    assert detector.is_actor_blocked("mallory") is None
    assert event_log.query(EventFilter(category=EventCategory.ADMIN_ACTION))


def test_block_duration_capped(detector):
    config = DEFAULT_ATTACK_CONFIGS[AttackCategory.SQL_INJECTION]

    assert detector.block_duration_ms(config, 1) == 7_200_000
    assert detector.block_duration_ms(config, 0) == 7_200_000
    assert detector.block_duration_ms(config, 20) == 30 * 86_400_000


def test_disabled_detection(store, event_log, clock):
    detector = AttackDetector(store, event_log, Settings(attack_detection_enabled=False), clock)

    assert detector.detect(SQL_PAYLOAD).is_attack is False


def test_detector_failure_is_degraded(store, event_log, test_settings, clock):
    detector = AttackDetector(store, event_log, test_settings, clock, detectors=[BrokenDetector()])

    verdict = detector.detect(SQL_PAYLOAD)

    assert verdict.degraded is True
    assert verdict.is_attack is False
    events = event_log.query(EventFilter(category=EventCategory.VALIDATION_ERROR))
    assert events[0].severity == Severity.ERROR
    assert "signature table corrupted" in events[0].details["error"]


def test_store_failure_still_reports_attack(failing_store, event_log, test_settings, clock):
    detector = AttackDetector(failing_store, event_log, test_settings, clock)

    verdict = detector.detect(SQL_PAYLOAD, actor_id="mallory")

    assert verdict.should_block is True
    assert event_log.query(EventFilter(category=EventCategory.STORAGE_FAILURE))


def test_long_content_is_not_escalated(detector, event_log):
    payload = "'; DROP TABLE users--" + " lorem" * 100

    verdict = detector.detect(payload)

    assert verdict.is_attack is True
    assert event_log.get_alerts() == []
    assert event_log.query(EventFilter(category=EventCategory.INJECTION_ATTEMPT)) == []
    suppressed = event_log.query(EventFilter(category=EventCategory.SUSPICIOUS_INPUT))
    assert suppressed[0].severity == Severity.INFO
    assert len(suppressed[0].details["input"]) == 200


def test_corrupt_attempt_record_is_storage_failure(detector, store, event_log):
    store.set("attack:attempt:xss:mallory", {"count": "many"})

    verdict = detector.detect("<script>alert(1)</script>", actor_id="mallory")

    assert verdict.is_attack is True
    events = event_log.query(EventFilter(category=EventCategory.STORAGE_FAILURE))
    assert events
    assert "corrupt record at attack:attempt:xss:mallory" in events[0].details["error"]


def test_corrupt_block_record_raises_store_error(detector, store):
    store.set("attack:block:xss:mallory", ["not", "a", "block"])

    with pytest.raises(StoreError):
        detector.is_actor_blocked("mallory")


def test_clear_blocks_matches_whole_actor_id(detector):
    detector.detect(SQL_PAYLOAD, actor_id="a")
    detector.detect(SQL_PAYLOAD, actor_id="x:a")

    assert detector.clear_blocks("a") == 2
    assert detector.is_actor_blocked("a") is None
    assert detector.is_actor_blocked("x:a") is not None
