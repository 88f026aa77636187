import threading

from structlog.testing import capture_logs

from postguard.config import Settings
from postguard.schemas.rate_limit import DenialReason, RateLimitTier
from postguard.schemas.security_event import EventCategory, EventFilter, Severity
from postguard.security.rate_limiter import RateLimiter


def make_limiter(store, event_log, clock, settings=None, **tiers):
    return RateLimiter(store, event_log, settings or event_log.settings, clock, tiers=tiers)


def test_allows_up_to_max_attempts(store, event_log, clock):
    limiter = make_limiter(store, event_log, clock, login=RateLimitTier(max_attempts=3, window_ms=60_000))

    decisions = [limiter.check("alice", "login") for _ in range(3)]

    assert all(d.allowed for d in decisions)
    assert limiter.get_stats("alice", "login").remaining_attempts == 0


def test_denies_after_limit_and_blocks(store, event_log, clock):
    limiter = make_limiter(store, event_log, clock, login=RateLimitTier(
        max_attempts=2, window_ms=60_000, block_duration_ms=300_000
    ))
    limiter.check("alice", "login")
    limiter.check("alice", "login")

    denied = limiter.check("alice", "login")
    assert denied.allowed is False
    assert denied.reason == DenialReason.LIMIT_EXCEEDED
    assert denied.retry_after_ms == 300_000
    assert denied.blocked_by == "login"

    clock.advance(120_000)
    still_blocked = limiter.check("alice", "login")
    assert still_blocked.reason == DenialReason.BLOCKED
    assert still_blocked.retry_after_ms == 180_000
    assert limiter.get_stats("alice", "login").is_blocked is True


def test_actors_are_independent(store, event_log, clock):
    limiter = make_limiter(store, event_log, clock, login=RateLimitTier(max_attempts=1, window_ms=60_000))
    limiter.check("alice", "login")

    assert limiter.check("alice", "login").allowed is False
    assert limiter.check("bob", "login").allowed is True


def test_window_elapse_resets_count(store, event_log, clock):
    limiter = make_limiter(store, event_log, clock, search=RateLimitTier(max_attempts=2, window_ms=60_000))
    limiter.check("alice", "search")
    limiter.check("alice", "search")

    clock.advance(60_001)

    assert limiter.check("alice", "search").allowed is True
    assert limiter.get_stats("alice", "search").count == 1


def test_block_duration_escalates(store, event_log, clock):
    tier = RateLimitTier(max_attempts=1, window_ms=3_600_000, block_duration_ms=1_000, escalation_factor=2)
    limiter = make_limiter(store, event_log, clock, upload=tier)
    limiter.check("alice", "upload")

    durations = []
    for _ in range(4):
        denied = limiter.check("alice", "upload")
        assert denied.reason == DenialReason.LIMIT_EXCEEDED
        durations.append(denied.retry_after_ms)
        clock.advance(denied.retry_after_ms)

    assert durations == [1_000, 2_000, 4_000, 8_000]
    assert limiter.get_stats("alice", "upload").violation_count == 4


def test_block_duration_capped(store, event_log, clock):
    settings = Settings(rate_limit_max_block_ms=5_000)
    limiter = make_limiter(store, event_log, clock, settings=settings)
    tier = RateLimitTier(max_attempts=1, window_ms=1_000, block_duration_ms=1_000, escalation_factor=10)

    assert limiter.block_duration_ms(tier, 1) == 1_000
    assert limiter.block_duration_ms(tier, 2) == 5_000
    assert limiter.block_duration_ms(tier, 9) == 5_000


def test_progressive_delay_after_violation(store, event_log, clock):
    tier = RateLimitTier(max_attempts=1, window_ms=60_000, block_duration_ms=500, progressive_delay=True)
    limiter = make_limiter(store, event_log, clock, contact=tier)
    limiter.check("alice", "contact")
    limiter.check("alice", "contact")

    clock.advance(600)
    delayed = limiter.check("alice", "contact")

    assert delayed.allowed is False
    assert delayed.reason == DenialReason.PROGRESSIVE_DELAY
    assert delayed.retry_after_ms == 400


def test_progressive_delay_formula(store, event_log, clock):
    limiter = make_limiter(store, event_log, clock)

    assert limiter.progressive_delay_ms(0) == 0
    assert limiter.progressive_delay_ms(1) == 1_000
    assert limiter.progressive_delay_ms(3) == 4_000
    assert limiter.progressive_delay_ms(20) == 30_000


def test_multi_tier_hourly_denial(store, event_log, clock):
    limiter = make_limiter(
        store, event_log, clock,
        newsletter=RateLimitTier(max_attempts=5, window_ms=60_000),
        newsletter_hourly=RateLimitTier(max_attempts=2, window_ms=3_600_000),
    )
    assert limiter.check_multi_tier("alice", "newsletter").allowed is True
    assert limiter.check_multi_tier("alice", "newsletter").allowed is True

    denied = limiter.check_multi_tier("alice", "newsletter")
    assert denied.allowed is False
    assert denied.blocked_by == "newsletter_hourly"


def test_multi_tier_short_window_first(store, event_log, clock):
    limiter = make_limiter(
        store, event_log, clock,
        comment=RateLimitTier(max_attempts=1, window_ms=60_000),
        comment_hourly=RateLimitTier(max_attempts=50, window_ms=3_600_000),
    )
    limiter.check_multi_tier("alice", "comment")

    denied = limiter.check_multi_tier("alice", "comment")
    assert denied.blocked_by == "comment"
    assert limiter.get_stats("alice", "comment_hourly").count == 1


def test_denial_logs_rate_limit_event(store, event_log, clock):
    limiter = make_limiter(store, event_log, clock, login=RateLimitTier(max_attempts=1, window_ms=60_000))
    limiter.check("alice", "login")
    limiter.check("alice", "login")

    events = event_log.query(EventFilter(category=EventCategory.RATE_LIMIT_HIT))
    assert len(events) == 1
    assert events[0].actor_id == "alice"
    assert events[0].details["action"] == "login"
    assert events[0].details["reason"] == "limit_exceeded"


def test_repeated_denials_raise_alert(store, event_log, clock):
    limiter = make_limiter(store, event_log, clock, login=RateLimitTier(max_attempts=1, window_ms=60_000))
    limiter.check("alice", "login")
    for _ in range(5):
        limiter.check("alice", "login")

    alerts = event_log.get_alerts()
    assert len(alerts) == 1
    assert alerts[0].category == EventCategory.RATE_LIMIT_HIT
    assert len(alerts[0].triggering_events) == 5


def test_unconfigured_action_is_allowed(store, event_log, clock):
    limiter = make_limiter(store, event_log, clock)

    decision = limiter.check("alice", "unknown")
    assert decision.allowed is True
    assert limiter.get_stats("alice", "unknown") is None
    assert store.keys("rate_limit:") == []


def test_disabled_limiter_allows_everything(store, event_log, clock):
    settings = Settings(rate_limiting_enabled=False)
    limiter = make_limiter(store, event_log, clock, settings=settings, login=RateLimitTier(max_attempts=1, window_ms=60_000))

    assert all(limiter.check("alice", "login").allowed for _ in range(5))


def test_store_failure_fails_open(failing_store, event_log, clock):
    limiter = make_limiter(failing_store, event_log, clock, login=RateLimitTier(max_attempts=1, window_ms=60_000))

    decision = limiter.check("alice", "login")
    assert decision.allowed is True
    assert decision.degraded is True
    assert "store offline" in decision.error
    assert event_log.query(EventFilter(category=EventCategory.STORAGE_FAILURE))


def test_store_failure_fails_closed(failing_store, event_log, clock):
    settings = Settings(rate_limit_fail_open=False)
    limiter = make_limiter(failing_store, event_log, clock, settings=settings,
                           login=RateLimitTier(max_attempts=1, window_ms=60_000))

    decision = limiter.check("alice", "login")
    assert decision.allowed is False
    assert decision.reason == DenialReason.UNAVAILABLE
    assert decision.degraded is True


def test_stats_without_record(store, event_log, clock):
    limiter = make_limiter(store, event_log, clock, login=RateLimitTier(max_attempts=4, window_ms=60_000))

    stats = limiter.get_stats("alice", "login")
    assert stats.count == 0
    assert stats.remaining_attempts == 4
    assert stats.is_blocked is False


def test_clear_removes_records(store, event_log, clock):
    limiter = make_limiter(
        store, event_log, clock,
        login=RateLimitTier(max_attempts=1, window_ms=60_000),
        search=RateLimitTier(max_attempts=1, window_ms=60_000),
    )
    limiter.check("alice", "login")
    limiter.check("alice", "search")
    limiter.check("bob", "login")

    assert limiter.clear("alice") == 2
    assert limiter.check("alice", "login").allowed is True
    assert limiter.check("bob", "login").allowed is False
    assert event_log.query(EventFilter(category=EventCategory.ADMIN_ACTION))


def test_concurrent_checks_respect_limit(store, event_log, clock):
    limiter = make_limiter(store, event_log, clock, burst=RateLimitTier(max_attempts=10, window_ms=60_000))
    results = []
    results_lock = threading.Lock()

    def worker():
        for _ in range(5):
            decision = limiter.check("alice", "burst")
            with results_lock:
                results.append(decision.allowed)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 40
    assert results.count(True) == 10


def test_violations_decay_when_window_resets(store, event_log, clock):
    limiter = make_limiter(store, event_log, clock, login=RateLimitTier(
        max_attempts=1, window_ms=60_000, block_duration_ms=1_000
    ))
    limiter.check("alice", "login")
    limiter.check("alice", "login")
    assert limiter.get_stats("alice", "login").violation_count == 1

    clock.advance(60_001)

    assert limiter.check("alice", "login").allowed is True
    assert limiter.get_stats("alice", "login").violation_count == 0


def test_corrupt_record_fails_open(store, event_log, clock):
    limiter = make_limiter(store, event_log, clock, login=RateLimitTier(max_attempts=1, window_ms=60_000))
    store.set("rate_limit:login:alice", {"count": "garbage"})

    decision = limiter.check("alice", "login")

    assert decision.allowed is True
    assert decision.degraded is True
    assert "corrupt record at rate_limit:login:alice" in decision.error
    events = event_log.query(EventFilter(category=EventCategory.STORAGE_FAILURE))
    assert len(events) == 1
    assert events[0].severity == Severity.WARNING


def test_corrupt_record_fails_closed(store, event_log, clock):
    settings = Settings(rate_limit_fail_open=False)
    limiter = make_limiter(store, event_log, clock, settings=settings,
                           login=RateLimitTier(max_attempts=1, window_ms=60_000))
    store.set("rate_limit:login:alice", [1, 2, 3])

    decision = limiter.check("alice", "login")
    assert decision.allowed is False
    assert decision.reason == DenialReason.UNAVAILABLE


def test_multi_tier_without_hourly_tier(store, event_log, clock):
    limiter = make_limiter(store, event_log, clock, search=RateLimitTier(max_attempts=2, window_ms=60_000))

    with capture_logs() as logs:
        assert limiter.check_multi_tier("alice", "search").allowed is True
        assert limiter.check_multi_tier("alice", "search").allowed is True
        denied = limiter.check_multi_tier("alice", "search")

    assert denied.blocked_by == "search"
    assert not [entry for entry in logs if entry["event"] == "rate_limit_unconfigured_action"]
    assert store.keys("rate_limit:search_hourly:") == []


def test_clear_matches_whole_actor_id(store, event_log, clock):
    limiter = make_limiter(store, event_log, clock, login=RateLimitTier(max_attempts=1, window_ms=60_000))
    limiter.check("a", "login")
    limiter.check("x:a", "login")
    limiter.check("::1", "login")

    assert limiter.clear("a") == 1
    assert limiter.check("x:a", "login").allowed is False
    assert limiter.clear("::1") == 1
    assert limiter.check("::1", "login").allowed is True
