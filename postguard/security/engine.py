from typing import Optional

from postguard.config import Settings
from postguard.core.clock import SystemClock
from postguard.core.logger import logger
from postguard.security.attack_detector import AttackDetector
from postguard.security.input_validator import InputValidator
from postguard.security.integrity_monitor import IntegrityMonitor
from postguard.security.rate_limiter import RateLimiter
from postguard.services.event_logger import EventLog
from postguard.storage import RecordStore, build_store


class ProtectionEngine:
    """Owns every protection component and the state they share.

    One instance per process; ``init()`` wires the components together and
    ``shutdown()`` stops background work.
    """

    def __init__(self, settings: Settings, store: Optional[RecordStore] = None, clock=None):
        self.settings = settings
        self.clock = clock or SystemClock()
        self._store = store
        self.store: Optional[RecordStore] = None
        self.event_log: Optional[EventLog] = None
        self.rate_limiter: Optional[RateLimiter] = None
        self.detector: Optional[AttackDetector] = None
        self.validator: Optional[InputValidator] = None
        self.monitor: Optional[IntegrityMonitor] = None

    @property
    def initialized(self) -> bool:
        return self.event_log is not None

    def init(self) -> "ProtectionEngine":
        if self.initialized:
            return self

        self.store = self._store or build_store(self.settings)
        self.event_log = EventLog(self.settings, self.clock)
        self.rate_limiter = RateLimiter(self.store, self.event_log, self.settings, self.clock)
        self.detector = AttackDetector(self.store, self.event_log, self.settings, self.clock)
        self.validator = InputValidator(self.event_log)
        self.monitor = IntegrityMonitor(self.store, self.event_log, self.settings, self.clock)

        logger.info(
            "protection_engine_started",
            environment=self.settings.environment,
            store=type(self.store).__name__
        )
        return self

    def shutdown(self) -> None:
        if not self.initialized:
            return

        self.monitor.stop_monitoring()
        if self.settings.store_backend.lower() == "redis" and self._store is None:
            from postguard.core.redis_client import close_redis

            close_redis()

        logger.info("protection_engine_stopped")
