import hashlib
import threading
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from postguard.config import Settings, settings as default_settings
from postguard.core.clock import SystemClock
from postguard.core.logger import logger
from postguard.schemas.integrity import (
    HIGH_SENSITIVITY_TYPES,
    STRUCTURAL_TYPES,
    ChangeType,
    IntegrityChange,
    IntegrityStats,
    MonitoringConfig,
    MonitorStatus,
    ResourceReading,
    ResourceSnapshot,
    ResourceType,
)
from postguard.schemas.security_event import EventCategory, Severity
from postguard.services.event_logger import EventLog
from postguard.storage.base import RecordStore, StoreError, load_records

SUSPICIOUS_DELTA_BYTES = 50_000
STRUCTURAL_DELTA_BYTES = 100
COUNT_DELTA_THRESHOLD = 10
COUNT_KEYS = ("item_count", "element_count")
RECENT_WINDOW_MS = 3_600_000
RECENT_CHANGES_LIMIT = 10
DEFAULT_RETENTION_MS = 7 * 86_400_000

ResourceReader = Callable[[], Union[ResourceReading, bytes, str]]
RestoreHook = Callable[[IntegrityChange], None]


@dataclass
class WatchedResource:
    resource_id: str
    resource_type: ResourceType
    reader: ResourceReader


def checksum(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def _count(metadata: dict[str, Any]) -> int:
    for key in COUNT_KEYS:
        if key in metadata:
            return int(metadata[key] or 0)
    return 0


def change_severity(old: ResourceSnapshot, new: ResourceSnapshot) -> Severity:
    if old.resource_type in HIGH_SENSITIVITY_TYPES:
        return Severity.CRITICAL

    delta = abs(new.byte_size - old.byte_size)
    ratio = delta / old.byte_size if old.byte_size > 0 else 1.0

    if ratio > 0.5 or delta > 10_000:
        return Severity.ERROR
    if ratio > 0.1 or delta > 1_000:
        return Severity.WARNING
    return Severity.INFO


def is_suspicious(old: ResourceSnapshot, new: ResourceSnapshot) -> bool:
    delta = abs(new.byte_size - old.byte_size)
    if delta > SUSPICIOUS_DELTA_BYTES:
        return True
    if old.resource_type in STRUCTURAL_TYPES and delta > STRUCTURAL_DELTA_BYTES:
        return True
    return abs(_count(new.metadata) - _count(old.metadata)) > COUNT_DELTA_THRESHOLD


class IntegrityMonitor:
    """Periodic checksum diffing of registered resources.

    Each scan reads every watched resource through its reader, stores a new
    snapshot and compares it with the previous one. Changes go to the event
    log; unauthorized or critical ones also raise an alert immediately.
    """

    SNAPSHOT_PREFIX = "integrity:snapshots"
    CHANGES_KEY = "integrity:changes"

    def __init__(
        self,
        store: RecordStore,
        event_log: EventLog,
        settings: Optional[Settings] = None,
        clock=None,
        restore_hook: Optional[RestoreHook] = None,
    ):
        self.store = store
        self.event_log = event_log
        self.settings = settings or default_settings
        self.clock = clock or SystemClock()
        self.restore_hook = restore_hook or self._log_restore_request
        self.config = MonitoringConfig(
            interval_seconds=self.settings.integrity_interval_seconds,
            auto_restore=self.settings.integrity_auto_restore,
        )
        self._resources: dict[str, WatchedResource] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._scan_lock = threading.Lock()
        self._last_check_at: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def watch(self, resource_id: str, resource_type: Union[ResourceType, str], reader: ResourceReader) -> None:
        self._resources[resource_id] = WatchedResource(resource_id, ResourceType(resource_type), reader)
        logger.info("integrity_resource_watched", resource_id=resource_id, resource_type=ResourceType(resource_type).value)

    def unwatch(self, resource_id: str) -> bool:
        return self._resources.pop(resource_id, None) is not None

    def authorized(self, old: ResourceSnapshot, new: ResourceSnapshot) -> bool:
        resource_type = old.resource_type.value

        if resource_type in self.settings.integrity_authorized_types:
            return True
        if resource_type in self.settings.integrity_size_gated_types:
            return abs(new.byte_size - old.byte_size) < self.settings.integrity_authorized_delta_bytes
        if resource_type in self.settings.integrity_unauthorized_types:
            return False
        return True

    def compare(self, old: ResourceSnapshot, new: ResourceSnapshot) -> Optional[IntegrityChange]:
        if old.checksum == new.checksum:
            return None

        if new.byte_size == 0 and old.byte_size > 0:
            change_type = ChangeType.DELETED
        elif old.byte_size == 0 and new.byte_size > 0:
            change_type = ChangeType.ADDED
        elif is_suspicious(old, new):
            change_type = ChangeType.SUSPICIOUS
        else:
            change_type = ChangeType.MODIFIED

        return IntegrityChange(
            resource_id=new.resource_id,
            resource_type=new.resource_type,
            change_type=change_type,
            timestamp=new.timestamp,
            severity=change_severity(old, new),
            authorized=self.authorized(old, new),
            details={
                "old_checksum": old.checksum,
                "new_checksum": new.checksum,
                "old_size": old.byte_size,
                "new_size": new.byte_size,
                "size_delta": new.byte_size - old.byte_size,
                "old_metadata": old.metadata,
                "new_metadata": new.metadata,
            },
        )

    def start_monitoring(self, config: Optional[MonitoringConfig] = None) -> bool:
        if self.is_active:
            logger.info("integrity_monitor_already_running")
            return False

        if config is not None:
            self.config = config

        if not self.config.enabled:
            logger.info("integrity_monitor_disabled")
            return False

        self.scan()

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="postguard-integrity",
            daemon=True,
        )
        self._thread.start()

        self.event_log.log_admin_action(
            "integrity_monitoring_started",
            interval_seconds=self.config.interval_seconds,
            resources=self._selected_ids()
        )
        return True

    def stop_monitoring(self, timeout: Optional[float] = None) -> None:
        thread = self._thread
        self._stop_event.set()

        if thread is not None:
            thread.join(timeout)
            self._thread = None
            self.event_log.log_admin_action("integrity_monitoring_stopped")

    def _run(self) -> None:
        while not self._stop_event.wait(self.config.interval_seconds):
            try:
                self.scan(stoppable=True)
            except Exception as e:
                logger.error("integrity_scan_error", error=str(e))

    def perform_manual_check(self) -> list[IntegrityChange]:
        return self.scan()

    def _selected_ids(self) -> list[str]:
        if self.config.resources is None:
            return list(self._resources)
        return list(self.config.resources)

    def scan(self, stoppable: bool = False) -> list[IntegrityChange]:
        changes: list[IntegrityChange] = []

        with self._scan_lock:
            for resource_id in self._selected_ids():
                if stoppable and self._stop_event.is_set():
                    break

                resource = self._resources.get(resource_id)
                if resource is None:
                    logger.warning("integrity_resource_unknown", resource_id=resource_id)
                    continue

                snapshot = self._snapshot(resource)
                if snapshot is None:
                    continue

                try:
                    previous = self._record_snapshot(snapshot)
                    if previous is None:
                        continue

                    change = self.compare(previous, snapshot)
                    if change is not None:
                        self._record_change(change)
                        self._handle_change(change)
                        changes.append(change)
                except StoreError as e:
                    self._store_failed(resource_id, e)

            self._last_check_at = self.clock.now_ms()

        logger.info("integrity_scan_complete", changes=len(changes))
        return changes

    def _snapshot(self, resource: WatchedResource) -> Optional[ResourceSnapshot]:
        try:
            reading = resource.reader()
        except Exception as e:
            logger.error("integrity_reader_error", resource_id=resource.resource_id, error=str(e))
            self.event_log.log_event(
                EventCategory.INTEGRITY_VIOLATION,
                Severity.ERROR,
                f"Failed to snapshot resource {resource.resource_id}",
                {"resource_id": resource.resource_id, "error": str(e)}
            )
            return None

        if isinstance(reading, str):
            reading = ResourceReading(content=reading.encode("utf-8"))
        elif isinstance(reading, bytes):
            reading = ResourceReading(content=reading)

        return ResourceSnapshot(
            resource_id=resource.resource_id,
            resource_type=resource.resource_type,
            timestamp=self.clock.now_ms(),
            checksum=checksum(reading.content),
            byte_size=len(reading.content),
            metadata=reading.metadata,
        )

    def _store_failed(self, resource_id: str, error: StoreError) -> None:
        logger.warning("integrity_store_unavailable", resource_id=resource_id, error=str(error))
        self.event_log.log_event(
            EventCategory.STORAGE_FAILURE,
            Severity.WARNING,
            f"Integrity store unavailable for {resource_id}",
            {"resource_id": resource_id, "error": str(error)}
        )

    def _snapshot_key(self, resource_id: str) -> str:
        return f"{self.SNAPSHOT_PREFIX}:{resource_id}"

    def _history(self, resource_id: str) -> list[ResourceSnapshot]:
        key = self._snapshot_key(resource_id)
        raw = self.store.get(key)
        return load_records(ResourceSnapshot, raw, key)

    def _record_snapshot(self, snapshot: ResourceSnapshot) -> Optional[ResourceSnapshot]:
        key = self._snapshot_key(snapshot.resource_id)

        with self.store.lock(key):
            history = self._history(snapshot.resource_id)
            previous = history[-1] if history else None
            history.append(snapshot)
            history = history[-self.settings.integrity_max_snapshots:]
            self.store.set(key, [s.model_dump(mode="json") for s in history])

        return previous

    def _changes(self) -> list[IntegrityChange]:
        raw = self.store.get(self.CHANGES_KEY)
        return load_records(IntegrityChange, raw, self.CHANGES_KEY)

    def _record_change(self, change: IntegrityChange) -> None:
        with self.store.lock(self.CHANGES_KEY):
            changes = self._changes()
            changes.append(change)
            changes = changes[-self.settings.integrity_max_changes:]
            self.store.set(self.CHANGES_KEY, [c.model_dump(mode="json") for c in changes])

    def _handle_change(self, change: IntegrityChange) -> None:
        message = f"Integrity change detected in {change.resource_id} ({change.resource_type.value})"
        event = self.event_log.log_event(
            EventCategory.INTEGRITY_VIOLATION,
            change.severity,
            message,
            {
                "change_id": change.id,
                "resource_id": change.resource_id,
                "change_type": change.change_type.value,
                "authorized": change.authorized,
                "size_delta": change.details["size_delta"],
            }
        )

        if not change.authorized or change.severity == Severity.CRITICAL:
            self.event_log.raise_alert(
                EventCategory.INTEGRITY_VIOLATION,
                change.severity,
                f"{change.change_type.value} change in {change.resource_id}",
                [event]
            )

        if self.config.auto_restore and not change.authorized and change.change_type == ChangeType.DELETED:
            self.event_log.log_event(
                EventCategory.ADMIN_ACTION,
                Severity.WARNING,
                f"Attempting automatic restore of {change.resource_id}",
                {"change_id": change.id, "resource_id": change.resource_id}
            )
            try:
                self.restore_hook(change)
            except Exception as e:
                logger.error("integrity_restore_failed", resource_id=change.resource_id, error=str(e))

    def _log_restore_request(self, change: IntegrityChange) -> None:
        logger.warning(
            "integrity_restore_skipped",
            resource_id=change.resource_id,
            change_id=change.id
        )

    def get_status(self) -> MonitorStatus:
        changes = self._changes()
        now = self.clock.now_ms()

        recent = sorted(
            (c for c in changes if now - c.timestamp < RECENT_WINDOW_MS),
            key=lambda c: c.timestamp,
            reverse=True
        )[:RECENT_CHANGES_LIMIT]

        return MonitorStatus(
            is_active=self.is_active,
            last_check_at=self._last_check_at,
            total_snapshots=sum(len(self._history(rid)) for rid in self._snapshot_ids()),
            total_changes=len(changes),
            recent_changes=recent,
        )

    def _snapshot_ids(self) -> list[str]:
        prefix = f"{self.SNAPSHOT_PREFIX}:"
        return [key[len(prefix):] for key in self.store.keys(prefix)]

    def get_stats(self) -> IntegrityStats:
        changes = self._changes()
        now = self.clock.now_ms()

        health = {}
        resource_ids = set(self._resources) | {c.resource_id for c in changes}
        for resource_id in sorted(resource_ids):
            recent = [
                c for c in changes
                if c.resource_id == resource_id and now - c.timestamp < RECENT_WINDOW_MS
            ]
            critical = sum(1 for c in recent if c.severity == Severity.CRITICAL)
            unauthorized = sum(1 for c in recent if not c.authorized)

            if critical > 0 or unauthorized > 2:
                health[resource_id] = "critical"
            elif len(recent) > 5:
                health[resource_id] = "warning"
            else:
                health[resource_id] = "healthy"

        return IntegrityStats(
            changes_by_resource=dict(Counter(c.resource_id for c in changes)),
            changes_by_severity=dict(Counter(c.severity.value for c in changes)),
            unauthorized_changes=sum(1 for c in changes if not c.authorized),
            suspicious_changes=sum(1 for c in changes if c.change_type == ChangeType.SUSPICIOUS),
            resource_health=health,
        )

    def cleanup(self, max_age_ms: int = DEFAULT_RETENTION_MS) -> int:
        """Drop snapshots and changes older than ``max_age_ms``.

        The newest snapshot of each resource is always kept so the next scan
        still has a baseline to diff against.
        """
        cutoff = self.clock.now_ms() - max_age_ms
        removed = 0

        for resource_id in self._snapshot_ids():
            key = self._snapshot_key(resource_id)
            with self.store.lock(key):
                history = self._history(resource_id)
                kept = [s for s in history[:-1] if s.timestamp > cutoff] + history[-1:]
                removed += len(history) - len(kept)
                self.store.set(key, [s.model_dump(mode="json") for s in kept])

        with self.store.lock(self.CHANGES_KEY):
            changes = self._changes()
            kept_changes = [c for c in changes if c.timestamp > cutoff]
            removed += len(changes) - len(kept_changes)
            self.store.set(self.CHANGES_KEY, [c.model_dump(mode="json") for c in kept_changes])

        logger.info("integrity_cleanup", removed=removed)
        return removed

    def export(self) -> dict[str, Any]:
        return {
            "snapshots": {
                rid: [s.model_dump(mode="json") for s in self._history(rid)]
                for rid in self._snapshot_ids()
            },
            "changes": [c.model_dump(mode="json") for c in self._changes()],
            "config": self.config.model_dump(mode="json"),
            "status": self.get_status().model_dump(mode="json"),
            "stats": self.get_stats().model_dump(mode="json"),
            "exported_at": self.clock.now_ms(),
        }

    def clear(self) -> None:
        for resource_id in self._snapshot_ids():
            self.store.delete(self._snapshot_key(resource_id))
        self.store.delete(self.CHANGES_KEY)
        self._last_check_at = None
