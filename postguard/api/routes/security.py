from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from postguard.api.dependencies import get_engine
from postguard.schemas.security_event import (
    Alert,
    EventCategory,
    EventFilter,
    EventStats,
    SecurityEvent,
    Severity,
    TimeRange,
)
from postguard.security.engine import ProtectionEngine

router = APIRouter(prefix="/api/security", tags=["security"])


def _time_range(engine: ProtectionEngine, start: Optional[int], end: Optional[int]) -> Optional[TimeRange]:
    if start is None and end is None:
        return None
    return TimeRange(
        start=start if start is not None else 0,
        end=end if end is not None else engine.clock.now_ms()
    )


@router.get("/events", response_model=list[SecurityEvent])
async def get_security_events(
    category: Optional[EventCategory] = None,
    severity: Optional[Severity] = None,
    actor_id: Optional[str] = None,
    start: Optional[int] = Query(None, ge=0),
    end: Optional[int] = Query(None, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    engine: ProtectionEngine = Depends(get_engine)
):
    return engine.event_log.query(EventFilter(
        category=category,
        severity=severity,
        actor_id=actor_id,
        time_range=_time_range(engine, start, end),
        limit=limit,
    ))


@router.get("/events/stats", response_model=EventStats)
async def get_security_stats(
    start: Optional[int] = Query(None, ge=0),
    end: Optional[int] = Query(None, ge=0),
    engine: ProtectionEngine = Depends(get_engine)
):
    return engine.event_log.get_stats(_time_range(engine, start, end))


@router.get("/alerts", response_model=list[Alert])
async def get_alerts(
    acknowledged: Optional[bool] = None,
    engine: ProtectionEngine = Depends(get_engine)
):
    return engine.event_log.get_alerts(acknowledged)


@router.post("/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(
    alert_id: str,
    engine: ProtectionEngine = Depends(get_engine)
):
    if not engine.event_log.acknowledge(alert_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Alert not found"
        )

    engine.event_log.log_admin_action("acknowledge_alert", alert_id=alert_id)
    return {"alert_id": alert_id, "acknowledged": True}


@router.get("/export")
async def export_security_log(engine: ProtectionEngine = Depends(get_engine)):
    return engine.event_log.export()


@router.post("/cleanup")
async def cleanup_security_log(
    max_age_ms: Optional[int] = Query(None, ge=0),
    engine: ProtectionEngine = Depends(get_engine)
):
    removed = engine.event_log.cleanup(max_age_ms)
    return {"removed": removed}
