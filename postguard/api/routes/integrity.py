from typing import Optional

from fastapi import APIRouter, Depends

from postguard.api.dependencies import get_engine
from postguard.schemas.integrity import IntegrityChange, IntegrityStats, MonitoringConfig, MonitorStatus
from postguard.security.engine import ProtectionEngine

router = APIRouter(prefix="/api/integrity", tags=["integrity"])


@router.get("/status", response_model=MonitorStatus)
async def get_integrity_status(engine: ProtectionEngine = Depends(get_engine)):
    return engine.monitor.get_status()


@router.get("/stats", response_model=IntegrityStats)
async def get_integrity_stats(engine: ProtectionEngine = Depends(get_engine)):
    return engine.monitor.get_stats()


@router.post("/check", response_model=list[IntegrityChange])
async def run_integrity_check(engine: ProtectionEngine = Depends(get_engine)):
    return engine.monitor.perform_manual_check()


@router.post("/start")
async def start_integrity_monitoring(
    config: Optional[MonitoringConfig] = None,
    engine: ProtectionEngine = Depends(get_engine)
):
    started = engine.monitor.start_monitoring(config)
    return {"started": started, "is_active": engine.monitor.is_active}


@router.post("/stop")
async def stop_integrity_monitoring(engine: ProtectionEngine = Depends(get_engine)):
    engine.monitor.stop_monitoring()
    return {"stopped": True, "is_active": engine.monitor.is_active}


@router.get("/export")
async def export_integrity_data(engine: ProtectionEngine = Depends(get_engine)):
    return engine.monitor.export()
