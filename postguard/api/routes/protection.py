from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from postguard.api.dependencies import get_engine
from postguard.schemas.detection import AttackStats, DetectionVerdict, ValidationContext, ValidationResult
from postguard.schemas.rate_limit import AdmissionDecision, RateLimitStats
from postguard.security.engine import ProtectionEngine

router = APIRouter(prefix="/api/protection", tags=["protection"])


class RateLimitCheck(BaseModel):
    actor_id: str = Field(min_length=1)
    action: str = Field(min_length=1)
    multi_tier: bool = False


class DetectRequest(BaseModel):
    input: str
    context: Optional[str] = None
    actor_id: Optional[str] = None


class ValidateRequest(BaseModel):
    value: str
    context: ValidationContext
    actor_id: Optional[str] = None


@router.post("/rate-limit/check", response_model=AdmissionDecision)
async def check_rate_limit(
    payload: RateLimitCheck,
    engine: ProtectionEngine = Depends(get_engine)
):
    if payload.multi_tier:
        return engine.rate_limiter.check_multi_tier(payload.actor_id, payload.action)
    return engine.rate_limiter.check(payload.actor_id, payload.action)


@router.get("/rate-limit/stats/{actor_id}/{action}", response_model=RateLimitStats)
async def get_rate_limit_stats(
    actor_id: str,
    action: str,
    engine: ProtectionEngine = Depends(get_engine)
):
    stats = engine.rate_limiter.get_stats(actor_id, action)

    if stats is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No rate limit configured for action {action}"
        )

    return stats


@router.delete("/rate-limit/{actor_id}")
async def clear_rate_limits(
    actor_id: str,
    action: Optional[str] = None,
    engine: ProtectionEngine = Depends(get_engine)
):
    cleared = engine.rate_limiter.clear(actor_id, action)
    return {"actor_id": actor_id, "action": action, "cleared": cleared}


@router.post("/detect", response_model=DetectionVerdict)
async def detect_attack(
    payload: DetectRequest,
    engine: ProtectionEngine = Depends(get_engine)
):
    return engine.detector.detect(payload.input, payload.context, payload.actor_id)


@router.post("/validate", response_model=ValidationResult)
async def validate_input(
    payload: ValidateRequest,
    engine: ProtectionEngine = Depends(get_engine)
):
    return engine.validator.validate(payload.value, payload.context, payload.actor_id)


@router.get("/attacks/stats", response_model=AttackStats)
async def get_attack_stats(engine: ProtectionEngine = Depends(get_engine)):
    return engine.detector.get_attack_stats()


@router.get("/attacks/blocks/{actor_id}")
async def get_actor_block(
    actor_id: str,
    engine: ProtectionEngine = Depends(get_engine)
):
    block = engine.detector.is_actor_blocked(actor_id)
    return {"actor_id": actor_id, "blocked": block is not None, "block": block}


@router.delete("/attacks/blocks/{actor_id}")
async def clear_attack_blocks(
    actor_id: str,
    engine: ProtectionEngine = Depends(get_engine)
):
    cleared = engine.detector.clear_blocks(actor_id)
    return {"actor_id": actor_id, "cleared": cleared}
