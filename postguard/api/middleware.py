import math
from urllib.parse import unquote_plus

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from postguard.core.logger import logger

EXEMPT_PREFIXES = ("/docs", "/redoc", "/openapi.json")
GENERAL_ACTION = "api_general"


class ProtectionMiddleware(BaseHTTPMiddleware):
    """Rate limits and scans every request outside the administration API."""

    async def dispatch(self, request: Request, call_next):
        engine = request.app.state.engine
        path = request.url.path

        if path.startswith(engine.settings.admin_api_prefix) or path.startswith(EXEMPT_PREFIXES):
            return await call_next(request)

        try:
            blocked = self._guard(request, engine)
        except Exception as e:
            logger.error("middleware_error", error=str(e), path=path)
            blocked = None

        if blocked is not None:
            return blocked

        return await call_next(request)

    def _guard(self, request: Request, engine):
        actor_id = self._actor_id(request, engine.settings.actor_header)

        decision = engine.rate_limiter.check(actor_id, GENERAL_ACTION)
        if not decision.allowed:
            return JSONResponse(
                status_code=429,
                content={
                    "detail": "Too many requests",
                    "reason": decision.reason.value,
                    "retry_after_ms": decision.retry_after_ms,
                },
                headers={"Retry-After": str(math.ceil(decision.retry_after_ms / 1000))}
            )

        query = unquote_plus(request.url.query)
        if query:
            verdict = engine.detector.detect(query, context="query_string", actor_id=actor_id)
            if verdict.should_block:
                logger.warning(
                    "request_blocked",
                    actor_id=actor_id,
                    path=request.url.path,
                    categories=[c.value for c in verdict.categories]
                )
                return JSONResponse(
                    status_code=403,
                    content={
                        "detail": "Request blocked",
                        "categories": [c.value for c in verdict.categories],
                        "recommendation": verdict.recommendation,
                    }
                )

        return None

    def _actor_id(self, request: Request, header: str) -> str:
        actor = request.headers.get(header)
        if actor:
            return actor

        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()

        if request.client:
            return request.client.host

        return "unknown"
