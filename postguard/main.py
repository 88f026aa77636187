from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from postguard import __version__
from postguard.api.middleware import ProtectionMiddleware
from postguard.api.routes import integrity, protection, security
from postguard.config import settings
from postguard.core.logger import logger
from postguard.security.engine import ProtectionEngine
from postguard.storage.base import StoreError


def create_app(engine: Optional[ProtectionEngine] = None) -> FastAPI:
    engine = engine or ProtectionEngine(settings)

    app = FastAPI(
        title="postguard API",
        description="Protection engine for the newsletter administration backend",
        version=__version__
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(ProtectionMiddleware)

    app.include_router(protection.router)
    app.include_router(security.router)
    app.include_router(integrity.router)

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        logger.error("store_unavailable", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=503, content={"detail": "Record store unavailable"})

    @app.get("/")
    async def root():
        return {"status": "ok", "service": "postguard"}

    @app.get("/health")
    async def health():
        return {"status": "healthy", "monitoring": engine.monitor.is_active if engine.initialized else False}

    @app.on_event("startup")
    async def startup_event():
        engine.init()
        logger.info("postguard_startup", environment=engine.settings.environment)

    @app.on_event("shutdown")
    async def shutdown_event():
        engine.shutdown()
        logger.info("postguard_shutdown")

    return app


app = create_app()
