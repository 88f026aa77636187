from fastapi import Request

from postguard.security.engine import ProtectionEngine


def get_engine(request: Request) -> ProtectionEngine:
    return request.app.state.engine
