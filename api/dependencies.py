"""
FastAPI dependencies.

Usage:
    @router.post("/check")
    def check(request: AccessCheckRequest, engine: ComplianceEngine = Depends(get_engine)):
        ...

Tests swap the engine with ``app.dependency_overrides[get_engine]``.
"""
import threading
from typing import Optional

from compliance.service import ComplianceEngine, build_engine
from config.settings import settings

_engine: Optional[ComplianceEngine] = None
_engine_lock = threading.Lock()


def get_engine() -> ComplianceEngine:
    """Process-wide engine, built on first use from the environment settings."""
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = build_engine(settings)
        return _engine


def reset_engine() -> None:
    global _engine
    with _engine_lock:
        _engine = None
