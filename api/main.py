"""
Compliance Decision Engine – FastAPI Application
==================================================
Endpoints:
  GET    /health                                 → service health + job queue status
  POST   /access/check                           → geo access decision for an IP
  POST   /restrictions                           → create whitelist / blacklist rule
  GET    /restrictions?type=&target_id=          → live restrictions
  DELETE /restrictions/{id}?actor=               → deactivate a restriction
  GET    /compliance/{country}/requirements      → regulatory rule for a country
  POST   /compliance/check                       → outstanding requirements for a user
  POST   /compliance/age-verifications           → record an age-verification artifact
  POST   /compliance/consents                    → record data-processing consent
  POST   /kyc/verifications                      → start KYC verification
  GET    /kyc/verifications/{id}                 → verification status
  POST   /kyc/verifications/{id}/process         → run automated checks now
  POST   /kyc/verifications/{id}/review          → manual reviewer decision
  GET    /kyc/users/{user_id}/level              → current verification level
  POST   /payments/compliance                    → payment gate decision
  POST   /payments/fraud-check                   → fraud risk score (0–100)
  POST   /payments/transactions                  → record a completed transaction
"""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.dependencies import get_engine
from api.routes.access import router as access_router
from api.routes.compliance import router as compliance_router
from api.routes.kyc import router as kyc_router
from api.routes.payments import router as payments_router
from api.routes.restrictions import router as restrictions_router
from compliance.errors import ConfigurationError, ExternalServiceError, NotFoundError, ValidationError
from compliance.service import ComplianceEngine
from config.settings import settings
from db.client import close_driver, get_driver
from db.neo4j_store import Neo4jStore
from monitoring.logger import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    configure_logging(settings.log_level)
    engine = get_engine()
    if isinstance(engine.store, Neo4jStore):
        engine.store.ensure_schema()    # constraints / indexes
    engine.jobs.recover()               # jobs left pending by the previous process
    engine.jobs.start()
    yield
    # Shutdown
    engine.jobs.stop()
    if isinstance(engine.store, Neo4jStore):
        close_driver()


app = FastAPI(
    title="Compliance Decision Engine",
    description=(
        "Geo access control, KYC/AML verification and payment fraud screening. "
        "Fraud scores: 0–50 APPROVE | 51–80 REVIEW | 81–100 REJECT"
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(access_router)
app.include_router(restrictions_router)
app.include_router(compliance_router)
app.include_router(kyc_router)
app.include_router(payments_router)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConfigurationError)
@app.exception_handler(ExternalServiceError)
async def unavailable_handler(request: Request, exc: Exception):
    logger.error("Dependency unavailable on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.get("/health", tags=["System"])
def health_check(engine: ComplianceEngine = Depends(get_engine)):
    """Store connectivity and background job status."""
    store_ok = True
    store_error = None
    if isinstance(engine.store, Neo4jStore):
        try:
            get_driver().verify_connectivity()
        except Exception as e:
            store_ok = False
            store_error = str(e)

    dead_letters = engine.jobs.dead_letters
    return {
        "status": "healthy" if store_ok and not dead_letters else "degraded",
        "store": {"backend": type(engine.store).__name__, "connected": store_ok, "error": store_error},
        "jobs": {"pending": engine.jobs.pending_count, "dead_letters": len(dead_letters)},
        "payment_thresholds_cents": settings.payment_thresholds,
    }


@app.get("/", tags=["System"])
def root():
    return {
        "service": "Compliance Decision Engine",
        "docs": "/docs",
        "health": "/health",
        "version": "1.0.0",
    }
