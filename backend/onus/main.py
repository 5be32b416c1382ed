"""
Onus Health Records API
Role-based health records: patients, providers and admins, with consent-gated
access to clinical data.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import settings
from .core.errors import (
    AccessDeniedError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from .models.base import Base, engine
from .models import user, sequence, connection, document, medical_record, consultation, audit  # noqa: F401
from .api import auth, users, providers, patients, records, consultations, documents, admin
from .core.audit_middleware import AuditMiddleware
from .seed_demo import seed_demo_data

logger = logging.getLogger(__name__)

# Create all database tables
# NOTE: In production, use Alembic migrations instead of create_all()
Base.metadata.create_all(bind=engine)

if settings.SEED_DEMO_DATA:
    seed_demo_data()

app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description=(
        "Health records shared between patients and their providers. "
        "Providers read and write clinical data only through a patient-approved connection."
    ),
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(AuditMiddleware)


# ── error mapping ────────────────────────────────────────────────────────────

def _not_found() -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": NotFoundError.default_message})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": exc.message, "errors": exc.errors})


@app.exception_handler(AccessDeniedError)
async def access_denied_handler(request: Request, exc: AccessDeniedError):
    logger.info("Access denied: %s %s", request.method, request.url.path)
    if settings.CONCEAL_FORBIDDEN_AS_NOT_FOUND:
        return _not_found()
    return JSONResponse(status_code=403, content={"detail": AccessDeniedError.default_message})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    if settings.CONCEAL_FORBIDDEN_AS_NOT_FOUND:
        return _not_found()
    return JSONResponse(status_code=404, content={"detail": exc.message})


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return JSONResponse(status_code=409, content={"detail": exc.message})


@app.exception_handler(InvalidStateError)
async def invalid_state_handler(request: Request, exc: InvalidStateError):
    return JSONResponse(status_code=409, content={"detail": exc.message})


app.include_router(auth.router, prefix="/api/v1")
app.include_router(users.router, prefix="/api/v1")
app.include_router(providers.router, prefix="/api/v1")
app.include_router(patients.router, prefix="/api/v1")
app.include_router(records.router, prefix="/api/v1")
app.include_router(consultations.router, prefix="/api/v1")
app.include_router(documents.router, prefix="/api/v1")
app.include_router(admin.router, prefix="/api/v1")


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": settings.APP_NAME, "version": settings.VERSION}
