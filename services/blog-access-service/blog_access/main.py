"""FastAPI application wiring for the blog access service."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from psycopg_pool import ConnectionPool

from .api.admin import router as admin_router
from .api.middleware import EnrollmentGateMiddleware
from .api.routes import router as v1_router
from .config import get_settings
from .domain.enrollment import EnrollmentStateMachine
from .domain.roles import RoleGuard
from .domain.service import AccountService
from .repository import AccountRepository
from .security.totp import TotpEngine
from .security.vault import SecretVault

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, vault, services) for the app lifecycle."""
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    repository = AccountRepository(pool)
    enrollment = EnrollmentStateMachine(
        repository,
        SecretVault(settings.mfa_encryption_key),
        TotpEngine(),
        issuer=settings.totp_issuer,
    )
    app.state.pool = pool
    app.state.enrollment = enrollment
    app.state.account_service = AccountService(repository, enrollment)
    app.state.role_guard = RoleGuard(repository)
    try:
        yield
    finally:
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

app.add_middleware(EnrollmentGateMiddleware)

# CORS for local frontend dev
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


app.include_router(v1_router)
app.include_router(admin_router)


# Prometheus metrics endpoint for Prometheus scrapes
try:
    from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
except ImportError:  # pragma: no cover - metrics are optional in dev
    pass
