from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import TimeoutError as SQLAlchemyTimeoutError
from app.api.v1.routes import router as api_router
from app.core.config import get_settings, parse_cors_origins
import logging
import time
from app.core.database import Base, engine, SessionLocal
from app.core.logging import configure_logging
from app.middlewares.rate_limit import limiter
from app.models import User, UserRole
from app.services.reconciler import ReconcilerPool


settings = get_settings()

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)
app.state.limiter = limiter
app.state.reconciler = None
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
_started_at = time.time()


@app.exception_handler(SQLAlchemyTimeoutError)
async def sqlalchemy_timeout_handler(request, exc):
    logger.warning("Database pool timeout on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Service is busy. Please retry in a moment."},
    )


allow_origins = parse_cors_origins(settings.cors_origins or "")
logger.info("CORS allow_origins=%s", allow_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.api_v1_prefix)


def _bootstrap_admins() -> None:
    raw = (settings.bootstrap_admin_emails or "").strip()
    if not raw:
        return

    emails = [item.strip().lower() for item in raw.split(",") if item.strip()]
    if not emails:
        return

    db = SessionLocal()
    try:
        updated = 0
        missing: list[str] = []
        for email in emails:
            user = db.query(User).filter(User.email == email).first()
            if not user:
                missing.append(email)
                continue
            if user.role != UserRole.ADMIN:
                user.role = UserRole.ADMIN
                updated += 1
        if updated:
            db.commit()
            logger.info("Bootstrapped admin role for %s user(s).", updated)
        if missing:
            logger.warning("BOOTSTRAP_ADMIN_EMAILS users not found: %s", ", ".join(missing))
    except Exception as exc:
        logger.warning("Admin bootstrap failed: %s", exc)
    finally:
        db.close()


def _start_reconciler() -> None:
    pool = ReconcilerPool(settings=settings).start()
    app.state.reconciler = pool
    if not settings.reconcile_resume_on_startup:
        return
    try:
        pool.resume_pending()
    except Exception as exc:
        logger.warning("Could not resume pending reconciliations: %s", exc)


@app.on_event("startup")
def on_startup():
    if settings.auto_create_tables:
        # Optional local fallback for fresh environments.
        try:
            Base.metadata.create_all(bind=engine)
        except Exception as exc:
            logger.warning("DB unavailable on startup, skipping table creation: %s", exc)
    _bootstrap_admins()
    _start_reconciler()


@app.on_event("shutdown")
def on_shutdown():
    pool = app.state.reconciler
    app.state.reconciler = None
    if pool is not None:
        # Unfinished runs stay pending and are resumed on the next start.
        pool.shutdown(wait=True)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/healthz")
def healthz():
    # Liveness: process is up.
    pool = app.state.reconciler
    return {
        "status": "ok",
        "uptime_seconds": int(max(0, time.time() - _started_at)),
        "service": settings.app_name,
        "reconciler_running": bool(pool and pool.running),
        "reconciliations_in_flight": len(pool.in_flight()) if pool else 0,
    }


@app.get("/readyz")
def readyz():
    # Readiness: database is reachable.
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return {
            "status": "ready",
            "uptime_seconds": int(max(0, time.time() - _started_at)),
        }
    except Exception as exc:
        logger.warning("Readiness DB check failed: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "detail": "database_unavailable"},
        )
    finally:
        db.close()
