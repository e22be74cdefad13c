"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the PDF QR Link backend's
maintenance surface. Controllers are intentionally thin: they accept
requests, delegate to services, and return JSON responses.

Endpoints implemented:
- POST /auth/login
- GET /admin/migrations
- POST /admin/migrations/run
- GET /admin/logs
- GET /admin/logs/export
- GET /admin/logs/{entry_id}
- GET /admin/settings
- GET /admin/storage
- GET /admin/database/stats
- GET /health
"""

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.responses import Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import OperationalError
from sqlmodel import Session
from datetime import datetime, timezone
from typing import Optional
import json
import logging
import time
import uuid
from .database import engine, get_session
from . import services, repositories, models
from .auth import require_admin
from .schemas import LoginIn, RunMigrationsIn, ExportFormat
from .utils.rate_limit import LoginAttemptLimiter
from .config import settings

app = FastAPI(title="PDF QR Link API")
logger = logging.getLogger("pdfqr.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)
_login_limiter = LoginAttemptLimiter()

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def bootstrap_database():
    """Apply pending migrations at startup when enabled.

    Returns the `MigrationReport`, or `None` when startup migrations are
    disabled. A failed run is logged and left for an operator to retry
    from `/admin/migrations/run` or `run_migrations.py`.
    """
    if not settings.RUN_MIGRATIONS_ON_STARTUP:
        return None
    report = services.MigrationService(engine).run()
    if report.success:
        logger.info("startup_migrations %s", json.dumps(report.to_dict(), ensure_ascii=True))
    else:
        logger.error("startup_migrations %s", json.dumps(report.to_dict(), ensure_ascii=True))
    return report


bootstrap_database()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/admin"):
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
    return response


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _max_login_attempts(db: Session) -> int:
    try:
        raw = repositories.SettingRepository(db).get_value('security.max_login_attempts', '5')
    except OperationalError:
        db.rollback()
        return 5
    try:
        return max(1, int(raw))
    except (TypeError, ValueError):
        return 5


@app.post('/auth/login')
def login(payload: LoginIn, request: Request, db: Session = Depends(get_session)):
    """Authenticate a user and return a short-lived JWT token.

    Repeated failures from the same client for the same username are
    throttled using the `security.max_login_attempts` setting.
    """
    key = f"{_client_ip(request)}:{payload.username}"
    allowed, retry_after = _login_limiter.check(key, _max_login_attempts(db), settings.LOGIN_WINDOW_SECONDS)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"too many failed attempts; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )
    token = services.AuthService(db).authenticate(payload.username, payload.password)
    if not token:
        _login_limiter.record_failure(key)
        raise HTTPException(status_code=401, detail='invalid credentials')
    _login_limiter.reset(key)
    return {'access_token': token, 'token_type': 'bearer'}


@app.get('/admin/migrations')
def migration_status(user: models.User = Depends(require_admin)):
    """List every known migration with its applied/pending status."""
    return services.MigrationService(engine).status()


@app.post('/admin/migrations/run')
def run_migrations(body: RunMigrationsIn, user: models.User = Depends(require_admin)):
    """Apply pending migrations.

    The body must carry `{"confirm": true}`. The response is the run
    report; a halted run is still a 200 with `success: false` and the name
    of the failing migration.
    """
    if not body.confirm:
        raise HTTPException(status_code=400, detail='confirm must be true to run migrations')
    report = services.MigrationService(engine).run()
    return report.to_dict()


@app.get('/admin/logs')
def list_logs(start_date: Optional[str] = None, end_date: Optional[str] = None, action: Optional[str] = None,
              db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    """Return audit entries in the date range, newest first."""
    svc = services.AuditService(db)
    return [svc.to_dict(e) for e in svc.list_logs(start_date, end_date, action=action)]


@app.get('/admin/logs/export')
def export_logs(format: ExportFormat = 'csv', start_date: Optional[str] = None, end_date: Optional[str] = None,
                db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    """Download audit entries as CSV or JSON.

    Malformed dates fall back to the default range instead of failing.
    """
    svc = services.AuditService(db)
    entries = svc.list_logs(start_date, end_date)
    stamp = datetime.now(timezone.utc).strftime('%Y-%m-%d')
    if format == 'json':
        body, media_type = svc.export_json(entries), 'application/json'
    else:
        body, media_type = svc.export_csv(entries), 'text/csv'
    return Response(
        content=body,
        media_type=media_type,
        headers={'Content-Disposition': f'attachment; filename="audit_logs_{stamp}.{format}"'},
    )


@app.get('/admin/logs/{entry_id}')
def log_detail(entry_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    entry = services.AuditService(db).get_entry(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail='log entry not found')
    return entry


@app.get('/admin/settings')
def list_settings(db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    """Every setting, grouped by category (the key prefix)."""
    return services.SettingsService(db).grouped()


@app.get('/admin/storage')
def storage_usage(db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    """Storage used by uploaded documents against `storage.max_space`."""
    return services.StorageService(db).usage()


@app.get('/admin/database/stats')
def database_stats(user: models.User = Depends(require_admin)):
    """Row counts per table and the database file size."""
    return services.DatabaseService(engine).stats()


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
