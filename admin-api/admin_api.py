"""
EVJoints Admin API
==================
FastAPI service providing:
  - Charging-station review queue and approved directory (list, CSV/XLSX, edit)
  - Network reconciliation (deduplicate-by-name, activate, delete)
  - Customer and trip reporting, trip story moderation
  - Vendor OTP login issuing JWT bearer tokens

Runs at 0.0.0.0:4000 by default.

Environment variables:
  DATABASE_URL          - PostgreSQL connection string (required)
  EV_API_PORT           - Port to bind          (default: 4000)
  EV_DB_POOL_MIN        - Pool min connections  (default: 2)
  EV_DB_POOL_MAX        - Pool max connections  (default: 10)
  EV_JWT_SECRET         - JWT signing secret    (default: dev secret)
  EV_JWT_EXPIRY_HOURS   - Token lifetime        (default: 8)
  EV_AUTH_DB            - SQLite audit DB path  (default: ./ev_auth.db)
  EV_OTP_EXPIRY_SECONDS - OTP lifetime          (default: 300)
  SMS_GATEWAY_URL       - SMS gateway endpoint  (default: empty, log only)
  EV_UPLOAD_ROOT        - Attachment file root  (default: cwd)
  COUNTRY_CODE          - Regional settings     (default: IN)
"""

import os
import logging
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

import psycopg2
import psycopg2.pool
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("ev-admin")

PORT = int(os.environ.get("EV_API_PORT", "4000"))

DATABASE_URL = os.environ.get(
    "DATABASE_URL",
    "postgresql://evjoints@localhost:5432/evjoints",
)

POOL_MIN = int(os.environ.get("EV_DB_POOL_MIN", "2"))
POOL_MAX = int(os.environ.get("EV_DB_POOL_MAX", "10"))

# ---------------------------------------------------------------------------
# Database helpers
# ---------------------------------------------------------------------------

_pool: Optional[psycopg2.pool.ThreadedConnectionPool] = None


def _get_pool() -> psycopg2.pool.ThreadedConnectionPool:
    """Lazy-initialize the connection pool."""
    global _pool
    if _pool is None or _pool.closed:
        _pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=POOL_MIN,
            maxconn=POOL_MAX,
            dsn=DATABASE_URL,
        )
    return _pool


def _release(pool, conn) -> None:
    """Roll back whatever is open and hand the connection back.

    A connection that cannot roll back is closed rather than reused.
    """
    try:
        conn.rollback()
    except Exception as e:
        logger.warning("Discarding pooled connection after failed rollback: %s", e)
        pool.putconn(conn, close=True)
        return
    pool.putconn(conn)


@contextmanager
def get_connection():
    """Context manager for PostgreSQL connections from the pool.

    Read-only endpoints use this; nothing is committed.
    """
    pool = _get_pool()
    conn = pool.getconn()
    try:
        yield conn
    finally:
        _release(pool, conn)


@contextmanager
def transaction():
    """Borrow one pooled connection for a whole write workflow.

    Commits once on clean exit. Any exception, including an HTTPException
    raised to short-circuit the workflow, rolls back everything issued on
    the connection. The connection always goes back to the pool.
    """
    pool = _get_pool()
    conn = pool.getconn()
    try:
        yield conn
        conn.commit()
    except Exception:
        _release(pool, conn)
        raise
    pool.putconn(conn)


def rows_to_dicts(cursor) -> List[Dict[str, Any]]:
    """Fetch all remaining rows as dicts keyed by column name."""
    columns = [desc[0] for desc in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def _db_label() -> str:
    return DATABASE_URL.split("@")[-1] if "@" in DATABASE_URL else DATABASE_URL


# ---------------------------------------------------------------------------
# Error rendering
# ---------------------------------------------------------------------------

def _http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict):
        body = dict(exc.detail)
    else:
        body = {"message": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)


def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        errors.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg"))
    return JSONResponse(status_code=400, content={"message": "Validation failed", "errors": errors})


def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"message": str(exc) or "Internal server error"})


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

def create_app() -> FastAPI:
    from auth import OtpStore, OTP_EXPIRY_SECONDS, router as auth_router
    from stations import router as stations_router
    from charging_stations import router as charging_stations_router
    from networks import router as networks_router
    from customers import router as customers_router
    from trips import router as trips_router, ensure_trip_story_columns
    from attachments import router as attachments_router
    from mutations import router as mutations_router
    from db_auth import init_auth_db

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_auth_db()
        ensure_trip_story_columns()
        yield

    app = FastAPI(
        title="EVJoints Admin API",
        description="Charging-station review, network reconciliation, customer and trip reporting.",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("%s %s", request.method, request.url.path)
        return await call_next(request)

    app.add_exception_handler(HTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.state.otp_store = OtpStore(ttl_seconds=OTP_EXPIRY_SECONDS)

    app.include_router(auth_router)
    app.include_router(stations_router)
    app.include_router(charging_stations_router)
    app.include_router(networks_router)
    app.include_router(customers_router)
    app.include_router(trips_router)
    app.include_router(attachments_router)
    app.include_router(mutations_router)

    @app.get("/health")
    @app.get("/api/health")
    def health():
        """Health check including DB connectivity."""
        status = {"status": "ok", "database": "postgresql", "timestamp": datetime.now().isoformat()}

        try:
            with get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) FROM charging_station")
                status["station_count"] = cursor.fetchone()[0]
        except Exception as e:
            status["status"] = "db_error"
            status["error"] = str(e)

        return status

    return app


app = create_app()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    logger.info("=" * 60)
    logger.info("EVJoints Admin API v1.0 (PostgreSQL)")
    logger.info("Database: %s", _db_label())
    logger.info("Port: %d", PORT)
    logger.info("=" * 60)

    uvicorn.run(app, host="0.0.0.0", port=PORT, log_level="info")
