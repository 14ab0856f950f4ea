from extension_access.routes import extension_router, session_router, diagnostics_router
from extension_access.errors import ExtensionAccessError
from utils.environment import ENVIRONMENT
from fastapi import FastAPI, APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from database import client, check_db_connection
import os
import logging
from datetime import datetime, timezone

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create the main app
app = FastAPI(title="Extension Access - Entitlements, Daily Use and Sessions")

api_router = APIRouter(prefix="/api")


@app.exception_handler(ExtensionAccessError)
async def extension_access_error_handler(request: Request, exc: ExtensionAccessError):
    """Render access errors as {error, code, message, ...} with their status code"""
    if exc.status_code >= 500:
        logger.error(f"{request.url.path} failed: {exc.code} - {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@api_router.get("/health")
async def health():
    """Liveness plus database reachability"""
    db_ok, db_error = await check_db_connection()
    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "connected" if db_ok else db_error,
        "environment": ENVIRONMENT,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# Include all routers
api_router.include_router(extension_router)
api_router.include_router(session_router)
api_router.include_router(diagnostics_router)

app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=[origin.strip() for origin in os.environ.get(
        'CORS_ORIGINS', 'http://localhost:3000').split(',')],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup():
    # Check database connection first - fail fast if database is unavailable
    db_ok, db_error = await check_db_connection()
    if not db_ok:
        logger.critical(f"Database connection failed on startup: {db_error}")
        raise RuntimeError(
            f"Cannot start application - database connection failed: {db_error}")

    from extension_access.db_init import ensure_indexes
    from database import db
    await ensure_indexes(db)
    logger.info(f"Extension access service started ({ENVIRONMENT})")


@app.on_event("shutdown")
async def shutdown_db_client():
    # Close MongoDB client
    client.close()
