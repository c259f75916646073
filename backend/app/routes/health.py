from fastapi import APIRouter
from fastapi.responses import JSONResponse
from datetime import datetime
import time
from app.db import get_db
from app.utils.ws_manager import manager
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

API_VERSION = "1.0.0"


async def _database_check() -> dict:
    started = time.perf_counter()
    try:
        await get_db().command("ping")
    except Exception as e:
        logger.warning(f"Database ping failed: {e}")
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy", "response_time_ms": round((time.perf_counter() - started) * 1000, 2)}


@router.get("/health")
@router.get("/api/health")
async def health_check():
    """
    Basic health check endpoint for production monitoring
    """
    database = await _database_check()
    return {
        "status": "healthy" if database["status"] == "healthy" else "degraded",
        "timestamp": datetime.utcnow().isoformat(),
        "version": API_VERSION,
        "checks": {
            "database": database,
            "websockets": {"status": "healthy", **manager.get_connection_stats()},
        }
    }


@router.get("/health/ready")
async def readiness_check():
    """
    Readiness probe: 503 until the database answers
    """
    database = await _database_check()
    if database["status"] != "healthy":
        return JSONResponse(status_code=503, content={
            "status": "not_ready",
            "timestamp": datetime.utcnow().isoformat(),
            "error": database.get("error")
        })
    return {
        "status": "ready",
        "timestamp": datetime.utcnow().isoformat()
    }


@router.get("/health/live")
async def liveness_check():
    return {
        "status": "alive",
        "timestamp": datetime.utcnow().isoformat()
    }
