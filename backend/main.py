from dotenv import load_dotenv
load_dotenv() # Load .env file at the very beginning

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app import config
from app.db import init_db, ensure_indexes
from app.routes import (
    auth, employees, departments, schedules, messages, realtime,
    audit, qr, reports, export, dashboard, users, health
)
from app.services.token_cleanup import start_token_cleanup, stop_token_cleanup
from app.utils.logger import configure_logging, log_error, log_warning
from app.utils.ws_manager import manager
import logging
from app.middleware.rate_limiter import RateLimiterMiddleware
from app.middleware.error_handler import ErrorHandlerMiddleware, register_exception_handlers

configure_logging(config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="QCED API",
    description="Qassim Chamber Employee Directory: employees, departments, schedules, chat and audit",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

@app.on_event("startup")
async def startup_event():
    """Initialize services on startup"""
    if config.SECRET_KEY == config.DEV_SECRET_KEY:
        log_warning("SECRET_KEY is not set; using the development default")
    if config.ENSURE_INDEXES:
        try:
            await ensure_indexes()
        except Exception as e:
            log_error("Failed to ensure MongoDB indexes", e)
    await start_token_cleanup()
    await manager.start()
    logger.info("Application startup completed")

@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup services on shutdown"""
    await manager.stop()
    await stop_token_cleanup()
    logger.info("Application shutdown completed")

# Last added runs first: CORS wraps the error handler, which wraps the rate limiter

# Basic IP rate limiting (configurable via RATE_LIMIT / RATE_LIMIT_WINDOW env vars)
app.add_middleware(RateLimiterMiddleware, redis_url=config.REDIS_URL)

app.add_middleware(ErrorHandlerMiddleware)
register_exception_handlers(app)

# Explicit origin list is mandatory when allow_credentials=True
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize Database
init_db(app)

app.include_router(health.router, tags=["Health"])
app.include_router(realtime.router, tags=["Realtime"])

@app.get("/")
async def root():
    return {
        "message": "Welcome to the Qassim Chamber Employee Directory API",
        "docs": "/docs",
        "health": "/health",
        "websocket": "/ws?token=<jwt>"
    }

# Include routers with proper /api prefix
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(employees.router, prefix="/api/employees", tags=["Employees"])
app.include_router(departments.router, prefix="/api/departments", tags=["Departments"])
app.include_router(schedules.router, prefix="/api/schedules", tags=["Schedules"])
app.include_router(messages.router, prefix="/api/messages", tags=["Messages"])
app.include_router(audit.router, prefix="/api/audit", tags=["Audit Logs"])
app.include_router(qr.router, prefix="/api/qr", tags=["QR Codes"])
app.include_router(reports.router, prefix="/api/reports", tags=["Reports"])
app.include_router(export.router, prefix="/api/export", tags=["Export"])
app.include_router(dashboard.router, prefix="/api/dashboard", tags=["Dashboard"])
app.include_router(users.router, prefix="/api/users", tags=["Users"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
