from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from intake.api import admin, dashboard, documents, health, submissions
from intake.core.config import CORS_ORIGINS, LOG_LEVEL
from intake.core.logger import configure_logging
from intake.middleware.request_logger import RequestLoggerMiddleware
from intake.services.bootstrap_db import create_all

# ---- Logging config ---------------------------------------------------------
configure_logging(LOG_LEVEL)
logger = logging.getLogger("intake.main")
logger.info("Starting intake backend with LOG_LEVEL=%s", LOG_LEVEL)

# ---- FastAPI app ------------------------------------------------------------
app = FastAPI(title="Lead Intake Backend")
app.add_middleware(RequestLoggerMiddleware)

# ---- CORS -------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---- Routers ----------------------------------------------------------------
# Public forms: /api/leads/* and /api/verifications
app.include_router(submissions.router)
# Admin triage + review: /api/admin/*
app.include_router(admin.router)
# Signed-in user's own records: /api/me/*
app.include_router(dashboard.router)
# Local-backend signed downloads
app.include_router(documents.router)
# Health + introspection
app.include_router(health.router, prefix="/health", tags=["Health"])

logger.info("Routers registered.")


# ---- Startup ----------------------------------------------------------------
@app.on_event("startup")
def _startup() -> None:
    # Auto-create tables (safe to run repeatedly)
    create_all()
    logger.info("Startup completed.")
