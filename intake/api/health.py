from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from intake.core.config import DOCUMENT_BACKEND, RATE_LIMIT_BACKEND, RATE_LIMIT_MAX, RATE_LIMIT_WINDOW_SEC
from intake.core.db import get_db
from intake.services import event_bus

logger = logging.getLogger("intake.api.health")
router = APIRouter()


@router.get("/ping")
def ping():
    return {"ok": True}


@router.get("/db")
def db_health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("GET /health/db failed: %s", type(e).__name__)
        return {"ok": False, "error": "database_unavailable"}
    return {"ok": True}


@router.get("/config")
def config_health():
    """Which backends this process was started with (no secrets)."""
    return {
        "ok": True,
        "documents": DOCUMENT_BACKEND,
        "rateLimit": {"backend": RATE_LIMIT_BACKEND, "windowSec": RATE_LIMIT_WINDOW_SEC, "max": RATE_LIMIT_MAX},
    }


@router.get("/routes")
def list_routes(request: Request):
    """All registered routes, sorted, to spot collisions."""
    out: List[Dict[str, Any]] = [
        {"path": r.path, "methods": sorted(r.methods), "name": getattr(r, "name", None)}
        for r in request.app.routes
        if getattr(r, "path", None) and getattr(r, "methods", None)
    ]
    out.sort(key=lambda x: (x["path"], ",".join(x["methods"])))
    logger.info("GET /health/routes count=%d", len(out))
    return {"ok": True, "routes": out}


@router.get("/events")
def events_health():
    """Buffered operator events per lead topic; counts only."""
    per_topic = event_bus.stats()
    total = per_topic.pop("__total__", 0)
    per_topic.pop("*", None)
    logger.info("GET /health/events total=%d leads=%d", total, len(per_topic))
    return {"ok": True, "total": total, "leads": len(per_topic)}
