# Overview: Flask API routes for health checks; reports database and flag-consistency status.

"""
System health endpoint.

Database connectivity decides healthy/unhealthy; stories whose stored
has_paid_chapters drifted from their chapters report as degraded until the
next repair sweep.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Story, Chapter
from ..services import paid_chapters_service
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        story_count = db.session.query(Story).count()
        chapter_count = db.session.query(Chapter).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"stories": story_count, "chapters": chapter_count},
        }
    except SQLAlchemyError:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_paid_chapter_flags() -> dict:
    start_time = time.time()
    try:
        drifted = paid_chapters_service.find_inconsistent_stories()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Paid chapter flag check failed")
        return {"status": "unhealthy", "error": "Database error"}

    elapsed_ms = (time.time() - start_time) * 1000
    result = {
        "status": "degraded" if drifted else "healthy",
        "latency_ms": round(elapsed_ms, 2),
        "details": {"inconsistent_stories": len(drifted)},
    }
    if drifted:
        result["warning"] = "Run `flask paid-chapters recalculate-all` to repair"
    return result


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "paid_chapter_flags": check_paid_chapter_flags(),
    }
    statuses = [check["status"] for check in checks.values()]

    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }
    return response, http_status
