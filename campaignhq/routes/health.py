"""
CampaignHQ Health Check Routes
Liveness, readiness and a detailed status for monitoring
"""
import sys
from typing import Any, Dict

import psutil
from fastapi import APIRouter, Depends
from sqlalchemy import func, select, text
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..database import get_db
from ..models.campaign import Campaign, CampaignStatus
from ..models.email_send import EmailSend, SendStatus
from ..timeutils import utcnow

router = APIRouter(prefix="/api/health", tags=["health"])

START_TIME = utcnow()


def get_uptime() -> str:
    """Get service uptime as human-readable string"""
    delta = utcnow() - START_TIME
    hours, remainder = divmod(delta.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    if delta.days > 0:
        return f"{delta.days}d {hours}h {minutes}m"
    elif hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    else:
        return f"{minutes}m {seconds}s"


def check_database(db: Session) -> Dict[str, Any]:
    """Check database connectivity"""
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy"}
    except Exception as e:
        db.rollback()
        return {
            "status": "unhealthy",
            "error": str(e),
        }


def check_pipeline(db: Session) -> Dict[str, Any]:
    """Campaign and send backlog"""
    try:
        campaigns = dict(db.execute(
            select(Campaign.status, func.count(Campaign.id)).group_by(Campaign.status)
        ).all())
        pending_sends = db.scalar(
            select(func.count(EmailSend.id)).where(EmailSend.status == SendStatus.PENDING)
        ) or 0
        overdue = db.scalar(
            select(func.count(Campaign.id)).where(
                Campaign.status == CampaignStatus.SCHEDULED,
                Campaign.scheduled_at <= utcnow(),
            )
        ) or 0
        return {
            "status": "healthy",
            "campaigns": {status: campaigns.get(status, 0) for status in CampaignStatus.ALL},
            "due_campaigns": overdue,
            "pending_sends": pending_sends,
        }
    except Exception as e:
        db.rollback()
        return {
            "status": "unhealthy",
            "error": str(e),
        }


def check_provider(settings: Settings) -> Dict[str, Any]:
    """Delivery provider configuration"""
    if not settings.resend_api_key:
        return {
            "status": "warning",
            "error": "RESEND_API_KEY is not set; campaigns cannot be sent",
        }
    return {
        "status": "healthy",
        "api_url": settings.resend_api_url,
    }


def check_system() -> Dict[str, Any]:
    """Check system resources"""
    try:
        cpu_percent = psutil.cpu_percent(interval=0.1)
        memory = psutil.virtual_memory()

        return {
            "status": "healthy" if memory.percent < 90 else "warning",
            "cpu_percent": cpu_percent,
            "memory_percent": memory.percent,
            "memory_available_gb": round(memory.available / (1024**3), 2),
            "python_version": sys.version.split()[0],
        }
    except Exception as e:
        return {
            "status": "unknown",
            "error": str(e),
        }


# ============================================================
# ROUTES
# ============================================================

@router.get("/")
@router.get("/live")
async def health_live():
    """
    Liveness probe - is the service running?
    Returns 200 if the service is alive.
    """
    return {
        "ok": True,
        "status": "alive",
        "uptime": get_uptime(),
        "timestamp": utcnow().isoformat() + "Z",
    }


@router.get("/ready")
def health_ready(db: Session = Depends(get_db)):
    """
    Readiness probe - is the service ready to accept traffic?
    Checks database connectivity.
    """
    database = check_database(db)
    ready = database["status"] == "healthy"

    return {
        "ok": ready,
        "status": "ready" if ready else "not_ready",
        "checks": {
            "database": database["status"],
        },
        "timestamp": utcnow().isoformat() + "Z",
    }


@router.get("/full")
def health_full(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)):
    """
    Full health check - detailed status of all components.
    Use for monitoring dashboards.
    """
    database = check_database(db)
    pipeline = check_pipeline(db)
    provider = check_provider(settings)
    system = check_system()

    statuses = [database["status"], pipeline["status"], provider["status"], system["status"]]
    if "unhealthy" in statuses:
        overall = "unhealthy"
    elif "warning" in statuses:
        overall = "degraded"
    else:
        overall = "healthy"

    return {
        "ok": overall == "healthy",
        "status": overall,
        "uptime": get_uptime(),
        "started_at": START_TIME.isoformat() + "Z",
        "checks": {
            "database": database,
            "pipeline": pipeline,
            "provider": provider,
            "system": system,
        },
        "timestamp": utcnow().isoformat() + "Z",
    }
