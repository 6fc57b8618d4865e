"""
Health endpoint: database connectivity, row counts and scheduler state.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from subscriptn.config import get_settings
from subscriptn.database import get_db, check_db_health
from subscriptn.models import User, Server, Shop, Subscription
from subscriptn.tasks.scheduler import get_scheduler_status

settings = get_settings()
router = APIRouter(tags=["health"])


@router.get("/health")
def health(db: Session = Depends(get_db)):
    if not check_db_health(db):
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "unreachable"},
        )

    return {
        "status": "healthy",
        "app": settings.app_name,
        "environment": settings.environment,
        "database": "connected",
        "counts": {
            "users": db.query(User).count(),
            "servers": db.query(Server).count(),
            "shops": db.query(Shop).count(),
            "subscriptions": db.query(Subscription).count(),
        },
        "scheduler": {"running": get_scheduler_status()["running"]},
    }
