# edutest/api/v1/endpoints/health.py
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from edutest.api.deps import get_session_manager
from edutest.db.session import get_db
from edutest.session.manager import SessionManager

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
def liveness_probe():
    return {"status": "ok"}


@router.get("/db")
def db_health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok"}


@router.get("/sessions")
def sessions_health(manager: SessionManager = Depends(get_session_manager)):
    return {"status": "ok", "live_sessions": len(manager)}
