"""
API Dependencies
Common dependencies for API endpoints
"""

from datetime import datetime, timezone
from typing import Generator, Optional
from fastapi import Header

from costing_engine.core.database import SessionLocal


def get_db() -> Generator:
    """
    Database dependency - creates a new database session for each request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_performed_by(x_user: Optional[str] = Header(None, alias="X-User")) -> str:
    """
    Name recorded in the audit trail for ledger changes.
    Authentication happens upstream; the caller identifies itself in X-User.
    """
    if x_user and x_user.strip():
        return x_user.strip()[:30]
    return "SYSTEM"


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Ledger timestamps are stored naive; aware query values are converted to UTC"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def utc_now() -> datetime:
    """Current instant in the naive UTC form ledger timestamps are stored in"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
