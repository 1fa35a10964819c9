from typing import Optional

from fastapi import Request, HTTPException, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from .db import SessionLocal, get_session
from .models import User


def user_from_session(session: dict) -> Optional[User]:
    """The signed-in user for a session cookie, or None if absent or stale."""
    user_id = session.get("user_id")
    if not user_id:
        return None
    with SessionLocal() as s:
        return s.get(User, user_id)


def user_from_api_key(db: Session, api_key: str) -> Optional[User]:
    if not api_key:
        return None
    return db.execute(select(User).where(User.api_key == api_key)).scalars().first()


def get_current_user(request: Request, db: Session = Depends(get_session)) -> User:
    """Session cookie (set by Google OAuth), or X-API-Key for scripted clients."""
    uid = request.session.get("user_id")
    if uid:
        user = db.get(User, uid)
        if not user:
            raise HTTPException(401, "session user not found")
        return user
    user = user_from_api_key(db, request.headers.get("x-api-key", ""))
    if not user:
        raise HTTPException(401, "not authenticated")
    return user
