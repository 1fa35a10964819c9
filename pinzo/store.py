"""
Bookmark persistence. Each successful mutation commits, then publishes exactly
one change event for the owner on the relay.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .db import SessionLocal
from .events import BookmarkRecord, DeleteEvent, InsertEvent, UpdateEvent
from .models import Bookmark
from .relay import relay

logger = logging.getLogger(__name__)


def _clean(value: Optional[str], field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise HTTPException(400, f"{field} required")
    return value


def _owned(db: Session, user_id: int, bookmark_id: str) -> Bookmark:
    bm = db.get(Bookmark, bookmark_id)
    if not bm or bm.user_id != user_id:
        raise HTTPException(404, "bookmark not found")
    return bm


def list_bookmarks(db: Session, user_id: int) -> List[BookmarkRecord]:
    rows = db.execute(
        select(Bookmark)
        .where(Bookmark.user_id == user_id)
        .order_by(Bookmark.created_at.desc(), Bookmark.id.desc())
    ).scalars().all()
    return [BookmarkRecord.model_validate(row) for row in rows]


def load_snapshot(user_id: int) -> List[BookmarkRecord]:
    with SessionLocal() as s:
        return list_bookmarks(s, user_id)


def insert_bookmark(
    db: Session, user_id: int, title: str, url: str,
    bookmark_id: Optional[str] = None, created_at: Optional[datetime] = None,
) -> BookmarkRecord:
    bm = Bookmark(user_id=user_id, title=_clean(title, "title"), url=_clean(url, "url"))
    if bookmark_id:
        bm.id = bookmark_id
    if created_at is not None:
        bm.created_at = created_at
    db.add(bm)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(409, "bookmark already exists")
    db.refresh(bm)
    record = BookmarkRecord.model_validate(bm)
    relay.publish(user_id, InsertEvent(record=record))
    return record


def update_bookmark(db: Session, user_id: int, bookmark_id: str, title: Optional[str] = None, url: Optional[str] = None) -> BookmarkRecord:
    bm = _owned(db, user_id, bookmark_id)
    old = BookmarkRecord.model_validate(bm)
    if title is not None:
        bm.title = _clean(title, "title")
    if url is not None:
        bm.url = _clean(url, "url")
    db.commit()
    db.refresh(bm)
    record = BookmarkRecord.model_validate(bm)
    relay.publish(user_id, UpdateEvent(record=record, old_record=old))
    return record


def delete_bookmark(db: Session, user_id: int, bookmark_id: str) -> None:
    bm = _owned(db, user_id, bookmark_id)
    db.delete(bm)
    db.commit()
    relay.publish(user_id, DeleteEvent.for_id(bookmark_id))
