import base64
import json
from datetime import datetime, timedelta, timezone

import itsdangerous

from pinzo.config import SECRET_KEY
from pinzo.events import BookmarkRecord

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def rec(record_id, title=None, user_id=1, minutes=0, url=None):
    return BookmarkRecord(
        id=record_id,
        user_id=user_id,
        title=title or record_id.upper(),
        url=url or f"https://{record_id}.example.com",
        created_at=T0 + timedelta(minutes=minutes),
    )


def session_cookie(data: dict) -> str:
    """Signed cookie in the format SessionMiddleware reads."""
    signer = itsdangerous.TimestampSigner(str(SECRET_KEY))
    payload = base64.b64encode(json.dumps(data).encode("utf-8"))
    return signer.sign(payload).decode("utf-8")


def set_session(client, data: dict):
    # same (domain, path, name) key the session middleware's Set-Cookie lands on
    client.cookies.clear()
    client.cookies.set("session", session_cookie(data), domain="testserver.local", path="/")


def login(client, user):
    set_session(client, {"user_id": user.id})
