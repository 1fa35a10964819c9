# pinzo/app.py

import asyncio
import contextlib
import logging
import uuid
from typing import Annotated, Literal, Optional, Union

from fastapi import FastAPI, Request, Depends, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.sessions import SessionMiddleware

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from authlib.integrations.starlette_client import OAuth, OAuthError

from . import store
from .config import (
    APP_TITLE, SECRET_KEY, BASE_URL, SESSION_HTTPS_ONLY, LOG_LEVEL,
    GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, OAUTH_REDIRECT_URI,
    FORCE_HTTPS, PUBLIC_PATH, PROTECTED_PREFIX,
)
from .db import SessionLocal, get_session, init_db, now_utc
from .events import (
    BookmarkRecord, DeleteEvent, ErrorMessage, InsertEvent, SnapshotMessage, UpdateEvent, to_message,
)
from .gate import SessionGate
from .models import User
from .pages import render_dashboard, render_signin
from .reconciler import LiveView
from .relay import relay
from .security import get_current_user, user_from_session

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)


# ------------------------------------------------------------------------------
# FastAPI app
# ------------------------------------------------------------------------------
async def _session_is_valid(request: Request) -> bool:
    return await run_in_threadpool(user_from_session, request.session) is not None


app = FastAPI(title=APP_TITLE)
app.add_middleware(
    SessionGate,
    authenticate=_session_is_valid,
    public_path=PUBLIC_PATH,
    protected_prefix=PROTECTED_PREFIX,
    force_https=FORCE_HTTPS,
)
app.add_middleware(SessionMiddleware, secret_key=SECRET_KEY, same_site="lax", https_only=SESSION_HTTPS_ONLY)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[BASE_URL, "http://localhost:8000", "http://127.0.0.1:8000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def on_startup():
    init_db()


# ------------------------------------------------------------------------------
# OAuth (Google only)
# ------------------------------------------------------------------------------
oauth = OAuth()
oauth.register(
    name="google",
    server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
    client_id=GOOGLE_CLIENT_ID,
    client_secret=GOOGLE_CLIENT_SECRET,
    client_kwargs={"scope": "openid email profile"},
)


@app.get("/auth/login")
async def auth_login(request: Request):
    redirect_uri = OAUTH_REDIRECT_URI or str(request.url_for("auth_callback"))
    return await oauth.google.authorize_redirect(request, redirect_uri)


@app.get("/auth/callback")
async def auth_callback(request: Request):
    try:
        token = await oauth.google.authorize_access_token(request)
    except OAuthError as e:
        logger.warning("[auth] token exchange failed: %s %s", e.error, e.description)
        return RedirectResponse(PUBLIC_PATH, status_code=302)

    userinfo = (token or {}).get("userinfo")
    if not userinfo:
        try:
            resp = await oauth.google.get("https://openidconnect.googleapis.com/v1/userinfo", token=token)
            resp.raise_for_status()
            userinfo = resp.json()
        except Exception as e:
            logger.warning("[auth] userinfo fetch failed: %r", e)
            return RedirectResponse(PUBLIC_PATH, status_code=302)

    email = (userinfo or {}).get("email")
    if not email:
        logger.warning("[auth] no email in userinfo")
        return RedirectResponse(PUBLIC_PATH, status_code=302)

    with SessionLocal() as s:
        user = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if not user:
            user = User(email=email, name=userinfo.get("name") or "", picture=userinfo.get("picture") or "")
            s.add(user)
        else:
            user.name = userinfo.get("name") or user.name
            user.picture = userinfo.get("picture") or user.picture
        s.commit()
        request.session["user_id"] = user.id

    return RedirectResponse(PROTECTED_PREFIX, status_code=302)


@app.post("/auth/logout")
async def auth_logout(request: Request):
    request.session.clear()
    return JSONResponse({"ok": True})


# ------------------------------------------------------------------------------
# Pages
# ------------------------------------------------------------------------------
@app.get("/", response_class=HTMLResponse)
async def index():
    return HTMLResponse(render_signin(APP_TITLE))


@app.get("/dashboard", response_class=HTMLResponse)
def dashboard(user: User = Depends(get_current_user)):
    return HTMLResponse(render_dashboard(APP_TITLE, user.name or user.email, user.picture or ""))


# ------------------------------------------------------------------------------
# API
# ------------------------------------------------------------------------------
class BookmarkCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)
    title: str = Field(min_length=1, max_length=512)
    url: str = Field(min_length=1, max_length=4096)


class BookmarkUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)
    title: Optional[str] = Field(None, min_length=1, max_length=512)
    url: Optional[str] = Field(None, min_length=1, max_length=4096)


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/api/me")
def api_me(user: User = Depends(get_current_user)):
    return {
        "user": {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "picture": user.picture,
            "api_key": user.api_key,
        }
    }


@app.get("/api/bookmarks")
def api_list_bookmarks(db: Session = Depends(get_session), user: User = Depends(get_current_user)):
    return {"bookmarks": [to_message(r) for r in store.list_bookmarks(db, user.id)]}


@app.post("/api/bookmarks", status_code=201)
def api_create_bookmark(data: BookmarkCreate, db: Session = Depends(get_session), user: User = Depends(get_current_user)):
    record = store.insert_bookmark(db, user.id, data.title, data.url)
    return to_message(record)


@app.patch("/api/bookmarks/{bookmark_id}")
def api_update_bookmark(bookmark_id: str, data: BookmarkUpdate, db: Session = Depends(get_session), user: User = Depends(get_current_user)):
    record = store.update_bookmark(db, user.id, bookmark_id, title=data.title, url=data.url)
    return to_message(record)


@app.delete("/api/bookmarks/{bookmark_id}")
def api_delete_bookmark(bookmark_id: str, db: Session = Depends(get_session), user: User = Depends(get_current_user)):
    store.delete_bookmark(db, user.id, bookmark_id)
    return {"ok": True}


# ------------------------------------------------------------------------------
# Live stream
# ------------------------------------------------------------------------------
class CreateCommand(BookmarkCreate):
    action: Literal["create"]


class UpdateCommand(BookmarkUpdate):
    action: Literal["update"]
    id: str


class DeleteCommand(BaseModel):
    action: Literal["delete"]
    id: str


StreamCommand = Annotated[Union[CreateCommand, UpdateCommand, DeleteCommand], Field(discriminator="action")]
stream_command_adapter = TypeAdapter(StreamCommand)


def _commit(fn, *args, **kwargs):
    with SessionLocal() as s:
        return fn(s, *args, **kwargs)


def _plan(view: LiveView, command):
    """The optimistic event for a command (or None) and the store call that makes it real."""
    user_id = view.user_id
    if isinstance(command, CreateCommand):
        record = BookmarkRecord(
            id=str(uuid.uuid4()), user_id=user_id, title=command.title, url=command.url, created_at=now_utc(),
        )
        return InsertEvent(record=record), lambda: _commit(
            store.insert_bookmark, user_id, record.title, record.url,
            bookmark_id=record.id, created_at=record.created_at)

    if isinstance(command, UpdateCommand):
        current = view.reconciler.get(command.id)
        event = None
        if current is not None:
            changes = {k: v for k, v in (("title", command.title), ("url", command.url)) if v is not None}
            event = UpdateEvent(record=current.model_copy(update=changes), old_record=current)
        return event, lambda: _commit(
            store.update_bookmark, user_id, command.id, title=command.title, url=command.url)

    return DeleteEvent.for_id(command.id), lambda: _commit(store.delete_bookmark, user_id, command.id)


async def _run_command(websocket: WebSocket, view: LiveView, raw: str) -> None:
    try:
        command = stream_command_adapter.validate_json(raw)
    except ValidationError:
        await websocket.send_json(to_message(ErrorMessage(detail="invalid command")))
        return

    event, commit = _plan(view, command)
    optimistic = view.optimistic(event) if event is not None else contextlib.nullcontext(False)
    try:
        with optimistic as changed:
            if changed:
                await websocket.send_json(to_message(event))
            await run_in_threadpool(commit)
    except (HTTPException, SQLAlchemyError) as e:
        detail = e.detail if isinstance(e, HTTPException) else "storage error"
        logger.info("[stream] user=%s %s rejected: %s", view.user_id, command.action, detail)
        await websocket.send_json(to_message(ErrorMessage(action=command.action, detail=str(detail))))
        await websocket.send_json(to_message(SnapshotMessage(records=await view.reload())))


async def _forward_changes(websocket: WebSocket, view: LiveView) -> None:
    try:
        async for item in view.changes():
            await websocket.send_json(to_message(item))
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("[stream] user=%s forward stopped: %r", view.user_id, e)
    except Exception:
        logger.exception("[stream] user=%s lost its change feed", view.user_id)
        with contextlib.suppress(RuntimeError):
            await websocket.close(code=1011)


@app.websocket("/api/stream")
async def bookmark_stream(websocket: WebSocket):
    user = await run_in_threadpool(user_from_session, websocket.session)
    if user is None:
        await websocket.close(code=1008)
        return
    await websocket.accept()
    logger.info("[stream] user=%s connected", user.id)

    async with LiveView(relay, user.id, store.load_snapshot) as view:
        await websocket.send_json(to_message(SnapshotMessage(records=view.records)))
        pump = asyncio.create_task(_forward_changes(websocket, view))
        try:
            while True:
                raw = await websocket.receive_text()
                await _run_command(websocket, view, raw)
        except WebSocketDisconnect:
            logger.info("[stream] user=%s disconnected", user.id)
        finally:
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump
