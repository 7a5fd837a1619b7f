"""
Socket.IO server hosting the live patient search/edit view.

Each connection owns one :class:`PatientSearchView`.  Clients authenticate
with ``auth={"token": <JWT>}`` on connect (or a ``login`` event), then drive the view with events;
the server answers with ``patient_view`` renders, ``toast`` notifications
and ``navigate`` instructions.
"""

import logging

import socketio

from app.config import get_settings
from app.services.auth_session import AuthSession, InvalidCredentials
from app.services.patient_search import PatientSearchView, Toast
from app.services.record_store import get_record_store

logger = logging.getLogger(__name__)
_settings = get_settings()

# Redis manager lets several workers share rooms; a single worker needs none
_client_manager = socketio.AsyncRedisManager(_settings.REDIS_URL) if _settings.REDIS_URL else None
sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=_settings.CORS_ORIGINS,
    client_manager=_client_manager,
)

# sid -> (auth session, view)
_sessions: dict[str, tuple[AuthSession, PatientSearchView]] = {}


def _build_view(sid: str, auth: AuthSession) -> PatientSearchView:
    async def notify(toast: Toast):
        await sio.emit("toast", toast.model_dump(), to=sid)

    async def navigate(path: str):
        await sio.emit("navigate", {"path": path}, to=sid)

    async def render(view: PatientSearchView):
        await sio.emit("patient_view", view.snapshot(), to=sid)

    return PatientSearchView(get_record_store(), auth, notify, navigate=navigate, render=render)


def _payload(data) -> dict:
    return data if isinstance(data, dict) else {}


def get_view(sid: str) -> PatientSearchView | None:
    entry = _sessions.get(sid)
    return entry[1] if entry else None


async def _render(sid: str):
    view = get_view(sid)
    if view is not None:
        await sio.emit("patient_view", view.snapshot(), to=sid)


async def _toast(sid: str, title: str, description: str, variant: str = "default"):
    await sio.emit("toast", Toast(title=title, description=description, variant=variant).model_dump(), to=sid)


@sio.event
async def connect(sid, environ, auth=None):
    store = get_record_store()
    session = AuthSession(store.session_factory)
    token = auth.get("token") if isinstance(auth, dict) else None
    await session.restore(token)
    _sessions[sid] = (session, _build_view(sid, session))
    logger.info(
        "Socket.IO client connected: %s (doctor=%s)", sid, session.current_user_id or "anonymous"
    )


@sio.event
async def disconnect(sid, *args):
    entry = _sessions.pop(sid, None)
    if entry is not None:
        entry[1].dispose()
    logger.info("Socket.IO client disconnected: %s", sid)


@sio.event
async def open_search(sid, data=None):
    """Page load; ``patientId`` mirrors the query parameter of the search page."""
    view = get_view(sid)
    if view is None:
        return
    patient_id = _payload(data).get("patientId")
    await view.mount(patient_id)
    await _render(sid)


@sio.event
async def search_patient(sid, data=None):
    view = get_view(sid)
    if view is None:
        return
    await view.resolve(_payload(data).get("patientId"))
    await _render(sid)


@sio.event
async def toggle_edit(sid, data=None):
    view = get_view(sid)
    if view is None:
        return
    view.toggle_edit()
    await _render(sid)


@sio.event
async def edit_field(sid, data=None):
    view = get_view(sid)
    if view is None:
        return
    data = _payload(data)
    try:
        view.set_field(data.get("field"), data.get("value"))
    except ValueError as e:
        await _toast(sid, "Error", str(e), "destructive")
        return
    await _render(sid)


@sio.event
async def submit_edit(sid, data=None):
    view = get_view(sid)
    if view is None:
        return
    draft = _payload(data).get("draft")
    await view.submit_edit(draft if isinstance(draft, dict) else None)
    await _render(sid)


@sio.event
async def logout(sid, data=None):
    entry = _sessions.get(sid)
    if entry is None:
        return
    session, view = entry
    view.dispose()
    session.logout()
    _sessions[sid] = (session, _build_view(sid, session))
    await sio.emit("navigate", {"path": "/login"}, to=sid)


@sio.event
async def login(sid, data=None):
    entry = _sessions.get(sid)
    if entry is None:
        return
    session, view = entry
    data = _payload(data)
    username = str(data.get("username") or "").strip()
    password = str(data.get("password") or "")
    if not username or not password:
        await _toast(sid, "Error", "Please fill all fields", "destructive")
        return
    try:
        token = await session.login(username, password)
    except InvalidCredentials:
        await _toast(sid, "Error", "Failed to log in. Please check your credentials.", "destructive")
        return
    view.dispose()
    _sessions[sid] = (session, _build_view(sid, session))
    await sio.emit("session", {"access_token": token, "doctor": session.current_user}, to=sid)
    await _toast(sid, "Success", "You've successfully logged in!")
    await sio.emit("navigate", {"path": "/dashboard"}, to=sid)
