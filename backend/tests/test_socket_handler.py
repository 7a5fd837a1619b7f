"""
Socket.IO handler tests — events are driven directly against the handler
functions with ``sio.emit`` patched out.
"""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from app.api.middleware.auth import token_for_doctor
from app.api.websocket import handler
from app.services import doctor_service, patient_service
from app.services.patient_search import ViewState
from app.services.record_store import close_record_store, init_record_store


@pytest_asyncio.fixture
async def live(session_factory, monkeypatch):
    store = init_record_store(session_factory)
    async with session_factory() as db:
        doctor = await doctor_service.create_doctor(db, username="dr.sen", password="s3cret-pass")
        await db.commit()
    await patient_service.create_patient(store, doctor_id=doctor["id"], name="A", patient_id="P123")
    emit = AsyncMock()
    monkeypatch.setattr(handler.sio, "emit", emit)
    yield {"store": store, "doctor": doctor, "token": token_for_doctor(doctor), "emit": emit}
    handler._sessions.clear()
    close_record_store()


def _emitted(emit, event):
    return [c.args[1] for c in emit.await_args_list if c.args[0] == event]


@pytest.mark.asyncio
async def test_connect_with_token_restores_doctor(live):
    await handler.connect("sid-1", {}, {"token": live["token"]})

    session, view = handler._sessions["sid-1"]
    assert session.current_user_id == live["doctor"]["id"]
    assert view.state == ViewState.IDLE


@pytest.mark.asyncio
async def test_open_search_without_token_navigates_to_login(live):
    await handler.connect("sid-1", {}, None)

    await handler.open_search("sid-1", {"patientId": "P123"})

    assert _emitted(live["emit"], "navigate") == [{"path": "/login"}]
    assert handler.get_view("sid-1").record is None


@pytest.mark.asyncio
async def test_search_edit_submit_flow(live):
    await handler.connect("sid-1", {}, {"token": live["token"]})

    await handler.search_patient("sid-1", {"patientId": "P123"})
    assert _emitted(live["emit"], "patient_view")[-1]["record"]["name"] == "A"

    await handler.toggle_edit("sid-1")
    await handler.edit_field("sid-1", {"field": "name", "value": "B"})
    assert _emitted(live["emit"], "patient_view")[-1]["draft"]["name"] == "B"

    await handler.submit_edit("sid-1")

    stored = await live["store"].get("patients", "P123")
    assert stored["name"] == "B"
    last = _emitted(live["emit"], "patient_view")[-1]
    assert last["edit_mode"] is False
    assert last["record"]["name"] == "B"
    assert _emitted(live["emit"], "toast")[-1]["title"] == "Success"


@pytest.mark.asyncio
async def test_search_unknown_patient_sends_toast(live):
    await handler.connect("sid-1", {}, {"token": live["token"]})

    await handler.search_patient("sid-1", {"patientId": "P999"})

    toast = _emitted(live["emit"], "toast")[-1]
    assert toast["description"] == "No patient found with that ID"
    assert toast["variant"] == "destructive"
    assert _emitted(live["emit"], "patient_view")[-1]["state"] == "not_found"


@pytest.mark.asyncio
async def test_edit_field_rejects_unknown_field(live):
    await handler.connect("sid-1", {}, {"token": live["token"]})
    await handler.search_patient("sid-1", {"patientId": "P123"})
    await handler.toggle_edit("sid-1")

    await handler.edit_field("sid-1", {"field": "doctor_id", "value": "someone"})

    assert _emitted(live["emit"], "toast")[-1]["variant"] == "destructive"
    assert handler.get_view("sid-1").draft["doctor_id"] == live["doctor"]["id"]


@pytest.mark.asyncio
async def test_remote_edit_is_pushed_to_watching_client(live):
    await handler.connect("sid-1", {}, {"token": live["token"]})
    await handler.search_patient("sid-1", {"patientId": "P123"})

    await patient_service.record_visit(live["store"], "P123", {"disease": "measles"})

    assert _emitted(live["emit"], "patient_view")[-1]["record"]["disease"] == "measles"


@pytest.mark.asyncio
async def test_logout_releases_subscription_and_navigates(live):
    await handler.connect("sid-1", {}, {"token": live["token"]})
    await handler.search_patient("sid-1", {"patientId": "P123"})

    await handler.logout("sid-1")

    session, view = handler._sessions["sid-1"]
    assert session.current_user is None
    assert view.record is None
    assert live["store"].feed.listener_count() == 0
    assert _emitted(live["emit"], "navigate")[-1] == {"path": "/login"}


@pytest.mark.asyncio
async def test_disconnect_disposes_view(live):
    await handler.connect("sid-1", {}, {"token": live["token"]})
    await handler.search_patient("sid-1", {"patientId": "P123"})

    await handler.disconnect("sid-1")

    assert "sid-1" not in handler._sessions
    assert live["store"].feed.listener_count() == 0


@pytest.mark.asyncio
async def test_events_from_unknown_sid_are_ignored(live):
    await handler.search_patient("ghost", {"patientId": "P123"})
    await handler.submit_edit("ghost")

    live["emit"].assert_not_awaited()


@pytest.mark.asyncio
async def test_login_event_signs_connection_in(live):
    await handler.connect("sid-1", {}, None)

    await handler.login("sid-1", {"username": "dr.sen", "password": "s3cret-pass"})

    session, view = handler._sessions["sid-1"]
    assert session.current_user_id == live["doctor"]["id"]
    assert session.loading is False
    issued = _emitted(live["emit"], "session")[-1]
    assert issued["access_token"] == session.token
    assert issued["doctor"]["username"] == "dr.sen"
    assert _emitted(live["emit"], "toast")[-1]["title"] == "Success"
    assert _emitted(live["emit"], "navigate")[-1] == {"path": "/dashboard"}

    await handler.search_patient("sid-1", {"patientId": "P123"})
    assert view is not handler.get_view("sid-1")
    assert handler.get_view("sid-1").record["name"] == "A"


@pytest.mark.asyncio
async def test_login_event_with_bad_password(live):
    await handler.connect("sid-1", {}, None)

    await handler.login("sid-1", {"username": "dr.sen", "password": "wrong-pass"})

    session, _ = handler._sessions["sid-1"]
    assert session.current_user is None
    toast = _emitted(live["emit"], "toast")[-1]
    assert toast["description"] == "Failed to log in. Please check your credentials."
    assert _emitted(live["emit"], "session") == []
    assert _emitted(live["emit"], "navigate") == []


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [None, "dr.sen", {"username": "dr.sen"}, {"username": "  ", "password": "x"}])
async def test_login_event_with_missing_fields(live, payload):
    await handler.connect("sid-1", {}, None)

    await handler.login("sid-1", payload)

    assert _emitted(live["emit"], "toast")[-1]["description"] == "Please fill all fields"
    assert handler._sessions["sid-1"][0].current_user is None


@pytest.mark.asyncio
@pytest.mark.parametrize("event", ["open_search", "search_patient", "edit_field", "submit_edit"])
async def test_non_object_payloads_are_treated_as_empty(live, event):
    await handler.connect("sid-1", {}, {"token": live["token"]})

    await getattr(handler, event)("sid-1", "P123")

    live["emit"].assert_awaited()
    assert handler.get_view("sid-1").record is None


@pytest.mark.asyncio
async def test_search_with_numeric_patient_id(live):
    await patient_service.create_patient(
        live["store"], doctor_id=live["doctor"]["id"], name="N", patient_id="42"
    )
    await handler.connect("sid-1", {}, {"token": live["token"]})

    await handler.search_patient("sid-1", {"patientId": 42})

    assert _emitted(live["emit"], "patient_view")[-1]["record"]["name"] == "N"
