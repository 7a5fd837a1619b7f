"""
Search/edit view for a single patient record.

A view resolves a typed patient ID to a record owned by the signed-in doctor,
keeps a live subscription on that record, and lets the doctor edit it in
place.  States::

    idle -> searching -> found (viewing <-> editing)
                      -> not_found

Starting a new search from ``found`` drops the current subscription and goes
back through ``searching``.  Only one subscription is ever held; a
generation counter makes snapshots and query results from superseded
searches no-ops.

Collaborators are injected: the record store, the auth session, an async
``notify(Toast)`` callback, an optional async ``navigate(path)`` callback and
an optional async ``render(view)`` callback invoked when a pushed snapshot
changes the view.
"""

from __future__ import annotations

import enum
import functools
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from app.models.patient import EDITABLE_FIELDS
from app.services import patient_service
from app.services.auth_session import AuthSession
from app.services.change_feed import Subscription
from app.services.record_store import PATIENTS, RecordStore, StoreError

logger = logging.getLogger(__name__)


class ViewState(str, enum.Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    FOUND = "found"
    NOT_FOUND = "not_found"


class Toast(BaseModel):
    title: str
    description: str
    variant: str = "default"  # "default" | "destructive"


Notify = Callable[[Toast], Awaitable[None]]
Navigate = Callable[[str], Awaitable[None]]
Render = Callable[["PatientSearchView"], Awaitable[None]]


class PatientSearchView:
    def __init__(
        self,
        store: RecordStore,
        auth: AuthSession,
        notify: Notify,
        navigate: Optional[Navigate] = None,
        render: Optional[Render] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._store = store
        self._auth = auth
        self._notify = notify
        self._navigate = navigate
        self._render = render
        self._clock = clock

        self.state = ViewState.IDLE
        self.edit_mode = False
        self.loading = False
        self._record: Optional[dict[str, Any]] = None
        self._draft: dict[str, Any] = {}
        self._subscription: Optional[Subscription] = None
        self._generation = 0

    # -- read-only state ------------------------------------------------------

    @property
    def record(self) -> Optional[dict[str, Any]]:
        return dict(self._record) if self._record is not None else None

    @property
    def draft(self) -> dict[str, Any]:
        return dict(self._draft)

    @property
    def subscription(self) -> Optional[Subscription]:
        return self._subscription

    @property
    def mode(self) -> Optional[str]:
        if self.state != ViewState.FOUND:
            return None
        return "editing" if self.edit_mode else "viewing"

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "mode": self.mode,
            "edit_mode": self.edit_mode,
            "loading": self.loading,
            "record": self.record,
            "draft": self.draft,
        }

    # -- lifecycle ------------------------------------------------------------

    async def mount(self, patient_id: Optional[str] = None) -> None:
        """Initial load; guards the page and honours a ``patientId`` query parameter."""
        if self._auth.loading:
            return
        if not self._auth.is_authenticated:
            await self._go("/login")
            return
        if patient_id:
            await self.resolve(patient_id)

    def dispose(self) -> None:
        self._generation += 1
        self._release()

    # -- search ---------------------------------------------------------------

    async def resolve(self, identifier: Any) -> Optional[dict[str, Any]]:
        """Find *identifier* among the signed-in doctor's patients and watch it.

        Returns the record, or ``None`` when the input is rejected, nothing
        matches, or the store fails.
        """
        identifier = "" if identifier is None else str(identifier).strip()
        if not identifier:
            await self._error("Please enter a patient ID")
            return None
        doctor_id = self._auth.current_user_id
        if not doctor_id:
            await self._error("You must be logged in to search for patients")
            return None

        self._release()
        self._generation += 1
        generation = self._generation
        previous_state = self.state
        self.state = ViewState.SEARCHING
        self.loading = True
        try:
            found = await patient_service.find_patient_for_doctor(self._store, doctor_id, identifier)
            if generation != self._generation:
                return None
            if found is None:
                self._record = None
                self._draft = {}
                self.edit_mode = False
                self.state = ViewState.NOT_FOUND
                await self._notify(Toast(title="Not found", description="No patient found with that ID", variant="destructive"))
                return None
            # a new record always opens in viewing mode with a fresh draft
            self.edit_mode = False
            if await self._watch(found["id"], generation) is None:
                return None
            return self.record
        except StoreError:
            logger.exception("Error searching for patient %s", identifier)
            if generation == self._generation:
                self.state = previous_state
            await self._error("Failed to search for patient")
            return None
        finally:
            if generation == self._generation:
                self.loading = False

    async def subscribe(self, record_id: str) -> Optional[Subscription]:
        """Watch *record_id*, replacing any subscription this view holds.

        Returns ``None`` when a newer search started before the watch was set up.
        """
        self._release()
        self._generation += 1
        return await self._watch(record_id, self._generation)

    async def _watch(self, record_id: str, generation: int) -> Optional[Subscription]:
        subscription = await self._store.subscribe(
            PATIENTS, record_id, functools.partial(self._on_snapshot, generation)
        )
        if generation != self._generation:
            subscription.unsubscribe()
            return None
        self._subscription = subscription
        return subscription

    async def _on_snapshot(self, generation: int, snapshot: dict[str, Any]) -> None:
        if generation != self._generation:
            return
        self._record = dict(snapshot)
        self.state = ViewState.FOUND
        if not self.edit_mode:
            self._draft = dict(snapshot)
        if self._render is not None:
            await self._render(self)

    def _release(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    # -- editing --------------------------------------------------------------

    def toggle_edit(self) -> bool:
        """Flip edit mode.  Leaving edit mode discards unsaved draft changes."""
        leaving = self.edit_mode
        self.edit_mode = not self.edit_mode
        if leaving and self._record is not None:
            self._draft = dict(self._record)
        return self.edit_mode

    def set_field(self, field: str, value: Any) -> None:
        if field not in EDITABLE_FIELDS:
            raise ValueError(f"{field!r} is not editable")
        self._draft[field] = "" if value is None else str(value)

    async def submit_edit(self, draft: Optional[dict[str, Any]] = None) -> bool:
        """Save the draft; ``last_visit_date`` becomes the submission time.

        Returns ``True`` on success.  On failure edit mode is left as it was.
        """
        if self._record is None:
            return False
        record_id = self._record["id"]
        generation = self._generation
        fields = self._draft if draft is None else draft
        try:
            updated = await patient_service.record_visit(
                self._store, record_id, fields, now=self._clock()
            )
        except StoreError:
            logger.exception("Error updating patient %s", record_id)
            await self._error("Failed to update patient information")
            return False
        if generation != self._generation:
            # a newer search owns the view; the write stands but is not shown
            logger.info("Update to patient %s finished after the view moved on", record_id)
            return True
        self._record = dict(updated)
        self._draft = dict(updated)
        self.edit_mode = False
        await self._notify(Toast(title="Success", description="Patient information updated successfully!"))
        return True

    # -- collaborators --------------------------------------------------------

    async def _error(self, description: str) -> None:
        await self._notify(Toast(title="Error", description=description, variant="destructive"))

    async def _go(self, path: str) -> None:
        if self._navigate is not None:
            await self._navigate(path)
