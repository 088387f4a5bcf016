"""
Wizard Controller.

Screens run user-info → dashboard → geo-location → metadata-form →
video-upload → review-submit → dashboard, with a side branch
dashboard → upload-history → metadata-form (edit) → upload-history.

State is an immutable WizardState. The module-level functions are pure
transitions returning a new state; WizardController owns the current state,
performs the network calls and applies their results.

Network calls run as tasks owned by the screen that started them. Leaving
that screen cancels them, and a result that arrives after the screen
changed is dropped.
"""
import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Optional

from client_errors import FieldCaptureError, NotFoundError, ValidationError
from field_types import (
    FieldTestRecord,
    GeoFix,
    MetadataRecord,
    UserIdentity,
    missing_required,
    new_metadata,
    new_test_id,
)
from video_ingest import SelectedVideo

logger = logging.getLogger(__name__)


class Screen(str, Enum):
    USER_INFO = "user-info"
    DASHBOARD = "dashboard"
    GEO_LOCATION = "geo-location"
    METADATA_FORM = "metadata-form"
    VIDEO_UPLOAD = "video-upload"
    REVIEW_SUBMIT = "review-submit"
    UPLOAD_HISTORY = "upload-history"


class InvalidTransitionError(FieldCaptureError):
    """The action is not available on the current screen."""


@dataclass(frozen=True)
class Draft:
    test_id: str = ""
    geo: Optional[GeoFix] = None
    metadata: Optional[MetadataRecord] = None
    videos: tuple = ()
    editing: bool = False


@dataclass(frozen=True)
class WizardState:
    screen: Screen = Screen.USER_INFO
    session_id: str = ""
    user: Optional[UserIdentity] = None
    draft: Draft = field(default_factory=Draft)
    history: tuple = ()
    progress: int = 0
    step: str = ""
    error: Optional[str] = None
    notice: Optional[str] = None


# --- Pure transitions ---

def user_selected(state: WizardState, user: UserIdentity) -> WizardState:
    return replace(state, screen=Screen.DASHBOARD, user=user, error=None)


def new_test(state: WizardState, test_id: str) -> WizardState:
    """A fresh test id and an empty draft."""
    return replace(state, screen=Screen.GEO_LOCATION, draft=Draft(test_id=test_id), error=None, notice=None)


def location_confirmed(state: WizardState, geo: Optional[GeoFix]) -> WizardState:
    if geo is None:
        raise ValidationError("Location data is required")
    metadata = state.draft.metadata or new_metadata()
    return replace(
        state,
        screen=Screen.METADATA_FORM,
        draft=replace(state.draft, geo=geo, metadata=metadata),
        error=None,
    )


def metadata_changed(state: WizardState, metadata: MetadataRecord) -> WizardState:
    return replace(state, draft=replace(state.draft, metadata=metadata))


def metadata_accepted(state: WizardState) -> WizardState:
    """Leave the form after its required fields were checked.

    A saved edit is finished, so its draft is dropped.
    """
    if state.draft.editing:
        return replace(
            state, screen=Screen.UPLOAD_HISTORY, draft=Draft(), error=None
        )
    return replace(state, screen=Screen.VIDEO_UPLOAD, error=None)


def videos_chosen(state: WizardState, videos: list) -> WizardState:
    return replace(state, screen=Screen.REVIEW_SUBMIT, draft=replace(state.draft, videos=tuple(videos)), error=None)


def submitted(state: WizardState) -> WizardState:
    return replace(
        state,
        screen=Screen.DASHBOARD,
        draft=Draft(),
        progress=0,
        step="",
        error=None,
        notice="Test submitted successfully!",
    )


def history_opened(state: WizardState) -> WizardState:
    return replace(state, screen=Screen.UPLOAD_HISTORY, error=None)


def editing_record(state: WizardState, record: FieldTestRecord) -> WizardState:
    """Load a stored test into the draft and open the form in edit mode."""
    return replace(
        state,
        screen=Screen.METADATA_FORM,
        user=record.user_info or state.user,
        draft=Draft(
            test_id=record.test_id,
            geo=record.geo_location,
            metadata=record.metadata,
            editing=True,
        ),
        error=None,
    )


def went_back(state: WizardState) -> WizardState:
    screen = state.screen
    if screen in (Screen.GEO_LOCATION, Screen.UPLOAD_HISTORY, Screen.DASHBOARD):
        # Returning to the dashboard abandons whatever test was in progress
        return replace(state, screen=Screen.DASHBOARD, draft=Draft(), progress=0, step="", error=None)
    if screen == Screen.METADATA_FORM:
        target = Screen.UPLOAD_HISTORY if state.draft.editing else Screen.GEO_LOCATION
        draft = replace(state.draft, editing=False) if state.draft.editing else state.draft
        return replace(state, screen=target, draft=draft, error=None)
    if screen == Screen.VIDEO_UPLOAD:
        return replace(state, screen=Screen.METADATA_FORM, error=None)
    if screen == Screen.REVIEW_SUBMIT:
        return replace(state, screen=Screen.VIDEO_UPLOAD, progress=0, step="", error=None)
    return state


def record_payload(state: WizardState) -> dict:
    """Full create body built from the draft."""
    draft = state.draft
    return {
        "testId": draft.test_id,
        "sessionId": state.session_id,
        "userInfo": state.user.to_wire() if state.user else None,
        "geoLocation": draft.geo.to_wire() if draft.geo else None,
        "metadata": draft.metadata.to_wire() if draft.metadata else None,
    }


class _ScreenLeft(Exception):
    pass


class WizardController:
    def __init__(
        self,
        api,
        resolver,
        ingest,
        session_store,
        testers: Optional[list] = None,
        listener: Optional[Callable[[WizardState], None]] = None,
    ):
        self.api = api
        self.resolver = resolver
        self.ingest = ingest
        self.session_store = session_store
        self.testers = list(testers) if testers else None
        self.listener = listener

        self._state = WizardState()
        self._inflight: dict = {}

    @property
    def state(self) -> WizardState:
        return self._state

    # --- State plumbing ---

    def _transition(self, new_state: WizardState) -> WizardState:
        old_screen = self._state.screen
        if new_state.screen != old_screen:
            for task in self._inflight.pop(old_screen, set()):
                if not task.done():
                    logger.info(f"Cancelling request started on {old_screen.value}")
                    task.cancel()
        self._state = new_state
        if self.listener:
            self.listener(new_state)
        return new_state

    def _fail(self, message: str) -> None:
        self._transition(replace(self._state, error=message))

    def _require(self, *screens: Screen) -> None:
        if self._state.screen not in screens:
            raise InvalidTransitionError(
                f"Not available on {self._state.screen.value}; "
                f"expected {', '.join(s.value for s in screens)}"
            )

    async def _run(self, coro):
        """Await a network call on behalf of the current screen."""
        screen = self._state.screen
        task = asyncio.ensure_future(coro)
        self._inflight.setdefault(screen, set()).add(task)
        try:
            result = await task
        except asyncio.CancelledError:
            if self._state.screen != screen:
                raise _ScreenLeft(screen)
            raise
        finally:
            self._inflight.get(screen, set()).discard(task)

        if self._state.screen != screen:
            logger.info(f"Dropping result for {screen.value}; now on {self._state.screen.value}")
            raise _ScreenLeft(screen)
        return result

    # --- Actions ---

    async def boot(self) -> WizardState:
        """Resolve the stored session and skip to the dashboard when it is known."""
        session_id, created = self.session_store.get_or_create()
        self._transition(replace(self._state, session_id=session_id))
        if created:
            return self._state

        try:
            session = await self._run(self.api.get_session(session_id))
            user = UserIdentity(user_name=session["userName"], email=session["email"])
        except _ScreenLeft:
            return self._state
        except (FieldCaptureError, KeyError) as e:
            logger.info(f"Stored session {session_id} not resolved: {e}")
            return self._state
        return self._transition(user_selected(self._state, user))

    async def select_user(self, user: UserIdentity) -> bool:
        self._require(Screen.USER_INFO)
        if not user.user_name.strip() or not user.email.strip():
            self._fail("Please select your name")
            return False
        if self.testers is not None and user not in self.testers:
            self._fail(f"{user.email} is not on the tester list")
            return False

        try:
            await self._run(self.api.create_session(self._state.session_id, user))
        except _ScreenLeft:
            return False
        except FieldCaptureError as e:
            self._fail(f"Failed to save session: {e}")
            return False
        self._transition(user_selected(self._state, user))
        return True

    def start_new_test(self) -> str:
        self._require(Screen.DASHBOARD)
        test_id = new_test_id()
        self._transition(new_test(self._state, test_id))
        logger.info(f"Started test {test_id}")
        return test_id

    async def capture_location(self) -> Optional[GeoFix]:
        self._require(Screen.GEO_LOCATION)
        try:
            fix = await self._run(self.resolver.acquire())
        except _ScreenLeft:
            return None
        self._transition(replace(
            self._state,
            draft=replace(self._state.draft, geo=fix),
            notice=self.resolver.message,
            error=self.resolver.remediation,
        ))
        return fix

    def set_manual_location(self, **fields) -> GeoFix:
        self._require(Screen.GEO_LOCATION)
        if self._state.draft.geo is not None:
            self.resolver.fix = self._state.draft.geo
        fix = self.resolver.set_manual(**fields)
        self._transition(replace(self._state, draft=replace(self._state.draft, geo=fix)))
        return fix

    def confirm_location(self, geo: Optional[GeoFix] = None) -> bool:
        self._require(Screen.GEO_LOCATION)
        try:
            self._transition(location_confirmed(self._state, geo or self._state.draft.geo))
        except ValidationError as e:
            self._fail(str(e))
            return False
        return True

    def edit_metadata(self, **changes) -> MetadataRecord:
        """Apply field edits to the draft as they happen."""
        self._require(Screen.METADATA_FORM)
        unknown = [name for name in changes if name not in MetadataRecord.model_fields]
        if unknown:
            raise ValidationError(f"Unknown metadata field(s): {', '.join(unknown)}", fields=unknown)
        current = self._state.draft.metadata or new_metadata()
        metadata = MetadataRecord.model_validate({**current.model_dump(), **changes})
        self._transition(metadata_changed(self._state, metadata))
        return metadata

    async def submit_metadata(self) -> bool:
        self._require(Screen.METADATA_FORM)
        missing = missing_required(self._state.draft.metadata)
        if missing:
            self._fail(f"Please fill in required fields: {', '.join(missing)}")
            return False

        if not self._state.draft.editing:
            self._transition(metadata_accepted(self._state))
            return True

        try:
            await self._run(self._save_edit())
        except _ScreenLeft:
            return False
        except FieldCaptureError as e:
            self._fail(f"Failed to update metadata: {e}")
            return False

        self._transition(replace(metadata_accepted(self._state), notice="Metadata updated"))
        await self._load_history()
        return True

    async def _save_edit(self) -> None:
        state = self._state
        payload = record_payload(state)
        patch = {key: payload[key] for key in ("userInfo", "geoLocation", "metadata")}
        try:
            await self.api.update_test_metadata(state.draft.test_id, patch)
        except NotFoundError:
            logger.info(f"Test {state.draft.test_id} missing on update; creating it instead")
            await self.api.create_or_update_test(record_payload(state))

    def choose_videos(self, paths: list[str]) -> list[SelectedVideo]:
        self._require(Screen.VIDEO_UPLOAD)
        try:
            accepted = self.ingest.select_files(paths)
        except ValidationError as e:
            self._fail(str(e))
            return []
        self._transition(replace(self._state, notice=self.ingest.notice, error=None))
        return accepted

    def remove_video(self, index: int) -> None:
        self._require(Screen.VIDEO_UPLOAD)
        self.ingest.remove(index)
        self._transition(replace(self._state, notice=self.ingest.notice))

    def continue_to_review(self) -> bool:
        self._require(Screen.VIDEO_UPLOAD)
        if not self.ingest.selected:
            self._fail("Please select a video file")
            return False
        self._transition(videos_chosen(self._state, self.ingest.selected))
        return True

    def skip_videos(self) -> None:
        """Upload later: carry no files forward."""
        self._require(Screen.VIDEO_UPLOAD)
        self.ingest.clear()
        self._transition(videos_chosen(self._state, []))

    async def submit(self) -> bool:
        self._require(Screen.REVIEW_SUBMIT)
        try:
            await self._run(self._submit_steps())
        except _ScreenLeft:
            return False
        except FieldCaptureError as e:
            logger.error(f"Submission failed: {e}")
            self._transition(replace(self._state, progress=0, step="", error=f"Submission failed: {e}"))
            return False

        self.ingest.clear()
        self._transition(submitted(self._state))
        return True

    async def _submit_steps(self) -> None:
        state = self._state
        videos = state.draft.videos

        self._progress(20, "Saving metadata...")
        await self.api.create_or_update_test(record_payload(state))
        self._progress(40, "Metadata saved")

        for i, video in enumerate(videos):
            self._progress(self._state.progress, f"Uploading video {i + 1} of {len(videos)}...")
            await self.api.upload_video(state.draft.test_id, video)
            self._progress(40 + (40 * (i + 1)) // len(videos), f"Uploaded {video.name}")

        self._progress(100, "Finalizing submission...")

    def _progress(self, percent: int, step: str) -> None:
        self._transition(replace(self._state, progress=percent, step=step, error=None))

    async def open_history(self) -> tuple:
        self._require(Screen.DASHBOARD, Screen.UPLOAD_HISTORY)
        self._transition(history_opened(self._state))
        return await self._load_history()

    async def _load_history(self) -> tuple:
        try:
            tests = await self._run(self.api.list_tests())
        except _ScreenLeft:
            return ()
        except FieldCaptureError as e:
            self._fail(f"Failed to load upload history: {e}")
            return self._state.history
        self._transition(replace(self._state, history=tuple(tests)))
        return self._state.history

    def edit_from_history(self, test_id: str) -> bool:
        self._require(Screen.UPLOAD_HISTORY)
        record = next((t for t in self._state.history if t.test_id == test_id), None)
        if record is None:
            self._fail(f"Test {test_id} is not in the history")
            return False
        self._transition(editing_record(self._state, record))
        return True

    async def delete_from_history(self, test_id: str) -> bool:
        self._require(Screen.UPLOAD_HISTORY)
        try:
            await self._run(self.api.delete_test(test_id))
        except _ScreenLeft:
            return False
        except FieldCaptureError as e:
            self._fail(f"Failed to delete test: {e}")
            return False
        history = tuple(t for t in self._state.history if t.test_id != test_id)
        self._transition(replace(self._state, history=history, notice="Test deleted successfully", error=None))
        return True

    def back(self) -> WizardState:
        new_state = went_back(self._state)
        if new_state.screen == Screen.DASHBOARD:
            self.ingest.clear()
        return self._transition(new_state)
