"""
Upload Orchestrator: drive one photo through the upload form.

States: init -> session_acquired -> authentication_checked -> file_attached ->
form_populated -> submitted -> {confirmed | ambiguous_success | failed} ->
finalized. The session is released before control returns, whatever the
outcome. Nothing is retried; the first failure ends the task.
"""

import asyncio
import shutil
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger
from pydantic import BaseModel

from photo_publisher.browser import (
    DESCRIPTION_SELECTOR,
    ENABLE_ALL_SELECTOR,
    FILE_INPUT_SELECTOR,
    LOGIN_MARKER_SELECTOR,
    LOGIN_PATH_MARKER,
    RIGHTS_DECLARATION_SELECTOR,
    SAFE_FOR_WORK_SELECTOR,
    SUBMIT_SELECTOR,
    TAGS_SELECTOR,
    TITLE_SELECTOR,
    UPLOAD_PATH_MARKER,
    UPLOAD_URL,
    EventSink,
    SessionFactory,
    UiDriver,
)
from photo_publisher.errors import (
    AuthenticationRequiredError,
    FileRelocationError,
    SubmissionTimeoutError,
    UnexpectedPageError,
)
from photo_publisher.models import (
    AmbiguousSuccess,
    Confirmed,
    Failed,
    ListingCopy,
    PhotoTask,
    SubmissionOutcome,
    TaskState,
)


if TYPE_CHECKING:
    from loguru import Logger


DONE_DIR_NAME = "DONE"


class UploadSettings(BaseModel):
    """Timings and addresses of the upload form."""

    upload_url: str = UPLOAD_URL
    upload_path_marker: str = UPLOAD_PATH_MARKER
    login_path_marker: str = LOGIN_PATH_MARKER
    upload_dwell_seconds: float = 60.0
    settle_seconds: float = 5.0
    submit_timeout_ms: int = 60000
    done_dir_name: str = DONE_DIR_NAME


def resolve_submission_outcome(
    navigated: bool,  # noqa: FBT001
    current_url: str,
    upload_path_marker: str = UPLOAD_PATH_MARKER,
) -> SubmissionOutcome:
    """
    Classify what happened after the submit click.

    A navigation is a confirmation. Without one, a page that no longer shows the
    upload form most likely accepted the submission; this is reported as
    AmbiguousSuccess so callers can tell inferred success from observed success.

    Examples:
        >>> resolve_submission_outcome(True, "https://example.com/portfolio/images/new").kind
        'confirmed'
        >>> resolve_submission_outcome(False, "https://example.com/works/1").kind
        'ambiguous_success'
        >>> resolve_submission_outcome(False, "https://example.com/portfolio/images/new").kind
        'failed'

    """
    if navigated:
        return Confirmed()
    if upload_path_marker not in current_url:
        return AmbiguousSuccess(current_url=current_url)
    return Failed(
        reason=f"No navigation after submit and still on {current_url}",
        current_url=current_url,
    )


def relocate_to_done(source: Path, done_dir_name: str = DONE_DIR_NAME) -> Path:
    """
    Move a published photo into the completion folder beside it.

    Returns:
        The new path, same file name under <source dir>/<done_dir_name>

    Raises:
        FileRelocationError: The folder could not be created or the move failed;
            the photo is left where it was.

    """
    done_dir = source.parent / done_dir_name
    destination = done_dir / source.name
    try:
        done_dir.mkdir(parents=True, exist_ok=True)
        shutil.move(source, destination)
    except OSError as exc:
        msg = f"Could not move {source.name} to {done_dir}: {exc}"
        raise FileRelocationError(msg, source=source) from exc
    return destination


class UploadOrchestrator:
    """Runs the upload state machine for one task at a time."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        settings: UploadSettings | None = None,
        event_sink: EventSink | None = None,
        log: "Logger | None" = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or UploadSettings()
        self._event_sink = event_sink
        self._log = log or logger
        self._sleep = sleep

    def upload(self, task: PhotoTask, copy: ListingCopy) -> SubmissionOutcome:
        """Blocking entry point used by the batch runner."""
        return asyncio.run(self.run(task, copy))

    async def run(self, task: PhotoTask, copy: ListingCopy) -> SubmissionOutcome:
        """
        Publish one photo with the given copy.

        Returns:
            Confirmed or AmbiguousSuccess; the photo has been moved to the
            completion folder.

        Raises:
            SessionAcquisitionError: No browser surface could be obtained.
            AuthenticationRequiredError: The browser is not logged in.
            UnexpectedPageError: A form control was missing or unusable.
            SubmissionTimeoutError: The form was still displayed after the wait.
            FileRelocationError: The photo could not be moved after publishing.

        """
        self._log.info("upload_started", file=task.name, path=str(task.path))
        try:
            async with self._session_factory() as driver:
                self._transition(task, TaskState.SESSION_ACQUIRED)
                if self._event_sink is not None:
                    await driver.register_event_sink(self._event_sink)

                await self._check_authentication(driver)
                self._transition(task, TaskState.AUTHENTICATION_CHECKED)

                await self._attach_file(driver, task.path)
                self._transition(task, TaskState.FILE_ATTACHED)

                await self._populate_during_dwell(driver, copy)
                self._transition(task, TaskState.FORM_POPULATED)

                outcome = await self._submit(driver, task)

            task.outcome = outcome
            if isinstance(outcome, Failed):
                self._log.error("submission_failed", reason=outcome.reason)
                msg = "Submission failed - still on upload page"
                raise SubmissionTimeoutError(msg, current_url=outcome.current_url or "")

            self._transition(
                task,
                TaskState.CONFIRMED if isinstance(outcome, Confirmed) else TaskState.AMBIGUOUS_SUCCESS,
            )
            task.final_path = relocate_to_done(task.path, self._settings.done_dir_name)
            self._log.info("photo_moved_to_done", destination=str(task.final_path))
            self._transition(task, TaskState.FINALIZED)
        except Exception as exc:
            failed_in = task.state
            task.state = TaskState.FAILED
            task.error = str(exc)
            self._log.error(
                "upload_failed",
                file=task.name,
                failed_in=str(failed_in),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self._log.info("upload_completed", file=task.name, outcome=outcome.kind)
        return outcome

    def _transition(self, task: PhotoTask, state: TaskState) -> None:
        self._log.debug("task_state_changed", file=task.name, previous=str(task.state), state=str(state))
        task.state = state

    async def _check_authentication(self, driver: UiDriver) -> None:
        await driver.navigate(self._settings.upload_url, wait_until="load")
        if await driver.find_element(LOGIN_MARKER_SELECTOR):
            self._log.error("login_required", hint="Log in manually in the controlled browser first")
            msg = "Authentication required. Please log in manually first."
            raise AuthenticationRequiredError(msg)
        current_url = await driver.current_url()
        if self._settings.login_path_marker in current_url:
            self._log.error("redirected_to_login", url=current_url)
            msg = f"Authentication required. Redirected to {current_url}"
            raise AuthenticationRequiredError(msg)

    async def _attach_file(self, driver: UiDriver, path: Path) -> None:
        if not await driver.find_element(FILE_INPUT_SELECTOR):
            self._log.error(
                "upload_input_missing",
                selector=FILE_INPUT_SELECTOR,
                url=await driver.current_url(),
            )
            msg = "Could not find upload button. Please verify login status and permissions."
            raise UnexpectedPageError(msg, selector=FILE_INPUT_SELECTOR)
        await driver.upload_file(FILE_INPUT_SELECTOR, path)
        self._log.info("image_upload_started")

    async def _populate_during_dwell(self, driver: UiDriver, copy: ListingCopy) -> None:
        """Fill the form while the upload completes server-side; both must finish."""
        dwell = asyncio.ensure_future(self._sleep(self._settings.upload_dwell_seconds))
        try:
            await asyncio.gather(dwell, self._populate_form(driver, copy))
        except BaseException:
            dwell.cancel()
            raise

    async def _populate_form(self, driver: UiDriver, copy: ListingCopy) -> None:
        await driver.set_field_value(TITLE_SELECTOR, copy.title)
        await driver.set_field_value(DESCRIPTION_SELECTOR, copy.description)
        await driver.set_field_value(TAGS_SELECTOR, copy.keywords)
        await driver.click(SAFE_FOR_WORK_SELECTOR)
        await driver.click(RIGHTS_DECLARATION_SELECTOR)
        enabled = await driver.click_all(ENABLE_ALL_SELECTOR)
        self._log.info("form_populated", title=copy.title, enabled_variant_controls=enabled)

    async def _submit(self, driver: UiDriver, task: PhotoTask) -> SubmissionOutcome:
        await self._sleep(self._settings.settle_seconds)
        await driver.accept_dialogs()
        self._log.info("attempting_submission", timeout_ms=self._settings.submit_timeout_ms)
        navigated = await driver.submit_and_wait(SUBMIT_SELECTOR, self._settings.submit_timeout_ms)
        self._transition(task, TaskState.SUBMITTED)
        current_url = await driver.current_url()
        outcome = resolve_submission_outcome(navigated, current_url, self._settings.upload_path_marker)
        if isinstance(outcome, AmbiguousSuccess):
            self._log.info("url_changed_submission_appears_successful", url=current_url)
        self._log.info("submission_resolved", outcome=outcome.kind, url=current_url)
        return outcome
