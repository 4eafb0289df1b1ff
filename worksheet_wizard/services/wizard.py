"""
Wizard Controller
Five-step worksheet workflow: Login, Configure, Review-Metadata,
Review-Questions, Complete.

All step changes go through one transition table. Every mutation of the
session is persisted through the session store.
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from worksheet_wizard.client.api_client import (
    SESSION_EXPIRED_MESSAGE,
    AuthExpiredError,
    WorksheetAPIClient,
    WorksheetAPIError,
    job_status_endpoint,
)
from worksheet_wizard.core.config import Settings, settings as default_settings
from worksheet_wizard.models.jobs import JobKind
from worksheet_wizard.models.session import FormData, Session, WizardStep
from worksheet_wizard.models.worksheet import Worksheet
from worksheet_wizard.services.excel_export import build_workbook, export_filename, export_worksheet, workbook_bytes
from worksheet_wizard.services.job_poller import JobPoller, PollSchedule
from worksheet_wizard.services.session_store import SessionStore

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[Tuple[WizardStep, str], WizardStep] = {
    (WizardStep.LOGIN, "login"): WizardStep.CONFIGURE,
    (WizardStep.CONFIGURE, "metadata_ready"): WizardStep.REVIEW_METADATA,
    (WizardStep.REVIEW_METADATA, "question_config_ready"): WizardStep.REVIEW_QUESTIONS,
    (WizardStep.REVIEW_QUESTIONS, "worksheet_ready"): WizardStep.COMPLETE,
    (WizardStep.COMPLETE, "create_another"): WizardStep.CONFIGURE,
}

JOB_LABELS = {
    JobKind.METADATA: "Metadata generation",
    JobKind.QUESTION_CONFIG: "Question configuration",
    JobKind.WORKSHEET: "Worksheet generation",
}

DISTRIBUTION_FIELDS = {"question_dist", "difficulty_dist", "bloom_dist"}

DELAYED_MESSAGE = "Still processing. This is taking longer than expected."


class WizardError(Exception):
    """Base exception for wizard errors"""
    pass


class InvalidTransitionError(WizardError):
    """Raised when an action is not allowed at the current step"""
    pass


class FormIncompleteError(WizardError):
    """Raised when required form fields are missing"""
    pass


class NoWorksheetError(WizardError):
    """Raised when exporting before a worksheet exists"""
    pass


class WizardController:
    """Owns the session and sequences the remote jobs"""

    def __init__(
        self,
        api: WorksheetAPIClient,
        store: SessionStore,
        settings: Settings = default_settings
    ):
        self.api = api
        self.api.on_auth_expired = self._on_auth_expired
        self.store = store
        self.settings = settings

        self.session = Session()
        self.username = ""
        self.loading = False
        self.error = ""
        self.success = ""

        self._pollers: Dict[JobKind, JobPoller] = {}
        self._generation = 0

    # ------------------------------------------------------------------
    # State plumbing
    # ------------------------------------------------------------------

    @property
    def step(self) -> WizardStep:
        return self.session.step

    def _persist(self) -> None:
        self.store.save(self.session)

    def _require_step(self, step: WizardStep, action: str) -> None:
        if self.session.step != step:
            raise InvalidTransitionError(
                f"Cannot {action} at step {self.session.step.name}"
            )

    def _transition(self, event: str) -> WizardStep:
        current = self.session.step
        target = TRANSITIONS.get((current, event))
        if target is None:
            raise InvalidTransitionError(f"Cannot {event} from step {current.name}")

        self.session.step = target
        logger.info(f"➡️ Step {current.name} -> {target.name}")
        self._persist()
        return target

    def _begin(self) -> int:
        """Mark a request as started; returns the generation it belongs to"""
        self.loading = True
        self.error = ""
        return self._generation

    def _is_stale(self, generation: int, kind: JobKind) -> bool:
        """True when a teardown or another job started while a submission was in flight"""
        if generation == self._generation:
            return False
        logger.info(f"Ignoring stale {kind.value} submission response")
        return True

    def _fail(self, error: Exception) -> None:
        self.loading = False
        self.error = str(error)

    def _cancel_polls(self) -> None:
        for poller in self._pollers.values():
            poller.cancel()
        self._pollers.clear()

    def _on_auth_expired(self, token: str) -> None:
        """Expiry hook of the API client; tears the session down once per token"""
        if not token or token != self.session.token:
            return
        logger.warning("🔒 Session expired, logging out")
        self.logout()
        self.error = SESSION_EXPIRED_MESSAGE

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def restore(self) -> bool:
        """
        Restore the cached session

        Returns:
            True if an unexpired session was restored
        """
        session = self.store.restore()
        if session is None:
            self.session = Session()
            return False

        self.session = session
        try:
            if not session.boards:
                await self._load_boards()
        except AuthExpiredError:
            return False

        if session.pending_job is not None:
            logger.info(f"🔄 Resuming {session.pending_job.value} polling")
            self.loading = True
            self._start_job(session.pending_job, resume=True)

        return True

    async def login(self, username: str, password: str) -> None:
        self._require_step(WizardStep.LOGIN, "log in")
        self._begin()
        try:
            token = await self.api.login(username, password)
        except WorksheetAPIError as e:
            self._fail(e)
            raise
        finally:
            self.loading = False

        self.session.token = token
        self.session.token_expiry = self.store.new_expiry()
        self.username = username
        self.success = "Login successful!"
        self._transition("login")
        await self._load_boards()

    def logout(self) -> None:
        """Clear everything: jobs, credentials, catalogs, form and the store"""
        self._cancel_polls()
        self._generation += 1
        self.store.clear()
        self.session = Session()
        self.username = ""
        self.loading = False
        self.error = ""
        self.success = ""
        logger.info("👋 Logged out")

    async def close(self) -> None:
        self._cancel_polls()
        await self.api.close()

    # ------------------------------------------------------------------
    # Configure step
    # ------------------------------------------------------------------

    async def _load_boards(self) -> None:
        try:
            boards = await self.api.list_boards(self.session.token)
        except AuthExpiredError:
            raise
        except WorksheetAPIError as e:
            logger.error(f"❌ Could not load boards: {e}")
            return
        self.session.boards = boards
        self._persist()

    async def select_board(self, board_id: str) -> None:
        """Pick a board; resets grade and subject and loads the board's grades"""
        self._require_step(WizardStep.CONFIGURE, "select a board")
        self.session.form_data = self.session.form_data.model_copy(
            update={"board": board_id, "grade": "", "subject": ""}
        )
        self._persist()

        try:
            grades = await self.api.list_grades(self.session.token, board_id)
        except AuthExpiredError:
            raise
        except WorksheetAPIError as e:
            logger.error(f"❌ Could not load grades for board {board_id}: {e}")
            return
        self.session.grades = grades
        self._persist()

    async def select_grade(self, grade_id: str) -> None:
        """Pick a grade; resets subject and loads the grade's subjects"""
        self._require_step(WizardStep.CONFIGURE, "select a grade")
        board_id = self.session.form_data.board
        self.session.form_data = self.session.form_data.model_copy(
            update={"grade": grade_id, "subject": ""}
        )
        self._persist()

        try:
            subjects = await self.api.list_subjects(self.session.token, board_id, grade_id)
        except AuthExpiredError:
            raise
        except WorksheetAPIError as e:
            logger.error(f"❌ Could not load subjects for grade {grade_id}: {e}")
            return
        self.session.subjects = subjects
        self._persist()

    def update_form(self, changes: Dict[str, Any]) -> FormData:
        """
        Apply field changes to the form

        Distribution fields are merged key by key, so a single count or
        percentage can be changed on its own.
        """
        self._require_step(WizardStep.CONFIGURE, "edit the form")
        data = self.session.form_data.model_dump()

        for key, value in changes.items():
            if key not in data:
                raise FormIncompleteError(f"Unknown form field: {key}")
            if key in DISTRIBUTION_FIELDS and isinstance(value, dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value

        try:
            form = FormData.model_validate(data)
        except ValidationError as e:
            raise FormIncompleteError(str(e)) from e

        self.session.form_data = form
        self._persist()
        return form

    @staticmethod
    def _warn_totals(form: FormData) -> None:
        if form.difficulty_total != 100:
            logger.warning(f"⚠️ Difficulty distribution adds up to {form.difficulty_total}%")
        if form.bloom_total != 100:
            logger.warning(f"⚠️ Bloom distribution adds up to {form.bloom_total}%")

    # ------------------------------------------------------------------
    # Remote jobs
    # ------------------------------------------------------------------

    def _require_idle(self) -> None:
        if self.session.pending_job is not None:
            raise InvalidTransitionError(
                f"{JOB_LABELS[self.session.pending_job]} is already in progress"
            )

    async def submit_metadata(self) -> Optional[str]:
        """
        Start metadata generation; the wizard moves on when the job completes

        Returns:
            The job id, or None if the session was torn down while the
            submission was in flight
        """
        self._require_step(WizardStep.CONFIGURE, "generate metadata")
        self._require_idle()
        form = self.session.form_data
        if not form.is_complete:
            raise FormIncompleteError("Select a board, grade and subject first")
        self._warn_totals(form)

        generation = self._begin()
        try:
            job_id = await self.api.submit_metadata_job(self.session.token, form)
        except WorksheetAPIError as e:
            if not self._is_stale(generation, JobKind.METADATA):
                self._fail(e)
            raise

        if self._is_stale(generation, JobKind.METADATA):
            return None

        self.session.worksheet_id = job_id
        self.success = "Metadata generation started!"
        self._start_job(JobKind.METADATA)
        return job_id

    async def submit_question_config(self) -> None:
        self._require_step(WizardStep.REVIEW_METADATA, "submit the question config")
        self._require_idle()
        metadata = self.session.metadata or {}

        generation = self._begin()
        try:
            await self.api.submit_question_config_job(
                self.session.token,
                self.session.worksheet_id,
                metadata.get("subject_matter"),
                metadata.get("learning_standards")
            )
        except WorksheetAPIError as e:
            if not self._is_stale(generation, JobKind.QUESTION_CONFIG):
                self._fail(e)
            raise

        if self._is_stale(generation, JobKind.QUESTION_CONFIG):
            return

        self.success = "Question config submitted!"
        self._start_job(JobKind.QUESTION_CONFIG)

    async def generate_worksheet(self) -> None:
        self._require_step(WizardStep.REVIEW_QUESTIONS, "generate the worksheet")
        self._require_idle()

        generation = self._begin()
        try:
            await self.api.submit_worksheet_job(
                self.session.token,
                self.session.worksheet_id,
                self.session.question_config or {}
            )
        except WorksheetAPIError as e:
            if not self._is_stale(generation, JobKind.WORKSHEET):
                self._fail(e)
            raise

        if self._is_stale(generation, JobKind.WORKSHEET):
            return

        self.success = "Worksheet generation started!"
        self._start_job(JobKind.WORKSHEET)

    def _start_job(self, kind: JobKind, resume: bool = False) -> JobPoller:
        self._cancel_polls()
        self._generation += 1
        generation = self._generation

        self.session.pending_job = kind
        self._persist()

        token = self.session.token
        endpoint = job_status_endpoint(kind, self.session.worksheet_id)
        schedule = PollSchedule.for_kind(kind, self.settings)
        if resume:
            schedule.initial_delay = 0

        poller = JobPoller(
            kind,
            fetch=lambda: self.api.fetch_job_status(token, endpoint),
            schedule=schedule,
            on_complete=lambda data: self._job_completed(kind, generation, data),
            on_timeout=lambda: self._job_timed_out(kind, generation),
            on_delayed=lambda: self._job_delayed(generation),
        )
        self._pollers[kind] = poller
        poller.start()
        return poller

    def _job_completed(self, kind: JobKind, generation: int, data: Dict[str, Any]) -> None:
        if generation != self._generation:
            logger.info(f"Ignoring stale {kind.value} completion")
            return

        self.session.pending_job = None
        self.loading = False

        try:
            if kind == JobKind.METADATA:
                self.session.metadata = data
                self._transition("metadata_ready")
            elif kind == JobKind.QUESTION_CONFIG:
                self.session.question_config = data.get("question_configuration")
                self._transition("question_config_ready")
            else:
                self.session.worksheet = Worksheet.model_validate(data)
                self._transition("worksheet_ready")
        except ValidationError as e:
            logger.error(f"❌ Unreadable worksheet payload: {e}")
            self.error = "The generated worksheet could not be read"
            self._persist()
        except InvalidTransitionError as e:
            logger.error(f"❌ {e}")
            self._persist()

    def _job_timed_out(self, kind: JobKind, generation: int) -> None:
        if generation != self._generation:
            return
        self.session.pending_job = None
        self.loading = False
        self.error = f"{JOB_LABELS[kind]} is taking longer than expected. Please try again."
        self._persist()

    def _job_delayed(self, generation: int) -> None:
        if generation == self._generation:
            self.success = DELAYED_MESSAGE

    async def wait_for_jobs(self) -> None:
        """Block until every running poller has finished"""
        tasks = [p.task for p in self._pollers.values() if p.task is not None and not p.task.done()]
        if tasks:
            await asyncio.wait(tasks)

    # ------------------------------------------------------------------
    # Complete step
    # ------------------------------------------------------------------

    def create_another(self) -> None:
        """
        Go back to Configure for a new worksheet

        The token expiry is checked again here; an expired session is torn
        down instead.
        """
        self._require_step(WizardStep.COMPLETE, "create another worksheet")

        if not self.session.token or self.session.is_expired(self.store.clock()):
            self.logout()
            self.error = SESSION_EXPIRED_MESSAGE
            raise AuthExpiredError(SESSION_EXPIRED_MESSAGE)

        self._cancel_polls()
        self._generation += 1
        self.session.reset_worksheet_state()
        self.success = ""
        self.error = ""
        self._transition("create_another")

    def _require_worksheet(self) -> Worksheet:
        if self.session.worksheet is None:
            raise NoWorksheetError("No finished worksheet to export")
        return self.session.worksheet

    def export_download(self) -> Tuple[str, bytes]:
        """Filename and .xlsx bytes for a browser download"""
        worksheet = self._require_worksheet()
        filename = export_filename(worksheet)
        logger.info(f"📄 Prepared download {filename}")
        return filename, workbook_bytes(build_workbook(worksheet))

    def export_worksheet(self, directory: Optional[str] = None) -> str:
        """Write the worksheet to the export directory and return the path"""
        worksheet = self._require_worksheet()
        return export_worksheet(worksheet, directory or self.settings.export_dir)

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------

    def view(self) -> Dict[str, Any]:
        """Snapshot for the front end; never includes the token"""
        form = self.session.form_data
        return {
            "step": int(self.session.step),
            "step_name": self.session.step.name.lower(),
            "username": self.username,
            "loading": self.loading,
            "error": self.error,
            "success": self.success,
            "jobs": {kind.value: poller.state.value for kind, poller in self._pollers.items()},
            "difficulty_total": form.difficulty_total,
            "bloom_total": form.bloom_total,
            "session": self.session.model_dump(mode="json", exclude={"token"}),
        }


# Singleton instance
_controller: Optional[WizardController] = None


def get_wizard_controller() -> WizardController:
    """
    Get or create the global wizard controller

    Returns:
        WizardController instance
    """
    global _controller

    if _controller is None:
        api = WorksheetAPIClient(
            base_url=default_settings.worksheet_api_base,
            timeout=default_settings.request_timeout
        )
        store = SessionStore(
            default_settings.session_file,
            ttl_minutes=default_settings.session_ttl_minutes
        )
        _controller = WizardController(api, store, default_settings)

    return _controller


async def close_wizard_controller():
    """Close the global wizard controller"""
    global _controller
    if _controller:
        await _controller.close()
        _controller = None
