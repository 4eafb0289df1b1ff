"""
Job Poller
Re-checks a remote asynchronous job until it completes, times out or is cancelled
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from worksheet_wizard.client.api_client import AuthExpiredError, WorksheetAPIError
from worksheet_wizard.core.config import Settings
from worksheet_wizard.models.jobs import (
    NO_QUESTIONS_MSG,
    STATUS_COMPLETED,
    JobKind,
    JobStatus,
    PollState,
)

logger = logging.getLogger(__name__)

Callback = Callable[..., Union[None, Awaitable[None]]]

ACTIVE_STATES = {PollState.SUBMITTED, PollState.POLLING, PollState.DELAYED}


def is_complete(kind: JobKind, status: JobStatus) -> bool:
    """
    Completeness predicate per job kind

    metadata: status is Completed
    question_config: Completed and a question_configuration is present
    worksheet: Completed and questions are present and not the
    "No questions generated." sentinel
    """
    if status.status != STATUS_COMPLETED:
        return False

    if kind == JobKind.QUESTION_CONFIG:
        return bool(status.data.get("question_configuration"))

    if kind == JobKind.WORKSHEET:
        questions = status.data.get("questions")
        if not questions:
            return False
        if isinstance(questions, dict) and questions.get("msg") == NO_QUESTIONS_MSG:
            return False

    return True


@dataclass
class PollSchedule:
    """Delays for one job: first check, then capped geometric retries"""
    initial_delay: float
    interval: float
    backoff_factor: float = 1.0
    max_interval: Optional[float] = None
    slow_after_attempts: Optional[int] = None
    max_attempts: Optional[int] = None

    def retry_delay(self, attempts: int) -> float:
        """Delay before the next check, given how many checks have run"""
        delay = self.interval * (self.backoff_factor ** max(attempts - 1, 0))
        if self.max_interval is not None:
            delay = min(delay, self.max_interval)
        return delay

    @classmethod
    def for_kind(cls, kind: JobKind, settings: Settings) -> "PollSchedule":
        initial = {
            JobKind.METADATA: settings.metadata_initial_delay,
            JobKind.QUESTION_CONFIG: settings.question_config_initial_delay,
            JobKind.WORKSHEET: settings.worksheet_initial_delay,
        }[kind]
        return cls(
            initial_delay=initial,
            interval=settings.poll_interval,
            backoff_factor=settings.poll_backoff_factor,
            max_interval=settings.poll_max_interval,
            slow_after_attempts=settings.poll_slow_after_attempts,
            max_attempts=settings.poll_max_attempts,
        )


async def _call(callback: Optional[Callback], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class JobPoller:
    """
    Polls one job as a cancellable asyncio task

    Network failures, 404s, unparseable bodies, unknown statuses and
    completed-but-incomplete payloads all lead to another check. Checks never
    overlap: the next one is scheduled only after the current one resolved.
    """

    def __init__(
        self,
        kind: JobKind,
        fetch: Callable[[], Awaitable[JobStatus]],
        schedule: PollSchedule,
        on_complete: Callback,
        on_timeout: Optional[Callback] = None,
        on_delayed: Optional[Callback] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.kind = kind
        self.fetch = fetch
        self.schedule = schedule
        self.on_complete = on_complete
        self.on_timeout = on_timeout
        self.on_delayed = on_delayed
        self.sleep = sleep

        self.state = PollState.SUBMITTED
        self.attempts = 0
        self.delays: List[float] = []
        self.result: Optional[Dict[str, Any]] = None
        self.task: Optional[asyncio.Task] = None

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    def start(self) -> asyncio.Task:
        self.task = asyncio.create_task(self.run(), name=f"poll-{self.kind.value}")
        return self.task

    def cancel(self) -> None:
        """Stop polling; the job is abandoned from the caller's side"""
        if self.task is not None and not self.task.done() and self.task is not asyncio.current_task():
            self.task.cancel()
        if self.is_active:
            self.state = PollState.ABANDONED
            logger.info(f"🛑 Stopped polling {self.kind.value} job")

    async def _wait(self, delay: float) -> None:
        self.delays.append(delay)
        await self.sleep(delay)

    async def _check(self) -> Optional[JobStatus]:
        try:
            return await self.fetch()
        except AuthExpiredError:
            raise
        except (WorksheetAPIError, ValueError) as e:
            logger.warning(f"⚠️ {self.kind.value} status check {self.attempts} failed: {e}")
            return None

    async def run(self) -> Optional[Dict[str, Any]]:
        """
        Poll until completion

        Returns:
            The job's data payload, or None when the poller timed out or was
            abandoned
        """
        try:
            await self._wait(self.schedule.initial_delay)

            while True:
                self.attempts += 1
                if self.state == PollState.SUBMITTED:
                    self.state = PollState.POLLING

                try:
                    status = await self._check()
                except AuthExpiredError:
                    self.state = PollState.ABANDONED
                    logger.warning(f"🛑 {self.kind.value} polling stopped: session expired")
                    return None

                if not self.is_active:
                    return None

                if status is not None:
                    if is_complete(self.kind, status):
                        self.state = PollState.COMPLETED
                        self.result = status.data
                        logger.info(f"✅ {self.kind.value} job completed after {self.attempts} check(s)")
                        await _call(self.on_complete, status.data)
                        return status.data

                    logger.info(f"⏳ {self.kind.value} job status {status.status!r}, checking again")

                max_attempts = self.schedule.max_attempts
                if max_attempts and self.attempts >= max_attempts:
                    self.state = PollState.TIMED_OUT
                    logger.error(f"❌ {self.kind.value} job still not complete after {self.attempts} checks")
                    await _call(self.on_timeout)
                    return None

                slow_after = self.schedule.slow_after_attempts
                if slow_after and self.attempts >= slow_after and self.state == PollState.POLLING:
                    self.state = PollState.DELAYED
                    logger.warning(f"⚠️ {self.kind.value} job is taking longer than expected")
                    await _call(self.on_delayed)

                await self._wait(self.schedule.retry_delay(self.attempts))

        except asyncio.CancelledError:
            self.state = PollState.ABANDONED
            raise
