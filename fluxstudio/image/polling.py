"""Polling orchestrator for one generation job.

Processing flow:
    1. Preparing: submit the request through `FluxClient.submit`.
    2. Submitted -> Polling: poll the provider-issued URL.
    3. Classify each poll response:
       - ready/completed with a sample  -> Ready (no sample -> Failed)
       - moderated                      -> Moderated (reasons default to
                                           `["Content moderated"]`)
       - failed/not-found               -> Failed (provider text or a
                                           synthesized status message)
       - anything else                  -> stay in Polling, notify progress
    4. Stop on a terminal classification, cancellation or budget exhaustion.

Retry behavior:
    Fixed interval between attempts (`poll_interval`, default 2 s), at most
    `max_attempts` (default 60) polls, no exponential backoff. Transport
    failures, per-call timeouts and 429/502/503/504 responses are logged and
    retried within the same budget; all other errors end the job as Errored.

Cancellation:
    A `CancellationHandle` can be threaded through `run`/`wait_for_result`.
    It is checked before every attempt and interrupts the inter-attempt wait.

Concurrency:
    Cooperative: every wait yields to the event loop. An orchestrator instance
    tracks the state of a single job; `FluxSession` builds one per generation.
"""

import asyncio
import logging
from dataclasses import dataclass

from fluxstudio.core.cancellation import CancellationHandle
from fluxstudio.core.errors import (
    FluxError,
    GenerationFailedError,
    GenerationTimeoutError,
    JobCancelledError,
    ModerationError,
    TransportError,
    UpstreamError,
)
from fluxstudio.core.types import (
    DEFAULT_MODERATION_REASON,
    GenerationJob,
    JobState,
    PollResult,
    PollStatus,
    ProgressUpdate,
)


logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = frozenset({429, 502, 503, 504})


def is_transient(error: FluxError) -> bool:
    """Return whether a poll failure should be retried within the budget."""
    if isinstance(error, TransportError):
        return True
    return isinstance(error, UpstreamError) and error.status in TRANSIENT_STATUSES


@dataclass
class JobOutcome:
    """Terminal result of one orchestrated job.

    Attributes:
        state: Terminal `JobState`.
        job: Job handle, `None` when submission never succeeded.
        result: Last classified poll result, if any.
        error: Error describing any non-ready state.
        attempts: Number of polls issued.
    """

    state: JobState
    job: GenerationJob | None = None
    result: PollResult | None = None
    error: FluxError | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.state is JobState.READY

    def raise_for_state(self):
        """Raise the error mapped to a non-ready outcome; no-op when Ready."""
        if self.ok:
            return
        if self.error is not None:
            raise self.error
        raise FluxError(f"Generation ended in state {self.state.value}")


def progress_update(result: PollResult, attempt: int, max_attempts: int) -> ProgressUpdate:
    """Build the per-attempt progress notification for a non-terminal poll."""
    if result.progress is not None:
        percent = round(result.progress * 100)
        return ProgressUpdate(
            f"Generating image... {percent}% ({attempt}/{max_attempts})",
            attempt=attempt,
            max_attempts=max_attempts,
            percent=percent,
        )
    return ProgressUpdate(
        f"Generating image... ({attempt}/{max_attempts})",
        attempt=attempt,
        max_attempts=max_attempts,
    )


class PollingOrchestrator:
    """Drive submit -> poll -> classify for a single job.

    Args:
        client: `FluxClient` (or any object with async `submit`/`poll` and a
            `settings` attribute).
        max_attempts: Poll budget; defaults to `client.settings.max_attempts`.
        poll_interval: Seconds between attempts; defaults to
            `client.settings.poll_interval`.
        on_progress: Optional callable receiving `ProgressUpdate` objects.
    """

    def __init__(self, client, max_attempts=None, poll_interval=None, on_progress=None):
        settings = client.settings
        self.client = client
        self.max_attempts = max_attempts if max_attempts is not None else settings.max_attempts
        self.poll_interval = poll_interval if poll_interval is not None else settings.poll_interval
        self.on_progress = on_progress
        self.state = JobState.PREPARING

    def _set_state(self, state, job=None):
        self.state = state
        logger.info("Job %s -> %s", job.id if job else "-", state.value)

    def _notify(self, update: ProgressUpdate):
        if self.on_progress is None:
            return
        try:
            self.on_progress(update)
        except Exception:
            logger.exception("Progress callback failed")

    def _finish(self, outcome: JobOutcome) -> JobOutcome:
        self._set_state(outcome.state, outcome.job)
        if outcome.error is not None and not outcome.ok:
            logger.warning("Job ended in %s: %s", outcome.state.value, outcome.error)
        return outcome

    def _cancelled(self, job, attempts) -> JobOutcome:
        return self._finish(
            JobOutcome(
                JobState.CANCELLED,
                job=job,
                error=JobCancelledError("Generation was cancelled"),
                attempts=attempts,
            )
        )

    async def _wait(self, cancel) -> bool:
        if cancel is not None:
            return await cancel.wait(self.poll_interval)
        await asyncio.sleep(max(self.poll_interval, 0))
        return False

    def classify(self, job: GenerationJob, result: PollResult, attempt: int) -> JobOutcome | None:
        """Map a poll result to a terminal outcome, or `None` to keep polling."""
        status = result.status

        if status in (PollStatus.READY, PollStatus.COMPLETED):
            if result.sample:
                return JobOutcome(JobState.READY, job=job, result=result, attempts=attempt)
            logger.warning("Job %s reported %s without a sample", job.id, result.raw_status)
            return JobOutcome(
                JobState.FAILED,
                job=job,
                result=result,
                error=GenerationFailedError(f"Unexpected result status: {result.raw_status}"),
                attempts=attempt,
            )

        if status is PollStatus.MODERATED:
            reasons = result.moderation_reasons or [DEFAULT_MODERATION_REASON]
            return JobOutcome(
                JobState.MODERATED,
                job=job,
                result=result,
                error=ModerationError(reasons),
                attempts=attempt,
            )

        if status in (PollStatus.FAILED, PollStatus.NOT_FOUND):
            message = result.error or (
                f"Image generation failed with status: {result.raw_status or status.value}"
            )
            return JobOutcome(
                JobState.FAILED,
                job=job,
                result=result,
                error=GenerationFailedError(message),
                attempts=attempt,
            )

        return None

    async def run(self, model, request, cancel: CancellationHandle | None = None) -> JobOutcome:
        """Submit `request` and poll it to a terminal outcome.

        Submission failures end in `Errored` with the original error.
        """
        self._set_state(JobState.PREPARING)
        if cancel is not None and cancel.cancelled:
            return self._cancelled(None, 0)

        self._notify(ProgressUpdate("Starting image generation..."))
        try:
            job = await self.client.submit(model, request)
        except FluxError as exc:
            return self._finish(JobOutcome(JobState.ERRORED, error=exc))

        self._set_state(JobState.SUBMITTED, job)
        return await self.wait_for_result(job, cancel)

    async def wait_for_result(self, job: GenerationJob, cancel: CancellationHandle | None = None) -> JobOutcome:
        """Poll an already-submitted job until it reaches a terminal outcome."""
        self._set_state(JobState.POLLING, job)
        self._notify(ProgressUpdate("Generating image...", max_attempts=self.max_attempts))

        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            if cancel is not None and cancel.cancelled:
                return self._cancelled(job, attempt - 1)

            try:
                result = await self.client.poll(job.polling_url)
            except FluxError as exc:
                if not is_transient(exc):
                    return self._finish(
                        JobOutcome(JobState.ERRORED, job=job, error=exc, attempts=attempt)
                    )
                logger.warning(
                    "Polling attempt %d/%d for job %s failed: %s",
                    attempt,
                    self.max_attempts,
                    job.id,
                    exc,
                )
                last_error = exc
            else:
                last_error = None
                outcome = self.classify(job, result, attempt)
                if outcome is not None:
                    return self._finish(outcome)
                self._notify(progress_update(result, attempt, self.max_attempts))

            if attempt < self.max_attempts and await self._wait(cancel):
                return self._cancelled(job, attempt)

        message = (
            "Polling failed after maximum attempts" if last_error is not None else "Generation timed out"
        )
        return self._finish(
            JobOutcome(
                JobState.TIMED_OUT,
                job=job,
                error=GenerationTimeoutError(message),
                attempts=self.max_attempts,
            )
        )
