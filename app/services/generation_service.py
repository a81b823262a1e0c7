"""
Generation job lifecycle: submit, wait, poll, resolve.

One job at a time. The pending job is persisted before the submission call so
a restart can resume polling without re-submitting. Credits are only debited
when the remote pipeline returns a video.
"""

from __future__ import annotations

import base64
import logging
import uuid
from typing import Callable, Optional

from pydantic import ValidationError

from app.config import Settings, get_settings
from app.core.exceptions import (
    InsufficientCredits,
    PollingTimeout,
    RemoteReportedError,
    SubmissionTransportFailure,
)
from app.core.kv_store import KeyValueStore, read_json
from app.core.scheduling import Clock, Scheduler, TimerHandle, utcnow
from app.schemas.account import GeneratedVideo
from app.schemas.generation import (
    GenerationState,
    PendingJob,
    StatusResponse,
    SubmissionPayload,
    VideoDuration,
    VideoFormat,
)
from app.services.generation_client import GenerationClient
from app.services.ledger_service import LedgerStore

logger = logging.getLogger(__name__)

PENDING_JOB_KEY = "pending_job"


def _new_job_id() -> str:
    return str(uuid.uuid4())


class JobCoordinator:
    def __init__(
        self,
        ledger: LedgerStore,
        client: GenerationClient,
        store: KeyValueStore,
        scheduler: Scheduler,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
        job_id_factory: Callable[[], str] = _new_job_id,
    ):
        self._ledger = ledger
        self._client = client
        self._store = store
        self._scheduler = scheduler
        self._settings = settings or get_settings()
        self._clock = clock
        self._job_id_factory = job_id_factory
        self._job: Optional[PendingJob] = None
        self._delay_handle: Optional[TimerHandle] = None
        self._poll_handle: Optional[TimerHandle] = None
        self.state = GenerationState.IDLE
        self.last_outcome: Optional[GenerationState] = None

    @property
    def job(self) -> Optional[PendingJob]:
        return self._job

    @property
    def has_live_timer(self) -> bool:
        return any(h is not None and not h.cancelled for h in (self._delay_handle, self._poll_handle))

    async def submit(
        self,
        image: bytes,
        prompt: str,
        video_format: VideoFormat,
        duration: VideoDuration,
    ) -> PendingJob:
        """
        Start a new job. Raises InsufficientCredits before touching any state,
        or SubmissionTransportFailure after clearing the job.
        """
        account = self._ledger.require_account()
        cost = duration.cost
        if account.credits < cost:
            raise InsufficientCredits(required=cost, available=account.credits)

        # A new job replaces whatever was in flight; its reservation is dropped uncharged.
        self._cancel_timers()
        job = PendingJob(
            job_id=self._job_id_factory(),
            identity=account.identity,
            prompt=prompt,
            video_format=video_format,
            duration=duration,
            image_b64=base64.b64encode(image).decode("ascii"),
            started_at=self._clock(),
            reserved_cost=cost,
        )
        self._job = job
        self._persist(job)
        self.state = GenerationState.SUBMITTING
        self.last_outcome = None
        self._ledger.set_message(None)
        self._ledger.set_generating(True)
        logger.info("Submitting job %s (%ss, %s, cost=%s)", job.job_id, duration.value, video_format.value, cost)

        payload = SubmissionPayload(
            job_id=job.job_id,
            prompt=prompt,
            video_category=self._settings.generation_video_category,
            aspect_ratio=video_format,
            start_image=job.image_b64,
            duration=duration.value,
            callback_url=self._settings.generation_callback_url,
        )
        try:
            await self._client.submit(payload)
        except SubmissionTransportFailure as e:
            if self._is_current(job):
                self._clear()
                self._ledger.set_message(e.message)
            raise
        if self._is_current(job):
            await self._schedule_first_check(job)
        return job

    async def resume(self) -> Optional[PendingJob]:
        """
        Pick up the persisted job after a restart (or after suspend()) without
        re-submitting it. A job older than the maximum duration times out here.
        """
        if self._job is not None and self.has_live_timer:
            return self._job
        job = self._job or self._load_persisted()
        if job is None:
            return None
        account = self._ledger.account
        if account is None or (job.identity and job.identity != account.identity):
            logger.info("Not resuming job %s: owner is not signed in", job.job_id)
            return None

        self._job = job
        self._ledger.set_generating(True)
        if self._elapsed(job) > self._settings.max_generation_seconds:
            self._resolve_timeout(job)
            return None
        logger.info("Resuming job %s after %.0fs", job.job_id, self._elapsed(job))
        await self._schedule_first_check(job)
        return self._job

    def suspend(self) -> None:
        """Stop the timers but keep the job; resume() picks it up again."""
        self._cancel_timers()

    def shutdown(self) -> None:
        self._cancel_timers()

    # --- scheduling ---

    async def _schedule_first_check(self, job: PendingJob) -> None:
        remaining = self._settings.initial_poll_delay_seconds - self._elapsed(job)
        self.state = GenerationState.SCHEDULED_WAIT
        if remaining <= 0:
            await self._first_check(job.job_id)
            return

        async def _delayed() -> None:
            await self._first_check(job.job_id)

        self._delay_handle = self._scheduler.call_later(remaining, _delayed)

    async def _first_check(self, job_id: str) -> None:
        self._delay_handle = None
        job = self._job
        if job is None or job.job_id != job_id:
            return
        self.state = GenerationState.POLLING
        if await self._check_status(job):
            return

        async def _tick() -> None:
            await self._poll_tick(job_id)

        self._poll_handle = self._scheduler.call_every(self._settings.poll_interval_seconds, _tick)

    async def _poll_tick(self, job_id: str) -> None:
        job = self._job
        if job is None or job.job_id != job_id:
            return
        if self._elapsed(job) > self._settings.max_generation_seconds:
            self._resolve_timeout(job)
            return
        await self._check_status(job)

    async def _check_status(self, job: PendingJob) -> bool:
        """One status call; True when the job is no longer ours to poll."""
        response: Optional[StatusResponse] = await self._client.check_status(job.job_id)
        if not self._is_current(job):
            return True
        if not self._owner_signed_in(job):
            self._hold(job)
            return True
        if response is None or not response.is_terminal:
            return False
        if response.video_url:
            self._resolve_success(job, response.video_url)
        else:
            self._resolve_error(job, RemoteReportedError(response.error_message))
        return True

    # --- resolution ---

    def _resolve_success(self, job: PendingJob, video_url: str) -> None:
        self._cancel_timers()
        cost = job.reserved_cost
        # Zero the reservation before charging so a restart can never charge twice.
        self._job = job.model_copy(update={"reserved_cost": 0})
        self._persist(self._job)
        if cost:
            self._ledger.debit_credits(cost)
        self._ledger.record_result(video_url=video_url)
        self._ledger.append_history(
            GeneratedVideo(
                prompt=job.prompt,
                video_format=job.video_format,
                duration=job.duration,
                video_url=video_url,
                created_at=self._clock(),
            )
        )
        self.last_outcome = GenerationState.RESOLVED_SUCCESS
        logger.info("Job %s succeeded, debited %s credits", job.job_id, cost)
        self._clear()

    def _resolve_error(self, job: PendingJob, error: RemoteReportedError) -> None:
        self._cancel_timers()
        self._ledger.record_result(error=error.message)
        self._ledger.set_message(error.message)
        self.last_outcome = GenerationState.RESOLVED_ERROR
        logger.warning("Job %s failed remotely: %s", job.job_id, error.message)
        self._clear()

    def _resolve_timeout(self, job: PendingJob) -> None:
        if not self._owner_signed_in(job):
            self._hold(job)
            return
        self._cancel_timers()
        message = PollingTimeout().message
        self._ledger.record_result(error=message)
        self._ledger.set_message(message)
        self.last_outcome = GenerationState.RESOLVED_TIMEOUT
        logger.warning("Job %s timed out after %.0fs", job.job_id, self._elapsed(job))
        self._clear()

    # --- helpers ---

    def _owner_signed_in(self, job: PendingJob) -> bool:
        account = self._ledger.account
        return account is not None and (job.identity is None or job.identity == account.identity)

    def _hold(self, job: PendingJob) -> None:
        """Stop polling but keep the saved job for its owner's next resume()."""
        self._cancel_timers()
        self.state = GenerationState.IDLE
        self._ledger.set_generating(False)
        logger.info("Holding job %s until %s signs in again", job.job_id, job.identity)

    def _is_current(self, job: PendingJob) -> bool:
        return self._job is not None and self._job.job_id == job.job_id

    def _elapsed(self, job: PendingJob) -> float:
        return (self._clock() - job.started_at).total_seconds()

    def _cancel_timers(self) -> None:
        for handle in (self._delay_handle, self._poll_handle):
            if handle is not None:
                handle.cancel()
        self._delay_handle = None
        self._poll_handle = None

    def _persist(self, job: PendingJob) -> None:
        self._store.set_json(PENDING_JOB_KEY, job.model_dump(mode="json"))

    def _load_persisted(self) -> Optional[PendingJob]:
        raw = read_json(self._store, PENDING_JOB_KEY)
        if raw is None:
            return None
        try:
            return PendingJob.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding unreadable pending job snapshot")
            self._store.remove(PENDING_JOB_KEY)
            return None

    def _clear(self) -> None:
        self._cancel_timers()
        self._store.remove(PENDING_JOB_KEY)
        self._job = None
        self._ledger.set_generating(False)
        self.state = GenerationState.IDLE
