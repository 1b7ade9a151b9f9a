"""
Task Status Tracker

Owns the state of one generation at a time:

    PENDING -> RUNNING -> SUCCEEDED | FAILED

Updates arrive from two places for a deferred job: the status subscription
and one reconciliation fetch issued right after subscribing (covers updates
that land before the stream is established). They are merged so that a
terminal status always wins and repeats of it are no-ops. Updates tagged
with any task id other than the current one are dropped.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, Optional

from core.errors import (
    ChannelError,
    ProtocolError,
    TrackingTimedOut,
    VideoGenerationError,
)

from .client import VideoGenerationClient
from .models import (
    DEFAULT_FAILURE_MESSAGE,
    DeferredJob,
    GenerationJob,
    GenerationOutcome,
    GenerationRequest,
    ImmediateResult,
    JobKind,
    TaskRecord,
    TaskStatus,
)

if TYPE_CHECKING:
    from services.streaming.channel import StatusSubscriptionChannel, Subscription
    from services.streaming.notifications import Notifier

logger = logging.getLogger(__name__)


class TaskStatusTracker:
    """
    Tracks a submitted generation until it reaches a terminal status.

    Usage:
        async with TaskStatusTracker(client, channel, on_succeeded=credits.request_refresh) as tracker:
            tracker.reset()
            outcome = await client.dispatch(request)
            await tracker.start(request, outcome)
            await tracker.wait_for_result(timeout=900)
            print(tracker.status, tracker.result_url)
    """

    def __init__(
        self,
        client: VideoGenerationClient,
        channel: "StatusSubscriptionChannel",
        notifier: Optional["Notifier"] = None,
        on_succeeded: Optional[Callable[[], object]] = None,
        reconcile_interval: float = 5.0,
    ):
        self.client = client
        self.channel = channel
        self.notifier = notifier
        self.on_succeeded = on_succeeded
        self.reconcile_interval = reconcile_interval

        self.job: Optional[GenerationJob] = None
        self.kind: Optional[JobKind] = None
        self.task_id: Optional[str] = None
        self.status: Optional[TaskStatus] = None
        self.result_url: Optional[str] = None
        self.error_message: Optional[str] = None
        self.credits_consumed: Optional[int] = None
        self.is_generating = False

        self.channel_error: Optional[ChannelError] = None
        self._subscription: Optional["Subscription"] = None
        self._done = asyncio.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self):
        """Forget the current task. Called before every new dispatch."""
        self.close()
        self.job = None
        self.kind = None
        self.task_id = None
        self.status = None
        self.result_url = None
        self.error_message = None
        self.credits_consumed = None
        self.channel_error = None
        self.is_generating = False
        self._done = asyncio.Event()

    def close(self):
        """Release the subscription for the current task."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def __aenter__(self) -> "TaskStatusTracker":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def begin(self, request: GenerationRequest):
        """Mark a dispatch as in flight."""
        self.reset()
        self.kind = request.kind
        self.is_generating = True

    @property
    def is_terminal(self) -> bool:
        return self.status is not None and self.status.is_terminal

    @property
    def subscription(self) -> Optional["Subscription"]:
        return self._subscription

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    async def start(self, request: GenerationRequest, outcome: GenerationOutcome):
        """Apply a dispatch outcome."""
        self.kind = request.kind

        if isinstance(outcome, ImmediateResult):
            self._apply_immediate(outcome)
            return

        if isinstance(outcome, DeferredJob):
            await self._start_deferred(request, outcome.task_id)
            return

        raise ProtocolError(f"Unknown generation outcome: {outcome!r}")

    def _apply_immediate(self, outcome: ImmediateResult):
        self.status = TaskStatus.SUCCEEDED
        self.result_url = outcome.video_url
        self.credits_consumed = outcome.credits_consumed
        self.is_generating = False
        self._done.set()

        suffix = f", consumed {outcome.credits_consumed} credits" if outcome.credits_consumed else ""
        self._notify_success(f"Video generated successfully{suffix}")
        self._trigger_balance_refresh()

    async def _start_deferred(self, request: GenerationRequest, task_id: str):
        self.task_id = task_id
        self.status = TaskStatus.PENDING
        self.is_generating = True
        self.job = GenerationJob(
            id=task_id,
            kind=request.kind,
            source_image_id=request.source_image_id,
            template_id=request.template_id,
            audio_url=request.audio_url,
        )

        self._subscription = self.channel.subscribe(
            task_id,
            on_update=lambda record: self.apply_update(task_id, record),
            on_error=lambda error: self._on_channel_error(task_id, error),
        )

        if self.notifier:
            self.notifier.info("Video generation started. Please wait...", task_id=task_id)

        await self.reconcile()

    async def reconcile(self):
        """
        Fetch the task's current status once and merge it.

        Fetch failures are reported but leave the job untouched; the
        subscription may still resolve it.
        """
        task_id = self.task_id
        if not task_id or self.is_terminal:
            return

        try:
            record = await self.client.fetch_record(task_id)
        except VideoGenerationError as e:
            logger.warning(f"Reconciliation fetch for task {task_id} failed: {e}")
            return

        self.apply_update(task_id, record)

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def apply_update(self, task_id: str, record: TaskRecord):
        """Merge a task record snapshot delivered for task_id."""
        if task_id != self.task_id or (record.id and record.id != task_id):
            logger.warning(f"Ignoring stale update for task {record.id or task_id} (tracking {self.task_id})")
            return

        if self.is_terminal:
            return

        if record.status == TaskStatus.SUCCEEDED:
            self._apply_succeeded(record)
        elif record.status == TaskStatus.FAILED:
            self._apply_failed(record.message_for(self.kind) or DEFAULT_FAILURE_MESSAGE)
        elif record.status == TaskStatus.RUNNING and self.status == TaskStatus.PENDING:
            self._set_status(TaskStatus.RUNNING)

    def _apply_succeeded(self, record: TaskRecord):
        video_url = record.result_url_for(self.kind)
        if not video_url:
            error = ProtocolError(f"Task {self.task_id} succeeded without a {self.kind.value} result URL")
            logger.error(str(error))
            self._apply_failed(error.message)
            return

        self._set_status(TaskStatus.SUCCEEDED)
        self.result_url = video_url
        if self.job:
            self.job.result_url = video_url
        self.is_generating = False
        self._done.set()
        self.close()

        logger.info(f"Task {self.task_id} succeeded: {video_url}")
        self._notify_success("Video generated successfully")
        self._trigger_balance_refresh()

    def _apply_failed(self, message: str):
        self._set_status(TaskStatus.FAILED)
        self.error_message = message
        if self.job:
            self.job.error_message = message
        self.is_generating = False
        self._done.set()
        self.close()

        logger.error(f"Task {self.task_id} failed: {message}")
        if self.notifier:
            self.notifier.error(message, task_id=self.task_id)

    def _set_status(self, status: TaskStatus):
        self.status = status
        if self.job:
            self.job.status = status

    def _on_channel_error(self, task_id: str, error: ChannelError):
        if task_id != self.task_id:
            return
        self.channel_error = error
        logger.error(f"Subscription error: {error}")
        if self.notifier:
            self.notifier.channel_error(f"Failed to subscribe to task updates: {error}", task_id=task_id)

    def _notify_success(self, message: str):
        if self.notifier:
            self.notifier.success(message, task_id=self.task_id)

    def _trigger_balance_refresh(self):
        if self.on_succeeded is None:
            return
        try:
            self.on_succeeded()
        except Exception as e:
            logger.error(f"Balance refresh hook failed: {e}")

    # ------------------------------------------------------------------
    # Waiting
    # ------------------------------------------------------------------

    async def wait_for_result(self, timeout: Optional[float] = None) -> Optional[TaskStatus]:
        """
        Wait until the tracked task reaches a terminal status.

        While the status subscription is down the record is fetched every
        reconcile_interval seconds instead. One last fetch is made before
        giving up.

        Raises:
            TrackingTimedOut: No terminal status within timeout seconds
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None

        while not self.is_terminal:
            if self.channel_error is not None:
                await self.reconcile()
                if self.is_terminal:
                    break

            step = self.reconcile_interval
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    await self.reconcile()
                    if self.is_terminal:
                        break
                    raise TrackingTimedOut(self.task_id or "", timeout)
                step = min(step, remaining)

            try:
                await asyncio.wait_for(self._done.wait(), timeout=step)
            except asyncio.TimeoutError:
                continue

        return self.status
