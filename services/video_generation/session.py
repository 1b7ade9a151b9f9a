"""
Generation Session

The action boundary of the generation flow. Loads the source image, gates
the request on credits, dispatches it and hands the outcome to the tracker.
Every VideoGenerationError is caught here and turned into a stored error
plus a notification; none escape to the presentation layer.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

from core.config import Config, get_config
from core.errors import (
    InsufficientCredits,
    NotAuthenticated,
    TrackingTimedOut,
    VideoGenerationError,
)
from services.credits import CreditBalance, CreditCheck, Denied, DenialReason, authorize
from services.streaming.notifications import Notifier

from .client import VideoGenerationClient
from .models import GenerationRequest, JobKind, TaskRecord, TaskStatus
from .tracker import TaskStatusTracker

if TYPE_CHECKING:
    from services.streaming.channel import StatusSubscriptionChannel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionState:
    """Snapshot rendered by the presentation layer."""
    is_loading: bool
    is_generating: bool
    task_id: Optional[str]
    status: Optional[TaskStatus]
    result_url: Optional[str]
    error: Optional[str]
    credits_consumed: Optional[int]
    credit_check: Optional[CreditCheck]
    subscription: dict[str, Any]


class GenerationSession:
    """
    One user's generation page.

    Usage:
        session = GenerationSession(client, channel, credits, get_user=lambda: user)
        await session.load_image("img-1")
        await session.generate(JobKind.TEMPLATE_DRIVEN, template_id="mengwa_kaixin")
        await session.wait()
        print(session.state.result_url)
    """

    def __init__(
        self,
        client: VideoGenerationClient,
        channel: "StatusSubscriptionChannel",
        credits: CreditBalance,
        get_user: Callable[[], Optional[Any]],
        notifier: Optional[Notifier] = None,
        config: Optional[Config] = None,
    ):
        self.config = config or get_config()
        self.client = client
        self.credits = credits
        self.get_user = get_user
        self.notifier = notifier or Notifier()
        self.tracker = TaskStatusTracker(
            client,
            channel,
            notifier=self.notifier,
            on_succeeded=credits.request_refresh,
            reconcile_interval=self.config.generation.reconcile_interval_seconds,
        )

        self.image: Optional[TaskRecord] = None
        self.is_loading = False
        self.error: Optional[str] = None
        self.credit_check: Optional[CreditCheck] = None
        self.last_request: Optional[GenerationRequest] = None

    async def __aenter__(self) -> "GenerationSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self):
        """Dispose of the session and drop any tracked task."""
        self.tracker.reset()

    # ------------------------------------------------------------------
    # Credits
    # ------------------------------------------------------------------

    def required_credits(self, kind: JobKind) -> int:
        if kind == JobKind.TEMPLATE_DRIVEN:
            return self.config.credits.template_driven_cost
        return self.config.credits.audio_driven_cost

    def has_enough_credits(self, kind: JobKind) -> bool:
        """Whether the generate action should be enabled for kind."""
        if self.get_user() is None:
            return False
        return self.credits.has_enough_credits(self.required_credits(kind))

    def _check_credits(self, kind: JobKind):
        """Raise if the current user cannot pay for kind."""
        decision = authorize(self.get_user(), self.required_credits(kind), self.credits.balance)
        if not isinstance(decision, Denied):
            self.credit_check = None
            return

        if decision.reason == DenialReason.UNAUTHENTICATED:
            raise NotAuthenticated()

        self.credit_check = decision.check
        raise InsufficientCredits(
            "You don't have enough credits to generate the video",
            required=decision.check.required_credits,
            balance=decision.check.current_balance,
            deficit=decision.deficit,
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def load_image(self, image_id: Optional[str]) -> Optional[TaskRecord]:
        """Load the source image record the video is generated from."""
        if not image_id:
            self._fail("Missing image ID parameter")
            return None

        self.is_loading = True
        try:
            self.image = await self.client.fetch_record(image_id)
            if self.image.id is None:
                self.image.id = image_id
            return self.image
        except VideoGenerationError as e:
            logger.error(f"Failed to get image data for {image_id}: {e}")
            if e.error_code in ("TIMEOUT", "REQUEST_ERROR"):
                self._fail("Error while retrieving image data")
            else:
                self._fail("Failed to get image data")
            return None
        finally:
            self.is_loading = False

    async def generate(
        self,
        kind: JobKind,
        template_id: Optional[str] = None,
        audio_url: Optional[str] = None,
    ) -> bool:
        """
        Start a generation for the loaded image.

        Returns:
            True if the request was accepted (immediate result or queued task)
        """
        if self.image is None:
            return False

        if kind == JobKind.TEMPLATE_DRIVEN and template_id is None:
            template_id = self.config.generation.default_template_id

        request = GenerationRequest(
            kind=kind,
            source_image_id=self.image.id,
            template_id=template_id,
            audio_url=audio_url,
        )
        return await self._run(request)

    async def retry(self) -> bool:
        """Dispatch the last request again."""
        if self.last_request is None:
            return False
        return await self._run(self.last_request)

    async def _run(self, request: GenerationRequest) -> bool:
        self.last_request = request

        try:
            self._check_credits(request.kind)
        except NotAuthenticated as e:
            self._fail(e.message)
            return False
        except InsufficientCredits as e:
            logger.info(
                f"Insufficient credits: required={e.required} balance={e.balance} deficit={e.deficit}"
            )
            self._fail(e.message, data={"required": e.required, "balance": e.balance, "deficit": e.deficit})
            return False

        self.error = None
        self.tracker.begin(request)

        try:
            outcome = await self.client.dispatch(request)
            await self.tracker.start(request, outcome)
        except VideoGenerationError as e:
            logger.error(f"Error generating video: {e}")
            self.tracker.reset()
            self._fail(e.message)
            return False

        return True

    async def wait(self, timeout: Optional[float] = None) -> Optional[TaskStatus]:
        """Wait for the tracked task; a timeout is surfaced as an error."""
        if self.tracker.task_id is None and not self.tracker.is_terminal:
            return self.tracker.status

        if timeout is None:
            timeout = self.config.generation.tracking_timeout_seconds
        try:
            return await self.tracker.wait_for_result(timeout=timeout)
        except TrackingTimedOut as e:
            self.tracker.close()
            self.tracker.is_generating = False
            self._fail(e.message)
            return self.tracker.status

    async def reconcile(self) -> Optional[TaskStatus]:
        """Read the tracked task's status from the backend once."""
        await self.tracker.reconcile()
        return self.tracker.status

    def _fail(self, message: str, data: dict = None):
        self.error = message
        self.notifier.error(message, task_id=self.tracker.task_id, data=data)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        tracker = self.tracker
        return SessionState(
            is_loading=self.is_loading,
            is_generating=tracker.is_generating,
            task_id=tracker.task_id,
            status=tracker.status,
            result_url=tracker.result_url,
            error=tracker.error_message or self.error,
            credits_consumed=tracker.credits_consumed,
            credit_check=self.credit_check,
            subscription=(
                tracker.subscription.get_status()
                if tracker.subscription
                else {"task_id": None, "is_subscribed": False, "error": None}
            ),
        )
