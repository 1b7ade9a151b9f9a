"""
Tests for the task status tracker.

Covers the deferred-job state machine: subscription plus reconciliation,
terminal precedence, idempotence, stale-delivery rejection and the
immediate-result bypass.

Run with:
    python -m pytest tests/test_tracker.py -v
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from core.errors import ChannelError, TrackingTimedOut
from services.streaming.notifications import Notifier, NotificationType
from services.video_generation import (
    DeferredJob,
    GenerationRequest,
    ImmediateResult,
    JobKind,
    TaskRecord,
    TaskStatus,
    TaskStatusTracker,
)

from conftest import record_path


TEMPLATE_REQUEST = GenerationRequest(
    kind=JobKind.TEMPLATE_DRIVEN, source_image_id="img-1", template_id="mengwa_kaixin"
)
AUDIO_REQUEST = GenerationRequest(
    kind=JobKind.AUDIO_DRIVEN, source_image_id="img-1", audio_url="https://cdn/voice.mp3"
)


def pending_record(task_id: str) -> dict:
    return {"success": True, "data": {"id": task_id, "status": "PENDING"}}


@pytest.fixture
def refresh():
    return MagicMock()


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def tracker(client, channel, notifier, refresh):
    return TaskStatusTracker(client, channel, notifier=notifier, on_succeeded=refresh)


async def start_deferred(tracker, backend, task_id="t1", request=TEMPLATE_REQUEST, record=None):
    backend.on("GET", record_path(task_id), body=record or pending_record(task_id))
    tracker.begin(request)
    await tracker.start(request, DeferredJob(task_id=task_id))


class TestDeferredStart:
    """Starting to track a queued task."""

    @pytest.mark.asyncio
    async def test_opens_subscription_and_reconciles(self, tracker, channel, backend):
        await start_deferred(tracker, backend, "t1")

        assert tracker.status == TaskStatus.PENDING
        assert tracker.task_id == "t1"
        assert tracker.is_generating
        assert [s.task_id for s in channel.subscriptions] == ["t1"]
        assert len(backend.calls("GET", record_path("t1"))) == 1

    @pytest.mark.asyncio
    async def test_announces_start(self, tracker, backend, notifier):
        await start_deferred(tracker, backend, "t1")

        messages = [n.message for n in notifier.get_history()]
        assert "Video generation started. Please wait..." in messages

    @pytest.mark.asyncio
    async def test_reconciliation_already_terminal(self, tracker, channel, backend, refresh):
        record = {"success": True, "data": {"id": "t1", "status": "SUCCEEDED", "emoji_result_url": "https://x/a.mp4"}}

        await start_deferred(tracker, backend, "t1", record=record)

        assert tracker.status == TaskStatus.SUCCEEDED
        assert tracker.result_url == "https://x/a.mp4"
        assert not tracker.is_generating
        assert refresh.call_count == 1

        # The stream's own copy of the same terminal status changes nothing
        channel.last.on_update(TaskRecord.model_validate({"id": "t1", "status": "SUCCEEDED", "emoji_result_url": "https://x/a.mp4"}))
        assert refresh.call_count == 1

    @pytest.mark.asyncio
    async def test_reconciliation_failure_leaves_job_pending(self, tracker, channel, backend):
        backend.on("GET", record_path("t1"), status=500, body={"success": False, "error": "db down"})
        tracker.begin(TEMPLATE_REQUEST)
        await tracker.start(TEMPLATE_REQUEST, DeferredJob(task_id="t1"))

        assert tracker.status == TaskStatus.PENDING
        assert tracker.error_message is None
        assert channel.last.task_id == "t1"


class TestDeliveries:
    """Channel deliveries."""

    @pytest.mark.asyncio
    async def test_succeeded_records_template_result(self, tracker, channel, backend, refresh):
        await start_deferred(tracker, backend, "t1")

        channel.last.push({"status": "SUCCEEDED", "templateResultUrl": "https://x/video.mp4"})

        assert tracker.status == TaskStatus.SUCCEEDED
        assert tracker.result_url == "https://x/video.mp4"
        assert tracker.job.result_url == "https://x/video.mp4"
        assert not tracker.is_generating
        refresh.assert_called_once()

    @pytest.mark.asyncio
    async def test_succeeded_uses_kind_specific_field(self, tracker, channel, backend):
        await start_deferred(tracker, backend, "t2", request=AUDIO_REQUEST)

        channel.last.push({
            "id": "t2",
            "status": "SUCCEEDED",
            "emoji_result_url": "https://x/wrong.mp4",
            "liveportrait_result_url": "https://x/lipsync.mp4",
        })

        assert tracker.result_url == "https://x/lipsync.mp4"

    @pytest.mark.asyncio
    async def test_succeeded_without_expected_field_is_protocol_failure(self, tracker, channel, backend, refresh):
        await start_deferred(tracker, backend, "t2", request=AUDIO_REQUEST)

        channel.last.push({"id": "t2", "status": "SUCCEEDED", "emoji_result_url": "https://x/wrong.mp4"})

        assert tracker.status == TaskStatus.FAILED
        assert tracker.result_url is None
        assert "result URL" in tracker.error_message
        refresh.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_uses_kind_specific_message(self, tracker, channel, backend, notifier):
        await start_deferred(tracker, backend, "t1")

        channel.last.push({"id": "t1", "status": "FAILED", "emoji_message": "Face not detected"})

        assert tracker.status == TaskStatus.FAILED
        assert tracker.error_message == "Face not detected"
        assert not tracker.is_generating
        errors = [n for n in notifier.get_history() if n.type == NotificationType.ERROR]
        assert errors[-1].message == "Face not detected"

    @pytest.mark.asyncio
    async def test_failed_falls_back_to_generic_message(self, tracker, channel, backend):
        await start_deferred(tracker, backend, "t1")

        channel.last.push({"id": "t1", "status": "FAILED", "liveportrait_message": "other kind"})

        assert tracker.error_message == "Video generation failed"

    @pytest.mark.asyncio
    async def test_running_is_accepted(self, tracker, channel, backend):
        await start_deferred(tracker, backend, "t1")

        channel.last.push({"id": "t1", "status": "RUNNING"})
        assert tracker.status == TaskStatus.RUNNING

        channel.last.push({"id": "t1", "status": "PENDING"})
        assert tracker.status == TaskStatus.RUNNING
        assert tracker.is_generating

    @pytest.mark.asyncio
    async def test_repeated_terminal_delivery_is_noop(self, tracker, channel, backend, refresh, notifier):
        await start_deferred(tracker, backend, "t1")
        subscription = channel.last

        record = TaskRecord.model_validate({"id": "t1", "status": "SUCCEEDED", "emoji_result_url": "https://x/1.mp4"})
        subscription.on_update(record)
        snapshot = (tracker.status, tracker.result_url, tracker.error_message, len(notifier.get_history()))

        subscription.on_update(record)
        subscription.on_update(TaskRecord.model_validate({"id": "t1", "status": "FAILED", "emoji_message": "late"}))

        assert (tracker.status, tracker.result_url, tracker.error_message, len(notifier.get_history())) == snapshot
        refresh.assert_called_once()

    @pytest.mark.asyncio
    async def test_terminal_wins_over_late_pending(self, tracker, channel, backend):
        record = {"success": True, "data": {"id": "t1", "status": "SUCCEEDED", "emoji_result_url": "https://x/a.mp4"}}
        await start_deferred(tracker, backend, "t1", record=record)

        channel.last.on_update(TaskRecord.model_validate({"id": "t1", "status": "PENDING"}))

        assert tracker.status == TaskStatus.SUCCEEDED
        assert tracker.result_url == "https://x/a.mp4"

    @pytest.mark.asyncio
    async def test_subscription_released_on_terminal(self, tracker, channel, backend):
        await start_deferred(tracker, backend, "t1")

        channel.last.push({"id": "t1", "status": "FAILED"})

        assert channel.last.closed
        assert tracker.subscription is None


class TestStaleDeliveries:
    """Deliveries for an abandoned task are dropped."""

    @pytest.mark.asyncio
    async def test_delivery_for_previous_task_is_ignored(self, tracker, channel, backend, refresh):
        await start_deferred(tracker, backend, "A")
        subscription_a = channel.last

        await start_deferred(tracker, backend, "B")

        assert subscription_a.closed
        # A late delivery that was already in flight for A
        subscription_a.on_update(TaskRecord.model_validate({"id": "A", "status": "SUCCEEDED", "emoji_result_url": "https://x/old.mp4"}))

        assert tracker.task_id == "B"
        assert tracker.status == TaskStatus.PENDING
        assert tracker.result_url is None
        refresh.assert_not_called()

    @pytest.mark.asyncio
    async def test_record_tagged_with_other_id_is_ignored(self, tracker, channel, backend):
        await start_deferred(tracker, backend, "B")

        channel.last.push({"id": "A", "status": "FAILED"})

        assert tracker.status == TaskStatus.PENDING

    @pytest.mark.asyncio
    async def test_reset_clears_everything(self, tracker, channel, backend):
        await start_deferred(tracker, backend, "t1")
        channel.last.push({"id": "t1", "status": "FAILED", "emoji_message": "nope"})

        tracker.reset()

        assert tracker.task_id is None
        assert tracker.status is None
        assert tracker.result_url is None
        assert tracker.error_message is None
        assert not tracker.is_generating


class TestChannelErrors:
    """Subscription failures are not job failures."""

    @pytest.mark.asyncio
    async def test_channel_error_keeps_job_state(self, tracker, channel, backend, notifier):
        await start_deferred(tracker, backend, "t1")

        channel.last.fail(ChannelError("connection rejected", task_id="t1"))

        assert tracker.status == TaskStatus.PENDING
        assert tracker.is_generating
        assert tracker.error_message is None
        assert isinstance(tracker.channel_error, ChannelError)
        channel_errors = [n for n in notifier.get_history() if n.type == NotificationType.CHANNEL_ERROR]
        assert channel_errors[-1].message == "Failed to subscribe to task updates: connection rejected"

    @pytest.mark.asyncio
    async def test_reconcile_resolves_after_channel_error(self, tracker, channel, backend):
        await start_deferred(tracker, backend, "t1")
        channel.last.fail(ChannelError("dropped", task_id="t1"))

        backend.on("GET", record_path("t1"), body={
            "success": True,
            "data": {"id": "t1", "status": "SUCCEEDED", "emoji_result_url": "https://x/late.mp4"},
        })
        await tracker.reconcile()

        assert tracker.status == TaskStatus.SUCCEEDED
        assert tracker.result_url == "https://x/late.mp4"


class TestImmediateResult:
    """Synchronous results bypass tracking."""

    @pytest.mark.asyncio
    async def test_immediate_result(self, tracker, channel, backend, refresh, notifier):
        tracker.begin(TEMPLATE_REQUEST)
        await tracker.start(TEMPLATE_REQUEST, ImmediateResult(video_url="https://x/now.mp4", credits_consumed=3))

        assert tracker.status == TaskStatus.SUCCEEDED
        assert tracker.result_url == "https://x/now.mp4"
        assert tracker.credits_consumed == 3
        assert tracker.task_id is None
        assert not tracker.is_generating
        assert channel.subscriptions == []
        assert backend.requests == []
        refresh.assert_called_once()
        assert notifier.get_history()[-1].message == "Video generated successfully, consumed 3 credits"


class TestWaiting:
    """wait_for_result()."""

    @pytest.mark.asyncio
    async def test_wait_returns_terminal_status(self, tracker, channel, backend):
        await start_deferred(tracker, backend, "t1")

        asyncio.get_running_loop().call_soon(
            channel.last.push, {"id": "t1", "status": "SUCCEEDED", "emoji_result_url": "https://x/v.mp4"}
        )

        assert await tracker.wait_for_result(timeout=1) == TaskStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_wait_polls_record_after_channel_error(self, client, channel, backend):
        tracker = TaskStatusTracker(client, channel, reconcile_interval=0.05)
        await start_deferred(tracker, backend, "t1")
        channel.last.fail(ChannelError("dropped", task_id="t1"))

        # The task finishes on the backend after the stream is gone
        asyncio.get_running_loop().call_later(0.1, lambda: backend.on("GET", record_path("t1"), body={
            "success": True,
            "data": {"id": "t1", "status": "SUCCEEDED", "emoji_result_url": "https://x/late.mp4"},
        }))

        assert await tracker.wait_for_result(timeout=2) == TaskStatus.SUCCEEDED
        assert tracker.result_url == "https://x/late.mp4"
        assert len(backend.calls("GET", record_path("t1"))) >= 3

    @pytest.mark.asyncio
    async def test_wait_does_not_poll_while_channel_is_healthy(self, client, channel, backend):
        tracker = TaskStatusTracker(client, channel, reconcile_interval=0.01)
        await start_deferred(tracker, backend, "t1")

        asyncio.get_running_loop().call_later(
            0.1, channel.last.push, {"id": "t1", "status": "FAILED", "emoji_message": "nope"}
        )

        assert await tracker.wait_for_result(timeout=2) == TaskStatus.FAILED
        assert len(backend.calls("GET", record_path("t1"))) == 1

    @pytest.mark.asyncio
    async def test_wait_checks_record_once_more_before_timing_out(self, tracker, backend):
        await start_deferred(tracker, backend, "t1")
        backend.on("GET", record_path("t1"), body={
            "success": True,
            "data": {"id": "t1", "status": "SUCCEEDED", "emoji_result_url": "https://x/v.mp4"},
        })

        assert await tracker.wait_for_result(timeout=0.05) == TaskStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_wait_times_out(self, tracker, backend):
        await start_deferred(tracker, backend, "t1")

        with pytest.raises(TrackingTimedOut) as exc_info:
            await tracker.wait_for_result(timeout=0.05)

        assert exc_info.value.task_id == "t1"
        assert tracker.status == TaskStatus.PENDING

    @pytest.mark.asyncio
    async def test_scoped_tracking_releases_subscription(self, client, channel, backend):
        async with TaskStatusTracker(client, channel) as tracker:
            await start_deferred(tracker, backend, "t1")
            subscription = channel.last

        assert subscription.closed
