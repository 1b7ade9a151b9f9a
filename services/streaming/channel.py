"""
Status Subscription Channel

Push-based subscription to task record changes, keyed by task id. Reads a
Server-Sent Events stream where every `data:` line carries the task record
as JSON, the same shape the fetch-by-id endpoint returns.

Usage:
    channel = StatusSubscriptionChannel()

    subscription = channel.subscribe("task-123", on_update=handle_record)
    ...
    subscription.unsubscribe()

    # Or scoped
    async with channel.subscribe("task-123", handle_record) as subscription:
        ...
"""

import asyncio
import json
import logging
from typing import Any, Callable, Optional

import aiohttp
from pydantic import ValidationError as PydanticValidationError

from core.config import Config, get_config
from core.errors import ChannelError
from services.video_generation.models import TaskRecord

logger = logging.getLogger(__name__)


UpdateCallback = Callable[[TaskRecord], None]
ErrorCallback = Callable[[ChannelError], None]


class Subscription:
    """
    Handle for one live status stream.

    After unsubscribe() returns no callback fires, even if bytes for the
    stream are still buffered.
    """

    def __init__(
        self,
        task_id: str,
        on_update: UpdateCallback,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.task_id = task_id
        self.on_update = on_update
        self.on_error = on_error

        self.is_subscribed = False
        self.error: Optional[ChannelError] = None
        self.closed = False
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return bool(self.task_id) and not self.closed and self.error is None

    def unsubscribe(self):
        """Release the connection. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._set_subscribed(False)

    async def aclose(self):
        """Unsubscribe and wait for the stream task to finish."""
        self.unsubscribe()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    def get_status(self) -> dict[str, Any]:
        """Get current status as a dictionary."""
        return {
            "task_id": self.task_id or None,
            "is_subscribed": self.is_subscribed,
            "error": str(self.error) if self.error else None,
        }

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    def _set_subscribed(self, value: bool):
        if self.is_subscribed == value:
            return
        self.is_subscribed = value
        if self.task_id:
            logger.info(
                f"Subscription status for task {self.task_id}: {'active' if value else 'inactive'}"
            )

    def _deliver(self, record: TaskRecord):
        if self.closed:
            return
        try:
            self.on_update(record)
        except Exception as e:
            logger.error(f"Status update callback failed for task {self.task_id}: {e}")

    def _fail(self, error: ChannelError):
        if self.closed:
            return
        self.error = error
        self._set_subscribed(False)
        logger.error(f"Subscription error for task {self.task_id}: {error}")
        if self.on_error:
            try:
                self.on_error(error)
            except Exception as e:
                logger.error(f"Subscription error callback failed: {e}")


def parse_event_data(line: str) -> Optional[dict]:
    """Extract the JSON record from one SSE line, or None if it carries none."""
    if not line.startswith("data:"):
        return None

    try:
        payload = json.loads(line[5:].strip())
    except json.JSONDecodeError:
        logger.warning(f"Ignoring non-JSON status event: {line[:100]}")
        return None

    if not isinstance(payload, dict):
        return None

    # Change feeds often wrap the row
    for key in ("record", "new"):
        if isinstance(payload.get(key), dict):
            return payload[key]
    return payload


class StatusSubscriptionChannel:
    """
    Opens at most one status stream at a time.

    Subscribing to a new task id tears down the previous stream first.
    Subscribing again to the id already streaming reuses that stream.
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self._current: Optional[Subscription] = None

    @property
    def current(self) -> Optional[Subscription]:
        return self._current

    def stream_url(self, task_id: str) -> str:
        base = self.config.realtime.base_url.rstrip("/")
        return f"{base}{self.config.realtime.stream_path.format(task_id=task_id)}"

    def subscribe(
        self,
        task_id: str,
        on_update: UpdateCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """
        Subscribe to updates for a task.

        An empty task id yields an inert subscription and opens nothing.
        Must be called from within a running event loop.
        """
        current = self._current
        if current is not None and current.task_id == task_id and current.active:
            current.on_update = on_update
            current.on_error = on_error
            return current

        self.close()

        subscription = Subscription(task_id, on_update, on_error)
        if not task_id:
            return subscription

        subscription._task = asyncio.create_task(self._run(subscription))
        self._current = subscription
        return subscription

    def close(self):
        """Tear down the current stream, if any."""
        if self._current is not None:
            self._current.unsubscribe()
            self._current = None

    async def _run(self, subscription: Subscription):
        url = self.stream_url(subscription.task_id)
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self.config.realtime.connect_timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, headers={"Accept": "text/event-stream"}) as response:
                    if response.status != 200:
                        subscription._fail(ChannelError(
                            f"Server returned {response.status}",
                            task_id=subscription.task_id,
                            error_code=f"HTTP_{response.status}",
                        ))
                        return

                    subscription._set_subscribed(True)

                    async for raw_line in response.content:
                        if subscription.closed:
                            return
                        self._handle_line(subscription, raw_line)

            if not subscription.closed:
                subscription._fail(ChannelError(
                    "Status stream closed by server",
                    task_id=subscription.task_id,
                    error_code="STREAM_CLOSED",
                ))

        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            subscription._fail(ChannelError(
                "Timed out connecting to status stream",
                task_id=subscription.task_id,
                error_code="CONNECT_TIMEOUT",
            ))
        except aiohttp.ClientError as e:
            subscription._fail(ChannelError(
                f"{type(e).__name__}: {e}",
                task_id=subscription.task_id,
                error_code="CONNECTION_ERROR",
            ))
        except Exception as e:
            subscription._fail(ChannelError(
                f"Status stream failed: {type(e).__name__}: {e}",
                task_id=subscription.task_id,
                error_code="STREAM_ERROR",
            ))
        finally:
            subscription._set_subscribed(False)

    def _handle_line(self, subscription: Subscription, raw_line: bytes):
        try:
            line = raw_line.decode("utf-8").strip()
        except UnicodeDecodeError:
            logger.warning(f"Ignoring undecodable status event for task {subscription.task_id}: {raw_line[:100]!r}")
            return

        data = parse_event_data(line)
        if data is None:
            return

        try:
            record = TaskRecord.model_validate(data)
        except PydanticValidationError as e:
            logger.warning(f"Ignoring malformed status event for task {subscription.task_id}: {e}")
            return

        subscription._deliver(record)
