"""
Data model for avatar video generation.

GenerationOutcome is a tagged union: a submit call yields either an
ImmediateResult or a DeferredJob, never both and never neither.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictBool, field_validator

from core.errors import GenerationError, ProtocolError, ValidationError


class JobKind(str, Enum):
    """Supported generation modes."""
    TEMPLATE_DRIVEN = "template-driven"  # Emoji template animation, needs template_id
    AUDIO_DRIVEN = "audio-driven"        # LivePortrait lip sync, needs audio_url


class TaskStatus(str, Enum):
    """Status of a backend generation task."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)


DEFAULT_FAILURE_MESSAGE = "Video generation failed"


class TaskRecord(BaseModel):
    """
    Snapshot of the backend task row.

    Delivered by fetch-by-id and by the status subscription. The backend
    keeps one result field and one message field per job kind.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    source_image_url: Optional[str] = None

    template_result_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("emoji_result_url", "templateResultUrl", "template_result_url"),
    )
    audio_result_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("liveportrait_result_url", "audioResultUrl", "audio_result_url"),
    )
    template_message: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("emoji_message", "templateMessage", "template_message"),
    )
    audio_message: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("liveportrait_message", "audioMessage", "audio_message"),
    )

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if value is None:
            return None
        return str(value)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if value is None:
            return TaskStatus.PENDING
        if isinstance(value, str):
            return value.strip().upper()
        return value

    def result_url_for(self, kind: JobKind) -> Optional[str]:
        if kind == JobKind.TEMPLATE_DRIVEN:
            return self.template_result_url
        return self.audio_result_url

    def message_for(self, kind: JobKind) -> Optional[str]:
        if kind == JobKind.TEMPLATE_DRIVEN:
            return self.template_message
        return self.audio_message


@dataclass
class GenerationRequest:
    """Request for an avatar video."""
    kind: JobKind
    source_image_id: str
    template_id: Optional[str] = None
    audio_url: Optional[str] = None

    def validate(self):
        """Check kind-specific preconditions. Raises ValidationError."""
        if not self.source_image_id:
            raise ValidationError("Missing image ID parameter")
        if self.kind == JobKind.AUDIO_DRIVEN and not self.audio_url:
            raise ValidationError("Please upload an audio file first")
        if self.kind == JobKind.TEMPLATE_DRIVEN and not self.template_id:
            raise ValidationError("Please choose an emoji template first")

    def to_payload(self) -> dict:
        """Request body for the kind's submit endpoint."""
        if self.kind == JobKind.TEMPLATE_DRIVEN:
            return {"imageId": self.source_image_id, "drivenId": self.template_id}
        return {"imageId": self.source_image_id, "audioUrl": self.audio_url}


@dataclass(frozen=True)
class ImmediateResult:
    """The backend finished synchronously."""
    video_url: str
    credits_consumed: Optional[int] = None


@dataclass(frozen=True)
class DeferredJob:
    """The backend queued a task to be tracked."""
    task_id: str


GenerationOutcome = Union[ImmediateResult, DeferredJob]


@dataclass
class GenerationJob:
    """A deferred job being tracked. Owned by the tracker."""
    id: str
    kind: JobKind
    source_image_id: Optional[str] = None
    template_id: Optional[str] = None
    audio_url: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    result_url: Optional[str] = None
    error_message: Optional[str] = None


class VideoData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    video_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("videoUrl", "video_url"))


class SubmitResponse(BaseModel):
    """Body returned by both submit endpoints."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    success: StrictBool
    data: Optional[VideoData] = None
    task_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("taskId", "imageId", "task_id"))
    credits_consumed: Optional[int] = None
    error: Optional[Any] = None

    @field_validator("task_id", mode="before")
    @classmethod
    def _coerce_task_id(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return str(value)

    def to_outcome(self) -> GenerationOutcome:
        """
        Collapse the response into exactly one outcome variant.

        Raises:
            GenerationError: success is false
            ProtocolError: both or neither of task id and video URL present
        """
        if not self.success:
            message = self.error
            if isinstance(message, dict):
                message = message.get("message")
            if not isinstance(message, str) or not message:
                message = "Generation failed"
            raise GenerationError(message)

        video_url = self.data.video_url if self.data else None

        if self.task_id and video_url:
            raise ProtocolError("Both a video URL and a task ID were returned")
        if self.task_id:
            return DeferredJob(task_id=self.task_id)
        if video_url:
            return ImmediateResult(video_url=video_url, credits_consumed=self.credits_consumed)
        raise ProtocolError("No video URL or task ID returned")
