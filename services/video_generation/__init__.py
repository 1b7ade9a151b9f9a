"""
Video Generation Service

Submits avatar video jobs and follows them to a terminal state:
- template-driven: emoji template animation of a source image
- audio-driven: LivePortrait lip sync of a source image to an audio clip

A submit either returns the video immediately or queues a task that is
tracked through the status subscription plus a reconciliation fetch.
"""

from .client import VideoGenerationClient
from .models import (
    DeferredJob,
    GenerationJob,
    GenerationOutcome,
    GenerationRequest,
    ImmediateResult,
    JobKind,
    SubmitResponse,
    TaskRecord,
    TaskStatus,
)
from .tracker import TaskStatusTracker
from .session import GenerationSession, SessionState

__all__ = [
    "VideoGenerationClient",
    "DeferredJob",
    "GenerationJob",
    "GenerationOutcome",
    "GenerationRequest",
    "ImmediateResult",
    "JobKind",
    "SubmitResponse",
    "TaskRecord",
    "TaskStatus",
    "TaskStatusTracker",
    "GenerationSession",
    "SessionState",
]
