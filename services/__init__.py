"""
Avatar Video Services

Services for the generation flow:
- credits: credit gate and cached balance
- video_generation: request dispatch, task tracking, generation session
- streaming: status subscription channel and notifications
"""

from .video_generation import (
    GenerationSession,
    JobKind,
    TaskStatus,
    TaskStatusTracker,
    VideoGenerationClient,
)

__all__ = [
    "GenerationSession",
    "JobKind",
    "TaskStatus",
    "TaskStatusTracker",
    "VideoGenerationClient",
]
