"""
Avatar Video CLI Tools

Command-line rendering for the generation flow.

Tools:
- progress_monitor: notifications and task state display
"""

from .progress_monitor import GenerationMonitor, format_notification, format_state

__all__ = ["GenerationMonitor", "format_notification", "format_state"]
