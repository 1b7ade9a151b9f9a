#!/usr/bin/env python3
"""
CLI Progress Monitor for Avatar Video Generation

Renders notifications and the session state of a generation with visual
formatting.

Usage:
    monitor = GenerationMonitor(session)
    monitor.attach()
    await session.generate(JobKind.TEMPLATE_DRIVEN)
    monitor.print_state()
"""

from typing import Optional

from services.streaming.notifications import Notification, NotificationType
from services.video_generation import GenerationSession, SessionState, TaskStatus


# ANSI color codes
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"


def colored(text: str, color: str) -> str:
    """Apply color to text."""
    return f"{color}{text}{Colors.RESET}"


STATUS_COLORS = {
    TaskStatus.PENDING: Colors.YELLOW,
    TaskStatus.RUNNING: Colors.CYAN,
    TaskStatus.SUCCEEDED: Colors.GREEN,
    TaskStatus.FAILED: Colors.RED,
}


def format_notification(notification: Notification) -> str:
    """Format a notification for display."""
    type_colors = {
        NotificationType.SUCCESS: Colors.GREEN,
        NotificationType.INFO: Colors.BLUE,
        NotificationType.ERROR: Colors.RED,
        NotificationType.CHANNEL_ERROR: Colors.MAGENTA,
    }
    color = type_colors.get(notification.type, Colors.WHITE)
    line = colored(notification.to_cli_line(), color)

    data = notification.data
    if "deficit" in data:
        line += "\n" + "\n".join([
            f"    Current Balance:  {data.get('balance', 0)} Credits",
            f"    Required Credits: {colored(str(data.get('required', 0)), Colors.BLUE)} Credits",
            f"    Difference:       {colored(str(data.get('deficit', 0)), Colors.RED)} Credits",
        ])
    return line


def format_state(state: SessionState) -> str:
    """Format the session state as a short report."""
    lines = []

    if state.task_id:
        lines.append(f"Task:   {colored(state.task_id, Colors.BOLD)}")

    status = state.status or TaskStatus.PENDING
    if state.is_generating:
        label = f"{status.value} (generating...)"
    else:
        label = status.value
    lines.append(f"Status: {colored(label, STATUS_COLORS.get(status, Colors.WHITE))}")

    if state.result_url:
        lines.append(f"Video:  {colored(state.result_url, Colors.CYAN)}")
    if state.credits_consumed:
        lines.append(f"Credits consumed: {state.credits_consumed}")
    if state.error:
        lines.append(f"Error:  {colored(state.error, Colors.RED)}")

    sub = state.subscription
    if sub.get("task_id"):
        active = colored("active", Colors.GREEN) if sub.get("is_subscribed") else colored("inactive", Colors.DIM)
        lines.append(f"Updates: {active}")

    return "\n".join(lines)


class GenerationMonitor:
    """CLI monitor for a generation session."""

    def __init__(self, session: GenerationSession, use_color: bool = True):
        self.session = session
        self.use_color = use_color
        self._attached = False

    def attach(self):
        """Print notifications as the session emits them."""
        if self._attached:
            return
        self.session.notifier.on_event(self._handle_notification)
        self._attached = True

    def _handle_notification(self, notification: Notification):
        print(self._render(format_notification(notification)))

    def print_header(self, image_id: Optional[str]):
        print(colored("\n╔═══════════════════════════════════════════╗", Colors.CYAN))
        print(colored("║  AI Video Generation                      ║", Colors.CYAN))
        print(colored("╚═══════════════════════════════════════════╝", Colors.CYAN))
        if image_id:
            print(f"Image:   {colored(image_id, Colors.BOLD)}")
        print(f"Credits: {self.session.credits.balance}")
        print(colored("─" * 45, Colors.DIM))

    def print_state(self):
        print(self._render(format_state(self.session.state)))

    def _render(self, text: str) -> str:
        if self.use_color:
            return text
        for code in vars(Colors).values():
            if isinstance(code, str) and code.startswith("\033"):
                text = text.replace(code, "")
        return text
