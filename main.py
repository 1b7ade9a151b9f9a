#!/usr/bin/env python3
"""
Avatar Video - Main Entry Point

Generates an avatar video from an uploaded image and follows the task to
completion.

Usage:
    # Emoji template animation
    python main.py generate --image-id img-123 --kind template-driven --template-id mengwa_kaixin

    # Lip sync to an audio clip
    python main.py generate --image-id img-123 --kind audio-driven --audio-url https://cdn/voice.mp3

    # Check a task
    python main.py status task-456
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("avatarvideo")


def current_user():
    """Authentication provider: the user configured for this shell, if any."""
    from services.credits import User

    user_id = os.getenv("VIDEO_USER_ID", "")
    if not user_id:
        return None
    return User(id=user_id, email=os.getenv("VIDEO_USER_EMAIL"))


async def generate_video(
    image_id: str,
    kind: str,
    template_id: Optional[str] = None,
    audio_url: Optional[str] = None,
    timeout: Optional[float] = None,
    use_color: bool = True,
) -> int:
    """
    Generate a video and wait for it.

    Returns:
        Process exit code (0 on success)
    """
    from cli.progress_monitor import GenerationMonitor
    from core.config import get_config
    from services.credits import CreditBalance
    from services.streaming import StatusSubscriptionChannel
    from services.video_generation import (
        GenerationSession,
        JobKind,
        TaskStatus,
        VideoGenerationClient,
    )

    config = get_config()
    for issue in config.validate():
        logger.warning(f"Config: {issue}")

    async with VideoGenerationClient(config) as client:
        credits = CreditBalance(client.fetch_balance)
        channel = StatusSubscriptionChannel(config)

        async with GenerationSession(client, channel, credits, current_user, config=config) as session:
            monitor = GenerationMonitor(session, use_color=use_color)
            monitor.attach()

            if current_user() is not None:
                await credits.refresh()
            monitor.print_header(image_id)

            if await session.load_image(image_id) is None:
                return 1

            accepted = await session.generate(
                JobKind(kind),
                template_id=template_id,
                audio_url=audio_url,
            )
            if not accepted:
                return 1

            status = await session.wait(timeout=timeout)
            monitor.print_state()

            # Let a balance refresh triggered by success land before exit
            if credits.loading:
                await credits.refresh()

            return 0 if status == TaskStatus.SUCCEEDED else 1


async def show_status(task_id: str, kind: str, use_color: bool = True) -> int:
    """Fetch and print a task's current record."""
    from cli.progress_monitor import Colors, STATUS_COLORS, colored
    from core.config import get_config
    from core.errors import VideoGenerationError
    from services.video_generation import JobKind, VideoGenerationClient

    async with VideoGenerationClient(get_config()) as client:
        try:
            record = await client.fetch_record(task_id)
        except VideoGenerationError as e:
            logger.error(f"Failed to fetch task {task_id}: {e}")
            return 1

    job_kind = JobKind(kind)
    status_text = record.status.value
    if use_color:
        status_text = colored(status_text, STATUS_COLORS.get(record.status, Colors.WHITE))
    print(f"Task:   {task_id}")
    print(f"Status: {status_text}")
    if record.result_url_for(job_kind):
        print(f"Video:  {record.result_url_for(job_kind)}")
    if record.message_for(job_kind):
        print(f"Message: {record.message_for(job_kind)}")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Avatar video generation client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--no-color", action="store_true", help="Disable ANSI colors")
    subparsers = parser.add_subparsers(dest="command", required=True)

    gen = subparsers.add_parser("generate", help="Generate a video from an image")
    gen.add_argument("--image-id", required=True, help="Source image ID")
    gen.add_argument(
        "--kind",
        choices=["template-driven", "audio-driven"],
        default="template-driven",
        help="Generation mode (default: template-driven)",
    )
    gen.add_argument("--template-id", help="Emoji template ID (template-driven)")
    gen.add_argument("--audio-url", help="Audio clip URL (audio-driven)")
    gen.add_argument("--timeout", type=float, help="Seconds to wait for the task")

    status = subparsers.add_parser("status", help="Show a task's status")
    status.add_argument("task_id", help="Task ID")
    status.add_argument(
        "--kind",
        choices=["template-driven", "audio-driven"],
        default="template-driven",
        help="Which result fields to show",
    )

    args = parser.parse_args()
    use_color = not args.no_color

    try:
        if args.command == "generate":
            code = asyncio.run(generate_video(
                image_id=args.image_id,
                kind=args.kind,
                template_id=args.template_id,
                audio_url=args.audio_url,
                timeout=args.timeout,
                use_color=use_color,
            ))
        else:
            code = asyncio.run(show_status(args.task_id, args.kind, use_color=use_color))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        code = 130

    sys.exit(code)


if __name__ == "__main__":
    main()
