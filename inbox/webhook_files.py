"""
Batch processing of webhook payload files.

Usage:
    python -m inbox.webhook_files [DIRECTORY]

Files whose name contains "message" are processed before those containing
"status", so stored messages usually exist by the time their status
updates arrive. A short pause between files reinforces that ordering; it
is a scheduling hint, not a guarantee.
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from inbox.config import get_settings
from inbox.errors import StoreUnavailable
from inbox.logging_utils import setup_logging
from inbox.notifications import NotificationHub
from inbox.service import InboxService
from inbox.storage import build_store

logger = logging.getLogger(__name__)


@dataclass
class BatchSummary:
    processed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    total_messages: int = 0
    total_conversations: int = 0


def order_payload_files(directory: Path) -> list[Path]:
    """JSON files in processing order: messages, then statuses, then the rest."""
    files = sorted(p for p in directory.iterdir() if p.is_file() and p.suffix == ".json")
    message_files = [p for p in files if "message" in p.name]
    status_files = [p for p in files if "status" in p.name and "message" not in p.name]
    other_files = [p for p in files if p not in message_files and p not in status_files]
    return message_files + status_files + other_files


async def process_directory(
    service: InboxService,
    directory: Path,
    delay_seconds: float = 0.1,
) -> BatchSummary:
    """
    Process every payload file in a directory.

    A file that cannot be read, parsed or normalized is logged and counted
    as failed; processing continues with the next file.
    """
    summary = BatchSummary()
    files = order_payload_files(directory)
    logger.info(f"Processing {len(files)} payload file(s) from {directory}")

    for index, path in enumerate(files):
        if index and delay_seconds:
            await asyncio.sleep(delay_seconds)

        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error processing {path.name}: {e}")
            summary.failed.append(path.name)
            continue

        result = await service.process_webhook(payload)
        if result.rejected:
            logger.error(f"Error processing {path.name}: {result.result} ({result.detail})")
            summary.failed.append(path.name)
        else:
            logger.info(f"Processed {path.name}: {result.kind} {result.result}")
            summary.processed.append(path.name)

    stats = await service.stats()
    summary.total_messages = stats.total_messages
    summary.total_conversations = stats.total_conversations

    logger.info(
        f"Processing summary: {len(summary.processed)} processed, {len(summary.failed)} failed, "
        f"{summary.total_messages} messages in {summary.total_conversations} conversations"
    )
    return summary


async def run(directory: Path) -> BatchSummary:
    settings = get_settings()
    store = build_store(settings.DATABASE_URL)
    await store.initialize()
    try:
        service = InboxService(store, NotificationHub(), settings)
        return await process_directory(service, directory, settings.WEBHOOK_FILES_DELAY_SECONDS)
    finally:
        await store.close()


def parse_args(args: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Process a directory of webhook payload files")
    parser.add_argument(
        "directory",
        nargs="?",
        default=None,
        help="Directory of *.json payloads (defaults to WEBHOOK_FILES_DIR)",
    )
    return parser.parse_args(args)


def main(args: Optional[list[str]] = None) -> int:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    parsed = parse_args(args)
    directory = Path(parsed.directory or settings.WEBHOOK_FILES_DIR)

    if not directory.is_dir():
        logger.error(f"Payload directory not found: {directory}")
        return 1

    try:
        summary = asyncio.run(run(directory))
    except StoreUnavailable as e:
        logger.error(f"Database unavailable: {e}")
        return 1
    return 1 if summary.failed and not summary.processed else 0


if __name__ == "__main__":
    sys.exit(main())
