#!/usr/bin/env python3
"""Drain the GitHub webhook queue once, without going through HTTP.

Usage:
    python scripts/process_webhook_queue.py [batch_size]

Same work as POST /internal/github/process-webhooks. Exits 0 when every
claimed delivery finished, 1 when any failed or the run crashed.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from memory_core.config import get_settings
from memory_core.db.session import SessionLocal
from memory_core.github.client import GithubClient
from memory_core.webhooks.processor import process_github_webhook_queue


async def _run(batch_size: int) -> dict[str, int]:
    db = SessionLocal()
    try:
        async with GithubClient() as client:
            return await process_github_webhook_queue(db, client, batch_size=batch_size)
    finally:
        db.close()


def main() -> int:
    batch_size = int(sys.argv[1]) if len(sys.argv) > 1 else get_settings().webhook_queue_batch_size
    try:
        result = asyncio.run(_run(batch_size))
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    print(f"processed={result['processed']} failed={result['failed']}")
    return 0 if result["failed"] == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
