"""Periodic retention sweep for the processed-message ledger."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from obs_queue.shared.repositories.processed_message import ProcessedMessageRepository

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SECS = 600


async def sweep_once(ledger: ProcessedMessageRepository, ttl_secs: int) -> int:
    cutoff = datetime.now(UTC) - timedelta(seconds=ttl_secs)
    deleted = await ledger.delete_older_than(cutoff)
    if deleted:
        logger.info(f"Purged {deleted} processed message(s) older than {ttl_secs}s")
    return deleted


async def sweep_processed_messages(
    ledger: ProcessedMessageRepository,
    ttl_secs: int,
    interval_secs: float = SWEEP_INTERVAL_SECS,
) -> None:
    """Run forever; errors are logged and the next round proceeds."""
    while True:
        try:
            await sweep_once(ledger, ttl_secs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Processed-message sweep failed: {e}")
        await asyncio.sleep(interval_secs)
