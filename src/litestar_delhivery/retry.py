"""Webhook retry mechanism with exponential backoff."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from litestar_delhivery.config import DelhiveryConfig
from litestar_delhivery.protocols import CallbackRetryStore

if TYPE_CHECKING:
    from litestar_delhivery.webhooks import WebhookIngestor

logger = logging.getLogger(__name__)

# Retry queue entry statuses
PENDING = "pending"
SUCCEEDED = "succeeded"
EXHAUSTED = "exhausted"


def compute_next_retry_at(
    attempt: int,
    backoff_seconds: int,
) -> datetime:
    """Compute the next retry time with exponential backoff.

    delay = backoff_seconds * 2^(attempt - 1)
    """
    delay = backoff_seconds * (2 ** (attempt - 1))
    return datetime.now(tz=UTC) + timedelta(seconds=delay)


async def enqueue_callback_retry(
    store: CallbackRetryStore | None,
    *,
    awb: str,
    event_key: str,
    payload: Any,
    headers: dict[str, str],
    reason: str,
) -> None:
    """Persist a webhook payload for retry when a store is configured.

    ``event_key`` identifies the status event, so a redelivery of an
    event that is still queued does not add a second entry.
    """
    if store is None:
        return

    await store.store_failed_callback(
        awb=awb,
        payload=payload,
        headers=headers,
        event_key=event_key,
    )
    logger.warning(
        "Webhook for AWB %s failed, queued for retry: %s",
        awb,
        reason,
    )


async def process_due_retries(
    *,
    retry_store: CallbackRetryStore,
    ingestor: WebhookIngestor,
    config: DelhiveryConfig,
    limit: int = 10,
) -> int:
    """Re-apply all due webhook retries.

    Payloads were signature-checked when first received, so they go
    straight to parsing and apply. Returns the number processed.
    """
    retries = await retry_store.get_due_retries(limit=limit)
    processed = 0

    for retry in retries:
        retry_id = retry["id"]
        awb = retry["awb"]
        attempts = retry["attempts"]

        try:
            result = await ingestor.process(retry["payload"])
            await retry_store.mark_succeeded(retry_id)
            logger.info(
                "Retry %s: webhook for AWB %s processed (%s)",
                retry_id,
                awb,
                result.outcome,
            )
        except Exception as exc:
            if attempts + 1 >= config.retry_max_attempts:
                await retry_store.mark_exhausted(retry_id)
                logger.warning(
                    "Retry %s: exhausted after %d attempts: %s",
                    retry_id,
                    attempts + 1,
                    exc,
                )
            else:
                await retry_store.mark_failed(
                    retry_id,
                    error=str(exc),
                )
                logger.info(
                    "Retry %s: attempt %d failed: %s",
                    retry_id,
                    attempts + 1,
                    exc,
                )

        processed += 1

    return processed
