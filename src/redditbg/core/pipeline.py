from __future__ import annotations

from typing import Optional

from redditbg.config_models import RedditBgConfig, config_to_job
from redditbg.core.errors import ListingUnavailable
from redditbg.core.factory import ComponentFactory
from redditbg.http.client import HttpClient
from redditbg.utils.logging import get_logger

log = get_logger("redditbg.pipeline")


async def acquire(
    config: RedditBgConfig,
    factory: Optional[ComponentFactory] = None,
    client: Optional[HttpClient] = None,
) -> int:
    """
    Top the image store up from the configured listing.

    Side effects are confined to the image store and the ledger storage.
    Safe to call repeatedly: references that reached a terminal outcome on an
    earlier call are never fetched again.

    Returns:
        Number of newly accepted images.

    Raises:
        LedgerError: If the ledger cannot be opened or written.
        ListingUnavailable: If not even the first listing page could be fetched.
    """
    factory = factory or ComponentFactory(config)
    job = config_to_job(config)
    owns_client = client is None
    built = factory.build(job, client=client)

    try:
        try:
            accepted = await built.engine.run(built.listing)
        finally:
            # In-flight writes always complete; only their count is ignored.
            try:
                await built.engine.drain()
            finally:
                if owns_client:
                    await built.client.close()

        built.ledger.reconcile_from_store(built.store)
    finally:
        built.ledger.flush()
        built.ledger.close()

    if built.listing.failed_before_first_page:
        raise ListingUnavailable(f"Could not fetch listing {job.listing_url}: {built.listing.last_error}")

    report = built.engine.report
    log.info(
        "Acquire done: accepted=%s need=%s pages=%s invalid=%s failures=%s",
        accepted,
        report.need,
        built.listing.pages_fetched,
        report.invalid,
        report.failures,
    )
    return accepted
