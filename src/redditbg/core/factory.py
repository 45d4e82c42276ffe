from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from redditbg.config_models import RedditBgConfig
from redditbg.core.engine import ResolverEngine
from redditbg.core.models import AcquireJob
from redditbg.fetch.listing import ListingStream
from redditbg.http.client import AiohttpClient, HttpClient
from redditbg.http.policies import BackoffPolicy
from redditbg.sinks.image_store import ImageStore
from redditbg.state import DedupLedger, open_ledger
from redditbg.utils.paths import expand


@dataclass(frozen=True)
class BuiltComponents:
    client: HttpClient
    ledger: DedupLedger
    store: ImageStore
    listing: ListingStream
    engine: ResolverEngine


class ComponentFactory:
    """
    Wires the components of an acquisition run from configuration.
    """

    def __init__(self, config: RedditBgConfig):
        self.config = config

    def build(self, job: AcquireJob, client: Optional[HttpClient] = None) -> BuiltComponents:
        """
        Build all components needed for one acquisition run.

        Args:
            job: The acquisition job derived from configuration.
            client: Optional HTTP client; one is created from configuration otherwise.

        Returns:
            A container with all built components.

        Raises:
            LedgerError: If the ledger cannot be opened.
        """
        client = client or self.http_client()
        store = self.store()
        ledger = self.ledger()
        listing = self.listing(client, job)
        engine = self.engine(client, ledger, store, job)
        return BuiltComponents(client=client, ledger=ledger, store=store, listing=listing, engine=engine)

    def backoff(self) -> BackoffPolicy:
        """Create the retry policy shared by every network call."""
        cfg = self.config.backoff
        return BackoffPolicy(
            steps=cfg.steps,
            min_delay_s=cfg.min_delay_s,
            max_delay_s=cfg.max_delay_s,
            jitter=cfg.jitter,
        )

    def http_client(self) -> AiohttpClient:
        """Create the HTTP client."""
        cfg = self.config.http
        return AiohttpClient(
            user_agent=cfg.user_agent,
            timeout_s=cfg.timeout_s,
            connect_timeout_s=cfg.connect_timeout_s,
            backoff=self.backoff(),
        )

    def store(self) -> ImageStore:
        """Create the image store."""
        store = ImageStore(expand(self.config.storage.images_dir))
        store.ensure()
        return store

    def ledger(self) -> DedupLedger:
        """Open the dedup ledger."""
        cfg = self.config.storage
        return open_ledger(cfg.ledger_backend, str(expand(cfg.ledger_path)))

    def listing(self, client: HttpClient, job: AcquireJob) -> ListingStream:
        """Create the listing stream."""
        return ListingStream(
            client,
            job.listing_url,
            page_limit=job.page_limit,
            max_pages=job.max_pages,
            delay_ms=job.delay_ms,
        )

    def engine(self, client: HttpClient, ledger: DedupLedger, store: ImageStore, job: AcquireJob) -> ResolverEngine:
        """Create the resolver engine."""
        return ResolverEngine(
            client=client,
            ledger=ledger,
            store=store,
            display=job.display,
            target_count=job.target_count,
            concurrency=job.concurrency,
            aspect_epsilon=job.aspect_epsilon,
        )
