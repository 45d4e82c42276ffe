from __future__ import annotations

import asyncio
from typing import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable, Optional, Set, Tuple, Union

from redditbg.core.errors import (
    FetchFailed,
    InvalidAspectRatio,
    LedgerError,
    MalformedContent,
    PersistenceError,
    ResolveError,
    UnrecognizedContent,
)
from redditbg.core.models import AcquireReport, DisplayGeometry, Gallery, LedgerStatus
from redditbg.http.client import HttpClient
from redditbg.http.policies import RETRYABLE_ERRORS
from redditbg.parse.galleries import parse_imgur_gallery, parse_reddit_gallery
from redditbg.parse.images import check_aspect_ratio, decode_image, fit_to_display, image_writer
from redditbg.sinks.image_store import ImageStore
from redditbg.state.base import DedupLedger
from redditbg.utils.hashing import reference_identity
from redditbg.utils.logging import get_logger

References = Union[AsyncIterable[str], Iterable[str]]
GalleryParser = Callable[[str, bytes], Gallery]

DEFAULT_GALLERY_PARSERS: Tuple[GalleryParser, ...] = (parse_imgur_gallery, parse_reddit_gallery)


class AcceptanceQuota:
    """Counter of images accepted this run, shared by every resolution task."""

    def __init__(self, need: int):
        self.need = max(0, int(need))
        self._accepted = 0

    @property
    def accepted(self) -> int:
        return self._accepted

    @property
    def satisfied(self) -> bool:
        return self._accepted >= self.need

    @property
    def reported(self) -> int:
        """Accepted images as reported to callers; never more than `need`."""
        return min(self._accepted, self.need)

    def try_increment_and_check(self) -> bool:
        """Count one more accepted image; True once the quota is met."""
        # Only ever called from the event loop thread, so increment-and-read cannot interleave.
        self._accepted += 1
        return self._accepted >= self.need


class ResolverEngine:
    """
    Resolves references into stored images.

    Each reference is fetched, then classified as a direct image, an imgur
    gallery or a reddit gallery, in that order. Galleries are mined by
    submitting their members back through fetch_multiple() under the same quota
    and the same concurrency window.
    """

    def __init__(
        self,
        client: HttpClient,
        ledger: DedupLedger,
        store: ImageStore,
        display: DisplayGeometry,
        target_count: int = 25,
        concurrency: int = 25,
        aspect_epsilon: float = 0.01,
        gallery_parsers: Tuple[GalleryParser, ...] = DEFAULT_GALLERY_PARSERS,
    ):
        """
        Args:
            client: HTTP client used to fetch reference bodies.
            ledger: Dedup ledger consulted before and updated after each resolution.
            store: Image store accepted images are written into.
            display: Geometry accepted images must fit and are resized to.
            target_count: How many images the store should hold after a run.
            concurrency: Width of the resolution window, shared by every recursion depth.
            aspect_epsilon: Largest accepted difference between image and display aspect ratios.
            gallery_parsers: Gallery classifiers, tried in order after the direct image check.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.client = client
        self.ledger = ledger
        self.store = store
        self.display = display
        self.target_count = target_count
        self.concurrency = concurrency
        self.aspect_epsilon = aspect_epsilon
        self.gallery_parsers = gallery_parsers

        self.quota = AcceptanceQuota(0)
        self.report = AcquireReport()
        self._slots = asyncio.Semaphore(concurrency)
        self._in_flight: Set[asyncio.Task] = set()
        self._claimed: Set[str] = set()
        self._ledger_error: Optional[LedgerError] = None
        self.log = get_logger("redditbg.engine")

    async def run(self, references: References) -> int:
        """
        Resolve references until the store is topped up or the references run out.

        Returns:
            Number of newly accepted images, capped at the number that was needed.
        """
        need = max(0, self.target_count - self.store.count())
        self.quota = AcceptanceQuota(need)
        self.report = AcquireReport(need=need)

        if need == 0:
            self.log.info("Store already holds %s images, nothing to fetch", self.target_count)
            return 0

        self.log.info("Run started: need=%s concurrency=%s", need, self.concurrency)
        await self.fetch_multiple(references)
        self.report.accepted = self.quota.accepted

        self.log.info(
            "Run done: accepted=%s/%s seen=%s skipped=%s invalid=%s galleries=%s exhausted=%s in_flight=%s",
            self.quota.reported,
            need,
            self.report.references_seen,
            self.report.references_skipped,
            self.report.invalid,
            self.report.galleries_expanded,
            self.report.galleries_exhausted,
            len(self._in_flight),
        )
        return self.quota.reported

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def drain(self) -> None:
        """
        Let resolutions still in flight finish; their results are not counted.

        Raises:
            LedgerError: If any resolution of this run lost the ledger, once every task has finished.
        """
        while self._in_flight:
            results = await asyncio.gather(*list(self._in_flight), return_exceptions=True)
            for result in results:
                if isinstance(result, Exception) and not isinstance(result, LedgerError):
                    self.log.warning("Late resolution failed: %s: %s", type(result).__name__, result)

        if self._ledger_error is not None:
            raise self._ledger_error

    async def fetch_multiple(self, references: References) -> int:
        """
        Resolve many references at once, stopping pulls once the quota is met.

        Returns:
            How many references were touched, i.e. pulled from `references`,
            including the ones skipped because the ledger already knew them.
        """
        touched = 0
        pending: Set[asyncio.Task] = set()

        source = _aiter(references)
        try:
            # Checked before every pull: pulling may cost a listing page request.
            while not self.quota.satisfied:
                try:
                    reference = await source.__anext__()
                except StopAsyncIteration:
                    break

                touched += 1
                self.report.references_seen += 1

                if reference in self._claimed or self.ledger.contains(reference):
                    self.report.references_skipped += 1
                    self.log.debug("Skipping known reference %s", reference)
                    continue

                self._claimed.add(reference)
                pending.add(self._spawn(self.fetch_one(reference)))
                if len(pending) >= self.concurrency:
                    pending = await self._collect(pending)
        finally:
            await source.aclose()

        # Tasks left behind once the quota is met keep running but are not waited on here.
        while pending and not self.quota.satisfied:
            pending = await self._collect(pending)

        return touched

    async def fetch_one(self, reference: str) -> None:
        """Resolve one reference, recording terminal failures in the ledger."""
        gallery: Optional[Gallery] = None
        try:
            async with self._slots:
                body = await self._fetch_body(reference)
                gallery = await self._classify(reference, body)
        except ResolveError as e:
            self._mark_invalid(reference, e)
            return

        if gallery is not None:
            await self._mine_gallery(gallery)

    async def _fetch_body(self, reference: str) -> bytes:
        try:
            resp = await self.client.get_bytes(reference, headers={"Accept": "image/*"})
        except RETRYABLE_ERRORS as e:
            raise FetchFailed(reference, f"Failed to fetch {reference!r}: {type(e).__name__}: {e}") from e
        self.log.debug("Got body of %s (size=%s, type=%s)", reference, len(resp.body), resp.content_type or "?")
        return resp.body

    async def _classify(self, reference: str, body: bytes) -> Optional[Gallery]:
        """Store the body as an image, or return the gallery it describes."""
        try:
            await self._accept_image(reference, body)
            return None
        except InvalidAspectRatio:
            self.log.debug("Failed direct image check due to aspect ratio, bailing: %s", reference)
            raise
        except MalformedContent as e:
            self.log.debug("Failed direct image check for %s, continuing on (%s)", reference, e)

        for parser in self.gallery_parsers:
            try:
                gallery = parser(reference, body)
            except MalformedContent as e:
                self.log.debug("Failed %s check for %s (%s)", parser.__name__, reference, e)
                continue
            self.log.debug("Parsed %s gallery %s with %s media", gallery.kind, reference, len(gallery))
            return gallery

        raise UnrecognizedContent(reference)

    async def _accept_image(self, reference: str, body: bytes) -> None:
        # Decoding and resizing are CPU-bound and run off the loop. Threads cannot be
        # cancelled, so once a write starts it always reaches the rename.
        candidate = await asyncio.to_thread(decode_image, reference, body)
        self.log.debug("%s is an image of format %s (%sx%s)", reference, candidate.format, candidate.width, candidate.height)
        check_aspect_ratio(reference, candidate, self.display, self.aspect_epsilon)

        identity = reference_identity(reference)

        def persist() -> None:
            img = fit_to_display(candidate, self.display)
            self.store.write(identity, image_writer(img))

        await asyncio.to_thread(persist)

        self.ledger.insert_identity(identity, LedgerStatus.DOWNLOADED)
        done = self.quota.try_increment_and_check()
        self.log.info("Accepted %s (%s/%s)%s", reference, self.quota.accepted, self.quota.need, " quota met" if done else "")

    async def _mine_gallery(self, gallery: Gallery) -> None:
        self.report.galleries_expanded += 1
        touched = await self.fetch_multiple(gallery.media)

        # Fully examined galleries are never worth revisiting; partially mined ones stay open.
        if touched >= len(gallery):
            self.log.debug("Exhausted %s gallery %s (touched=%s)", gallery.kind, gallery.source, touched)
            self.ledger.insert(gallery.source, LedgerStatus.INVALID)
            self.report.galleries_exhausted += 1
        else:
            self.log.debug(
                "Left %s gallery %s open (touched=%s of %s)", gallery.kind, gallery.source, touched, len(gallery)
            )

    def _mark_invalid(self, reference: str, error: ResolveError) -> None:
        if isinstance(error, FetchFailed):
            self.log.warning("%s", error)
        else:
            self.log.debug("Failed fetching %s: %s", reference, error)
        self.ledger.insert(reference, LedgerStatus.INVALID)
        self.report.invalid += 1
        self.report.bump_failure(type(error).__name__)

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._in_flight.add(task)
        task.add_done_callback(self._settle)
        return task

    def _settle(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            return
        # Tasks finishing after the quota is met are never collected; keep their ledger failure for drain().
        exc = task.exception()
        if isinstance(exc, LedgerError) and self._ledger_error is None:
            self.log.error("Ledger failed: %s", exc)
            self._ledger_error = exc

    async def _collect(self, pending: Set[asyncio.Task]) -> Set[asyncio.Task]:
        """Wait for at least one task to finish and deal with its outcome."""
        done, still_pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is None:
                continue
            if isinstance(exc, LedgerError):
                raise exc
            if isinstance(exc, PersistenceError):
                self.report.persistence_failures += 1
                self.report.bump_failure(type(exc).__name__)
                self.log.error("%s", exc)
                continue
            self.report.bump_failure(type(exc).__name__)
            self.log.error("Resolution failed unexpectedly: %s: %s", type(exc).__name__, exc, exc_info=exc)
        return still_pending


async def _aiter(references: References) -> AsyncIterator[str]:
    if hasattr(references, "__aiter__"):
        async for reference in references:  # type: ignore[union-attr]
            yield reference
    else:
        for reference in references:  # type: ignore[union-attr]
            yield reference
