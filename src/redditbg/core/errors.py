from __future__ import annotations


class RedditBgError(Exception):
    """Base class for every error raised by redditbg."""


class ResolveError(RedditBgError):
    """A single reference could not be resolved to a stored image or a gallery."""

    def __init__(self, reference: str, message: str):
        super().__init__(message)
        self.reference = reference


class FetchFailed(ResolveError):
    """The body of a reference could not be fetched, even after backing off."""


class MalformedContent(ResolveError):
    """A classifier rejected the payload; the next classifier may still accept it."""


class InvalidAspectRatio(ResolveError):
    """The payload is an image, but its shape does not fit the display."""

    def __init__(self, reference: str, iw: int, ih: int, sw: int, sh: int):
        super().__init__(
            reference,
            f"Aspect ratio not within epsilon ({iw}:{ih} instead of {sw}:{sh})",
        )
        self.iw = iw
        self.ih = ih
        self.sw = sw
        self.sh = sh


class UnrecognizedContent(ResolveError):
    """No classifier recognised the payload."""

    def __init__(self, reference: str):
        super().__init__(reference, "Unable to parse as anything known")


class PersistenceError(RedditBgError):
    """Writing an accepted image into the store failed."""


class LedgerError(RedditBgError):
    """The dedup ledger storage is unavailable or failing."""


class ListingUnavailable(RedditBgError):
    """The listing could not be fetched at all."""
