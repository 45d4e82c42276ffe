from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


class LedgerStatus(str, Enum):
    """Terminal outcome recorded for a reference."""

    DOWNLOADED = "downloaded"
    INVALID = "invalid"


@dataclass(frozen=True)
class DisplayGeometry:
    """Size of the display the wallpapers are fitted to."""

    width: int
    height: int

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    def as_tuple(self) -> Tuple[int, int]:
        return self.width, self.height


@dataclass(frozen=True)
class ListingPage:
    """One page of a listing: references in page order plus the token for the next page."""

    next_page_token: Optional[str]
    references: List[str] = field(default_factory=list)

    @property
    def is_last(self) -> bool:
        return self.next_page_token is None


@dataclass(frozen=True)
class Gallery:
    """Member references extracted from a gallery payload."""

    source: str
    kind: str
    media: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.media)


@dataclass
class ImageCandidate:
    """A decoded image and the format it was detected as."""

    format: str
    width: int
    height: int
    image: Any = None

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height


@dataclass(frozen=True)
class StoredImage:
    """A persisted image: its reference identity and location on disk."""

    identity: str
    path: Path


@dataclass(frozen=True)
class AcquireJob:
    """Configuration for one acquisition run."""

    listing_url: str
    page_limit: int = 100
    max_pages: int = 40
    delay_ms: int = 0
    target_count: int = 25
    concurrency: int = 25
    display: DisplayGeometry = field(default_factory=lambda: DisplayGeometry(1920, 1080))
    aspect_epsilon: float = 0.01


@dataclass
class AcquireReport:
    """Summary report of an acquisition run."""

    need: int = 0
    pages_fetched: int = 0
    references_seen: int = 0
    references_skipped: int = 0
    accepted: int = 0
    invalid: int = 0
    galleries_expanded: int = 0
    galleries_exhausted: int = 0
    persistence_failures: int = 0
    failures: Dict[str, int] = field(default_factory=dict)

    def bump_failure(self, key: str) -> None:
        """Increment the count for a specific failure type."""
        self.failures[key] = self.failures.get(key, 0) + 1
