from __future__ import annotations

from typing import Optional, Protocol

from redditbg.core.models import LedgerStatus
from redditbg.sinks.image_store import ImageStore
from redditbg.utils.logging import get_logger


class DedupLedger(Protocol):
    """
    Durable record of references that reached a terminal outcome.

    An identity holds at most one status. Inserting an identity already holding
    the same status is a no-op; inserting it under another status moves it.
    """

    def contains(self, reference: str) -> bool: ...

    def status_of(self, reference: str) -> Optional[LedgerStatus]: ...

    def insert(self, reference: str, status: LedgerStatus) -> None: ...

    def insert_identity(self, identity: str, status: LedgerStatus) -> None: ...

    def count(self, status: LedgerStatus) -> int: ...

    def reconcile_from_store(self, store: ImageStore) -> int: ...

    def flush(self) -> None: ...

    def close(self) -> None: ...


def reconcile(ledger: DedupLedger, store: ImageStore) -> int:
    """Mark every image currently in the store as downloaded; returns how many were listed."""
    log = get_logger("redditbg.ledger")
    items = store.list()
    for item in items:
        ledger.insert_identity(item.identity, LedgerStatus.DOWNLOADED)
    log.info("Reconciled ledger with store: %d images in %s", len(items), store.directory)
    return len(items)
