from redditbg.state.base import DedupLedger, reconcile
from redditbg.state.flat_store import FlatFileDedupLedger
from redditbg.state.sqlite_store import SQLiteDedupLedger


def open_ledger(backend: str, path: str) -> DedupLedger:
    """Open the ledger backend named in configuration."""
    normalized = str(backend or "").strip().lower()
    if normalized == "sqlite":
        return SQLiteDedupLedger(path)
    if normalized == "flat":
        return FlatFileDedupLedger(path)
    raise ValueError(f"Unsupported ledger backend: {backend}")


__all__ = [
    "DedupLedger",
    "FlatFileDedupLedger",
    "SQLiteDedupLedger",
    "open_ledger",
    "reconcile",
]
