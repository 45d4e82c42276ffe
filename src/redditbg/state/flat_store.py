from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Set

from redditbg.core.errors import LedgerError
from redditbg.core.models import LedgerStatus
from redditbg.sinks.image_store import ImageStore
from redditbg.state.base import reconcile
from redditbg.utils.hashing import reference_identity
from redditbg.utils.logging import get_logger


class FlatFileDedupLedger:
    """
    Dedup ledger kept in memory and stored as one newline-delimited file per status.

    Everything is loaded when the ledger is opened and written back by flush();
    updates made after the last flush are lost if the process dies.
    """

    def __init__(self, directory: str):
        self.directory = Path(directory).expanduser()
        self.log = get_logger("redditbg.ledger.flat")
        self._sets: Dict[LedgerStatus, Set[str]] = {status: set() for status in LedgerStatus}
        self._dirty = False
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            for status in LedgerStatus:
                self._sets[status] = self._load(self._path(status))
        except OSError as e:
            raise LedgerError(f"Could not open ledger in {self.directory}: {e}") from e

        # A hand-edited file may list an identity twice; downloaded wins.
        self._sets[LedgerStatus.INVALID] -= self._sets[LedgerStatus.DOWNLOADED]

        self.log.debug(
            "Loaded ledger: downloaded=%d invalid=%d",
            len(self._sets[LedgerStatus.DOWNLOADED]),
            len(self._sets[LedgerStatus.INVALID]),
        )

    def contains(self, reference: str) -> bool:
        return self.status_of(reference) is not None

    def status_of(self, reference: str) -> Optional[LedgerStatus]:
        identity = reference_identity(reference)
        for status, members in self._sets.items():
            if identity in members:
                return status
        return None

    def insert(self, reference: str, status: LedgerStatus) -> None:
        self.insert_identity(reference_identity(reference), status)

    def insert_identity(self, identity: str, status: LedgerStatus) -> None:
        status = LedgerStatus(status)
        if identity in self._sets[status]:
            return
        for other, members in self._sets.items():
            if other is not status:
                members.discard(identity)
        self._sets[status].add(identity)
        self._dirty = True

    def count(self, status: LedgerStatus) -> int:
        return len(self._sets[LedgerStatus(status)])

    def reconcile_from_store(self, store: ImageStore) -> int:
        return reconcile(self, store)

    def flush(self) -> None:
        if not self._dirty:
            return
        try:
            for status, members in self._sets.items():
                self._write(self._path(status), members)
        except OSError as e:
            raise LedgerError(f"Could not flush ledger to {self.directory}: {e}") from e
        self._dirty = False

    def close(self) -> None:
        self.flush()

    def _path(self, status: LedgerStatus) -> Path:
        return self.directory / f"{status.value}.txt"

    @staticmethod
    def _load(path: Path) -> Set[str]:
        if not path.exists():
            return set()
        with path.open("r", encoding="utf-8") as f:
            return {line.strip() for line in f if line.strip()}

    def _write(self, path: Path, members: Set[str]) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{path.stem}-", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            for identity in sorted(members):
                f.write(identity + "\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
