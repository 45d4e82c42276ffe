from __future__ import annotations

import shutil
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import imagehash
from PIL import Image, UnidentifiedImageError

from redditbg.core.errors import LedgerError
from redditbg.sinks.image_store import ImageStore
from redditbg.utils.logging import get_logger


class PerceptualHashLedger:
    """SQLite-backed set of perceptual hashes of images already applied as backgrounds."""

    def __init__(self, path: str):
        self.path = path
        parent = Path(path).parent
        if str(parent) not in {"", "."}:
            parent.mkdir(parents=True, exist_ok=True)
        with self._session() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS applied_hashes (
                    phash TEXT PRIMARY KEY,
                    applied_at_utc TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
                )
                """
            )

    def find_similar(self, phash: imagehash.ImageHash, threshold: int) -> Optional[str]:
        """Return a stored hash within `threshold` Hamming distance of `phash`, if any."""
        with self._session() as conn:
            rows = conn.execute("SELECT phash FROM applied_hashes").fetchall()

        for row in rows:
            try:
                existing = imagehash.hex_to_hash(row["phash"])
            except ValueError:
                continue
            if phash - existing <= threshold:
                return row["phash"]
        return None

    def add(self, phash: imagehash.ImageHash) -> None:
        with self._session() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO applied_hashes (phash) VALUES (?)",
                (str(phash),),
            )

    def __len__(self) -> int:
        with self._session() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM applied_hashes").fetchone()
        return int(row["n"]) if row else 0

    @contextmanager
    def _session(self):
        try:
            conn = sqlite3.connect(self.path, timeout=30)
        except sqlite3.Error as e:
            raise LedgerError(f"Could not open hash ledger at {self.path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise LedgerError(f"Hash ledger operation failed: {e}") from e
        finally:
            conn.close()


class Picker:
    """
    Chooses the next background from the image store and retires it.

    Oldest images go first. Files that fail to decode, and images perceptually
    identical to one applied before, are deleted on the way.
    """

    def __init__(self, store: ImageStore, hashes: PerceptualHashLedger, current_path: Path, threshold: int = 4):
        self.store = store
        self.hashes = hashes
        self.current_path = Path(current_path)
        self.threshold = threshold
        self.log = get_logger("redditbg.picker")

    def pick(self) -> Optional[Path]:
        """Copy a fresh image to `current_path` and return it, or None if the store has none."""
        for item in self.store.list():
            try:
                with Image.open(item.path) as img:
                    img.load()
                    phash = imagehash.phash(img)
            except (UnidentifiedImageError, OSError) as e:
                self.log.warning("Error while parsing %s as an image: %s", item.path, e)
                self._retire(item.identity)
                continue

            match = self.hashes.find_similar(phash, self.threshold)
            if match is not None:
                self.log.info("Skipping %s: looks like already applied %s", item.path, match)
                self._retire(item.identity)
                continue

            self.current_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(item.path, self.current_path)
            self.hashes.add(phash)
            self._retire(item.identity)
            self.log.info("Picked %s", item.path)
            return self.current_path

        self.log.warning("Could not find a valid image in %s", self.store.directory)
        return None

    def _retire(self, identity: str) -> None:
        self.log.debug("Removing %s", self.store.path_for(identity))
        self.store.remove(identity)
