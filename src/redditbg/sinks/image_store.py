from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import IO, Callable, List, Optional, Union

from redditbg.core.errors import PersistenceError
from redditbg.core.models import StoredImage
from redditbg.utils.hashing import is_identity
from redditbg.utils.logging import get_logger

Writer = Callable[[IO[bytes]], None]

PARTIAL_DIR = ".partial"


class ImageStore:
    """
    Directory of accepted images, one file per reference: `<identity>.<extension>`.

    Writes go to a temporary file under `.partial/` and are renamed into place
    once complete, so a final name never points at a truncated file.
    """

    def __init__(self, directory: Union[str, Path], extension: str = "png"):
        self.directory = Path(directory).expanduser()
        self.extension = extension.lstrip(".").lower()
        self.partial_dir = self.directory / PARTIAL_DIR
        self.log = get_logger("redditbg.store")

    def ensure(self) -> None:
        self.partial_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, identity: str) -> Path:
        return self.directory / f"{identity}.{self.extension}"

    def identity_of(self, path: Path) -> Optional[str]:
        """Identity encoded in a stored file name, or None for foreign files."""
        if path.suffix.lower() != f".{self.extension}":
            return None
        stem = path.stem
        return stem if is_identity(stem) else None

    def list(self) -> List[StoredImage]:
        """Stored images, oldest first."""
        if not self.directory.is_dir():
            return []

        items = []
        for entry in self.directory.iterdir():
            if not entry.is_file():
                continue
            identity = self.identity_of(entry)
            if identity is None:
                continue
            try:
                mtime = entry.stat().st_mtime
            except FileNotFoundError:
                # Picked and removed while we were listing
                continue
            items.append((mtime, entry.name, StoredImage(identity=identity, path=entry)))

        items.sort(key=lambda t: (t[0], t[1]))
        return [item for _, _, item in items]

    def count(self) -> int:
        return len(self.list())

    def write(self, identity: str, content: Union[bytes, Writer]) -> Path:
        """Atomically persist `content` under `identity` (temp file, fsync, rename)."""
        if not is_identity(identity):
            raise ValueError(f"Not a reference identity: {identity!r}")

        dst = self.path_for(identity)
        try:
            self.ensure()
            fd, tmp_name = tempfile.mkstemp(dir=self.partial_dir, suffix=".tmp")
            with os.fdopen(fd, "wb") as fh:
                self.log.debug("Writing %s to temporary file @ %s", identity, tmp_name)
                if isinstance(content, (bytes, bytearray)):
                    fh.write(content)
                else:
                    content(fh)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, dst)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Failed to persist {identity} to {dst}: {e}") from e

        self.log.debug("Persisted %s", dst)
        return dst

    def remove(self, identity: str) -> bool:
        try:
            self.path_for(identity).unlink()
            return True
        except FileNotFoundError:
            return False
