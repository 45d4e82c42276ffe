from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Protocol, Sequence

from redditbg.utils.logging import get_logger


class BackgroundSetter(Protocol):
    """Applies an image file as the desktop background."""

    def set(self, path: Path) -> None: ...


class CommandBackgroundSetter:
    """Sets the background by running an external command, e.g. gsettings or feh."""

    def __init__(self, argv: Sequence[str], timeout_s: float = 30):
        if not argv:
            raise ValueError("argv cannot be empty")
        self.argv = list(argv)
        self.timeout_s = timeout_s
        self.log = get_logger("redditbg.desktop")

    def command_for(self, path: Path) -> List[str]:
        resolved = Path(path).resolve()
        return [part.replace("{path}", str(resolved)).replace("{uri}", resolved.as_uri()) for part in self.argv]

    def set(self, path: Path) -> None:
        cmd = self.command_for(path)
        self.log.info("Setting background: %s", " ".join(cmd))
        subprocess.run(cmd, check=True, timeout=self.timeout_s, capture_output=True)


class LoggingBackgroundSetter:
    """Setter used when no command is configured: only reports the pick."""

    def __init__(self):
        self.log = get_logger("redditbg.desktop")

    def set(self, path: Path) -> None:
        self.log.info("New background ready at %s (no set_command configured)", path)
