import os
from pathlib import Path
from typing import Union


def expand(path: Union[str, Path]) -> Path:
    """Expand `~` and environment variables in a configured path."""
    return Path(os.path.expandvars(str(path))).expanduser()
