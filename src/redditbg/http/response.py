from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class HttpResponse:
    """HTTP response data."""

    url: str
    status_code: int
    headers: Dict[str, str]
    body: bytes

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", "")
