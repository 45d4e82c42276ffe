from __future__ import annotations

from typing import Callable, Optional

from bs4 import BeautifulSoup


def decode_html(body: bytes) -> str:
    """Decode an HTML payload, refusing anything that is not UTF-8."""
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValueError("Body was not valid UTF-8.") from e


def find_script_text(html: str, predicate: Callable[[str], bool]) -> Optional[str]:
    """Return the text of the first <script> whose contents satisfy `predicate`."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all("script"):
        text = tag.get_text()
        if text and predicate(text):
            return text
    return None


def slice_between(text: str, opening: str, closing: str) -> Optional[str]:
    """
    Slice from the first of `opening` to the last of `closing`, both inclusive.

    Each argument is a set of characters; any of them counts as a delimiter.
    """
    start = min((i for i in (text.find(c) for c in opening) if i >= 0), default=-1)
    end = max((text.rfind(c) for c in closing), default=-1)
    if start < 0 or end <= start:
        return None
    return text[start : end + 1]
