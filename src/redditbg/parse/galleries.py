"""
Parsers for gallery pages: HTML documents that embed a list of media in a script.

Each parser either returns a complete Gallery or raises MalformedContent; a
gallery with any structural problem is rejected as a whole.
"""

from __future__ import annotations

import html
import json
from typing import Any, List

from redditbg.core.errors import MalformedContent
from redditbg.core.models import Gallery
from redditbg.parse.html_utils import decode_html, find_script_text, slice_between

IMGUR_MARKER = "postDataJSON"
REDDIT_MARKER = "window.___r"


def parse_imgur_gallery(reference: str, body: bytes) -> Gallery:
    """
    Imgur album pages carry `window.postDataJSON = "<json string>"` in a script.

    The quoted literal is itself a JSON string whose contents are {"media": [{"url": ...}]}.
    """
    text = _script_text(reference, body, lambda t: IMGUR_MARKER in t, f"Could not find {IMGUR_MARKER} in body.")

    code = slice_between(text, "'\"", "'\"")
    if code is None:
        raise MalformedContent(reference, "Could not find quoted postDataJSON literal")

    try:
        data = json.loads(code)
    except ValueError as e:
        raise MalformedContent(reference, f"Could not parse postDataJSON as a String: {e}") from e
    if not isinstance(data, str):
        raise MalformedContent(reference, "postDataJSON literal was not a string")

    try:
        gallery = json.loads(data)
    except ValueError as e:
        raise MalformedContent(reference, f"Could not parse inner postDataJSON as a gallery: {e}") from e

    media = gallery.get("media") if isinstance(gallery, dict) else None
    if not isinstance(media, list):
        raise MalformedContent(reference, "Gallery had no media list")

    urls: List[str] = []
    for item in media:
        url = item.get("url") if isinstance(item, dict) else None
        if not isinstance(url, str):
            raise MalformedContent(reference, "Gallery media entry without a url")
        urls.append(url)

    return Gallery(source=reference, kind="imgur", media=urls)


def parse_reddit_gallery(reference: str, body: bytes) -> Gallery:
    """
    Reddit gallery pages carry their whole state as `window.___r = {...}`.

    Media live at posts.models.<id>.media.mediaMetadata.<id>.s.u
    """
    text = _script_text(
        reference,
        body,
        lambda t: t.lstrip().startswith(REDDIT_MARKER),
        f"Could not find script starting with {REDDIT_MARKER} in body.",
    )

    code = slice_between(text, "{", "}")
    if code is None:
        raise MalformedContent(reference, "Could not find embedded JSON object")

    try:
        state = json.loads(code)
    except ValueError as e:
        raise MalformedContent(reference, f"Could not parse reddit state: {e}") from e

    models = _dig(reference, state, "posts", "models")
    urls: List[str] = []
    for model in models.values():
        metadata = _dig(reference, model, "media", "mediaMetadata")
        for entry in metadata.values():
            url = _dig(reference, entry, "s").get("u")
            if not isinstance(url, str):
                raise MalformedContent(reference, "Media metadata without s.u")
            urls.append(html.unescape(url))

    return Gallery(source=reference, kind="reddit", media=urls)


def _script_text(reference: str, body: bytes, predicate, missing: str) -> str:
    try:
        document = decode_html(body)
    except ValueError as e:
        raise MalformedContent(reference, str(e)) from e

    text = find_script_text(document, predicate)
    if text is None:
        raise MalformedContent(reference, missing)
    return text


def _dig(reference: str, value: Any, *keys: str) -> dict:
    for key in keys:
        if not isinstance(value, dict):
            raise MalformedContent(reference, f"Expected an object above {key!r}")
        value = value.get(key)
    if not isinstance(value, dict):
        raise MalformedContent(reference, f"Expected {'.'.join(keys)} to be an object")
    return value
