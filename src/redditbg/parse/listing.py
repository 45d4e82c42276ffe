from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from redditbg.core.models import ListingPage


def build_listing_url(base_url: str, subreddits: Iterable[str], sort: str = "new") -> str:
    """Combine several subreddits into one multireddit listing URL."""
    names = [s.strip().strip("/") for s in subreddits if s and s.strip()]
    if not names:
        raise ValueError("At least one subreddit is required")
    names = [n[2:] if n.startswith("r/") else n for n in names]
    return f"{base_url.rstrip('/')}/r/{'+'.join(names)}/{sort}.json"


def listing_params(after: Optional[str], limit: int = 100) -> Dict[str, Any]:
    """Query parameters for one listing request."""
    params: Dict[str, Any] = {"limit": limit, "raw_json": 1}
    if after:
        params["after"] = after
    return params


def parse_listing_page(payload: Any) -> ListingPage:
    """
    Parse a reddit listing into a page of references.

    Expected shape: {"data": {"children": [{"data": {"url", "over_18"}}], "after": str|null}}.
    Items flagged over_18 are dropped here, before they ever reach the stream.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
        raise ValueError("Toplevel was not a listing")

    data = payload["data"]
    children = data.get("children")
    if not isinstance(children, list):
        raise ValueError("Toplevel data did not contain children")

    references: List[str] = []
    for child in children:
        post = child.get("data") if isinstance(child, dict) else None
        if not isinstance(post, dict):
            continue

        url = post.get("url")
        if not isinstance(url, str) or not url.strip():
            continue

        if post.get("over_18") is True:
            continue

        references.append(url.strip())

    after = data.get("after")
    if not isinstance(after, str) or not after:
        after = None

    return ListingPage(next_page_token=after, references=references)
