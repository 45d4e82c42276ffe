import unittest
from unittest.mock import AsyncMock

from redditbg.fetch.listing import ListingState, ListingStream
from redditbg.http.policies import RateLimiter
from redditbg.parse.listing import build_listing_url, listing_params, parse_listing_page

from fakes import FakeClient, listing_payload

URL = "https://www.reddit.com/r/wallpapers/new.json"


async def collect(stream):
    return [ref async for ref in stream]


class TestParseListingPage(unittest.TestCase):
    def test_single_child_last_page(self):
        payload = {"data": {"children": [{"data": {"url": "http://x/a.png", "over_18": False}}], "after": None}}
        page = parse_listing_page(payload)
        self.assertEqual(page.references, ["http://x/a.png"])
        self.assertIsNone(page.next_page_token)
        self.assertTrue(page.is_last)

    def test_over_18_filtered_and_urlless_children_skipped(self):
        payload = {
            "data": {
                "children": [
                    {"data": {"url": "http://x/safe.png", "over_18": False}},
                    {"data": {"url": "http://x/nsfw.png", "over_18": True}},
                    {"data": {"title": "self post"}},
                    {"kind": "t3"},
                ],
                "after": "t3_next",
            }
        }
        page = parse_listing_page(payload)
        self.assertEqual(page.references, ["http://x/safe.png"])
        self.assertEqual(page.next_page_token, "t3_next")

    def test_non_listing_raises(self):
        with self.assertRaises(ValueError):
            parse_listing_page({"error": 404})
        with self.assertRaises(ValueError):
            parse_listing_page({"data": {"after": None}})
        with self.assertRaises(ValueError):
            parse_listing_page([1, 2, 3])

    def test_build_listing_url_joins_subreddits(self):
        url = build_listing_url("https://www.reddit.com/", ["wallpapers", "r/EarthPorn", " "])
        self.assertEqual(url, "https://www.reddit.com/r/wallpapers+EarthPorn/new.json")
        with self.assertRaises(ValueError):
            build_listing_url("https://www.reddit.com", [])

    def test_listing_params(self):
        self.assertEqual(listing_params(None, 50), {"limit": 50, "raw_json": 1})
        self.assertEqual(listing_params("t3_x")["after"], "t3_x")


class TestListingStream(unittest.IsolatedAsyncioTestCase):
    async def test_single_page_yields_one_reference_then_exhausts(self):
        client = FakeClient(
            pages={None: {"data": {"children": [{"data": {"url": "http://x/a.png", "over_18": False}}], "after": None}}}
        )
        stream = ListingStream(client, URL)
        self.assertIs(stream.state, ListingState.NEED_MORE)

        self.assertEqual(await stream.__anext__(), "http://x/a.png")
        with self.assertRaises(StopAsyncIteration):
            await stream.__anext__()
        self.assertIs(stream.state, ListingState.EXHAUSTED)
        self.assertEqual(len(client.json_requests), 1)

        # Terminal state: no re-querying of the last page
        with self.assertRaises(StopAsyncIteration):
            await stream.__anext__()
        self.assertEqual(len(client.json_requests), 1)

    async def test_follows_page_tokens_popping_from_the_end(self):
        client = FakeClient(
            pages={
                None: listing_payload(["a", "b"], after="t3_b"),
                "t3_b": listing_payload(["c"], after=None),
            }
        )
        stream = ListingStream(client, URL)

        refs = await collect(stream)

        self.assertEqual(refs, ["b", "a", "c"])
        self.assertEqual([p.get("after") for p in client.json_requests], [None, "t3_b"])
        self.assertEqual(stream.pages_fetched, 2)

    async def test_fetched_state_while_buffer_has_items(self):
        client = FakeClient(pages={None: listing_payload(["a", "b"], after=None)})
        stream = ListingStream(client, URL)

        await stream.__anext__()
        self.assertIs(stream.state, ListingState.FETCHED)

    async def test_empty_page_with_token_requests_next(self):
        client = FakeClient(
            pages={
                None: listing_payload([], after="t3_1"),
                "t3_1": listing_payload(["z"], after=None),
            }
        )
        self.assertEqual(await collect(ListingStream(client, URL)), ["z"])

    async def test_nsfw_never_enters_the_stream(self):
        client = FakeClient(pages={None: listing_payload(["ok", "bad"], nsfw=["bad"])})
        self.assertEqual(await collect(ListingStream(client, URL)), ["ok"])

    async def test_failed_first_page_exhausts_without_raising(self):
        client = FakeClient(pages={})
        stream = ListingStream(client, URL)

        self.assertEqual(await collect(stream), [])
        self.assertIs(stream.state, ListingState.EXHAUSTED)
        self.assertTrue(stream.failed_before_first_page)

    async def test_failed_later_page_keeps_what_was_emitted(self):
        client = FakeClient(pages={None: listing_payload(["a"], after="t3_a")})
        stream = ListingStream(client, URL)

        self.assertEqual(await collect(stream), ["a"])
        self.assertIs(stream.state, ListingState.EXHAUSTED)
        self.assertFalse(stream.failed_before_first_page)
        self.assertIsNotNone(stream.last_error)

    async def test_malformed_page_exhausts(self):
        client = FakeClient(pages={None: {"kind": "nope"}})
        stream = ListingStream(client, URL)
        self.assertEqual(await collect(stream), [])
        self.assertIsInstance(stream.last_error, ValueError)

    async def test_max_pages_bounds_the_walk(self):
        client = FakeClient(
            pages={
                None: listing_payload(["a"], after="t1"),
                "t1": listing_payload(["b"], after="t2"),
                "t2": listing_payload(["c"], after=None),
            }
        )
        stream = ListingStream(client, URL, max_pages=2)
        self.assertEqual(await collect(stream), ["a", "b"])
        self.assertEqual(len(client.json_requests), 2)

    async def test_delay_between_pages(self):
        sleep = AsyncMock()
        client = FakeClient(
            pages={
                None: listing_payload(["a"], after="t1"),
                "t1": listing_payload(["b"], after=None),
            }
        )
        stream = ListingStream(client, URL, limiter=RateLimiter(500, sleep=sleep))

        await collect(stream)

        sleep.assert_awaited_once_with(0.5)


if __name__ == "__main__":
    unittest.main()
