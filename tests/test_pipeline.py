import shutil
import tempfile
import unittest
from pathlib import Path

from redditbg.config_models import RedditBgConfig
from redditbg.core.errors import LedgerError, ListingUnavailable
from redditbg.core.factory import ComponentFactory
from redditbg.core.models import LedgerStatus
from redditbg.core.pipeline import acquire
from redditbg.state import SQLiteDedupLedger, open_ledger
from redditbg.utils.hashing import reference_identity

from fakes import FakeClient, listing_payload, png_bytes


class LedgerLostAfterFirstImage(SQLiteDedupLedger):
    def __init__(self, path):
        super().__init__(path)
        self.accepted = 0

    def insert_identity(self, identity, status):
        self.accepted += 1
        if self.accepted > 1:
            raise LedgerError("database disk image is malformed")
        super().insert_identity(identity, status)


class LosingLedgerFactory(ComponentFactory):
    def ledger(self):
        return LedgerLostAfterFirstImage(self.config.storage.ledger_path)


class TestAcquire(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.root = Path(self.temp_dir)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def config(self, backend="sqlite", target_count=3):
        ledger_path = self.root / ("ledger.db" if backend == "sqlite" else "ledger")
        return RedditBgConfig(
            listing={"subreddits": ["wallpapers"], "page_limit": 2, "max_pages": 5},
            display={"width": 32, "height": 18},
            engine={"target_count": target_count, "concurrency": 2},
            storage={
                "images_dir": str(self.root / "images"),
                "ledger_backend": backend,
                "ledger_path": str(ledger_path),
            },
        )

    def open_ledger(self, config):
        return open_ledger(config.storage.ledger_backend, config.storage.ledger_path)

    async def test_end_to_end_then_idempotent(self):
        refs = ["http://x/a.png", "http://x/b.png", "http://x/square.png"]
        client = FakeClient(
            bodies={refs[0]: png_bytes(64, 36), refs[1]: png_bytes(64, 36), refs[2]: png_bytes(30, 30)},
            pages={None: listing_payload(refs[:2], after="t3_b"), "t3_b": listing_payload(refs[2:], after=None)},
        )
        config = self.config()

        accepted = await acquire(config, client=client)

        self.assertEqual(accepted, 2)
        self.assertFalse(client.closed)
        self.assertEqual(len(list((self.root / "images").glob("*.png"))), 2)
        ledger = self.open_ledger(config)
        self.assertEqual(ledger.status_of(refs[0]), LedgerStatus.DOWNLOADED)
        self.assertEqual(ledger.status_of(refs[2]), LedgerStatus.INVALID)

        fetched_before = list(client.requested)
        self.assertEqual(await acquire(config, client=client), 0)
        self.assertEqual(client.requested, fetched_before)

    async def test_flat_ledger_is_flushed(self):
        ref = "http://x/a.png"
        client = FakeClient(bodies={ref: png_bytes(64, 36)}, pages={None: listing_payload([ref])})
        config = self.config(backend="flat")

        self.assertEqual(await acquire(config, client=client), 1)

        text = (self.root / "ledger" / "downloaded.txt").read_text(encoding="utf-8")
        self.assertIn(reference_identity(ref), text)

    async def test_store_contents_are_reconciled_into_the_ledger(self):
        manual = "http://x/manual.png"
        images = self.root / "images"
        images.mkdir(parents=True)
        (images / f"{reference_identity(manual)}.png").write_bytes(png_bytes(32, 18))
        client = FakeClient(pages={None: listing_payload([])})
        config = self.config()

        self.assertEqual(await acquire(config, client=client), 0)

        self.assertEqual(self.open_ledger(config).status_of(manual), LedgerStatus.DOWNLOADED)

    async def test_unreachable_listing_raises(self):
        client = FakeClient(pages={})
        config = self.config()

        with self.assertRaises(ListingUnavailable):
            await acquire(config, client=client)
        self.assertTrue((self.root / "ledger.db").exists())

    async def test_full_store_returns_zero_without_fetching(self):
        images = self.root / "images"
        images.mkdir(parents=True)
        (images / f"{reference_identity('http://x/old.png')}.png").write_bytes(png_bytes(32, 18))
        client = FakeClient(pages={None: listing_payload(["http://x/new.png"])})

        self.assertEqual(await acquire(self.config(target_count=1), client=client), 0)
        self.assertEqual(client.requested, [])

    async def test_ledger_failure_after_quota_aborts_the_run(self):
        fast, slow = "http://x/fast.png", "http://x/slow.png"
        client = FakeClient(
            bodies={fast: png_bytes(64, 36), slow: png_bytes(64, 36)},
            pages={None: listing_payload([slow, fast])},
            delays={slow: 0.2},
        )
        config = self.config(target_count=1)

        with self.assertRaises(LedgerError):
            await acquire(config, factory=LosingLedgerFactory(config), client=client)
        self.assertEqual(sorted(client.requested), [fast, slow])


if __name__ == "__main__":
    unittest.main()
