import shutil
import tempfile
import unittest
from pathlib import Path

from redditbg.config_models import RedditBgConfig, config_to_job, load_and_validate_config
from redditbg.core.factory import ComponentFactory
from redditbg.core.models import DisplayGeometry
from redditbg.desktop import CommandBackgroundSetter, LoggingBackgroundSetter
from redditbg.main import build_setter, run_one


class TestConfigValidation(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write(self, text):
        path = Path(self.temp_dir) / "config.yaml"
        path.write_text(text, encoding="utf-8")
        return str(path)

    def test_minimal_config_gets_defaults(self):
        config = load_and_validate_config(self.write("listing:\n  subreddits: [wallpapers]\n"))

        self.assertEqual(config.engine.target_count, 25)
        self.assertEqual(config.engine.concurrency, 25)
        self.assertEqual(config.display.aspect_epsilon, 0.01)
        self.assertEqual(config.backoff.steps, 10)
        self.assertEqual(config.storage.ledger_backend, "sqlite")
        self.assertFalse(config.schedule.enabled)

    def test_config_to_job(self):
        config = RedditBgConfig(
            listing={"subreddits": ["wallpapers", "EarthPorn", "wallpapers"], "sort": "top", "max_pages": 3},
            display={"width": 2560, "height": 1440},
            engine={"target_count": 5, "concurrency": 7},
        )

        job = config_to_job(config)

        self.assertEqual(job.listing_url, "https://www.reddit.com/r/wallpapers+EarthPorn/top.json")
        self.assertEqual(job.max_pages, 3)
        self.assertEqual(job.display, DisplayGeometry(2560, 1440))
        self.assertEqual(job.target_count, 5)
        self.assertEqual(job.concurrency, 7)

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_and_validate_config(str(Path(self.temp_dir) / "nope.yaml"))

    def test_invalid_yaml(self):
        with self.assertRaises(ValueError):
            load_and_validate_config(self.write("listing: [unclosed\n"))

    def test_validation_errors_name_the_field(self):
        path = self.write("listing:\n  subreddits: []\nengine:\n  concurrency: 0\n")
        with self.assertRaises(ValueError) as ctx:
            load_and_validate_config(path)
        message = str(ctx.exception)
        self.assertIn("listing.subreddits", message)
        self.assertIn("engine.concurrency", message)

    def test_rejects_bad_base_url_and_backend(self):
        with self.assertRaises(ValueError):
            RedditBgConfig(listing={"subreddits": ["a"], "base_url": "ftp://example.com"})
        with self.assertRaises(ValueError):
            RedditBgConfig(listing={"subreddits": ["a"]}, storage={"ledger_backend": "redis"})
        with self.assertRaises(ValueError):
            RedditBgConfig(listing={"subreddits": ["a"]}, backoff={"min_delay_s": 5, "max_delay_s": 1})

    def test_sample_config_is_valid(self):
        sample = Path(__file__).resolve().parent.parent / "configs" / "redditbg.yaml"
        config = load_and_validate_config(str(sample))
        self.assertTrue(config.schedule.enabled)
        self.assertIsInstance(build_setter(config), CommandBackgroundSetter)


class TestFactoryAndCommands(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        root = Path(self.temp_dir)
        self.config = RedditBgConfig(
            listing={"subreddits": ["wallpapers"]},
            storage={"images_dir": str(root / "images"), "ledger_path": str(root / "ledger.db")},
            picker={"hash_ledger_path": str(root / "applied.db"), "current_path": str(root / "current.png")},
        )

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_backoff_policy_from_config(self):
        policy = ComponentFactory(self.config).backoff()
        self.assertEqual(policy.steps, 10)
        self.assertEqual(policy.min_delay_s, 1.0)
        self.assertEqual(policy.max_delay_s, 15.0)

    def test_store_is_created(self):
        store = ComponentFactory(self.config).store()
        self.assertTrue(store.directory.is_dir())

    def test_no_set_command_only_logs(self):
        self.assertIsInstance(build_setter(self.config), LoggingBackgroundSetter)

    def test_pick_with_empty_store_succeeds(self):
        self.assertTrue(run_one(self.config, "pick"))


if __name__ == "__main__":
    unittest.main()
