from __future__ import annotations

import asyncio
import subprocess
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from redditbg.config_models import RedditBgConfig, load_and_validate_config
from redditbg.core.errors import RedditBgError
from redditbg.core.factory import ComponentFactory
from redditbg.core.pipeline import acquire
from redditbg.desktop import BackgroundSetter, CommandBackgroundSetter, LoggingBackgroundSetter
from redditbg.picker import PerceptualHashLedger, Picker
from redditbg.utils.logging import get_logger, setup_logging
from redditbg.utils.paths import expand

COMMANDS = ("acquire", "pick", "cycle")

log = get_logger("redditbg.main")


def build_setter(config: RedditBgConfig) -> BackgroundSetter:
    """Create the background setter from the picker configuration."""
    if config.picker.set_command:
        return CommandBackgroundSetter(config.picker.set_command)
    return LoggingBackgroundSetter()


def run_acquire(config: RedditBgConfig) -> int:
    """Fetch new images into the store."""
    log.info("Fetching new posts...")
    accepted = asyncio.run(acquire(config))
    log.info("Fetched %s new images", accepted)
    return accepted


def run_pick(config: RedditBgConfig) -> Optional[Path]:
    """Pick one stored image and apply it."""
    store = ComponentFactory(config).store()
    hashes = PerceptualHashLedger(str(expand(config.picker.hash_ledger_path)))
    picker = Picker(store, hashes, expand(config.picker.current_path), threshold=config.picker.threshold)

    path = picker.pick()
    if path is None:
        return None

    build_setter(config).set(path)
    log.info("Set background successfully")
    return path


def run_one(config: RedditBgConfig, command: str = "cycle") -> bool:
    """
    Run a single command, logging failures instead of raising them.

    In a cycle a failed acquisition still lets the picker use what is already stored.
    """
    steps = []
    if command in ("acquire", "cycle"):
        steps.append(("acquire", run_acquire))
    if command in ("pick", "cycle"):
        steps.append(("pick", run_pick))

    ok = True
    for name, step in steps:
        try:
            step(config)
        except (RedditBgError, subprocess.SubprocessError, OSError) as e:
            log.error("%s failed: %s: %s", name, type(e).__name__, e)
            ok = False
    return ok


def run_schedule(config: RedditBgConfig, command: str) -> None:
    """Run a command on the configured interval."""
    scheduler = BlockingScheduler()

    interval_minutes = config.schedule.interval_minutes
    log.info("Scheduling %s every %s minutes", command, interval_minutes)

    scheduler.add_job(
        run_one,
        trigger=IntervalTrigger(minutes=interval_minutes),
        args=[config, command],
        id=f"redditbg_{command}",
        name=f"Scheduled redditbg {command}",
        next_run_time=datetime.now(),
        max_instances=1,
        coalesce=True,
    )

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        log.info("Scheduler stopped by user")


def main() -> None:
    """Main entry point for redditbg."""
    if len(sys.argv) < 2:
        print(f"Usage: redditbg configs/redditbg.yaml [{'|'.join(COMMANDS)}]")
        raise SystemExit(2)

    config_path = sys.argv[1]
    command = sys.argv[2] if len(sys.argv) > 2 else "cycle"
    if command not in COMMANDS:
        print(f"Unknown command {command!r}; expected one of: {', '.join(COMMANDS)}")
        raise SystemExit(2)

    try:
        config = load_and_validate_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        raise SystemExit(1)

    setup_logging(config.logging_config)

    if config.schedule.enabled:
        run_schedule(config, command)
    elif not run_one(config, command):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
