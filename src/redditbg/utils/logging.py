from __future__ import annotations
import logging
import logging.config
from pathlib import Path
import yaml

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(config_path: str = "configs/logging.yaml") -> None:
    """Setup logging configuration from YAML file."""
    path = Path(config_path)
    if not path.exists():
        # No config file: console only
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        return

    with path.open("r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f)

    # File handlers need their directory before dictConfig opens them
    for handler in (cfg.get("handlers") or {}).values():
        filename = handler.get("filename")
        if filename:
            Path(filename).expanduser().parent.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(cfg)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
