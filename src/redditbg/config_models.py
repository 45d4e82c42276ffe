"""
Pydantic models for YAML configuration validation.
Provides schema validation with clear error messages for redditbg configurations.
"""

from __future__ import annotations
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

DEFAULT_USER_AGENT = "redditbg/0.3.0"


class ListingConfig(BaseModel):
    """Where references are harvested from."""
    base_url: str = Field("https://www.reddit.com", description="Listing API host")
    subreddits: List[str] = Field(..., description="Subreddits combined into one listing")
    sort: Literal["new", "hot", "top", "rising"] = Field("new", description="Listing order")
    page_limit: int = Field(100, ge=1, le=100, description="References requested per page")
    max_pages: int = Field(40, ge=1, le=1000, description="Maximum number of listing pages per run")
    delay_ms: int = Field(0, ge=0, le=60000, description="Delay between listing pages in milliseconds")

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v):
        if not v.startswith(('http://', 'https://')):
            raise ValueError('base_url must be a valid HTTP/HTTPS URL')
        return v.rstrip('/')

    @field_validator('subreddits')
    @classmethod
    def validate_subreddits(cls, v):
        cleaned = [s.strip() for s in v if s and s.strip()]
        if not cleaned:
            raise ValueError('subreddits cannot be empty')
        return list(dict.fromkeys(cleaned))  # Remove duplicates, keep order


class DisplayConfig(BaseModel):
    """Geometry accepted images must fit."""
    width: int = Field(1920, ge=1, description="Display width in pixels")
    height: int = Field(1080, ge=1, description="Display height in pixels")
    aspect_epsilon: float = Field(0.01, ge=0, le=1, description="Accepted aspect ratio difference")


class EngineConfig(BaseModel):
    """Resolver engine sizing."""
    target_count: int = Field(25, ge=1, le=10000, description="Images the store should hold")
    concurrency: int = Field(25, ge=1, le=256, description="Simultaneous in-flight resolutions")


class HttpConfig(BaseModel):
    """HTTP client settings."""
    user_agent: str = Field(DEFAULT_USER_AGENT, description="User-Agent header")
    timeout_s: float = Field(60, gt=0, description="Hard timeout per request")
    connect_timeout_s: float = Field(10, gt=0, description="Connect timeout per request")


class BackoffConfig(BaseModel):
    """Retry schedule shared by every network call."""
    steps: int = Field(10, ge=0, le=100, description="Retries before giving up")
    min_delay_s: float = Field(1.0, gt=0, description="First retry delay")
    max_delay_s: float = Field(15.0, gt=0, description="Last retry delay")
    jitter: float = Field(0.3, ge=0, lt=1, description="Relative random jitter")

    @model_validator(mode='after')
    def validate_bounds(self):
        if self.max_delay_s < self.min_delay_s:
            raise ValueError('max_delay_s must be >= min_delay_s')
        return self


class StorageConfig(BaseModel):
    """Where images and ledgers live."""
    images_dir: str = Field("~/.local/share/redditbg/images", description="Image store directory")
    ledger_backend: Literal["sqlite", "flat"] = Field("sqlite", description="Dedup ledger backend")
    ledger_path: str = Field("~/.local/share/redditbg/ledger.db", description="Ledger file (sqlite) or directory (flat)")


class PickerConfig(BaseModel):
    """Selection of the next background."""
    hash_ledger_path: str = Field("~/.local/share/redditbg/applied.db", description="Perceptual hash ledger")
    current_path: str = Field("~/.cache/redditbg_image.png", description="Where the applied image is copied")
    threshold: int = Field(4, ge=0, le=64, description="Hamming distance counted as the same image")
    set_command: Optional[List[str]] = Field(None, description="argv template; {path} is replaced")


class ScheduleConfig(BaseModel):
    """Configuration for scheduled execution."""
    enabled: bool = Field(False, description="Whether scheduling is enabled")
    interval_minutes: int = Field(60, ge=1, le=10080, description="Interval between runs in minutes")


class RedditBgConfig(BaseModel):
    """Root configuration model."""
    listing: ListingConfig
    display: DisplayConfig = Field(default_factory=DisplayConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    picker: PickerConfig = Field(default_factory=PickerConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    logging_config: str = Field("configs/logging.yaml", description="Logging dictConfig YAML")


def load_and_validate_config(config_path: str) -> RedditBgConfig:
    """
    Load and validate a redditbg configuration from YAML file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Validated RedditBgConfig object

    Raises:
        ValueError: If configuration is invalid or YAML is malformed
        FileNotFoundError: If config file doesn't exist
    """
    import yaml

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            raw_config = yaml.safe_load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}")

    try:
        return RedditBgConfig(**(raw_config or {}))
    except ValidationError as e:
        # One line per failing field, dotted path first
        error_messages = []
        for error in e.errors():
            field_path = '.'.join(str(loc) for loc in error['loc'])
            error_messages.append(f"  {field_path}: {error['msg']}")

        raise ValueError(
            f"Configuration validation failed for {config_path}:\n" +
            '\n'.join(error_messages)
        ) from e


def config_to_job(config: RedditBgConfig):
    """
    Convert validated config to the AcquireJob the pipeline runs.
    """
    from redditbg.core.models import AcquireJob, DisplayGeometry
    from redditbg.parse.listing import build_listing_url

    return AcquireJob(
        listing_url=build_listing_url(config.listing.base_url, config.listing.subreddits, config.listing.sort),
        page_limit=config.listing.page_limit,
        max_pages=config.listing.max_pages,
        delay_ms=config.listing.delay_ms,
        target_count=config.engine.target_count,
        concurrency=config.engine.concurrency,
        display=DisplayGeometry(config.display.width, config.display.height),
        aspect_epsilon=config.display.aspect_epsilon,
    )
