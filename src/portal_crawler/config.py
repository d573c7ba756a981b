from dotenv import load_dotenv
from dataclasses import dataclass, field, asdict
from typing import List, Optional
from pathlib import Path
import json
import os

from portal_crawler.constants import CATEGORIES, TARGETS

load_dotenv()  # Loads variables from .env file


class Settings:
    """
    Manages application settings loaded from environment variables.
    """
    TWOCAPTCHA_API_KEY = os.getenv("TWOCAPTCHA_API_KEY")
    STATE_FILE = os.getenv("CRAWL_STATE_FILE", "state/crawler-state.json")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("LOG_FILE")


settings = Settings()


@dataclass
class CrawlConfig:
    """Tunable settings for a crawl run."""

    # Storage
    state_file: str = "state/crawler-state.json"
    output_dir: str = "output"
    artifacts_dir: Optional[str] = "artifacts"  # Diagnostic screenshots/HTML; None disables

    # Pacing (seconds)
    request_delay: float = 3.0
    jitter: float = 1.0

    # Browser
    headless: bool = True
    listing_engine: str = "chromium"  # Primary engine for listing pages
    item_engine: str = "webkit"  # Primary engine for item pages
    navigation_timeout: float = 60.0
    content_prefix_chars: int = 20000  # HTML kept on a snapshot for classification

    # Escalation ladder
    step_timeout: float = 120.0  # Hard cap per ladder step, including solving
    settle_seconds: float = 15.0  # How long to wait for a challenge to clear itself
    settle_poll_interval: float = 3.0
    engine_switch_delay: float = 5.0
    max_cycles: int = 1  # Full ladder passes per URL
    cycle_backoff: float = 10.0

    # Puzzle solving
    solver_service: str = "2captcha"  # '2captcha', 'mock' or 'none'
    captcha_api_key: Optional[str] = None
    solver_timeout: int = 120
    solver_poll_interval: float = 5.0

    # Scheduling
    max_listing_pages: int = 999  # Per unit per run
    categories: List[str] = field(default_factory=lambda: list(CATEGORIES))
    targets: List[str] = field(default_factory=lambda: list(TARGETS))
    allow_partial_phases: bool = False

    log_level: str = "INFO"

    def __post_init__(self):
        if self.captcha_api_key is None:
            self.captcha_api_key = settings.TWOCAPTCHA_API_KEY

    @classmethod
    def from_env(cls) -> "CrawlConfig":
        """Load configuration from environment variables.

        Environment variables are prefixed with CRAWL_,
        e.g. CRAWL_REQUEST_DELAY=5 or CRAWL_TARGETS=UK,Germany

        Returns:
            CrawlConfig with values from environment
        """
        config = cls(state_file=settings.STATE_FILE, log_level=settings.LOG_LEVEL)
        prefix = "CRAWL_"

        for field_name in config.__dataclass_fields__:
            env_value = os.getenv(f"{prefix}{field_name.upper()}")
            if env_value is not None:
                config._set_from_string(field_name, env_value)

        return config

    @classmethod
    def from_file(cls, path: str) -> "CrawlConfig":
        """Load configuration from a JSON file.

        The file may hold the fields at top level or under a "crawl" key.
        A missing file yields the defaults.
        """
        config = cls()
        file_path = Path(path)

        if not file_path.exists():
            return config

        with open(file_path, 'r') as f:
            data = json.load(f)

        section = data.get('crawl', data)
        for key, value in section.items():
            if key in config.__dataclass_fields__:
                setattr(config, key, value)

        return config

    def _set_from_string(self, field_name: str, raw: str) -> None:
        field_type = self.__dataclass_fields__[field_name].type
        try:
            if field_type == bool:
                setattr(self, field_name, raw.strip().lower() in ("1", "true", "yes", "on"))
            elif field_type == int:
                setattr(self, field_name, int(raw))
            elif field_type == float:
                setattr(self, field_name, float(raw))
            elif field_type == List[str]:
                setattr(self, field_name, [p.strip() for p in raw.split(",") if p.strip()])
            elif field_type == Optional[str]:
                setattr(self, field_name, raw or None)
            else:
                setattr(self, field_name, raw)
        except ValueError:
            pass  # Keep default if conversion fails

    def to_dict(self) -> dict:
        """Convert to dictionary, masking the solver key."""
        data = asdict(self)
        if data.get("captcha_api_key"):
            data["captcha_api_key"] = "***"
        return data

    def save_to_file(self, path: str) -> None:
        """Save configuration to a JSON file (without the solver key)."""
        data = asdict(self)
        data.pop("captcha_api_key", None)
        file_path = Path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, 'w') as f:
            json.dump({'crawl': data}, f, indent=2)
