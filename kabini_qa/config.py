"""
Configuration management for kabini-qa.

Settings live in ~/.kabini/qa-config.json; environment variables (and a
project-local .env) override the API and storage locations.
"""

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Auto-load .env from project root
_project_root = Path(__file__).parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


CONFIG_PATH = Path.home() / ".kabini" / "qa-config.json"


def _filter_dataclass_fields(data: dict[str, Any], cls: type) -> dict[str, Any]:
    """Filter dict to only include fields that exist in the dataclass."""
    valid_fields = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in valid_fields}


@dataclass
class ApiConfig:
    """Configuration for the remote kabini API."""

    base_url: str = "http://localhost:5000/api"
    access_token: str | None = None
    timeout_seconds: float = 120.0


@dataclass
class CrawlConfig:
    """Bounds passed to the remote crawler."""

    max_pages: int = 50
    max_depth: int = 3
    timeout_ms: int = 30000


@dataclass
class GenerationConfig:
    """
    Defaults for question/answer generation.

    question_count is clamped to [min_question_count, max_question_count]
    before every generation call.
    """

    question_provider: str = "gemini"
    question_model: str = "gemini-1.5-flash"
    answer_provider: str = "gemini"
    answer_model: str = "gemini-1.5-flash"
    default_question_count: int = 1
    min_question_count: int = 1
    max_question_count: int = 10
    # Session statistics placeholders until real scoring has run
    placeholder_accuracy: str = "85"
    placeholder_citation_likelihood: str = "75"
    session_model: str = "gemini-pro"


@dataclass
class StorageConfig:
    """Configuration for the local key/value store."""

    path: str = "~/.kabini/local-storage.json"
    quota_bytes: int | None = None

    @property
    def resolved_path(self) -> Path:
        return Path(self.path).expanduser()


@dataclass
class KabiniConfig:
    """Complete kabini-qa configuration."""

    api: ApiConfig = field(default_factory=ApiConfig)
    crawl: CrawlConfig = field(default_factory=CrawlConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> "KabiniConfig":
        """
        Load configuration from file, then apply environment overrides.

        Args:
            path: Optional config file path. Defaults to ~/.kabini/qa-config.json

        Returns:
            KabiniConfig with user settings merged over defaults
        """
        if path is None:
            path = CONFIG_PATH

        data: dict[str, Any] = {}
        if path.exists():
            try:
                data = json.loads(path.read_text())
            except (json.JSONDecodeError, OSError):
                # Use defaults on error
                data = {}

        config = cls(
            api=ApiConfig(**_filter_dataclass_fields(data.get("api", {}), ApiConfig)),
            crawl=CrawlConfig(**_filter_dataclass_fields(data.get("crawl", {}), CrawlConfig)),
            generation=GenerationConfig(
                **_filter_dataclass_fields(data.get("generation", {}), GenerationConfig)
            ),
            storage=StorageConfig(**_filter_dataclass_fields(data.get("storage", {}), StorageConfig)),
        )
        config.apply_env()
        return config

    def apply_env(self) -> None:
        """Apply KABINI_* environment overrides."""
        if os.getenv("KABINI_API_URL"):
            self.api.base_url = os.environ["KABINI_API_URL"]
        if os.getenv("KABINI_ACCESS_TOKEN"):
            self.api.access_token = os.environ["KABINI_ACCESS_TOKEN"]
        if os.getenv("KABINI_STORE_PATH"):
            self.storage.path = os.environ["KABINI_STORE_PATH"]

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = CONFIG_PATH

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(
                {
                    "api": {
                        "base_url": self.api.base_url,
                        "timeout_seconds": self.api.timeout_seconds,
                    },
                    "crawl": self.crawl.__dict__,
                    "generation": self.generation.__dict__,
                    "storage": self.storage.__dict__,
                },
                f,
                indent=2,
            )

    def clamp_question_count(self, count: int) -> int:
        gen = self.generation
        return max(gen.min_question_count, min(gen.max_question_count, count))


# Default configuration instance
default_config = KabiniConfig()
