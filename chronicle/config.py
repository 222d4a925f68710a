"""
Configuration - Environment-driven settings.

All knobs come from environment variables so the same build runs locally,
in tests, and behind the API without code changes.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
import logging
import os


@dataclass
class Settings:
    """Runtime settings, read once from the environment."""
    env: str = "development"
    data_dir: Path = field(default_factory=lambda: Path.home() / ".chronicle" / "saves")

    # Oracle proxy (empty URL means no network oracle is configured)
    oracle_url: str = ""
    oracle_model: str = "gemini-2.5-flash"
    oracle_image_model: str = "imagen-3.0-generate-002"
    oracle_api_key: str = ""
    oracle_timeout: float = 120.0

    save_debounce_seconds: float = 1.0
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from CHRONICLE_* environment variables."""
        data_dir = os.getenv("CHRONICLE_DATA_DIR")
        return cls(
            env=os.getenv("CHRONICLE_ENV", "development"),
            data_dir=Path(data_dir).expanduser() if data_dir else Path.home() / ".chronicle" / "saves",
            oracle_url=os.getenv("CHRONICLE_ORACLE_URL", ""),
            oracle_model=os.getenv("CHRONICLE_ORACLE_MODEL", "gemini-2.5-flash"),
            oracle_image_model=os.getenv("CHRONICLE_IMAGE_MODEL", "imagen-3.0-generate-002"),
            oracle_api_key=os.getenv("CHRONICLE_ORACLE_API_KEY", ""),
            oracle_timeout=float(os.getenv("CHRONICLE_ORACLE_TIMEOUT", "120")),
            save_debounce_seconds=float(os.getenv("CHRONICLE_SAVE_DEBOUNCE", "1.0")),
            allowed_origins=os.getenv("ALLOWED_ORIGINS", "*").split(","),
            log_level=os.getenv("CHRONICLE_LOG_LEVEL", "INFO"),
        )


def configure_logging(settings: Settings | None = None) -> None:
    """Set up root logging for the CLI and the API process."""
    level_name = (settings.log_level if settings else os.getenv("CHRONICLE_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
