"""Environment-driven settings for the channel directory."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

DEFAULT_CHUNK_SIZE = 15
DEFAULT_WORKERS = 3
DEFAULT_ITEM_DELAY = 1.0
DEFAULT_HTTP_TIMEOUT = 10.0


def _split_list(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    cleaned: List[str] = []
    for item in value.split(","):
        item = item.strip()
        if item:
            cleaned.append(item)
    return tuple(cleaned)


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    categories: Tuple[str, ...] = ()
    geos: Tuple[str, ...] = ()
    bot_token: str = ""
    ads_hash: str = ""
    stel_ssid: str = ""
    stel_token: str = ""
    openai_api_key: str = ""
    openai_model: str = ""
    db_path: Path = Path("./data")
    log_level: str = "INFO"
    chunk_size: int = DEFAULT_CHUNK_SIZE
    workers: int = DEFAULT_WORKERS
    item_delay: float = DEFAULT_ITEM_DELAY
    http_timeout: float = DEFAULT_HTTP_TIMEOUT

    @property
    def database_url(self) -> str:
        return f"sqlite:///{(self.db_path / 'channels.db').resolve()}"

    @property
    def classifier_enabled(self) -> bool:
        return bool(self.openai_api_key and self.openai_model)

    def available_categories(self) -> List[str]:
        return list(self.categories)

    def available_geos(self) -> List[str]:
        return [geo.lower() for geo in self.geos]


def load_settings() -> Settings:
    """Build settings from the current process environment."""

    return Settings(
        categories=_split_list(os.getenv("APP_AVAILABLE_CATEGORIES")),
        geos=_split_list(os.getenv("APP_AVAILABLE_GEOS")),
        bot_token=os.getenv("APP_TELEGRAM_BOT_TOKEN", "").strip(),
        ads_hash=os.getenv("APP_TELEGRAM_ADS_HASH", "").strip(),
        stel_ssid=os.getenv("APP_TELEGRAM_STEL_SSID", "").strip(),
        stel_token=os.getenv("APP_TELEGRAM_STEL_TOKEN", "").strip(),
        openai_api_key=os.getenv("APP_OPENAI_API_KEY", "").strip(),
        openai_model=os.getenv("APP_OPENAI_API_MODEL", "").strip(),
        db_path=Path(os.getenv("DB_PATH", "./data")),
        log_level=os.getenv("APP_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        chunk_size=max(1, _get_int("ENRICH_CHUNK_SIZE", DEFAULT_CHUNK_SIZE)),
        workers=max(1, _get_int("ENRICH_WORKERS", DEFAULT_WORKERS)),
        item_delay=max(0.0, _get_float("ENRICH_ITEM_DELAY", DEFAULT_ITEM_DELAY)),
        http_timeout=max(1.0, _get_float("HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT)),
    )


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level)
        return
    logging.basicConfig(level=level, format=LOG_FORMAT)
