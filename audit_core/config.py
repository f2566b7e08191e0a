"""Configuration loader for the audit log viewer.

Reads an optional config.yaml and AUDITLOG_* environment variables and
returns a frozen AppConfig consumed by the API, the Streamlit app and the
local stores.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = BASE_DIR / "config.yaml"
ENV_PREFIX = "AUDITLOG_"

ROWS_PER_PAGE_OPTIONS: Tuple[int, ...] = (20, 50, 100, 200)


@dataclass(frozen=True)
class AppConfig:
    data_dir: Path = BASE_DIR / "data"
    collection_name: str = "saved_files"
    uploads_prefix: str = "uploads"
    public_base_url: str = "http://127.0.0.1:8000"
    rows_per_page_options: Tuple[int, ...] = ROWS_PER_PAGE_OPTIONS
    default_rows_per_page: int = ROWS_PER_PAGE_OPTIONS[0]
    upstream_timeout_seconds: float = 30.0
    log_level: str = "INFO"
    cors_origins: Tuple[str, ...] = field(default_factory=lambda: ("http://localhost:8501", "http://127.0.0.1:8501"))

    @property
    def documents_dir(self) -> Path:
        return self.data_dir / "documents"

    @property
    def blobs_dir(self) -> Path:
        return self.data_dir / "blobs"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the API and the Streamlit app."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _env(key: str, default: Any) -> Any:
    raw = os.getenv(f"{ENV_PREFIX}{key.upper()}")
    if raw is None:
        return default
    # bool must be checked before int
    if isinstance(default, bool):
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError:
            logger.warning("Ignoring non-integer %s%s=%r", ENV_PREFIX, key.upper(), raw)
            return default
    if isinstance(default, float):
        try:
            return float(raw)
        except ValueError:
            logger.warning("Ignoring non-numeric %s%s=%r", ENV_PREFIX, key.upper(), raw)
            return default
    if isinstance(default, tuple):
        return tuple(part.strip() for part in raw.split(",") if part.strip())
    return raw


def _as_int_tuple(values: Any, default: Tuple[int, ...]) -> Tuple[int, ...]:
    if not values:
        return default
    out = []
    for v in values:
        try:
            out.append(int(v))
        except (TypeError, ValueError):
            continue
    out = sorted({v for v in out if v > 0})
    return tuple(out) or default


def load_config(path: Optional[Path | str] = None) -> AppConfig:
    """Load configuration: environment variable > YAML file > default."""
    config_path = Path(path or os.getenv(f"{ENV_PREFIX}CONFIG") or DEFAULT_CONFIG_PATH)
    raw: dict = {}
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            logger.warning("Config file %s is not a mapping - using defaults", config_path)
            raw = {}
    elif path is not None:
        logger.warning("Config file not found at %s - using defaults", config_path)

    defaults = AppConfig()
    data_dir = Path(_env("data_dir", raw.get("data_dir", str(defaults.data_dir))))
    if not data_dir.is_absolute():
        data_dir = BASE_DIR / data_dir

    options = _as_int_tuple(
        _env("rows_per_page_options", tuple(raw.get("rows_per_page_options") or defaults.rows_per_page_options)),
        defaults.rows_per_page_options,
    )
    default_rows = int(_env("default_rows_per_page", raw.get("default_rows_per_page", options[0])))
    if default_rows not in options:
        default_rows = options[0]

    cors = _env("cors_origins", tuple(raw.get("cors_origins", defaults.cors_origins)))

    return AppConfig(
        data_dir=data_dir,
        collection_name=_env("collection_name", raw.get("collection_name", defaults.collection_name)),
        uploads_prefix=_env("uploads_prefix", raw.get("uploads_prefix", defaults.uploads_prefix)),
        public_base_url=str(_env("public_base_url", raw.get("public_base_url", defaults.public_base_url))).rstrip("/"),
        rows_per_page_options=options,
        default_rows_per_page=default_rows,
        upstream_timeout_seconds=float(
            _env("upstream_timeout_seconds", float(raw.get("upstream_timeout_seconds", defaults.upstream_timeout_seconds)))
        ),
        log_level=str(_env("log_level", raw.get("log_level", defaults.log_level))),
        cors_origins=tuple(cors),
    )
