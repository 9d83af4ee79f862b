"""Application settings.

Reads configuration from the environment, after loading a `.env` file at the
repository root when one exists:

- WIKIBASE_API_URL: action API used for entities, claims and search
- RECONCILE_PRIMARY_URL / RECONCILE_FALLBACK_URL: reconciliation endpoints
- ENTITY_PAGE_URL: prefix used to build candidate URLs
- KB_LANGUAGE: language for labels and descriptions
- PROPERTY_CACHE_TTL_SECONDS: property cache time-to-live
- HTTP_TIMEOUT_SECONDS: per-request transport timeout
- AUTO_ADVANCE / AUTO_ADVANCE_DELAY_MS: advance to the next cell after auto-accept
- IGNORE_KEY_PATTERNS: comma separated key patterns routed to "ignored"
- IGNORE_KEYS_FILE: optional JSON file {"ignoredKeyPatterns": [...]}
- LOG_LEVEL / LOG_JSON: logging setup
"""

import json
import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

REPO_ROOT = Path(__file__).resolve().parents[1]

env_path = REPO_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)


DEFAULT_IGNORE_PATTERNS = ["o:"]


class Settings(BaseModel):
    """Runtime configuration for the mapping tool."""
    wikibase_api_url: str = Field(default="https://www.wikidata.org/w/api.php")
    reconcile_primary_url: str = Field(default="https://wikidata.reconci.link/en/api")
    reconcile_fallback_url: str = Field(default="https://tools.wmflabs.org/openrefine-wikidata/en/api")
    entity_page_url: str = Field(default="https://www.wikidata.org/wiki/")
    language: str = Field(default="en")

    property_cache_ttl_seconds: float = Field(default=3600.0, description="Property cache TTL")
    http_timeout_seconds: float = Field(default=30.0)

    auto_advance: bool = Field(default=True, description="Advance to next cell after auto-accept")
    auto_advance_delay_ms: int = Field(default=300)

    ignore_key_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))

    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_ignore_patterns(path: Optional[Path] = None) -> List[str]:
    """Load ignore patterns from IGNORE_KEYS_FILE or IGNORE_KEY_PATTERNS.

    Falls back to the default ["o:"] when the file is missing or unreadable.
    """
    file_name = path or os.getenv("IGNORE_KEYS_FILE")
    if file_name:
        file_path = Path(file_name)
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                settings = json.load(f)
            patterns = settings.get("ignoredKeyPatterns")
            if isinstance(patterns, list) and patterns:
                return [str(p) for p in patterns]
        except (OSError, ValueError, AttributeError) as e:
            logging.getLogger(__name__).warning(f"Could not read ignore patterns from {file_path}: {e}")
        return list(DEFAULT_IGNORE_PATTERNS)

    raw = os.getenv("IGNORE_KEY_PATTERNS")
    if raw:
        patterns = [p.strip() for p in raw.split(",") if p.strip()]
        if patterns:
            return patterns
    return list(DEFAULT_IGNORE_PATTERNS)


def load_settings() -> Settings:
    """Build Settings from environment variables."""
    defaults = Settings()
    return Settings(
        wikibase_api_url=os.getenv("WIKIBASE_API_URL", defaults.wikibase_api_url),
        reconcile_primary_url=os.getenv("RECONCILE_PRIMARY_URL", defaults.reconcile_primary_url),
        reconcile_fallback_url=os.getenv("RECONCILE_FALLBACK_URL", defaults.reconcile_fallback_url),
        entity_page_url=os.getenv("ENTITY_PAGE_URL", defaults.entity_page_url),
        language=os.getenv("KB_LANGUAGE", defaults.language),
        property_cache_ttl_seconds=float(
            os.getenv("PROPERTY_CACHE_TTL_SECONDS", defaults.property_cache_ttl_seconds)
        ),
        http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", defaults.http_timeout_seconds)),
        auto_advance=_env_bool("AUTO_ADVANCE", defaults.auto_advance),
        auto_advance_delay_ms=int(os.getenv("AUTO_ADVANCE_DELAY_MS", defaults.auto_advance_delay_ms)),
        ignore_key_patterns=load_ignore_patterns(),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        log_json=_env_bool("LOG_JSON", defaults.log_json),
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the process-wide settings (loaded once)."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
