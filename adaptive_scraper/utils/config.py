"""
Configuration management for adaptive_scraper.
Loads and validates settings from YAML files and environment variables.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "ADAPTIVE_SCRAPER_"


class GeneralConfig(BaseModel):
    """General configuration."""

    project_name: str = "adaptive_scraper"
    version: str = "0.1.0"
    log_level: str = "INFO"
    logs_dir: str = "logs"


class CrawlerConfig(BaseModel):
    """HTTP fetch and method selection configuration."""

    request_timeout: int = 30
    max_fetch_time: float = 120.0  # HTTP plus automation navigation for one target
    delay_min: float = 0.5
    delay_max: float = 2.0
    rate_limit_domains: int = 1024  # Sites whose last request time is remembered
    min_content_length: int = 1000  # Shorter HTTP bodies escalate to automation
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    accept_language: str = "en-US,en;q=0.9"
    protected_domains: list[str] = Field(default_factory=list)


class BrowserConfig(BaseModel):
    """Automation browser and session pool configuration."""

    headless: bool = True
    viewport_width: int = 1920
    viewport_height: int = 1080
    navigation_timeout: int = 60
    max_pool_size: int = Field(default=5, ge=1)
    acquire_timeout: float = 60.0
    health_check_timeout: float = 5.0


class BypassConfig(BaseModel):
    """Anti-bot challenge handling configuration."""

    model_config = ConfigDict(extra="forbid")

    challenge_timeout: float = 15.0
    poll_interval: float = 2.0
    datadome_timeout: float = 20.0
    datadome_poll_interval: float = 1.0
    stabilize_delay: float = 2.0
    pre_navigation_delay_min: float = 0.5
    pre_navigation_delay_max: float = 2.0
    default_referrer: str = "https://www.google.com/"
    poll_actions: int = 1  # Human-like actions between clearance polls
    capture_actions: int = 2  # Human-like actions before the content is read
    denied_domains: list[str] = Field(default_factory=list)
    trusted_domains: list[str] = Field(default_factory=list)


class DynamicLinksConfig(BaseModel):
    """Dynamic link discovery budgets."""

    model_config = ConfigDict(extra="forbid")

    max_containers: int = 5
    max_triggers: int = 50
    max_pagination: int = 3
    max_filters: int = 2
    min_links: int = 20
    settle_time: float = 3.0
    throttle_every: int = 10
    throttle_pause: float = 0.5
    script_timeout: float = 10.0
    max_resolve_time: float = 90.0  # No new trigger fires after this many seconds


class RedirectConfig(BaseModel):
    """Unwrapping of aggregator and shortener links found during discovery."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    max_redirects: int = 5
    timeout: float = 10.0
    concurrency: int = 4
    likelihood_threshold: float = 0.6  # Links scoring below this are left alone
    max_scan_chars: int = 20000  # Body prefix searched for meta/script redirects


class ExtractionConfig(BaseModel):
    """Structure detection and content extraction thresholds."""

    ai_excerpt_max_chars: int = 45000
    min_primary_content_chars: int = 100
    min_fallback_content_chars: int = 200
    min_heuristic_content_chars: int = 200
    min_valid_content_chars: int = 200
    min_block_chars: int = 40


class LLMConfig(BaseModel):
    """LLM configuration for structure inference and link filtering."""

    enabled: bool = True
    ollama_host: str = "http://localhost:11434"
    model: str = "qwen2.5:3b"
    temperature: float = 0.2
    timeout: float = 60.0
    max_links_for_filter: int = 200


class Settings(BaseModel):
    """Main settings container."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    bypass: BypassConfig = Field(default_factory=BypassConfig)
    dynamic_links: DynamicLinksConfig = Field(default_factory=DynamicLinksConfig)
    redirects: RedirectConfig = Field(default_factory=RedirectConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Override dictionary.

    Returns:
        Merged dictionary.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _load_yaml_config(config_dir: Path) -> dict[str, Any]:
    """Load settings.yaml and apply the ``settings`` section of local.yaml.

    Example local.yaml:
        settings:
          crawler:
            protected_domains: ["example.com"]

    Args:
        config_dir: Configuration directory path.

    Returns:
        Merged configuration dictionary.
    """
    config = _read_yaml(config_dir / "settings.yaml")
    local_overrides = _read_yaml(config_dir / "local.yaml")
    if isinstance(local_overrides.get("settings"), dict):
        config = _deep_merge(config, local_overrides["settings"])
    return config


def _parse_env_value(value: str) -> Any:
    try:
        if value.lower() in ("true", "false"):
            return value.lower() == "true"
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides.

    Environment variables are prefixed with ADAPTIVE_SCRAPER_ and use
    double underscores for nested keys.

    Example:
        ADAPTIVE_SCRAPER_BROWSER__MAX_POOL_SIZE=3

    Args:
        config: Configuration dictionary.

    Returns:
        Configuration with environment overrides.
    """
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX) or key == f"{ENV_PREFIX}CONFIG_DIR":
            continue

        key_path = key[len(ENV_PREFIX) :].lower().split("__")

        current = config
        for part in key_path[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[key_path[-1]] = _parse_env_value(value)

    return config


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings.

    Settings are loaded from:
    1. Default values
    2. config/settings.yaml (+ config/local.yaml)
    3. Environment variables (highest priority)

    Returns:
        Settings instance.
    """
    config_dir = Path(os.environ.get(f"{ENV_PREFIX}CONFIG_DIR", "config"))
    config = _load_yaml_config(config_dir)
    config = _apply_env_overrides(config)
    return Settings(**config)


def get_project_root() -> Path:
    """Get the project root directory.

    Returns:
        Project root path.
    """
    # This file lives at adaptive_scraper/utils/config.py
    return Path(__file__).parent.parent.parent
