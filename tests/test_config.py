"""
Tests for settings loading.

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|---------------------|---------------------------------------|-----------------|-------|
| TC-N-01 | Repository config dir | Equivalence – normal | Defaults from settings.yaml | - |
| TC-N-02 | local.yaml settings section | Equivalence – normal | Nested override merged | - |
| TC-N-03 | Env var with __ nesting | Equivalence – normal | Typed override applied | - |
| TC-N-04 | Env bool/float values | Equivalence – normal | Parsed to bool/float | - |
| TC-B-01 | Missing config dir | Boundary – empty | Model defaults | - |
| TC-A-01 | Unknown bypass key | Equivalence – abnormal | ValidationError | extra=forbid |
| TC-A-02 | Pool size 0 | Boundary – min | ValidationError | ge=1 |
"""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from adaptive_scraper.utils.config import (
    BrowserConfig,
    Settings,
    _apply_env_overrides,
    _deep_merge,
    _parse_env_value,
    get_settings,
)


class TestGetSettings:
    """Tests for get_settings()."""

    # =========================================================================
    # TC-N-01: Repository defaults
    # =========================================================================
    def test_loads_repository_settings(self) -> None:
        """
        Given: ADAPTIVE_SCRAPER_CONFIG_DIR pointing at config/
        When: get_settings() is called
        Then: Values from settings.yaml are loaded
        """
        settings = get_settings()

        assert settings.general.project_name == "adaptive_scraper"
        assert settings.browser.max_pool_size == 5
        assert settings.dynamic_links.min_links == 20
        assert settings.crawler.min_content_length == 1000

    def test_settings_are_cached(self) -> None:
        """
        Given: Two calls to get_settings()
        When: Comparing the results
        Then: The same instance is returned
        """
        assert get_settings() is get_settings()

    # =========================================================================
    # TC-N-02: local.yaml overrides
    # =========================================================================
    def test_local_yaml_overrides(self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """
        Given: settings.yaml and a local.yaml with a settings section
        When: get_settings() is called
        Then: Nested keys from local.yaml win, siblings are kept
        """
        (temp_dir / "settings.yaml").write_text(
            yaml.safe_dump({"crawler": {"request_timeout": 10, "min_content_length": 500}})
        )
        (temp_dir / "local.yaml").write_text(
            yaml.safe_dump({"settings": {"crawler": {"protected_domains": ["example.com"]}}})
        )
        monkeypatch.setenv("ADAPTIVE_SCRAPER_CONFIG_DIR", str(temp_dir))

        settings = get_settings()

        assert settings.crawler.request_timeout == 10
        assert settings.crawler.min_content_length == 500
        assert settings.crawler.protected_domains == ["example.com"]

    # =========================================================================
    # TC-N-03: Environment overrides
    # =========================================================================
    def test_env_override_nested(self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """
        Given: ADAPTIVE_SCRAPER_BROWSER__MAX_POOL_SIZE=3
        When: get_settings() is called
        Then: The pool size is 3
        """
        monkeypatch.setenv("ADAPTIVE_SCRAPER_CONFIG_DIR", str(temp_dir))
        monkeypatch.setenv("ADAPTIVE_SCRAPER_BROWSER__MAX_POOL_SIZE", "3")

        assert get_settings().browser.max_pool_size == 3

    # =========================================================================
    # TC-B-01: Missing config dir
    # =========================================================================
    def test_missing_config_dir_uses_defaults(
        self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """
        Given: A config dir with no YAML files
        When: get_settings() is called
        Then: Model defaults are used
        """
        monkeypatch.setenv("ADAPTIVE_SCRAPER_CONFIG_DIR", str(temp_dir / "missing"))

        settings = get_settings()

        assert settings == Settings()


class TestEnvParsing:
    """Tests for environment value parsing."""

    # =========================================================================
    # TC-N-04: Typed values
    # =========================================================================
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("true", True),
            ("False", False),
            ("42", 42),
            ("1.5", 1.5),
            ("qwen2.5:3b", "qwen2.5:3b"),
            ("http://localhost:11434", "http://localhost:11434"),
        ],
    )
    def test_parse_env_value(self, raw: str, expected: object) -> None:
        """
        Given: A raw environment string
        When: _parse_env_value() is called
        Then: It is converted to the matching Python type
        """
        assert _parse_env_value(raw) == expected

    def test_config_dir_variable_is_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """
        Given: Only ADAPTIVE_SCRAPER_CONFIG_DIR in the environment
        When: Overrides are applied
        Then: It does not become a settings key
        """
        monkeypatch.setenv("ADAPTIVE_SCRAPER_CONFIG_DIR", "/somewhere")

        config = _apply_env_overrides({})

        assert "config_dir" not in config

    def test_deep_merge_keeps_siblings(self) -> None:
        """
        Given: Two nested dictionaries
        When: They are merged
        Then: Overrides win and untouched keys survive
        """
        merged = _deep_merge({"a": {"x": 1, "y": 2}, "b": 1}, {"a": {"y": 3}})

        assert merged == {"a": {"x": 1, "y": 3}, "b": 1}


class TestValidation:
    """Tests for settings validation."""

    # =========================================================================
    # TC-A-01: Unknown key
    # =========================================================================
    def test_unknown_bypass_key_rejected(self) -> None:
        """
        Given: A bypass section with a typo
        When: Settings are built
        Then: ValidationError is raised
        """
        with pytest.raises(ValidationError):
            Settings(bypass={"challenge_timout": 5})

    # =========================================================================
    # TC-A-02: Pool size lower bound
    # =========================================================================
    def test_pool_size_must_be_positive(self) -> None:
        """
        Given: max_pool_size=0
        When: BrowserConfig is built
        Then: ValidationError is raised
        """
        with pytest.raises(ValidationError):
            BrowserConfig(max_pool_size=0)
