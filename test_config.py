"""
Settings Tests

Validates environment overrides and ignore-pattern loading.
"""

import json

import pytest

from core.config import DEFAULT_IGNORE_PATTERNS, load_ignore_patterns, load_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "IGNORE_KEYS_FILE", "IGNORE_KEY_PATTERNS", "AUTO_ADVANCE", "AUTO_ADVANCE_DELAY_MS",
        "PROPERTY_CACHE_TTL_SECONDS", "LOG_LEVEL", "KB_LANGUAGE",
    ):
        monkeypatch.delenv(name, raising=False)


class TestIgnorePatterns:
    """Where ignore patterns come from."""

    def test_default(self):
        assert load_ignore_patterns() == DEFAULT_IGNORE_PATTERNS == ["o:"]

    def test_from_env_list(self, monkeypatch):
        monkeypatch.setenv("IGNORE_KEY_PATTERNS", "o:, @type ,,schema:")
        assert load_ignore_patterns() == ["o:", "@type", "schema:"]

    def test_from_file(self, tmp_path):
        path = tmp_path / "ignore.json"
        path.write_text(json.dumps({"ignoredKeyPatterns": ["o:", "dcterms:identifier"]}), encoding="utf-8")
        assert load_ignore_patterns(path) == ["o:", "dcterms:identifier"]

    def test_file_env_var_wins_over_list(self, tmp_path, monkeypatch):
        path = tmp_path / "ignore.json"
        path.write_text(json.dumps({"ignoredKeyPatterns": ["x:"]}), encoding="utf-8")
        monkeypatch.setenv("IGNORE_KEYS_FILE", str(path))
        monkeypatch.setenv("IGNORE_KEY_PATTERNS", "y:")
        assert load_ignore_patterns() == ["x:"]

    @pytest.mark.parametrize("content", ["{broken", "[]", json.dumps({"ignoredKeyPatterns": []})])
    def test_unusable_file_falls_back_to_default(self, tmp_path, content):
        path = tmp_path / "ignore.json"
        path.write_text(content, encoding="utf-8")
        assert load_ignore_patterns(path) == ["o:"]

    def test_missing_file_falls_back_to_default(self, tmp_path):
        assert load_ignore_patterns(tmp_path / "absent.json") == ["o:"]


class TestSettings:
    """Environment overrides."""

    def test_defaults(self):
        settings = load_settings()
        assert settings.property_cache_ttl_seconds == 3600
        assert settings.auto_advance is True
        assert settings.auto_advance_delay_ms == 300
        assert settings.ignore_key_patterns == ["o:"]

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("AUTO_ADVANCE", "no")
        monkeypatch.setenv("AUTO_ADVANCE_DELAY_MS", "0")
        monkeypatch.setenv("PROPERTY_CACHE_TTL_SECONDS", "60")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("KB_LANGUAGE", "nl")

        settings = load_settings()

        assert settings.auto_advance is False
        assert settings.auto_advance_delay_ms == 0
        assert settings.property_cache_ttl_seconds == 60
        assert settings.log_level == "DEBUG"
        assert settings.language == "nl"


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
