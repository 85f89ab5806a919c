"""Tests for settings persistence."""

import json

from planetradio.config import Settings, config_path, load_settings, save_settings


class TestSettings:
    """Tests for load_settings / save_settings."""

    def test_defaults_when_missing(self, tmp_path) -> None:
        settings = load_settings(tmp_path)
        assert settings == Settings()
        assert settings.default_station == "pln"
        assert settings.metadata_delay_seconds == 10.0

    def test_round_trip(self, tmp_path) -> None:
        path = save_settings(Settings(default_station="p70", metadata_delay_seconds=4.0), tmp_path)
        assert path == config_path(tmp_path)
        loaded = load_settings(tmp_path)
        assert loaded.default_station == "p70"
        assert loaded.metadata_delay_seconds == 4.0

    def test_unknown_keys_are_ignored(self, tmp_path) -> None:
        (tmp_path / "config.json").write_text(json.dumps({"region": "IE", "legacy": True}), encoding="utf-8")
        assert load_settings(tmp_path).region == "IE"

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path) -> None:
        (tmp_path / "config.json").write_text("{not json", encoding="utf-8")
        assert load_settings(tmp_path) == Settings()

    def test_environment_overrides_credentials(self, monkeypatch) -> None:
        monkeypatch.setenv("PLANETRADIO_USERNAME", "env@example.com")
        monkeypatch.delenv("PLANETRADIO_PASSWORD", raising=False)
        settings = Settings(username="file@example.com", password="pw")
        assert settings.credentials() == ("env@example.com", "pw")
