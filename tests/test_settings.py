from studiopass.config import settings as settings_module
from studiopass.config.settings import Settings, get_settings
from studiopass.core.logging import build_logging_config


def test_packaged_defaults_load():
    settings = get_settings()
    assert settings.app.timezone == "Europe/Berlin"
    assert settings.location.timeout_seconds == 10
    assert settings.directory.default_radius_km == 50
    assert settings.checkin.stats_window == 1000
    assert settings.checkin.stats_ttl_seconds == 600
    assert settings.subscriptions.active_subscription_ttl_seconds == 60
    assert [f.id for f in settings.location.fallback_locations] == ["damascus", "berlin", "munich"]


def test_env_overrides_and_external_config(monkeypatch, tmp_path):
    config = tmp_path / "settings.yaml"
    config.write_text("app:\n  name: Staging\ncheckin:\n  stats_window: 25\n", encoding="utf-8")

    monkeypatch.setenv("STUDIOPASS_CONFIG_PATH", str(config))
    monkeypatch.setenv("STUDIOPASS_TIMEZONE", "Asia/Damascus")
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert isinstance(settings, Settings)
        assert settings.app.name == "Staging"
        assert settings.app.timezone == "Asia/Damascus"
        assert settings.checkin.stats_window == 25
        # Sections missing from the file fall back to model defaults.
        assert settings.qr.max_length == 500
    finally:
        get_settings.cache_clear()


def test_logging_config_is_a_dict_config():
    config = settings_module.get_logging_config()
    assert config["version"] == 1
    assert "console" in config["handlers"]


def test_build_logging_config_applies_level_without_touching_cached_yaml():
    config = build_logging_config("debug")
    assert config["root"]["level"] == "DEBUG"
    assert config["handlers"]["console"]["level"] == "DEBUG"
    assert config["loggers"]["studiopass"]["level"] == "DEBUG"
    assert config["loggers"]["uvicorn.access"]["level"] == "WARNING"
    assert settings_module.get_logging_config()["handlers"]["console"]["level"] == "INFO"
