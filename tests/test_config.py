import base64
import copy

import pytest

from sportswriter.config import (
    DEFAULT_CONFIG,
    DEFAULT_CONTENT_PROMPT,
    ConfigError,
    get_runtime_config,
    load_post_settings,
    load_runtime_config,
    sanitize_post_settings,
    save_post_settings,
    set_runtime_config,
    validate_runtime_config,
)
from sportswriter.security.secrets import KEY_ID_ENV, MASTER_KEY_ENV
from sportswriter.storage import get_api_secret_last4, init_db, set_api_secret


def test_runtime_config_bootstraps_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("SW_DATA_DIR", str(tmp_path / "data"))
    conn = init_db(str(tmp_path / "state.sqlite3"))

    cfg = get_runtime_config(conn)
    config = load_runtime_config(conn)

    assert cfg["paths"]["data_dir"] == str(tmp_path / "data")
    assert config.http.timeout_seconds == 30
    assert config.sport_api.base_url == "https://app.scalesp.com/api/v1/football"
    assert config.schedule.ingest_interval_minutes == 180
    assert config.schedule.generate_interval_minutes == 50


def test_runtime_config_validation_errors():
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["http"]["timeout_seconds"] = "slow"
    cfg["extra"] = {}
    del cfg["openai"]["image_model"]

    errors = validate_runtime_config(cfg)

    assert "config.runtime.http.timeout_seconds must be an integer" in errors
    assert "unknown config.runtime.extra" in errors
    assert "missing config.runtime.openai.image_model" in errors


def test_set_runtime_config_rejects_invalid(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    with pytest.raises(ConfigError):
        set_runtime_config(conn, {"paths": {}})


def test_sanitize_post_settings_defaults():
    clean, errors = sanitize_post_settings({})
    assert errors == []
    assert clean["max_games_per_day"] == 5
    assert clean["max_games_per_hour"] == 5
    assert clean["post_intervals"] == 5
    assert clean["openai_model"] == "gpt-3.5-turbo"
    assert clean["ai_content_prompt"] == DEFAULT_CONTENT_PROMPT
    assert clean["featured_image_url"] == ""
    assert clean["dalle_image_generation"] is False


def test_sanitize_post_settings_clamps_to_defaults_with_warnings():
    clean, errors = sanitize_post_settings(
        {
            "max_games_per_day": 500,
            "max_games_per_hour": 0,
            "post_intervals": "abc",
            "openai_model": "gpt-2",
            "featured_image_url": "https://cdn.test/image.bmp",
            "dalle_image_size": "10x10",
            "post_category": "0",
        }
    )

    fields = {error.field for error in errors}
    assert fields == {
        "max_games_per_day",
        "max_games_per_hour",
        "post_intervals",
        "openai_model",
        "featured_image_url",
        "dalle_image_size",
    }
    assert clean["max_games_per_day"] == 5
    assert clean["max_games_per_hour"] == 5
    assert clean["post_intervals"] == 5
    assert clean["openai_model"] == "gpt-3.5-turbo"
    assert clean["featured_image_url"] == ""
    assert clean["post_category"] is None
    assert all(isinstance(error, ValueError) for error in errors)


def test_sanitize_accepts_valid_values():
    clean, errors = sanitize_post_settings(
        {
            "max_games_per_day": "100",
            "max_games_per_hour": 24,
            "post_intervals": 30,
            "openai_model": "gpt-4o",
            "featured_image_url": "https://cdn.test/path/Image.PNG",
            "dalle_image_generation": "1",
            "dalle_image_size": "1024x1792",
            "dalle_image_quality": "hd",
            "post_author": "3",
        }
    )
    assert errors == []
    assert clean["max_games_per_day"] == 100
    assert clean["featured_image_url"] == "https://cdn.test/path/Image.PNG"
    assert clean["dalle_image_generation"] is True
    assert clean["post_author"] == 3


def test_load_post_settings_prefers_stored_secret_over_env(tmp_path, monkeypatch):
    monkeypatch.setenv(MASTER_KEY_ENV, base64.urlsafe_b64encode(b"k" * 32).decode("utf-8"))
    monkeypatch.setenv(KEY_ID_ENV, "v1")
    monkeypatch.setenv("SW_SPORT_API_KEY", "env-sport")
    monkeypatch.setenv("SW_OPENAI_API_KEY", "env-openai")
    conn = init_db(str(tmp_path / "state.sqlite3"))
    set_api_secret(conn, "openai_api_key", "sk-stored-9876")
    save_post_settings(conn, {"max_games_per_hour": 2, "unknown": "ignored"})

    settings = load_post_settings(conn)

    assert settings.sport_api_key == "env-sport"
    assert settings.openai_api_key == "sk-stored-9876"
    assert settings.max_games_per_hour == 2
    assert settings.has_credentials
    assert get_api_secret_last4(conn, "openai_api_key") == "9876"
    row = conn.execute("SELECT value_enc FROM api_secrets").fetchone()
    assert "sk-stored" not in row[0]


def test_save_post_settings_returns_warnings_and_keeps_defaults(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    warnings = save_post_settings(conn, {"post_intervals": 99})

    assert [warning.field for warning in warnings] == ["post_intervals"]
    assert load_post_settings(conn).post_intervals == 5
    assert load_post_settings(conn).has_credentials is False
