from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

from .errors import ValidationError
from .storage import get_api_secret, get_setting, set_setting


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class PathsConfig:
    data_dir: str
    output_dir: str
    images_dir: str


@dataclass(frozen=True)
class HttpConfig:
    timeout_seconds: int
    user_agent: str


@dataclass(frozen=True)
class SportApiConfig:
    base_url: str


@dataclass(frozen=True)
class OpenAiConfig:
    base_url: str
    title_model: str
    image_model: str


@dataclass(frozen=True)
class ScheduleConfig:
    ingest_interval_minutes: int
    generate_interval_minutes: int
    publish_delay_minutes: int
    stuck_after_minutes: int


@dataclass(frozen=True)
class Config:
    paths: PathsConfig
    http: HttpConfig
    sport_api: SportApiConfig
    openai: OpenAiConfig
    schedule: ScheduleConfig


@dataclass(frozen=True)
class PostSettings:
    sport_api_key: str
    openai_api_key: str
    openai_model: str
    max_games_per_day: int
    max_games_per_hour: int
    post_intervals: int
    post_author: int | None
    post_category: int | None
    ai_content_prompt: str
    featured_image_url: str
    dalle_image_generation: bool
    dalle_image_size: str
    dalle_image_quality: str

    @property
    def has_credentials(self) -> bool:
        return bool(self.sport_api_key and self.openai_api_key)


DEFAULT_CONFIG: dict[str, Any] = {
    "paths": {
        "data_dir": "/data",
        "output_dir": "/site/content/posts",
        "images_dir": "/site/static/images/posts",
    },
    "http": {
        "timeout_seconds": 30,
        "user_agent": "SportsWriter/0.1",
    },
    "sport_api": {
        "base_url": "https://app.scalesp.com/api/v1/football",
    },
    "openai": {
        "base_url": "https://api.openai.com/v1",
        "title_model": "gpt-3.5-turbo",
        "image_model": "dall-e-3",
    },
    "schedule": {
        "ingest_interval_minutes": 180,
        "generate_interval_minutes": 50,
        "publish_delay_minutes": 60,
        "stuck_after_minutes": 360,
    },
}

ALLOWED_MODELS = [
    "gpt-3.5-turbo",
    "gpt-3.5-turbo-16k",
    "gpt-4",
    "gpt-4-turbo",
    "gpt-4o",
]
ALLOWED_IMAGE_SIZES = ["1024x1024", "1792x1024", "1024x1792"]
ALLOWED_IMAGE_QUALITIES = ["standard", "hd"]
ALLOWED_IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif")

DEFAULT_CONTENT_PROMPT = """You are a passionate football blogger writing for fans who love deep match insights. Your goal is to create an engaging, narrative-driven preview that feels like a conversation with a knowledgeable friend at a sports bar.

Writing Instructions:
1. Write in a conversational, passionate tone as if discussing the match with a close friend
2. Provide context beyond raw statistics - discuss team dynamics and potential match narratives
3. Include a balanced, nuanced prediction that considers both statistical likelihood and the unpredictable nature of football
4. Use engaging storytelling techniques to make the preview compelling
5. Incorporate the betting odds context subtly, focusing on match analysis rather than pure gambling perspective
6. Aim for 500-700 words
7. End with a provocative question or intriguing prediction to spark reader engagement

Special Requests:
- Avoid generic sports cliches
- Use vivid, descriptive language
- Highlight potential match-defining moments
- Create a sense of anticipation and excitement"""

DEFAULT_POST_SETTINGS: dict[str, Any] = {
    "openai_model": "gpt-3.5-turbo",
    "max_games_per_day": 5,
    "max_games_per_hour": 5,
    "post_intervals": 5,
    "post_author": None,
    "post_category": None,
    "ai_content_prompt": DEFAULT_CONTENT_PROMPT,
    "featured_image_url": "",
    "dalle_image_generation": False,
    "dalle_image_size": "1024x1024",
    "dalle_image_quality": "standard",
}

SECRET_NAMES = ("sport_api_key", "openai_api_key")
SECRET_ENV = {
    "sport_api_key": "SW_SPORT_API_KEY",
    "openai_api_key": "SW_OPENAI_API_KEY",
}

CONFIG_KEY = "config.runtime"
POST_SETTINGS_KEY = "config.post"


def bootstrap_runtime_config(conn) -> dict[str, Any]:
    cfg = get_setting(conn, CONFIG_KEY, None)
    if cfg is None:
        set_setting(conn, CONFIG_KEY, _deep_copy(_default_config_from_env()))
        cfg = get_setting(conn, CONFIG_KEY, None)
    if not isinstance(cfg, dict):
        raise ConfigError("config.runtime must be a JSON object")
    return cfg


def get_runtime_config(conn) -> dict[str, Any]:
    cfg = bootstrap_runtime_config(conn)
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    return cfg


def set_runtime_config(conn, cfg: dict[str, Any]) -> None:
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    set_setting(conn, CONFIG_KEY, _deep_copy(cfg))


def load_runtime_config(conn) -> Config:
    cfg = get_runtime_config(conn)
    return _build_config(cfg)


def validate_runtime_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config.runtime", errors)
    return errors


def _default_config_from_env() -> dict[str, Any]:
    cfg = _deep_copy(DEFAULT_CONFIG)
    data_dir = os.environ.get("SW_DATA_DIR")
    if data_dir:
        cfg["paths"]["data_dir"] = data_dir
    return cfg


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        if not isinstance(value, dict):
            errors.append(f"{path} must be an object")
            return
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if not isinstance(value, int) or isinstance(value, bool):
            errors.append(f"{path} must be an integer")
        elif value <= 0:
            errors.append(f"{path} must be positive")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def _build_config(cfg: dict[str, Any]) -> Config:
    paths_cfg = cfg.get("paths") or {}
    http_cfg = cfg.get("http") or {}
    sport_cfg = cfg.get("sport_api") or {}
    openai_cfg = cfg.get("openai") or {}
    schedule_cfg = cfg.get("schedule") or {}

    paths = PathsConfig(
        data_dir=str(paths_cfg.get("data_dir")),
        output_dir=str(paths_cfg.get("output_dir")),
        images_dir=str(paths_cfg.get("images_dir")),
    )
    http = HttpConfig(
        timeout_seconds=int(http_cfg.get("timeout_seconds")),
        user_agent=str(http_cfg.get("user_agent")),
    )
    sport_api = SportApiConfig(base_url=str(sport_cfg.get("base_url")))
    openai = OpenAiConfig(
        base_url=str(openai_cfg.get("base_url")),
        title_model=str(openai_cfg.get("title_model")),
        image_model=str(openai_cfg.get("image_model")),
    )
    schedule = ScheduleConfig(
        ingest_interval_minutes=int(schedule_cfg.get("ingest_interval_minutes")),
        generate_interval_minutes=int(schedule_cfg.get("generate_interval_minutes")),
        publish_delay_minutes=int(schedule_cfg.get("publish_delay_minutes")),
        stuck_after_minutes=int(schedule_cfg.get("stuck_after_minutes")),
    )
    return Config(
        paths=paths,
        http=http,
        sport_api=sport_api,
        openai=openai,
        schedule=schedule,
    )


def sanitize_post_settings(
    raw: dict[str, Any],
) -> tuple[dict[str, Any], list[ValidationError]]:
    """Clamp operator-supplied post settings to safe values.

    Every rejected value is replaced by its default and reported as a
    ValidationError so the caller can surface the message; saving never
    fails because of a bad field.
    """
    errors: list[ValidationError] = []
    clean: dict[str, Any] = {}

    clean["max_games_per_day"] = _int_in_range(
        raw, "max_games_per_day", 1, 100, errors,
        "Maximum games per day should be between 1 and 100.",
    )
    clean["max_games_per_hour"] = _int_in_range(
        raw, "max_games_per_hour", 1, 24, errors,
        "Maximum games per hour should be between 1 and 24.",
    )
    clean["post_intervals"] = _int_in_range(
        raw, "post_intervals", 1, 30, errors,
        "Post intervals should be between 1 and 30 minutes.",
    )

    model = raw.get("openai_model", DEFAULT_POST_SETTINGS["openai_model"])
    if model in ALLOWED_MODELS:
        clean["openai_model"] = model
    else:
        clean["openai_model"] = DEFAULT_POST_SETTINGS["openai_model"]
        errors.append(
            ValidationError(
                "openai_model",
                "Invalid OpenAI model selected. Defaulting to GPT-3.5 Turbo.",
            )
        )

    clean["featured_image_url"] = _image_url(raw.get("featured_image_url"), errors)
    clean["dalle_image_generation"] = _as_bool(raw.get("dalle_image_generation", False))

    size = raw.get("dalle_image_size", DEFAULT_POST_SETTINGS["dalle_image_size"])
    if size in ALLOWED_IMAGE_SIZES:
        clean["dalle_image_size"] = size
    else:
        clean["dalle_image_size"] = DEFAULT_POST_SETTINGS["dalle_image_size"]
        errors.append(ValidationError("dalle_image_size", "Unsupported image size."))

    quality = raw.get("dalle_image_quality", DEFAULT_POST_SETTINGS["dalle_image_quality"])
    if quality in ALLOWED_IMAGE_QUALITIES:
        clean["dalle_image_quality"] = quality
    else:
        clean["dalle_image_quality"] = DEFAULT_POST_SETTINGS["dalle_image_quality"]
        errors.append(ValidationError("dalle_image_quality", "Unsupported image quality."))

    clean["post_author"] = _optional_id(raw, "post_author", errors)
    clean["post_category"] = _optional_id(raw, "post_category", errors)

    prompt = raw.get("ai_content_prompt")
    if prompt is None:
        clean["ai_content_prompt"] = DEFAULT_POST_SETTINGS["ai_content_prompt"]
    elif isinstance(prompt, str):
        clean["ai_content_prompt"] = prompt.strip()
    else:
        clean["ai_content_prompt"] = DEFAULT_POST_SETTINGS["ai_content_prompt"]
        errors.append(ValidationError("ai_content_prompt", "Prompt must be text."))

    return clean, errors


def _int_in_range(
    raw: dict[str, Any],
    key: str,
    low: int,
    high: int,
    errors: list[ValidationError],
    message: str,
) -> int:
    value = raw.get(key, DEFAULT_POST_SETTINGS[key])
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = None
    if number is None or isinstance(value, bool) or number < low or number > high:
        errors.append(ValidationError(key, message))
        return int(DEFAULT_POST_SETTINGS[key])
    return number


def _optional_id(raw: dict[str, Any], key: str, errors: list[ValidationError]) -> int | None:
    value = raw.get(key)
    if value in (None, "", 0, "0"):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        errors.append(ValidationError(key, f"{key} must be a numeric id."))
        return None
    return number if number > 0 else None


def _image_url(value: Any, errors: list[ValidationError]) -> str:
    if not value:
        return ""
    url = str(value).strip()
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        errors.append(
            ValidationError("featured_image_url", "The featured image URL is not a valid URL.")
        )
        return ""
    extension = parts.path.rsplit(".", 1)[-1].lower() if "." in parts.path else ""
    if extension not in ALLOWED_IMAGE_EXTENSIONS:
        errors.append(
            ValidationError(
                "featured_image_url",
                "The featured image URL does not point to a valid image file "
                "(jpg, jpeg, png, or gif).",
            )
        )
        return ""
    return url


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def get_post_settings(conn) -> dict[str, Any]:
    stored = get_setting(conn, POST_SETTINGS_KEY, None)
    merged = _deep_copy(DEFAULT_POST_SETTINGS)
    if isinstance(stored, dict):
        merged.update({key: stored[key] for key in stored if key in DEFAULT_POST_SETTINGS})
    return merged


def save_post_settings(conn, raw: dict[str, Any]) -> list[ValidationError]:
    current = get_post_settings(conn)
    current.update({key: value for key, value in raw.items() if key in DEFAULT_POST_SETTINGS})
    clean, errors = sanitize_post_settings(current)
    set_setting(conn, POST_SETTINGS_KEY, clean)
    return errors


def load_post_settings(conn) -> PostSettings:
    """Resolve the operator settings once for a whole cycle."""
    values, _ = sanitize_post_settings(get_post_settings(conn))
    return PostSettings(
        sport_api_key=resolve_api_key(conn, "sport_api_key"),
        openai_api_key=resolve_api_key(conn, "openai_api_key"),
        openai_model=values["openai_model"],
        max_games_per_day=values["max_games_per_day"],
        max_games_per_hour=values["max_games_per_hour"],
        post_intervals=values["post_intervals"],
        post_author=values["post_author"],
        post_category=values["post_category"],
        ai_content_prompt=values["ai_content_prompt"],
        featured_image_url=values["featured_image_url"],
        dalle_image_generation=values["dalle_image_generation"],
        dalle_image_size=values["dalle_image_size"],
        dalle_image_quality=values["dalle_image_quality"],
    )


def resolve_api_key(conn, name: str) -> str:
    stored = get_api_secret(conn, name)
    if stored:
        return stored.strip()
    return os.environ.get(SECRET_ENV[name], "").strip()


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
