from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from typing import Any

from ..errors import UpstreamError
from ..utils import log_event, trim_words

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-3.5-turbo"
TITLE_MODEL = "gpt-3.5-turbo"
IMAGE_MODEL = "dall-e-3"
DEFAULT_TIMEOUT_SECONDS = 30

ARTICLE_SYSTEM_PROMPT = "You are a professional sports content writer."
TITLE_SYSTEM_PROMPT = (
    "You are a title generator. Create a concise, engaging title for a blog post "
    "based on the given content."
)
TITLE_USER_PREFIX = "Generate a compelling title for this blog post content:\n\n"

LANDSCAPE = "1792x1024"
PORTRAIT = "1024x1792"
SQUARE = "1024x1024"

CONTEXT_IMAGE_PROMPTS = {
    LANDSCAPE: (
        "Wide panoramic view of a football stadium during {home} vs {away} match, "
        "dynamic crowd atmosphere, team colors prominently displayed, professional "
        "sports photography style, vibrant lighting"
    ),
    PORTRAIT: (
        "Vertical composition football match poster for {home} vs {away}, bold team "
        "logos, dynamic player silhouettes, modern graphic design, social media "
        "optimized layout"
    ),
    SQUARE: (
        "Dynamic football stadium scene with {home} and {away} jerseys, vibrant "
        "sports photography style, balanced composition"
    ),
}

FALLBACK_IMAGE_PROMPTS = {
    LANDSCAPE: (
        "Wide panoramic football stadium view with dramatic lighting, crowd "
        "atmosphere, professional sports photography"
    ),
    PORTRAIT: (
        "Vertical football match preview poster with dynamic design, modern sports "
        "graphics, social media format"
    ),
    SQUARE: "Football match preview poster with stadium and players, balanced composition",
}


class OpenAiClient:
    """Chat and image generation against an OpenAI-compatible API.

    None of the public methods raise for upstream failures: article and
    image generation return None, title generation returns an empty string.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        title_model: str = TITLE_MODEL,
        image_model: str = IMAGE_MODEL,
        logger: logging.Logger | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.title_model = title_model
        self.image_model = image_model
        self.logger = logger or logging.getLogger("sportswriter.openai")

    def generate_article(self, api_key: str, model: str, prompt: str) -> str | None:
        payload = {
            "model": model or DEFAULT_MODEL,
            "messages": [
                {"role": "system", "content": ARTICLE_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        try:
            response = self._post("/chat/completions", api_key, payload)
            content = _read_chat_content(response)
        except UpstreamError as exc:
            log_event(
                self.logger,
                logging.ERROR,
                "article_generation_failed",
                model=payload["model"],
                status=exc.status,
                error=str(exc),
            )
            return None
        if not content or not content.strip():
            log_event(self.logger, logging.ERROR, "article_generation_empty", model=payload["model"])
            return None
        return content

    def generate_title(self, content: str, api_key: str) -> str:
        if not api_key:
            log_event(self.logger, logging.ERROR, "title_generation_skipped", reason="missing_api_key")
            return ""
        payload = {
            "model": self.title_model,
            "messages": [
                {"role": "system", "content": TITLE_SYSTEM_PROMPT},
                {"role": "user", "content": TITLE_USER_PREFIX + content},
            ],
        }
        try:
            response = self._post("/chat/completions", api_key, payload)
            title = _read_chat_content(response) or ""
        except UpstreamError as exc:
            log_event(
                self.logger,
                logging.WARNING,
                "title_generation_failed",
                status=exc.status,
                error=str(exc),
            )
            return ""
        return title.strip().strip('"')

    def generate_image(
        self,
        api_key: str,
        size: str = SQUARE,
        quality: str = "standard",
        match: Any | None = None,
    ) -> str | None:
        if not api_key:
            log_event(self.logger, logging.ERROR, "image_generation_skipped", reason="missing_api_key")
            return None
        size = size or SQUARE
        payload: dict[str, Any] = {
            "model": self.image_model,
            "prompt": build_image_prompt(size, match),
            "n": 1,
            "size": size,
        }
        if quality == "hd":
            payload["quality"] = "hd"
        try:
            response = self._post("/images/generations", api_key, payload)
        except UpstreamError as exc:
            log_event(
                self.logger,
                logging.ERROR,
                "image_generation_failed",
                size=size,
                status=exc.status,
                error=str(exc),
            )
            return None
        data = response.get("data") if isinstance(response, dict) else None
        if isinstance(data, list) and data and isinstance(data[0], dict) and data[0].get("url"):
            return str(data[0]["url"])
        log_event(self.logger, logging.WARNING, "image_generation_no_url", size=size)
        return None

    def _post(self, path: str, api_key: str, payload: dict[str, Any]) -> Any:
        url = self.base_url + path
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            url,
            data=data,
            method="POST",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout_seconds) as response:
                status = response.getcode()
                raw = response.read()
        except urllib.error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore") if exc.fp else ""
            raise UpstreamError(
                f"http_error {exc.code}: {body[:500]}", endpoint=path, status=exc.code
            ) from exc
        except (urllib.error.URLError, TimeoutError, OSError) as exc:
            raise UpstreamError(f"network_error: {exc}", endpoint=path) from exc
        if status != 200:
            raise UpstreamError(f"http_error {status}", endpoint=path, status=status)
        try:
            return json.loads(raw.decode("utf-8"))
        except UnicodeDecodeError as exc:
            raise UpstreamError("invalid_encoding", endpoint=path, status=status) from exc
        except json.JSONDecodeError as exc:
            raise UpstreamError("invalid_json", endpoint=path, status=status) from exc


def build_image_prompt(size: str, match: Any | None) -> str:
    home = _team_name(match, "home_team")
    away = _team_name(match, "away_team")
    if home and away:
        template = CONTEXT_IMAGE_PROMPTS.get(size, CONTEXT_IMAGE_PROMPTS[SQUARE])
        return template.format(home=home, away=away)
    return FALLBACK_IMAGE_PROMPTS.get(size, FALLBACK_IMAGE_PROMPTS[SQUARE])


def fallback_title(body: str) -> str:
    return trim_words(body, 6, "...")


def _team_name(match: Any | None, attr: str) -> str:
    if match is None:
        return ""
    value = getattr(match, attr, None)
    if value is None and isinstance(match, dict):
        value = match.get(attr) or match.get(attr.split("_")[0])
    return " ".join(str(value or "").split())


def _read_chat_content(response: Any) -> str | None:
    if not isinstance(response, dict):
        raise UpstreamError("openai_invalid_response")
    choices = response.get("choices")
    if not isinstance(choices, list) or not choices:
        raise UpstreamError("openai_missing_choices")
    choice = choices[0]
    message = choice.get("message") if isinstance(choice, dict) else None
    if not isinstance(message, dict):
        raise UpstreamError("openai_missing_message")
    content = message.get("content")
    return content if isinstance(content, str) else None
