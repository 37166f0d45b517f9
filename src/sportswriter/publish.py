from __future__ import annotations

import hashlib
import logging
import os
import tempfile
import urllib.error
import urllib.request
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from urllib.parse import urlsplit

import yaml

from .utils import isoformat_utc, log_event, slugify

DEFAULT_IMAGE_EXTENSION = "png"
MAX_IMAGE_BYTES = 20 * 1024 * 1024


@dataclass(frozen=True)
class PublishResult:
    ok: bool
    article_id: str | None = None
    error: str | None = None
    image_attached: bool = False


class PublishSink(Protocol):
    def schedule(
        self,
        title: str,
        body: str,
        publish_at: datetime,
        author_id: int | None,
        category_id: int | None,
        image_url: str | None,
    ) -> PublishResult: ...


class MarkdownPublishSink:
    """Write scheduled posts as Hugo markdown with a future `date`."""

    def __init__(
        self,
        output_dir: str,
        images_dir: str,
        timeout_seconds: int = 30,
        image_url_prefix: str = "/images/posts",
        logger: logging.Logger | None = None,
    ) -> None:
        self.output_dir = output_dir
        self.images_dir = images_dir
        self.timeout_seconds = timeout_seconds
        self.image_url_prefix = image_url_prefix.rstrip("/")
        self.logger = logger or logging.getLogger("sportswriter.publish")

    def schedule(
        self,
        title: str,
        body: str,
        publish_at: datetime,
        author_id: int | None,
        category_id: int | None,
        image_url: str | None,
    ) -> PublishResult:
        article_id = _article_id(title, publish_at)
        frontmatter = build_frontmatter(title, publish_at, author_id, category_id)
        path = os.path.join(self.output_dir, f"{article_id}.md")
        try:
            _write_post(path, frontmatter, body)
        except OSError as exc:
            log_event(
                self.logger,
                logging.ERROR,
                "publish_failed",
                article_id=article_id,
                error=str(exc),
            )
            return PublishResult(ok=False, error=f"write_failed: {exc}")
        log_event(
            self.logger,
            logging.INFO,
            "post_scheduled",
            article_id=article_id,
            publish_at=isoformat_utc(publish_at),
        )

        image_attached = False
        if image_url:
            image_path = self._download_image(image_url)
            if image_path:
                frontmatter["featured_image"] = (
                    f"{self.image_url_prefix}/{os.path.basename(image_path)}"
                )
                try:
                    _write_post(path, frontmatter, body)
                    image_attached = True
                except OSError as exc:
                    log_event(
                        self.logger,
                        logging.ERROR,
                        "image_attach_failed",
                        article_id=article_id,
                        error=str(exc),
                    )
        return PublishResult(ok=True, article_id=article_id, image_attached=image_attached)

    def _download_image(self, image_url: str) -> str | None:
        request = urllib.request.Request(image_url, method="GET")
        try:
            with urllib.request.urlopen(request, timeout=self.timeout_seconds) as response:
                data = response.read(MAX_IMAGE_BYTES + 1)
        except (urllib.error.URLError, TimeoutError, OSError, ValueError) as exc:
            log_event(
                self.logger,
                logging.ERROR,
                "image_fetch_failed",
                url=image_url,
                error=str(exc),
            )
            return None
        if not data:
            log_event(self.logger, logging.ERROR, "image_empty", url=image_url)
            return None
        if len(data) > MAX_IMAGE_BYTES:
            log_event(self.logger, logging.ERROR, "image_too_large", url=image_url)
            return None
        filename = f"{hashlib.md5(uuid.uuid4().bytes).hexdigest()}.{image_extension(image_url)}"
        path = os.path.join(self.images_dir, filename)
        try:
            os.makedirs(self.images_dir, exist_ok=True)
            with open(path, "wb") as handle:
                handle.write(data)
        except OSError as exc:
            log_event(self.logger, logging.ERROR, "image_save_failed", path=path, error=str(exc))
            return None
        log_event(self.logger, logging.INFO, "image_saved", path=path, bytes=len(data))
        return path


def build_frontmatter(
    title: str,
    publish_at: datetime,
    author_id: int | None,
    category_id: int | None,
) -> dict[str, object]:
    frontmatter: dict[str, object] = {
        "title": title,
        "date": isoformat_utc(publish_at),
        "draft": False,
    }
    if author_id:
        frontmatter["author"] = author_id
    if category_id:
        frontmatter["categories"] = [category_id]
    return frontmatter


def image_extension(image_url: str) -> str:
    name = os.path.basename(urlsplit(image_url).path)
    _, ext = os.path.splitext(name)
    ext = ext.lstrip(".").lower()
    return ext or DEFAULT_IMAGE_EXTENSION


def _article_id(title: str, publish_at: datetime) -> str:
    date_part = isoformat_utc(publish_at).split("T")[0]
    return f"{date_part}-{slugify(title, max_length=60)}-{uuid.uuid4().hex[:8]}"


def _write_post(path: str, frontmatter: dict[str, object], body: str) -> None:
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    content = "---\n"
    content += yaml.safe_dump(
        frontmatter, sort_keys=False, allow_unicode=False, default_flow_style=False
    )
    content += "---\n\n"
    content += body.strip() + "\n"
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".md")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(tmp_path, path)
    except OSError:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
