import os
import urllib.error
from datetime import datetime, timezone

import yaml

from conftest import FakeResponse
from sportswriter.publish import MarkdownPublishSink, image_extension

PUBLISH_AT = datetime(2026, 3, 10, 13, 10, tzinfo=timezone.utc)


def _read_frontmatter(path: str) -> tuple[dict, str]:
    text = open(path, encoding="utf-8").read()
    _, raw, body = text.split("---\n", 2)
    return yaml.safe_load(raw), body


def _sink(tmp_path) -> MarkdownPublishSink:
    return MarkdownPublishSink(
        output_dir=str(tmp_path / "content" / "posts"),
        images_dir=str(tmp_path / "static" / "images" / "posts"),
    )


def test_schedule_writes_future_dated_post(tmp_path):
    sink = _sink(tmp_path)

    result = sink.schedule("Derby Day", "Body text.", PUBLISH_AT, 7, 3, None)

    assert result.ok
    assert result.image_attached is False
    path = tmp_path / "content" / "posts" / f"{result.article_id}.md"
    frontmatter, body = _read_frontmatter(str(path))
    assert frontmatter["title"] == "Derby Day"
    assert frontmatter["date"] == "2026-03-10T13:10:00+00:00"
    assert frontmatter["draft"] is False
    assert frontmatter["author"] == 7
    assert frontmatter["categories"] == [3]
    assert "featured_image" not in frontmatter
    assert body.strip() == "Body text."
    assert result.article_id.startswith("2026-03-10-derby-day-")
    leftovers = [name for name in os.listdir(path.parent) if name.startswith(".tmp-")]
    assert leftovers == []


def test_schedule_attaches_downloaded_image(tmp_path, fake_http):
    fake_http.add("https://img.test/", FakeResponse(b"\x89PNGdata"))
    sink = _sink(tmp_path)

    result = sink.schedule("T", "B", PUBLISH_AT, None, None, "https://img.test/pic.JPG?sig=1")

    assert result.ok and result.image_attached
    frontmatter, _ = _read_frontmatter(
        str(tmp_path / "content" / "posts" / f"{result.article_id}.md")
    )
    image_name = os.path.basename(frontmatter["featured_image"])
    assert frontmatter["featured_image"] == f"/images/posts/{image_name}"
    assert image_name.endswith(".jpg")
    assert len(image_name.split(".")[0]) == 32
    saved = tmp_path / "static" / "images" / "posts" / image_name
    assert saved.read_bytes() == b"\x89PNGdata"
    assert "author" not in frontmatter


def test_image_failure_keeps_post(tmp_path, fake_http):
    fake_http.add("https://img.test/", urllib.error.URLError("down"))
    sink = _sink(tmp_path)

    result = sink.schedule("T", "B", PUBLISH_AT, None, None, "https://img.test/pic.png")

    assert result.ok
    assert result.image_attached is False
    assert (tmp_path / "content" / "posts" / f"{result.article_id}.md").exists()


def test_schedule_reports_write_failure(tmp_path):
    blocker = tmp_path / "blocked"
    blocker.write_text("file, not a directory", encoding="utf-8")
    sink = MarkdownPublishSink(output_dir=str(blocker / "posts"), images_dir=str(tmp_path))

    result = sink.schedule("T", "B", PUBLISH_AT, None, None, None)

    assert result.ok is False
    assert result.article_id is None
    assert result.error.startswith("write_failed")


def test_image_extension_defaults_to_png():
    assert image_extension("https://img.test/generated") == "png"
    assert image_extension("https://img.test/a/b.jpeg?x=1") == "jpeg"
