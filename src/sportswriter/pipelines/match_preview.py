from __future__ import annotations

import logging
from datetime import datetime, timedelta

from ..config import PostSettings
from ..llm import OpenAiClient, fallback_title
from ..models import GeneratedArticle, Match
from ..prompt import build_prompt
from ..publish import PublishSink
from ..services.sport_api import SportApiClient
from ..storage import mark_completed, mark_failed
from ..utils import isoformat_utc, log_event

COMPLETED = "completed"
FAILED = "failed"


def scheduled_publish_time(
    now: datetime, index: int, interval_minutes: int, delay_minutes: int = 60
) -> datetime:
    return now + timedelta(minutes=delay_minutes + index * interval_minutes)


def resolve_featured_image(
    openai: OpenAiClient, settings: PostSettings, match: Match
) -> str | None:
    image_url = settings.featured_image_url or None
    if settings.dalle_image_generation:
        generated = openai.generate_image(
            settings.openai_api_key,
            size=settings.dalle_image_size,
            quality=settings.dalle_image_quality,
            match=match,
        )
        if generated:
            image_url = generated
    return image_url


def process_match(
    conn,
    *,
    match: Match,
    index: int,
    now: datetime,
    settings: PostSettings,
    sport_api: SportApiClient,
    openai: OpenAiClient,
    sink: PublishSink,
    logger: logging.Logger,
    publish_delay_minutes: int = 60,
) -> str:
    """Drive one claimed match to a terminal state and return that state."""
    statistics = sport_api.fetch_statistics(settings.sport_api_key, match.match_code)
    if statistics is None:
        mark_failed(conn, match.match_code, "statistics_unavailable")
        log_event(logger, logging.ERROR, "match_failed", match_code=match.match_code, reason="statistics_unavailable")
        return FAILED

    prompt = build_prompt(match, statistics, settings.ai_content_prompt)
    body = openai.generate_article(settings.openai_api_key, settings.openai_model, prompt)
    if body is None:
        mark_failed(conn, match.match_code, "article_generation_failed")
        log_event(logger, logging.ERROR, "match_failed", match_code=match.match_code, reason="article_generation_failed")
        return FAILED

    title = openai.generate_title(body, settings.openai_api_key) or fallback_title(body)
    article = GeneratedArticle(
        title=title,
        body=body,
        publish_at=scheduled_publish_time(now, index, settings.post_intervals, publish_delay_minutes),
        author_id=settings.post_author,
        category_id=settings.post_category,
        image_url=resolve_featured_image(openai, settings, match),
    )
    result = sink.schedule(
        article.title,
        article.body,
        article.publish_at,
        article.author_id,
        article.category_id,
        article.image_url,
    )
    if not result.ok:
        mark_failed(conn, match.match_code, result.error or "publish_failed")
        log_event(
            logger,
            logging.ERROR,
            "match_failed",
            match_code=match.match_code,
            reason="publish_failed",
            error=result.error,
        )
        return FAILED

    mark_completed(conn, match.match_code, article_id=result.article_id)
    log_event(
        logger,
        logging.INFO,
        "match_completed",
        match_code=match.match_code,
        article_id=result.article_id,
        publish_at=isoformat_utc(article.publish_at),
        image_attached=result.image_attached,
    )
    return COMPLETED
