from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import Config, load_runtime_config
from .llm import OpenAiClient
from .publish import MarkdownPublishSink, PublishSink
from .services.sport_api import SportApiClient
from .storage import init_db


@dataclass
class AppContext:
    conn: object
    config: Config
    sport_api: SportApiClient
    openai: OpenAiClient
    sink: PublishSink
    logger: logging.Logger

    def close(self) -> None:
        close = getattr(self.conn, "close", None)
        if close:
            close()


def build_context(
    conn=None,
    *,
    sport_api: SportApiClient | None = None,
    openai: OpenAiClient | None = None,
    sink: PublishSink | None = None,
    logger: logging.Logger | None = None,
) -> AppContext:
    """Wire clients and the publish sink from the stored runtime config.

    Raises ConfigError when the stored config is invalid.
    """
    conn = conn if conn is not None else init_db()
    config = load_runtime_config(conn)
    logger = logger or logging.getLogger("sportswriter.worker")
    if sport_api is None:
        sport_api = SportApiClient(
            base_url=config.sport_api.base_url,
            timeout_seconds=config.http.timeout_seconds,
            user_agent=config.http.user_agent,
        )
    if openai is None:
        openai = OpenAiClient(
            base_url=config.openai.base_url,
            timeout_seconds=config.http.timeout_seconds,
            title_model=config.openai.title_model,
            image_model=config.openai.image_model,
        )
    if sink is None:
        sink = MarkdownPublishSink(
            output_dir=config.paths.output_dir,
            images_dir=config.paths.images_dir,
            timeout_seconds=config.http.timeout_seconds,
        )
    return AppContext(
        conn=conn,
        config=config,
        sport_api=sport_api,
        openai=openai,
        sink=sink,
        logger=logger,
    )
