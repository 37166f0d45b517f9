from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from ..models import IngestResult, MatchRecord
from ..services.sport_api import SportApiClient
from ..storage import upsert_ingested
from ..utils import log_event


def filter_by_regions(
    records: Iterable[MatchRecord], region_names: Iterable[str]
) -> tuple[list[MatchRecord], int]:
    """Keep records from the selected regions; no selection keeps everything."""
    allowed = {name.strip().lower() for name in region_names if name and name.strip()}
    records = list(records)
    if not allowed:
        return records, 0
    kept = [record for record in records if record.region.strip().lower() in allowed]
    return kept, len(records) - len(kept)


def ingest_upcoming(
    conn,
    client: SportApiClient,
    api_key: str,
    region_names: Iterable[str],
    logger: logging.Logger,
    now: datetime | None = None,
) -> tuple[IngestResult, int]:
    """Fetch upcoming games and store the new ones.

    UpstreamError from the provider propagates to the caller.
    """
    records = client.fetch_upcoming(api_key)
    kept, filtered = filter_by_regions(records, region_names)
    result = upsert_ingested(conn, kept, now=now)
    log_event(
        logger,
        logging.INFO,
        "matches_ingested",
        fetched=len(records),
        filtered=filtered,
        inserted=result.inserted_count,
        skipped=result.skipped_duplicates,
        evicted=result.evicted_count,
    )
    return result, filtered
