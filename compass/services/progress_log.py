"""Append-only progress log stored on a market research record.

The log is persisted as JSON text of the form ``{"progress": [event, ...]}``.
Progress reporting must never take the research pipeline down with it, so
``append_progress`` logs and swallows its own failures.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from compass.models.market_research import MarketResearch
from compass.schemas.market_research import ProgressEvent, ProgressStatus

logger = logging.getLogger(__name__)


def load_progress(raw: Optional[str]) -> list[dict[str, Any]]:
    """Decode a stored progress log. Missing or corrupt logs decode to an empty list."""
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Discarding corrupt progress log: %s", raw[:200])
        return []
    if not isinstance(data, dict) or not isinstance(data.get("progress"), list):
        return []
    return [entry for entry in data["progress"] if isinstance(entry, dict)]


def dump_progress(entries: list[dict[str, Any]]) -> str:
    return json.dumps({"progress": entries}, default=str)


def parse_events(raw: Optional[str]) -> list[ProgressEvent]:
    """Decode a stored log into events, skipping entries that no longer validate."""
    events = []
    for entry in load_progress(raw):
        try:
            events.append(ProgressEvent.model_validate(entry))
        except ValidationError:
            logger.warning("Skipping malformed progress entry: %s", entry)
    return events


def make_event(
    step: str,
    status: ProgressStatus,
    message: str,
    details: Optional[dict[str, Any]] = None,
) -> ProgressEvent:
    return ProgressEvent(step=step, status=status, message=message, details=details)


def add_event(research: MarketResearch, event: ProgressEvent) -> None:
    """Append an event to an already loaded record and touch last_updated. Caller commits."""
    entries = load_progress(research.progress_log)
    entries.append(event.model_dump(mode="json"))
    research.progress_log = dump_progress(entries)
    research.last_updated = datetime.now(timezone.utc)


async def append_progress(
    session_factory: async_sessionmaker[AsyncSession],
    research_id: UUID,
    event: ProgressEvent,
) -> None:
    """Load the record, append the event and persist. Never raises."""
    try:
        async with session_factory() as db:
            research = await db.get(MarketResearch, research_id)
            if research is None:
                logger.warning("Progress update skipped: research %s not found", research_id)
                return
            add_event(research, event)
            await db.commit()
    except Exception as e:  # noqa: BLE001
        logger.error("Error updating progress for research %s: %s", research_id, e)
