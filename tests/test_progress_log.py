"""Progress log persistence."""
import json
import uuid

from sqlalchemy.ext.asyncio import async_sessionmaker

from compass.models import Company, MarketResearch, User
from compass.services.progress_log import (
    append_progress,
    dump_progress,
    load_progress,
    make_event,
    parse_events,
)


async def _research(db, progress_log=None) -> MarketResearch:
    user = User(email=f"{uuid.uuid4().hex}@example.com", hashed_password="x")
    db.add(user)
    await db.flush()
    company = Company(user_id=user.id, name="Acme")
    db.add(company)
    await db.flush()
    research = MarketResearch(company_id=company.id, status="IN_PROGRESS", progress_log=progress_log)
    db.add(research)
    await db.commit()
    return research


def test_load_progress_tolerates_garbage():
    assert load_progress(None) == []
    assert load_progress("") == []
    assert load_progress("{not json") == []
    assert load_progress('["a list"]') == []
    assert load_progress('{"progress": "nope"}') == []


def test_dump_and_load():
    entries = [{"step": "Web Search", "status": "completed", "message": "ok"}]
    assert json.loads(dump_progress(entries)) == {"progress": entries}
    assert load_progress(dump_progress(entries)) == entries


def test_parse_events_skips_malformed_entries():
    raw = dump_progress(
        [
            {"step": "Web Search", "status": "completed", "message": "ok"},
            {"step": "Bad", "status": "exploded", "message": "?"},
        ]
    )
    events = parse_events(raw)
    assert [e.step for e in events] == ["Web Search"]


async def test_append_preserves_order(session_factory: async_sessionmaker, db_session):
    research = await _research(db_session)

    await append_progress(session_factory, research.id, make_event("Web Search", "in_progress", "searching"))
    await append_progress(
        session_factory, research.id, make_event("Web Search", "completed", "done", {"resultsFound": 3})
    )

    async with session_factory() as db:
        stored = await db.get(MarketResearch, research.id)
        events = parse_events(stored.progress_log)
    assert [(e.step, e.status) for e in events] == [
        ("Web Search", "in_progress"),
        ("Web Search", "completed"),
    ]
    assert events[1].details == {"resultsFound": 3}
    assert events[0].timestamp <= events[1].timestamp


async def test_append_to_corrupt_log_starts_fresh(session_factory, db_session):
    research = await _research(db_session, progress_log="}}} definitely not json")

    await append_progress(session_factory, research.id, make_event("Financial Data", "failed", "boom"))

    async with session_factory() as db:
        stored = await db.get(MarketResearch, research.id)
    events = parse_events(stored.progress_log)
    assert len(events) == 1
    assert events[0].step == "Financial Data"


async def test_append_to_missing_record_does_not_raise(session_factory):
    await append_progress(session_factory, uuid.uuid4(), make_event("Web Search", "completed", "ok"))


async def test_append_swallows_database_errors():
    def broken_factory():
        raise RuntimeError("database is gone")

    await append_progress(broken_factory, uuid.uuid4(), make_event("Web Search", "completed", "ok"))
