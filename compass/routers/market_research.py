import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from compass.database import get_db, get_session_factory
from compass.dependencies import get_owned_company, limiter
from compass.exceptions import ResearchInProgress
from compass.models.company import Company
from compass.models.market_research import MarketResearch
from compass.schemas.market_research import (
    MarketResearchOut,
    MarketResearchUpdate,
    StartResearchResponse,
)
from compass.services.market_research import run_market_research, start_market_research
from compass.services.progress_log import parse_events

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_out(research: MarketResearch) -> MarketResearchOut:
    out = MarketResearchOut.model_validate(research)
    out.progress = parse_events(research.progress_log)
    return out


async def _latest(db: AsyncSession, company_id) -> Optional[MarketResearch]:
    result = await db.execute(
        select(MarketResearch)
        .where(MarketResearch.company_id == company_id)
        .order_by(MarketResearch.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


@router.post("", response_model=StartResearchResponse, status_code=202)
@limiter.limit("10/hour")
async def start_research(
    request: Request,
    background_tasks: BackgroundTasks,
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> StartResearchResponse:
    """
    Start AI market research for a company. Returns immediately; poll GET for progress.

    **Response:** StartResearchResponse (message, research_id, status)
    **Errors:** 404 (company not found), 409 (research already in progress), 401 (unauthorized)
    """
    try:
        research = await start_market_research(db, company)
    except ResearchInProgress as e:
        raise HTTPException(
            status_code=409,
            detail={
                "message": "Market research already in progress for this company",
                "research_id": str(e.research_id),
            },
        )

    background_tasks.add_task(run_market_research, research.id, session_factory)
    return StartResearchResponse(
        message="Market research started",
        research_id=research.id,
        status=research.status,
    )


@router.get("", response_model=MarketResearchOut, status_code=200)
async def get_latest_research(
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
) -> MarketResearchOut:
    """
    Most recent research for a company, in any status, with its full progress log.

    **Errors:** 404 (company not found or no research yet), 401 (unauthorized)
    """
    research = await _latest(db, company.id)
    if research is None:
        raise HTTPException(status_code=404, detail="No market research found for this company")
    return _to_out(research)


@router.get("/history", response_model=list[MarketResearchOut], status_code=200)
async def list_research_history(
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
):
    """All research runs for a company, newest first."""
    rows = (
        await db.execute(
            select(MarketResearch)
            .where(MarketResearch.company_id == company.id)
            .order_by(MarketResearch.created_at.desc())
        )
    ).scalars().all()
    return [_to_out(r) for r in rows]


@router.patch("", response_model=MarketResearchOut, status_code=200)
async def update_latest_research(
    payload: MarketResearchUpdate,
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
) -> MarketResearchOut:
    """
    Overwrite report fields on the latest research.

    **Request:** any of executive_summary, market_position, competitors, opportunities,
    threats, recommendations. An explicit null clears the field.
    **Errors:** 400 (no updatable field), 404 (no research), 409 (research still running)
    """
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No valid fields provided for update")

    research = await _latest(db, company.id)
    if research is None:
        raise HTTPException(status_code=404, detail="No market research found for this company")
    if research.status == "IN_PROGRESS":
        raise HTTPException(status_code=409, detail="Market research is still running")

    for field, value in changes.items():
        setattr(research, field, value)
    research.last_updated = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(research)

    logger.info("Updated fields %s on research %s", sorted(changes), research.id)
    return _to_out(research)
