from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

ProgressStatus = Literal["in_progress", "completed", "failed"]


class ProgressEvent(BaseModel):
    """One step transition in a research run, shown to a polling client."""

    step: str
    status: ProgressStatus
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    details: Optional[Dict[str, Any]] = None


class ReportItem(BaseModel):
    title: str
    description: str = ""


class StartResearchResponse(BaseModel):
    message: str
    research_id: UUID
    status: str


class MarketResearchUpdate(BaseModel):
    """Fields the company owner may overwrite on the latest research."""

    executive_summary: Optional[str] = None
    market_position: Optional[str] = None
    competitors: Optional[List[ReportItem]] = None
    opportunities: Optional[List[ReportItem]] = None
    threats: Optional[List[ReportItem]] = None
    recommendations: Optional[List[ReportItem]] = None


class MarketResearchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: UUID
    status: str
    progress: List[ProgressEvent] = []
    search_results: Optional[Dict[str, Any]] = None
    financial_data: Optional[Dict[str, Any]] = None
    competitor_data: Optional[Dict[str, Any]] = None
    ai_model: Optional[str] = None
    executive_summary: Optional[str] = None
    market_position: Optional[str] = None
    competitors: Optional[List[ReportItem]] = None
    opportunities: Optional[List[ReportItem]] = None
    threats: Optional[List[ReportItem]] = None
    recommendations: Optional[List[ReportItem]] = None
    last_updated: datetime
    created_at: datetime
