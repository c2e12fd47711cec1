from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, IDMixin, TimestampMixin, utcnow
from .types import JSONBCompat

RESEARCH_STATUSES = ("PENDING", "IN_PROGRESS", "COMPLETED", "FAILED")
TERMINAL_STATUSES = ("COMPLETED", "FAILED")


class MarketResearch(Base, IDMixin, TimestampMixin):
    """One AI market research run for a company, with its progress log and report."""

    __tablename__ = "market_researches"

    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="PENDING", server_default="PENDING"
    )
    # JSON text: {"progress": [ProgressEvent, ...]}
    progress_log: Mapped[Optional[str]] = mapped_column(Text)

    search_results: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONBCompat)
    financial_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONBCompat)
    competitor_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONBCompat)

    raw_analysis: Mapped[Optional[str]] = mapped_column(Text)
    ai_model: Mapped[Optional[str]] = mapped_column(String(100))
    executive_summary: Mapped[Optional[str]] = mapped_column(Text)
    market_position: Mapped[Optional[str]] = mapped_column(Text)
    competitors: Mapped[Optional[List[Dict[str, str]]]] = mapped_column(JSONBCompat)
    opportunities: Mapped[Optional[List[Dict[str, str]]]] = mapped_column(JSONBCompat)
    threats: Mapped[Optional[List[Dict[str, str]]]] = mapped_column(JSONBCompat)
    recommendations: Mapped[Optional[List[Dict[str, str]]]] = mapped_column(JSONBCompat)

    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'IN_PROGRESS', 'COMPLETED', 'FAILED')",
            name="ck_market_researches_status_valid",
        ),
        Index("ix_market_researches_company_created", "company_id", "created_at"),
    )
