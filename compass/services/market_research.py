"""Background market research pipeline.

Stages run strictly in order: web search, financial data, competitor
analysis, AI analysis, finalizing. Each stage records its own progress and
failures; a failed stage leaves its payload empty and the run carries on.
Only errors outside the stage boundaries mark the whole run FAILED.
"""
import asyncio
import json
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar
from urllib.parse import urlparse
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from compass.config import get_settings
from compass.exceptions import (
    InvalidResponse,
    ProviderError,
    ProviderTimeout,
    ResearchInProgress,
    ResearchNotFound,
)
from compass.models.company import Company
from compass.models.market_research import TERMINAL_STATUSES, MarketResearch
from compass.services.ai_service import ClaudeTextGenerator, OpenAITextGenerator, TextGenerator
from compass.services.financial_service import AlphaVantageClient
from compass.services.progress_log import add_event, append_progress, dump_progress, make_event
from compass.services.search_service import SearchResponse, TavilySearchClient
from compass.utils.report_parser import (
    EXECUTIVE_SUMMARY,
    KEY_COMPETITORS,
    MARKET_POSITION,
    OPPORTUNITIES,
    SECTION_FIELDS,
    STRATEGIC_RECOMMENDATIONS,
    THREATS,
    ParsedReport,
    parse_report,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

STEP_INITIALIZING = "Initializing"
STEP_WEB_SEARCH = "Web Search"
STEP_FINANCIAL = "Financial Data"
STEP_COMPETITORS = "Competitor Analysis"
STEP_AI = "AI Analysis"
STEP_FINALIZING = "Finalizing"
STEP_ERROR = "Error"

COMPETITOR_KEYWORDS = ("rival", "competitor", "alternative", "similar to", "competes with", "vs", "compared to")

# Held only while a start request checks for a running job and creates its record
_company_locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = weakref.WeakValueDictionary()


@dataclass
class ResearchProviders:
    search: TavilySearchClient
    financial: AlphaVantageClient
    primary: TextGenerator
    fallback: TextGenerator

    @classmethod
    def from_settings(cls) -> "ResearchProviders":
        return cls(
            search=TavilySearchClient(),
            financial=AlphaVantageClient(),
            primary=ClaudeTextGenerator(),
            fallback=OpenAITextGenerator(),
        )


@dataclass
class AnalysisResult:
    text: str
    model: str
    sections: ParsedReport


@dataclass
class _RunContext:
    research_id: UUID
    session_factory: async_sessionmaker[AsyncSession]
    providers: ResearchProviders
    company_name: str
    website: Optional[str]
    stage_timeout: float
    max_tokens: int

    async def progress(self, step: str, status: str, message: str, details: Optional[dict] = None) -> None:
        await append_progress(
            self.session_factory, self.research_id, make_event(step, status, message, details)
        )

    async def call(self, awaitable: Awaitable[T]) -> T:
        """Await a provider call, bounded by the per-stage timeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.stage_timeout)
        except asyncio.TimeoutError as e:
            raise ProviderTimeout(f"Timed out after {self.stage_timeout:g}s") from e


# ---------------------------------------------------------------------------
# Request handling
# ---------------------------------------------------------------------------


async def start_market_research(db: AsyncSession, company: Company) -> MarketResearch:
    """
    Create an IN_PROGRESS research record seeded with an Initializing event.

    Raises ResearchInProgress when the company already has a running job. The
    check and the insert are serialized per company within this process only.
    """
    lock = _company_locks.get(company.id)
    if lock is None:
        lock = asyncio.Lock()
        _company_locks[company.id] = lock

    async with lock:
        existing = await db.execute(
            select(MarketResearch.id)
            .where(MarketResearch.company_id == company.id, MarketResearch.status == "IN_PROGRESS")
            .limit(1)
        )
        running_id = existing.scalar_one_or_none()
        if running_id is not None:
            raise ResearchInProgress(running_id)

        seed = make_event(
            STEP_INITIALIZING,
            "completed",
            f"Starting comprehensive market research for {company.name}",
            {
                "company": company.name,
                "website": company.website,
                "searchScope": "Market analysis, competitors, financial data, industry trends",
            },
        )
        research = MarketResearch(
            company_id=company.id,
            status="IN_PROGRESS",
            progress_log=dump_progress([seed.model_dump(mode="json")]),
            last_updated=datetime.now(timezone.utc),
        )
        db.add(research)
        await db.commit()
        await db.refresh(research)

    logger.info("Market research %s created for company %s", research.id, company.name)
    return research


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------


def build_analysis_prompt(
    company_name: str,
    search_results: Any,
    financial_data: Any,
    competitor_data: Any,
) -> str:
    """Prompt asking for the six ``##`` sections the report parser understands."""
    return f"""As a senior market research analyst, please analyze the following data about {company_name} and provide a comprehensive market research report.

SEARCH RESULTS:
{json.dumps(search_results, indent=2, default=str)}

FINANCIAL DATA:
{json.dumps(financial_data, indent=2, default=str)}

COMPETITOR DATA:
{json.dumps(competitor_data, indent=2, default=str)}

Please provide your analysis in the following structured format:

## {EXECUTIVE_SUMMARY}
[2-3 sentence overview of key findings]

## {MARKET_POSITION}
[Analysis of the company's position in the market, market share, competitive advantages]

## {KEY_COMPETITORS}
[List of 3-5 main competitors, one per line, as "- Name: brief description"]

## {OPPORTUNITIES}
[3-5 key growth opportunities and market trends, one per line, as "- Title: description"]

## {THREATS}
[3-5 key risks and challenges, one per line, as "- Title: description"]

## {STRATEGIC_RECOMMENDATIONS}
[3-5 actionable recommendations for growth and risk mitigation, one per line, as "- Title: description"]

Focus on being factual, data-driven, and actionable. If information is limited, clearly state assumptions and data limitations.
"""


# ---------------------------------------------------------------------------
# Diagnostic summaries
# ---------------------------------------------------------------------------


def _safe_details(builder: Callable[..., dict], *args: Any) -> dict:
    """Diagnostics only: a failing summary degrades to a note instead of failing the stage."""
    try:
        return builder(*args)
    except Exception as e:  # noqa: BLE001
        logger.warning("Progress summary %s failed: %s", getattr(builder, "__name__", builder), e)
        return {"summaryUnavailable": str(e)}


def _domain(url: str) -> str:
    return (urlparse(url).hostname or "unknown") if url else "unknown"


def _summarize_search(response: SearchResponse, company_name: str) -> dict:
    results = response.results
    total_content = sum(len(r.content) for r in results)
    name = company_name.lower()
    return {
        "resultsFound": len(results),
        "keyTopics": [r.title for r in results[:3]],
        "searchQuery": response.query[:100],
        "answer": (response.answer or "")[:300] or None,
        "keyFindings": {
            "newsArticles": sum(1 for r in results if "news" in r.url or "news" in r.title.lower()),
            "companyMentions": sum(1 for r in results if name in r.content.lower()),
            "industryReports": sum(
                1 for r in results if "report" in r.title.lower() or "analysis" in r.title.lower()
            ),
            "topSources": [
                {"title": r.title[:60], "domain": _domain(r.url), "relevanceScore": r.score}
                for r in results[:3]
            ],
        },
        "dataSnapshot": {
            "totalContent": total_content,
            "avgContentLength": round(total_content / len(results)) if results else 0,
            "uniqueDomains": len({_domain(r.url) for r in results}),
        },
    }


def _summarize_competitor_search(response: SearchResponse, company_name: str) -> dict:
    results = response.results
    mentions = []
    for r in results:
        haystack = f"{r.title} {r.content}".lower()
        matched = [kw for kw in COMPETITOR_KEYWORDS if kw in haystack]
        if matched:
            mentions.append({"source": r.title[:40], "matchedKeywords": matched})
    vs_name = f"vs {company_name.lower()}"
    return {
        "competitorsFound": len(results),
        "keyCompetitors": [r.title for r in results[:3]],
        "competitorInsights": {
            "directCompetitors": sum(
                1
                for r in results
                if "competitor" in r.title.lower()
                or "competes with" in r.content.lower()
                or vs_name in r.content.lower()
            ),
            "industryPlayers": sum(
                1 for r in results if "industry" in r.content.lower() or "market leader" in r.content.lower()
            ),
            "competitorMentions": mentions[:3],
        },
    }


def _summarize_financials(bundle: dict) -> dict:
    quote = (bundle.get("quote") or {}).get("Global Quote") or {}
    overview = bundle.get("overview") or {}
    earnings = bundle.get("earnings") or {}
    return {
        "symbol": bundle.get("symbol"),
        "missing": [part for part in ("quote", "overview", "earnings") if not bundle.get(part)],
        "keyMetrics": {
            "currentPrice": quote.get("05. price", "N/A"),
            "changePercent": quote.get("10. change percent", "N/A"),
            "volume": quote.get("06. volume", "N/A"),
            "marketCap": overview.get("MarketCapitalization", "N/A"),
            "peRatio": overview.get("PERatio", "N/A"),
            "dividendYield": overview.get("DividendYield", "N/A"),
        },
        "companyInfo": {
            "sector": overview.get("Sector", "N/A"),
            "industry": overview.get("Industry", "N/A"),
            "employees": overview.get("FullTimeEmployees", "N/A"),
        },
        "recentEarnings": [
            {
                "quarter": q.get("fiscalDateEnding"),
                "reportedEPS": q.get("reportedEPS"),
                "estimatedEPS": q.get("estimatedEPS"),
            }
            for q in (earnings.get("quarterlyEarnings") or [])[:2]
        ],
    }


def _summarize_analysis(analysis: AnalysisResult, collected: dict[str, bool]) -> dict:
    sections = analysis.sections
    sources = [step for step, present in collected.items() if present]
    if collected.get(STEP_WEB_SEARCH) and collected.get(STEP_COMPETITORS):
        confidence = "High"
    elif collected.get(STEP_FINANCIAL):
        confidence = "Medium"
    else:
        confidence = "Low"
    return {
        "aiModel": analysis.model,
        "insightsGenerated": {
            "executiveSummary": bool(sections[EXECUTIVE_SUMMARY]),
            "marketPosition": bool(sections[MARKET_POSITION]),
            "competitors": len(sections[KEY_COMPETITORS]),
            "opportunities": len(sections[OPPORTUNITIES]),
            "threats": len(sections[THREATS]),
            "recommendations": len(sections[STRATEGIC_RECOMMENDATIONS]),
        },
        "analysisQuality": {
            "dataSourcesUsed": sources,
            "responseLength": len(analysis.text),
            "confidence": confidence,
        },
        "keyInsights": {
            "marketPositionSummary": sections[MARKET_POSITION][:100] or "N/A",
            "topOpportunity": (sections[OPPORTUNITIES] or [{"title": "N/A"}])[0]["title"][:80],
            "primaryThreat": (sections[THREATS] or [{"title": "N/A"}])[0]["title"][:80],
            "mainRecommendation": (sections[STRATEGIC_RECOMMENDATIONS] or [{"title": "N/A"}])[0]["title"][:80],
        },
    }


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


def _search_query(company_name: str, website: Optional[str]) -> str:
    query = f"{company_name} market analysis industry trends competitors revenue funding"
    if website:
        host = urlparse(website if "//" in website else f"//{website}").hostname
        if host:
            query += f" site:{host}"
    return query


async def _web_search_stage(ctx: _RunContext) -> Optional[dict]:
    query = _search_query(ctx.company_name, ctx.website)
    await ctx.progress(
        STEP_WEB_SEARCH,
        "in_progress",
        "Searching the web for market information, news, and industry trends",
        {
            "searchTerms": ["market analysis", "industry trends", "competitors", "revenue", "funding"],
            "searchQuery": query[:100],
        },
    )
    try:
        response = await ctx.call(
            ctx.providers.search.search(query, max_results=10, depth="advanced", include_answer=True)
        )
    except Exception as e:
        logger.error("Web search failed for %s: %s", ctx.company_name, e)
        await ctx.progress(
            STEP_WEB_SEARCH,
            "failed",
            "Failed to retrieve web search results",
            {"error": str(e) or type(e).__name__},
        )
        return None

    await ctx.progress(
        STEP_WEB_SEARCH,
        "completed",
        f"Gathered {len(response.results)} web results for market information",
        _safe_details(_summarize_search, response, ctx.company_name),
    )
    return response.model_dump(mode="json")


async def _financial_stage(ctx: _RunContext) -> Optional[dict]:
    await ctx.progress(
        STEP_FINANCIAL,
        "in_progress",
        "Looking up financial and stock market data",
        {"dataSources": "Alpha Vantage", "lookingFor": "Stock price, company overview, earnings"},
    )
    try:
        symbol = await ctx.call(ctx.providers.financial.lookup_symbol(ctx.company_name))
        if not symbol:
            await ctx.progress(
                STEP_FINANCIAL,
                "completed",
                "No stock symbol found - likely a private company",
                {
                    "note": "Will focus on market and competitor analysis instead",
                    "searchAttempted": ctx.company_name,
                    "publicCompanyStatus": "Private/Not Publicly Traded",
                },
            )
            return None

        await ctx.progress(
            STEP_FINANCIAL,
            "in_progress",
            f"Fetching quote, overview and earnings for {symbol}",
            {"symbol": symbol},
        )
        bundle = await ctx.call(ctx.providers.financial.get_financial_data(symbol))
        if bundle.is_empty:
            raise InvalidResponse(f"No financial data available for {symbol}: {bundle.errors}")
    except Exception as e:
        logger.error("Financial data retrieval failed for %s: %s", ctx.company_name, e)
        await ctx.progress(
            STEP_FINANCIAL,
            "failed",
            "Failed to retrieve financial data",
            {"error": str(e) or type(e).__name__},
        )
        return None

    payload = bundle.model_dump(mode="json")
    message = f"Found financial data for stock symbol: {bundle.symbol}"
    if bundle.missing:
        message += f" (missing: {', '.join(bundle.missing)})"
    await ctx.progress(STEP_FINANCIAL, "completed", message, _safe_details(_summarize_financials, payload))
    return payload


async def _competitor_stage(ctx: _RunContext) -> Optional[dict]:
    query = f"{ctx.company_name} competitors alternative companies similar businesses industry"
    await ctx.progress(
        STEP_COMPETITORS,
        "in_progress",
        "Identifying key competitors and market landscape",
        {
            "searchQuery": query,
            "lookingFor": ["Direct competitors", "Market alternatives", "Industry leaders"],
        },
    )
    try:
        response = await ctx.call(
            ctx.providers.search.search(query, max_results=5, depth="basic", include_answer=False)
        )
    except Exception as e:
        logger.error("Competitor analysis failed for %s: %s", ctx.company_name, e)
        await ctx.progress(
            STEP_COMPETITORS,
            "failed",
            "Failed to analyze competitors",
            {"error": str(e) or type(e).__name__},
        )
        return None

    await ctx.progress(
        STEP_COMPETITORS,
        "completed",
        f"Identified competitive landscape from {len(response.results)} sources",
        _safe_details(_summarize_competitor_search, response, ctx.company_name),
    )
    return response.model_dump(mode="json")


async def _generate_report(ctx: _RunContext, prompt: str) -> tuple[str, str]:
    """Ask the primary model; on a capacity failure ask the fallback with the same prompt."""
    primary = ctx.providers.primary
    fallback = ctx.providers.fallback

    await ctx.progress(STEP_AI, "in_progress", f"Running analysis through {primary.label}", {"model": primary.label})
    try:
        return await ctx.call(primary.generate(prompt, ctx.max_tokens)), primary.label
    except ProviderError as e:
        if not e.is_capacity:
            raise
        logger.warning("%s at capacity, falling back to %s: %s", primary.label, fallback.label, e)
        await ctx.progress(
            STEP_AI,
            "in_progress",
            f"{primary.label} overloaded, switching to {fallback.label}",
            {"fallback": fallback.label, "reason": str(e)},
        )

    text = await ctx.call(fallback.generate(prompt, ctx.max_tokens))
    return text, fallback.label


async def _analysis_stage(
    ctx: _RunContext,
    search_results: Optional[dict],
    financial_data: Optional[dict],
    competitor_data: Optional[dict],
) -> Optional[AnalysisResult]:
    collected = {
        STEP_WEB_SEARCH: search_results is not None,
        STEP_FINANCIAL: financial_data is not None,
        STEP_COMPETITORS: competitor_data is not None,
    }
    await ctx.progress(
        STEP_AI,
        "in_progress",
        "Processing all data with AI to generate strategic insights",
        {
            "dataCollected": collected,
            "analysisScope": "Market position, opportunities, threats, strategic recommendations",
        },
    )
    try:
        prompt = build_analysis_prompt(ctx.company_name, search_results, financial_data, competitor_data)
        text, model = await _generate_report(ctx, prompt)
        if not text or not text.strip():
            raise InvalidResponse(f"{model} returned an empty analysis")
    except Exception as e:
        logger.error("AI analysis failed for %s: %s", ctx.company_name, e)
        await ctx.progress(
            STEP_AI,
            "failed",
            "AI analysis encountered an error",
            {"error": str(e) or type(e).__name__, "note": "Research will be completed with the raw data collected"},
        )
        return None

    await ctx.progress(STEP_AI, "in_progress", "Parsing and structuring insights", {"model": model})
    analysis = AnalysisResult(text=text, model=model, sections=parse_report(text))
    await ctx.progress(
        STEP_AI,
        "completed",
        f"AI analysis completed successfully using {model}",
        _safe_details(_summarize_analysis, analysis, collected),
    )
    return analysis


async def _finalize(
    ctx: _RunContext,
    search_results: Optional[dict],
    financial_data: Optional[dict],
    competitor_data: Optional[dict],
    analysis: Optional[AnalysisResult],
) -> None:
    """Write collected data, the closing event and COMPLETED in one commit."""
    await ctx.progress(STEP_FINALIZING, "in_progress", "Compiling market research results")

    async with ctx.session_factory() as db:
        research = await db.get(MarketResearch, ctx.research_id)
        if research is None:
            raise ResearchNotFound(f"Market research {ctx.research_id} disappeared before finalizing")

        research.search_results = search_results
        research.financial_data = financial_data
        research.competitor_data = competitor_data
        if analysis is not None:
            research.raw_analysis = analysis.text
            research.ai_model = analysis.model
            for section, field in SECTION_FIELDS.items():
                setattr(research, field, analysis.sections[section])

        add_event(
            research,
            make_event(
                STEP_FINALIZING,
                "completed",
                "Market research completed successfully",
                {
                    "dataCollected": {
                        "webSearch": search_results is not None,
                        "financialData": financial_data is not None,
                        "competitorAnalysis": competitor_data is not None,
                        "aiInsights": analysis is not None,
                    },
                    "completedAt": datetime.now(timezone.utc).isoformat(),
                },
            ),
        )
        research.status = "COMPLETED"
        await db.commit()


async def _mark_failed(
    session_factory: async_sessionmaker[AsyncSession], research_id: UUID, error: Exception
) -> None:
    """Write FAILED together with an explanatory Error event. Never raises."""
    try:
        async with session_factory() as db:
            research = await db.get(MarketResearch, research_id)
            if research is None:
                logger.error("Cannot mark research %s failed: record not found", research_id)
                return
            add_event(
                research,
                make_event(
                    STEP_ERROR,
                    "failed",
                    "Market research failed due to an unexpected error",
                    {"error": str(error) or type(error).__name__},
                ),
            )
            research.status = "FAILED"
            await db.commit()
    except Exception as e:  # noqa: BLE001
        logger.exception("Failed to mark research %s as FAILED: %s", research_id, e)


async def _load_context(
    session_factory: async_sessionmaker[AsyncSession],
    research_id: UUID,
    providers: ResearchProviders,
) -> Optional[_RunContext]:
    async with session_factory() as db:
        research = await db.get(MarketResearch, research_id)
        if research is None:
            raise ResearchNotFound(f"Market research {research_id} not found")
        if research.status in TERMINAL_STATUSES:
            logger.warning("Market research %s already %s; not rerunning", research_id, research.status)
            return None
        company = await db.get(Company, research.company_id)
        if company is None:
            raise ResearchNotFound(f"Company {research.company_id} for research {research_id} not found")
        if research.status != "IN_PROGRESS":
            research.status = "IN_PROGRESS"
            research.last_updated = datetime.now(timezone.utc)
            await db.commit()

        settings = get_settings()
        return _RunContext(
            research_id=research_id,
            session_factory=session_factory,
            providers=providers,
            company_name=company.name,
            website=company.website,
            stage_timeout=settings.research_stage_timeout_seconds,
            max_tokens=settings.ai_max_tokens,
        )


async def run_market_research(
    research_id: UUID,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    providers: Optional[ResearchProviders] = None,
) -> None:
    """Run the full pipeline for one research record. Called after the response is sent."""
    if session_factory is None:
        from compass.database import AsyncSessionLocal

        session_factory = AsyncSessionLocal

    try:
        ctx = await _load_context(session_factory, research_id, providers or ResearchProviders.from_settings())
        if ctx is None:
            return
        logger.info("Starting market research %s for %s", research_id, ctx.company_name)

        search_results = await _web_search_stage(ctx)
        financial_data = await _financial_stage(ctx)
        competitor_data = await _competitor_stage(ctx)
        analysis = await _analysis_stage(ctx, search_results, financial_data, competitor_data)
        await _finalize(ctx, search_results, financial_data, competitor_data, analysis)

        logger.info("Market research %s completed for %s", research_id, ctx.company_name)
    except Exception as e:
        logger.exception("Market research %s failed: %s", research_id, e)
        await _mark_failed(session_factory, research_id, e)
