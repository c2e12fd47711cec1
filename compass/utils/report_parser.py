"""Best-effort parsing of the free-text market research report.

The model is asked to answer with six ``## SECTION`` blocks. Nothing here
raises: missing sections come back as ``""`` or ``[]`` and unparseable list
lines degrade to ``{"title": line, "description": ""}``.
"""
import re
from typing import Union

EXECUTIVE_SUMMARY = "EXECUTIVE SUMMARY"
MARKET_POSITION = "MARKET POSITION"
KEY_COMPETITORS = "KEY COMPETITORS"
OPPORTUNITIES = "OPPORTUNITIES"
THREATS = "THREATS"
STRATEGIC_RECOMMENDATIONS = "STRATEGIC RECOMMENDATIONS"

SECTION_NAMES = (
    EXECUTIVE_SUMMARY,
    MARKET_POSITION,
    KEY_COMPETITORS,
    OPPORTUNITIES,
    THREATS,
    STRATEGIC_RECOMMENDATIONS,
)
TEXT_SECTIONS = (EXECUTIVE_SUMMARY, MARKET_POSITION)
LIST_SECTIONS = (KEY_COMPETITORS, OPPORTUNITIES, THREATS, STRATEGIC_RECOMMENDATIONS)

# Record field each section is stored in
SECTION_FIELDS = {
    EXECUTIVE_SUMMARY: "executive_summary",
    MARKET_POSITION: "market_position",
    KEY_COMPETITORS: "competitors",
    OPPORTUNITIES: "opportunities",
    THREATS: "threats",
    STRATEGIC_RECOMMENDATIONS: "recommendations",
}

# A section runs until the next "## " heading or any heading naming a known section.
_SECTION_END = re.compile(
    r"^[ \t]*(?:##(?!#)[ \t]+\S.*|#{1,6}[ \t]*(?:"
    + "|".join(r"\s+".join(re.escape(w) for w in name.split()) for name in SECTION_NAMES)
    + r")[ \t]*:?[ \t]*)$",
    re.IGNORECASE | re.MULTILINE,
)
_SUBHEADING = re.compile(r"^#{1,6}[ \t]+\S")
_BULLET = re.compile(r"^(?:[-•]|\*(?!\*))\s*")
_NUMBERED = re.compile(r"^\d+[.)]\s+")
_LEADING_BOLD = re.compile(r"^\*\*(.+?)\*\*")
_SEPARATOR = re.compile(r"[:–-]")

ReportItem = dict[str, str]
ParsedReport = dict[str, Union[str, list[ReportItem]]]


def _heading_pattern(section_name: str) -> re.Pattern:
    words = r"\s+".join(re.escape(w) for w in section_name.split())
    return re.compile(rf"^[ \t]*#{{1,6}}[ \t]*{words}[ \t]*:?[ \t]*$", re.IGNORECASE | re.MULTILINE)


def extract_section(text: str, section_name: str) -> str:
    """Text under the ``## section_name`` heading up to the next section heading, trimmed.

    Deeper subheadings such as ``### Direct competitors`` stay inside the section.
    """
    if not text or not section_name:
        return ""
    heading = _heading_pattern(section_name).search(text)
    if heading is None:
        return ""
    start = heading.end()
    next_heading = _SECTION_END.search(text, start + 1) if start < len(text) else None
    end = next_heading.start() if next_heading else len(text)
    return text[start:end].strip()


def _strip_marker(line: str) -> str:
    line = _BULLET.sub("", line, count=1)
    line = _NUMBERED.sub("", line, count=1)
    return _LEADING_BOLD.sub(r"\1", line, count=1)


def parse_list_line(line: str) -> ReportItem:
    """Split one list line on its first separator into title and description."""
    clean = _strip_marker(line.strip())
    match = _SEPARATOR.search(clean)
    if match is None:
        return {"title": clean.strip(), "description": ""}
    return {
        "title": clean[: match.start()].strip(),
        "description": clean[match.end():].strip(),
    }


def extract_structured_list(text: str, section_name: str) -> list[ReportItem]:
    section = extract_section(text, section_name)
    if not section:
        return []
    lines = [line.strip() for line in section.splitlines()]
    return [parse_list_line(line) for line in lines if line and not _SUBHEADING.match(line)]


def parse_report(text: str) -> ParsedReport:
    """Map each of the six fixed section names to its text or list of items."""
    parsed: ParsedReport = {}
    for name in TEXT_SECTIONS:
        parsed[name] = extract_section(text, name)
    for name in LIST_SECTIONS:
        parsed[name] = extract_structured_list(text, name)
    return parsed
