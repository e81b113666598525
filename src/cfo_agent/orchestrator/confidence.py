"""
src/cfo_agent/orchestrator/confidence.py

The confidence header every substantive answer starts with:

    [CONFIDENCE: 92% | COMPLETENESS: 80% | ISSUES: missing Q3 data, FX assumed]

Parsing is strict: the header must open the response (leading whitespace is
allowed) and match this shape exactly. Anything else counts as "no header".
"""


import re
from typing import Optional

from cfo_agent.orchestrator.models import ConfidenceHeader


HEADER_RE = re.compile(
    r"^\s*\[CONFIDENCE:\s*(?P<confidence>\d{1,3})%\s*\|"
    r"\s*COMPLETENESS:\s*(?P<completeness>\d{1,3})%\s*\|"
    r"\s*ISSUES:\s*(?P<issues>[^\]]*)\]"
)


def parse_header(content: str) -> Optional[ConfidenceHeader]:
    """Return the parsed header, or None when it is missing or malformed."""

    match = HEADER_RE.match(content or "")
    if not match:
        return None

    confidence = int(match.group("confidence"))
    completeness = int(match.group("completeness"))
    if confidence > 100 or completeness > 100:
        return None

    raw_issues = match.group("issues").strip()
    if not raw_issues or raw_issues.lower() == "none":
        issues = []
    else:
        issues = [i.strip() for i in raw_issues.split(",") if i.strip()]

    return ConfidenceHeader(
        confidence=confidence,
        completeness=completeness,
        issues=issues,
        narrative=content[match.end():].strip(),
    )

def strip_header(content: str) -> str:

    match = HEADER_RE.match(content or "")

    return content[match.end():].strip() if match else (content or "").strip()
