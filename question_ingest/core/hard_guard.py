from __future__ import annotations

import logging
import re
from typing import List

from question_ingest.models.schemas import GuardSubject, HardGuardDecision
from question_ingest.utils.observability import log_event

logger = logging.getLogger(__name__)

# Order inside the alternation matters: a full relation ("3 = 3") wins over its "=".
# `-` and `/` joining two letters ("well-known", "and/or") are prose, not operators.
MATH_PATTERN = re.compile(
    r"(\d+\s*(?:=|>|<|≠|≈|≤|≥)\s*\d+)"
    r"|(\d+(?:\.\d+)?\s*°)"
    r"|(?<![A-Za-z])[-/]|[-/](?![A-Za-z])"
    r"|[=+*√^%∑∫π≠≈≤≥]"
    r"|\\(?:frac|sum|int|sqrt|pi)"
    r"|\b(?:cos|sin|tan|cot|sec|csc|log|ln)\b"
    r"|[{}\[\]]"
)

LATEX_PATTERN = re.compile(
    r"\\begin\{.*?\}|\\frac|\\sqrt|\\pi|\\theta|\\alpha|\\beta|\\gamma"
)

MAX_MATCHED_TOKENS = 5


def run_hard_guard(text: str) -> HardGuardDecision:
    """
    Promote math only when explicit glyphs/functions are present.

    Returns the decision plus matched tokens for the reason trail. The guard is
    a hard override: `derive_subject_hint` never lets experts outvote it.
    """
    if not text or not isinstance(text, str) or not text.strip():
        return HardGuardDecision(subject=GuardSubject.NONE, reason="empty", matched_tokens=[])

    matches: List[str] = [m.group(0) for m in MATH_PATTERN.finditer(text)][:MAX_MATCHED_TOKENS]
    if LATEX_PATTERN.search(text):
        matches.append("latex")

    if not matches:
        return HardGuardDecision(subject=GuardSubject.NONE, reason="no_math_tokens", matched_tokens=[])

    decision = HardGuardDecision(
        subject=GuardSubject.MATH,
        reason="explicit_math_tokens",
        matched_tokens=matches,
    )
    log_event(logger, "hard_guard_decision", level="debug", subject="math", tokens=matches)
    return decision
