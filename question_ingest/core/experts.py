from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Sequence, Tuple

from question_ingest.models.schemas import ExpertProbe, ExpertSubject

# ASCII-bounded on purpose: Python's \b treats Han characters as word chars,
# which would hide "abc" inside "中文abc中文".
_EN_WORD_RE = re.compile(r"(?<![A-Za-z])[A-Za-z]{3,}(?![A-Za-z])")
_HAN_RE = re.compile(r"[一-鿿]")
_MATH_SYMBOL_RE = re.compile(
    r"(?<![A-Za-z])[-/]|[-/](?![A-Za-z])"
    r"|[=+*√^%∑∫]"
    r"|\\(?:frac|sqrt|pi)"
    r"|(?<![A-Za-z])(?:cos|sin|tan|log|ln)(?![A-Za-z])",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ExpertTable:
    """Keyword lists and saturation points for the per-subject scorers."""

    english_ratio_gain: float = 1.2
    english_reading_ratio: float = 0.6
    math_saturation: int = 5
    math_algebra_hits: int = 2
    chinese_saturation: int = 40
    social_keywords: Tuple[str, ...] = ("history", "dynasty", "civil", "law", "憲法", "地理", "歷史", "公民")
    social_saturation: int = 4
    science_keywords: Tuple[str, ...] = ("energy", "force", "cell", "reaction", "電路", "酸鹼", "實驗")
    science_saturation: int = 4


DEFAULT_EXPERT_TABLE = ExpertTable()


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


def _keyword_regex(keywords: Sequence[str]) -> re.Pattern:
    parts: List[str] = []
    for kw in keywords:
        if re.fullmatch(r"[A-Za-z]+", kw):
            parts.append(rf"(?<![A-Za-z]){re.escape(kw)}(?![A-Za-z])")
        else:
            parts.append(re.escape(kw))
    return re.compile("|".join(parts) or r"(?!x)x", re.IGNORECASE)


def _english_expert(text: str, table: ExpertTable) -> ExpertProbe:
    english_words = len(_EN_WORD_RE.findall(text))
    total = max(1, len(text.split()))
    ratio = english_words / total
    reading = ratio > table.english_reading_ratio
    return ExpertProbe(
        subject=ExpertSubject.ENGLISH,
        confidence=_clamp(ratio * table.english_ratio_gain),
        tags=["reading", "vocabulary"] if reading else ["grammar", "cloze"],
        notes="語境選字" if reading else "句法判讀",
    )


def _math_expert(text: str, table: ExpertTable) -> ExpertProbe:
    hits = len(_MATH_SYMBOL_RE.findall(text))
    return ExpertProbe(
        subject=ExpertSubject.MATH,
        confidence=_clamp(hits / table.math_saturation),
        tags=["algebra", "functions"] if hits > table.math_algebra_hits else ["calculation", "logic"],
        notes="符號判讀" if hits > 0 else "一般敘述",
    )


def _chinese_expert(text: str, table: ExpertTable) -> ExpertProbe:
    han = len(_HAN_RE.findall(text))
    return ExpertProbe(
        subject=ExpertSubject.CHINESE,
        confidence=_clamp(han / table.chinese_saturation),
        tags=["閱讀理解", "文言文"],
        notes="高漢字密度" if han > table.chinese_saturation else "混合語系",
    )


def _social_expert(text: str, table: ExpertTable) -> ExpertProbe:
    hits = len(_keyword_regex(table.social_keywords).findall(text))
    return ExpertProbe(
        subject=ExpertSubject.SOCIAL,
        confidence=_clamp(hits / table.social_saturation),
        tags=["歷史素材", "公民素養"],
        notes="社會科關鍵字" if hits > 0 else "一般描述",
    )


def _science_expert(text: str, table: ExpertTable) -> ExpertProbe:
    hits = len(_keyword_regex(table.science_keywords).findall(text))
    return ExpertProbe(
        subject=ExpertSubject.SCIENCE,
        confidence=_clamp(hits / table.science_saturation),
        tags=["實驗設計", "概念理解"],
        notes="科學術語" if hits > 0 else "基礎敘述",
    )


# Declaration order is the tie-break order.
EXPERTS: Tuple[Callable[[str, ExpertTable], ExpertProbe], ...] = (
    _english_expert,
    _math_expert,
    _chinese_expert,
    _social_expert,
    _science_expert,
)


def probe_experts(text: str, table: ExpertTable = DEFAULT_EXPERT_TABLE) -> List[ExpertProbe]:
    """One probe per subject, highest confidence first; never raises."""
    s = text if isinstance(text, str) else ""
    probes = [fn(s, table) for fn in EXPERTS]
    # sorted() is stable, so equal confidences keep declaration order.
    return sorted(probes, key=lambda p: -p.confidence)
