from __future__ import annotations

import re
from typing import Dict, List, Optional, Set

from question_ingest.core.text_normalizer import circled_to_parens, fold_width
from question_ingest.models.schemas import CharSpan, E6Blank, E6Parsed, OptionStat, ParsedChoice

OPTION_RE = re.compile(r"[(（]\s*([A-Oa-oＡ-Ｏａ-ｏ])\s*[)）]")

# Year-like and 3+ digit numbers in parentheses are citations, not blanks.
NUMBERED_BLANK_PATTERN = r"\(\s*(?!19\d{2}|20\d{2}|[1-9]\d{2,})(\d+)\s*\)"
BLANK_RE = re.compile(NUMBERED_BLANK_PATTERN + r"|_{2,}|＿{2,}")
STEM_BLANK_RE = re.compile(r"_{2,}|＿{2,}|\(\s*\)")

_E6_MARKER_RE = re.compile(r"\((?!19\d{2}|20\d{2}|[1-9]\d{2,})(\d+)\)")
_WRAPPED_MARKER_RE = re.compile(r"[_＿]+\s*(\(\d+\))\s*[_＿]+")
_BARE_UNDERSCORE_RE = re.compile(r"_{2,}|＿{2,}")
_PARAGRAPH_BREAK_RE = re.compile(r"\n[ \t]*\n")
_ENDS_WITH_PUNCT_RE = re.compile(r"[.?!。！？\"”]$")

_CHOICE_PAREN_RE = re.compile(r"[(（]\s*([A-Ha-h])\s*[)）]\s*([^()（）\n]+)")
_CHOICE_DOT_RE = re.compile(
    r"(?:^|(?<=\s))([A-H])\s*[.．、:：]\s*(.+?)(?=\s+[A-H]\s*[.．、:：]\s|\n|$)",
    re.MULTILINE,
)

LESS_THAN_TWO_BLANKS = "Less than 2 numbered blanks detected"


def count_tokens(text: str) -> int:
    return len((text or "").split())


def build_option_stat(label: str, text: str) -> OptionStat:
    trimmed = re.sub(r"\s+", " ", text or "").strip()
    tokens = count_tokens(trimmed)
    ends = bool(_ENDS_WITH_PUNCT_RE.search(trimmed))
    return OptionStat(
        label=fold_width(label).upper(),
        text=trimmed,
        tokens=tokens,
        ends_with_punctuation=ends,
        is_short=tokens <= 3 and not ends,
    )


def extract_options(raw: str) -> List[OptionStat]:
    """
    `(X)` / `（X）` markers, X in A–O of either width. Everything up to the next
    marker (or end of text) belongs to the current option.
    """
    if not raw:
        return []
    matches = list(OPTION_RE.finditer(raw))
    options: List[OptionStat] = []
    for i, m in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(raw)
        options.append(build_option_stat(m.group(1), raw[m.end() : end]))
    return options


def find_blanks(text: str) -> List[str]:
    if not text:
        return []
    return [m.group(0) for m in BLANK_RE.finditer(text)]


def has_blank_in_stem(stem: str) -> bool:
    return bool(STEM_BLANK_RE.search(stem or ""))


def extract_choices(question_text: str) -> List[ParsedChoice]:
    """
    Looser A–H scan covering `(A) foo`, `A. foo`, `A、foo` and one-option-per-line
    layouts. First occurrence of a label wins.
    """
    if not question_text:
        return []
    text = fold_width(str(question_text)).replace("\r", "")
    results: List[ParsedChoice] = []
    seen: Set[str] = set()
    for pattern in (_CHOICE_PAREN_RE, _CHOICE_DOT_RE):
        for m in pattern.finditer(text):
            label = m.group(1).strip().upper()
            if label in seen:
                continue
            value = re.sub(r"\s+", " ", m.group(2) or "").strip()
            if not value:
                continue
            results.append(ParsedChoice(label=label, text=value))
            seen.add(label)
        if len(results) >= 2:
            break
    return results


def option_letters(text: str, *, default: str = "ABCD") -> List[str]:
    """Distinct option labels offered by the question, in label order."""
    labels = {o.label for o in extract_options(text or "")}
    labels |= {c.label for c in extract_choices(text or "")}
    if len(labels) < 2:
        return list(default)
    return sorted(labels)


def _normalize_blank_markers(text: str) -> str:
    s = fold_width(text)
    s = circled_to_parens(s)
    s = _WRAPPED_MARKER_RE.sub(r"\1", s)
    if not _E6_MARKER_RE.search(s):
        counter = iter(range(1, 10_000))
        s = _BARE_UNDERSCORE_RE.sub(lambda _m: f"({next(counter)})", s)
    s = re.sub(r"[ \t]+", " ", s)
    return s


def _paragraph_index(text: str, start: int) -> int:
    return max(0, len(_PARAGRAPH_BREAK_RE.split(text[:start])) - 1)


def parse_e6_passage(raw: Optional[str]) -> E6Parsed:
    """
    Numbered blanks with stable anchors (`blank-{n}`), spans in the normalized
    passage and an estimated 0-based paragraph index.
    """
    if not raw or not str(raw).strip():
        return E6Parsed(passage="", blanks=[], normalized_passage="", warnings=["Empty input"])

    passage = str(raw)
    normalized = _normalize_blank_markers(passage)
    warnings: List[str] = []
    blanks: List[E6Blank] = []
    seen: Dict[int, int] = {}

    for m in _E6_MARKER_RE.finditer(normalized):
        n = int(m.group(1))
        if n in seen:
            warnings.append(f"Duplicate blank marker ({n})")
            continue
        seen[n] = m.start()
        blanks.append(
            E6Blank(
                blank_index=n,
                anchor_id=f"blank-{n}",
                char_span=CharSpan(start=m.start(), end=m.end()),
                paragraph_index=_paragraph_index(normalized, m.start()),
                normalized_marker=m.group(0),
            )
        )

    if len(blanks) < 2:
        warnings.append(LESS_THAN_TWO_BLANKS)

    return E6Parsed(
        passage=passage,
        blanks=blanks,
        normalized_passage=_mark_blanks(normalized, blanks),
        warnings=warnings,
    )


def _mark_blanks(normalized: str, blanks: List[E6Blank]) -> str:
    out: List[str] = []
    cursor = 0
    for b in sorted(blanks, key=lambda x: x.char_span.start):
        out.append(normalized[cursor : b.char_span.start])
        out.append(
            f'<mark data-blank="{b.blank_index}" id="{b.anchor_id}" class="blank-marker">____</mark>'
        )
        cursor = b.char_span.end
    out.append(normalized[cursor:])
    return "".join(out)


_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_IFRAME_RE = re.compile(r"<iframe\b[^<]*(?:(?!</iframe>)<[^<]*)*</iframe>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[A-Za-z][^>]*>")
_ATTR_VALUE = r"""(?:"[^"]*"|'[^']*'|[^\s>"']+)"""
# Handlers follow whitespace, `/` (`<svg/onload=...>`) or a closing quote; values may be unquoted.
_HANDLER_RE = re.compile(r"(?:\s+|(?<=[/\"']))on\w+\s*=\s*" + _ATTR_VALUE, re.IGNORECASE)
_SCRIPT_URL_RE = re.compile(
    r"(?:\s+|(?<=[/\"']))(?:href|src|action|formaction|xlink:href)\s*=\s*"
    r"""(?:"\s*(?:javascript|vbscript):[^"]*"|'\s*(?:javascript|vbscript):[^']*'|(?:javascript|vbscript):[^\s>]*)""",
    re.IGNORECASE,
)


def _clean_tag(m: re.Match) -> str:
    return _SCRIPT_URL_RE.sub("", _HANDLER_RE.sub("", m.group(0)))


def sanitize_html(html: str) -> str:
    """Strip script/iframe blocks, inline event handlers and script URLs from a marked passage."""
    s = _SCRIPT_RE.sub("", html or "")
    s = _IFRAME_RE.sub("", s)
    return _TAG_RE.sub(_clean_tag, s)
