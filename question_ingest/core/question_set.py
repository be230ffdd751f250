"""
Structural analysis of multi-question English inputs.

Uses topology (question markers, blank patterns, option shapes) to infer the
set's kind:
 - reading            -> multi-question with per-question ABCD blocks
 - cloze              -> per-blank single choice (numbered blanks + short options)
 - banked_cloze       -> shared word bank with blank count <= bank size
 - sentence_insertion -> sentence-level options inserted into numbered blanks

The decision is an ordered rule table; the first matching rule wins. Later
rules exist for degraded (OCR) inputs the earlier ones miss.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, List, Optional, Sequence, Tuple

from question_ingest.core.option_blank_parser import (
    extract_options,
    find_blanks,
    has_blank_in_stem,
)
from question_ingest.core.text_normalizer import normalize
from question_ingest.models.schemas import (
    OptionStat,
    QuestionBlockStat,
    QuestionSetAnalysis,
    QuestionSetKind,
)
from question_ingest.utils.observability import log_event

logger = logging.getLogger(__name__)

# `\d{1,3}[.)、](?!\d)` keeps decimals ("3.5") and years ("1990.") out of the markers.
DEFAULT_QUESTION_MARKER_PATTERN = (
    r"(?:^|\n|\s)(?:\d{1,3}[.)、](?!\d)|Q\s*\d+[.)]?|\(\s*\d+\s*\)(?=\s*\(\s*[A-J]\s*\)))"
)
DEFAULT_QUESTION_HEADER_PATTERN = r"^\s*(?:\d{1,3}[.)、]|Q\s*\d+[.)]?|\(\s*\d+\s*\))\s*"
DEFAULT_ABCD_PATTERN = r"[(（][A-D][)）]"


@dataclass(frozen=True)
class QuestionSetConfig:
    word_bank_min: int = 4
    bank_ratio: float = 0.6
    bank_sentence_tokens: int = 8
    block_sentence_tokens: int = 6
    cloze_short_ratio: float = 0.6
    cloze_sentence_ratio_max: float = 0.5
    reading_avg_options: float = 3.5
    reading_min_questions: int = 2
    reading_sentence_ratio_min: float = 0.2
    reading_blank_stem_ratio_max: float = 0.5
    insertion_sentence_ratio: float = 0.6
    abcd_density: int = 3
    question_marker_pattern: str = DEFAULT_QUESTION_MARKER_PATTERN
    question_header_pattern: str = DEFAULT_QUESTION_HEADER_PATTERN
    abcd_pattern: str = DEFAULT_ABCD_PATTERN


DEFAULT_CONFIG = QuestionSetConfig()


@lru_cache(maxsize=32)
def _compile(pattern: str, flags: int = 0) -> re.Pattern:
    return re.compile(pattern, flags)


def _ratio(part: int, whole: int) -> float:
    return part / whole if whole > 0 else 0.0


def _is_sentence_like(opt: OptionStat, min_tokens: int) -> bool:
    return opt.ends_with_punctuation or opt.tokens >= min_tokens


@dataclass(frozen=True)
class KindSignals:
    """Every ratio the rules read, computed once from an analysis."""

    question_count: int
    passage_blanks: int
    global_blanks: int
    bank_size: int
    has_word_bank: bool
    bank_short_ratio: float
    bank_sentence_ratio: float
    total_options: int
    avg_options: float
    short_option_ratio: float
    sentence_option_ratio: float
    blank_stem_ratio: float
    global_short_ratio: float
    global_sentence_ratio: float
    abcd_markers: int


def compute_signals(analysis: QuestionSetAnalysis, config: QuestionSetConfig = DEFAULT_CONFIG) -> KindSignals:
    bank = analysis.word_bank
    has_bank = len(bank) >= config.word_bank_min
    blocks = analysis.question_blocks
    q = analysis.question_count
    block_options = [opt for b in blocks for opt in b.options]
    total = len(block_options)
    glob = analysis.global_options
    return KindSignals(
        question_count=q,
        passage_blanks=analysis.passage_blank_count,
        global_blanks=analysis.global_blank_count,
        bank_size=len(bank),
        has_word_bank=has_bank,
        bank_short_ratio=_ratio(sum(1 for o in bank if o.is_short), len(bank)) if has_bank else 0.0,
        bank_sentence_ratio=(
            _ratio(sum(1 for o in bank if _is_sentence_like(o, config.bank_sentence_tokens)), len(bank))
            if has_bank
            else 0.0
        ),
        total_options=total,
        avg_options=_ratio(total, q),
        short_option_ratio=_ratio(sum(1 for o in block_options if o.is_short), total),
        sentence_option_ratio=_ratio(
            sum(1 for o in block_options if _is_sentence_like(o, config.block_sentence_tokens)), total
        ),
        blank_stem_ratio=_ratio(sum(1 for b in blocks if b.has_blank_in_stem), q),
        global_short_ratio=_ratio(sum(1 for o in glob if o.is_short), len(glob)),
        global_sentence_ratio=_ratio(
            sum(1 for o in glob if _is_sentence_like(o, config.block_sentence_tokens)), len(glob)
        ),
        abcd_markers=len(_compile(config.abcd_pattern).findall(analysis.normalized)),
    )


Predicate = Callable[[KindSignals, QuestionSetConfig], bool]


@dataclass(frozen=True)
class QuestionSetRule:
    name: str
    kind: QuestionSetKind
    predicate: Predicate

    def matches(self, signals: KindSignals, config: QuestionSetConfig) -> bool:
        return bool(self.predicate(signals, config))


def _bank_only(s: KindSignals) -> bool:
    return s.has_word_bank and s.passage_blanks >= 1 and s.question_count == 0


def _few_passage_blanks(s: KindSignals) -> bool:
    # Half-up rounding; Python's round() would send 2.5 to 2.
    return s.passage_blanks <= max(1, int(s.question_count / 2 + 0.5))


def _bank_covers_blanks(s: KindSignals) -> bool:
    return s.has_word_bank and s.passage_blanks >= 2 and s.bank_size >= s.passage_blanks


def _global_blanks_only(s: KindSignals) -> bool:
    return s.question_count == 0 and s.global_blanks >= 2


DEFAULT_RULES: Tuple[QuestionSetRule, ...] = (
    QuestionSetRule(
        "word_bank_sentences",
        QuestionSetKind.SENTENCE_INSERTION,
        lambda s, c: _bank_only(s) and s.bank_sentence_ratio >= c.bank_ratio,
    ),
    QuestionSetRule(
        "word_bank_short",
        QuestionSetKind.BANKED_CLOZE,
        lambda s, c: _bank_only(s) and s.bank_short_ratio >= c.bank_ratio,
    ),
    QuestionSetRule(
        "cloze_blocks",
        QuestionSetKind.CLOZE,
        lambda s, c: s.question_count >= 1
        and s.passage_blanks >= max(1, s.question_count)
        and s.short_option_ratio >= c.cloze_short_ratio
        and s.sentence_option_ratio < c.cloze_sentence_ratio_max,
    ),
    QuestionSetRule(
        "reading_blocks",
        QuestionSetKind.READING,
        lambda s, c: s.question_count >= max(1, c.reading_min_questions)
        and s.avg_options >= c.reading_avg_options
        and _few_passage_blanks(s)
        and s.sentence_option_ratio >= c.reading_sentence_ratio_min
        and s.blank_stem_ratio <= c.reading_blank_stem_ratio_max,
    ),
    QuestionSetRule(
        "sentence_blocks",
        QuestionSetKind.SENTENCE_INSERTION,
        lambda s, c: s.question_count >= 1
        and s.sentence_option_ratio >= c.insertion_sentence_ratio
        and s.passage_blanks >= 1,
    ),
    QuestionSetRule(
        "word_bank_covers_blanks_sentences",
        QuestionSetKind.SENTENCE_INSERTION,
        lambda s, c: _bank_covers_blanks(s) and s.bank_sentence_ratio >= c.bank_ratio,
    ),
    QuestionSetRule(
        "word_bank_covers_blanks",
        QuestionSetKind.BANKED_CLOZE,
        lambda s, c: _bank_covers_blanks(s),
    ),
    QuestionSetRule(
        "global_blanks_sentences",
        QuestionSetKind.SENTENCE_INSERTION,
        lambda s, c: _global_blanks_only(s) and s.global_sentence_ratio >= c.insertion_sentence_ratio,
    ),
    QuestionSetRule(
        "global_blanks_short",
        QuestionSetKind.BANKED_CLOZE,
        lambda s, c: _global_blanks_only(s) and s.global_short_ratio >= c.bank_ratio,
    ),
    QuestionSetRule(
        "abcd_density",
        QuestionSetKind.READING,
        lambda s, c: s.question_count >= 2 and s.abcd_markers >= s.question_count * c.abcd_density,
    ),
)


def determine_kind(
    analysis: QuestionSetAnalysis,
    config: QuestionSetConfig = DEFAULT_CONFIG,
    rules: Sequence[QuestionSetRule] = DEFAULT_RULES,
) -> Tuple[QuestionSetKind, Optional[str]]:
    signals = compute_signals(analysis, config)
    for rule in rules:
        if rule.matches(signals, config):
            return rule.kind, rule.name
    return QuestionSetKind.UNKNOWN, None


def _strip_question_header(chunk: str, config: QuestionSetConfig) -> str:
    return _compile(config.question_header_pattern).sub("", chunk, count=1).strip()


def split_question_blocks(normalized: str, config: QuestionSetConfig = DEFAULT_CONFIG) -> List[Tuple[int, str]]:
    """(start offset, chunk) per question marker."""
    starts = [m.start() for m in _compile(config.question_marker_pattern, re.IGNORECASE).finditer(normalized)]
    blocks: List[Tuple[int, str]] = []
    for i, start in enumerate(starts):
        end = starts[i + 1] if i + 1 < len(starts) else len(normalized)
        chunk = normalized[start:end].strip()
        if chunk:
            blocks.append((start, chunk))
    return blocks


def _block_stat(index: int, chunk: str, config: QuestionSetConfig) -> QuestionBlockStat:
    options = extract_options(chunk)
    header = chunk
    if options:
        first = re.search(r"[(（]\s*[A-Oa-oＡ-Ｏａ-ｏ]\s*[)）]", chunk)
        if first and first.start() > 0:
            header = chunk[: first.start()]
    stem = _strip_question_header(header, config)
    return QuestionBlockStat(
        index=index,
        stem=stem,
        options=options,
        has_blank_in_stem=has_blank_in_stem(stem),
    )


def analyse_question_set(raw: Optional[str], config: Optional[QuestionSetConfig] = None) -> QuestionSetAnalysis:
    """
    normalize -> split by question markers -> passage before the first marker ->
    options per passage (word bank), per block and globally -> rule table.

    Total and deterministic: identical input yields an identical `question_kind`.
    """
    cfg = config or DEFAULT_CONFIG
    normalized = normalize(raw)
    chunks = split_question_blocks(normalized, cfg)
    passage = normalized[: chunks[0][0]].strip() if chunks else normalized

    analysis = QuestionSetAnalysis(
        normalized=normalized,
        passage=passage,
        passage_blank_count=len(find_blanks(passage)),
        global_blank_count=len(find_blanks(normalized)),
        question_blocks=[_block_stat(i, chunk, cfg) for i, (_, chunk) in enumerate(chunks)],
        question_count=len(chunks),
        global_options=extract_options(normalized),
        word_bank=extract_options(passage) if passage else [],
    )
    kind, rule = determine_kind(analysis, cfg)
    analysis.question_kind = kind
    analysis.matched_rule = rule
    log_event(
        logger,
        "question_set_analysed",
        level="debug",
        kind=kind.value,
        rule=rule,
        questions=analysis.question_count,
        passage_blanks=analysis.passage_blank_count,
        word_bank=len(analysis.word_bank),
    )
    return analysis


def detect_question_set_kind(raw: Optional[str], config: Optional[QuestionSetConfig] = None) -> QuestionSetKind:
    return analyse_question_set(raw, config).question_kind
