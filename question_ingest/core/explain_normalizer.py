"""
Canonical explanation cards.

Upstream solvers return card-like JSON in many shapes (`options` vs `choices`,
`vocab` vs `vocabulary`, nested under `explanation.card` or `card` or at the
root). `normalize_card` maps all of them onto `NormalizedCard` through an
explicit alias table and computes the presentation view once.
"""

from __future__ import annotations

import hashlib
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, ValidationError

from question_ingest.models.schemas import (
    CardCorrect,
    CardOption,
    CardStep,
    CardVocab,
    NextAction,
    NormalizedCard,
    NormalizedExplainView,
    OptionView,
    VocabView,
)


# Ordered candidate keys per logical field; the first present, non-None value wins.
ALIASES: Dict[str, Tuple[str, ...]] = {
    "options": ("options", "choices"),
    "option_key": ("key", "id"),
    "option_text": ("text", "label", "word"),
    "pos": ("pos", "partOfSpeech", "part_of_speech", "speech", "lexical"),
    "zh": ("zh", "translation", "chinese"),
    "reason": ("reason", "explanation"),
    "vocab": ("vocab", "vocabulary", "words"),
    "term": ("term", "word", "text"),
    "note": ("note", "usage"),
    "context": ("context", "example"),
    "translation": ("translation", "translate", "cn"),
    "cues": ("cues", "hints", "clues"),
    "step_title": ("title", "label"),
    "step_detail": ("detail", "description"),
    "question": ("question", "stem"),
    "kind": ("kind", "type"),
    "next_actions": ("nextActions", "next_actions"),
    "action_label": ("label", "name"),
    "action_action": ("action", "type"),
}

CARD_KINDS = ("E1", "E2", "E3", "E4", "E5", "FALLBACK")
VERDICTS = ("fit", "unfit", "unknown")

DEFAULT_NEXT_ACTIONS: Tuple[Tuple[str, str], ...] = (
    ("換同型題", "drill-similar"),
    ("加入錯題本", "save-error"),
)

POS_MAP: Dict[str, str] = {
    "noun": "n.",
    "n": "n.",
    "v": "v.",
    "verb": "v.",
    "adj": "adj.",
    "adjective": "adj.",
    "adv": "adv.",
    "adverb": "adv.",
    "phr": "phr.",
    "phrase": "phr.",
    "idiom": "idiom",
}

STOPWORDS = frozenset(
    {
        "the", "there", "this", "that", "those", "these", "and", "but", "for",
        "with", "from", "were", "have", "has", "been", "being", "into", "about",
        "after", "before", "their", "would", "could", "should", "because",
        "since", "than", "then", "when", "where", "what", "which", "while",
        "whose", "upon", "through", "among", "around", "between", "under",
        "over", "reading", "passage", "article", "therefore",
    }
)

EMPTY_MARK = "—"
NO_DATA = "無資料"
REASON_MAX_CHARS = 20
MAX_REASONING = 3
MAX_OPTION_VIEWS = 4
MAX_CONTEXT_VOCAB = 4

_WORD_RE = re.compile(r"[A-Za-z-]+")
_SINGLE_LETTER_RE = re.compile(r"^[A-Za-z]$")


def _pick(node: Mapping[str, Any], field: str, default: Any = None) -> Any:
    for key in ALIASES[field]:
        value = node.get(key)
        if value is not None:
            return value
    return default


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _opt_str(value: Any) -> Optional[str]:
    s = _as_str(value)
    return s if s else None


def _letter(index: int) -> str:
    return chr(ord("A") + index) if index < 26 else str(index + 1)


# ---------------------------------------------------------------------------
# Field formatters
# ---------------------------------------------------------------------------


def compact_pos(value: Optional[str]) -> str:
    """'noun / Verb' -> 'n./v.'; unknown tags keep their text with a trailing dot."""
    if not value:
        return ""
    tokens = [t.strip().lower() for t in re.split(r"[/,\s]+", value) if t.strip()]
    mapped: List[str] = []
    for token in tokens:
        normalized = POS_MAP.get(token.replace(".", ""), token)
        if normalized != "idiom" and not normalized.endswith("."):
            normalized = f"{normalized}."
        if normalized not in mapped:
            mapped.append(normalized)
    return "/".join(mapped)


def normalize_zh(value: Optional[str]) -> str:
    if not value:
        return ""
    parts = [p.strip() for p in re.split(r"[,，;；]", value) if p.strip()]
    return "；".join(parts[:2])


def truncate_reason(value: Optional[str]) -> str:
    base = (value or "").strip()
    if not base:
        return NO_DATA
    return f"{base[:REASON_MAX_CHARS]}..." if len(base) > REASON_MAX_CHARS else base


def derive_reasoning(cues: Sequence[str], steps: Sequence[CardStep]) -> List[str]:
    candidates = [c.strip() for c in cues if isinstance(c, str) and c.strip()]
    if not candidates:
        candidates = [
            (s.detail or s.title or "").strip() for s in steps if (s.detail or s.title or "").strip()
        ]
    return list(dict.fromkeys(candidates))[:MAX_REASONING]


def extract_context_vocabulary(
    question: str,
    option_words: Iterable[str],
    vocab: Sequence[CardVocab],
    limit: int = MAX_CONTEXT_VOCAB,
) -> List[VocabView]:
    """
    Stem words (>= 3 letters, no stopwords, not an option word) glossed from
    the upstream vocab list. When the stem yields nothing, falls back to the
    upstream vocab entries that are not option words.
    """
    if not question:
        return []
    option_set = {w.lower() for w in option_words}
    candidates: List[str] = []
    for m in _WORD_RE.finditer(question):
        word = m.group(0).lower()
        if len(word) < 3 or word in STOPWORDS or word in option_set or word in candidates:
            continue
        candidates.append(word)
        if len(candidates) >= limit:
            break

    if candidates:
        views: List[VocabView] = []
        for word in candidates:
            match = next((v for v in vocab if (v.term or "").lower() == word), None)
            note = ((match.note or match.context) if match else "") or ""
            views.append(
                VocabView(
                    word=word,
                    pos=compact_pos(match.pos if match else None) or EMPTY_MARK,
                    zh=normalize_zh(match.zh if match else None) or EMPTY_MARK,
                    note=note.strip() or f"語境：題幹「{word}」",
                )
            )
        return views

    return [
        VocabView(
            word=v.term.strip(),
            pos=compact_pos(v.pos) or EMPTY_MARK,
            zh=normalize_zh(v.zh) or EMPTY_MARK,
            note=(v.note or v.context or "").strip() or "語境：題幹",
        )
        for v in vocab
        if v.term and v.term.lower() not in option_set
    ][:limit]


# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------


def create_presentation(
    *,
    question: str,
    translation: Optional[str],
    cues: Sequence[str],
    steps: Sequence[CardStep],
    options: Sequence[CardOption],
    correct: Optional[CardCorrect],
    vocab: Sequence[CardVocab],
) -> NormalizedExplainView:
    option_views: List[OptionView] = []
    for i, opt in enumerate(options[:MAX_OPTION_VIEWS]):
        key = (opt.key or _letter(i)).upper()[:1]
        option_views.append(
            OptionView(
                key=key,
                word=(opt.text or "").strip() or f"word{key}",
                pos=compact_pos(opt.pos) or EMPTY_MARK,
                zh=normalize_zh(opt.zh) or EMPTY_MARK,
                reason=truncate_reason(opt.reason),
                correct=opt.verdict == "fit",
            )
        )

    answer_key = ((correct.key if correct else "") or (option_views[0].key if option_views else "A")).upper()[:1]
    answer_word = (correct.text if correct else "") or next(
        (o.word for o in option_views if o.key == answer_key), ""
    )

    return NormalizedExplainView(
        stem_en=(question or "").strip(),
        stem_zh=translation.strip() if translation else None,
        reasoning=derive_reasoning(cues, steps),
        options=option_views,
        answer_key=answer_key,
        answer_word=answer_word.strip(),
        vocab=extract_context_vocabulary(question, [o.word for o in option_views], vocab),
    )


# ---------------------------------------------------------------------------
# Field readers
# ---------------------------------------------------------------------------


def _read_verdict(opt: Mapping[str, Any]) -> str:
    verdict = opt.get("verdict")
    if isinstance(verdict, str) and verdict in VERDICTS:
        return verdict
    if opt.get("correct"):
        return "fit"
    if opt.get("incorrect"):
        return "unfit"
    return "unknown"


def _read_options(node: Mapping[str, Any]) -> List[CardOption]:
    options: List[CardOption] = []
    fit_seen = False
    for i, raw in enumerate(_as_list(_pick(node, "options"))):
        if not isinstance(raw, Mapping):
            continue
        key = _as_str(_pick(raw, "option_key")).strip()
        label = _as_str(raw.get("label")).strip()
        text_source: Mapping[str, Any] = raw
        if not key and _SINGLE_LETTER_RE.match(label):
            # `label` carries the letter here, so the text comes from `text`/`word`.
            key = label
            text_source = {k: v for k, v in raw.items() if k != "label"}
        verdict = _read_verdict(raw)
        if verdict == "fit":
            if fit_seen:
                verdict = "unknown"
            fit_seen = True
        options.append(
            CardOption(
                key=key.upper() if len(key) == 1 else (key or _letter(i)),
                text=_as_str(_pick(text_source, "option_text")),
                pos=_opt_str(_pick(raw, "pos")),
                zh=_opt_str(_pick(raw, "zh")),
                reason=_opt_str(_pick(raw, "reason")),
                verdict=verdict,
            )
        )
    return options


def _read_vocab(node: Mapping[str, Any]) -> List[CardVocab]:
    return [
        CardVocab(
            term=_as_str(_pick(v, "term")),
            pos=_opt_str(_pick(v, "pos")),
            zh=_opt_str(_pick(v, "zh")),
            note=_opt_str(_pick(v, "note")),
            context=_opt_str(_pick(v, "context")),
        )
        for v in _as_list(_pick(node, "vocab"))
        if isinstance(v, Mapping)
    ]


def _read_steps(node: Mapping[str, Any]) -> List[CardStep]:
    return [
        CardStep(title=_as_str(_pick(s, "step_title")), detail=_opt_str(_pick(s, "step_detail")))
        for s in _as_list(node.get("steps"))
        if isinstance(s, Mapping)
    ]


def _read_correct(node: Mapping[str, Any], options: Sequence[CardOption]) -> Optional[CardCorrect]:
    raw = node.get("correct")
    if isinstance(raw, Mapping):
        return CardCorrect(
            key=_as_str(raw.get("key")),
            text=_as_str(raw.get("text")),
            reason=_opt_str(raw.get("reason")),
        )
    fit = next((o for o in options if o.verdict == "fit"), None)
    if fit is None:
        return None
    return CardCorrect(key=fit.key, text=fit.text, reason=fit.reason)


def _read_next_actions(node: Mapping[str, Any]) -> List[NextAction]:
    raw = _pick(node, "next_actions")
    if not isinstance(raw, (list, tuple)):
        return [NextAction(label=label, action=action) for label, action in DEFAULT_NEXT_ACTIONS]
    return [
        NextAction(label=_as_str(_pick(a, "action_label")), action=_as_str(_pick(a, "action_action")))
        for a in raw
        if isinstance(a, Mapping)
    ]


def _read_kind(node: Mapping[str, Any]) -> str:
    kind = _as_str(_pick(node, "kind")).strip().upper()
    return kind if kind in CARD_KINDS else "FALLBACK"


def card_id_for(question: str) -> str:
    return "card_" + hashlib.sha1((question or "").encode("utf-8")).hexdigest()[:12]


def _locate_card_node(raw: Any) -> Mapping[str, Any]:
    if not isinstance(raw, Mapping):
        return {}
    explanation = raw.get("explanation")
    if isinstance(explanation, Mapping) and isinstance(explanation.get("card"), Mapping):
        return explanation["card"]
    if isinstance(raw.get("card"), Mapping):
        return raw["card"]
    return raw


# ---------------------------------------------------------------------------
# Public entrypoints
# ---------------------------------------------------------------------------


def normalize_card(raw: Any) -> NormalizedCard:
    """Any card-like payload -> `NormalizedCard`. Total: malformed input yields an empty card."""
    node = _locate_card_node(raw)
    question = _as_str(_pick(node, "question"))
    translation = _opt_str(_pick(node, "translation"))
    cues = [c for c in _as_list(_pick(node, "cues")) if isinstance(c, str)]
    options = _read_options(node)
    steps = _read_steps(node)
    vocab = _read_vocab(node)
    correct = _read_correct(node, options)
    explicit_id = _as_str(node.get("id")).strip()

    presentation = create_presentation(
        question=question,
        translation=translation,
        cues=cues,
        steps=steps,
        options=options,
        correct=correct,
        vocab=vocab,
    )
    return NormalizedCard(
        id=explicit_id or card_id_for(question),
        question=question,
        kind=_read_kind(node),
        translation=translation,
        cues=cues,
        options=options,
        steps=steps,
        correct=correct,
        vocab=vocab,
        next_actions=_read_next_actions(node),
        presentation=presentation,
    )


def build_explain_view(card: Any) -> NormalizedExplainView:
    """Reuse a computed presentation when one is attached; otherwise derive it."""
    if isinstance(card, NormalizedCard):
        return card.presentation
    if isinstance(card, BaseModel):
        card = card.model_dump()
    if isinstance(card, Mapping) and isinstance(card.get("presentation"), Mapping):
        try:
            return NormalizedExplainView.model_validate(card["presentation"])
        except ValidationError:
            # stale or hand-edited presentation; rebuild it from the card fields
            return normalize_card(card).presentation
    return normalize_card(card).presentation


def has_minimal_content(card: NormalizedCard) -> bool:
    return bool(card.translation or card.cues or card.options)


def get_card_status(card: NormalizedCard) -> str:
    """One-line debug summary, e.g. `kind:E1 options:4 vocab:2 has_translation no_cues`."""
    return " ".join(
        [
            f"kind:{card.kind}",
            f"options:{len(card.options)}",
            f"vocab:{len(card.vocab)}",
            "has_translation" if card.translation else "no_translation",
            f"cues:{len(card.cues)}" if card.cues else "no_cues",
        ]
    )
