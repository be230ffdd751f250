"""
Conservative Mode - self-diagnosed, slot-by-slot English explanations

Two LLM calls (detect type -> explain). Every failure path returns a typed
value tagged with the requested variant; nothing here raises to the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from question_ingest.core.option_blank_parser import option_letters
from question_ingest.models.schemas import (
    ANSWER_MODELS,
    ConfidenceLevel,
    ConservativeAnswer,
    ConservativeQuestionType,
    ConservativeResult,
    DistractorReject,
    E1VocabAnswer,
    E2ClozeAnswer,
    E3FillInClozeAnswer,
    E4ReadingAnswer,
    E5DiscourseAnswer,
    E5TranslationAnswer,
    E6WritingAnswer,
    MAWSScores,
)
from question_ingest.services.llm import LLMClient, get_llm_client
from question_ingest.utils.errors import QuestionIngestError, SchemaValidationError
from question_ingest.utils.observability import log_event, trace_span
from question_ingest.utils.prompt_manager import get_prompt_manager
from question_ingest.utils.settings import get_settings

logger = logging.getLogger(__name__)

DEFAULT_TYPE = ConservativeQuestionType.E2_CLOZE
FALLBACK_REASON = "解析生成失敗"
MISSING_REJECT_REASON = "未提供排除理由"

PROMPT_NAMES: Dict[ConservativeQuestionType, str] = {
    ConservativeQuestionType.E1_VOCAB: "conservative_e1_vocab",
    ConservativeQuestionType.E2_CLOZE: "conservative_e2_cloze",
    ConservativeQuestionType.E3_FILL_IN_CLOZE: "conservative_e3_fill_in_cloze",
    ConservativeQuestionType.E4_READING: "conservative_e4_reading",
    ConservativeQuestionType.E5_DISCOURSE: "conservative_e5_discourse",
    ConservativeQuestionType.E5_TRANSLATION: "conservative_e5_translation",
    ConservativeQuestionType.E6_WRITING: "conservative_e6_writing",
}

INPUT_LIMITS: Dict[ConservativeQuestionType, int] = {
    ConservativeQuestionType.E1_VOCAB: 2000,
    ConservativeQuestionType.E2_CLOZE: 3000,
    ConservativeQuestionType.E3_FILL_IN_CLOZE: 3000,
    ConservativeQuestionType.E4_READING: 4000,
    ConservativeQuestionType.E5_DISCOURSE: 3000,
    ConservativeQuestionType.E5_TRANSLATION: 2000,
    ConservativeQuestionType.E6_WRITING: 2000,
}

SLOT_TYPES = (
    ConservativeQuestionType.E2_CLOZE,
    ConservativeQuestionType.E3_FILL_IN_CLOZE,
    ConservativeQuestionType.E5_DISCOURSE,
)

CONFIDENCE_BY_TYPE: Dict[ConservativeQuestionType, ConfidenceLevel] = {
    ConservativeQuestionType.E1_VOCAB: "high",
    ConservativeQuestionType.E4_READING: "medium",
    ConservativeQuestionType.E6_WRITING: "medium",
}


def _coerce_type(value: Any) -> Optional[ConservativeQuestionType]:
    try:
        return ConservativeQuestionType(str(value or "").strip().upper())
    except ValueError:
        return None


@trace_span("conservative.detect")
def detect_conservative_type(text: Optional[str], client: Optional[LLMClient] = None) -> ConservativeQuestionType:
    """One JSON call `{type}`; anything unusable becomes `E2_CLOZE`."""
    if not text or not str(text).strip():
        return DEFAULT_TYPE

    try:
        settings = get_settings()
        prompt = get_prompt_manager().render(
            "conservative_detect", question=str(text), max_chars=settings.detect_input_max_chars
        )
        llm = client or get_llm_client()
        data = llm.chat_completion_json(
            [{"role": "user", "content": prompt}],
            model=settings.model_conservative,
            temperature=settings.detect_temperature,
            stage="conservative_detect",
        )
    except Exception as e:
        log_event(
            logger,
            "conservative_type_coerced",
            level="warning",
            reason="detect_failed",
            error_type=e.__class__.__name__,
            error=str(e),
        )
        return DEFAULT_TYPE

    raw = data.get("type") if isinstance(data, Mapping) else None
    detected = _coerce_type(raw)
    if detected is None:
        log_event(logger, "conservative_type_coerced", level="warning", reason="invalid_type", raw_type=raw)
        return DEFAULT_TYPE
    log_event(logger, "conservative_type_detected", detected_type=detected.value)
    return detected


def generate_fallback_answer(question_type: ConservativeQuestionType) -> ConservativeAnswer:
    """Minimal well-formed answer of the requested variant."""
    t = ConservativeQuestionType(question_type)
    if t == ConservativeQuestionType.E1_VOCAB:
        return E1VocabAnswer(question_text="", answer="", one_line_reason=FALLBACK_REASON, distractor_rejects=[])
    if t == ConservativeQuestionType.E2_CLOZE:
        return E2ClozeAnswer(passage_summary="", slots=[])
    if t == ConservativeQuestionType.E3_FILL_IN_CLOZE:
        return E3FillInClozeAnswer(passage_summary="", slots=[])
    if t == ConservativeQuestionType.E5_DISCOURSE:
        return E5DiscourseAnswer(passage_summary="", slots=[])
    if t == ConservativeQuestionType.E4_READING:
        return E4ReadingAnswer(title="", questions=[])
    if t == ConservativeQuestionType.E5_TRANSLATION:
        return E5TranslationAnswer(original_zh="", reference_en="", grammar_focus="", key_phrase_analysis="")
    return E6WritingAnswer(
        topic_summary="",
        maws_scores=MAWSScores(content=0, organization=0, grammar_structure=0, vocabulary_fluency=0),
        qualitative_feedback=FALLBACK_REASON,
    )


def find_incomplete_rejects(answer: ConservativeAnswer, letters: Sequence[str]) -> Dict[int, List[str]]:
    """slot number -> option letters that are neither the answer nor rejected."""
    missing: Dict[int, List[str]] = {}
    for slot in getattr(answer, "slots", None) or []:
        covered = {slot.answer} | {r.option for r in slot.distractor_rejects}
        gaps = [letter for letter in letters if letter not in covered]
        if gaps:
            missing[slot.slot] = gaps
    return missing


def complete_rejects(answer: ConservativeAnswer, letters: Sequence[str]) -> ConservativeAnswer:
    """
    Per slot: drop rejects naming the answer or a letter already rejected,
    then add a placeholder reject for every uncovered option letter.
    """
    repaired: List[int] = []
    for slot in getattr(answer, "slots", None) or []:
        seen = {slot.answer}
        kept: List[DistractorReject] = []
        for reject in slot.distractor_rejects:
            if reject.option in seen:
                continue
            seen.add(reject.option)
            kept.append(reject)
        kept.extend(
            DistractorReject(option=letter, reason=MISSING_REJECT_REASON) for letter in letters if letter not in seen
        )
        if kept != slot.distractor_rejects:
            repaired.append(slot.slot)
            slot.distractor_rejects = kept
    if repaired:
        log_event(
            logger,
            "conservative_rejects_completed",
            level="warning",
            answer_type=answer.type,
            slots=sorted(repaired),
        )
    return answer


def _validate_answer(data: Any, question_type: ConservativeQuestionType) -> ConservativeAnswer:
    if not isinstance(data, Mapping):
        raise SchemaValidationError(f"expected a JSON object, got {type(data).__name__}")
    got = data.get("type")
    if got is not None and str(got).strip().upper() != question_type.value:
        log_event(
            logger,
            "conservative_shape_mismatch",
            level="warning",
            expected=question_type.value,
            got=got,
        )
        raise SchemaValidationError(f"type mismatch: expected {question_type.value}, got {got}")
    payload = dict(data)
    payload["type"] = question_type.value
    try:
        return ANSWER_MODELS[question_type].model_validate(payload)
    except ValidationError as e:
        raise SchemaValidationError(
            f"{question_type.value} answer failed validation",
            errors=e.errors(include_url=False),
        ) from e


@trace_span("conservative.explain")
def generate_conservative_explanation(
    text: Optional[str],
    question_type: ConservativeQuestionType,
    client: Optional[LLMClient] = None,
) -> ConservativeAnswer:
    """Per-type prompt -> validated variant; any failure -> `generate_fallback_answer`."""
    t = _coerce_type(getattr(question_type, "value", question_type))
    if t is None:
        log_event(
            logger, "conservative_type_coerced", level="warning", reason="invalid_requested_type", raw_type=question_type
        )
        t = DEFAULT_TYPE
    question = str(text or "")
    try:
        settings = get_settings()
        prompt = get_prompt_manager().render(PROMPT_NAMES[t], question=question, max_chars=INPUT_LIMITS[t])
        llm = client or get_llm_client()
        data = llm.chat_completion_json(
            [{"role": "user", "content": prompt}],
            model=settings.model_conservative,
            temperature=settings.explain_temperature,
            stage=f"conservative_{t.value.lower()}",
        )
        answer = _validate_answer(data, t)
    except QuestionIngestError as e:
        log_event(
            logger,
            "conservative_explain_failed",
            level="warning",
            question_type=t.value,
            error_code=e.code.value,
            error=str(e),
        )
        return generate_fallback_answer(t)
    except Exception as e:
        log_event(
            logger,
            "conservative_explain_failed",
            level="error",
            question_type=t.value,
            error_type=e.__class__.__name__,
            error=str(e),
        )
        return generate_fallback_answer(t)

    if t in SLOT_TYPES:
        answer = complete_rejects(answer, option_letters(question))
    return answer


def confidence_for(question_type: ConservativeQuestionType) -> ConfidenceLevel:
    return CONFIDENCE_BY_TYPE.get(ConservativeQuestionType(question_type), "low")


def run_conservative_mode(text: Optional[str], client: Optional[LLMClient] = None) -> ConservativeResult:
    """detect -> explain -> confidence heuristic. Always returns a typed result."""
    detected = detect_conservative_type(text, client=client)
    answer = generate_conservative_explanation(text, detected, client=client)
    confidence = confidence_for(detected)
    log_event(
        logger,
        "conservative_mode_completed",
        detected_type=detected.value,
        confidence=confidence,
    )
    return ConservativeResult(detected_type=detected, answer=answer, confidence=confidence)
