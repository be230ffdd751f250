"""
Route Solver - subject routing + one general-solver generation

arbitrate -> general solver JSON call -> expert refinement -> retrieval query.
The primary generation is fail-fast: any failure surfaces as `GenerationError`.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Any, List, Optional, Sequence

from pydantic import ValidationError

from question_ingest.core.arbiter import ArbiterConfig, arbitrate
from question_ingest.core.option_blank_parser import extract_choices
from question_ingest.models.schemas import (
    ExpertProbe,
    ExplainResult,
    HybridSolveMeta,
    HybridSolveResponse,
    ParsedChoice,
    RetrievalQuery,
    SubjectHint,
)
from question_ingest.services.llm import LLMClient, get_llm_client
from question_ingest.utils.errors import GenerationError, QuestionIngestError, SchemaValidationError
from question_ingest.utils.observability import log_event, trace_span
from question_ingest.utils.prompt_manager import get_prompt_manager
from question_ingest.utils.settings import get_settings

logger = logging.getLogger(__name__)

SUMMARY_PREFIX_CONFIDENCE = 0.7
MAX_DETAILS = 4
MAX_GRAMMAR_ROWS = 3
MAX_BASE_QUERY_CHARS = 200
MAX_RETRIEVAL_TAGS = 5


def hash_question(question_text: str) -> str:
    return hashlib.sha1((question_text or "").encode("utf-8")).hexdigest()


def refine_explanation(explanation: ExplainResult, chosen: Sequence[ExpertProbe]) -> ExplainResult:
    """
    Expert refinement:
    - summary prefixed `【SUBJECT】` when the primary expert is confident
    - `專家補充：{notes}` in front of details (unless already there), max 4
    - grammar table capped at 3 rows
    """
    if not chosen:
        return explanation
    primary = chosen[0]
    subject = str(getattr(primary.subject, "value", primary.subject))

    summary = explanation.summary
    if primary.confidence > SUMMARY_PREFIX_CONFIDENCE:
        summary = f"【{subject.upper()}】{summary}"

    details = list(explanation.details)
    if primary.notes and not (details and primary.notes in details[0]):
        details = [f"專家補充：{primary.notes}", *details][:MAX_DETAILS]

    grammar_table = explanation.grammar_table
    if grammar_table and len(grammar_table) > MAX_GRAMMAR_ROWS:
        grammar_table = grammar_table[:MAX_GRAMMAR_ROWS]

    return explanation.model_copy(update={"summary": summary, "details": details, "grammar_table": grammar_table})


def build_retrieval(question_text: str, chosen: Sequence[ExpertProbe]) -> RetrievalQuery:
    base = re.sub(r"\s+", " ", question_text or "").strip()[:MAX_BASE_QUERY_CHARS]
    tags = list(dict.fromkeys(t for c in chosen for t in c.tags))[:MAX_RETRIEVAL_TAGS]
    joined = ",".join(tags)
    search = f"{base} | tags:{joined or 'general'}" if base else (joined or "general")
    return RetrievalQuery(base_query=base, tags=tags, search_query=search)


@trace_span("route_solver.generate")
def generate_general_solution(
    question_text: str,
    *,
    subject_hint: SubjectHint,
    choices: Sequence[ParsedChoice],
    question_id: str,
    client: Optional[LLMClient] = None,
) -> ExplainResult:
    settings = get_settings()
    pm = get_prompt_manager()
    messages = [
        {"role": "system", "content": pm.render("general_solver_system")},
        {
            "role": "user",
            "content": pm.render(
                "general_solver_user",
                question=question_text,
                max_chars=settings.solver_input_max_chars,
                subject_hint=subject_hint.value,
                choices=[c.model_dump() for c in choices],
            ),
        },
    ]
    try:
        llm = client or get_llm_client()
        data: Any = llm.chat_completion_json(
            messages,
            model=settings.model_solver,
            temperature=settings.solver_temperature,
            max_tokens=settings.solver_max_tokens,
            stage="general_solver",
        )
        try:
            return ExplainResult.model_validate(data)
        except ValidationError as e:
            raise SchemaValidationError(
                "general solver output failed validation", errors=e.errors(include_url=False)
            ) from e
    except QuestionIngestError as e:
        raise GenerationError(f"general solver failed: {e}", question_id=question_id, cause=e) from e
    except Exception as e:
        raise GenerationError(
            f"general solver failed: {e.__class__.__name__}: {e}", question_id=question_id, cause=e
        ) from e


def run_hybrid_solve(
    question_text: str,
    client: Optional[LLMClient] = None,
    config: Optional[ArbiterConfig] = None,
) -> HybridSolveResponse:
    """
    Route one question and explain it.

    Raises:
        GenerationError: the general solver call failed or returned an invalid shape.
    """
    text = question_text if isinstance(question_text, str) else ""
    cfg = config or ArbiterConfig.from_settings()
    arbitration = arbitrate(text, cfg)
    choices: List[ParsedChoice] = extract_choices(text)
    question_id = hash_question(text)

    explanation = generate_general_solution(
        text,
        subject_hint=arbitration.subject_hint,
        choices=choices,
        question_id=question_id,
        client=client,
    )
    refined = refine_explanation(explanation, arbitration.chosen)
    retrieval = build_retrieval(text, arbitration.chosen)

    log_event(
        logger,
        "hybrid_solve_done",
        question_id=question_id,
        guard=arbitration.guard.subject.value,
        subject_hint=arbitration.subject_hint.value,
        tags="/".join(retrieval.tags) or "general",
        reason=arbitration.reason,
    )
    return HybridSolveResponse(
        explanation=refined,
        meta=HybridSolveMeta(
            question_id=question_id,
            guard=arbitration.guard,
            experts=arbitration.experts,
            chosen=arbitration.chosen,
            subject_hint=arbitration.subject_hint,
            retrieval=retrieval,
            config=cfg.as_dict(),
            reason=arbitration.reason,
            choices=choices,
        ),
    )
