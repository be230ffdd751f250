from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from question_ingest.core.experts import DEFAULT_EXPERT_TABLE, ExpertTable, probe_experts
from question_ingest.core.hard_guard import run_hard_guard
from question_ingest.models.schemas import (
    Arbitration,
    ExpertProbe,
    GuardSubject,
    SubjectHint,
)
from question_ingest.utils.observability import log_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArbiterConfig:
    threshold: float = 0.55
    top_k: int = 1

    @classmethod
    def from_settings(cls) -> "ArbiterConfig":
        from question_ingest.utils.settings import get_settings

        s = get_settings()
        return cls(threshold=float(s.expert_threshold), top_k=int(s.expert_top_k))

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


_KNOWN_HINTS = {
    SubjectHint.ENGLISH.value,
    SubjectHint.MATH.value,
    SubjectHint.CHINESE.value,
    SubjectHint.SOCIAL.value,
    SubjectHint.SCIENCE.value,
}


def pick_experts(probes: Sequence[ExpertProbe], threshold: float, top_k: int) -> List[ExpertProbe]:
    """Keep probes at or above `threshold`, then the first `top_k` (input is already ranked)."""
    filtered = [p for p in (probes or []) if p.confidence >= threshold]
    if not filtered or top_k <= 0:
        return []
    return filtered[: int(top_k)]


def derive_subject_hint(
    guard_subject: Union[GuardSubject, str, None],
    chosen: Sequence[ExpertProbe],
) -> SubjectHint:
    if str(getattr(guard_subject, "value", guard_subject) or "") == GuardSubject.MATH.value:
        return SubjectHint.MATH
    if not chosen:
        return SubjectHint.UNKNOWN
    subject = str(getattr(chosen[0].subject, "value", chosen[0].subject))
    if subject in _KNOWN_HINTS:
        return SubjectHint(subject)
    return SubjectHint.UNKNOWN


def describe_reason(chosen: Sequence[ExpertProbe]) -> str:
    if not chosen:
        return "general"
    primary = chosen[0]
    return primary.notes or "/".join(primary.tags) or "general"


def arbitrate(
    text: str,
    config: Optional[ArbiterConfig] = None,
    *,
    table: ExpertTable = DEFAULT_EXPERT_TABLE,
) -> Arbitration:
    """Hard guard + expert probes -> one subject hint. Never raises; ambiguity is `unknown`."""
    cfg = config or ArbiterConfig()
    guard = run_hard_guard(text)
    experts = probe_experts(text, table)
    chosen = pick_experts(experts, cfg.threshold, cfg.top_k)
    hint = derive_subject_hint(guard.subject, chosen)
    reason = describe_reason(chosen)
    log_event(
        logger,
        "subject_arbitrated",
        guard=guard.subject.value,
        experts=",".join(f"{e.subject.value}:{e.confidence:.2f}" for e in experts),
        chosen="/".join(c.subject.value for c in chosen) or "general",
        subject_hint=hint.value,
        reason=reason,
    )
    return Arbitration(
        guard=guard,
        experts=experts,
        chosen=chosen,
        subject_hint=hint,
        reason=reason,
    )
