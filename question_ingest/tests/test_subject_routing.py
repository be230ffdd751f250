import pytest

from question_ingest.core.arbiter import (
    ArbiterConfig,
    arbitrate,
    derive_subject_hint,
    describe_reason,
    pick_experts,
)
from question_ingest.core.experts import DEFAULT_EXPERT_TABLE, ExpertTable, probe_experts
from question_ingest.models.schemas import ExpertProbe, ExpertSubject, GuardSubject, SubjectHint

ENGLISH_ITEM = (
    "There are reports coming in that a number of people have been injured in a terrorist ___ . "
    "(A) access (B) supply (C) attack (D) burden"
)
MATH_ITEM = "In triangle ABC, angle A = 60°, AB = 4 and AC = 6. Find BC."
CHINESE_ITEM = "下列關於清代臺灣歷史的敘述，何者正確？"
TRIANGLE_ITEM = "已知三角形兩邊為 a=5, b=7, C=60°，求 c=?"
SHORT_CLOZE_ITEM = "He raised an ( ) ; however, he failed... (A) objection (B) question (C) alarm (D) eyebrow"


def _probe(subject: ExpertSubject, confidence: float, **kw) -> ExpertProbe:
    return ExpertProbe(subject=subject, confidence=confidence, **kw)


def test_probe_experts_one_per_subject_ranked():
    probes = probe_experts(ENGLISH_ITEM)
    assert {p.subject for p in probes} == set(ExpertSubject)
    confidences = [p.confidence for p in probes]
    assert confidences == sorted(confidences, reverse=True)
    assert all(0.0 <= c <= 1.0 for c in confidences)


def test_probe_experts_ties_keep_declaration_order():
    probes = probe_experts("")
    assert [p.subject for p in probes] == [
        ExpertSubject.ENGLISH,
        ExpertSubject.MATH,
        ExpertSubject.CHINESE,
        ExpertSubject.SOCIAL,
        ExpertSubject.SCIENCE,
    ]
    assert all(p.confidence == 0.0 for p in probes)


def test_probe_experts_total_on_non_string():
    assert len(probe_experts(None)) == 5


def test_english_expert_scores_short_item():
    top = probe_experts(ENGLISH_ITEM)[0]
    assert top.subject == ExpertSubject.ENGLISH
    assert top.confidence == pytest.approx(15 / 26 * 1.2)
    assert top.tags == ["grammar", "cloze"]
    assert top.notes == "句法判讀"


def test_math_expert_counts_symbols():
    top = probe_experts(MATH_ITEM)[0]
    assert top.subject == ExpertSubject.MATH
    assert top.confidence == pytest.approx(0.6)
    assert top.tags == ["algebra", "functions"]


def test_keyword_experts_use_ascii_word_boundaries():
    social = {p.subject: p for p in probe_experts("The lawn is green.")}[ExpertSubject.SOCIAL]
    assert social.confidence == 0.0
    social = {p.subject: p for p in probe_experts("The law is strict.")}[ExpertSubject.SOCIAL]
    assert social.confidence == pytest.approx(0.25)
    social = {p.subject: p for p in probe_experts("中文history中文")}[ExpertSubject.SOCIAL]
    assert social.confidence == pytest.approx(0.25)


def test_expert_table_is_replaceable():
    table = ExpertTable(science_keywords=("photosynthesis",), science_saturation=1)
    probes = probe_experts("Photosynthesis happens in leaves", table)
    assert probes[0].subject == ExpertSubject.SCIENCE
    assert probes[0].confidence == 1.0
    assert DEFAULT_EXPERT_TABLE.science_saturation == 4


def test_pick_experts_threshold_and_top_k():
    probes = [
        _probe(ExpertSubject.ENGLISH, 0.9),
        _probe(ExpertSubject.MATH, 0.6),
        _probe(ExpertSubject.CHINESE, 0.2),
    ]
    assert [p.subject for p in pick_experts(probes, 0.55, 1)] == [ExpertSubject.ENGLISH]
    assert [p.subject for p in pick_experts(probes, 0.55, 5)] == [ExpertSubject.ENGLISH, ExpertSubject.MATH]
    assert pick_experts(probes, 0.95, 1) == []
    assert pick_experts(probes, 0.1, 0) == []
    assert pick_experts([], 0.1, 1) == []


def test_hard_guard_dominates_subject_hint():
    chosen = [_probe(ExpertSubject.ENGLISH, 1.0)]
    assert derive_subject_hint(GuardSubject.MATH, chosen) == SubjectHint.MATH
    assert derive_subject_hint("math", []) == SubjectHint.MATH
    assert derive_subject_hint(GuardSubject.NONE, chosen) == SubjectHint.ENGLISH
    assert derive_subject_hint(GuardSubject.NONE, []) == SubjectHint.UNKNOWN


def test_describe_reason_prefers_notes_then_tags():
    assert describe_reason([]) == "general"
    assert describe_reason([_probe(ExpertSubject.MATH, 0.8, notes="符號判讀")]) == "符號判讀"
    assert describe_reason([_probe(ExpertSubject.MATH, 0.8, tags=["a", "b"])]) == "a/b"


def test_arbitrate_english_item():
    a = arbitrate(ENGLISH_ITEM)
    assert a.guard.subject == GuardSubject.NONE
    assert a.subject_hint == SubjectHint.ENGLISH
    assert [c.subject for c in a.chosen] == [ExpertSubject.ENGLISH]
    assert a.reason == "句法判讀"


def test_arbitrate_math_item_guarded():
    a = arbitrate(MATH_ITEM)
    assert a.guard.subject == GuardSubject.MATH
    assert a.subject_hint == SubjectHint.MATH


def test_arbitrate_ambiguous_is_unknown():
    a = arbitrate(CHINESE_ITEM)
    assert a.experts[0].subject == ExpertSubject.CHINESE
    assert a.chosen == []
    assert a.subject_hint == SubjectHint.UNKNOWN
    assert a.reason == "general"


def test_arbitrate_respects_config():
    a = arbitrate(ENGLISH_ITEM, ArbiterConfig(threshold=0.9, top_k=1))
    assert a.subject_hint == SubjectHint.UNKNOWN


def test_arbiter_config_from_settings(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("EXPERT_THRESHOLD", "0.3")
    monkeypatch.setenv("EXPERT_TOP_K", "2")
    cfg = ArbiterConfig.from_settings()
    assert cfg.threshold == pytest.approx(0.3)
    assert cfg.top_k == 2
    assert cfg.as_dict() == {"threshold": pytest.approx(0.3), "top_k": 2}


def test_arbitrate_chinese_triangle_item_is_math():
    a = arbitrate(TRIANGLE_ITEM)
    assert a.guard.matched_tokens == ["=", "=", "=", "60°", "="]
    assert a.experts[0].subject == ExpertSubject.MATH
    assert a.experts[0].confidence == pytest.approx(0.8)
    assert a.subject_hint == SubjectHint.MATH


def test_short_cloze_ranks_english_first_but_stays_below_default_threshold():
    a = arbitrate(SHORT_CLOZE_ITEM)
    assert a.guard.subject == GuardSubject.NONE
    assert a.experts[0].subject == ExpertSubject.ENGLISH
    assert a.experts[0].confidence == pytest.approx(7 / 17 * 1.2)
    assert all(p.confidence == 0.0 for p in a.experts[1:])
    # 0.49 < 0.55: the hint is left open rather than guessed
    assert a.subject_hint == SubjectHint.UNKNOWN

    relaxed = arbitrate(SHORT_CLOZE_ITEM, ArbiterConfig(threshold=0.45))
    assert relaxed.subject_hint == SubjectHint.ENGLISH
