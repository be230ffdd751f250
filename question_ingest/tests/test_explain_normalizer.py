import hashlib

import pytest

from question_ingest.core.explain_normalizer import (
    build_explain_view,
    compact_pos,
    get_card_status,
    has_minimal_content,
    normalize_card,
    normalize_zh,
    truncate_reason,
)
from question_ingest.models.schemas import NormalizedExplainView


def test_option_alias_id_label_correct():
    card = normalize_card({"options": [{"id": "A", "label": "foo", "correct": True}]})
    opt = card.options[0]
    assert (opt.key, opt.text, opt.verdict) == ("A", "foo", "fit")
    assert card.correct is not None and card.correct.key == "A"
    assert card.presentation.answer_key == "A"
    assert card.presentation.answer_word == "foo"
    assert card.presentation.options[0].correct is True


def test_card_node_lookup_order():
    raw = {
        "explanation": {"card": {"question": "from explanation"}},
        "card": {"question": "from card"},
        "question": "from root",
    }
    assert normalize_card(raw).question == "from explanation"
    assert normalize_card({"card": {"stem": "from card"}}).question == "from card"
    assert normalize_card({"question": "from root"}).question == "from root"


@pytest.mark.parametrize("raw", [None, "junk", 42, [1, 2], {"options": "nope", "vocab": {"a": 1}}])
def test_normalize_card_total_on_malformed(raw):
    card = normalize_card(raw)
    assert card.kind == "FALLBACK"
    assert card.options == []
    assert card.vocab == []
    assert card.presentation.answer_key == "A"
    assert card.id.startswith("card_")


def test_label_letter_becomes_key_and_keys_fill_positionally():
    card = normalize_card({"choices": [{"label": "b", "text": "bar"}, {"text": "x"}, {"word": "y"}]})
    assert [(o.key, o.text) for o in card.options] == [("B", "bar"), ("B", "x"), ("C", "y")]


def test_single_fit_option():
    card = normalize_card(
        {
            "options": [
                {"key": "A", "text": "a", "correct": True},
                {"key": "B", "text": "b", "verdict": "fit"},
                {"key": "C", "text": "c", "incorrect": True},
                {"key": "D", "text": "d", "verdict": "bogus"},
            ]
        }
    )
    assert [o.verdict for o in card.options] == ["fit", "unknown", "unfit", "unknown"]


def test_option_field_aliases():
    card = normalize_card(
        {"options": [{"key": "A", "text": "attack", "partOfSpeech": "noun", "chinese": "攻擊", "explanation": "r"}]}
    )
    opt = card.options[0]
    assert (opt.pos, opt.zh, opt.reason) == ("noun", "攻擊", "r")


def test_kind_validation():
    assert normalize_card({"kind": "E3"}).kind == "E3"
    assert normalize_card({"type": "e2"}).kind == "E2"
    assert normalize_card({"kind": "E9"}).kind == "FALLBACK"
    assert normalize_card({}).kind == "FALLBACK"


def test_card_id_explicit_or_stable_hash():
    assert normalize_card({"id": "abc", "question": "Q"}).id == "abc"
    expected = "card_" + hashlib.sha1("Q".encode("utf-8")).hexdigest()[:12]
    assert normalize_card({"question": "Q"}).id == expected
    assert normalize_card({"question": "Q"}).id == normalize_card({"stem": "Q"}).id


def test_next_actions_default_and_aliases():
    default = normalize_card({})
    assert [(a.label, a.action) for a in default.next_actions] == [
        ("換同型題", "drill-similar"),
        ("加入錯題本", "save-error"),
    ]
    custom = normalize_card({"nextActions": [{"name": "n", "type": "t"}]})
    assert [(a.label, a.action) for a in custom.next_actions] == [("n", "t")]


def test_explicit_correct_block_wins():
    card = normalize_card(
        {
            "options": [{"key": "A", "text": "a", "correct": True}],
            "correct": {"key": "C", "text": "attack", "reason": "collocation"},
        }
    )
    assert card.correct.key == "C"
    assert card.presentation.answer_key == "C"
    assert card.presentation.answer_word == "attack"


def test_field_formatters():
    assert compact_pos("noun / Verb") == "n./v."
    assert compact_pos("n., noun") == "n."
    assert compact_pos("idiom") == "idiom"
    assert compact_pos("prep") == "prep."
    assert compact_pos(None) == ""
    assert normalize_zh("攻擊, 襲擊; 抨擊") == "攻擊；襲擊"
    assert truncate_reason("") == "無資料"
    assert truncate_reason("短理由") == "短理由"
    long_reason = "一" * 25
    assert truncate_reason(long_reason) == "一" * 20 + "..."


def test_presentation_option_views_and_placeholders():
    card = normalize_card(
        {
            "question": "Heavy rain caused serious flooding ___ .",
            "options": [
                {"key": "A", "text": "access"},
                {"key": "B", "text": "", "pos": "adj"},
                {"key": "C", "text": "c"},
                {"key": "D", "text": "d"},
                {"key": "E", "text": "e"},
            ],
            "vocab": [{"term": "rain", "zh": "雨", "pos": "noun"}],
        }
    )
    view = card.presentation
    assert len(view.options) == 4
    assert view.options[0].pos == "—" and view.options[0].zh == "—"
    assert view.options[0].reason == "無資料"
    assert view.options[1].word == "wordB"
    assert view.options[1].pos == "adj."
    assert [v.word for v in view.vocab] == ["heavy", "rain", "caused", "serious"]
    rain = view.vocab[1]
    assert (rain.pos, rain.zh, rain.note) == ("n.", "雨", "語境：題幹「rain」")


def test_context_vocabulary_falls_back_to_upstream_list():
    card = normalize_card(
        {
            "question": "___ .",
            "options": [{"key": "A", "text": "attack"}],
            "vocab": [{"term": "attack", "zh": "攻擊"}, {"word": "access", "usage": "gain access to"}],
        }
    )
    assert [(v.word, v.note) for v in card.presentation.vocab] == [("access", "gain access to")]


def test_reasoning_from_cues_then_steps():
    from_cues = normalize_card({"cues": ["a", "a", "b", "c", "d"], "steps": [{"title": "s"}]})
    assert from_cues.presentation.reasoning == ["a", "b", "c"]
    from_steps = normalize_card({"steps": [{"title": "t1", "detail": "d1"}, {"label": "t2"}]})
    assert from_steps.presentation.reasoning == ["d1", "t2"]


def test_build_explain_view_reuses_or_derives():
    card = normalize_card({"question": "Q", "options": [{"key": "A", "text": "x"}]})
    assert build_explain_view(card) is card.presentation

    dumped = card.model_dump()
    assert build_explain_view(dumped) == card.presentation

    derived = build_explain_view({"question": "Q", "options": [{"id": "B", "label": "y", "correct": True}]})
    assert isinstance(derived, NormalizedExplainView)
    assert derived.options[0].key == "B"
    assert derived.options[0].correct is True


def test_build_explain_view_rebuilds_malformed_presentation():
    raw = {"question": "Q", "options": [{"key": "A", "text": "x"}], "presentation": {"options": "bad"}}
    view = build_explain_view(raw)
    assert isinstance(view, NormalizedExplainView)
    assert view == normalize_card(raw).presentation
    assert [o.key for o in view.options] == ["A"]

    assert build_explain_view({"presentation": {"options": "bad"}}).options == []


def test_minimal_content_and_status():
    empty = normalize_card({})
    assert not has_minimal_content(empty)
    assert get_card_status(empty) == "kind:FALLBACK options:0 vocab:0 no_translation no_cues"

    full = normalize_card({"kind": "E1", "translation": "t", "cues": ["c"], "options": [{"key": "A"}]})
    assert has_minimal_content(full)
    assert get_card_status(full) == "kind:E1 options:1 vocab:0 has_translation cues:1"
