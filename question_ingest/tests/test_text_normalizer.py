import pytest

from question_ingest.core.text_normalizer import circled_to_parens, fold_width, normalize


def test_normalize_total_on_empty_and_non_string():
    assert normalize(None) == ""
    assert normalize("") == ""
    assert normalize("   \n  ") == ""
    assert normalize(123) == "123"


def test_normalize_full_width_and_ideographic_space():
    assert normalize("（Ａ）ａｐｐｌｅ") == "(A)apple"
    assert normalize("a　　b") == "a b"


def test_normalize_circled_numbers_become_numbered_blanks():
    assert normalize("He ① the door and ② away.") == "He (1) the door and (2) away."
    assert circled_to_parens("❸") == "(3)"


def test_normalize_strips_zero_width_and_unifies_newlines():
    assert normalize("ab\u200bc\r\nnext\rline") == "abc\nnext\nline"


def test_normalize_collapses_spaces_but_keeps_newlines():
    assert normalize("a \t  b\n\nc") == "a b\n\nc"


def test_normalize_splits_glued_option_markers():
    assert normalize("(A)(B)(C)") == "(A) (B) (C)"


def test_normalize_breaks_before_glued_question_marker():
    assert normalize("The end.2. Next one") == "The end.\n2. Next one"
    assert normalize("Really?Q3 what") == "Really?\nQ3 what"


def test_normalize_keeps_decimals():
    assert normalize("It costs 3.5. Then we left.") == "It costs 3.5. Then we left."


def test_fold_width_is_length_preserving():
    s = "（１）ＡＢＣ；"
    assert len(fold_width(s)) == len(s)
    assert fold_width(s) == "(1)ABC;"


@pytest.mark.parametrize(
    "raw",
    [
        "（Ａ）ａｐｐｌｅ（Ｂ）ｐｅａｒ",
        "① ② ③\r\n\u200bwords\u3000here",
        "end.2. (A)(B)  x",
        "Café ﬁne ½ ＋ 1",
        "\ufeffQ1 what?Q2 why",
    ],
)
def test_normalize_is_idempotent(raw):
    once = normalize(raw)
    assert normalize(once) == once
