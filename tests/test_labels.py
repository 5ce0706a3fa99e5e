import pytest

from marksheet_ai.labels import format_selection, option_label, option_labels


@pytest.mark.parametrize("style", ["number", "alphabet", "kana", "iroha"])
def test_first_ten_labels_are_distinct_and_non_empty(style):
    labels = option_labels(style, 10)
    assert all(labels)
    assert len(set(labels)) == 10


def test_label_schemes():
    assert option_labels("number", 3) == ["1", "2", "3"]
    assert option_labels("alphabet", 4) == ["a", "b", "c", "d"]
    assert option_labels("kana", 3) == ["あ", "い", "う"]
    assert option_labels("iroha", 4) == ["イ", "ロ", "ハ", "ニ"]


def test_kana_and_iroha_fall_back_past_ten_options():
    assert option_label("kana", 9) == "こ"
    assert option_label("kana", 10) == "k11"
    assert option_label("iroha", 9) == "ヌ"
    assert option_label("iroha", 11) == "i12"


def test_alphabet_wraps_like_spreadsheet_columns():
    assert option_label("alphabet", 25) == "z"
    assert option_label("alphabet", 26) == "aa"
    assert option_label("alphabet", 27) == "ab"
    assert option_label("alphabet", 52) == "ba"
    assert len(set(option_labels("alphabet", 100))) == 100


def test_unknown_style_is_numbered():
    assert option_label("roman", 2) == "3"


def test_format_selection():
    assert format_selection("alphabet", None) == "—"
    assert format_selection("alphabet", ()) == "(blank)"
    assert format_selection("alphabet", (0, 2)) == "a, c"
    assert format_selection("iroha", [1]) == "ロ"
