"""
Display labels for answer options under the supported labelling schemes.
"""

from __future__ import annotations

from typing import List

KANA_LABELS = ("あ", "い", "う", "え", "お", "か", "き", "く", "け", "こ")
IROHA_LABELS = ("イ", "ロ", "ハ", "ニ", "ホ", "ヘ", "ト", "チ", "リ", "ヌ")


def _alphabet_label(index: int) -> str:
    # a..z, then aa, ab, ... like spreadsheet columns
    letters = ""
    value = index + 1
    while value > 0:
        value, remainder = divmod(value - 1, 26)
        letters = chr(ord("a") + remainder) + letters
    return letters


def option_label(style: str, index: int) -> str:
    """
    Return the label shown for the zero-based option `index`.

    Kana and iroha styles only have ten native characters; later options fall
    back to ``k<n>`` / ``i<n>``. Unknown styles are numbered.
    """
    if style == "alphabet":
        return _alphabet_label(index)
    if style == "kana":
        return KANA_LABELS[index] if index < len(KANA_LABELS) else f"k{index + 1}"
    if style == "iroha":
        return IROHA_LABELS[index] if index < len(IROHA_LABELS) else f"i{index + 1}"
    return str(index + 1)


def option_labels(style: str, count: int) -> List[str]:
    return [option_label(style, index) for index in range(max(0, count))]


def format_selection(style: str, selection) -> str:
    """Render a filled set for display (``—`` when nothing was detected)."""
    if selection is None:
        return "—"
    if not selection:
        return "(blank)"
    return ", ".join(option_label(style, index) for index in selection)
