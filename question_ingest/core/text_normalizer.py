from __future__ import annotations

import re
import unicodedata
from typing import Any, Dict

# ①–⑩ / ❶–❿ are blank markers in exam scans; NFKC would turn ① into a bare "1".
CIRCLED_NUMBERS: Dict[str, int] = {
    **{chr(0x2460 + i): i + 1 for i in range(10)},
    **{chr(0x2776 + i): i + 1 for i in range(10)},
}

# Length-preserving fold: one full-width char -> one half-width char.
_WIDTH_TABLE: Dict[int, str] = {
    **{cp: chr(cp - 0xFEE0) for cp in range(ord("Ａ"), ord("Ｚ") + 1)},
    **{cp: chr(cp - 0xFEE0) for cp in range(ord("ａ"), ord("ｚ") + 1)},
    **{cp: chr(cp - 0xFEE0) for cp in range(ord("０"), ord("９") + 1)},
    ord("（"): "(",
    ord("）"): ")",
    ord("；"): ";",
    ord("\u3000"): " ",
}

_ZERO_WIDTH_RE = re.compile(r"[\u00a0\u200b\u200c\u200d\u2060\ufeff]")
_SPACE_RUN_RE = re.compile(r"[ \t\f\v]+")
_GLUED_PARENS_RE = re.compile(r"\)\(")
# Sentence-final punctuation glued to the next question marker hides the block boundary.
_MARKER_BREAK_RE = re.compile(r"(?<!\d)([。．.!?！？])[ \t]*(?=(?:\d+[.)、]|Q\s*\d+))")


def fold_width(text: str) -> str:
    """Full-width Latin letters/digits, parentheses, semicolons and ideographic space to half-width."""
    return str(text or "").translate(_WIDTH_TABLE)


def circled_to_parens(text: str) -> str:
    if not text:
        return ""
    return "".join(f"({CIRCLED_NUMBERS[ch]})" if ch in CIRCLED_NUMBERS else ch for ch in text)


def normalize(raw: Any) -> str:
    """
    Canonicalize student-submitted text. Total and idempotent.

    Order matters:
    - circled blank markers to `(n)` before NFKC flattens them
    - zero-width removal, NFKC, newline unification
    - width folding, `；` to `;`, space-run collapse (newlines kept)
    - `)(` split, then a line break between sentence-final punctuation and a
      following question marker
    """
    if raw is None:
        return ""
    if not isinstance(raw, str):
        try:
            raw = str(raw)
        except Exception:
            return ""
    s = circled_to_parens(raw)
    # Zero-width marks go before NFKC so composition is final after one pass.
    s = _ZERO_WIDTH_RE.sub("", s)
    s = unicodedata.normalize("NFKC", s)
    s = s.replace("\r\n", "\n").replace("\r", "\n")
    s = s.replace("\u3000", " ")
    s = fold_width(s)
    s = _SPACE_RUN_RE.sub(" ", s)
    s = _GLUED_PARENS_RE.sub(") (", s)
    s = _MARKER_BREAK_RE.sub("\\1\n", s)
    return s.strip()
