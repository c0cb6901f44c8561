from __future__ import annotations

import re
import unicodedata
from typing import Iterator, Sequence

from .models import DictionaryRule
from .tokenizer import tokenize

MIN_TOKEN_LENGTH = 2
MAX_EDIT_DISTANCE = 3
MAX_EDIT_RATIO = 0.5
DEFAULT_WINDOW = 3

_DIGIT_RE = re.compile(r"\d")


def levenshtein_distance(a: str, b: str) -> int:
    """コードポイント単位のレーベンシュタイン距離。"""

    rows = len(b) + 1
    cols = len(a) + 1
    matrix = [[0] * cols for _ in range(rows)]
    for i in range(cols):
        matrix[0][i] = i
    for j in range(rows):
        matrix[j][0] = j

    for j in range(1, rows):
        for i in range(1, cols):
            substitution_cost = 0 if a[i - 1] == b[j - 1] else 1
            matrix[j][i] = min(
                matrix[j][i - 1] + 1,  # deletion
                matrix[j - 1][i] + 1,  # insertion
                matrix[j - 1][i - 1] + substitution_cost,
            )
    return matrix[-1][-1]


def is_punctuation_only(token: str) -> bool:
    if not token:
        return True
    return all(ch.isspace() or unicodedata.category(ch).startswith("P") for ch in token)


def are_similar(token_a: str, token_b: str) -> bool:
    """2 つのトークンが「同じ語句を直したもの」とみなせるかを判定する。"""

    if token_a == token_b:
        return False

    if is_punctuation_only(token_a) or is_punctuation_only(token_b):
        return False

    # 数値を含むトークンは数値同士でのみ対応づける
    a_has_digit = bool(_DIGIT_RE.search(token_a))
    b_has_digit = bool(_DIGIT_RE.search(token_b))
    if a_has_digit or b_has_digit:
        return a_has_digit and b_has_digit

    if len(token_a) < MIN_TOKEN_LENGTH or len(token_b) < MIN_TOKEN_LENGTH:
        return False

    longest = max(len(token_a), len(token_b))
    distance = levenshtein_distance(token_a, token_b)
    return distance <= min(MAX_EDIT_DISTANCE, longest * MAX_EDIT_RATIO)


def extract_rule_candidates(
    original: str,
    edited: str,
    *,
    window: int = DEFAULT_WINDOW,
) -> list[DictionaryRule]:
    """修正前後のテキストから辞書ルールの候補を抽出する。

    元トークンの位置 i に対し、修正後トークンの [i - window, i + window] を
    i に近い順 (i, i-1, i+1, i-2, ...) に走査する。同じトークンが先に見つかれば
    そのトークンは修正されていないとみなし、類似トークンが先に見つかれば対応とする。
    """

    original_tokens = tokenize(original)
    edited_tokens = tokenize(edited)
    return _pair_tokens(original_tokens, edited_tokens, window=window)


def _pair_tokens(
    original_tokens: Sequence[str],
    edited_tokens: Sequence[str],
    *,
    window: int,
) -> list[DictionaryRule]:
    candidates: list[DictionaryRule] = []
    seen: set[tuple[str, str]] = set()
    span = max(0, int(window))

    for index, token in enumerate(original_tokens):
        if is_punctuation_only(token):
            continue
        for position in _nearest_positions(index, span, len(edited_tokens)):
            candidate = edited_tokens[position]
            if candidate == token:
                # 近傍に同じトークンが残っている: この語は直されていない
                break
            if not are_similar(token, candidate):
                continue
            pair = (token, candidate)
            if pair in seen:
                continue
            seen.add(pair)
            candidates.append(DictionaryRule(incorrect=token, correct=candidate))
            break

    return candidates


def _nearest_positions(index: int, span: int, size: int) -> Iterator[int]:
    """index を中心に、近い順で窓内の位置を返す。等距離なら左を先にする。"""

    for offset in range(span + 1):
        for position in ((index,) if offset == 0 else (index - offset, index + offset)):
            if 0 <= position < size:
                yield position


__all__ = [
    "levenshtein_distance",
    "is_punctuation_only",
    "are_similar",
    "extract_rule_candidates",
    "MIN_TOKEN_LENGTH",
    "MAX_EDIT_DISTANCE",
    "MAX_EDIT_RATIO",
    "DEFAULT_WINDOW",
]
