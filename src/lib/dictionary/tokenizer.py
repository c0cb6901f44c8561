from __future__ import annotations

import re

# 句読点は区切りとして独立したトークンに残し、空白は捨てる
_SPLIT_RE = re.compile(r"([、。！？．，\s])")


def tokenize(text: str) -> list[str]:
    """日本語の句読点と空白でテキストを比較用トークンへ分割する。"""

    if not text:
        return []
    return [token for token in _SPLIT_RE.split(text) if token.strip()]


__all__ = ["tokenize"]
