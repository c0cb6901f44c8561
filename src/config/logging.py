from __future__ import annotations

import logging
import os
from typing import Mapping

_LEVEL_ALIASES: dict[str, int] = {
    "WARN": logging.WARNING,
    "TRACE": logging.DEBUG,
}

LEVEL_ENV_KEYS = ("DICTIONARY_LOG_LEVEL", "LOG_LEVEL")
"""ルートのログレベルを読む環境変数。先に見つかったものを使う。"""

OVERRIDES_ENV_KEY = "DICTIONARY_LOG_LEVELS"
"""ロガー毎のレベル指定。例: ``src.lib.dictionary.llm_client=DEBUG,sqlalchemy.engine=INFO``"""

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# 個別指定がない限り WARNING 未満を出さないロガー
# httpx はリクエスト毎、sqlalchemy.engine は echo 時に SQL 毎に INFO を出す
_QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "uvicorn.access")


def _normalize(value: str | int | None) -> int:
    if isinstance(value, int):
        return value

    if value is None:
        return logging.INFO

    text = value.strip()
    if not text:
        return logging.INFO

    if text.lstrip("-").isdigit():
        return int(text)

    upper = text.upper()
    if upper in _LEVEL_ALIASES:
        return _LEVEL_ALIASES[upper]
    resolved = logging.getLevelName(upper)
    return resolved if isinstance(resolved, int) else logging.INFO


def resolve_log_level(*candidates: str | int | None, default: str | int | None = None) -> int:
    """最初の None でない候補をログレベルへ変換する。候補がなければ default、なければ INFO。"""

    for candidate in candidates:
        if candidate is not None:
            return _normalize(candidate)
    return _normalize(default) if default is not None else logging.INFO


def parse_logger_levels(spec: str | None) -> dict[str, int]:
    """``name=LEVEL`` をカンマ区切りで並べた指定を辞書にする。不正な項目は無視する。"""

    levels: dict[str, int] = {}
    for item in (spec or "").split(","):
        name, sep, level = item.partition("=")
        if not sep or not name.strip() or not level.strip():
            continue
        levels[name.strip()] = _normalize(level)
    return levels


def setup_logging(
    level: str | int | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, str | int] | None = None,
    fmt: str = DEFAULT_FORMAT,
) -> int:
    """ルートロガーを構成し、決定したレベルを返す。

    レベルは引数、``DICTIONARY_LOG_LEVEL``、``LOG_LEVEL`` の順に解決する。
    ロガー毎の指定は ``DICTIONARY_LOG_LEVELS`` と ``overrides``（後者が優先）から適用する。
    """

    source = os.environ if env is None else env
    resolved = resolve_log_level(level, *(source.get(key) for key in LEVEL_ENV_KEYS))
    logging.basicConfig(level=resolved, format=fmt, force=True)
    logging.getLogger().setLevel(resolved)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))

    per_logger = parse_logger_levels(source.get(OVERRIDES_ENV_KEY))
    for name, value in (overrides or {}).items():
        per_logger[name] = _normalize(value)
    for name, value in per_logger.items():
        logging.getLogger(name).setLevel(value)

    return resolved


__all__ = ["resolve_log_level", "parse_logger_levels", "setup_logging", "LEVEL_ENV_KEYS", "OVERRIDES_ENV_KEY"]
