from __future__ import annotations

import os
from urllib.parse import quote_plus

"""アプリ全体で共有する既定値。"""

DEFAULT_MODEL_NAME = os.getenv("CORRECTION_MODEL", "gpt-4-turbo-preview")
"""校正に利用するチャットモデル名。"""

DEFAULT_LLM_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
"""OpenAI 互換 API のベース URL。"""

AUTO_LEARNED_CATEGORY = "auto-learned"
"""自動学習で追加されたルールに付与するカテゴリ。"""


def _float_env(key: str, fallback: float) -> float:
    raw = os.getenv(key)
    if raw is None:
        return fallback
    try:
        return float(raw)
    except ValueError:
        return fallback


def _int_env(key: str, fallback: int) -> int:
    raw = os.getenv(key)
    if raw is None:
        return fallback
    try:
        return int(raw)
    except ValueError:
        return fallback


def _build_db_url() -> str:
    explicit = os.getenv("DICTIONARY_DB_URL")
    if explicit:
        return explicit

    user = os.getenv("DICTIONARY_DB_USER", "dictionary")
    password = os.getenv("DICTIONARY_DB_PASSWORD", "dictionary")
    host = os.getenv("DICTIONARY_DB_HOST", "localhost")
    port = os.getenv("DICTIONARY_DB_PORT", "5432")
    name = os.getenv("DICTIONARY_DB_NAME", "dictionary")
    return (
        f"postgresql+psycopg://{quote_plus(user)}:{quote_plus(password)}"
        f"@{host}:{port}/{quote_plus(name)}"
    )


DICTIONARY_DB_URL = _build_db_url()
"""辞書テーブルを保持する Postgres への接続 URL。"""

LLM_CONFIG = {
    "api_key": os.getenv("OPENAI_API_KEY"),
    "base_url": DEFAULT_LLM_BASE_URL,
    "model": DEFAULT_MODEL_NAME,
    "temperature": _float_env("CORRECTION_TEMPERATURE", 0.3),
    "max_tokens": _int_env("CORRECTION_MAX_TOKENS", 4000),
    "max_retries": _int_env("CORRECTION_MAX_RETRIES", 3),
    "retry_delay": _float_env("CORRECTION_RETRY_DELAY", 1.0),
    "timeout": _float_env("CORRECTION_TIMEOUT", 300.0),
}
"""校正用 LLM 呼び出しの既定値。"""
