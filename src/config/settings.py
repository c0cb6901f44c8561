from __future__ import annotations

from dataclasses import dataclass, replace

from src.config.defaults import AUTO_LEARNED_CATEGORY, DICTIONARY_DB_URL, LLM_CONFIG


@dataclass(frozen=True)
class CorrectorSettings:
    """校正・学習コンポーネントへ明示的に渡す設定値。"""

    database_url: str = DICTIONARY_DB_URL
    api_key: str | None = None
    base_url: str = str(LLM_CONFIG["base_url"])
    model: str = str(LLM_CONFIG["model"])
    temperature: float = 0.3
    max_tokens: int = 4000
    max_retries: int = 3
    retry_delay: float = 1.0
    timeout: float = 300.0
    auto_category: str = AUTO_LEARNED_CATEGORY
    # 学習時に既存ルールと重複した場合、黙ってスキップするか CONFLICT で拒否するか
    reject_duplicates: bool = False
    similarity_window: int = 3

    @classmethod
    def from_env(cls) -> "CorrectorSettings":
        return cls(
            database_url=DICTIONARY_DB_URL,
            api_key=LLM_CONFIG["api_key"],
            base_url=str(LLM_CONFIG["base_url"]),
            model=str(LLM_CONFIG["model"]),
            temperature=float(LLM_CONFIG["temperature"]),
            max_tokens=int(LLM_CONFIG["max_tokens"]),
            max_retries=int(LLM_CONFIG["max_retries"]),
            retry_delay=float(LLM_CONFIG["retry_delay"]),
            timeout=float(LLM_CONFIG["timeout"]),
        )

    def update(self, **overrides: object) -> "CorrectorSettings":
        values = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **values)


__all__ = ["CorrectorSettings"]
