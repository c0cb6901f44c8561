from __future__ import annotations

import logging
from typing import Sequence

from src.config.settings import CorrectorSettings

from .applier import apply_rules, resolve_rules
from .exceptions import ApiError, DictionaryServiceError, StorageError, ValidationError
from .llm_client import ChatCompletionClient, OpenAIChatClient
from .models import CorrectionResult, DictionaryRule
from .prompt import build_correction_messages, parse_correction_reply
from .store import BaseDictionaryStore

logger = logging.getLogger(__name__)


class DictionaryCorrector:
    """辞書による機械的置換と LLM 校正を組み合わせて文字起こしを校正する。"""

    def __init__(
        self,
        store: BaseDictionaryStore,
        llm: ChatCompletionClient | None = None,
        *,
        settings: CorrectorSettings | None = None,
    ) -> None:
        self.settings = settings or CorrectorSettings()
        self.store = store
        self._llm = llm

    @property
    def llm(self) -> ChatCompletionClient:
        if self._llm is None:
            self._llm = OpenAIChatClient.from_settings(self.settings)
        return self._llm

    def correct(self, raw_text: str) -> CorrectionResult:
        if not isinstance(raw_text, str) or not raw_text.strip():
            raise ValidationError("テキストが見つかりません")

        try:
            rules = resolve_rules(self.store.list_all())
        except DictionaryServiceError:
            raise
        except Exception as exc:  # noqa: BLE001 - ストア実装の想定外例外も STORAGE_ERROR に揃える
            raise StorageError("辞書の読み込みに失敗しました", details={"reason": str(exc)}) from exc
        logger.debug("dictionary_loaded: rules=%d", len(rules))

        mechanical = apply_rules(raw_text, rules)
        if mechanical.descriptions:
            logger.info("mechanical_corrections: %s", list(mechanical.descriptions))

        messages = build_correction_messages(raw_text, mechanical.text, rules)
        try:
            reply = self.llm.complete(messages)
        except DictionaryServiceError:
            raise
        except ValueError as exc:
            raise ApiError(str(exc)) from exc
        except Exception as exc:  # noqa: BLE001 - LLM 側の障害は API_ERROR として返す
            logger.exception("LLM 呼び出しに失敗しました")
            raise ApiError("校正中にエラーが発生しました", details={"reason": type(exc).__name__}) from exc

        parsed = parse_correction_reply(reply, fallback_text=mechanical.text)
        logger.debug("llm_reply_parsed: source=%s rules=%d", parsed.source, len(parsed.applied_rules))

        # 辞書ルールは LLM の応答に対しても必ず成立させる
        enforced = apply_rules(parsed.corrected_text, _enforceable(rules))
        mechanical_rules = list(mechanical.descriptions)
        if enforced.counts:
            logger.info("llm_reply_reverted_rules: %s", list(enforced.descriptions))
            already = {rule for rule, _ in mechanical.counts}
            mechanical_rules.extend(
                description
                for (rule, _), description in zip(enforced.counts, enforced.descriptions)
                if rule not in already
            )

        return CorrectionResult(
            corrected_text=enforced.text,
            mechanical_rules=tuple(mechanical_rules),
            llm_rules=parsed.applied_rules,
            other_corrections=parsed.other_corrections,
        )


def _enforceable(rules: Sequence[DictionaryRule]) -> list[DictionaryRule]:
    """再適用しても結果が変わらないルールだけを返す。

    置換後の語が置換前の語を含むルール（例: 「AI」→「AI技術」）は、
    適用済みテキストに再度一致してしまうため除外する。
    """

    return [rule for rule in rules if rule.incorrect not in rule.correct]


__all__ = ["DictionaryCorrector"]
