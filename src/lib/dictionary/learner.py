from __future__ import annotations

import logging
from typing import Sequence, Union

from src.config.settings import CorrectorSettings

from .exceptions import ConflictError, DictionaryServiceError, StorageError, ValidationError
from .models import DictionaryRule, LearnResult, TextDiffPair
from .similarity import extract_rule_candidates
from .store import BaseDictionaryStore

logger = logging.getLogger(__name__)

LearnChange = Union[TextDiffPair, DictionaryRule]


class DictionaryLearner:
    """手修正の差分から新しい辞書ルールを学習し、ストアへ追加する。

    ``TextDiffPair`` はトークン単位の類似度照合で候補を抽出し、
    ``DictionaryRule`` はそのまま候補として扱う。既存と同一の組は
    ``settings.reject_duplicates`` が偽ならスキップ、真なら CONFLICT とする。
    """

    def __init__(self, store: BaseDictionaryStore, *, settings: CorrectorSettings | None = None) -> None:
        self.settings = settings or CorrectorSettings()
        self.store = store

    def learn(self, changes: Sequence[LearnChange]) -> LearnResult:
        if not changes:
            raise ValidationError("学習対象の変更がありません")

        candidates = self._dedupe(self._collect_candidates(changes))
        if not candidates:
            logger.info("dictionary_learn: no candidates from %d changes", len(changes))
            return LearnResult()

        return self._persist(candidates, reject_duplicates=self.settings.reject_duplicates)

    def add_rule(self, rule: DictionaryRule) -> DictionaryRule:
        """手動で 1 件登録する。同一ルールが既にあれば ConflictError。"""

        normalized = self._validate_rule(rule)
        result = self._persist([normalized], reject_duplicates=True)
        if not result.saved_rules:
            # 存在確認と書き込みの間に別リクエストが同じルールを登録した
            raise _conflict(normalized)
        return result.saved_rules[0]

    def _collect_candidates(self, changes: Sequence[LearnChange]) -> list[DictionaryRule]:
        collected: list[DictionaryRule] = []
        for index, change in enumerate(changes):
            if isinstance(change, DictionaryRule):
                rule = self._validate_rule(change, index=index)
                collected.append(rule if rule.category else rule.with_category(self.settings.auto_category))
                continue
            if not isinstance(change, TextDiffPair):
                raise ValidationError(f"changes[{index}] の形式が不正です")
            if not change.before or not change.after:
                raise ValidationError(f"changes[{index}] に修正前または修正後のテキストがありません")

            category = (change.category or "").strip() or self.settings.auto_category
            for candidate in extract_rule_candidates(
                change.before,
                change.after,
                window=self.settings.similarity_window,
            ):
                collected.append(candidate.with_category(category))
        return collected

    @staticmethod
    def _validate_rule(rule: DictionaryRule, *, index: int | None = None) -> DictionaryRule:
        where = "" if index is None else f"changes[{index}] の"
        if not rule.incorrect.strip() or not rule.correct.strip():
            raise ValidationError(f"{where}変換前のテキストと変換後のテキストが必要です")
        normalized = rule.normalized()
        if not normalized.is_valid():
            raise ValidationError(f"{where}変換前と変換後が同じです")
        return normalized

    @staticmethod
    def _dedupe(candidates: Sequence[DictionaryRule]) -> list[DictionaryRule]:
        unique: dict[tuple[str, str], DictionaryRule] = {}
        for candidate in candidates:
            unique.setdefault(candidate.key, candidate)
        return list(unique.values())

    def _persist(self, candidates: Sequence[DictionaryRule], *, reject_duplicates: bool) -> LearnResult:
        novel: list[DictionaryRule] = []
        skipped: list[DictionaryRule] = []
        try:
            for candidate in candidates:
                existing = self.store.find_by_incorrect(candidate.incorrect)
                if any(item.correct == candidate.correct for item in existing):
                    if reject_duplicates:
                        raise _conflict(candidate)
                    logger.debug("dictionary_learn_skip_known: %s -> %s", candidate.incorrect, candidate.correct)
                    skipped.append(candidate)
                    continue
                novel.append(candidate)

            saved = self.store.insert_many(novel) if novel else []
        except DictionaryServiceError:
            raise
        except Exception as exc:  # noqa: BLE001 - ストア実装の想定外例外も STORAGE_ERROR に揃える
            raise StorageError("辞書の更新に失敗しました", details={"reason": str(exc)}) from exc

        # ON CONFLICT で落ちた分は並行リクエストが先に登録したもの
        saved_keys = {rule.key for rule in saved}
        skipped.extend(rule for rule in novel if rule.key not in saved_keys)

        logger.info("dictionary_learned: saved=%d skipped=%d", len(saved), len(skipped))
        return LearnResult(saved_rules=tuple(saved), skipped=tuple(skipped))


def _conflict(rule: DictionaryRule) -> ConflictError:
    return ConflictError(
        f"同じ変換ルールが既に存在します: 「{rule.incorrect}」→「{rule.correct}」",
        details={"incorrect": rule.incorrect, "correct": rule.correct},
    )


__all__ = ["DictionaryLearner", "LearnChange"]
