from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.lib.dictionary import CorrectionResult, DictionaryRule, TextDiffPair
from src.lib.dictionary.learner import LearnChange


class CorrectRequestPayload(BaseModel):
    text: str = Field(..., description="校正対象の文字起こしテキスト")


class CorrectResponsePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    corrected_text: str = Field(..., alias="correctedText", description="校正後のテキスト")
    applied_rules: str = Field(..., alias="appliedRules", description="適用したルール（出所ごとに見出し付き）")
    other_corrections: str = Field(..., alias="otherCorrections", description="その他の修正の要約")

    @classmethod
    def from_result(cls, result: CorrectionResult) -> "CorrectResponsePayload":
        return cls(
            corrected_text=result.corrected_text,
            applied_rules=result.applied_rules_text(),
            other_corrections=result.other_corrections,
        )


class DictionaryEntryPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    incorrect: str = Field(..., min_length=1, description="変換前のテキスト")
    correct: str = Field(..., min_length=1, description="変換後のテキスト")
    category: Optional[str] = Field(None, description="プロンプト上の分類")
    created_at: Optional[datetime] = Field(None, alias="createdAt", description="登録日時")

    @classmethod
    def from_rule(cls, rule: DictionaryRule) -> "DictionaryEntryPayload":
        return cls(
            incorrect=rule.incorrect,
            correct=rule.correct,
            category=rule.category,
            created_at=rule.created_at,
        )

    def to_rule(self) -> DictionaryRule:
        return DictionaryRule(incorrect=self.incorrect, correct=self.correct, category=self.category)


class LearnChangePayload(BaseModel):
    """``incorrect/correct`` はそのままルールとして、``original/edited`` は差分抽出して学習する。"""

    incorrect: Optional[str] = None
    correct: Optional[str] = None
    original: Optional[str] = None
    edited: Optional[str] = None
    category: Optional[str] = None

    @model_validator(mode="after")
    def validate_shape(self) -> "LearnChangePayload":
        if self.incorrect and self.correct:
            return self
        if self.original and self.edited:
            return self
        raise ValueError("incorrect/correct または original/edited のいずれかの組を指定してください")

    def to_change(self) -> LearnChange:
        if self.incorrect and self.correct:
            return DictionaryRule(incorrect=self.incorrect, correct=self.correct, category=self.category)
        assert self.original is not None and self.edited is not None  # validate_shape で保証
        return TextDiffPair(before=self.original, after=self.edited, category=self.category)


class LearnRequestPayload(BaseModel):
    changes: list[LearnChangePayload] = Field(..., min_length=1, description="手修正の一覧")

    def to_changes(self) -> list[LearnChange]:
        return [item.to_change() for item in self.changes]


class LearnResponsePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    updated_entries: int = Field(..., ge=0, alias="updatedEntries")
    updates: list[DictionaryEntryPayload] = Field(default_factory=list)


class AddEntryResponsePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = "辞書を更新しました"
    added_entry: DictionaryEntryPayload = Field(..., alias="addedEntry")


__all__ = [
    "CorrectRequestPayload",
    "CorrectResponsePayload",
    "DictionaryEntryPayload",
    "LearnChangePayload",
    "LearnRequestPayload",
    "LearnResponsePayload",
    "AddEntryResponsePayload",
]
