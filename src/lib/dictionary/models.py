from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Tuple

MECHANICAL_LABEL = "辞書による置換"
LLM_LABEL = "AIが適用したルール"


@dataclass(frozen=True)
class DictionaryRule:
    """辞書の 1 エントリ。incorrect を correct へ置き換える。"""

    incorrect: str
    correct: str
    category: str | None = None
    created_at: datetime | None = None

    @property
    def key(self) -> tuple[str, str]:
        """重複判定に使う (incorrect, correct) の組。前後の空白は無視する。"""

        return (self.incorrect.strip(), self.correct.strip())

    def is_valid(self) -> bool:
        incorrect, correct = self.key
        return bool(incorrect) and bool(correct) and incorrect != correct

    def normalized(self) -> "DictionaryRule":
        incorrect, correct = self.key
        category = (self.category or "").strip() or None
        return DictionaryRule(
            incorrect=incorrect,
            correct=correct,
            category=category,
            created_at=self.created_at,
        )

    def with_category(self, category: str) -> "DictionaryRule":
        return DictionaryRule(
            incorrect=self.incorrect,
            correct=self.correct,
            category=category,
            created_at=self.created_at,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "incorrect": self.incorrect,
            "correct": self.correct,
            "category": self.category,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class TextDiffPair:
    """手修正前後のテキスト。学習の入力単位。"""

    before: str
    after: str
    category: str | None = None


@dataclass(frozen=True)
class RuleApplication:
    """機械的置換の結果。"""

    text: str
    descriptions: Tuple[str, ...] = field(default_factory=tuple)
    counts: Tuple[Tuple[DictionaryRule, int], ...] = field(default_factory=tuple)

    @property
    def total_replacements(self) -> int:
        return sum(count for _, count in self.counts)


@dataclass(frozen=True)
class CorrectionResult:
    corrected_text: str
    mechanical_rules: Tuple[str, ...] = field(default_factory=tuple)
    llm_rules: Tuple[str, ...] = field(default_factory=tuple)
    other_corrections: str = ""

    @property
    def applied_rules(self) -> Tuple[str, ...]:
        """機械的置換と LLM 申告のルールを、出所ラベル付きで連結する。"""

        labelled = [f"[{MECHANICAL_LABEL}] {item}" for item in self.mechanical_rules]
        labelled.extend(f"[{LLM_LABEL}] {item}" for item in self.llm_rules)
        return tuple(labelled)

    def applied_rules_text(self) -> str:
        sections: list[str] = []
        if self.mechanical_rules:
            sections.append(f"【{MECHANICAL_LABEL}】")
            sections.extend(f"- {item}" for item in self.mechanical_rules)
        if self.llm_rules:
            sections.append(f"【{LLM_LABEL}】")
            sections.extend(f"- {item}" for item in self.llm_rules)
        return "\n".join(sections)


@dataclass(frozen=True)
class LearnResult:
    saved_rules: Tuple[DictionaryRule, ...] = field(default_factory=tuple)
    skipped: Tuple[DictionaryRule, ...] = field(default_factory=tuple)

    @property
    def saved_count(self) -> int:
        return len(self.saved_rules)


__all__ = [
    "DictionaryRule",
    "TextDiffPair",
    "RuleApplication",
    "CorrectionResult",
    "LearnResult",
    "MECHANICAL_LABEL",
    "LLM_LABEL",
]
