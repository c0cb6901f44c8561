from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Iterable, Sequence

from .models import DictionaryRule, RuleApplication

logger = logging.getLogger(__name__)

# 英数字で始まる/終わるルールは、隣接文字も英数字なら語の一部とみなして置換しない。
# 日本語には語間の空白がないため、かな・漢字・句読点・空白との隣接は境界として扱う。
_WORD_CHARS = "0-9A-Za-z０-９Ａ-Ｚａ-ｚ"
_WORD_CHAR_RE = re.compile(f"[{_WORD_CHARS}]")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def describe_rule(rule: DictionaryRule, count: int) -> str:
    unit = "occurrence" if count == 1 else "occurrences"
    return f'"{rule.incorrect}" → "{rule.correct}" ({count} {unit})'


def build_rule_pattern(incorrect: str) -> re.Pattern[str]:
    """境界を考慮したリテラル一致パターンを組み立てる。境界文字は消費しない。"""

    prefix = f"(?<![{_WORD_CHARS}])" if _WORD_CHAR_RE.match(incorrect[0]) else ""
    suffix = f"(?![{_WORD_CHARS}])" if _WORD_CHAR_RE.match(incorrect[-1]) else ""
    return re.compile(f"{prefix}{re.escape(incorrect)}{suffix}")


def _sort_key(rule: DictionaryRule) -> datetime:
    created = rule.created_at
    if created is None:
        return _EPOCH
    if created.tzinfo is None:
        return created.replace(tzinfo=timezone.utc)
    return created


def resolve_rules(rules: Iterable[DictionaryRule]) -> list[DictionaryRule]:
    """適用順に並べたルール列を返す。

    不正な行は除外し、同じ incorrect を持つルールは created_at が最新のものを残す。
    結果は incorrect の長い順（最長一致優先）。
    """

    latest: dict[str, DictionaryRule] = {}
    for rule in rules:
        if not rule.incorrect or not rule.correct or rule.incorrect == rule.correct:
            logger.debug("skip_malformed_rule: %r", rule)
            continue
        current = latest.get(rule.incorrect)
        if current is None or _sort_key(rule) > _sort_key(current):
            latest[rule.incorrect] = rule

    return sorted(latest.values(), key=lambda item: len(item.incorrect), reverse=True)


def apply_rules(text: str, rules: Sequence[DictionaryRule]) -> RuleApplication:
    """辞書ルールを機械的に適用する。"""

    modified = text or ""
    descriptions: list[str] = []
    counts: list[tuple[DictionaryRule, int]] = []

    for rule in resolve_rules(rules):
        pattern = build_rule_pattern(rule.incorrect)
        replacement = rule.correct
        modified, count = pattern.subn(lambda _match: replacement, modified)
        if count:
            descriptions.append(describe_rule(rule, count))
            counts.append((rule, count))

    if counts:
        logger.debug("mechanical_rules_applied: rules=%d", len(counts))

    return RuleApplication(text=modified, descriptions=tuple(descriptions), counts=tuple(counts))


__all__ = ["apply_rules", "build_rule_pattern", "describe_rule", "resolve_rules"]
