"""LLM 校正用のプロンプト生成と応答解析。"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

from .models import DictionaryRule

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY_LABEL = "一般"
NO_RULES_PLACEHOLDER = "なし"
NO_OTHER_CORRECTIONS_PLACEHOLDER = "特になし"

SECTION_CORRECTED = "修正後のテキスト"
SECTION_RULES = "適用した辞書ルール"
SECTION_OTHER = "その他の修正"

REPLY_FORMAT_VERSION = "1"

_SECTION_LABELS = r"修正後の?テキスト|適用した辞書ルール|その他の修正"
# 見出しは【】付きか「1.」形式の番号付きのみ。本文の行頭にある同じ語は見出しにしない
_HEADER_RE = re.compile(
    r"^[ \t]*(?:#+[ \t]*)?(?:\*\*)?"
    rf"(?:【[ \t]*(?P<bracketed>{_SECTION_LABELS})[ \t]*】"
    rf"|[123][.．)）:：][ \t]*(?P<numbered>{_SECTION_LABELS}))"
    r"(?:\*\*)?[ \t]*[:：]?[ \t]*",
    re.MULTILINE,
)
_LIST_MARKER_RE = re.compile(r"^(?:[-・*•]|\d+[.．)）])\s*")
_EMPTY_MARKERS = {"", NO_RULES_PLACEHOLDER, NO_OTHER_CORRECTIONS_PLACEHOLDER, "-", "なし。", "特になし。"}

SYSTEM_PROMPT = (
    "あなたは音声文字起こしの結果を校正する日本語の専門家です。"
    "与えられたテキストを日本語として校正し、より自然な表現に修正してください。"
    "句読点の位置、助詞の使い方、敬語の統一性などに注意を払ってください。"
    "辞書に記載された変換ルールは必ず適用してください。"
)

_PRIORITY_LINES = (
    "校正の優先順位:",
    "1. 辞書の変換ルール（必須。他のどの修正よりも優先）",
    "2. 話し言葉を自然な文章にする表現の調整",
    "3. 句読点・改行などの体裁の統一",
)


@dataclass(frozen=True)
class ParsedReply:
    corrected_text: str
    applied_rules: Tuple[str, ...] = field(default_factory=tuple)
    other_corrections: str = NO_OTHER_CORRECTIONS_PLACEHOLDER
    source: str = "fallback"


def format_rules(rules: Sequence[DictionaryRule]) -> str:
    """辞書ルールをカテゴリ別の指示文へ整形する。"""

    groups: Dict[str, List[DictionaryRule]] = {}
    for rule in rules:
        if not rule.incorrect or not rule.correct:
            continue
        label = (rule.category or "").strip() or DEFAULT_CATEGORY_LABEL
        groups.setdefault(label, []).append(rule)

    if not groups:
        return ""

    lines = ["以下の辞書に従って変換してください："]
    for label, items in groups.items():
        lines.append("")
        lines.append(f"■ {label}")
        for rule in items:
            lines.append(
                f"- 「{rule.incorrect}」は必ず「{rule.correct}」に変換すること"
                "（完全に一致する語句のみ。別の語の一部には適用しない）"
            )
    return "\n".join(lines)


def build_correction_messages(
    raw_text: str,
    mechanical_text: str,
    rules: Sequence[DictionaryRule],
) -> list[dict[str, str]]:
    """チャット補完 API へ渡すメッセージ列を組み立てる。"""

    parts: list[str] = []
    rule_block = format_rules(rules)
    if rule_block:
        parts.append(rule_block)
    parts.append("\n".join(_PRIORITY_LINES))
    parts.append(
        "辞書ルールを機械的に適用済みのテキストを校正してください。"
        "元のテキストも併記するので、辞書ルールの適用漏れがないか確認してください。"
    )
    parts.append(f"【辞書適用済みテキスト】\n{mechanical_text}")
    parts.append(f"【元のテキスト】\n{raw_text}")
    parts.append(
        f"出力形式 (version {REPLY_FORMAT_VERSION}): 次のキーを持つ JSON オブジェクトのみを返してください。\n"
        '{"corrected_text": "校正後の全文", '
        '"applied_rules": ["追加で適用・確認した辞書ルール（例: 「A」→「B」）"], '
        '"other_corrections": "その他に行った修正の要約"}\n'
        f"JSON を返せない場合は【{SECTION_CORRECTED}】【{SECTION_RULES}】【{SECTION_OTHER}】"
        "の見出しで 3 つのセクションに分けて出力してください。"
    )

    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": "\n\n".join(parts)},
    ]


def parse_correction_reply(reply: str, *, fallback_text: str) -> ParsedReply:
    """LLM の応答を 3 つのフィールドへ分解する。解析できない部分は既定値で補う。"""

    text = (reply or "").strip()
    if not text:
        logger.warning("LLM 応答が空でした。辞書適用済みテキストを返します。")
        return ParsedReply(corrected_text=fallback_text)

    parsed = _parse_json_reply(text, fallback_text=fallback_text)
    if parsed is not None:
        return parsed

    parsed = _parse_section_reply(text, fallback_text=fallback_text)
    if parsed is not None:
        return parsed

    logger.warning("LLM 応答の形式を解釈できませんでした。辞書適用済みテキストを返します。")
    return ParsedReply(corrected_text=fallback_text)


def _parse_json_reply(text: str, *, fallback_text: str) -> ParsedReply | None:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    try:
        payload = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None

    corrected = payload.get("corrected_text")
    if not isinstance(corrected, str) or not corrected.strip():
        logger.warning("LLM 応答に corrected_text がありません。辞書適用済みテキストを使います。")
        corrected = fallback_text

    return ParsedReply(
        corrected_text=corrected.strip(),
        applied_rules=_normalize_rule_items(payload.get("applied_rules")),
        other_corrections=_normalize_other(payload.get("other_corrections")),
        source="json",
    )


def _parse_section_reply(text: str, *, fallback_text: str) -> ParsedReply | None:
    headers = list(_HEADER_RE.finditer(text))
    if not headers:
        return None

    sections: Dict[str, str] = {}
    for index, match in enumerate(headers):
        end = headers[index + 1].start() if index + 1 < len(headers) else len(text)
        label = _canonical_label(match.group("bracketed") or match.group("numbered"))
        sections.setdefault(label, text[match.end() : end].strip())

    corrected = sections.get(SECTION_CORRECTED, "").strip()
    if not corrected:
        logger.warning("「%s」セクションが見つかりません。辞書適用済みテキストを使います。", SECTION_CORRECTED)
        corrected = fallback_text

    return ParsedReply(
        corrected_text=corrected,
        applied_rules=_normalize_rule_items(sections.get(SECTION_RULES)),
        other_corrections=_normalize_other(sections.get(SECTION_OTHER)),
        source="sections",
    )


def _canonical_label(label: str) -> str:
    if label.startswith("修正後"):
        return SECTION_CORRECTED
    return label


def _normalize_rule_items(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        raw_items = value.splitlines()
    elif isinstance(value, (list, tuple)):
        raw_items = [str(item) for item in value if item is not None]
    else:
        return ()

    items: list[str] = []
    for raw in raw_items:
        cleaned = _LIST_MARKER_RE.sub("", raw.strip()).strip()
        if cleaned in _EMPTY_MARKERS:
            continue
        items.append(cleaned)
    return tuple(items)


def _normalize_other(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        value = "\n".join(str(item) for item in value if item)
    if not isinstance(value, str) or not value.strip():
        return NO_OTHER_CORRECTIONS_PLACEHOLDER
    return value.strip()


__all__ = [
    "ParsedReply",
    "SYSTEM_PROMPT",
    "format_rules",
    "build_correction_messages",
    "parse_correction_reply",
    "DEFAULT_CATEGORY_LABEL",
    "NO_RULES_PLACEHOLDER",
    "NO_OTHER_CORRECTIONS_PLACEHOLDER",
    "SECTION_CORRECTED",
    "SECTION_RULES",
    "SECTION_OTHER",
]
