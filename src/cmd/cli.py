from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Sequence

# 直接スクリプトとして実行された場合でも src パッケージを解決できるようにする
if __package__ in {None, ""}:  # python src/cmd/cli.py 等の実行形態に対応
    project_root = Path(__file__).resolve().parents[2]
    if str(project_root) not in sys.path:
        sys.path.append(str(project_root))

from src.config.logging import setup_logging
from src.config.settings import CorrectorSettings
from src.lib.dictionary import (
    BaseDictionaryStore,
    DictionaryCorrector,
    DictionaryLearner,
    DictionaryRule,
    DictionaryServiceError,
    InMemoryDictionaryStore,
    SqlDictionaryStore,
    TextDiffPair,
)

logger = logging.getLogger(__name__)

CommandResult = dict[str, Any] | list[dict[str, Any]]
CommandHandler = Callable[[argparse.Namespace], CommandResult]


@dataclass(frozen=True)
class SubcommandSpec:
    name: str
    help: str
    configure: Callable[[argparse.ArgumentParser], None]
    handler: CommandHandler
    description: str | None = None


def _build_shared_parent_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--log-level",
        default=None,
        help="ログレベル (DEBUG/INFO/WARNING/ERROR)。未指定時は DICTIONARY_LOG_LEVEL / LOG_LEVEL",
    )
    parser.add_argument("--db-url", default=None, help="辞書 DB の接続 URL（未指定時は環境変数から解決）")
    parser.add_argument(
        "--in-memory",
        action="store_true",
        help="DB を使わずプロセス内の一時辞書で実行する",
    )
    return parser


def _configure_correct_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("text", nargs="?", default=None, help="校正対象のテキスト")
    parser.add_argument("--file", type=Path, default=None, help="校正対象テキストを読み込むファイル")
    parser.add_argument("--model", default=None, help="校正に利用するチャットモデル名")


def _configure_learn_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--before", required=True, help="手修正前のテキスト")
    parser.add_argument("--after", required=True, help="手修正後のテキスト")
    parser.add_argument("--category", default=None, help="学習したルールに付与するカテゴリ")
    parser.add_argument(
        "--reject-duplicates",
        action="store_true",
        help="既存ルールと重複した場合にエラーとする",
    )


def _configure_no_arguments(parser: argparse.ArgumentParser) -> None:
    return None


def _configure_list_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--query", default=None, help="incorrect/correct に含まれる文字列で絞り込む")
    parser.add_argument("--category", default=None, help="カテゴリで絞り込む")
    parser.add_argument("--prefix", action="store_true", help="--query を前方一致で扱う")


def _configure_add_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("incorrect", help="変換前のテキスト")
    parser.add_argument("correct", help="変換後のテキスト")
    parser.add_argument("--category", default=None, help="プロンプト上の分類")


def _configure_serve_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--host", default="127.0.0.1", help="待ち受けホスト")
    parser.add_argument("--port", type=int, default=8000, help="待ち受けポート")


def _resolve_settings(args: argparse.Namespace) -> CorrectorSettings:
    return CorrectorSettings.from_env().update(
        database_url=getattr(args, "db_url", None),
        model=getattr(args, "model", None),
        reject_duplicates=True if getattr(args, "reject_duplicates", False) else None,
    )


def _build_store(args: argparse.Namespace, settings: CorrectorSettings) -> BaseDictionaryStore:
    if getattr(args, "in_memory", False):
        return InMemoryDictionaryStore()
    return SqlDictionaryStore.from_url(settings.database_url)


def _read_correct_input(args: argparse.Namespace) -> str:
    if args.file is not None:
        return args.file.read_text(encoding="utf-8")
    if args.text is not None:
        return args.text
    if not sys.stdin.isatty():
        return sys.stdin.read()
    return ""


def _handle_correct_command(args: argparse.Namespace) -> CommandResult:
    settings = _resolve_settings(args)
    corrector = DictionaryCorrector(_build_store(args, settings), settings=settings)
    result = corrector.correct(_read_correct_input(args))
    return {
        "correctedText": result.corrected_text,
        "appliedRules": list(result.applied_rules),
        "otherCorrections": result.other_corrections,
    }


def _handle_learn_command(args: argparse.Namespace) -> CommandResult:
    settings = _resolve_settings(args)
    learner = DictionaryLearner(_build_store(args, settings), settings=settings)
    result = learner.learn([TextDiffPair(before=args.before, after=args.after, category=args.category)])
    return {
        "success": True,
        "updatedEntries": result.saved_count,
        "updates": [rule.as_dict() for rule in result.saved_rules],
    }


def _handle_list_command(args: argparse.Namespace) -> CommandResult:
    settings = _resolve_settings(args)
    store = _build_store(args, settings)
    if args.query or args.category:
        rules = store.search(args.query, category=args.category, prefix=args.prefix)
    else:
        rules = store.list_all()
    return [rule.as_dict() for rule in rules]


def _handle_add_command(args: argparse.Namespace) -> CommandResult:
    settings = _resolve_settings(args)
    learner = DictionaryLearner(_build_store(args, settings), settings=settings)
    saved = learner.add_rule(DictionaryRule(incorrect=args.incorrect, correct=args.correct, category=args.category))
    return {"message": "辞書を更新しました", "addedEntry": saved.as_dict()}


def _handle_init_db_command(args: argparse.Namespace) -> CommandResult:
    settings = _resolve_settings(args)
    store = SqlDictionaryStore.from_url(settings.database_url)
    store.create_tables()
    return {"status": "ok"}


def _handle_serve_command(args: argparse.Namespace) -> CommandResult:
    import uvicorn

    level_name = logging.getLevelName(logging.getLogger().level).lower()
    uvicorn.run("src.cmd.http:app", host=args.host, port=args.port, log_level=level_name)
    return {"status": "stopped"}


_SUBCOMMAND_SPECS: tuple[SubcommandSpec, ...] = (
    SubcommandSpec(
        name="correct",
        help="辞書と LLM で文字起こしテキストを校正する",
        configure=_configure_correct_parser,
        handler=_handle_correct_command,
    ),
    SubcommandSpec(
        name="learn",
        help="手修正前後のテキストから辞書ルールを学習する",
        configure=_configure_learn_parser,
        handler=_handle_learn_command,
    ),
    SubcommandSpec(
        name="dictionary-list",
        help="登録済みの辞書ルールを新しい順に表示する",
        configure=_configure_list_parser,
        handler=_handle_list_command,
    ),
    SubcommandSpec(
        name="dictionary-add",
        help="辞書ルールを 1 件手動で登録する",
        configure=_configure_add_parser,
        handler=_handle_add_command,
    ),
    SubcommandSpec(
        name="init-db",
        help="辞書テーブルを作成する",
        configure=_configure_no_arguments,
        handler=_handle_init_db_command,
    ),
    SubcommandSpec(
        name="serve",
        help="HTTP サーバーを起動する",
        configure=_configure_serve_parser,
        handler=_handle_serve_command,
    ),
)

_SUBCOMMAND_MAP: dict[str, SubcommandSpec] = {spec.name: spec for spec in _SUBCOMMAND_SPECS}


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """CLI引数を定義して解析する。"""

    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="辞書ベースの文字起こし校正CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)
    shared_parent = _build_shared_parent_parser()

    for spec in _SUBCOMMAND_SPECS:
        subparser = subparsers.add_parser(
            spec.name,
            parents=[shared_parent],
            help=spec.help,
            description=spec.description or spec.help,
        )
        spec.configure(subparser)

    return parser.parse_args(argv)


def run_cli(args: argparse.Namespace) -> CommandResult:
    """コマンド引数を受け取り、対応する処理を実行する。"""

    setup_logging(args.log_level)

    spec = _SUBCOMMAND_MAP.get(args.command)
    if spec is None:
        raise RuntimeError(f"未対応のコマンドです: {args.command}")
    return spec.handler(args)


def main(argv: Sequence[str] | None = None) -> None:
    """エントリーポイント。実行結果を JSON で標準出力へ流す。"""

    args = parse_args(argv)

    try:
        result = run_cli(args)
    except DictionaryServiceError as exc:
        print(json.dumps(exc.to_payload(), ensure_ascii=False, indent=2), file=sys.stderr)
        raise SystemExit(1) from exc

    print(json.dumps(result, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
