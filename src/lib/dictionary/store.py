from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Iterable, List, Sequence

from sqlalchemy import or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .db import build_session_factory, create_dictionary_engine, init_database, session_scope
from .exceptions import StorageError
from .models import DictionaryRule
from .tables import DictionaryEntry

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseDictionaryStore:
    """辞書ストアのアクセス契約。find_by_incorrect は大文字小文字を区別した完全一致で引く。"""

    def list_all(self) -> List[DictionaryRule]:
        """全ルールを created_at の新しい順に返す。"""

        raise NotImplementedError

    def find_by_incorrect(self, text: str) -> List[DictionaryRule]:
        raise NotImplementedError

    def search(
        self,
        query: str | None = None,
        *,
        category: str | None = None,
        prefix: bool = False,
    ) -> List[DictionaryRule]:
        """incorrect / correct の部分一致（prefix=True なら前方一致）で検索する。

        大文字小文字は区別しない。category を指定した場合は完全一致で絞り込む。
        結果は list_all と同じく新しい順。
        """

        raise NotImplementedError

    def insert_many(self, rules: Sequence[DictionaryRule]) -> List[DictionaryRule]:
        """ルールをまとめて登録し、実際に追加されたものを返す。

        既存と同じ (incorrect, correct) は追加せず、戻り値にも含めない。
        1 件でも書き込みに失敗した場合は全件ロールバックし StorageError を送出する。
        """

        raise NotImplementedError


class SqlDictionaryStore(BaseDictionaryStore):
    """SQLAlchemy 経由で ``dictionary`` テーブルを読み書きするストア。"""

    def __init__(self, engine: Engine, session_factory: sessionmaker | None = None) -> None:
        self.engine = engine
        self._session_factory = session_factory or build_session_factory(engine)

    @classmethod
    def from_url(cls, url: str, *, create_tables: bool = False) -> "SqlDictionaryStore":
        engine = create_dictionary_engine(url)
        if create_tables:
            init_database(engine)
        return cls(engine)

    def create_tables(self) -> None:
        try:
            init_database(self.engine)
        except SQLAlchemyError as exc:
            raise StorageError("辞書テーブルの作成に失敗しました", details={"reason": str(exc)}) from exc

    def list_all(self) -> List[DictionaryRule]:
        stmt = select(DictionaryEntry).order_by(DictionaryEntry.created_at.desc(), DictionaryEntry.id.desc())
        try:
            with session_scope(self._session_factory) as session:
                rows = session.execute(stmt).scalars().all()
                return [_to_rule(row) for row in rows]
        except SQLAlchemyError as exc:
            raise StorageError("辞書の取得に失敗しました", details={"reason": str(exc)}) from exc

    def find_by_incorrect(self, text: str) -> List[DictionaryRule]:
        stmt = (
            select(DictionaryEntry)
            .where(DictionaryEntry.incorrect == text)
            .order_by(DictionaryEntry.created_at.desc(), DictionaryEntry.id.desc())
        )
        try:
            with session_scope(self._session_factory) as session:
                rows = session.execute(stmt).scalars().all()
                return [_to_rule(row) for row in rows]
        except SQLAlchemyError as exc:
            raise StorageError("辞書の検索に失敗しました", details={"reason": str(exc)}) from exc

    def search(
        self,
        query: str | None = None,
        *,
        category: str | None = None,
        prefix: bool = False,
    ) -> List[DictionaryRule]:
        stmt = select(DictionaryEntry)
        if query:
            if prefix:
                stmt = stmt.where(
                    or_(
                        DictionaryEntry.incorrect.istartswith(query, autoescape=True),
                        DictionaryEntry.correct.istartswith(query, autoescape=True),
                    )
                )
            else:
                stmt = stmt.where(
                    or_(
                        DictionaryEntry.incorrect.icontains(query, autoescape=True),
                        DictionaryEntry.correct.icontains(query, autoescape=True),
                    )
                )
        if category:
            stmt = stmt.where(DictionaryEntry.category == category)
        stmt = stmt.order_by(DictionaryEntry.created_at.desc(), DictionaryEntry.id.desc())

        try:
            with session_scope(self._session_factory) as session:
                rows = session.execute(stmt).scalars().all()
                return [_to_rule(row) for row in rows]
        except SQLAlchemyError as exc:
            raise StorageError("辞書の検索に失敗しました", details={"reason": str(exc)}) from exc

    def insert_many(self, rules: Sequence[DictionaryRule]) -> List[DictionaryRule]:
        if not rules:
            return []

        now = _utcnow()
        inserted: List[DictionaryRule] = []
        try:
            with session_scope(self._session_factory) as session:
                for rule in rules:
                    values = {
                        "incorrect": rule.incorrect,
                        "correct": rule.correct,
                        "category": rule.category,
                        "created_at": rule.created_at or now,
                    }
                    saved = self._insert_one(session, values)
                    if saved is None:
                        logger.debug("dictionary_insert_conflict: %s -> %s", rule.incorrect, rule.correct)
                        continue
                    inserted.append(saved)
        except SQLAlchemyError as exc:
            raise StorageError("辞書の更新に失敗しました", details={"reason": str(exc)}) from exc

        return inserted

    def _insert_one(self, session: Session, values: dict) -> DictionaryRule | None:
        insert_factory = _UPSERT_DIALECTS.get(self.engine.dialect.name)
        if insert_factory is not None:
            stmt = (
                insert_factory(DictionaryEntry)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["incorrect", "correct"])
                .returning(
                    DictionaryEntry.incorrect,
                    DictionaryEntry.correct,
                    DictionaryEntry.category,
                    DictionaryEntry.created_at,
                )
            )
            row = session.execute(stmt).first()
            if row is None:
                return None
            return DictionaryRule(
                incorrect=row.incorrect,
                correct=row.correct,
                category=row.category,
                created_at=row.created_at,
            )

        existing = session.execute(
            select(DictionaryEntry.id).where(
                DictionaryEntry.incorrect == values["incorrect"],
                DictionaryEntry.correct == values["correct"],
            )
        ).first()
        if existing is not None:
            return None
        entry = DictionaryEntry(**values)
        session.add(entry)
        session.flush()
        return _to_rule(entry)


class InMemoryDictionaryStore(BaseDictionaryStore):
    """プロセス内で完結する辞書ストア。テストやオフラインの CLI 実行で使う。"""

    def __init__(self, rules: Iterable[DictionaryRule] | None = None) -> None:
        self._lock = threading.Lock()
        self._entries: list[tuple[int, DictionaryRule]] = []
        self._sequence = 0
        if rules:
            self.insert_many(list(rules))

    def list_all(self) -> List[DictionaryRule]:
        with self._lock:
            ordered = sorted(
                self._entries,
                key=lambda item: (_as_aware(item[1].created_at), item[0]),
                reverse=True,
            )
            return [rule for _, rule in ordered]

    def find_by_incorrect(self, text: str) -> List[DictionaryRule]:
        return [rule for rule in self.list_all() if rule.incorrect == text]

    def search(
        self,
        query: str | None = None,
        *,
        category: str | None = None,
        prefix: bool = False,
    ) -> List[DictionaryRule]:
        needle = (query or "").casefold()

        def matches(value: str) -> bool:
            folded = value.casefold()
            return folded.startswith(needle) if prefix else needle in folded

        return [
            rule
            for rule in self.list_all()
            if (not needle or matches(rule.incorrect) or matches(rule.correct))
            and (not category or rule.category == category)
        ]

    def insert_many(self, rules: Sequence[DictionaryRule]) -> List[DictionaryRule]:
        now = _utcnow()
        inserted: List[DictionaryRule] = []
        with self._lock:
            keys = {(rule.incorrect, rule.correct) for _, rule in self._entries}
            for rule in rules:
                pair = (rule.incorrect, rule.correct)
                if pair in keys:
                    continue
                stored = DictionaryRule(
                    incorrect=rule.incorrect,
                    correct=rule.correct,
                    category=rule.category,
                    created_at=rule.created_at or now,
                )
                self._sequence += 1
                self._entries.append((self._sequence, stored))
                keys.add(pair)
                inserted.append(stored)
        return inserted


def _as_aware(value: datetime | None) -> datetime:
    if value is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_rule(row: DictionaryEntry) -> DictionaryRule:
    return DictionaryRule(
        incorrect=row.incorrect,
        correct=row.correct,
        category=row.category,
        created_at=row.created_at,
    )


__all__ = ["BaseDictionaryStore", "SqlDictionaryStore", "InMemoryDictionaryStore"]
