from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from sqlalchemy.exc import OperationalError

from src.lib.dictionary.exceptions import StorageError
from src.lib.dictionary.models import DictionaryRule
from src.lib.dictionary.store import InMemoryDictionaryStore, SqlDictionaryStore


class _StoreContract:
    """両ストア実装で共有する振る舞いの検証。"""

    def make_store(self):  # pragma: no cover - サブクラスで実装
        raise NotImplementedError

    def test_insert_and_find_by_incorrect(self) -> None:
        store = self.make_store()
        inserted = store.insert_many(
            [
                DictionaryRule(incorrect="かいぎ", correct="会議", category="auto-learned"),
                DictionaryRule(incorrect="ぎじろく", correct="議事録"),
            ]
        )
        self.assertEqual([(r.incorrect, r.correct) for r in inserted], [("かいぎ", "会議"), ("ぎじろく", "議事録")])
        self.assertIsNotNone(inserted[0].created_at)

        found = store.find_by_incorrect("かいぎ")
        self.assertEqual([(r.correct, r.category) for r in found], [("会議", "auto-learned")])
        self.assertEqual(store.find_by_incorrect("カイギ"), [])

    def test_duplicate_pairs_are_not_inserted_twice(self) -> None:
        store = self.make_store()
        store.insert_many([DictionaryRule(incorrect="あ", correct="い")])
        second = store.insert_many(
            [DictionaryRule(incorrect="あ", correct="い"), DictionaryRule(incorrect="あ", correct="う")]
        )
        self.assertEqual([(r.incorrect, r.correct) for r in second], [("あ", "う")])
        self.assertEqual(len(store.list_all()), 2)

    def test_list_all_orders_by_recency(self) -> None:
        store = self.make_store()
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        store.insert_many(
            [
                DictionaryRule(incorrect="古い", correct="旧", created_at=base),
                DictionaryRule(incorrect="新しい", correct="新", created_at=base + timedelta(days=2)),
                DictionaryRule(incorrect="中間", correct="中", created_at=base + timedelta(days=1)),
            ]
        )
        self.assertEqual([r.incorrect for r in store.list_all()], ["新しい", "中間", "古い"])

    def test_search_by_substring_prefix_and_category(self) -> None:
        store = self.make_store()
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        store.insert_many(
            [
                DictionaryRule(incorrect="ぎじろく", correct="議事録", category="用語", created_at=base),
                DictionaryRule(incorrect="議事禄", correct="議事録", created_at=base + timedelta(days=1)),
                DictionaryRule(incorrect="OpenAi", correct="OpenAI", category="社名", created_at=base + timedelta(days=2)),
                DictionaryRule(incorrect="50%", correct="半分", category="用語", created_at=base + timedelta(days=3)),
            ]
        )

        self.assertEqual([r.incorrect for r in store.search("議事")], ["議事禄", "ぎじろく"])
        self.assertEqual([r.incorrect for r in store.search("事録", prefix=True)], [])
        self.assertEqual([r.incorrect for r in store.search("議事", prefix=True)], ["議事禄", "ぎじろく"])
        self.assertEqual([r.incorrect for r in store.search("議事", category="用語")], ["ぎじろく"])
        self.assertEqual([r.incorrect for r in store.search(category="用語")], ["50%", "ぎじろく"])
        self.assertEqual([r.incorrect for r in store.search("openai")], ["OpenAi"])
        # ワイルドカード文字はリテラルとして扱う
        self.assertEqual([r.incorrect for r in store.search("%")], ["50%"])
        self.assertEqual(len(store.search()), 4)

    def test_insert_many_with_empty_input(self) -> None:
        store = self.make_store()
        self.assertEqual(store.insert_many([]), [])
        self.assertEqual(store.list_all(), [])


class TestSqlDictionaryStore(_StoreContract, unittest.TestCase):
    def make_store(self) -> SqlDictionaryStore:
        return SqlDictionaryStore.from_url("sqlite://", create_tables=True)

    def test_database_errors_are_wrapped(self) -> None:
        store = SqlDictionaryStore.from_url("sqlite://")  # テーブル未作成
        with self.assertRaises(StorageError):
            store.list_all()
        with self.assertRaises(StorageError):
            store.insert_many([DictionaryRule(incorrect="あ", correct="い")])

    def test_failed_batch_is_rolled_back(self) -> None:
        store = self.make_store()
        original = store._insert_one
        calls = {"count": 0}

        def flaky(session, values):
            calls["count"] += 1
            if calls["count"] == 2:
                raise OperationalError("INSERT", {}, Exception("disk full"))
            return original(session, values)

        with mock.patch.object(store, "_insert_one", side_effect=flaky):
            with self.assertRaises(StorageError):
                store.insert_many(
                    [DictionaryRule(incorrect="一", correct="壱"), DictionaryRule(incorrect="二", correct="弐")]
                )
        self.assertEqual(store.list_all(), [])


class TestInMemoryDictionaryStore(_StoreContract, unittest.TestCase):
    def make_store(self) -> InMemoryDictionaryStore:
        return InMemoryDictionaryStore()

    def test_initial_rules(self) -> None:
        store = InMemoryDictionaryStore([DictionaryRule(incorrect="えーと", correct="あの")])
        self.assertEqual(len(store.find_by_incorrect("えーと")), 1)


if __name__ == "__main__":
    unittest.main()
