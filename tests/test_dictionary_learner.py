from __future__ import annotations

import json
import unittest
from unittest import mock

from src.config.settings import CorrectorSettings
from src.lib.dictionary.corrector import DictionaryCorrector
from src.lib.dictionary.exceptions import ConflictError, StorageError, ValidationError
from src.lib.dictionary.learner import DictionaryLearner
from src.lib.dictionary.models import DictionaryRule, TextDiffPair
from src.lib.dictionary.store import InMemoryDictionaryStore, SqlDictionaryStore


class TestDictionaryLearner(unittest.TestCase):
    def test_duplicate_within_batch_is_saved_once(self) -> None:
        store = InMemoryDictionaryStore()
        learner = DictionaryLearner(store)

        result = learner.learn(
            [DictionaryRule(incorrect="あ", correct="い"), DictionaryRule(incorrect="あ", correct="い")]
        )

        self.assertEqual(result.saved_count, 1)
        self.assertEqual(len(store.list_all()), 1)

    def test_diff_pair_is_learned_with_auto_category(self) -> None:
        store = InMemoryDictionaryStore()
        result = DictionaryLearner(store).learn([TextDiffPair(before="こんにちは", after="こんばんは")])

        self.assertEqual([(r.incorrect, r.correct) for r in result.saved_rules], [("こんにちは", "こんばんは")])
        self.assertEqual(result.saved_rules[0].category, "auto-learned")

    def test_explicit_category_is_kept(self) -> None:
        store = InMemoryDictionaryStore()
        result = DictionaryLearner(store).learn(
            [
                TextDiffPair(before="議事禄です", after="議事録です", category="用語"),
                DictionaryRule(incorrect="かいぎ", correct="会議", category="手動"),
            ]
        )
        categories = {rule.incorrect: rule.category for rule in result.saved_rules}
        self.assertEqual(categories, {"議事禄です": "用語", "かいぎ": "手動"})

    def test_known_rules_are_skipped(self) -> None:
        store = InMemoryDictionaryStore([DictionaryRule(incorrect="こんにちは", correct="こんばんは")])
        result = DictionaryLearner(store).learn([TextDiffPair(before="こんにちは", after="こんばんは")])

        self.assertEqual(result.saved_count, 0)
        self.assertEqual(len(result.skipped), 1)
        self.assertEqual(len(store.list_all()), 1)

    def test_same_incorrect_with_new_correct_coexists(self) -> None:
        store = InMemoryDictionaryStore([DictionaryRule(incorrect="かいぎ", correct="会議")])
        result = DictionaryLearner(store).learn([DictionaryRule(incorrect="かいぎ", correct="懐疑")])
        self.assertEqual(result.saved_count, 1)
        self.assertEqual(len(store.find_by_incorrect("かいぎ")), 2)

    def test_strict_mode_rejects_known_rule(self) -> None:
        store = InMemoryDictionaryStore([DictionaryRule(incorrect="こんにちは", correct="こんばんは")])
        learner = DictionaryLearner(store, settings=CorrectorSettings(reject_duplicates=True))

        with self.assertRaises(ConflictError) as ctx:
            learner.learn(
                [
                    DictionaryRule(incorrect="かいぎ", correct="会議"),
                    TextDiffPair(before="こんにちは", after="こんばんは"),
                ]
            )

        self.assertEqual(ctx.exception.details, {"incorrect": "こんにちは", "correct": "こんばんは"})
        self.assertEqual(len(store.list_all()), 1)

    def test_empty_or_malformed_input_is_rejected(self) -> None:
        learner = DictionaryLearner(InMemoryDictionaryStore())
        with self.assertRaises(ValidationError):
            learner.learn([])
        with self.assertRaises(ValidationError):
            learner.learn([TextDiffPair(before="", after="修正")])
        with self.assertRaises(ValidationError):
            learner.learn([DictionaryRule(incorrect="同じ", correct=" 同じ ")])

    def test_no_candidates_returns_empty_result(self) -> None:
        store = mock.Mock()
        result = DictionaryLearner(store).learn([TextDiffPair(before="同じ文", after="同じ文")])
        self.assertEqual(result.saved_count, 0)
        store.insert_many.assert_not_called()

    def test_store_failure_becomes_storage_error(self) -> None:
        store = mock.Mock()
        store.find_by_incorrect.return_value = []
        store.insert_many.side_effect = OSError("disk")
        with self.assertRaises(StorageError):
            DictionaryLearner(store).learn([DictionaryRule(incorrect="かいぎ", correct="会議")])

    def test_rules_lost_to_concurrent_insert_are_reported_as_skipped(self) -> None:
        store = mock.Mock()
        store.find_by_incorrect.return_value = []
        store.insert_many.return_value = []
        result = DictionaryLearner(store).learn([DictionaryRule(incorrect="かいぎ", correct="会議")])
        self.assertEqual(result.saved_count, 0)
        self.assertEqual([r.key for r in result.skipped], [("かいぎ", "会議")])


class TestAddRule(unittest.TestCase):
    def test_add_rule_keeps_manual_category(self) -> None:
        store = InMemoryDictionaryStore()
        saved = DictionaryLearner(store).add_rule(DictionaryRule(incorrect=" かいぎ ", correct="会議"))
        self.assertEqual((saved.incorrect, saved.correct, saved.category), ("かいぎ", "会議", None))

    def test_add_rule_rejects_duplicate(self) -> None:
        store = InMemoryDictionaryStore([DictionaryRule(incorrect="かいぎ", correct="会議")])
        with self.assertRaises(ConflictError):
            DictionaryLearner(store).add_rule(DictionaryRule(incorrect="かいぎ", correct="会議"))


class TestLearningRoundTrip(unittest.TestCase):
    def test_learned_rule_is_applied_on_next_correction(self) -> None:
        store = SqlDictionaryStore.from_url("sqlite://", create_tables=True)
        DictionaryLearner(store).learn([TextDiffPair(before="こんにちは", after="こんばんは")])

        llm = mock.Mock()

        def echo(messages):
            user = messages[-1]["content"]
            mechanical = user.split("【辞書適用済みテキスト】\n", 1)[1].split("\n\n【元のテキスト】", 1)[0]
            return json.dumps({"corrected_text": mechanical}, ensure_ascii=False)

        llm.complete.side_effect = echo
        result = DictionaryCorrector(store, llm).correct("こんにちは、皆さん。")

        self.assertIn("こんばんは", result.corrected_text)
        self.assertNotIn("こんにちは", result.corrected_text)


if __name__ == "__main__":
    unittest.main()
