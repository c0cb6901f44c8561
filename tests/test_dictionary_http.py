from __future__ import annotations

import json
import unittest

from fastapi.testclient import TestClient

from src.cmd.http import create_app
from src.config.settings import CorrectorSettings
from src.lib.dictionary import DictionaryRule, InMemoryDictionaryStore, RateLimitError


class _EchoLLM:
    """辞書適用済みテキストをそのまま JSON で返す。"""

    def __init__(self) -> None:
        self.calls = 0
        self.error: Exception | None = None

    def complete(self, messages):
        self.calls += 1
        if self.error is not None:
            raise self.error
        user = messages[-1]["content"]
        mechanical = user.split("【辞書適用済みテキスト】\n", 1)[1].split("\n\n【元のテキスト】", 1)[0]
        return json.dumps(
            {"corrected_text": mechanical, "applied_rules": [], "other_corrections": "特になし"},
            ensure_ascii=False,
        )


class TestDictionaryHTTP(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryDictionaryStore([DictionaryRule(incorrect="AI", correct="人工知能")])
        self.llm = _EchoLLM()
        app = create_app(CorrectorSettings(database_url="sqlite://"), store=self.store, llm=self.llm)
        self.client = TestClient(app)

    def test_healthz(self) -> None:
        response = self.client.get("/healthz")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_correct_returns_camel_case_payload(self) -> None:
        response = self.client.post("/correct", json={"text": "AIが動く"})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["correctedText"], "人工知能が動く")
        self.assertIn("【辞書による置換】", body["appliedRules"])
        self.assertIn('"AI" → "人工知能" (1 occurrence)', body["appliedRules"])
        self.assertEqual(body["otherCorrections"], "特になし")

    def test_empty_text_is_validation_error(self) -> None:
        response = self.client.post("/correct", json={"text": "   "})

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertFalse(body["success"])
        self.assertEqual(body["error"]["code"], "VALIDATION_ERROR")
        self.assertEqual(self.llm.calls, 0)

    def test_missing_field_is_validation_error(self) -> None:
        response = self.client.post("/correct", json={})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_rate_limit_maps_to_429(self) -> None:
        self.llm.error = RateLimitError()
        response = self.client.post("/correct", json={"text": "AIが動く"})

        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.json()["error"]["code"], "RATE_LIMIT")

    def test_learn_then_list(self) -> None:
        response = self.client.post(
            "/dictionary/learn",
            json={
                "changes": [
                    {"original": "こんにちは、皆さん。", "edited": "こんばんは、皆さん。"},
                    {"incorrect": "かいぎ", "correct": "会議", "category": "用語"},
                ]
            },
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["updatedEntries"], 2)
        pairs = {(item["incorrect"], item["correct"]) for item in body["updates"]}
        self.assertEqual(pairs, {("こんにちは", "こんばんは"), ("かいぎ", "会議")})

        listing = self.client.get("/dictionary")
        self.assertEqual(listing.status_code, 200)
        self.assertEqual(len(listing.json()), 3)
        self.assertIn("createdAt", listing.json()[0])

    def test_learn_rejects_incomplete_change(self) -> None:
        response = self.client.post("/dictionary/learn", json={"changes": [{"original": "だけ"}]})
        self.assertEqual(response.status_code, 400)

        response = self.client.post("/dictionary/learn", json={"changes": []})
        self.assertEqual(response.status_code, 400)

    def test_list_filters_by_query_and_category(self) -> None:
        self.store.insert_many(
            [
                DictionaryRule(incorrect="ぎじろく", correct="議事録", category="用語"),
                DictionaryRule(incorrect="議事禄", correct="議事録"),
            ]
        )

        by_query = self.client.get("/dictionary", params={"query": "議事"})
        self.assertEqual(by_query.status_code, 200)
        self.assertEqual({item["incorrect"] for item in by_query.json()}, {"ぎじろく", "議事禄"})

        by_category = self.client.get("/dictionary", params={"query": "議事", "category": "用語"})
        self.assertEqual([item["incorrect"] for item in by_category.json()], ["ぎじろく"])

        by_prefix = self.client.get("/dictionary", params={"query": "ai", "prefix": "true"})
        self.assertEqual([item["incorrect"] for item in by_prefix.json()], ["AI"])

        everything = self.client.get("/dictionary")
        self.assertEqual(len(everything.json()), 3)

    def test_add_entry_and_conflict(self) -> None:
        response = self.client.post("/dictionary", json={"incorrect": "かいぎ", "correct": "会議"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["addedEntry"]["incorrect"], "かいぎ")

        duplicate = self.client.post("/dictionary", json={"incorrect": "かいぎ", "correct": "会議"})
        self.assertEqual(duplicate.status_code, 409)
        error = duplicate.json()["error"]
        self.assertEqual(error["code"], "CONFLICT")
        self.assertEqual(error["details"], {"incorrect": "かいぎ", "correct": "会議"})


if __name__ == "__main__":
    unittest.main()
