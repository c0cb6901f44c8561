from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Optional, TypeVar

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.cmd.schemas.dictionary import (
    AddEntryResponsePayload,
    CorrectRequestPayload,
    CorrectResponsePayload,
    DictionaryEntryPayload,
    LearnRequestPayload,
    LearnResponsePayload,
)
from src.config.logging import setup_logging
from src.config.settings import CorrectorSettings
from src.lib.dictionary import (
    BaseDictionaryStore,
    DictionaryCorrector,
    DictionaryLearner,
    DictionaryServiceError,
    SqlDictionaryStore,
    ValidationError,
)
from src.lib.dictionary.exceptions import wrap_unexpected
from src.lib.dictionary.llm_client import ChatCompletionClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Services:
    """リクエスト間で共有する依存オブジェクト。初回利用時に生成する。"""

    def __init__(
        self,
        settings: CorrectorSettings,
        store: BaseDictionaryStore | None,
        llm: ChatCompletionClient | None,
    ) -> None:
        self.settings = settings
        self._store = store
        self._llm = llm
        self._lock = threading.Lock()

    @property
    def store(self) -> BaseDictionaryStore:
        with self._lock:
            if self._store is None:
                self._store = SqlDictionaryStore.from_url(self.settings.database_url)
            return self._store

    def corrector(self) -> DictionaryCorrector:
        return DictionaryCorrector(self.store, self._llm, settings=self.settings)

    def learner(self) -> DictionaryLearner:
        return DictionaryLearner(self.store, settings=self.settings)


async def _run_blocking(context: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    try:
        return await asyncio.to_thread(fn, *args, **kwargs)
    except DictionaryServiceError:
        raise
    except Exception as exc:  # noqa: BLE001 - 予期せぬ障害は UNKNOWN_ERROR で返す
        raise wrap_unexpected(exc, context) from exc


def create_app(
    settings: CorrectorSettings | None = None,
    *,
    store: BaseDictionaryStore | None = None,
    llm: ChatCompletionClient | None = None,
) -> FastAPI:
    """FastAPIアプリケーションを構築して返す。"""

    setup_logging()
    services = _Services(settings or CorrectorSettings.from_env(), store, llm)
    app = FastAPI(title="Dictionary Transcript Corrector")

    @app.exception_handler(DictionaryServiceError)
    async def handle_service_error(_request: Request, exc: DictionaryServiceError) -> JSONResponse:
        logger.info("request_failed: kind=%s message=%s", exc.kind.value, exc.message)
        return JSONResponse(status_code=exc.http_status, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(_request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [{"loc": list(item.get("loc", ())), "msg": item.get("msg", "")} for item in exc.errors()]
        error = ValidationError(details=details)
        return JSONResponse(status_code=error.http_status, content=error.to_payload())

    @app.get("/healthz")
    async def health_check() -> dict[str, str]:
        """死活監視用エンドポイント。"""

        return {"status": "ok"}

    @app.post("/correct", response_model=CorrectResponsePayload)
    async def correct_endpoint(payload: CorrectRequestPayload) -> CorrectResponsePayload:
        """辞書と LLM で文字起こしテキストを校正する。"""

        logger.debug("correct_request: chars=%d", len(payload.text))
        corrector = services.corrector()
        result = await _run_blocking("correct", corrector.correct, payload.text)
        return CorrectResponsePayload.from_result(result)

    @app.post("/dictionary/learn", response_model=LearnResponsePayload)
    async def learn_endpoint(payload: LearnRequestPayload) -> LearnResponsePayload:
        """手修正の差分から辞書ルールを学習する。"""

        learner = services.learner()
        result = await _run_blocking("dictionary_learn", learner.learn, payload.to_changes())
        return LearnResponsePayload(
            success=True,
            updated_entries=result.saved_count,
            updates=[DictionaryEntryPayload.from_rule(rule) for rule in result.saved_rules],
        )

    @app.get("/dictionary", response_model=list[DictionaryEntryPayload])
    async def list_dictionary_endpoint(
        query: Optional[str] = None,
        category: Optional[str] = None,
        prefix: bool = False,
    ) -> list[DictionaryEntryPayload]:
        """登録済みルールを新しい順に返す。query / category 指定時は検索する。"""

        store = services.store
        if query or category:
            rules = await _run_blocking("dictionary_search", store.search, query, category=category, prefix=prefix)
        else:
            rules = await _run_blocking("dictionary_list", store.list_all)
        return [DictionaryEntryPayload.from_rule(rule) for rule in rules]

    @app.post("/dictionary", response_model=AddEntryResponsePayload)
    async def add_dictionary_endpoint(payload: DictionaryEntryPayload) -> AddEntryResponsePayload:
        """ルールを 1 件手動で登録する。同一ルールがあれば 409。"""

        learner = services.learner()
        saved = await _run_blocking("dictionary_add", learner.add_rule, payload.to_rule())
        return AddEntryResponsePayload(added_entry=DictionaryEntryPayload.from_rule(saved))

    return app


app = create_app()
