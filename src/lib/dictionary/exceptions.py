from __future__ import annotations

import logging
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """呼び出し元へ返すエラー種別。"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFLICT = "CONFLICT"
    RATE_LIMIT = "RATE_LIMIT"
    API_ERROR = "API_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


_DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.VALIDATION_ERROR: "バリデーションエラーが発生しました",
    ErrorKind.CONFLICT: "同じ変換ルールが既に存在します",
    ErrorKind.RATE_LIMIT: "リクエスト制限に達しました。しばらく待ってから再試行してください",
    ErrorKind.API_ERROR: "APIエラーが発生しました",
    ErrorKind.STORAGE_ERROR: "辞書の読み書きに失敗しました",
    ErrorKind.UNKNOWN_ERROR: "予期せぬエラーが発生しました",
}

_HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.API_ERROR: 502,
    ErrorKind.STORAGE_ERROR: 500,
    ErrorKind.UNKNOWN_ERROR: 500,
}


class DictionaryServiceError(RuntimeError):
    """校正・辞書学習で発生するエラーの基底クラス。"""

    kind: ErrorKind = ErrorKind.UNKNOWN_ERROR

    def __init__(self, message: str | None = None, *, details: Any = None) -> None:
        self.message = message or _DEFAULT_MESSAGES[self.kind]
        self.details = details
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self.kind]

    def to_payload(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.kind.value, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        return {"success": False, "error": error}


class ValidationError(DictionaryServiceError):
    kind = ErrorKind.VALIDATION_ERROR


class ConflictError(DictionaryServiceError):
    """既存ルールと同一の (incorrect, correct) を登録しようとした。"""

    kind = ErrorKind.CONFLICT


class RateLimitError(DictionaryServiceError):
    kind = ErrorKind.RATE_LIMIT


class ApiError(DictionaryServiceError):
    kind = ErrorKind.API_ERROR


class StorageError(DictionaryServiceError):
    kind = ErrorKind.STORAGE_ERROR


class UnknownError(DictionaryServiceError):
    kind = ErrorKind.UNKNOWN_ERROR


def wrap_unexpected(exc: BaseException, context: str) -> DictionaryServiceError:
    """想定外の例外を記録し、内部情報を含まない UNKNOWN_ERROR に変換する。"""

    if isinstance(exc, DictionaryServiceError):
        return exc
    logger.exception("%s で予期せぬエラーが発生しました", context, exc_info=exc)
    return UnknownError()


__all__ = [
    "ErrorKind",
    "DictionaryServiceError",
    "ValidationError",
    "ConflictError",
    "RateLimitError",
    "ApiError",
    "StorageError",
    "UnknownError",
    "wrap_unexpected",
]
