from __future__ import annotations

import logging
import time
from typing import Any, Dict, Protocol, Sequence

import httpx

from src.config.settings import CorrectorSettings

from .exceptions import ApiError, RateLimitError

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 429


class ChatCompletionClient(Protocol):
    def complete(self, messages: Sequence[Dict[str, str]]) -> str:
        ...


class OpenAIChatClient:
    """OpenAI 互換のチャット補完 API を httpx で呼び出すクライアント。"""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        temperature: float = 0.3,
        max_tokens: int = 4000,
        timeout: float = 300.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        json_mode: bool = True,
    ) -> None:
        if not api_key:
            raise ValueError("OPENAI_API_KEY 環境変数で API キーを指定してください。")
        self.api_key = api_key
        self.model = model
        self.endpoint = base_url.rstrip("/") + "/chat/completions"
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.max_retries = max(0, int(max_retries))
        self.retry_delay = max(0.0, float(retry_delay))
        self.json_mode = json_mode

    @classmethod
    def from_settings(cls, settings: CorrectorSettings) -> "OpenAIChatClient":
        return cls(
            api_key=settings.api_key,
            model=settings.model,
            base_url=settings.base_url,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout=settings.timeout,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
        )

    def complete(self, messages: Sequence[Dict[str, str]]) -> str:
        """メッセージ列を送信し、生成テキストを返す。

        429 のみ ``max_retries`` 回まで待機して再試行し、それ以外の失敗は即座に
        ApiError として送出する。
        """

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": list(messages),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if self.json_mode:
            payload["response_format"] = {"type": "json_object"}
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        attempt = 0
        while True:
            try:
                response = httpx.post(self.endpoint, headers=headers, json=payload, timeout=self.timeout)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status != RATE_LIMIT_STATUS:
                    raise ApiError(
                        f"GPT API error: HTTP {status}",
                        details={"status": status},
                    ) from exc
                if attempt >= self.max_retries:
                    raise RateLimitError(details={"attempts": attempt + 1}) from exc
                attempt += 1
                delay = self.retry_delay * attempt
                logger.warning(
                    "LLM API がレート制限を返しました。%.1f 秒後にリトライします (%d/%d)",
                    delay,
                    attempt,
                    self.max_retries,
                )
                time.sleep(delay)
                continue
            except httpx.RequestError as exc:
                raise ApiError("LLM API への接続に失敗しました", details={"reason": str(exc)}) from exc

            return self._extract_content(response)

    @staticmethod
    def _extract_content(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError as exc:
            raise ApiError("LLM API の応答を解釈できませんでした") from exc

        if isinstance(data, dict):
            choices = data.get("choices")
            if isinstance(choices, list) and choices:
                message = choices[0].get("message") if isinstance(choices[0], dict) else None
                if isinstance(message, dict) and isinstance(message.get("content"), str):
                    return message["content"]
        raise ApiError("LLM API の応答に本文が含まれていません")


__all__ = ["ChatCompletionClient", "OpenAIChatClient", "RATE_LIMIT_STATUS"]
