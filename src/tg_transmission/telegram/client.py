from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

import anyio
import httpx
import msgspec

from ..logging import get_logger
from .api_models import Chat, File, Message, Update

logger = get_logger(__name__)

T = TypeVar("T")

TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramError(RuntimeError):
    pass


class TelegramRetryAfter(Exception):
    def __init__(self, retry_after: float) -> None:
        super().__init__(f"retry after {retry_after}")
        self.retry_after = float(retry_after)


def retry_after_from_payload(payload: dict[str, Any]) -> float | None:
    params = payload.get("parameters")
    if isinstance(params, dict):
        retry_after = params.get("retry_after")
        if isinstance(retry_after, (int, float)):
            return float(retry_after)
    return None


class BotClient(Protocol):
    async def close(self) -> None: ...

    async def get_updates(
        self,
        offset: int | None,
        timeout_s: int = 50,
        allowed_updates: list[str] | None = None,
    ) -> list[Update] | None: ...

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_to_message_id: int | None = None,
        parse_mode: str | None = None,
        reply_markup: dict[str, Any] | None = None,
    ) -> Message | None: ...

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        parse_mode: str | None = None,
        reply_markup: dict[str, Any] | None = None,
    ) -> Message | None: ...

    async def get_file(self, file_id: str) -> File | None: ...

    def file_url(self, file_path: str) -> str: ...

    async def answer_callback_query(
        self,
        callback_query_id: str,
        text: str | None = None,
    ) -> bool: ...

    async def set_my_commands(self, commands: list[dict[str, Any]]) -> bool: ...


class TelegramClient:
    def __init__(
        self,
        token: str,
        *,
        timeout_s: float = 120,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
        base_url: str = TELEGRAM_API_URL,
    ) -> None:
        if not token:
            raise ValueError("Telegram token is empty")
        self._base = f"{base_url}/bot{token}"
        self._file_base = f"{base_url}/file/bot{token}"
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_http_client = http_client is None
        self._sleep = sleep

    async def close(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    def file_url(self, file_path: str) -> str:
        return f"{self._file_base}/{file_path}"

    async def _post(self, method: str, json_data: dict[str, Any]) -> Any | None:
        logger.debug("telegram.request", method=method, payload=json_data)
        try:
            resp = await self._http_client.post(
                f"{self._base}/{method}", json=json_data
            )
        except httpx.HTTPError as e:
            try:
                url = e.request.url
            except RuntimeError:
                url = None
            logger.error(
                "telegram.network_error",
                method=method,
                url=str(url) if url is not None else None,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            return None

        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            if resp.status_code == 429:
                retry_after: float | None = None
                try:
                    payload = resp.json()
                except Exception:  # noqa: BLE001
                    payload = None
                if isinstance(payload, dict):
                    retry_after = retry_after_from_payload(payload)
                retry_after = 5.0 if retry_after is None else retry_after
                logger.warning(
                    "telegram.rate_limited",
                    method=method,
                    status=resp.status_code,
                    retry_after=retry_after,
                )
                raise TelegramRetryAfter(retry_after) from e
            logger.error(
                "telegram.http_error",
                method=method,
                status=resp.status_code,
                error=str(e),
                body=resp.text,
            )
            return None

        try:
            payload = resp.json()
        except Exception as e:  # noqa: BLE001
            logger.error(
                "telegram.bad_response",
                method=method,
                status=resp.status_code,
                error=str(e),
                error_type=e.__class__.__name__,
                body=resp.text,
            )
            return None

        if not isinstance(payload, dict):
            logger.error("telegram.invalid_payload", method=method, payload=payload)
            return None

        if not payload.get("ok"):
            if payload.get("error_code") == 429:
                retry_after = retry_after_from_payload(payload)
                retry_after = 5.0 if retry_after is None else retry_after
                logger.warning(
                    "telegram.rate_limited",
                    method=method,
                    retry_after=retry_after,
                )
                raise TelegramRetryAfter(retry_after)
            logger.error("telegram.api_error", method=method, payload=payload)
            return None

        logger.debug("telegram.response", method=method, payload=payload)
        return payload.get("result")

    async def _call(self, method: str, params: dict[str, Any]) -> Any | None:
        while True:
            try:
                return await self._post(method, params)
            except TelegramRetryAfter as exc:
                await self._sleep(exc.retry_after)

    def _decode(self, method: str, result: Any, type_: type[T]) -> T | None:
        if result is None:
            return None
        try:
            return msgspec.convert(result, type=type_)
        except msgspec.ValidationError as exc:
            logger.error(
                "telegram.decode_error",
                method=method,
                error=str(exc),
                payload=result,
            )
            return None

    async def get_updates(
        self,
        offset: int | None,
        timeout_s: int = 50,
        allowed_updates: list[str] | None = None,
    ) -> list[Update] | None:
        params: dict[str, Any] = {"timeout": timeout_s}
        if offset is not None:
            params["offset"] = offset
        if allowed_updates is not None:
            params["allowed_updates"] = allowed_updates
        result = await self._call("getUpdates", params)
        return self._decode("getUpdates", result, list[Update])

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_to_message_id: int | None = None,
        parse_mode: str | None = None,
        reply_markup: dict[str, Any] | None = None,
    ) -> Message | None:
        params: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_to_message_id is not None:
            params["reply_to_message_id"] = reply_to_message_id
        if parse_mode is not None:
            params["parse_mode"] = parse_mode
        if reply_markup is not None:
            params["reply_markup"] = reply_markup
        result = await self._call("sendMessage", params)
        return self._decode("sendMessage", result, Message)

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        parse_mode: str | None = None,
        reply_markup: dict[str, Any] | None = None,
    ) -> Message | None:
        params: dict[str, Any] = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
        }
        if parse_mode is not None:
            params["parse_mode"] = parse_mode
        if reply_markup is not None:
            params["reply_markup"] = reply_markup
        result = await self._call("editMessageText", params)
        # Inline-message edits answer with `true` instead of the message.
        if result is True:
            return Message(message_id=message_id, chat=Chat(id=chat_id))
        return self._decode("editMessageText", result, Message)

    async def get_file(self, file_id: str) -> File | None:
        result = await self._call("getFile", {"file_id": file_id})
        return self._decode("getFile", result, File)

    async def answer_callback_query(
        self,
        callback_query_id: str,
        text: str | None = None,
    ) -> bool:
        params: dict[str, Any] = {"callback_query_id": callback_query_id}
        if text is not None:
            params["text"] = text
        return bool(await self._call("answerCallbackQuery", params))

    async def set_my_commands(self, commands: list[dict[str, Any]]) -> bool:
        return bool(await self._call("setMyCommands", {"commands": commands}))