"""Chat-completion client for OpenAI-compatible backends.

Implements ``NarrativeModelPort``: one POST to ``/v1/chat/completions`` per
target with the conversation plus tool schemas. Quota responses (HTTP 429)
become ``QuotaExceeded`` so the fallback chain stops immediately; every other
transport or HTTP failure becomes ``TransientProviderError``.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Mapping

import httpx

from ..config import ProviderConfig
from ..core.errors import QuotaExceeded, TransientProviderError
from ..core.types import ModelReply, NarrativeRequest

logger = logging.getLogger(__name__)

_RETRY_DELAY_PATTERN = re.compile(r'"retryDelay"\s*:\s*"(\d+)s"')
_SECONDS_PATTERN = re.compile(r"(\d+)s")


def extract_retry_after(headers: Mapping[str, str] | None, body: Any = None, message: str = "") -> int | None:
    """Backoff hint from a quota response, in seconds, or None."""
    raw = None
    if headers is not None:
        raw = headers.get("retry-after") or headers.get("Retry-After")
    if raw is not None:
        try:
            return int(float(str(raw).strip()))
        except ValueError:
            pass

    details = None
    if isinstance(body, dict):
        error = body.get("error") if isinstance(body.get("error"), dict) else {}
        details = body.get("details") or error.get("details")
    if isinstance(details, list):
        for detail in details:
            if not isinstance(detail, dict) or "RetryInfo" not in str(detail.get("@type") or ""):
                continue
            match = _SECONDS_PATTERN.search(str(detail.get("retryDelay") or ""))
            if match:
                return int(match.group(1))

    match = _RETRY_DELAY_PATTERN.search(message or "")
    if match:
        return int(match.group(1))
    return None


class OpenAICompatibleModel:
    """Async chat-completion client.

    Args:
        config: endpoint, key, timeout and sampling temperature. Defaults to
            ``ProviderConfig.from_env()``.
    """

    def __init__(self, config: ProviderConfig | None = None) -> None:
        self._config = config or ProviderConfig.from_env()
        self._base_url = self._config.base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        return headers

    def _build_body(self, target: str, request: NarrativeRequest) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": target,
            "messages": request.to_messages(),
            "temperature": self._config.temperature,
        }
        if request.tools:
            body["tools"] = request.tools
            body["tool_choice"] = "auto"
        return body

    @staticmethod
    def _parse_response(data: Any) -> ModelReply:
        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices or not isinstance(choices[0], dict):
            raise TransientProviderError("malformed_response", "Unexpected chat completion format")
        message = choices[0].get("message") or {}
        tool_calls = [
            {
                "id": call.get("id"),
                "name": (call.get("function") or {}).get("name"),
                "args": (call.get("function") or {}).get("arguments"),
            }
            for call in message.get("tool_calls") or []
            if isinstance(call, dict)
        ]
        return ModelReply(text=message.get("content") or "", tool_calls=tool_calls)

    async def complete(self, target: str, request: NarrativeRequest) -> ModelReply:
        url = f"{self._base_url}/v1/chat/completions"
        body = self._build_body(target, request)
        logger.debug("chat completion target=%s messages=%d", target, len(body["messages"]))

        try:
            async with httpx.AsyncClient(timeout=self._config.timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                if resp.status_code == 429:
                    raise self._quota_error(resp)
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise TransientProviderError("connect_error", f"Cannot connect to {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise TransientProviderError("http_error", f"Backend returned HTTP {status}", status=status) from e
        except httpx.TimeoutException as e:
            raise TransientProviderError("timeout", f"Backend timed out after {self._config.timeout}s") from e

        reply = self._parse_response(resp.json())
        logger.debug("chat completion target=%s text_len=%d tool_calls=%d", target, len(reply.text), len(reply.tool_calls))
        return reply

    @staticmethod
    def _quota_error(resp: Any) -> QuotaExceeded:
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        message = getattr(resp, "text", "") or ""
        retry_after = extract_retry_after(resp.headers, payload, message if isinstance(message, str) else "")
        return QuotaExceeded(retry_after_seconds=retry_after)
