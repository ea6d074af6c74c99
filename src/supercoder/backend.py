"""Streaming chat-completions backend (OpenAI-compatible SSE)."""

import asyncio
import json
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Dict, Optional, Protocol, Sequence

import httpx

from .config import AppConfig
from .extractor import ToolCallDescription
from .history import Turn
from .logger import get_logger

_log = get_logger("backend")

RETRYABLE_STATUS = (429, 500, 502, 503)


class BackendError(RuntimeError):
    """The backend could not be reached or broke off mid-stream."""


class Backend(Protocol):
    """Opens one streaming response per request.

    The returned context manager yields an async iterator of fragments and
    must release the underlying connection when it exits.
    """

    def stream_completion(
        self, history: Sequence[Turn], system_prompt: str
    ) -> AsyncContextManager[AsyncIterator[str]]:
        ...


class OpenAIChatBackend:
    """Chat-completions client that yields content deltas as they arrive."""

    def __init__(
        self,
        config: AppConfig,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = 5,
        retry_backoff: float = 2.0,
    ):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "OpenAIChatBackend":
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(600.0, connect=30.0))
            self._owns_client = True
        return self

    async def __aexit__(self, *args) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
            "HTTP-Referer": "https://github.com/huytd/supercoder/",
            "X-Title": "SuperCoder",
        }

    def build_payload(self, history: Sequence[Turn], system_prompt: str) -> Dict[str, Any]:
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(turn.to_dict() for turn in history)
        payload: Dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "stream": True,
        }
        if self.config.temperature is not None:
            payload["temperature"] = self.config.temperature
        if self.config.max_tokens is not None:
            payload["max_tokens"] = self.config.max_tokens
        return payload

    @asynccontextmanager
    async def stream_completion(
        self, history: Sequence[Turn], system_prompt: str
    ) -> AsyncIterator[AsyncIterator[str]]:
        """Open a streaming response and yield its fragment iterator.

        The HTTP response is closed when the block exits, whether the
        stream was exhausted, abandoned, or failed.
        """
        if self._client is None:
            raise BackendError("Backend used outside 'async with'")
        payload = self.build_payload(history, system_prompt)
        _log.info("stream_completion: model=%s turns=%d", self.config.model, len(history))
        response = await self._open(payload)
        fragments = self._iter_fragments(response)
        try:
            yield fragments
        finally:
            await fragments.aclose()
            await response.aclose()

    async def _open(self, payload: Dict[str, Any]) -> httpx.Response:
        """Send the request, retrying transient failures before any output."""
        url = f"{self.base_url}/chat/completions"
        last_error: Optional[BaseException] = None

        for attempt in range(self.max_retries + 1):
            request = self._client.build_request("POST", url, headers=self._get_headers(), json=payload)
            try:
                response = await self._client.send(request, stream=True)
            except (httpx.TimeoutException, httpx.RequestError) as e:
                last_error = e
                _log.warning("Connection error on attempt %d/%d: %s: %s",
                             attempt + 1, self.max_retries + 1, type(e).__name__, e)
            else:
                if response.status_code < 400:
                    return response
                try:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                except httpx.HTTPError as e:
                    body = f"(unreadable body: {type(e).__name__}: {e})"
                finally:
                    await response.aclose()
                last_error = BackendError(f"API error: HTTP {response.status_code}: {body[:500]}")
                _log.warning("HTTP error %d on attempt %d/%d", response.status_code,
                             attempt + 1, self.max_retries + 1)
                if response.status_code not in RETRYABLE_STATUS:
                    raise last_error

            if attempt < self.max_retries:
                wait = min(self.retry_backoff ** (attempt + 1), 60)
                _log.info("Retrying in %.1fs (attempt %d/%d)", wait, attempt + 1, self.max_retries)
                await asyncio.sleep(wait)

        if isinstance(last_error, BackendError):
            raise last_error
        raise BackendError(f"Request failed after {self.max_retries} retries: {last_error}")

    async def _iter_fragments(self, response: httpx.Response) -> AsyncIterator[str]:
        """Decode SSE ``data:`` lines into content fragments."""
        tool_call: Optional[ToolCallDescription] = None
        # Only the first native call is kept; later indices are other calls
        tool_index: Optional[int] = None
        t0 = time.time()
        chars = 0
        line_buffer = ""
        done = False
        try:
            async for chunk in response.aiter_text():
                line_buffer += chunk
                while not done and "\n" in line_buffer:
                    line, line_buffer = line_buffer.split("\n", 1)
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    data_str = line[5:].strip()
                    if data_str == "[DONE]":
                        done = True
                        break
                    try:
                        data = json.loads(data_str)
                    except json.JSONDecodeError:
                        _log.debug("Skipping undecodable SSE line: %s", data_str[:200])
                        continue

                    delta = _event_delta(data)
                    if delta is None:
                        continue

                    content = _delta_text(delta.get("content"))
                    if content:
                        chars += len(content)
                        yield content

                    for call_delta in delta.get("tool_calls") or []:
                        if not isinstance(call_delta, dict):
                            continue
                        index = call_delta.get("index", 0)
                        if tool_index is None:
                            tool_index = index
                        elif index != tool_index:
                            _log.debug("Ignoring native tool call at index %s", index)
                            continue
                        function = call_delta.get("function") or {}
                        if not isinstance(function, dict):
                            continue
                        if tool_call is None:
                            tool_call = ToolCallDescription(name="")
                        name, arguments = function.get("name"), function.get("arguments")
                        if isinstance(name, str):
                            tool_call = tool_call.add_name(name)
                        if isinstance(arguments, str):
                            tool_call = tool_call.add_arguments(arguments)
                if done:
                    break
        except httpx.HTTPError as e:
            raise BackendError(f"Stream failed: {type(e).__name__}: {e}") from e

        if tool_call is not None and tool_call.name:
            # Native function-call deltas are folded into the marker protocol
            yield tool_call.to_block()

        _log.info("stream complete: content_len=%d elapsed=%.1fs", chars, time.time() - t0)


def _event_delta(data: Any) -> Optional[Dict[str, Any]]:
    """Return the first choice's delta of a decoded SSE event.

    Events without choices yield None. An event that is valid JSON but not
    a chat-completion chunk raises BackendError.
    """
    if not isinstance(data, dict):
        raise BackendError(f"Malformed stream event: {json.dumps(data)[:200]}")
    choices = data.get("choices") or []
    if not choices:
        return None
    if not isinstance(choices, list) or not isinstance(choices[0], dict):
        raise BackendError(f"Malformed stream event: {json.dumps(data)[:200]}")
    delta = choices[0].get("delta") or {}
    if not isinstance(delta, dict):
        raise BackendError(f"Malformed stream event: {json.dumps(data)[:200]}")
    return delta


def _delta_text(content: Any) -> str:
    """Content is a string, or a list of parts on some providers."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part["text"] for part in content
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
    return ""
