"""Oracle client - transport to the narrative and illustration services.

The engine is handed an oracle callable matching the protocol:

    async def __call__(self, request: OracleRequest) -> str | dict: ...

and an illustrator:

    async def __call__(self, prompt: str) -> str | None: ...

The oracle returns the raw structured response (JSON text or an already
decoded object); validation and defaulting happen in schemas.adapt().
The illustrator returns an image reference, or None when it fails, which
never blocks the story.

Implementations:

    HttpOracle        - posts to a generate-content proxy
                        ({model, contents, config}) over httpx.
    HttpIllustrator   - posts to an image proxy ({model, prompt, config}).
    ScriptedOracle    - replays queued responses per call kind. Used for
                        local play and tests.
    NullIllustrator   - never draws anything.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from typing import Any, Protocol

import httpx

from ..errors import OracleUnavailable
from .prompts import CallKind, OracleRequest

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

class Oracle(Protocol):
    async def __call__(self, request: OracleRequest) -> str | dict: ...


class Illustrator(Protocol):
    async def __call__(self, prompt: str) -> str | None: ...


def _headers(api_key: str) -> dict[str, str]:
    headers: dict[str, str] = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


# ---------------------------------------------------------------------------
# HttpOracle
# ---------------------------------------------------------------------------

class HttpOracle:
    """Async client for a generate-content proxy.

    Request body:  {"model": ..., "contents": prompt,
                    "config": {"responseMimeType": "application/json",
                               "responseSchema": schema}}
    Response body: either {"text": "..."} or the raw generate-content
                   response with candidates[0].content.parts[*].text.

    Args:
        url:      Full URL of the proxy endpoint.
        model:    Model name passed through to the proxy.
        api_key:  Bearer token, or empty string if not required.
        timeout:  HTTP timeout in seconds. Defaults to 120.
    """

    def __init__(self, url: str, model: str = "gemini-2.5-flash", api_key: str = "", timeout: float = 120.0) -> None:
        self._url = url
        self._model = model
        self._api_key = api_key
        self._timeout = timeout

    def _build_body(self, request: OracleRequest) -> dict[str, Any]:
        return {
            "model": self._model,
            "contents": request.prompt,
            "config": {
                "responseMimeType": "application/json",
                "responseSchema": request.schema,
            },
        }

    @staticmethod
    def _parse_response(data: Any) -> str:
        if isinstance(data, dict):
            if isinstance(data.get("text"), str):
                return data["text"]
            candidates = data.get("candidates") or []
            if candidates:
                parts = (candidates[0].get("content") or {}).get("parts") or []
                text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
                if text:
                    return text
        raise OracleUnavailable("Unexpected response format from the oracle proxy")

    async def __call__(self, request: OracleRequest) -> str:
        body = self._build_body(request)
        logger.debug("oracle call kind=%s prompt_len=%d", request.kind.value, len(request.prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=body, headers=_headers(self._api_key))
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise OracleUnavailable(f"Cannot connect to the oracle at {self._url}") from e
        except httpx.HTTPStatusError as e:
            raise OracleUnavailable(f"Oracle returned HTTP {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            raise OracleUnavailable(f"Oracle timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise OracleUnavailable(f"Oracle request failed: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise OracleUnavailable("Oracle proxy returned a non-JSON body") from e

        text = self._parse_response(data)
        logger.debug("oracle response kind=%s len=%d", request.kind.value, len(text))
        return text


# ---------------------------------------------------------------------------
# HttpIllustrator
# ---------------------------------------------------------------------------

class HttpIllustrator:
    """Async client for an image-generation proxy.

    Returns a data: URL for the first generated image, or None on any
    failure. Failures are logged, never raised.
    """

    def __init__(self, url: str, model: str = "imagen-3.0-generate-002", api_key: str = "", timeout: float = 120.0) -> None:
        self._url = url
        self._model = model
        self._api_key = api_key
        self._timeout = timeout

    async def __call__(self, prompt: str) -> str | None:
        body = {
            "model": self._model,
            "prompt": prompt,
            "config": {"numberOfImages": 1, "outputMimeType": "image/jpeg"},
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=body, headers=_headers(self._api_key))
                resp.raise_for_status()
            images = resp.json().get("generatedImages") or []
            image_bytes = images[0]["image"]["imageBytes"]
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            logger.warning("illustration failed: %s", e)
            return None
        return f"data:image/jpeg;base64,{image_bytes}"


# ---------------------------------------------------------------------------
# Scripted implementations
# ---------------------------------------------------------------------------

class ScriptedOracle:
    """Replays queued responses, one queue per call kind.

    Queue a dict (or JSON text) with push(); an Exception instance is
    raised instead of returned. An empty queue is an OracleUnavailable.
    Every request seen is kept on .requests for inspection.
    """

    def __init__(self, responses: dict[CallKind, list[Any]] | None = None) -> None:
        self._queues: dict[CallKind, deque] = defaultdict(deque)
        self.requests: list[OracleRequest] = []
        for kind, items in (responses or {}).items():
            self._queues[kind].extend(items)

    def push(self, kind: CallKind, *responses: Any) -> ScriptedOracle:
        self._queues[kind].extend(responses)
        return self

    def pending(self, kind: CallKind) -> int:
        return len(self._queues[kind])

    async def __call__(self, request: OracleRequest) -> str | dict:
        self.requests.append(request)
        queue = self._queues[request.kind]
        if not queue:
            raise OracleUnavailable(f"No scripted response for {request.kind.value}")
        response = queue.popleft()
        if isinstance(response, Exception):
            raise response
        logger.debug("ScriptedOracle kind=%s", request.kind.value)
        return response


class NullIllustrator:
    """Never returns an image."""

    async def __call__(self, prompt: str) -> str | None:
        return None
