"""Clients for the external language-model service.

Two HTTP backends share one httpx.AsyncClient owned by the lifespan:

- ``WorkersAIClient``: Cloudflare Workers AI REST API
  (``POST {base_url}/accounts/{account_id}/ai/run/{model}``)
- ``OpenAICompatibleClient``: any ``/chat/completions`` endpoint

Both return the model's raw text and raise ``InferenceError`` on every failure;
parsing the text is the analyzer's job.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from policylens.errors import InferenceError

if TYPE_CHECKING:
    from policylens.config import InferenceSettings
    from policylens.protocols import InferenceClientProtocol

log = structlog.get_logger()


@dataclass(frozen=True)
class InferenceRequest:
    system_prompt: str
    user_prompt: str
    max_tokens: int
    temperature: float

    def messages(self) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self.user_prompt},
        ]


def build_inference_http_client(settings: InferenceSettings) -> httpx.AsyncClient:
    """Create the httpx client used for model calls. Called once at startup."""
    headers = {"Content-Type": "application/json"}
    if settings.api_token:
        headers["Authorization"] = f"Bearer {settings.api_token}"
    return httpx.AsyncClient(
        base_url=settings.base_url.rstrip("/"),
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers=headers,
    )


class _HttpInferenceClient:
    provider = "http"

    def __init__(self, client: httpx.AsyncClient, settings: InferenceSettings) -> None:
        self._client = client
        self._settings = settings

    @property
    def model(self) -> str:
        return self._settings.model

    def _endpoint(self) -> str:
        raise NotImplementedError

    def _payload(self, request: InferenceRequest) -> dict[str, Any]:
        return {
            "messages": request.messages(),
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }

    def _extract_text(self, body: Any) -> Any:
        raise NotImplementedError

    async def run(self, request: InferenceRequest) -> str:
        t0 = time.monotonic()
        try:
            response = await self._client.post(self._endpoint(), json=self._payload(request))
        except httpx.HTTPError as exc:
            raise InferenceError(f"{self.provider} request failed: {exc}") from exc

        latency_ms = int((time.monotonic() - t0) * 1000)
        if not response.is_success:
            raise InferenceError(f"{self.provider} returned HTTP {response.status_code}")

        try:
            text = self._extract_text(response.json())
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise InferenceError(f"{self.provider} response has unexpected shape") from exc

        if isinstance(text, (dict, list)):
            # Some models return already-decoded JSON objects
            text = json.dumps(text)
        if not isinstance(text, str) or not text.strip():
            raise InferenceError(f"{self.provider} returned an empty response")

        log.debug(
            "inference_complete",
            provider=self.provider,
            model=self.model,
            latency_ms=latency_ms,
            response_length=len(text),
        )
        return text

    async def aclose(self) -> None:
        await self._client.aclose()


class WorkersAIClient(_HttpInferenceClient):
    provider = "workers_ai"

    def _endpoint(self) -> str:
        return f"/accounts/{self._settings.account_id}/ai/run/{self._settings.model}"

    def _extract_text(self, body: Any) -> Any:
        if body.get("success") is False:
            raise ValueError(f"errors: {body.get('errors')}")
        return body["result"]["response"]


class OpenAICompatibleClient(_HttpInferenceClient):
    provider = "openai"

    def _endpoint(self) -> str:
        return "/chat/completions"

    def _payload(self, request: InferenceRequest) -> dict[str, Any]:
        return {"model": self._settings.model, **super()._payload(request)}

    def _extract_text(self, body: Any) -> Any:
        return body["choices"][0]["message"]["content"]


def build_inference_client(settings: InferenceSettings) -> InferenceClientProtocol:
    client = build_inference_http_client(settings)
    if settings.provider == "openai":
        return OpenAICompatibleClient(client, settings)
    return WorkersAIClient(client, settings)
