"""Provider adapters — wire format of each translation backend.

Each adapter turns a list of texts (or one text) into the provider's HTTP
request, sends it and parses the reply. Failures are reported as the typed
errors the retry/fallback policy understands:

  - ProviderHTTPError: non-2xx status (retry classification by status)
  - ProviderNetworkError: timeout / transport failure
  - ParseFailure: reply is not the expected shape (batch → per-item fallback)
  - ProviderConfigError: cannot call the provider as configured

Provider-specific behaviors:
  - custom: POST {inputs, sourceLang, targetLang, model, workflow} →
    {outputs: [...]} or {data: [...]}; no endpoint configured → demo mode
  - openai-compatible: chat completions; batches are sent as a JSON payload
    and the model must answer with a JSON array of equal length
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from translate_gateway.core.config import ProviderConfig, ProviderType, WorkflowConfig
from translate_gateway.gateway.errors import (
    ParseFailure,
    ProviderConfigError,
    ProviderHTTPError,
    ProviderNetworkError,
)
from translate_gateway.gateway.prompts import compose_prompt
from translate_gateway.gateway.types import TranslateParams

logger = logging.getLogger(__name__)

DEMO_PREFIX = "[demo] "


def parse_json_array_like(content: str, expected_len: int | None = None) -> list | None:
    """Parse a JSON array from model output.

    Tries the whole string first, then the outermost ``[...]`` slice (models
    like to wrap JSON in prose or code fences). Returns None when neither
    parses to a list of ``expected_len`` items.
    """

    def _accept(value: Any) -> bool:
        return isinstance(value, list) and (not expected_len or len(value) == expected_len)

    try:
        value = json.loads(content)
        if _accept(value):
            return value
    except ValueError:
        pass

    start = content.find("[")
    end = content.rfind("]")
    if start >= 0 and end > start:
        try:
            value = json.loads(content[start : end + 1])
            if _accept(value):
                return value
        except ValueError:
            pass
    return None


def _coerce_output(item: Any, fallback: str) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, dict) and isinstance(item.get("text"), str):
        return item["text"]
    if item is None:
        return fallback
    return str(item)


class BaseProvider(ABC):
    """Base class for all provider adapters."""

    provider_type: ProviderType
    supports_batch: bool = True

    def __init__(self, config: ProviderConfig, workflow: WorkflowConfig | None = None):
        self.config = config
        self.workflow = workflow or WorkflowConfig()

    @property
    def name(self) -> str:
        """Identifier used in cache keys."""
        return self.provider_type.value

    @property
    def model(self) -> str:
        return self.config.model.strip()

    @abstractmethod
    async def translate_batch(self, texts: list[str], params: TranslateParams) -> list[str]:
        """Translate ``texts``; the result is aligned with the input."""
        ...

    @abstractmethod
    async def translate_one(self, text: str, params: TranslateParams) -> str:
        """Translate a single text."""
        ...

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        headers.update(self.config.headers)
        api_key = self.config.api_key.strip()
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    async def _post_json(self, url: str, payload: dict[str, Any]) -> Any:
        """POST ``payload`` and return the decoded JSON body ({} if not JSON)."""
        timeout = self.config.timeout_seconds
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.post(url, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            raise ProviderNetworkError(f"Timeout after {timeout}s") from e
        except httpx.TransportError as e:
            raise ProviderNetworkError(f"Transport error: {e}") from e

        if not resp.is_success:
            raise ProviderHTTPError(resp.status_code, resp.text)

        try:
            return resp.json()
        except ValueError:
            logger.warning("%s returned a non-JSON body (%d bytes)", self.name, len(resp.content))
            return {}


# ---------------------------------------------------------------------------
# Custom endpoint (array in, array out)
# ---------------------------------------------------------------------------


class CustomEndpointProvider(BaseProvider):
    """Generic JSON endpoint accepting an ``inputs`` array."""

    provider_type = ProviderType.CUSTOM

    @property
    def demo_mode(self) -> bool:
        return not self.config.endpoint.strip()

    async def translate_batch(self, texts: list[str], params: TranslateParams) -> list[str]:
        if self.demo_mode:
            return [f"{DEMO_PREFIX}{t}" for t in texts]

        payload: dict[str, Any] = {
            "inputs": texts,
            "sourceLang": params.source_lang,
            "targetLang": params.target_lang,
            "workflow": list(self.workflow.steps) or ["translate"],
        }
        if self.model:
            payload["model"] = self.model

        data = await self._post_json(self.config.endpoint.strip(), payload)

        raw = None
        if isinstance(data, dict):
            for field_name in ("outputs", "data"):
                if isinstance(data.get(field_name), list):
                    raw = data[field_name]
                    break
        if raw is None:
            raise ParseFailure("Invalid provider response format; expected outputs[] or data[]")
        if len(raw) != len(texts):
            raise ParseFailure(f"Expected {len(texts)} outputs, got {len(raw)}")

        return [_coerce_output(item, texts[i]) for i, item in enumerate(raw)]

    async def translate_one(self, text: str, params: TranslateParams) -> str:
        outputs = await self.translate_batch([text], params)
        return outputs[0]


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider(BaseProvider):
    """Chat-completions endpoint (OpenAI or any compatible server)."""

    provider_type = ProviderType.OPENAI_COMPATIBLE
    default_endpoint = "https://api.openai.com/v1/chat/completions"
    default_model = "gpt-3.5-turbo"

    @property
    def endpoint(self) -> str:
        return self.config.endpoint.strip() or self.default_endpoint

    @property
    def model(self) -> str:
        return self.config.model.strip() or self.default_model

    def _require_key(self) -> None:
        if not self.config.api_key.strip():
            raise ProviderConfigError("openai-compatible provider requires api_key")

    async def _chat(self, system_prompt: str, user_content: str) -> str:
        payload = {
            "model": self.model,
            "temperature": 0,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
        }
        data = await self._post_json(self.endpoint, payload)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if content is None:
            return ""
        return content if isinstance(content, str) else str(content)

    async def translate_batch(self, texts: list[str], params: TranslateParams) -> list[str]:
        self._require_key()
        system_prompt = compose_prompt(params.source_lang, params.target_lang, self.workflow, batch=True)
        user_payload = {
            "inputs": texts,
            "meta": {"sourceLang": params.source_lang, "targetLang": params.target_lang},
        }
        content = await self._chat(system_prompt, json.dumps(user_payload, ensure_ascii=False))

        parsed = parse_json_array_like(content, len(texts))
        if parsed is None:
            raise ParseFailure("Invalid JSON array from provider", raw=content)
        return [_coerce_output(item, texts[i]) for i, item in enumerate(parsed)]

    async def translate_one(self, text: str, params: TranslateParams) -> str:
        self._require_key()
        system_prompt = compose_prompt(params.source_lang, params.target_lang, self.workflow, batch=False)
        return await self._chat(system_prompt, text)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

PROVIDER_REGISTRY: dict[ProviderType, type[BaseProvider]] = {
    ProviderType.CUSTOM: CustomEndpointProvider,
    ProviderType.OPENAI_COMPATIBLE: OpenAICompatibleProvider,
}


def get_provider(config: ProviderConfig, workflow: WorkflowConfig | None = None) -> BaseProvider:
    """Build the adapter for ``config.type``."""
    provider_cls = PROVIDER_REGISTRY.get(config.type)
    if provider_cls is None:
        raise ProviderConfigError(f"Unsupported provider type: {config.type}")
    return provider_cls(config, workflow)
