"""Model invocation for the generation flows.

The flows never talk to a model SDK directly.  They hand a rendered prompt and
an :class:`~sagaforge.services.contracts.OutputShape` to a :class:`ModelInvoker`,
which makes exactly one call to the configured text-generation capability and
turns the reply into an instance of the shape's result type.

Two capabilities ship with the application:

* :class:`OpenAIStructuredGenerator` asks the OpenAI API for schema-guided JSON
  output, choosing between the Responses and Chat Completions APIs by model
  family.
* :class:`~sagaforge.services.local_generation.LocalTextGenerator` runs a
  Hugging Face causal language model and returns raw text.

Anything with a ``structured_output`` flag and an async ``invoke(prompt,
shape)`` method can stand in for either of them.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol, Union

import openai

from .contracts import OutputShape, TextContract, ValidationError

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_SECONDS = 120.0

_CODE_FENCE_PATTERN = re.compile(r"^```[a-zA-Z]*\s*|\s*```$", re.S)


class GenerationFailure(RuntimeError):
    """Raised when the model call fails or its reply does not fit the output shape."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class GenerationTimeout(GenerationFailure):
    """Raised when the model call does not finish within its time limit."""


Reply = Union[Mapping[str, Any], str]


class TextGenerationCapability(Protocol):
    structured_output: bool

    async def invoke(self, prompt: str, shape: OutputShape) -> Reply:
        ...


@dataclass(frozen=True)
class GenerationSettings:
    """Process-wide model configuration, built once before the first call."""

    provider: str = "openai"
    model: str = DEFAULT_MODEL
    api_key: str = ""
    base_url: Optional[str] = None
    temperature: Optional[float] = 0.8
    top_p: Optional[float] = None
    max_output_tokens: int = 4096
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    local_model_path: Optional[str] = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "GenerationSettings":
        return cls(
            provider=str(config.get("GENERATION_PROVIDER") or "openai").strip().lower(),
            model=str(config.get("GENERATION_MODEL") or DEFAULT_MODEL).strip(),
            api_key=str(config.get("OPENAI_API_KEY") or "").strip(),
            base_url=(config.get("LLM_API_BASE") or None),
            temperature=_optional_float(config.get("GENERATION_TEMPERATURE")),
            top_p=_optional_float(config.get("GENERATION_TOP_P")),
            max_output_tokens=int(config.get("GENERATION_MAX_OUTPUT_TOKENS") or 4096),
            timeout_seconds=float(config.get("GENERATION_TIMEOUT_SECONDS") or DEFAULT_TIMEOUT_SECONDS),
            local_model_path=(config.get("TEXT_GENERATOR_MODEL_PATH") or None),
        )

    def signature(self) -> tuple[str, str, str]:
        # Never return raw secrets
        redacted = (self.api_key[:4] + "…" + self.api_key[-4:]) if self.api_key else ""
        return (self.provider, self.model, redacted)


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


class ModelInvoker:
    """Send one prompt to a capability and coerce the reply to an output shape."""

    def __init__(self, capability: TextGenerationCapability, settings: GenerationSettings) -> None:
        self.capability = capability
        self.settings = settings

    async def invoke(
        self,
        prompt: str,
        shape: OutputShape,
        *,
        timeout: Optional[float] = None,
    ) -> TextContract:
        limit = self.settings.timeout_seconds if timeout is None else timeout
        try:
            reply = await asyncio.wait_for(self.capability.invoke(prompt, shape), timeout=limit)
        except asyncio.TimeoutError as exc:
            raise GenerationTimeout(
                f"The model did not answer within {limit:g} seconds.", cause=exc
            ) from exc
        except openai.APITimeoutError as exc:
            raise GenerationTimeout("The model request timed out.", cause=exc) from exc
        except GenerationFailure:
            raise
        except Exception as exc:
            raise GenerationFailure(f"The model request failed: {exc}", cause=exc) from exc

        return self._coerce_reply(reply, shape)

    def _coerce_reply(self, reply: Any, shape: OutputShape) -> TextContract:
        payload = reply
        if isinstance(reply, str):
            payload = _parse_reply_text(
                reply,
                shape,
                structured=getattr(self.capability, "structured_output", False),
            )

        try:
            return shape.coerce(payload)
        except ValidationError as exc:
            LOGGER.warning("Model reply does not match the '%s' shape: %s", shape.name, exc)
            raise GenerationFailure(
                f"The model reply does not match the '{shape.name}' shape.", cause=exc
            ) from exc


def _parse_reply_text(text: str, shape: OutputShape, *, structured: bool) -> Any:
    raw = text.strip()
    if raw.startswith("```"):
        raw = _CODE_FENCE_PATTERN.sub("", raw).strip()

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        if structured:
            raise GenerationFailure("The model returned malformed JSON.", cause=exc) from exc
    else:
        if structured or isinstance(data, dict):
            return data

    # Raw-text backends answer in prose; that prose is the single text field.
    fields = shape.text_fields
    if len(fields) != 1 or not raw:
        raise GenerationFailure(f"Unable to read a '{shape.name}' reply from plain text.")
    return {fields[0]: raw}


class OpenAIStructuredGenerator:
    """Schema-guided generation through the OpenAI API.

    - GPT-5 / o3 / o4 / 4.1(x) → Responses API with ``text.format``
    - everything else → Chat Completions API with ``response_format``

    The SDK's own retries are disabled; one invocation means one request.
    Each invocation opens its own HTTP client.  Async views run every request
    on a fresh event loop, and pooled connections cannot outlive the loop that
    opened them.
    """

    structured_output = True

    def __init__(self, settings: GenerationSettings, client: Optional[Any] = None) -> None:
        if client is None and not settings.api_key:
            raise GenerationFailure("OPENAI_API_KEY is not configured.")
        self.settings = settings
        self.model_name = settings.model
        self._client = client

    def _open_client(self) -> Any:
        if self._client is not None:
            return contextlib.nullcontext(self._client)
        return openai.AsyncOpenAI(
            api_key=self.settings.api_key,
            base_url=self.settings.base_url,
            timeout=self.settings.timeout_seconds,
            max_retries=0,
        )

    # ---------------- heuristics ----------------
    def _uses_responses_api(self) -> bool:
        name = self.model_name.lower()
        return name.startswith(("gpt-5", "o3", "o4", "gpt-4.1"))

    # ---------------- public API ----------------
    async def invoke(self, prompt: str, shape: OutputShape) -> str:
        async with self._open_client() as client:
            if self._uses_responses_api():
                return await self._call_responses(client, prompt, shape)
            return await self._call_chat(client, prompt, shape)

    # ---------------- internal callers ----------------
    async def _call_responses(self, client: Any, prompt: str, shape: OutputShape) -> str:
        payload = _clean_kwargs(
            {
                "model": self.model_name,
                "input": prompt,
                "max_output_tokens": self.settings.max_output_tokens,
                "temperature": self.settings.temperature,
                "top_p": self.settings.top_p,
                "text": {
                    "format": {
                        "type": "json_schema",
                        "name": shape.name,
                        "schema": shape.json_schema(),
                        "strict": True,
                    }
                },
            }
        )
        resp = await client.responses.create(**payload)
        text = (getattr(resp, "output_text", None) or "").strip()
        if not text:
            raise GenerationFailure(
                f"Model returned no text content. Raw response (truncated): {_shorten_debug(str(resp))}"
            )
        return text

    async def _call_chat(self, client: Any, prompt: str, shape: OutputShape) -> str:
        kwargs = _clean_kwargs(
            {
                "model": self.model_name,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": self.settings.max_output_tokens,
                "temperature": self.settings.temperature,
                "top_p": self.settings.top_p,
                "n": 1,
                "response_format": {
                    "type": "json_schema",
                    "json_schema": {
                        "name": shape.name,
                        "schema": shape.json_schema(),
                        "strict": True,
                    },
                },
            }
        )
        resp = await client.chat.completions.create(**kwargs)
        text = _extract_text_from_chat(resp).strip()
        if not text:
            raise GenerationFailure(
                f"Chat completion returned no text. Raw response (truncated): {_shorten_debug(str(resp))}"
            )
        return text


def _clean_kwargs(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def _extract_text_from_chat(resp: Any) -> str:
    choices = getattr(resp, "choices", []) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    refusal = getattr(message, "refusal", None)
    if refusal:
        raise GenerationFailure(f"The model refused the request: {refusal}")
    return str(getattr(message, "content", None) or "")


def _shorten_debug(s: str, limit: int = 1200) -> str:
    s = s.replace("\n", " ")
    return (s[:limit] + "…") if len(s) > limit else s


def build_capability(settings: GenerationSettings) -> TextGenerationCapability:
    """Instantiate the capability named by ``settings.provider``."""

    if settings.provider == "openai":
        return OpenAIStructuredGenerator(settings)
    if settings.provider == "local":
        if not settings.local_model_path:
            raise GenerationFailure("TEXT_GENERATOR_MODEL_PATH is required for the local provider.")
        # Imported lazily so torch is only loaded when a local model is configured.
        from .local_generation import LocalTextGenerator

        return LocalTextGenerator(settings)
    raise GenerationFailure(f"Unknown generation provider '{settings.provider}'.")


__all__ = [
    "GenerationFailure",
    "GenerationSettings",
    "GenerationTimeout",
    "ModelInvoker",
    "OpenAIStructuredGenerator",
    "TextGenerationCapability",
    "build_capability",
]
