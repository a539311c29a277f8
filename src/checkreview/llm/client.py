"""Language-model invocation service.

``LanguageModel.evaluate(prompt, context)`` is the single seam the
review engine talks to. The litellm-backed client walks the model
chain (primary, then fallbacks) and returns the parsed JSON object.
Per-call retries of missing or malformed output belong to callers.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, cast

from circuitbreaker import CircuitBreakerError

from checkreview.config import Settings
from checkreview.constants import ProcessMode
from checkreview.domain.documents import ReviewDocument
from checkreview.domain.value_objects import AiApiConfig
from checkreview.llm._llm_call import guarded_llm_call
from checkreview.resilience.errors import (
    classify_error,
    is_context_length_error,
)

logger = logging.getLogger(__name__)


class LLMCallError(Exception):
    """Every model in the chain failed or the circuit was open."""


class LLMResponseError(LLMCallError):
    """The model answered, but not with a JSON object."""


@dataclass(frozen=True)
class EvaluationContext:
    """Everything besides the prompt that shapes one model call."""

    purpose: str
    system_prompt: str
    documents: list[ReviewDocument] = field(
        default_factory=lambda: list[ReviewDocument]()
    )


class LanguageModel(Protocol):
    async def evaluate(
        self, prompt: str, context: EvaluationContext
    ) -> dict[str, Any]: ...


type LanguageModelFactory = Callable[[AiApiConfig], LanguageModel]


def build_messages(
    prompt: str, context: EvaluationContext
) -> list[dict[str, Any]]:
    """Assemble a multimodal chat request from documents and prompt."""
    parts: list[dict[str, Any]] = []
    for doc in context.documents:
        if doc.process_mode == ProcessMode.IMAGE:
            parts.append({"type": "text", "text": f"# Document: {doc.name}"})
            parts.extend(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:image/png;base64,{image}"},
                }
                for image in doc.images
            )
        else:
            parts.append(
                {
                    "type": "text",
                    "text": f"# Document: {doc.name}\n\n{doc.text}",
                }
            )
    parts.append({"type": "text", "text": prompt})
    return [
        {"role": "system", "content": context.system_prompt},
        {"role": "user", "content": parts},
    ]


class LiteLLMClient:
    """litellm-backed LanguageModel bound to one credential."""

    def __init__(self, settings: Settings, api_config: AiApiConfig) -> None:
        self._settings = settings
        self._api_config = api_config

    @classmethod
    def factory(cls, settings: Settings) -> LanguageModelFactory:
        def _build(api_config: AiApiConfig) -> LanguageModel:
            return cls(settings, api_config)

        return _build

    @property
    def model_chain(self) -> list[str]:
        if self._api_config.model:
            return [self._api_config.model]
        return list(self._settings.litellm_model_chain)

    async def evaluate(
        self, prompt: str, context: EvaluationContext
    ) -> dict[str, Any]:
        """Call the chain and return the first parseable JSON object.

        Context-window errors are raised immediately: a fallback model
        will not fit a document the primary rejected, and the large
        review splits on exactly this error.
        """
        messages = build_messages(prompt, context)
        last_error: Exception | None = None

        for model in self.model_chain:
            try:
                result = await guarded_llm_call(
                    model,
                    messages,
                    self._settings.llm_timeout_seconds,
                    api_key=self._api_config.api_key,
                    api_base=self._api_config.api_url,
                )
            except CircuitBreakerError as exc:
                logger.warning(
                    "event=circuit_open model=%s purpose=%s",
                    model,
                    context.purpose,
                )
                last_error = exc
                continue
            except Exception as exc:
                if is_context_length_error(exc):
                    raise
                logger.warning(
                    "event=llm_call_failed model=%s purpose=%s class=%s",
                    model,
                    context.purpose,
                    classify_error(exc).value,
                    exc_info=True,
                )
                last_error = exc
                continue

            if result.finish_reason == "length":
                logger.warning(
                    "event=llm_output_truncated model=%s purpose=%s",
                    model,
                    context.purpose,
                )
            try:
                return parse_json_object(result.content)
            except LLMResponseError as exc:
                logger.warning(
                    "event=llm_parse_failed model=%s purpose=%s"
                    " response_len=%d",
                    model,
                    context.purpose,
                    len(result.content),
                )
                last_error = exc
                continue

        raise LLMCallError(
            f"all models failed for {context.purpose}: {last_error}"
        ) from last_error


def parse_json_object(raw: str) -> dict[str, Any]:
    """Parse model output into a dict, tolerating fenced code blocks."""
    text = raw.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.startswith("json"):
            text = text[len("json"):]
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise LLMResponseError("model output is not valid JSON") from exc
    if isinstance(data, list):
        return {"results": cast(list[Any], data)}
    if not isinstance(data, dict):
        raise LLMResponseError("model output is not a JSON object")
    return cast(dict[str, Any], data)
