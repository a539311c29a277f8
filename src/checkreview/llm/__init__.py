"""Language-model access — guarded litellm calls and output schemas."""

from checkreview.llm._llm_call import LLMCallResult, guarded_llm_call
from checkreview.llm.client import (
    EvaluationContext,
    LanguageModel,
    LanguageModelFactory,
    LiteLLMClient,
    LLMCallError,
    LLMResponseError,
)

__all__ = [
    "EvaluationContext",
    "LLMCallError",
    "LLMCallResult",
    "LLMResponseError",
    "LanguageModel",
    "LanguageModelFactory",
    "LiteLLMClient",
    "guarded_llm_call",
]
