"""LLM client module."""

from llm.client.openai_client import (
    LLMError,
    Oracle,
    OracleClient,
    OracleResponse,
    PermanentLLMError,
    ProviderFn,
    TransientLLMError,
)

__all__ = [
    "LLMError",
    "Oracle",
    "OracleClient",
    "OracleResponse",
    "PermanentLLMError",
    "ProviderFn",
    "TransientLLMError",
]
