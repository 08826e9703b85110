"""LLM module - grounded oracle client, settings and JSON parsing."""

from llm.client.openai_client import (
    LLMError,
    Oracle,
    OracleClient,
    OracleResponse,
    PermanentLLMError,
    ProviderFn,
    TransientLLMError,
)
from llm.parsing import JsonParseError, normalize_root_json, parse_json_lenient
from llm.settings import OracleSettings, get_oracle_settings

__all__ = [
    "LLMError",
    "Oracle",
    "OracleClient",
    "OracleResponse",
    "PermanentLLMError",
    "ProviderFn",
    "TransientLLMError",
    "JsonParseError",
    "normalize_root_json",
    "parse_json_lenient",
    "OracleSettings",
    "get_oracle_settings",
]
