"""Tests for ModelRef parsing and provider normalization."""

from __future__ import annotations

import pytest

from llm_stream_client.models import ModelRef, normalize_provider


def test_parse_splits_on_first_colon_only() -> None:
    ref = ModelRef.parse("bedrock:anthropic.claude-3-haiku-20240307-v1:0")
    assert ref.provider == "amazon_bedrock"
    assert ref.model == "anthropic.claude-3-haiku-20240307-v1:0"
    assert str(ref) == "amazon_bedrock:anthropic.claude-3-haiku-20240307-v1:0"


@pytest.mark.parametrize("value", ["gpt-4o", ":gpt-4o", "openai:", "", "  :  "])
def test_parse_rejects_malformed_specs(value) -> None:
    with pytest.raises(ValueError):
        ModelRef.parse(value)


def test_coerce_accepts_refs_strings_and_mappings() -> None:
    ref = ModelRef("OpenAI", "gpt-4o")
    assert ModelRef.coerce(ref) is ref
    assert ModelRef.coerce("openai:gpt-4o") == ref
    assert ModelRef.coerce({"provider": "openai", "id": "gpt-4o"}) == ref
    assert ModelRef.coerce({"provider": "openai", "model": "gpt-4o"}) == ref
    with pytest.raises(ValueError):
        ModelRef.coerce({"provider": "openai"})
    with pytest.raises(ValueError):
        ModelRef.coerce(42)


def test_provider_aliases() -> None:
    assert normalize_provider(" Gemini ") == "google"
    assert normalize_provider("claude") == "anthropic"
    assert normalize_provider("groq") == "groq"


def test_model_ref_requires_both_parts() -> None:
    with pytest.raises(ValueError):
        ModelRef("", "gpt-4o")
