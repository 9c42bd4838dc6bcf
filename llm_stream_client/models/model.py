"""Model references.

A ``ModelRef`` names the provider and model a stream was requested for. The
provider id selects the stream decoder; the pair is echoed on the assembled
response.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

# Provider ids that share another provider's wire format.
_PROVIDER_ALIASES = {
    "bedrock": "amazon_bedrock",
    "amazon-bedrock": "amazon_bedrock",
    "gemini": "google",
    "claude": "anthropic",
}


def normalize_provider(provider: str) -> str:
    """Lower-case ``provider`` and resolve well-known aliases."""
    key = (provider or "").strip().lower()
    return _PROVIDER_ALIASES.get(key, key)


# -----------------------------------------------------------------------------
# ModelRef
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ModelRef:
    provider: str
    model: str

    def __post_init__(self) -> None:
        if not self.provider or not self.model:
            raise ValueError("ModelRef requires both a provider and a model id")
        object.__setattr__(self, "provider", normalize_provider(self.provider))

    @property
    def spec(self) -> str:
        return f"{self.provider}:{self.model}"

    def __str__(self) -> str:
        return self.spec

    @classmethod
    def parse(cls, value: str) -> "ModelRef":
        """Parse ``"provider:model"``.

        Only the first colon separates the provider, so ids such as
        ``"amazon_bedrock:anthropic.claude-3-haiku-20240307-v1:0"`` keep their tail.
        """
        provider, sep, model = (value or "").partition(":")
        if not sep or not provider.strip() or not model.strip():
            raise ValueError(f"Model spec must look like 'provider:model', got {value!r}")
        return cls(provider=provider.strip(), model=model.strip())

    @classmethod
    def coerce(cls, value: Any) -> "ModelRef":
        """Accept a ModelRef, a ``"provider:model"`` string or a mapping with both keys."""
        if isinstance(value, ModelRef):
            return value
        if isinstance(value, str):
            return cls.parse(value)
        if isinstance(value, Mapping):
            provider: Optional[str] = value.get("provider")
            model: Optional[str] = value.get("model") or value.get("id")
            if provider and model:
                return cls(provider=str(provider), model=str(model))
        raise ValueError(f"Cannot build a model reference from {value!r}")
