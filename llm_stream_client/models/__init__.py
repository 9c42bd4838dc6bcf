"""Model references consumed by the streaming core."""

from .model import ModelRef, normalize_provider

__all__ = [
    "ModelRef",
    "normalize_provider",
]
