"""Normalized streaming chunks.

A chunk is the unit of normalized streaming output handed to consumers. Four
variants exist, each a frozen dataclass tagged by ``kind``:

- ``ContentChunk``   assistant-visible text fragment
- ``ReasoningChunk`` internal reasoning / thinking fragment
- ``ToolCallChunk``  fully or partially materialized tool invocation
- ``MetaChunk``      out-of-band signals (usage, finish reason, ...)

``validate_chunk`` is applied by the session before a chunk is queued.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, Optional

from ..core.errors import ChunkValidationError

CONTENT = "content"
REASONING = "reasoning"
TOOL_CALL = "tool_call"
META = "meta"


class Chunk:
    """Common base of every chunk variant; also hosts the variant constructors."""

    __slots__ = ()

    kind: ClassVar[str] = ""

    @staticmethod
    def text(text: str, metadata: Optional[Mapping[str, Any]] = None) -> "ContentChunk":
        return ContentChunk(text=text, metadata=dict(metadata or {}))

    @staticmethod
    def reasoning(text: str, metadata: Optional[Mapping[str, Any]] = None) -> "ReasoningChunk":
        return ReasoningChunk(text=text, metadata=dict(metadata or {}))

    @staticmethod
    def tool_call(
        name: str,
        arguments: Optional[Mapping[str, Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> "ToolCallChunk":
        return ToolCallChunk(name=name, arguments=dict(arguments or {}), metadata=dict(metadata or {}))

    @staticmethod
    def meta(fields: Mapping[str, Any]) -> "MetaChunk":
        return MetaChunk(fields=dict(fields))


@dataclass(frozen=True, slots=True)
class ContentChunk(Chunk):
    kind: ClassVar[str] = CONTENT

    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ReasoningChunk(Chunk):
    kind: ClassVar[str] = REASONING

    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolCallChunk(Chunk):
    kind: ClassVar[str] = TOOL_CALL

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def call_id(self) -> Optional[str]:
        value = self.metadata.get("id") or self.metadata.get("tool_call_id")
        return str(value) if value is not None else None

    @property
    def index(self) -> int:
        value = self.metadata.get("index", 0)
        return value if isinstance(value, int) else 0


@dataclass(frozen=True, slots=True)
class MetaChunk(Chunk):
    kind: ClassVar[str] = META

    fields: dict[str, Any] = field(default_factory=dict)


_VARIANTS: dict[str, type[Chunk]] = {
    CONTENT: ContentChunk,
    REASONING: ReasoningChunk,
    TOOL_CALL: ToolCallChunk,
    META: MetaChunk,
}


def validate_chunk(chunk: Any) -> Chunk:
    """Return ``chunk`` unchanged if it satisfies the chunk invariants.

    Raises:
        ChunkValidationError: unknown kind, or a required field is missing/mistyped.
    """
    kind = getattr(chunk, "kind", None)
    variant = _VARIANTS.get(kind) if isinstance(kind, str) else None
    if variant is None or type(chunk) is not variant:
        raise ChunkValidationError(f"Unrecognized chunk kind: {kind!r} ({type(chunk).__name__})")

    if isinstance(chunk, (ContentChunk, ReasoningChunk)):
        if not isinstance(chunk.text, str):
            raise ChunkValidationError(f"{kind} chunk requires text, got {type(chunk.text).__name__}")
    elif isinstance(chunk, ToolCallChunk):
        if not isinstance(chunk.name, str) or not chunk.name:
            raise ChunkValidationError("tool_call chunk requires a name")
        if not isinstance(chunk.arguments, Mapping):
            raise ChunkValidationError("tool_call chunk requires an arguments map")
    elif isinstance(chunk, MetaChunk):
        if not isinstance(chunk.fields, Mapping):
            raise ChunkValidationError("meta chunk requires a fields map")
    return chunk
