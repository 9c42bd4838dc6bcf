"""HTTP transport feeding streaming sessions."""

from .aiohttp_transport import AiohttpTransport, StreamRequest

__all__ = [
    "AiohttpTransport",
    "StreamRequest",
]
