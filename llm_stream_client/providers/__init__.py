"""Provider stream decoders.

Submodules:
    base: Framing / EventDecoder protocols and the decoder registry
    openai: Chat Completions and Responses API decoders
    anthropic: Messages API decoder
    google: Gemini decoder
    bedrock: Bedrock event-stream decoder (wraps the Anthropic decoder)

Importing this package registers every shipped decoder.
"""

from functools import partial

from .anthropic import AnthropicDecoder
from .base import (
    EventDecoder,
    Framing,
    SSEJSONDecoder,
    get_decoder,
    register_decoder,
    registered_providers,
)
from .bedrock import BedrockDecoder
from .google import GoogleDecoder
from .openai import OpenAIChatDecoder, OpenAIResponsesDecoder

register_decoder("openai", OpenAIChatDecoder)
register_decoder("openai_responses", OpenAIResponsesDecoder)
register_decoder("groq", partial(OpenAIChatDecoder, "groq"))
register_decoder("xai", partial(OpenAIChatDecoder, "xai"))
register_decoder("openrouter", partial(OpenAIChatDecoder, "openrouter"))
register_decoder("anthropic", AnthropicDecoder)
register_decoder("google", GoogleDecoder)
register_decoder("amazon_bedrock", BedrockDecoder)

__all__ = [
    "AnthropicDecoder",
    "BedrockDecoder",
    "EventDecoder",
    "Framing",
    "GoogleDecoder",
    "OpenAIChatDecoder",
    "OpenAIResponsesDecoder",
    "SSEJSONDecoder",
    "get_decoder",
    "register_decoder",
    "registered_providers",
]
