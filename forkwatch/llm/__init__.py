"""forkwatch LLM integration.

Provides a thin wrapper around the Anthropic API and the prompt used to
write the narrative part of scan summaries.
"""

from forkwatch.llm.client import LLMClient, LLMResponse

__all__ = [
    "LLMClient",
    "LLMResponse",
]
