"""LLM provider adapters.

OpenAILLMProvider implements ILLMProvider (src/interfaces/llm_provider.py)
for OpenAI and any OpenAI-compatible chat completions API.  main.py builds
it once and injects it into the services that rewrite queries, extract
personas, and compose answers.
"""

from src.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["OpenAILLMProvider"]
