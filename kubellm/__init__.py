"""
KubeLLM: Provider Dispatch Engine

Routes natural-language prompts to third-party text-generation providers
(Anthropic, OpenAI, Groq), applies a shared timeout/retry policy, and
persists every prompt/response pair for later retrieval.
"""

__version__ = "0.1.0"
