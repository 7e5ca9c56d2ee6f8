"""
SDK for Provider Fallback.

Provides client wrappers that record usage and trigger fallback.
"""

from .openai_client import GuardedOpenAI

__all__ = ["GuardedOpenAI"]
