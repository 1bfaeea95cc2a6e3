"""
SDK for AI Call Guard.

Provides the chat-completion client the guarded services call.
"""

from .deepseek_client import ChatCompletionClient, Completion, DeepSeekClient

__all__ = ["ChatCompletionClient", "Completion", "DeepSeekClient"]
