"""Character-based token estimation."""

from __future__ import annotations

from math import ceil, floor

from expert_match.types import ConversationMessage


class TokenEstimator:
    """Estimates tokens as `ceil(chars / chars_per_token)` plus a per-message overhead."""

    def __init__(self, chars_per_token: float = 4.0, message_overhead_tokens: int = 4) -> None:
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token
        self.message_overhead_tokens = message_overhead_tokens

    def count(self, text: str) -> int:
        return ceil(len(text) / self.chars_per_token)

    def message_tokens(self, message: ConversationMessage) -> int:
        return self.count(message.content) + self.message_overhead_tokens

    def total(self, messages: list[ConversationMessage]) -> int:
        return sum(self.message_tokens(message) for message in messages)

    def truncate_message_content(self, text: str, max_tokens: int) -> str:
        """Cut `text` so a message holding it costs at most `max_tokens`."""
        content_tokens = max_tokens - self.message_overhead_tokens
        if content_tokens <= 0:
            return ""
        max_chars = floor(content_tokens * self.chars_per_token)
        if len(text) <= max_chars:
            return text
        if max_chars <= 3:
            return text[:max_chars]
        return text[: max_chars - 3].rstrip() + "..."
