"""
Token counting for model context budgets.
"""

import tiktoken

# Use a tokenizer compatible with common models
_encoder = tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str) -> int:
    """Return the token count for *text*."""
    if not text:
        return 0
    return len(_encoder.encode(text))


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Cut *text* to at most *max_tokens*, preferring a paragraph boundary."""
    if not text:
        return ""
    tokens = _encoder.encode(text)
    if len(tokens) <= max_tokens:
        return text
    cut = _encoder.decode(tokens[:max_tokens])
    boundary = cut.rfind("\n\n")
    if boundary > len(cut) // 2:
        cut = cut[:boundary]
    return cut + "\n\n[Note: Content truncated to fit context limits]"
