"""Focus phase: token-bounded full content of one chunk."""

from __future__ import annotations

from dataclasses import dataclass

from opencontext.rag.llm_client import Tokenizer


@dataclass
class TokenInfo:
    tokenizer: str
    actual_tokens: int


@dataclass
class ContentResult:
    chunk_id: str
    content: str
    token_info: TokenInfo
    truncated: bool = False


def truncate_to_token_budget(text: str, tokenizer: Tokenizer, max_tokens: int) -> tuple[str, int, bool]:
    """Return (text, token_count, truncated) with token_count <= *max_tokens*.

    Text already within budget comes back unchanged. Otherwise the longest
    character prefix whose count fits is found by binary search; the cut may
    fall inside a word, never beyond the budget.
    """
    total = tokenizer.count(text)
    if total <= max_tokens:
        return text, total, False

    # count(text[:lo]) <= max_tokens < count(text[:hi])
    lo, hi = 0, len(text)
    while hi - lo > 1:
        mid = (lo + hi) // 2
        if tokenizer.count(text[:mid]) <= max_tokens:
            lo = mid
        else:
            hi = mid
    prefix = text[:lo]
    return prefix, tokenizer.count(prefix), True
