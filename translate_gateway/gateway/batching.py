"""Budget-aware batching of translation inputs.

``split_by_budget`` groups inputs into provider-sized chunks, enforcing three
ceilings at once: item count, character count and estimated tokens. A
single input that alone exceeds a ceiling is shipped as its own chunk.

Token estimation is a heuristic (CJK/Kana/Hangul ≈ 1 token per character,
everything else ≈ 1 token per 4 characters) — treat the token budget as
headroom, not as a guarantee against provider-side limits.
"""

from __future__ import annotations

import math
import re
from collections.abc import Sequence

from translate_gateway.gateway.types import BatchBudget

_CJK_RANGES = (
    (0x4E00, 0x9FFF),  # CJK unified ideographs
    (0x3040, 0x30FF),  # Hiragana + Katakana
    (0xAC00, 0xD7AF),  # Hangul syllables
)

_WORD_CHAR = re.compile(r"[A-Za-z0-9\u4e00-\u9fff\u3040-\u30ff\uac00-\ud7af]")


def _is_cjk(ch: str) -> bool:
    code = ord(ch)
    return any(lo <= code <= hi for lo, hi in _CJK_RANGES)


def estimate_tokens(text: str) -> int:
    text = text or ""
    cjk = sum(1 for ch in text if _is_cjk(ch))
    non_cjk = max(0, len(text) - cjk)
    return cjk + math.ceil(non_cjk / 4)


def split_by_budget(
    inputs: Sequence[str],
    max_items: int = 20,
    max_chars: int = 8000,
    token_budget: int = 2000,
) -> list[list[str]]:
    """Greedy single-pass split of ``inputs`` into budget-bounded chunks.

    Order is preserved and nothing is dropped: concatenating the chunks gives
    back ``inputs``. Every chunk has at least one item.
    """
    chunks: list[list[str]] = []
    current: list[str] = []
    chars = 0
    tokens = 0

    def flush() -> None:
        nonlocal current, chars, tokens
        if current:
            chunks.append(current)
        current, chars, tokens = [], 0, 0

    for raw in inputs:
        text = "" if raw is None else str(raw)
        text_chars = len(text)
        text_tokens = estimate_tokens(text)

        if current and (
            len(current) + 1 > max_items
            or chars + text_chars > max_chars
            or tokens + text_tokens > token_budget
        ):
            flush()

        current.append(text)
        chars += text_chars
        tokens += text_tokens

        # A chunk that exactly fills a budget closes without waiting for the next item
        if len(current) >= max_items or chars >= max_chars or tokens >= token_budget:
            flush()

    flush()
    return chunks


def split_with_budget(inputs: Sequence[str], budget: BatchBudget) -> list[list[str]]:
    return split_by_budget(
        inputs,
        max_items=budget.max_items,
        max_chars=budget.max_chars,
        token_budget=budget.token_budget,
    )


def is_skippable_segment(text: str, min_len: int = 2) -> bool:
    """Too short after trimming, or no letters/digits/CJK at all (pure noise)."""
    stripped = (text or "").strip()
    if len(stripped) < max(0, int(min_len)):
        return True
    return _WORD_CHAR.search(stripped) is None
