from __future__ import annotations

import math
import re
from typing import Any, Dict, Iterable, Optional, Union

from backstream.models import ChatMessage, UsageSummary


FALLBACK_INPUT_COST_PER_MILLION = 1.0
FALLBACK_OUTPUT_COST_PER_MILLION = 4.0
TOKENS_PER_WORD = 1.33

_PROMPT_KEYS = ("prompt_tokens", "promptTokens")
_COMPLETION_KEYS = ("completion_tokens", "completionTokens")
_TOTAL_KEYS = ("total_tokens", "totalTokens")
_COST_KEYS = ("total_cost", "totalCost", "cost")

_WHITESPACE = re.compile(r"\s+")


def _is_number(value: Any) -> bool:
    # bool is an int subclass; JSON true/false is never a count.
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _read_count(
    usage: Dict[str, Any], keys: tuple[str, ...]
) -> Optional[Union[int, float]]:
    for key in keys:
        value = usage.get(key)
        if _is_number(value) and math.isfinite(value):
            return value
    return None


def _read_float(usage: Dict[str, Any], keys: tuple[str, ...]) -> Optional[float]:
    for key in keys:
        value = usage.get(key)
        if _is_number(value):
            return float(value)
    return None


def normalize_usage(usage: Any) -> UsageSummary:
    """
    Collapse snake_case / camelCase usage variants into a UsageSummary.

    This is the only place upstream field names are inspected.
    """
    if not isinstance(usage, dict):
        return UsageSummary()
    return UsageSummary(
        prompt_tokens=_read_count(usage, _PROMPT_KEYS),
        completion_tokens=_read_count(usage, _COMPLETION_KEYS),
        total_tokens=_read_count(usage, _TOTAL_KEYS),
        total_cost_usd=_read_float(usage, _COST_KEYS),
    )


def count_words(text: str) -> int:
    return len([word for word in _WHITESPACE.split(text) if word])


def estimate_tokens(text: str) -> int:
    """Coarse word-based token estimate: ~1.33 tokens per word, min 1."""
    if not text:
        return 0
    return max(1, math.ceil(count_words(text) * TOKENS_PER_WORD))


def estimate_prompt_tokens(messages: Iterable[ChatMessage]) -> int:
    combined = " ".join(message.content for message in messages)
    return estimate_tokens(combined)


def round_cents(cents: float) -> float:
    """Round to 4 decimal places, clamp at zero; NaN/inf become 0."""
    if not math.isfinite(cents):
        return 0.0
    return max(0.0, round(cents, 4))


def estimate_cost_cents(
    usage: Optional[UsageSummary],
    messages: Iterable[ChatMessage],
    output_text: str,
) -> Optional[float]:
    """
    Convert a completion into cents.

    Upstream-reported cost wins when present. Otherwise token counts come
    from the usage summary, backfilled from the text heuristic, and are
    priced at the fallback per-million rates.

    Returns None when there is nothing to bill (no tokens on either side).
    """
    if usage is not None and usage.total_cost_usd is not None:
        return round_cents(usage.total_cost_usd * 100)

    prompt_tokens = usage.prompt_tokens if usage is not None else None
    completion_tokens = usage.completion_tokens if usage is not None else None
    if prompt_tokens is None:
        prompt_tokens = estimate_prompt_tokens(messages)
    if completion_tokens is None:
        completion_tokens = estimate_tokens(output_text)

    if prompt_tokens <= 0 and completion_tokens <= 0:
        return None

    total_usd = (
        prompt_tokens / 1_000_000 * FALLBACK_INPUT_COST_PER_MILLION
        + completion_tokens / 1_000_000 * FALLBACK_OUTPUT_COST_PER_MILLION
    )
    return round_cents(total_usd * 100)
