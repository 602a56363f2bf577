"""
Post-Parse Fragment Deduplicator

Upstream parsers sometimes split one physical message into several records,
e.g. treating "Thank you for asking that." mid-paragraph as a new message
header. This pass discards the fragments.

Rules:
1. Sort by (sent_at, -body length): for equal timestamps the longest body is seen first.
2. For each kept message, scan later records from the SAME sender within the
   fragment window (5 seconds).
3. A later record whose normalized body is a substring of the current
   normalized body is a fragment: drop it and record a warning.
4. Re-sort the survivors chronologically.

Idempotent: running it on its own output merges nothing.
"""
import logging
import re
from typing import List, Sequence

from ...models.ingestion import DeduplicationResult, ParsedMessage
from .timestamps import to_naive_utc

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 5.0

_WHITESPACE = re.compile(r"\s+")
_PUNCTUATION = re.compile(r"[^\w\s]")


def normalize_fragment_text(text: str) -> str:
    """Lowercase, collapse whitespace, strip punctuation."""
    text = _WHITESPACE.sub(" ", (text or "").lower())
    text = _PUNCTUATION.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def _same_sender(a: ParsedMessage, b: ParsedMessage) -> bool:
    return (a.sender_name or "").strip().lower() == (b.sender_name or "").strip().lower()


def deduplicate_parsed_messages(
    messages: Sequence[ParsedMessage],
    window_seconds: float = DEFAULT_WINDOW_SECONDS,
) -> DeduplicationResult:
    """Remove false message splits produced by an upstream parser."""
    if len(messages) <= 1:
        return DeduplicationResult(messages=list(messages), merged_count=0, warnings=[])

    ordered = sorted(
        messages,
        key=lambda m: (to_naive_utc(m.sent_at), -len(m.body or "")),
    )
    normalized = [normalize_fragment_text(m.body) for m in ordered]

    warnings: List[str] = []
    discarded = set()
    kept: List[ParsedMessage] = []

    for i, current in enumerate(ordered):
        if i in discarded:
            continue
        current_time = to_naive_utc(current.sent_at)

        for j in range(i + 1, len(ordered)):
            if j in discarded:
                continue
            candidate = ordered[j]
            gap = (to_naive_utc(candidate.sent_at) - current_time).total_seconds()
            # Sorted by time, so nothing further along can be inside the window
            if gap >= window_seconds:
                break
            if not _same_sender(current, candidate):
                continue
            if normalized[j] in normalized[i]:
                discarded.add(j)
                preview = (candidate.body or "")[:50]
                warnings.append(
                    f"Discarded duplicate fragment from {candidate.sender_name} at "
                    f"{to_naive_utc(candidate.sent_at).isoformat()}: \"{preview}...\""
                )

        kept.append(current)

    kept.sort(key=lambda m: to_naive_utc(m.sent_at))

    if discarded:
        logger.warning(f"Fragment dedup discarded {len(discarded)} of {len(ordered)} parsed messages")
        for warning in warnings:
            logger.debug(warning)

    return DeduplicationResult(messages=kept, merged_count=len(discarded), warnings=warnings)
