"""
Content Hasher

Deterministic per-message fingerprint used for deduplication.

Input: (sender id or sender name, sent_at, raw text)
- Timestamp is reduced to minute precision so sub-minute jitter between
  re-exports of the same conversation still hashes equal.
- Text is lowercased, whitespace-collapsed and cut to a fixed prefix: the hash
  captures message identity, not full content.

Not a security primitive. Only collision avoidance inside one conversation matters.
"""
import hashlib
import re
from datetime import datetime
from typing import Iterable, List, Optional, Union

from .timestamps import minute_key

HASH_TEXT_PREFIX_LENGTH = 200
HASH_LENGTH = 32

_WHITESPACE = re.compile(r"\s+")


def normalize_hash_text(raw_text: Optional[str]) -> str:
    """Lowercase, collapse whitespace, trim, then keep the fixed-length prefix."""
    collapsed = _WHITESPACE.sub(" ", (raw_text or "").lower()).strip()
    return collapsed[:HASH_TEXT_PREFIX_LENGTH]


def generate_message_hash(
    sender_key: Optional[str],
    sent_at: Union[str, datetime, None],
    raw_text: Optional[str],
) -> str:
    """
    Generate the content hash for one message.

    Pure function: identical inputs always give identical output.
    """
    hash_input = f"{sender_key or ''}|{minute_key(sent_at)}|{normalize_hash_text(raw_text)}"
    return hashlib.sha256(hash_input.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def generate_message_hashes(messages: Iterable[dict]) -> List[str]:
    """Hash a batch of {"sender_id", "sent_at", "raw_text"} mappings, preserving order."""
    return [
        generate_message_hash(m.get("sender_id"), m.get("sent_at"), m.get("raw_text", ""))
        for m in messages
    ]
