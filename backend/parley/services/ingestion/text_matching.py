"""
Text normalisation for matching message text across different exporters.

Parsers disagree on smart quotes, dashes, ellipses and exotic spaces; every
comparison used for continuity detection goes through normalize_text_for_matching.
"""
import re

FIRST_SENTENCE_MIN_LENGTH = 20
FIRST_SENTENCE_MAX_LENGTH = 150

_SMART_SINGLE_QUOTES = re.compile("[\u2018\u2019\u201A\u201B]")
_SMART_DOUBLE_QUOTES = re.compile("[\u201C\u201D\u201E\u201F]")
_DASHES = re.compile("[\u2013\u2014\u2015]")
_SPECIAL_SPACES = re.compile("[\u00A0\u2000-\u200B\u202F\u205F\u3000]")
_SPACED_APOSTROPHE = re.compile(r"\s*'\s*")
_WHITESPACE = re.compile(r"\s+")
_FIRST_SENTENCE = re.compile(r"^[^.!?]+[.!?]?")


def normalize_text_for_matching(text: str) -> str:
    if not text:
        return ""
    text = _SMART_SINGLE_QUOTES.sub("'", text)
    text = _SMART_DOUBLE_QUOTES.sub('"', text)
    text = _DASHES.sub("-", text)
    text = text.replace("\u2026", "...")
    text = _SPECIAL_SPACES.sub(" ", text)
    # "I ' m" → "I'm"
    text = _SPACED_APOSTROPHE.sub("'", text)
    text = _WHITESPACE.sub(" ", text)
    return text.strip().lower()


def extract_first_sentence(text: str) -> str:
    """
    Normalized first sentence of a message, for continuity matching.

    Text up to and including the first ., ! or ?; without a terminator the
    first 150 characters. Returns "" when shorter than 20 characters, since
    short sentences match by accident too often.
    """
    normalized = normalize_text_for_matching(text)
    if not normalized:
        return ""

    match = _FIRST_SENTENCE.match(normalized)
    if match:
        sentence = match.group(0).strip()
        if not match.group(0).endswith((".", "!", "?")):
            sentence = sentence[:FIRST_SENTENCE_MAX_LENGTH].strip()
    else:
        sentence = normalized[:FIRST_SENTENCE_MAX_LENGTH]

    return sentence if len(sentence) >= FIRST_SENTENCE_MIN_LENGTH else ""
