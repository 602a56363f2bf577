"""
Ingestion - hashing, name matching, fragment dedup, continuity and import orchestration
"""
from .message_hash import generate_message_hash, generate_message_hashes, normalize_hash_text
from .name_matching import (
    auto_match_people,
    find_all_matches,
    find_best_match,
    levenshtein_distance,
    name_similarity,
    normalize_name,
)
from .fragment_dedup import deduplicate_parsed_messages
from .text_matching import extract_first_sentence, normalize_text_for_matching
from .continuity import ContinuityDetector
from .import_service import ImportService, ImportServiceError

__all__ = [
    "generate_message_hash",
    "generate_message_hashes",
    "normalize_hash_text",
    "auto_match_people",
    "find_all_matches",
    "find_best_match",
    "levenshtein_distance",
    "name_similarity",
    "normalize_name",
    "deduplicate_parsed_messages",
    "extract_first_sentence",
    "normalize_text_for_matching",
    "ContinuityDetector",
    "ImportService",
    "ImportServiceError",
]
