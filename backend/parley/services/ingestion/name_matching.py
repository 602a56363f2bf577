"""
Fuzzy Name Matching

Resolves a free-text name (from a parser or from AI output) to a known person.

Strategies, strongest first:
1. exact       - normalized strings equal                         → score 1.0
2. partial     - one name contains the other ("Allison" / "Allison Wilson")
                 score = shorter/longer, accepted above 0.5, × 0.95
3. normalized  - first or last name token equal, overall Levenshtein
                 similarity above 0.5, × 0.9
4. fuzzy       - Levenshtein similarity at or above the caller threshold

The person directory is always passed in. Nothing here reads shared state.
Callers apply their own confidence bands (e.g. ≥0.8 link, 0.6–0.8 ask, <0.6 new).
"""
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ...models.ingestion import MatchType, NameMatchResult


def normalize_name(name: str) -> str:
    """Lowercase, trim, collapse internal whitespace."""
    return " ".join((name or "").lower().split())


def _name_parts(full_name: str) -> Dict[str, Any]:
    parts = normalize_name(full_name).split(" ")
    parts = [p for p in parts if p]
    return {
        "first": parts[0] if parts else "",
        "last": parts[-1] if parts else "",
        "all": parts,
    }


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert/delete/substitute, unit cost)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            if ca == cb:
                current.append(previous[j - 1])
            else:
                current.append(min(previous[j - 1], previous[j], current[j - 1]) + 1)
        previous = current
    return previous[-1]


def name_similarity(name1: str, name2: str) -> float:
    """1 - distance / max length over normalized names, in [0, 1]."""
    n1 = normalize_name(name1)
    n2 = normalize_name(name2)
    if n1 == n2:
        return 1.0
    max_len = max(len(n1), len(n2))
    if max_len == 0:
        return 0.0
    return 1 - (levenshtein_distance(n1, n2) / max_len)


def _person_fields(person: Any) -> Optional[Dict[str, str]]:
    """Accept ORM rows, dataclasses or plain dicts with id/full_name."""
    if isinstance(person, dict):
        person_id = person.get("id")
        full_name = person.get("full_name") or person.get("fullName")
    else:
        person_id = getattr(person, "id", None)
        full_name = getattr(person, "full_name", None)
    if not person_id or not full_name:
        return None
    return {"id": str(person_id), "full_name": str(full_name)}


def _containment_score(a: str, b: str) -> Optional[float]:
    if not a or not b:
        return None
    if a in b or b in a:
        return min(len(a), len(b)) / max(len(a), len(b))
    return None


def find_best_match(
    extracted_name: str,
    existing_people: Sequence[Any],
    threshold: float = 0.6,
) -> Optional[NameMatchResult]:
    """
    Find the best matching person for an extracted name.

    Returns None when nothing clears its strategy's acceptance bar.
    Ties keep the first-seen candidate.
    """
    if not extracted_name or not existing_people:
        return None

    normalized_extracted = normalize_name(extracted_name)
    if not normalized_extracted:
        return None
    extracted_parts = _name_parts(extracted_name)

    best: Optional[NameMatchResult] = None

    def consider(candidate: NameMatchResult):
        nonlocal best
        if best is None or candidate.match_score > best.match_score:
            best = candidate

    for person in existing_people:
        fields = _person_fields(person)
        if fields is None:
            continue
        normalized_existing = normalize_name(fields["full_name"])

        if normalized_extracted == normalized_existing:
            return NameMatchResult(
                person_id=fields["id"],
                person_name=fields["full_name"],
                match_score=1.0,
                match_type=MatchType.EXACT,
            )

        containment = _containment_score(normalized_extracted, normalized_existing)
        if containment is not None and containment > 0.5:
            consider(NameMatchResult(
                person_id=fields["id"],
                person_name=fields["full_name"],
                match_score=containment * 0.95,
                match_type=MatchType.PARTIAL,
            ))

        similarity = name_similarity(extracted_name, fields["full_name"])

        existing_parts = _name_parts(fields["full_name"])
        if (
            extracted_parts["first"] == existing_parts["first"]
            or extracted_parts["last"] == existing_parts["last"]
        ):
            if similarity > 0.5:
                consider(NameMatchResult(
                    person_id=fields["id"],
                    person_name=fields["full_name"],
                    match_score=similarity * 0.9,
                    match_type=MatchType.NORMALIZED,
                ))

        if similarity >= threshold:
            consider(NameMatchResult(
                person_id=fields["id"],
                person_name=fields["full_name"],
                match_score=similarity,
                match_type=MatchType.FUZZY,
            ))

    return best


def find_all_matches(
    extracted_name: str,
    existing_people: Sequence[Any],
    threshold: float = 0.4,
) -> List[NameMatchResult]:
    """Every candidate at or above threshold, best first, for UI disambiguation."""
    if not extracted_name or not existing_people:
        return []

    normalized_extracted = normalize_name(extracted_name)
    if not normalized_extracted:
        return []

    matches: List[NameMatchResult] = []
    for person in existing_people:
        fields = _person_fields(person)
        if fields is None:
            continue
        normalized_existing = normalize_name(fields["full_name"])

        if normalized_extracted == normalized_existing:
            matches.append(NameMatchResult(fields["id"], fields["full_name"], 1.0, MatchType.EXACT))
            continue

        containment = _containment_score(normalized_extracted, normalized_existing)
        if containment is not None and containment >= threshold:
            matches.append(NameMatchResult(
                fields["id"], fields["full_name"], containment * 0.95, MatchType.PARTIAL,
            ))
            continue

        similarity = name_similarity(extracted_name, fields["full_name"])
        if similarity >= threshold:
            matches.append(NameMatchResult(fields["id"], fields["full_name"], similarity, MatchType.FUZZY))

    # sort() is stable: equal scores keep directory order
    matches.sort(key=lambda m: m.match_score, reverse=True)
    return matches


def auto_match_people(
    extracted_names: Iterable[str],
    existing_people: Sequence[Any],
    high_confidence_threshold: float = 0.8,
) -> Dict[int, NameMatchResult]:
    """Map extracted-name index → best match scoring at or above the threshold."""
    matches: Dict[int, NameMatchResult] = {}
    for index, name in enumerate(extracted_names):
        match = find_best_match(name, existing_people, high_confidence_threshold)
        if match and match.match_score >= high_confidence_threshold:
            matches[index] = match
    return matches
