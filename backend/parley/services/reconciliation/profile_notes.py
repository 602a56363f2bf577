"""
Profile notes from person analyses.

One note per (person, source conversation, type). When an analysis yields
several fragments of the same type (assessment, positive behaviors,
concerns...) they are joined into that single note, so re-analysis replaces
the note instead of stacking copies.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.analysis import PersonAnalysis, PersonConcern
from ...models.db_models import ProfileNoteDB, ProfileNoteType

logger = logging.getLogger(__name__)

NOTE_SEPARATOR = "\n\n"


def _bullets(heading: str, items: List[str]) -> str:
    return f"**{heading}:**\n" + "\n".join(f"- {item}" for item in items)


def _render_concern(concern: PersonConcern) -> str:
    text = f"**{concern.type.upper()}** (Severity: {concern.severity})\n\n{concern.description}"
    if concern.evidence:
        text += f"\n\nEvidence: {'; '.join(concern.evidence)}"
    return text


def build_profile_notes(analysis: PersonAnalysis, as_of: Optional[str] = None) -> Dict[ProfileNoteType, str]:
    """Render a person analysis into at most one note body per note type."""
    as_of = as_of or datetime.utcnow().strftime("%Y-%m-%d")
    sections: Dict[ProfileNoteType, List[str]] = {t: [] for t in ProfileNoteType}

    if analysis.assessment is not None:
        sections[ProfileNoteType.OBSERVATION].append(analysis.assessment.render(as_of))
    if analysis.positive_behaviors:
        sections[ProfileNoteType.OBSERVATION].append(_bullets("Positive Behaviors", analysis.positive_behaviors))
    sections[ProfileNoteType.OBSERVATION].extend(analysis.observations)
    sections[ProfileNoteType.OBSERVATION].extend(_render_concern(c) for c in analysis.concerns)

    if analysis.concerning_behaviors:
        sections[ProfileNoteType.PATTERN].append(_bullets("Concerning Behaviors", analysis.concerning_behaviors))

    if analysis.strategies:
        sections[ProfileNoteType.STRATEGY].append(_bullets("Communication Strategies", analysis.strategies))

    return {
        note_type: NOTE_SEPARATOR.join(parts)
        for note_type, parts in sections.items()
        if parts
    }


class ProfileNoteWriter:
    def __init__(self, db: Session):
        self.db = db

    def upsert_notes(self, conversation_id: str, person_id: str, notes: Dict[ProfileNoteType, str]) -> int:
        """
        Write notes keyed by (person, conversation, type). Flushes, does not commit.

        Note types this conversation no longer produces for the person are deleted.
        """
        previous = (
            self.db.query(ProfileNoteDB)
            .filter(
                ProfileNoteDB.person_id == person_id,
                ProfileNoteDB.source_conversation_id == conversation_id,
            )
            .all()
        )
        for note in previous:
            if note.type not in notes:
                logger.info(f"Removing {note.type.value} note for {person_id} no longer produced by {conversation_id}")
                self.db.delete(note)

        written = 0
        for note_type, content in notes.items():
            note = (
                self.db.query(ProfileNoteDB)
                .filter(
                    ProfileNoteDB.person_id == person_id,
                    ProfileNoteDB.source_conversation_id == conversation_id,
                    ProfileNoteDB.type == note_type,
                )
                .first()
            )
            if note is None:
                note = ProfileNoteDB(
                    id=str(uuid4()),
                    person_id=person_id,
                    source_conversation_id=conversation_id,
                    type=note_type,
                    content=content,
                )
                self.db.add(note)
            else:
                note.content = content
                note.updated_at = datetime.utcnow()
            written += 1
        self.db.flush()
        return written
