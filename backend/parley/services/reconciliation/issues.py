"""
Issue reconciliation.

Re-running the same issue action must not create anything new:
- create → find-or-create by normalized title (case/whitespace-insensitive)
- contribution links upserted per (issue_id, person_id)
- message links and conversation links inserted only if absent
"""
import logging
from typing import Iterable, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models.analysis import IssueAction, PersonContribution
from ...models.db_models import (
    ContributionType,
    ContributionValence,
    ConversationIssueDB,
    IssueDB,
    IssuePersonDB,
    IssuePriority,
    IssueStatus,
    MessageDB,
    MessageIssueDB,
    PersonDB,
)

logger = logging.getLogger(__name__)


class ReconciliationError(Exception):
    """Raised when analysis output cannot be reconciled against stored state."""
    pass


def normalize_issue_title(title: str) -> str:
    """Trim and collapse whitespace. Case is preserved for storage."""
    return " ".join((title or "").split())


def titles_match(a: str, b: str) -> bool:
    return normalize_issue_title(a).lower() == normalize_issue_title(b).lower()


def coerce_contribution_type(value: Optional[str]) -> ContributionType:
    try:
        return ContributionType((value or "").strip().lower())
    except ValueError:
        return ContributionType.INVOLVED


def coerce_contribution_valence(value: Optional[str]) -> Optional[ContributionValence]:
    try:
        return ContributionValence((value or "").strip().lower())
    except ValueError:
        return None


def _coerce_priority(value: Optional[str]) -> IssuePriority:
    try:
        return IssuePriority((value or "").lower())
    except ValueError:
        return IssuePriority.MEDIUM


def _coerce_status(value: Optional[str]) -> IssueStatus:
    try:
        return IssueStatus((value or "").lower())
    except ValueError:
        return IssueStatus.OPEN


class IssueReconciler:
    """
    Applies sanitized issue actions.

    Methods flush but never commit; the caller owns the unit of work.
    """

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # ISSUES
    # =========================================================================

    def find_or_create_issue(
        self,
        title: str,
        description: str = "",
        priority: Optional[str] = "medium",
        status: Optional[str] = "open",
    ) -> Tuple[IssueDB, bool, Optional[str]]:
        """
        Returns (issue, is_new, match_type).

        match_type is "exact" for a case-insensitive title hit, "normalized"
        when only whitespace differed, None for a new issue.
        """
        normalized = normalize_issue_title(title)
        if not normalized:
            raise ReconciliationError("Issue title is empty")

        existing = (
            self.db.query(IssueDB)
            .filter(func.lower(IssueDB.title) == normalized.lower())
            .order_by(IssueDB.created_at.asc())
            .first()
        )
        if existing is not None:
            return existing, False, "exact"

        # Stored titles written before normalization may carry odd whitespace
        for issue in self.db.query(IssueDB).order_by(IssueDB.created_at.asc()).all():
            if titles_match(issue.title, normalized):
                return issue, False, "normalized"

        issue = IssueDB(
            id=str(uuid4()),
            title=normalized,
            description=description or None,
            priority=_coerce_priority(priority),
            status=_coerce_status(status),
        )
        self.db.add(issue)
        self.db.flush()
        return issue, True, None

    def update_issue(
        self,
        issue_id: str,
        description: str = "",
        priority: Optional[str] = None,
        status: Optional[str] = None,
    ) -> IssueDB:
        """Only the fields that were supplied are written."""
        issue = self.db.get(IssueDB, issue_id)
        if issue is None:
            raise ReconciliationError(f"Issue not found: {issue_id}")
        if description:
            issue.description = description
        if priority:
            issue.priority = _coerce_priority(priority)
        if status:
            issue.status = _coerce_status(status)
        self.db.flush()
        return issue

    # =========================================================================
    # LINKS
    # =========================================================================

    def _known_people(self, person_ids: Iterable[str]) -> set:
        ids = list(dict.fromkeys(person_ids))
        if not ids:
            return set()
        return {row[0] for row in self.db.query(PersonDB.id).filter(PersonDB.id.in_(ids)).all()}

    def upsert_contributions(self, issue_id: str, contributions: List[PersonContribution]) -> int:
        """Insert or update one contribution link per person. Returns links written."""
        known = self._known_people(c.person_id for c in contributions)
        written = 0

        for contribution in contributions:
            if contribution.person_id not in known:
                logger.warning(f"Skipping contribution for unknown person {contribution.person_id}")
                continue

            link = (
                self.db.query(IssuePersonDB)
                .filter(IssuePersonDB.issue_id == issue_id, IssuePersonDB.person_id == contribution.person_id)
                .first()
            )
            if link is None:
                link = IssuePersonDB(id=str(uuid4()), issue_id=issue_id, person_id=contribution.person_id)
                self.db.add(link)

            link.contribution_type = coerce_contribution_type(contribution.contribution_type)
            link.contribution_description = contribution.contribution_description
            link.contribution_valence = coerce_contribution_valence(contribution.contribution_valence)
            self.db.flush()
            written += 1

        return written

    def link_people(self, issue_id: str, person_ids: List[str]) -> int:
        """Add plain 'involved' links; existing links keep their contribution details."""
        known = self._known_people(person_ids)
        existing = {
            row[0]
            for row in self.db.query(IssuePersonDB.person_id).filter(IssuePersonDB.issue_id == issue_id).all()
        }
        added = 0
        for person_id in dict.fromkeys(person_ids):
            if person_id not in known or person_id in existing:
                continue
            self.db.add(IssuePersonDB(
                id=str(uuid4()),
                issue_id=issue_id,
                person_id=person_id,
                contribution_type=ContributionType.INVOLVED,
            ))
            existing.add(person_id)
            added += 1
        self.db.flush()
        return added

    def link_messages(self, issue_id: str, message_ids: List[str]) -> int:
        """Link stored messages to an issue. Unknown message ids are ignored."""
        ids = list(dict.fromkeys(message_ids))
        if not ids:
            return 0

        stored = {row[0] for row in self.db.query(MessageDB.id).filter(MessageDB.id.in_(ids)).all()}
        linked = {
            row[0]
            for row in self.db.query(MessageIssueDB.message_id)
            .filter(MessageIssueDB.issue_id == issue_id, MessageIssueDB.message_id.in_(ids))
            .all()
        }

        added = 0
        for message_id in ids:
            if message_id not in stored or message_id in linked:
                continue
            self.db.add(MessageIssueDB(id=str(uuid4()), message_id=message_id, issue_id=issue_id))
            added += 1

        missing = len([m for m in ids if m not in stored])
        if missing:
            logger.warning(f"Ignored {missing} unknown message id(s) linked to issue {issue_id}")
        self.db.flush()
        return added

    def link_conversation(self, conversation_id: str, issue_id: str, reason: Optional[str] = None):
        link = (
            self.db.query(ConversationIssueDB)
            .filter(ConversationIssueDB.conversation_id == conversation_id, ConversationIssueDB.issue_id == issue_id)
            .first()
        )
        if link is None:
            link = ConversationIssueDB(id=str(uuid4()), conversation_id=conversation_id, issue_id=issue_id)
            self.db.add(link)
        if reason:
            link.reason = reason
        self.db.flush()

    # =========================================================================
    # ACTIONS
    # =========================================================================

    def apply_action(self, conversation_id: str, action: IssueAction) -> str:
        """Apply one issue action. Returns "created", "reused" or "updated"."""
        if action.action == "update":
            issue = self.update_issue(action.issue_id, action.description, action.priority, action.status)
            outcome = "updated"
        else:
            issue, is_new, match_type = self.find_or_create_issue(
                action.title, action.description, action.priority, action.status,
            )
            if is_new:
                outcome = "created"
            else:
                logger.info(f"Issue '{action.title}' already exists ({match_type} match), linking instead of creating")
                outcome = "reused"

        if action.person_contributions:
            self.upsert_contributions(issue.id, action.person_contributions)
        elif action.involved_person_ids:
            self.link_people(issue.id, action.involved_person_ids)

        self.link_messages(issue.id, action.linked_message_ids)
        self.link_conversation(conversation_id, issue.id, action.reasoning)
        return outcome
