"""
Reconciliation - idempotent merge of sanitized analysis into issues, notes, agreements and state
"""
from .issues import IssueReconciler, ReconciliationError, normalize_issue_title, titles_match
from .profile_notes import ProfileNoteWriter, build_profile_notes
from .agreements import AgreementChainError, AgreementChainService, AgreementItemNotFoundError
from .applier import ReconciliationApplier

__all__ = [
    "IssueReconciler",
    "ReconciliationError",
    "normalize_issue_title",
    "titles_match",
    "ProfileNoteWriter",
    "build_profile_notes",
    "AgreementChainError",
    "AgreementChainService",
    "AgreementItemNotFoundError",
    "ReconciliationApplier",
]
