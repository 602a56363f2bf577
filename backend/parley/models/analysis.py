"""
Parley - Analysis Models

The AI analysis collaborator returns an untrusted JSON-like structure
(UntrustedAnalysisResult is just a Dict[str, Any]). The only way to obtain a
SanitizedAnalysisResult is through
services.analysis.validator.validate_and_sanitize_analysis_result.

Person assessments arrive in two shapes (current "behavioral assessment" and
legacy "clinical assessment"). Both are resolved once, at sanitization, into
the Assessment variants below plus canonical pattern/strategy lists, so note
generation has a single path.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


UntrustedAnalysisResult = Dict[str, Any]

DEFAULT_SUMMARY = "Analysis incomplete - some stages may have failed."
DEFAULT_STATE_REASONING = "State detection incomplete"


class OverallTone(str, Enum):
    COOPERATIVE = "cooperative"
    NEUTRAL = "neutral"
    CONTENTIOUS = "contentious"
    HOSTILE = "hostile"


class AgreementConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"low": 0, "medium": 1, "high": 2}[self.value]


# =============================================================================
# CONVERSATION-LEVEL
# =============================================================================

@dataclass
class ConversationSummary:
    summary: str = DEFAULT_SUMMARY
    overall_tone: str = OverallTone.NEUTRAL.value
    key_topics: List[str] = field(default_factory=list)


@dataclass
class ConversationState:
    status: Optional[str] = None
    pending_responder_name: Optional[str] = None
    reasoning: str = DEFAULT_STATE_REASONING


# =============================================================================
# ISSUES
# =============================================================================

@dataclass
class PersonContribution:
    person_id: str
    contribution_type: str
    contribution_description: str
    contribution_valence: Optional[str] = None


@dataclass
class IssueAction:
    action: str  # "create" | "update"
    title: str
    issue_id: Optional[str] = None
    description: str = ""
    priority: Optional[str] = None  # None on update = leave unchanged
    status: Optional[str] = None
    linked_message_ids: List[str] = field(default_factory=list)
    reasoning: Optional[str] = None
    person_contributions: List[PersonContribution] = field(default_factory=list)
    involved_person_ids: List[str] = field(default_factory=list)


# =============================================================================
# PEOPLE
# =============================================================================

@dataclass
class BehavioralAssessment:
    summary: str
    cooperation_level: str = "unknown"
    flexibility_level: str = "unknown"
    responsiveness_level: str = "unknown"
    accountability_level: str = "unknown"
    boundary_respect: str = "unknown"

    def render(self, as_of: str) -> str:
        return (
            f"## Behavioral Assessment ({as_of})\n\n{self.summary}\n\n"
            f"**Interaction Quality:**\n"
            f"- Cooperation: {self.cooperation_level}\n"
            f"- Flexibility: {self.flexibility_level}\n"
            f"- Responsiveness: {self.responsiveness_level}\n"
            f"- Accountability: {self.accountability_level}\n"
            f"- Boundary Respect: {self.boundary_respect}"
        )


@dataclass
class ClinicalAssessment:
    """Legacy assessment shape, still accepted from older analysis runs."""
    summary: str
    communication_style: str = "unknown"
    emotional_regulation: str = "unknown"
    boundary_respect: str = "unknown"
    coparenting_cooperation: str = "unknown"

    def render(self, as_of: str) -> str:
        return (
            f"## Clinical Assessment ({as_of})\n\n{self.summary}\n\n"
            f"**Communication Style:** {self.communication_style}\n\n"
            f"**Emotional Regulation:** {self.emotional_regulation}\n\n"
            f"**Boundary Respect:** {self.boundary_respect}\n\n"
            f"**Co-parenting Cooperation:** {self.coparenting_cooperation}"
        )


Assessment = Union[BehavioralAssessment, ClinicalAssessment]


@dataclass
class PersonConcern:
    type: str
    description: str
    evidence: List[str] = field(default_factory=list)
    severity: str = "medium"


@dataclass
class PersonAnalysis:
    person_id: str
    assessment: Optional[Assessment] = None
    positive_behaviors: List[str] = field(default_factory=list)
    concerning_behaviors: List[str] = field(default_factory=list)
    strategies: List[str] = field(default_factory=list)
    observations: List[str] = field(default_factory=list)
    concerns: List[PersonConcern] = field(default_factory=list)
    monitoring_priorities: List[str] = field(default_factory=list)


# =============================================================================
# MESSAGES & AGREEMENTS
# =============================================================================

@dataclass
class MessageFlag:
    type: str
    attributed_to_person_id: str
    description: str
    severity: Optional[str] = None


@dataclass
class MessageAnnotation:
    message_id: str
    flags: List[MessageFlag] = field(default_factory=list)


@dataclass
class DetectedAgreement:
    topic: str
    summary: str
    full_text: str = ""
    message_ids: List[str] = field(default_factory=list)
    is_temporary: bool = False
    condition_text: Optional[str] = None
    potential_override_topics: List[str] = field(default_factory=list)
    overrides_item_id: Optional[str] = None
    confidence: str = AgreementConfidence.MEDIUM.value
    reasoning: Optional[str] = None


# =============================================================================
# SANITIZED RESULT
# =============================================================================

@dataclass
class SanitizedAnalysisResult:
    """Trusted, fully-defaulted analysis. Every collection is a list, never None."""
    conversation_analysis: ConversationSummary = field(default_factory=ConversationSummary)
    conversation_state: ConversationState = field(default_factory=ConversationState)
    claims_ledger: List[Dict[str, Any]] = field(default_factory=list)
    alternative_interpretations: List[Dict[str, Any]] = field(default_factory=list)
    missing_context: List[Any] = field(default_factory=list)
    issue_actions: List[IssueAction] = field(default_factory=list)
    agreement_violations: List[Dict[str, Any]] = field(default_factory=list)
    person_analyses: List[PersonAnalysis] = field(default_factory=list)
    message_annotations: List[MessageAnnotation] = field(default_factory=list)
    detected_agreements: List[DetectedAgreement] = field(default_factory=list)
    has_conversation_state: bool = False


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str]
    warnings: List[str]
    sanitized: SanitizedAnalysisResult


@dataclass
class ProcessingResult:
    """Aggregate outcome of a reconciliation run; partial success is normal."""
    success: bool
    sections_processed: List[str] = field(default_factory=list)
    sections_failed: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    issues_created: int = 0
    issues_reused: int = 0
    issues_updated: int = 0
    notes_written: int = 0
    agreement_items_written: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "sections_processed": list(self.sections_processed),
            "sections_failed": list(self.sections_failed),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "issues_created": self.issues_created,
            "issues_reused": self.issues_reused,
            "issues_updated": self.issues_updated,
            "notes_written": self.notes_written,
            "agreement_items_written": self.agreement_items_written,
        }
