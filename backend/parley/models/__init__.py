"""Parley - Data Models"""
from .ingestion import (
    # Enums
    MatchType, ResolutionAction, ContinuityMatchType, ContinuityDecision,
    # Parser output
    ParsedMessage, ParsedConversation, DeduplicationResult,
    # Name resolution
    NameMatchResult, NameResolution,
    # Continuity
    ContinuityCandidate, FirstSentenceMatch, StoredMessageRef, PreparedMessage, SpliceResult,
    # Import
    ImportPlan, ImportOutcome,
)
from .analysis import (
    UntrustedAnalysisResult, SanitizedAnalysisResult, ValidationResult, ProcessingResult,
    ConversationSummary, ConversationState, IssueAction, PersonContribution,
    PersonAnalysis, BehavioralAssessment, ClinicalAssessment, PersonConcern,
    MessageAnnotation, MessageFlag, DetectedAgreement,
)

__all__ = [
    "MatchType", "ResolutionAction", "ContinuityMatchType", "ContinuityDecision",
    "ParsedMessage", "ParsedConversation", "DeduplicationResult",
    "NameMatchResult", "NameResolution",
    "ContinuityCandidate", "FirstSentenceMatch", "StoredMessageRef", "PreparedMessage", "SpliceResult",
    "ImportPlan", "ImportOutcome",
    "UntrustedAnalysisResult", "SanitizedAnalysisResult", "ValidationResult", "ProcessingResult",
    "ConversationSummary", "ConversationState", "IssueAction", "PersonContribution",
    "PersonAnalysis", "BehavioralAssessment", "ClinicalAssessment", "PersonConcern",
    "MessageAnnotation", "MessageFlag", "DetectedAgreement",
]
