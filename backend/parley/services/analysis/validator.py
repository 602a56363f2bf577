"""
Analysis Result Validator / Sanitizer

Trust boundary for AI analysis output. Converts an UntrustedAnalysisResult
(any JSON-like value) into a SanitizedAnalysisResult.

Contract:
- Never raises.
- errors   → hard problems (missing conversationAnalysis, non-object input).
             is_valid reflects only these.
- warnings → lossy-but-safe degradation (record dropped, field defaulted).
- Every collection in the sanitized result is a list, never None.

Legacy person-analysis shapes (clinicalAssessment, strategicNotes) are folded
into the canonical PersonAnalysis lists here, once.
"""
import logging
from typing import Any, Dict, List, Optional

from ...models.analysis import (
    DEFAULT_STATE_REASONING,
    DEFAULT_SUMMARY,
    AgreementConfidence,
    BehavioralAssessment,
    ClinicalAssessment,
    ConversationState,
    ConversationSummary,
    DetectedAgreement,
    IssueAction,
    MessageAnnotation,
    MessageFlag,
    OverallTone,
    PersonAnalysis,
    PersonConcern,
    PersonContribution,
    SanitizedAnalysisResult,
    UntrustedAnalysisResult,
    ValidationResult,
)

logger = logging.getLogger(__name__)

VALID_TONES = {t.value for t in OverallTone}
VALID_PRIORITIES = {"low", "medium", "high"}
VALID_ISSUE_STATUSES = {"open", "monitoring", "resolved"}
VALID_CONFIDENCE = {c.value for c in AgreementConfidence}
VALID_STATES = {"open", "resolved"}


# =============================================================================
# COERCION HELPERS
# =============================================================================

def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _text(value: Any) -> str:
    """Non-empty stripped string, or "" for anything else."""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _optional_text(value: Any) -> Optional[str]:
    return _text(value) or None


def _text_list(value: Any) -> List[str]:
    return [t for t in (_text(v) for v in _as_list(value)) if t]


def _dict_list(value: Any) -> List[Dict[str, Any]]:
    return [v for v in _as_list(value) if isinstance(v, dict)]


# =============================================================================
# SECTIONS
# =============================================================================

def _sanitize_conversation_analysis(raw: Any, errors: List[str], warnings: List[str]) -> ConversationSummary:
    if not isinstance(raw, dict):
        errors.append("Missing conversationAnalysis")
        return ConversationSummary()

    summary = _text(raw.get("summary"))
    if not summary:
        warnings.append("Missing conversationAnalysis.summary - using default")
        summary = DEFAULT_SUMMARY

    tone = _text(raw.get("overallTone")).lower()
    if not tone:
        warnings.append("Missing conversationAnalysis.overallTone - using neutral")
        tone = OverallTone.NEUTRAL.value
    elif tone not in VALID_TONES:
        warnings.append(f"Unknown conversationAnalysis.overallTone '{tone}' - using neutral")
        tone = OverallTone.NEUTRAL.value

    return ConversationSummary(summary=summary, overall_tone=tone, key_topics=_text_list(raw.get("keyTopics")))


def _sanitize_conversation_state(raw: Any, warnings: List[str]) -> Optional[ConversationState]:
    if not isinstance(raw, dict):
        return None

    status = _text(raw.get("status")).lower()
    if status not in VALID_STATES:
        warnings.append(f"conversationState.status '{status}' invalid - using open")
        status = "open"

    return ConversationState(
        status=status,
        pending_responder_name=_optional_text(raw.get("pendingResponderName")),
        reasoning=_text(raw.get("reasoning")) or DEFAULT_STATE_REASONING,
    )


def _sanitize_contributions(raw: Any, index: int, warnings: List[str]) -> List[PersonContribution]:
    contributions = []
    dropped = 0
    for item in _as_list(raw):
        item = _as_dict(item)
        person_id = _text(item.get("personId"))
        contribution_type = _text(item.get("contributionType"))
        description = _text(item.get("contributionDescription"))
        if not (person_id and contribution_type and description):
            dropped += 1
            continue
        contributions.append(PersonContribution(
            person_id=person_id,
            contribution_type=contribution_type,
            contribution_description=description,
            contribution_valence=_optional_text(item.get("contributionValence")),
        ))
    if dropped:
        warnings.append(f"issueActions[{index}] dropped {dropped} incomplete personContributions")
    return contributions


def _sanitize_issue_actions(raw: Any, warnings: List[str]) -> List[IssueAction]:
    actions = []
    for index, item in enumerate(_as_list(raw)):
        if not isinstance(item, dict):
            warnings.append(f"issueActions[{index}] is not an object, skipped")
            continue

        title = " ".join(_text(item.get("title")).split())
        if not title:
            warnings.append(f"issueActions[{index}] missing title, skipped")
            continue

        issue_id = _optional_text(item.get("issueId"))
        action = _text(item.get("action")).lower()
        if action not in ("create", "update"):
            action = "update" if issue_id else "create"
        if action == "update" and not issue_id:
            warnings.append(f"issueActions[{index}] update without issueId, skipped")
            continue

        # Updates leave unsupplied fields untouched; only creates get defaults
        priority = _text(item.get("priority")).lower() or None
        if priority is not None and priority not in VALID_PRIORITIES:
            warnings.append(f"issueActions[{index}] unknown priority '{priority}' ignored")
            priority = None
        status = _text(item.get("status")).lower() or None
        if status is not None and status not in VALID_ISSUE_STATUSES:
            warnings.append(f"issueActions[{index}] unknown status '{status}' ignored")
            status = None
        if action == "create":
            priority = priority or "medium"
            status = status or "open"

        actions.append(IssueAction(
            action=action,
            title=title,
            issue_id=issue_id,
            description=_text(item.get("description")),
            priority=priority,
            status=status,
            linked_message_ids=_text_list(item.get("linkedMessageIds")),
            reasoning=_optional_text(item.get("reasoning")),
            person_contributions=_sanitize_contributions(item.get("personContributions"), index, warnings),
            involved_person_ids=_text_list(item.get("involvedPersonIds")),
        ))
    return actions


def _sanitize_assessment(item: Dict[str, Any]):
    behavioral = _as_dict(item.get("behavioralAssessment"))
    if _text(behavioral.get("summary")):
        return BehavioralAssessment(
            summary=_text(behavioral.get("summary")),
            cooperation_level=_text(behavioral.get("cooperationLevel")) or "unknown",
            flexibility_level=_text(behavioral.get("flexibilityLevel")) or "unknown",
            responsiveness_level=_text(behavioral.get("responsivenessLevel")) or "unknown",
            accountability_level=_text(behavioral.get("accountabilityLevel")) or "unknown",
            boundary_respect=_text(behavioral.get("boundaryRespect")) or "unknown",
        )

    clinical = _as_dict(item.get("clinicalAssessment"))
    if _text(clinical.get("summary")):
        return ClinicalAssessment(
            summary=_text(clinical.get("summary")),
            communication_style=_text(clinical.get("communicationStyle")) or "unknown",
            emotional_regulation=_text(clinical.get("emotionalRegulation")) or "unknown",
            boundary_respect=_text(clinical.get("boundaryRespect")) or "unknown",
            coparenting_cooperation=_text(clinical.get("coparentingCooperation")) or "unknown",
        )
    return None


def _sanitize_person_analyses(raw: Any, warnings: List[str]) -> List[PersonAnalysis]:
    analyses = []
    for index, item in enumerate(_as_list(raw)):
        item = _as_dict(item)
        person_id = _text(item.get("personId"))
        if not person_id:
            warnings.append(f"personAnalyses[{index}] missing personId, skipped")
            continue

        patterns = _as_dict(item.get("notablePatterns"))
        legacy = _as_dict(item.get("strategicNotes"))

        concerns = []
        for concern in _dict_list(item.get("concerns")):
            description = _text(concern.get("description"))
            if not description:
                continue
            concerns.append(PersonConcern(
                type=_text(concern.get("type")) or "concern",
                description=description,
                evidence=_text_list(concern.get("evidence")),
                severity=_text(concern.get("severity")).lower() or "medium",
            ))

        analyses.append(PersonAnalysis(
            person_id=person_id,
            assessment=_sanitize_assessment(item),
            positive_behaviors=_text_list(patterns.get("positive")),
            concerning_behaviors=_text_list(patterns.get("concerning")) + _text_list(legacy.get("patterns")),
            strategies=_text_list(item.get("interactionRecommendations")) + _text_list(legacy.get("strategies")),
            observations=_text_list(legacy.get("observations")),
            concerns=concerns,
            monitoring_priorities=_text_list(item.get("monitoringPriorities")),
        ))
    return analyses


def _sanitize_message_annotations(raw: Any, warnings: List[str]) -> List[MessageAnnotation]:
    annotations = []
    for index, item in enumerate(_as_list(raw)):
        item = _as_dict(item)
        message_id = _text(item.get("messageId"))
        if not message_id:
            warnings.append(f"messageAnnotations[{index}] missing messageId, skipped")
            continue

        flags = []
        for flag in _dict_list(item.get("flags")):
            flag_type = _text(flag.get("type"))
            attributed = _text(flag.get("attributedToPersonId"))
            description = _text(flag.get("description"))
            if flag_type and attributed and description:
                flags.append(MessageFlag(
                    type=flag_type,
                    attributed_to_person_id=attributed,
                    description=description,
                    severity=_optional_text(flag.get("severity")),
                ))
        annotations.append(MessageAnnotation(message_id=message_id, flags=flags))
    return annotations


def _sanitize_detected_agreements(raw: Any, warnings: List[str]) -> List[DetectedAgreement]:
    agreements = []
    for index, item in enumerate(_as_list(raw)):
        item = _as_dict(item)
        topic = _text(item.get("topic"))
        summary = _text(item.get("summary"))
        if not topic or not summary:
            warnings.append(f"detectedAgreements[{index}] missing required fields, skipped")
            continue

        confidence = _text(item.get("confidence")).lower()
        if confidence not in VALID_CONFIDENCE:
            confidence = AgreementConfidence.MEDIUM.value

        agreements.append(DetectedAgreement(
            topic=topic,
            summary=summary,
            full_text=_text(item.get("fullText")) or summary,
            message_ids=_text_list(item.get("messageIds")),
            is_temporary=item.get("isTemporary") is True,
            condition_text=_optional_text(item.get("conditionText")),
            potential_override_topics=_text_list(item.get("potentialOverrideTopics")),
            overrides_item_id=_optional_text(item.get("overridesItemId")),
            confidence=confidence,
            reasoning=_optional_text(item.get("reasoning")),
        ))
    return agreements


# =============================================================================
# ENTRY POINT
# =============================================================================

def validate_and_sanitize_analysis_result(raw: UntrustedAnalysisResult) -> ValidationResult:
    """Validate untrusted analysis output and return a fully-defaulted result."""
    errors: List[str] = []
    warnings: List[str] = []

    if not isinstance(raw, dict):
        errors.append(f"Analysis result is not an object (got {type(raw).__name__})")
        raw = {}

    state = _sanitize_conversation_state(raw.get("conversationState"), warnings)

    sanitized = SanitizedAnalysisResult(
        conversation_analysis=_sanitize_conversation_analysis(raw.get("conversationAnalysis"), errors, warnings),
        conversation_state=state or ConversationState(),
        has_conversation_state=state is not None,
        claims_ledger=_dict_list(raw.get("claimsLedger")),
        alternative_interpretations=_dict_list(raw.get("alternativeInterpretations")),
        missing_context=[v for v in _as_list(raw.get("missingContext")) if isinstance(v, (str, dict))],
        issue_actions=_sanitize_issue_actions(raw.get("issueActions"), warnings),
        agreement_violations=_dict_list(raw.get("agreementViolations")),
        person_analyses=_sanitize_person_analyses(raw.get("personAnalyses"), warnings),
        message_annotations=_sanitize_message_annotations(raw.get("messageAnnotations"), warnings),
        detected_agreements=_sanitize_detected_agreements(raw.get("detectedAgreements"), warnings),
    )

    for error in errors:
        logger.error(f"Analysis validation error: {error}")
    for warning in warnings:
        logger.warning(f"Analysis validation warning: {warning}")

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings, sanitized=sanitized)
