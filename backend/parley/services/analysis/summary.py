"""Caller-facing summaries of a sanitized analysis."""
from typing import Dict, List

from ...models.analysis import OverallTone, SanitizedAnalysisResult


def extract_key_findings(result: SanitizedAnalysisResult) -> List[str]:
    findings: List[str] = []

    tone = result.conversation_analysis.overall_tone
    if tone in (OverallTone.HOSTILE.value, OverallTone.CONTENTIOUS.value):
        findings.append(f"Conversation tone detected as {tone}")

    severe = [v for v in result.agreement_violations if v.get("severity") == "severe"]
    if severe:
        findings.append(f"{len(severe)} severe agreement violation(s) detected")

    # First person with high-severity concerns only
    for analysis in result.person_analyses:
        high = [c for c in analysis.concerns if c.severity == "high"]
        if high:
            findings.append(f"{len(high)} high-priority concern(s) identified")
            break

    topics = result.conversation_analysis.key_topics
    if topics:
        findings.append(f"Key topics: {', '.join(topics[:3])}")

    return findings


def build_analysis_summary(result: SanitizedAnalysisResult) -> Dict[str, object]:
    return {
        "conversation_tone": result.conversation_analysis.overall_tone,
        "issues_created": sum(1 for a in result.issue_actions if a.action == "create"),
        "issues_updated": sum(1 for a in result.issue_actions if a.action == "update"),
        "violations_detected": len(result.agreement_violations),
        "people_analyzed": len(result.person_analyses),
        "agreements_detected": len(result.detected_agreements),
        "key_findings": extract_key_findings(result),
    }
