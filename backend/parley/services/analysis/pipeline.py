"""
Analysis Pipeline

Strictly sequential: build request → collaborator → sanitize → apply.
Each step consumes the previous step's output.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ...models.analysis import ProcessingResult, ValidationResult
from ..reconciliation.applier import ReconciliationApplier
from .client import AnalysisClient
from .request_builder import build_analysis_request
from .summary import build_analysis_summary
from .validator import validate_and_sanitize_analysis_result

logger = logging.getLogger(__name__)


@dataclass
class PipelineOutcome:
    processing: ProcessingResult
    validation: Optional[ValidationResult] = None
    summary: Dict[str, Any] = field(default_factory=dict)

    @property
    def warnings(self) -> List[str]:
        validation_warnings = self.validation.warnings if self.validation else []
        return list(validation_warnings) + list(self.processing.warnings)


class AnalysisPipeline:
    """
    Usage:
        pipeline = AnalysisPipeline(db, HttpAnalysisClient())
        outcome = pipeline.run(conversation_id)
    """

    def __init__(self, db: Session, client: AnalysisClient):
        self.db = db
        self.client = client

    def run(
        self,
        conversation_id: str,
        is_reanalysis: bool = False,
        user_guidance: Optional[str] = None,
    ) -> PipelineOutcome:
        """Analyze and reconcile one conversation. Collaborator failures are reported, not raised."""
        request = build_analysis_request(self.db, conversation_id, is_reanalysis, user_guidance)

        try:
            raw = self.client.analyze(request)
        except Exception as e:
            logger.error(f"Analysis collaborator failed for {conversation_id}: {e}")
            return PipelineOutcome(processing=ProcessingResult(
                success=False,
                sections_failed=["analysis"],
                errors=[f"Analysis request failed: {e}"],
            ))

        return self.apply_result(conversation_id, raw)

    def apply_result(self, conversation_id: str, raw: Any) -> PipelineOutcome:
        """Sanitize an untrusted analysis result and reconcile it."""
        validation = validate_and_sanitize_analysis_result(raw)
        if not validation.is_valid:
            logger.warning(
                f"Analysis for {conversation_id} failed validation ({len(validation.errors)} errors), "
                f"continuing with defaults"
            )

        processing = ReconciliationApplier(self.db).apply(conversation_id, validation.sanitized)
        return PipelineOutcome(
            processing=processing,
            validation=validation,
            summary=build_analysis_summary(validation.sanitized),
        )
