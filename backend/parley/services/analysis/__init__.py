"""
Analysis - request building, the collaborator client, sanitization and the pipeline
"""
from .validator import validate_and_sanitize_analysis_result
from .request_builder import build_analysis_request
from .summary import build_analysis_summary, extract_key_findings
from .client import AnalysisClient, AnalysisClientError, HttpAnalysisClient
from .pipeline import AnalysisPipeline, PipelineOutcome

__all__ = [
    "validate_and_sanitize_analysis_result",
    "build_analysis_request",
    "build_analysis_summary",
    "extract_key_findings",
    "AnalysisClient",
    "AnalysisClientError",
    "HttpAnalysisClient",
    "AnalysisPipeline",
    "PipelineOutcome",
]
