"""
AI analysis collaborator clients.

The model itself lives elsewhere; Parley only sends a request body (see
request_builder) and receives untrusted JSON back.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from ...config import ANALYSIS_SERVICE_TOKEN, ANALYSIS_SERVICE_URL, ANALYSIS_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class AnalysisClientError(RuntimeError):
    """Raised when the analysis collaborator cannot produce a result."""
    pass


class AnalysisClient:
    """Interface for the external analysis collaborator."""

    def analyze(self, request: Dict[str, Any]) -> Any:
        raise NotImplementedError


class HttpAnalysisClient(AnalysisClient):
    """POSTs the analysis request to ANALYSIS_SERVICE_URL and returns the decoded JSON."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout_s: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = (base_url if base_url is not None else ANALYSIS_SERVICE_URL).rstrip("/")
        self.timeout_s = timeout_s or ANALYSIS_TIMEOUT_SECONDS
        token = token if token is not None else ANALYSIS_SERVICE_TOKEN
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client

    def analyze(self, request: Dict[str, Any]) -> Any:
        if not self.base_url:
            raise AnalysisClientError("ANALYSIS_SERVICE_URL not configured")

        logger.info(
            f"Requesting analysis for conversation {request.get('conversationId')} "
            f"({len(request.get('messages', []))} messages)"
        )

        try:
            if self._client is not None:
                resp = self._client.post(self.base_url, json=request, headers=self.headers)
            else:
                with httpx.Client(timeout=self.timeout_s, headers=self.headers) as client:
                    resp = client.post(self.base_url, json=request)
        except httpx.HTTPError as exc:
            raise AnalysisClientError(f"Analysis service unreachable: {exc}") from exc

        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise AnalysisClientError(f"Analysis service error {resp.status_code}: {resp.text[:500]}") from exc

        try:
            return resp.json()
        except ValueError as exc:
            raise AnalysisClientError("Analysis service returned non-JSON body") from exc
