"""
HTTP client for the external workflow engine.

The engine parses and normalizes uploaded files asynchronously and reports
back through the finalize/progress callbacks. This client only makes the
outbound calls; it never retries and never waits for processing to finish.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from coprocure.core.config import settings
from coprocure.core.errors import ConfigurationError, UpstreamError
from coprocure.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class UploadTarget:
    """Where the client uploads the file bytes (signed storage URL)."""
    signed_url: str
    raw: Dict[str, Any] = field(default_factory=dict)


class WorkflowEngineClient:
    """Thin async wrapper over the engine's webhook endpoints."""

    def __init__(
        self,
        base_url: Optional[str],
        token: Optional[str] = None,
        confirm_url: Optional[str] = None,
        session_timeout: float = 5.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.token = token
        self.confirm_url = confirm_url or (f"{self.base_url}/api/upload/confirm" if self.base_url else None)
        self.session_timeout = session_timeout
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _require(self, url: Optional[str], what: str) -> str:
        if not url:
            raise ConfigurationError(
                f"Workflow engine is not configured for {what}: set WORKFLOW_ENGINE_BASE_URL"
            )
        return url

    async def _post(
        self,
        url: str,
        payload: Dict[str, Any],
        timeout: float,
        correlation_id: Optional[str] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        logger.info(f"Calling workflow engine: POST {url}", extra={"correlation_id": correlation_id})
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
                headers=self._headers(),
                transport=self._transport,
            ) as client:
                response = await client.post(url, json=payload, params=params)
        except httpx.TimeoutException as e:
            logger.error(f"Workflow engine timed out after {timeout}s: {url}", extra={"correlation_id": correlation_id})
            raise UpstreamError(
                f"Workflow engine did not respond within {timeout:g}s",
                timed_out=True,
                correlation_id=correlation_id,
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Workflow engine unreachable: {e}", extra={"correlation_id": correlation_id})
            raise UpstreamError(
                f"Workflow engine unreachable: {e}",
                correlation_id=correlation_id,
            ) from e

        data = self._parse_body(response)

        if response.is_error:
            reason = data.get("error") or data.get("message") or response.reason_phrase
            logger.error(
                f"Workflow engine error {response.status_code}: {reason}",
                extra={"correlation_id": correlation_id},
            )
            raise UpstreamError(
                f"Workflow engine failed: {reason}",
                upstream_status=response.status_code,
                correlation_id=correlation_id,
            )

        logger.info(f"Workflow engine responded {response.status_code}", extra={"correlation_id": correlation_id})
        return data

    @staticmethod
    def _parse_body(response: httpx.Response) -> Dict[str, Any]:
        text = response.text
        if not text or not text.strip():
            return {}
        if "application/json" in response.headers.get("content-type", ""):
            try:
                parsed = response.json()
            except ValueError:
                return {"message": text}
            if isinstance(parsed, dict):
                return parsed
            # Some engine nodes answer with a single-item list
            if isinstance(parsed, list) and parsed and isinstance(parsed[0], dict):
                return parsed[0]
            return {"data": parsed}
        return {"message": text}

    async def open_session(self, payload: Dict[str, Any]) -> UploadTarget:
        """
        Register the upload with the engine and obtain the storage upload target.

        ``payload`` carries company_id, user_id, file_name, file_type,
        dataset_type, job_id and correlation_id.
        """
        base = self._require(self.base_url, "upload sessions")
        data = await self._post(
            f"{base}/api/upload/session",
            payload,
            timeout=self.session_timeout,
            correlation_id=payload.get("correlation_id"),
        )
        signed_url = data.get("signed_url") or data.get("signedUrl")
        if not signed_url:
            raise ConfigurationError(
                "Workflow engine session response did not include signed_url; "
                "check the storage configuration of the upload workflow",
                correlation_id=payload.get("correlation_id"),
            )
        return UploadTarget(signed_url=signed_url, raw=data)

    async def confirm_upload(self, job_id: str, correlation_id: str, upload_id: Optional[str] = None) -> Dict[str, Any]:
        url = self._require(self.confirm_url, "upload confirmation")
        payload = {"job_id": job_id, "correlation_id": correlation_id}
        if upload_id:
            payload["upload_id"] = upload_id
        return await self._post(
            url,
            payload,
            timeout=self.timeout,
            correlation_id=correlation_id,
            params={"job_id": job_id, "correlation_id": correlation_id},
        )

    async def apply_mapping(self, job_id: str, mapping: Dict[str, str], correlation_id: str) -> Dict[str, Any]:
        base = self._require(self.base_url, "mapping dispatch")
        return await self._post(
            f"{base}/api/mapping/apply",
            {"job_id": job_id, "mapping": mapping, "correlation_id": correlation_id},
            timeout=self.timeout,
            correlation_id=correlation_id,
        )


def get_workflow_engine() -> WorkflowEngineClient:
    """Dependency: engine client built from settings."""
    return WorkflowEngineClient(
        base_url=settings.WORKFLOW_ENGINE_BASE_URL,
        token=settings.WORKFLOW_ENGINE_TOKEN,
        confirm_url=settings.workflow_confirm_url,
        session_timeout=settings.SESSION_OPEN_TIMEOUT_SECONDS,
        timeout=settings.WORKFLOW_TIMEOUT_SECONDS,
    )
