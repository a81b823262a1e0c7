"""HTTP client for the video generation webhooks (submit + status)."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from app.config import Settings, get_settings
from app.core.exceptions import SubmissionTransportFailure
from app.schemas.generation import StatusResponse, SubmissionPayload

logger = logging.getLogger(__name__)


class GenerationClient:
    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self._settings = settings or get_settings()
        self._client = client or httpx.AsyncClient(timeout=self._settings.http_timeout_seconds)

    async def submit(self, payload: SubmissionPayload) -> None:
        """POST the job; only transport success matters, the body is ignored."""
        try:
            r = await self._client.post(
                self._settings.generation_submit_url,
                json=payload.model_dump(mode="json", by_alias=True),
            )
            r.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Submission of job %s failed: %s", payload.job_id, e)
            raise SubmissionTransportFailure() from e

    async def check_status(self, job_id: str) -> Optional[StatusResponse]:
        """Return the parsed status, or None when the call failed or the body is unreadable."""
        try:
            r = await self._client.post(
                self._settings.generation_status_url,
                json={"jobId": job_id},
            )
            r.raise_for_status()
            data: Any = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.info("Status check for job %s not usable yet: %s", job_id, e)
            return None
        if isinstance(data, list):
            data = next((d for d in data if isinstance(d, dict)), None)
        if not isinstance(data, dict):
            return None
        try:
            return StatusResponse.model_validate(data)
        except ValidationError:
            return None

    async def aclose(self) -> None:
        await self._client.aclose()
