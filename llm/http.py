"""Model provider backed by a remote generation service over HTTP.

The service exposes ``POST /api/llm`` which answers either with the
generated text (``{"text": ...}`` or ``{"output": ...}``) or with an async
job (``{"jobId": ..., "status": ...}``), and ``GET /api/job-status/{jobId}``.
"""

import logging
from typing import Optional

import httpx

from config import settings
from core.enums import JobStatus
from core.exceptions import ProviderError
from core.interfaces import ModelProvider
from core.models import (
    DeferredResult,
    FailedResult,
    ImmediateResult,
    JobStatusResult,
    ProviderRequest,
    ProviderResult,
)

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        message = data.get("error") or data.get("message") or data.get("detail")
        if message:
            return str(message)
    return response.text or f"Request failed with status {response.status_code}"


class HTTPProvider(ModelProvider):
    """Provider that forwards requests to a generation backend"""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        auth_token: str = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        base_url = base_url or settings.PROVIDER_BACKEND_URL
        if not base_url and client is None:
            raise ProviderError("PROVIDER_BACKEND_URL is not configured")
        headers = {"Content-Type": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        self.client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout or settings.PROVIDER_TIMEOUT,
            headers=headers,
        )

    async def aclose(self):
        await self.client.aclose()

    @staticmethod
    def _payload(request: ProviderRequest) -> dict:
        options = request.format_options
        body = {
            "prompt": request.resolved_prompt,
            "model": request.model,
            "temperature": request.temperature,
        }
        if options.max_tokens:
            body["max_tokens"] = options.max_tokens
        if options.video_seconds:
            body["videoSeconds"] = options.video_seconds
            body["videoResolution"] = options.video_resolution
            body["videoAspectRatio"] = options.video_aspect_ratio
        if options.audio_voice:
            body["audioVoice"] = options.audio_voice
            body["audioSpeed"] = options.audio_speed
            body["audioFormat"] = options.audio_format
        if request.user_id:
            body["userId"] = request.user_id
        return body

    async def generate(self, request: ProviderRequest) -> ProviderResult:
        try:
            response = await self.client.post("/api/llm", json=self._payload(request))
        except httpx.HTTPError as e:
            logger.warning(f"Generation request for {request.model} failed: {e}")
            return FailedResult(error=str(e) or e.__class__.__name__)

        if response.status_code != 200:
            return FailedResult(error=_error_message(response))

        data = response.json()
        if data.get("jobId") and data.get("status"):
            return DeferredResult(
                job_id=str(data["jobId"]),
                status=JobStatus.from_provider(data["status"]),
            )
        return ImmediateResult(output=data.get("text") or data.get("output") or "")

    async def check_job(self, job_id: str) -> JobStatusResult:
        try:
            response = await self.client.get(f"/api/job-status/{job_id}")
        except httpx.HTTPError as e:
            raise ProviderError(f"Job status check failed: {e}") from e

        if response.status_code != 200:
            raise ProviderError(_error_message(response))

        data = response.json()
        error = data.get("error")
        return JobStatusResult(
            status=JobStatus.from_provider(data.get("status")),
            output=data.get("videoUrl") or data.get("output") or data.get("text"),
            error=str(error) if error else None,
        )
