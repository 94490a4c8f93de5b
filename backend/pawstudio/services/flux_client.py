"""
Black Forest Labs FLUX Kontext client.

Generation is a two-step protocol:
1. submit: POST the prompt and source image, receive a task id and polling URL
2. poll: GET the polling URL until the task reaches a terminal status

Terminal statuses are Ready (download result.sample), Error and
Content Moderated. Anything else keeps polling until the attempt ceiling.
"""
import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from pawstudio.config import settings
from pawstudio.errors import (
    ContentModeratedError,
    ExternalServiceError,
    GenerationFailedError,
    GenerationTimeoutError,
)
from pawstudio.utils.logging import log_provider_request, log_provider_failure
from pawstudio.utils.metrics import (
    provider_requests_total,
    provider_failures_total,
    provider_latency_seconds,
)

logger = logging.getLogger(__name__)

PROVIDER = "flux"

STATUS_READY = "Ready"
FAILED_STATUSES = {"Error", "Failed"}
MODERATED_STATUSES = {"Content Moderated", "Request Moderated"}


@dataclass
class FluxTask:
    """Handle returned by a successful submit."""
    id: str
    polling_url: str


class FluxClient:
    """
    Async client for the FLUX Kontext API.

    `transport` is passed through to httpx and lets tests substitute
    an httpx.MockTransport for the network.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        safety_tolerance: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.bfl_api_key
        self.base_url = (base_url or settings.bfl_api_base_url).rstrip("/")
        self.model = model or settings.flux_model
        self.poll_interval = settings.flux_poll_interval_seconds if poll_interval is None else poll_interval
        self.max_attempts = max_attempts or settings.flux_max_poll_attempts
        self.safety_tolerance = settings.flux_safety_tolerance if safety_tolerance is None else safety_tolerance
        self.timeout = timeout or settings.flux_request_timeout_seconds
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    @staticmethod
    def _json_object(response: httpx.Response, operation: str) -> dict:
        """
        Raises:
            ExternalServiceError: If the body is not a JSON object
        """
        try:
            data = response.json()
        except ValueError as e:
            provider_failures_total.labels(provider=PROVIDER, operation=operation).inc()
            raise ExternalServiceError(f"FLUX API returned invalid JSON on {operation}") from e
        if not isinstance(data, dict):
            provider_failures_total.labels(provider=PROVIDER, operation=operation).inc()
            raise ExternalServiceError(f"FLUX API returned unexpected {operation} response")
        return data

    def _headers(self) -> dict:
        return {
            "accept": "application/json",
            "x-key": self.api_key,
            "Content-Type": "application/json",
        }

    async def submit(self, image_bytes: bytes, prompt: str, mime_type: str = "image/jpeg") -> FluxTask:
        """
        Submit one generation request.

        Args:
            image_bytes: Source image
            prompt: Scene prompt
            mime_type: MIME type of the source image, used in the data URL

        Returns:
            FluxTask with id and polling_url

        Raises:
            ExternalServiceError: Missing key, transport error, non-success
                status, or a response without id/polling_url
        """
        if not self.is_configured():
            raise ExternalServiceError("BFL API key not configured. Set BFL_API_KEY environment variable.")

        encoded = base64.b64encode(image_bytes).decode("ascii")
        payload = {
            "prompt": prompt,
            "input_image": f"data:{mime_type};base64,{encoded}",
            "safety_tolerance": self.safety_tolerance,
        }

        start_time = time.time()
        provider_requests_total.labels(provider=PROVIDER, operation="submit").inc()
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/v1/{self.model}",
                    json=payload,
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            provider_failures_total.labels(provider=PROVIDER, operation="submit").inc()
            log_provider_failure(logger, PROVIDER, "submit", str(e))
            raise ExternalServiceError(f"FLUX API request failed: {e}") from e

        duration = time.time() - start_time
        provider_latency_seconds.labels(provider=PROVIDER, operation="submit").observe(duration)

        if response.status_code >= 400:
            provider_failures_total.labels(provider=PROVIDER, operation="submit").inc()
            log_provider_failure(logger, PROVIDER, "submit", f"HTTP {response.status_code}", duration_ms=duration * 1000)
            raise ExternalServiceError(f"FLUX API error: {response.status_code} - {response.text}")

        data = self._json_object(response, "submit")
        task_id = data.get("id")
        polling_url = data.get("polling_url")
        if not task_id or not polling_url:
            provider_failures_total.labels(provider=PROVIDER, operation="submit").inc()
            raise ExternalServiceError("FLUX API response missing id or polling_url")

        log_provider_request(logger, PROVIDER, "submit", duration_ms=duration * 1000, task_id=task_id)
        return FluxTask(id=task_id, polling_url=polling_url)

    async def poll(self, task: FluxTask) -> bytes:
        """
        Poll a task until it reaches a terminal status.

        Sleeps the poll interval before every request, for at most
        max_attempts requests.

        Returns:
            Bytes of the generated image

        Raises:
            ExternalServiceError: Non-success polling status or failed download
            GenerationFailedError: Task reported Error
            ContentModeratedError: Task was moderated
            GenerationTimeoutError: No terminal status within max_attempts
        """
        start_time = time.time()
        async with self._client() as client:
            for attempt in range(1, self.max_attempts + 1):
                await asyncio.sleep(self.poll_interval)

                provider_requests_total.labels(provider=PROVIDER, operation="poll").inc()
                try:
                    response = await client.get(task.polling_url, headers=self._headers())
                except httpx.HTTPError as e:
                    provider_failures_total.labels(provider=PROVIDER, operation="poll").inc()
                    raise ExternalServiceError(f"Polling failed: {e}") from e

                if response.status_code >= 400:
                    provider_failures_total.labels(provider=PROVIDER, operation="poll").inc()
                    log_provider_failure(logger, PROVIDER, "poll", f"HTTP {response.status_code}", task_id=task.id)
                    raise ExternalServiceError(f"Polling failed: {response.status_code}")

                data = self._json_object(response, "poll")
                status = data.get("status")
                logger.debug(f"FLUX task {task.id} attempt {attempt}: {status}")

                if status == STATUS_READY:
                    result = data.get("result")
                    sample_url = result.get("sample") if isinstance(result, dict) else None
                    if not sample_url:
                        raise ExternalServiceError("FLUX task ready without result sample")
                    provider_latency_seconds.labels(provider=PROVIDER, operation="poll").observe(time.time() - start_time)
                    log_provider_request(
                        logger, PROVIDER, "poll",
                        duration_ms=(time.time() - start_time) * 1000,
                        task_id=task.id,
                        attempts=attempt,
                    )
                    return await self._download(client, sample_url)

                if status in FAILED_STATUSES:
                    provider_failures_total.labels(provider=PROVIDER, operation="poll").inc()
                    raise GenerationFailedError()

                if status in MODERATED_STATUSES:
                    provider_failures_total.labels(provider=PROVIDER, operation="poll").inc()
                    raise ContentModeratedError()

        provider_failures_total.labels(provider=PROVIDER, operation="poll").inc()
        log_provider_failure(logger, PROVIDER, "poll", "timeout", task_id=task.id, attempts=self.max_attempts)
        raise GenerationTimeoutError()

    async def _download(self, client: httpx.AsyncClient, url: str) -> bytes:
        provider_requests_total.labels(provider=PROVIDER, operation="download").inc()
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            provider_failures_total.labels(provider=PROVIDER, operation="download").inc()
            raise ExternalServiceError(f"Failed to download generated image: {e}") from e

        if response.status_code >= 400:
            provider_failures_total.labels(provider=PROVIDER, operation="download").inc()
            raise ExternalServiceError(f"Failed to download generated image: {response.status_code}")

        return response.content

    async def generate(self, image_bytes: bytes, prompt: str, mime_type: str = "image/jpeg") -> bytes:
        """Submit and poll in one call. Returns the generated image bytes."""
        task = await self.submit(image_bytes, prompt, mime_type)
        return await self.poll(task)


_flux_client: Optional[FluxClient] = None


def get_flux_client() -> FluxClient:
    """Get or create the FLUX client singleton."""
    global _flux_client
    if _flux_client is None:
        _flux_client = FluxClient()
    return _flux_client
