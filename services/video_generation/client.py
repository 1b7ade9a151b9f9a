"""
Generation Request Dispatcher

Single interface to the avatar video backend:
- Submit a template-driven (emoji) or audio-driven (LivePortrait) job
- Fetch a task record by id (reconciliation and initial image load)
- Fetch the user's credit balance

Every call makes exactly one request. Nothing here retries; a retry is an
explicit user action that dispatches again.
"""

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from core.config import Config, get_config
from core.errors import (
    GenerationError,
    InsufficientCredits,
    ProtocolError,
)

from .models import (
    DeferredJob,
    GenerationOutcome,
    GenerationRequest,
    JobKind,
    SubmitResponse,
    TaskRecord,
)

logger = logging.getLogger(__name__)


HTTP_PAYMENT_REQUIRED = 402


class VideoGenerationClient:
    """
    Client for the avatar video backend.

    Usage:
        client = VideoGenerationClient()

        outcome = await client.dispatch(GenerationRequest(
            kind=JobKind.AUDIO_DRIVEN,
            source_image_id="img-1",
            audio_url="https://cdn/voice.mp3",
        ))

        if isinstance(outcome, DeferredJob):
            record = await client.fetch_record(outcome.task_id)
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or get_config()
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.config.api.base_url,
                timeout=self.config.api.request_timeout,
            )
        return self._http_client

    async def close(self):
        """Close the HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "VideoGenerationClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.config.api.token:
            headers["Authorization"] = f"Bearer {self.config.api.token}"
        return headers

    def _endpoint_for(self, kind: JobKind) -> str:
        if kind == JobKind.TEMPLATE_DRIVEN:
            return self.config.api.template_endpoint
        return self.config.api.audio_endpoint

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send one request, mapping transport failures to GenerationError."""
        client = await self._get_client()
        try:
            return await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as e:
            raise GenerationError(
                f"Backend timeout: {type(e).__name__}",
                error_code="TIMEOUT",
            )
        except httpx.RequestError as e:
            raise GenerationError(
                f"Backend request failed: {type(e).__name__}: {e}",
                error_code="REQUEST_ERROR",
            )

    @staticmethod
    def _json_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            if response.is_error:
                raise GenerationError(
                    f"Backend returned HTTP {response.status_code}",
                    error_code=f"HTTP_{response.status_code}",
                )
            raise ProtocolError(f"Backend returned a non-JSON body (HTTP {response.status_code})")

    async def dispatch(self, request: GenerationRequest) -> GenerationOutcome:
        """
        Submit a generation request.

        Args:
            request: Kind and inputs for the job

        Returns:
            ImmediateResult when the backend finished synchronously,
            DeferredJob when it queued a task

        Raises:
            ValidationError: Kind-specific input missing (no request sent)
            InsufficientCredits: Backend answered 402
            GenerationError: Backend reported failure or was unreachable
            ProtocolError: Response was malformed or ambiguous
        """
        request.validate()

        endpoint = self._endpoint_for(request.kind)
        logger.info(f"Submitting {request.kind.value} job for image {request.source_image_id}")

        response = await self._request("POST", endpoint, json=request.to_payload())

        if response.status_code == HTTP_PAYMENT_REQUIRED:
            logger.warning(f"Backend rejected {request.kind.value} job: payment required")
            raise InsufficientCredits()

        body = self._json_body(response)
        if not isinstance(body, dict):
            raise ProtocolError("Backend response is not a JSON object")

        try:
            parsed = SubmitResponse.model_validate(body)
        except PydanticValidationError as e:
            raise ProtocolError(f"Malformed submit response: {e.errors()[0].get('msg', 'invalid')}")

        outcome = parsed.to_outcome()

        if isinstance(outcome, DeferredJob):
            logger.info(f"Task created: {outcome.task_id}")
        else:
            logger.info(f"Video returned immediately: {outcome.video_url}")
        return outcome

    async def fetch_record(self, record_id: str) -> TaskRecord:
        """
        Fetch the current persisted record for a task or source image.

        Raises:
            GenerationError: Backend reported failure or was unreachable
            ProtocolError: Response was malformed
        """
        url = self.config.api.record_endpoint.format(record_id=record_id)
        response = await self._request("GET", url)
        body = self._json_body(response)

        if not isinstance(body, dict):
            raise ProtocolError("Backend response is not a JSON object")
        if not body.get("success") or not body.get("data"):
            message = body.get("error") if isinstance(body.get("error"), str) else None
            raise GenerationError(
                message or f"Failed to fetch record {record_id}",
                error_code=f"HTTP_{response.status_code}" if response.is_error else None,
            )

        try:
            return TaskRecord.model_validate(body["data"])
        except PydanticValidationError as e:
            raise ProtocolError(f"Malformed record {record_id}: {e.errors()[0].get('msg', 'invalid')}")

    async def fetch_balance(self) -> int:
        """Fetch the current credit balance."""
        response = await self._request("GET", self.config.api.balance_endpoint)
        body = self._json_body(response)

        if response.is_error:
            raise GenerationError(
                f"Balance request failed with HTTP {response.status_code}",
                error_code=f"HTTP_{response.status_code}",
            )

        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            body = body["data"]
        if not isinstance(body, dict) or "balance" not in body:
            raise ProtocolError("Balance response has no balance field")

        try:
            return int(body["balance"] or 0)
        except (TypeError, ValueError):
            raise ProtocolError(f"Invalid balance value: {body['balance']!r}")
