"""Video synthesis API client for long-running generation operations."""

from typing import Any

import httpx
import structlog

from postwave.schemas.video import OperationState
from postwave.services.exceptions import (
    SynthesisAuthError,
    SynthesisNetworkError,
    SynthesisRateLimitError,
    SynthesisRequestError,
)

logger = structlog.get_logger(__name__)


class VideoSynthesisClient:
    """Client for a predictLongRunning-style video generation model.

    One instance is created at process start and shared by every job. The
    access token is sent as a bearer token on every request.
    """

    def __init__(
        self,
        model_url: str,
        access_token: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize synthesis client.

        Args:
            model_url: Model resource URL without the ``:method`` suffix
                (e.g. ``https://us-central1-aiplatform.googleapis.com/v1beta1/projects/p/
                locations/us-central1/publishers/google/models/veo-2.0-generate-001``)
            access_token: OAuth bearer token for the API
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.model_url = model_url.split(":predictLongRunning")[0]
        self.access_token = access_token
        self.timeout = timeout
        self.transport = transport

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def submit(self, instances: list[dict], parameters: dict) -> OperationState:
        """Start a generation request.

        Args:
            instances: Instance payloads (prompt and optional image)
            parameters: Generation parameters payload

        Returns:
            OperationState with the operation name and initial done flag

        Raises:
            TransientError: Network timeout, rate limit (429), service unavailable (5xx)
            PermanentError: Missing token, auth failure (401/403), bad request (400)
        """
        if not self.access_token:
            raise SynthesisAuthError("Synthesis API access token not configured")

        data = await self._post(
            f"{self.model_url}:predictLongRunning",
            {"instances": instances, "parameters": parameters},
        )
        if not data.get("name"):
            raise SynthesisRequestError("Synthesis API response did not include an operation name")

        return OperationState(
            name=data["name"],
            done=bool(data.get("done", False)),
            metadata=data.get("metadata"),
            response=data.get("response"),
            error=data.get("error"),
        )

    async def poll_status(self, operation_name: str) -> OperationState:
        """Fetch the current state of a long-running operation.

        Args:
            operation_name: Operation name returned by ``submit``

        Returns:
            OperationState with done flag, metadata, response and error

        Raises:
            TransientError: Network timeout, rate limit (429), service unavailable (5xx)
            PermanentError: Auth failure (401/403), unknown operation (404)
        """
        data = await self._post(
            f"{self.model_url}:fetchPredictOperation",
            {"operationName": operation_name},
        )
        return OperationState(
            name=data.get("name") or operation_name,
            done=bool(data.get("done", False)),
            metadata=data.get("metadata"),
            response=data.get("response"),
            error=data.get("error"),
        )

    async def _post(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, headers=self.headers, json=payload)
        except httpx.TimeoutException as e:
            raise SynthesisNetworkError(f"Request timeout after {self.timeout}s: {e}") from e
        except httpx.HTTPError as e:
            raise SynthesisNetworkError(f"Network error: {e}") from e

        # Error classification
        if response.status_code == 429:
            raise SynthesisRateLimitError(f"Rate limit exceeded: {_error_text(response)}")
        elif response.status_code in (500, 502, 503, 504):
            raise SynthesisNetworkError(
                f"Service unavailable ({response.status_code}): {_error_text(response)}"
            )
        elif response.status_code in (401, 403):
            raise SynthesisAuthError(
                f"Authentication failed ({response.status_code}): {_error_text(response)}"
            )
        elif response.status_code >= 400:
            raise SynthesisRequestError(
                f"Request rejected ({response.status_code}): {_error_text(response)}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise SynthesisRequestError(f"Invalid JSON from synthesis API: {e}") from e


def _error_text(response: httpx.Response) -> str:
    """Prefer the provider's structured error message over the raw body."""
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
    return response.text
