import json
import logging
from typing import Any, Dict, Optional, Tuple

import httpx
from pydantic import ValidationError

from common import config
from common.job_schema import StatusResponse
from common.log import mask_secret

logger = logging.getLogger(__name__)

API_PREFIX = "/midjourney/v2"


class RemoteServiceError(Exception):
    """The remote generation service failed or answered with something unusable."""


def _parse_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except json.JSONDecodeError as e:
        logger.error("Failed to parse API response as JSON: %s", response.text[:500])
        raise RemoteServiceError("Invalid JSON response from API") from e


class RemoteGenerationClient:
    """
    Thin async wrapper over the remote image-generation API.

    The API key travels in an `api-key` header. Status checks are GETs with the
    job hash as a query parameter; every other call is a JSON POST.
    """

    def __init__(
        self,
        base_url: str = config.MIDJOURNEY_API_BASE_URL,
        api_key: str = config.MIDJOURNEY_API_KEY,
        process_mode: str = config.MIDJOURNEY_PROCESS_MODE,
        timeout: float = config.REMOTE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.process_mode = process_mode
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}{API_PREFIX}",
            headers={"api-key": api_key},
            timeout=timeout,
            transport=transport,
        )
        logger.info("Remote API at %s (key %s)", base_url or "<unset>", mask_secret(api_key))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def imagine(self, prompt: str, aspect_ratio: str = "1:1") -> Dict[str, str]:
        request_body = {
            "prompt": prompt,
            "process_mode": self.process_mode,
            "aspect_ratio": aspect_ratio,
            "webhook_endpoint": "",
            "webhook_secret": "",
        }
        logger.info("Imagine request: %s", request_body)
        response = await self._client.post("/imagine", json=request_body)
        data = _parse_body(response)

        if response.is_error:
            reason = data.get("error") if isinstance(data, dict) else None
            logger.error("API error %s: %s", response.status_code, data)
            raise RemoteServiceError(f"API request failed: {reason or response.reason_phrase}")

        hash = data.get("hash") if isinstance(data, dict) else None
        if not hash:
            logger.error("Missing hash field in response: %s", data)
            raise RemoteServiceError("Invalid API response: missing hash")

        # the API only returns a hash, so it doubles as the task id
        return {"taskId": hash, "hash": hash}

    async def status(self, hash: str) -> StatusResponse:
        response = await self._client.get("/status", params={"hash": hash})
        if response.is_error:
            logger.error("API error %s for %s: %s", response.status_code, hash, response.text[:500])
            raise RemoteServiceError(f"API request failed: {response.reason_phrase}")

        data = _parse_body(response)
        if not isinstance(data, dict):
            raise RemoteServiceError("Invalid JSON response from API")
        progress = data.get("progress")
        logger.debug("Status for %s: %s %s", hash, data.get("status"), progress)
        try:
            return StatusResponse(
                status=data.get("status"),
                progress=progress if isinstance(progress, (int, float)) and not isinstance(progress, bool) else 0,
                result=data.get("result"),
                status_reason=data.get("status_reason"),
                next_actions=data.get("next_actions"),
                hash=data.get("hash"),
            )
        except ValidationError as e:
            logger.error("Malformed status for %s: %s", hash, data)
            raise RemoteServiceError("Invalid API response: malformed status") from e

    async def _follow_up(self, action: str, hash: str, choice: int) -> Tuple[int, Any]:
        response = await self._client.post(f"/{action}", json={"hash": hash, "choice": choice})
        data = _parse_body(response)
        logger.info("%s API response (%s): %s", action.capitalize(), response.status_code, data)
        return response.status_code, data

    async def upscale(self, hash: str, choice: int) -> Tuple[int, Any]:
        """Returns the remote status code and body unchanged."""
        return await self._follow_up("upscale", hash, choice)

    async def variation(self, hash: str, choice: int) -> Tuple[int, Any]:
        """Returns the remote status code and body unchanged."""
        return await self._follow_up("variation", hash, choice)
