import asyncio
from typing import Any, Dict, Optional

import httpx
from httpx import HTTPStatusError, TimeoutException

from adlex.core.exceptions import APIClientError, APITimeoutError
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


class BaseLLMClient:
    """Base client for OpenAI-compatible HTTP APIs.

    Handles request construction, timeouts, transport-level retries with
    exponential backoff, and error logging. Client errors (4xx other than
    429) are never retried.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 60,
        max_attempts: int = 3,
        retry_delay: float = 2,
    ):
        """Initialize the client.

        Args:
            api_key: Bearer token sent with every request
            base_url: API root, e.g. ``https://api.openai.com/v1``
            timeout: Request timeout in seconds
            max_attempts: Total HTTP attempts per call (1 disables retries)
            retry_delay: Base delay for exponential backoff
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.logger = LOGGER

    async def post_json(
        self,
        endpoint: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """POST a JSON payload and return the decoded response.

        Args:
            endpoint: Path appended to ``base_url`` (``/chat/completions``)
            payload: JSON body
            headers: Extra headers

        Returns:
            Parsed JSON response

        Raises:
            APIClientError: If the call fails after all attempts
            APITimeoutError: If every attempt timed out
        """
        url = f"{self.base_url}{endpoint}"
        request_headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if headers:
            request_headers.update(headers)

        self.logger.debug(f"Calling API: {url}", extra={"timeout": self.timeout})

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(self.max_attempts):
                try:
                    response = await client.post(url, headers=request_headers, json=payload)
                    response.raise_for_status()
                    return response.json()
                except HTTPStatusError as e:
                    await self._handle_http_error(e, attempt, url)
                except TimeoutException as e:
                    await self._handle_timeout_error(e, attempt, url)
                except (httpx.HTTPError, ValueError) as e:
                    await self._handle_generic_error(e, attempt, url)

        raise APIClientError(f"Failed to call API {url} after {self.max_attempts} attempts")

    async def _handle_http_error(self, error: HTTPStatusError, attempt: int, url: str) -> None:
        status_code = error.response.status_code
        error_body = error.response.text

        self.logger.warning(
            f"API HTTP error (attempt {attempt + 1}/{self.max_attempts})",
            extra={"url": url, "status_code": status_code, "error_body": error_body[:500]},
        )

        if 400 <= status_code < 500 and status_code != 429:
            raise APIClientError(f"API client error {status_code}: {error_body[:500]}", original_error=error) from error

        if attempt < self.max_attempts - 1:
            await self._wait_before_retry(attempt)
        else:
            raise APIClientError(f"API HTTP error {status_code} after retries", original_error=error) from error

    async def _handle_timeout_error(self, error: TimeoutException, attempt: int, url: str) -> None:
        self.logger.warning(f"API timeout (attempt {attempt + 1}/{self.max_attempts})", extra={"url": url})

        if attempt < self.max_attempts - 1:
            await self._wait_before_retry(attempt)
        else:
            raise APITimeoutError(f"API timeout after {self.max_attempts} attempts", original_error=error) from error

    async def _handle_generic_error(self, error: Exception, attempt: int, url: str) -> None:
        self.logger.warning(
            f"API error (attempt {attempt + 1}/{self.max_attempts})",
            extra={"url": url, "error": str(error)},
        )

        if attempt < self.max_attempts - 1:
            await self._wait_before_retry(attempt)
        else:
            raise APIClientError(f"API error: {error}", original_error=error) from error

    async def _wait_before_retry(self, attempt: int) -> None:
        await asyncio.sleep(self.retry_delay * (2 ** attempt))
