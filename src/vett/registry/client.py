"""Async client for the vett skill registry.

Every payload is passed through :mod:`vett.registry.schemas` before it is
returned, so callers only ever see validated data.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import time
from collections.abc import Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import quote

import httpx

from vett import __version__
from vett.errors import (
    InvalidManifestError,
    InvalidResponseError,
    JobTimeoutError,
    RateLimitedError,
    RegistryError,
    SignatureInvalidError,
    UpgradeRequiredError,
)
from vett.registry.schemas import (
    ApiJob,
    ApiSkillDetail,
    ApiSkillWithLatestVersion,
    ResolveResult,
    SigningKey,
    assert_https_url,
    validate_job,
    validate_resolve_response,
    validate_signing_keys,
    validate_skill_detail,
    validate_skills_list,
)
from vett.skills.manifest import DEFAULT_MAX_TOTAL_BYTES

logger = logging.getLogger(__name__)

MAX_RETRY_AFTER_SECONDS = 30 * 60
MIN_VERSION_HEADERS = ("X-Vett-Min-Cli-Version", "X-Vett-Min-Version")

# Job polling backoff
FAST_POLL_INTERVAL = 1.0
SLOW_POLL_INTERVAL = 3.0
FAST_POLL_WINDOW = 30.0
DEFAULT_JOB_TIMEOUT = 300.0

MAX_DOWNLOAD_REDIRECTS = 5
# JSON escaping can roughly double the encoded size of file contents
MAX_ARTIFACT_BYTES = 2 * DEFAULT_MAX_TOTAL_BYTES


def parse_retry_after(raw: str | None, now: datetime | None = None) -> float | None:
    """Parse a ``Retry-After`` header into a bounded delay in seconds.

    Accepts delta-seconds (``120``) or an HTTP-date. Returns None when the
    header is missing, invalid or in the past. Delays are capped at 30 minutes.
    """
    if not raw:
        return None
    raw = raw.strip()

    try:
        seconds = float(raw)
    except ValueError:
        seconds = None
    if seconds is not None:
        if math.isfinite(seconds) and seconds > 0:
            return min(seconds, MAX_RETRY_AFTER_SECONDS)
        return None

    try:
        when = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    delta = (when - (now or datetime.now(timezone.utc))).total_seconds()
    if delta > 0:
        return min(delta, MAX_RETRY_AFTER_SECONDS)
    return None


async def _read_bounded(response: httpx.Response, max_bytes: int) -> bytes:
    chunks: list[bytes] = []
    total = 0
    async for chunk in response.aiter_bytes():
        total += len(chunk)
        if total > max_bytes:
            logger.warning("Artifact exceeds size limit, aborting download")
            raise InvalidManifestError(f"Skill artifact is too large (max {max_bytes} bytes)")
        chunks.append(chunk)
    return b"".join(chunks)


def poll_interval(elapsed: float) -> float:
    """Seconds to wait before the next job poll, given time already waited."""
    return FAST_POLL_INTERVAL if elapsed < FAST_POLL_WINDOW else SLOW_POLL_INTERVAL


class RegistryClient:
    """Client for the registry REST API.

    Example usage:
        ```python
        client = RegistryClient("https://vett.sh")
        result = await client.resolve("https://github.com/acme/tools/tree/main/skills/hello")
        if isinstance(result, ResolveProcessing):
            job = await client.wait_for_job(result.job_id)
        ```
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        client_version: str = __version__,
    ) -> None:
        """Initialize the registry client.

        Args:
            base_url: Registry base URL
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport, used to stub the network
            client_version: Version reported in identification headers
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client_version = client_version
        self._transport = transport

    def _get_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": f"vett-cli/{self.client_version}",
            "X-Vett-Client": "cli",
            "X-Vett-Version": self.client_version,
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self.timeout,
            follow_redirects=True,
        )

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Translate an error response into the matching exception.

        Raises:
            UpgradeRequiredError: On 426 or an ``upgrade_required`` body code
            RateLimitedError: On 429
            RegistryError: On any other non-success status
        """
        if response.is_success:
            return

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}

        if response.status_code == 426 or body.get("code") == "upgrade_required":
            min_version = body.get("minVersion")
            if not isinstance(min_version, str):
                min_version = next(
                    (response.headers[h] for h in MIN_VERSION_HEADERS if h in response.headers),
                    None,
                )
            raise UpgradeRequiredError(min_version, self.client_version, status=response.status_code)

        if response.status_code == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            logger.warning(f"Registry rate limit hit (retry after: {retry_after})")
            raise RateLimitedError(retry_after)

        error = body.get("error")
        message = error if isinstance(error, str) and error else f"HTTP {response.status_code}"
        logger.error(f"Registry API error: {response.status_code}")
        raise RegistryError(f"Registry error: {message}", status=response.status_code)

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> Any:
        """Make an HTTP request to the registry API.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint path
            params: Query parameters
            json_data: JSON body data for POST requests
            allow_not_found: Return None on 404 instead of raising

        Returns:
            Parsed JSON response, or None for an allowed 404

        Raises:
            RegistryError: If the request fails or the registry reports an error
            InvalidResponseError: If the body is not JSON
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        async with self._client() as client:
            try:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self._get_headers(),
                    params=params,
                    json=json_data,
                )
            except httpx.RequestError as e:
                logger.error(f"Registry request failed: {e}")
                raise RegistryError(f"Registry request failed: {e}") from e

        if allow_not_found and response.status_code == 404:
            return None
        self._raise_for_status(response)

        try:
            return response.json()
        except ValueError:
            raise InvalidResponseError() from None

    async def resolve(self, source: str, version: str | None = None) -> ResolveResult:
        """Resolve a source string to a ready, processing or not-found result."""
        payload: dict[str, Any] = {"input": source}
        if version:
            payload["version"] = version
        raw = await self._make_request("POST", "/api/v1/resolve", json_data=payload)
        return validate_resolve_response(raw)

    async def get_detail(self, slug: str) -> ApiSkillDetail | None:
        """Fetch full detail for a skill slug, or None if the registry has no such skill."""
        raw = await self._make_request(
            "GET", f"/api/v1/skills/{quote(slug, safe='/')}", allow_not_found=True
        )
        if raw is None:
            return None
        return validate_skill_detail(raw)

    async def search(self, query: str | None = None, limit: int = 20) -> list[ApiSkillWithLatestVersion]:
        params: dict[str, Any] = {"limit": limit}
        if query:
            params["q"] = query
        raw = await self._make_request("GET", "/api/v1/skills", params=params)
        return validate_skills_list(raw)

    async def get_signing_keys(self) -> list[SigningKey]:
        raw = await self._make_request("GET", "/api/v1/signing-keys")
        return validate_signing_keys(raw)

    async def get_job(self, job_id: str) -> ApiJob:
        raw = await self._make_request("GET", f"/api/v1/jobs/{quote(job_id, safe='')}")
        return validate_job(raw)

    async def wait_for_job(
        self,
        job_id: str,
        timeout: float = DEFAULT_JOB_TIMEOUT,
        on_progress: Callable[[ApiJob], None] | None = None,
    ) -> ApiJob:
        """Poll a registry job until it completes or fails.

        Polls about once a second for the first 30 seconds, then every
        3 seconds.

        Args:
            job_id: Job identifier returned by ``resolve``
            timeout: Overall time budget in seconds
            on_progress: Called with each polled job status

        Returns:
            The finished job (``complete`` or ``failed``)

        Raises:
            JobTimeoutError: If the job is still running when the budget runs
                out. The job may still finish server-side.
        """
        start = time.monotonic()
        while True:
            job = await self.get_job(job_id)
            if on_progress:
                on_progress(job)
            if job.finished:
                return job

            elapsed = time.monotonic() - start
            if elapsed >= timeout:
                raise JobTimeoutError(job_id, timeout)
            await asyncio.sleep(min(poll_interval(elapsed), max(timeout - elapsed, 0.0)))

    def artifact_url_for(self, slug: str, version: str) -> str:
        return f"{self.base_url}/api/v1/download/{quote(f'{slug}@{version}', safe='')}"

    async def download_artifact(
        self, url: str, expected_hash: str, max_bytes: int = MAX_ARTIFACT_BYTES
    ) -> bytes:
        """Download an artifact over https and check it against its claimed hash.

        Redirects are followed one hop at a time so every target is checked
        before it is requested. The body is streamed and abandoned once it
        passes ``max_bytes``.

        Returns:
            The artifact bytes exactly as received

        Raises:
            InsecureUrlError: If the URL, or any redirect target, is not https
            InvalidManifestError: If the body is larger than ``max_bytes``
            RegistryError: On network errors, error statuses or too many redirects
            SignatureInvalidError: If the SHA-256 of the bytes differs from
                ``expected_hash``
        """
        assert_https_url(url, "artifact")

        content: bytes | None = None
        async with self._client() as client:
            for _ in range(MAX_DOWNLOAD_REDIRECTS + 1):
                try:
                    async with client.stream(
                        "GET", url, headers=self._get_headers(), follow_redirects=False
                    ) as response:
                        if response.is_redirect:
                            url = str(response.url.join(response.headers["Location"]))
                            assert_https_url(url, "artifact")
                            continue
                        if not response.is_success:
                            await response.aread()
                            self._raise_for_status(response)
                        content = await _read_bounded(response, max_bytes)
                        break
                except httpx.RequestError as e:
                    logger.error(f"Artifact download failed: {e}")
                    raise RegistryError(f"Artifact download failed: {e}") from e

        if content is None:
            raise RegistryError(f"Artifact download failed: more than {MAX_DOWNLOAD_REDIRECTS} redirects")

        actual = hashlib.sha256(content).hexdigest()
        if actual != expected_hash.lower():
            logger.warning("Artifact hash mismatch, refusing download")
            raise SignatureInvalidError("Artifact hash does not match the registry's published hash")
        logger.debug(f"Downloaded artifact ({len(content)} bytes)")
        return content
