"""
HTTP plumbing shared by the source clients.

Each client keeps one pooled :class:`httpx.Client` for the lifetime of its
service and is closed from the service's shutdown hook. Transport errors and
transient upstream statuses are retried with tenacity; anything else becomes
an :class:`APIError` so the scheduler counts it as a failed fetch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import LoggerAdapter
from typing import Any, Mapping, MutableMapping, Optional

import httpx
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from ...core.logging import get_logger
from ..base import AdapterError

DEFAULT_TIMEOUT = 15.0
USER_AGENT = "lifestream-dashboard"
RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class APIError(AdapterError):
    """Raised when an HTTP API call fails."""


class TransientStatusError(APIError):
    """Upstream answered with a status worth retrying."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"HTTP {response.status_code} from {response.request.method} {response.request.url}")
        self.status_code = response.status_code


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, (httpx.TransportError, TransientStatusError))


@dataclass(slots=True)
class BaseAPIClient:
    """
    Synchronous HTTP client reused across polls.

    Parameters
    ----------
    base_url:
        Root URL for the upstream service. Empty when callers pass absolute URLs.
    timeout:
        Per-request timeout in seconds. The scheduler has no timeout of its own.
    default_headers:
        Headers attached to every request.
    max_attempts:
        Attempts per call for transport errors and transient statuses.
    """

    base_url: str = ""
    timeout: float = DEFAULT_TIMEOUT
    default_headers: MutableMapping[str, str] = field(default_factory=dict)
    max_attempts: int = 3
    logger: LoggerAdapter = field(init=False, repr=False)
    _http: Optional[httpx.Client] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.default_headers.setdefault("User-Agent", USER_AGENT)
        self.logger = get_logger(
            f"{self.__class__.__module__}.{self.__class__.__name__}",
            extra={"base_url": self.base_url or "-"},
        )

    @property
    def http(self) -> httpx.Client:
        if self._http is None or self._http.is_closed:
            self._http = httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=dict(self.default_headers),
                follow_redirects=True,
            )
        return self._http

    def close(self) -> None:
        """Release pooled connections. The next request opens a new pool."""

        if self._http is not None:
            self._http.close()
            self._http = None

    def _log_retry(self, state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        self.logger.warning(
            "Retrying HTTP request",
            extra={
                "attempt": state.attempt_number,
                "sleep": state.next_action.sleep if state.next_action else 0.0,
                "error": str(exc),
            },
        )

    def _send_once(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        response = self.http.request(method, url, **kwargs)
        if response.status_code in RETRYABLE_STATUS:
            raise TransientStatusError(response)
        return response

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        self.logger.debug("HTTP request", extra={"method": method, "url": url})
        retrying = Retrying(
            retry=retry_if_exception(_is_retryable),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            stop=stop_after_attempt(self.max_attempts),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            response = retrying(self._send_once, method, url, **kwargs)
        except APIError:
            raise
        except httpx.HTTPError as exc:
            raise APIError(f"{method} {url} failed after {self.max_attempts} attempts: {exc}") from exc

        if response.is_error:
            raise APIError(f"HTTP {response.status_code} from {method} {response.url}: {response.text[:200]}")
        self.logger.debug("HTTP response", extra={"status_code": response.status_code, "url": str(response.url)})
        return response

    def _get_json(self, url: str, *, params: Optional[Mapping[str, Any]] = None) -> Any:
        response = self._request("GET", url, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise APIError(f"Response from {response.url} is not JSON: {exc}") from exc

    def _head(self, url: str) -> httpx.Response:
        return self._request("HEAD", url)
