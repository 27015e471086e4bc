"""HTTP client for the assessment backend."""

import logging
from typing import Any, Callable, Dict, Optional

import httpx

import config
from models import unwrap

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]


class ApiError(Exception):
    """A backend call failed.

    ``recoverable`` tells the caller whether repeating the same request can
    succeed (network trouble, server overload) or not (the backend refused
    it on its merits).
    """

    def __init__(self, message: str, status_code: Optional[int] = None, recoverable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.recoverable = recoverable


class NotAuthenticatedError(ApiError):
    """No bearer token is available, or the backend rejected it."""

    def __init__(self, message: str = "Not authenticated. Please sign in and try again.",
                 status_code: Optional[int] = None):
        # A refreshed token from the auth provider can make a retry succeed.
        super().__init__(message, status_code=status_code, recoverable=True)


class TransportError(ApiError):
    """Network failure, timeout, or a transient server error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code, recoverable=True)


class RequestRejectedError(ApiError):
    """The backend refused the request (e.g. a duplicate submission)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code, recoverable=False)


def env_token_provider() -> Optional[str]:
    """Default token source: the configured ``ASSESS_API_TOKEN``."""
    return config.API_TOKEN or None


class ApiClient:
    """Thin wrapper over ``httpx.Client``.

    Every call carries ``Authorization: Bearer <token>`` from
    ``token_provider``; when it yields nothing the call fails with
    NotAuthenticatedError before any request is made.
    """

    def __init__(
        self,
        base_url: str = config.API_BASE_URL,
        token_provider: TokenProvider = env_token_provider,
        timeout: float = config.REQUEST_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._token_provider = token_provider
        self._client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_test(self, test_id: str) -> Any:
        return self._request("GET", config.TEST_DEFINITION_PATH.format(test_id=test_id))

    def submit_test(self, test_id: str, body: Dict[str, Any]) -> str:
        """POST a submission and return the backend's submission id."""
        data = self._request("POST", config.SUBMIT_PATH.format(test_id=test_id), json=body)
        submission_id = data.get("submissionId") if isinstance(data, dict) else None
        if not submission_id:
            raise RequestRejectedError("Submission accepted without a submission id")
        return str(submission_id)

    def save_draft(self, test_id: str, body: Dict[str, Any]) -> None:
        self._request("PUT", config.DRAFT_PATH.format(test_id=test_id), json=body)

    def get_results(self, submission_id: str) -> Any:
        return self._request("GET", config.RESULTS_PATH.format(submission_id=submission_id))

    def execute_code(self, body: Dict[str, Any]) -> Any:
        return self._request("POST", config.EXECUTE_CODE_PATH, json=body)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ApiClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        token = self._token_provider()
        if not token:
            raise NotAuthenticatedError()
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        headers = self._headers()
        try:
            response = self._client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("%s %s timed out: %s", method, path, e)
            raise TransportError("The server took too long to respond.") from e
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise TransportError(f"Network error: {e}") from e

        status = response.status_code
        if status in (401, 403):
            raise NotAuthenticatedError(status_code=status)
        if status == 429 or status >= 500:
            logger.warning("%s %s returned %s", method, path, status)
            raise TransportError(f"Server error ({status}). Please try again.", status_code=status)
        if status >= 400:
            message = _error_message(response) or f"Request rejected ({status})"
            logger.warning("%s %s rejected with %s: %s", method, path, status, message)
            raise RequestRejectedError(message, status_code=status)

        if not response.content:
            return {}
        try:
            return unwrap(response.json())
        except ValueError as e:
            raise TransportError("The server sent an unreadable response.", status_code=status) from e


def _error_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or None
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if isinstance(body.get(key), str):
                return body[key]
    return None
