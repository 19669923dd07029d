"""Base client with retry logic and error handling."""

import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar, Union

import httpx
import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from gitlab_provider.clients.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ClientError,
    ConflictError,
    NetworkError,
    RateLimitError,
    RemoteError,
    RemoteNotFoundError,
    ServerError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Methods whose requests may have taken effect even when the response is lost
NON_IDEMPOTENT_METHODS = frozenset({"POST"})

FileSpec = Tuple[str, bytes]


class wait_retry_after:
    """Wait for the ``Retry-After`` of a rate-limited response.

    Falls back to ``fallback`` when the failure carries no such hint.
    """

    def __init__(self, fallback: Callable[[RetryCallState], float], max_wait: float = 300) -> None:
        self.fallback = fallback
        self.max_wait = max_wait

    def __call__(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            return min(float(retry_after), self.max_wait)
        return self.fallback(retry_state)


class BaseAPIClient(ABC):
    """Abstract base class for API clients with common functionality."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: int = 30,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        verify_ssl: Union[bool, str] = True,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        """Initialize the base API client.

        Args:
            base_url: Base URL for the API
            timeout_seconds: Request timeout in seconds
            max_retries: Maximum retry attempts for failed requests
            retry_delay_seconds: Initial delay between retries
            verify_ssl: TLS verification flag or path to a CA bundle
            user_agent: Custom user agent string
            transport: Optional httpx transport (used for testing)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds

        # Content-Type is left to httpx so multipart uploads get their boundary
        headers = {
            "User-Agent": user_agent or self._get_default_user_agent(),
            "Accept": "application/json",
        }

        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers=headers,
            follow_redirects=True,
            verify=verify_ssl,
            transport=transport,
        )

        self._request_count = 0
        self._error_count = 0
        self._last_request_time: Optional[float] = None

        self._logger = logger.bind(
            client_type=self.__class__.__name__,
            base_url=self.base_url,
        )

    def __enter__(self) -> "BaseAPIClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client and cleanup resources."""
        if self._client:
            self._client.close()

    @abstractmethod
    def _get_auth_headers(self) -> Dict[str, str]:
        """Get authentication headers for requests.

        Returns:
            Dictionary of authentication headers
        """
        pass

    def _get_default_user_agent(self) -> str:
        """Get default user agent string."""
        from gitlab_provider.version import __version__
        return f"gitlab-declarative-provider/{__version__}"

    def _make_request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
        form_data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, FileSpec]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Make a single HTTP request and map failures to the error taxonomy.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE, etc.)
            path: API endpoint path (relative to base URL)
            params: Query parameters
            json_data: JSON request body
            form_data: Form fields, sent as multipart together with ``files``
            files: Files to upload as ``{field: (filename, content)}``
            headers: Additional headers

        Returns:
            HTTP response object

        Raises:
            RemoteError: If the request fails
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        request_headers = self._get_auth_headers()
        if headers:
            request_headers.update(headers)

        self._request_count += 1
        self._last_request_time = time.time()

        request_id = f"req_{self._request_count}"

        self._logger.debug(
            "Making API request",
            request_id=request_id,
            method=method,
            url=url,
            params=params,
            has_json_data=json_data is not None,
            has_files=bool(files),
        )

        try:
            response = self._client.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                data=form_data,
                files=files,
                headers=request_headers,
            )
        except httpx.RequestError as e:
            self._error_count += 1
            self._logger.error(
                "Network error during API request",
                request_id=request_id,
                error=str(e),
            )
            raise NetworkError(f"Network error: {e}") from e

        self._logger.debug(
            "API request completed",
            request_id=request_id,
            status_code=response.status_code,
            response_size=len(response.content),
        )

        if response.is_success:
            return response

        self._error_count += 1
        raise self._error_for_response(response)

    def _error_for_response(self, response: httpx.Response) -> RemoteError:
        """Build the exception matching a failed response's status class."""
        status = response.status_code
        kwargs = {"status_code": status, "response_text": response.text}
        if status == 401:
            return AuthenticationError("Authentication failed", **kwargs)
        if status == 403:
            return AuthorizationError("Permission denied", **kwargs)
        if status == 404:
            return RemoteNotFoundError("Not found", **kwargs)
        if status == 409:
            return ConflictError("Conflict", **kwargs)
        if status == 429:
            return RateLimitError(
                "Rate limit exceeded",
                retry_after=self._get_retry_after(response),
                **kwargs,
            )
        if 400 <= status < 500:
            return ClientError(f"Client error: {status}", **kwargs)
        if 500 <= status < 600:
            return ServerError(f"Server error: {status}", **kwargs)
        return RemoteError(f"Unexpected status code: {status}", **kwargs)

    def _get_retry_after(self, response: httpx.Response) -> Optional[int]:
        """Extract retry-after value from response headers.

        Args:
            response: HTTP response

        Returns:
            Retry-after value in seconds, or None if not present
        """
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return int(retry_after)
            except ValueError:
                pass
        return None

    def with_retry(
        self,
        operation_name: str,
        operation: Callable[[], T],
        retry_on_rate_limit: bool = True,
        retry_on_failure: bool = True,
    ) -> T:
        """Execute an operation with automatic retry logic.

        Rate-limited attempts wait for the server's ``Retry-After`` when it
        sends one, everything else backs off exponentially.

        Args:
            operation_name: Name of the operation for logging
            operation: Callable to execute
            retry_on_rate_limit: Whether to retry on rate limit errors
            retry_on_failure: Whether to retry on server and network errors

        Returns:
            Result of the operation

        Raises:
            RemoteError: If the operation fails after all retries
        """
        retryable: Tuple[type, ...] = (ServerError, NetworkError) if retry_on_failure else ()
        if retry_on_rate_limit:
            retryable = retryable + (RateLimitError,)

        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.max_retries + 1),
                wait=wait_retry_after(
                    wait_exponential(
                        multiplier=self.retry_delay_seconds,
                        min=self.retry_delay_seconds,
                        max=60,
                    )
                ),
                retry=retry_if_exception_type(retryable),
                reraise=True,
            ):
                with attempt:
                    self._logger.debug(
                        "Executing operation with retry",
                        operation=operation_name,
                        attempt_number=attempt.retry_state.attempt_number,
                    )
                    return operation()
        except RemoteError as e:
            self._logger.debug(
                "Operation failed",
                operation=operation_name,
                error=e.message,
                error_type=type(e).__name__,
                status_code=e.status_code,
            )
            raise
        raise RemoteError(f"Operation {operation_name} did not run")  # pragma: no cover

    def request(
        self,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make a request through the retry policy.

        Non-idempotent requests are retried only when rate limited.
        """
        return self.with_retry(
            f"{method} {path}",
            lambda: self._make_request(method, path, **kwargs),
            retry_on_failure=method.upper() not in NON_IDEMPOTENT_METHODS,
        )

    def get_json(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Make a GET request and return JSON response.

        Raises:
            RemoteError: If response is not valid JSON
        """
        response = self.request("GET", path, params=params)
        return self._decode_json(response)

    def send_json(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, FileSpec]] = None,
    ) -> Any:
        """Send a body-carrying request and return the JSON response.

        When ``files`` is given the body is sent as multipart form data with
        ``json_data`` flattened into form fields.
        """
        if files:
            form_data = {
                key: self._form_value(value)
                for key, value in (json_data or {}).items()
                if value is not None
            }
            response = self.request(method, path, form_data=form_data, files=files)
        else:
            response = self.request(method, path, json_data=json_data)
        return self._decode_json(response)

    def delete(self, path: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Make a DELETE request, discarding the response body."""
        self.request("DELETE", path, params=params)

    @staticmethod
    def _form_value(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    @staticmethod
    def _decode_json(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise RemoteError(
                f"Failed to parse JSON response: {e}",
                status_code=response.status_code,
                response_text=response.text,
            ) from e

    def get_stats(self) -> Dict[str, Any]:
        """Get client statistics for monitoring.

        Returns:
            Dictionary with client statistics
        """
        return {
            "request_count": self._request_count,
            "error_count": self._error_count,
            "error_rate": self._error_count / max(self._request_count, 1),
            "last_request_time": self._last_request_time,
            "base_url": self.base_url,
        }

    def health_check(self) -> bool:
        """Perform a basic health check against the API.

        This is an abstract method that should be implemented by subclasses.

        Returns:
            True if the API is healthy, False otherwise
        """
        raise NotImplementedError("Subclasses must implement health check logic")
