"""Exception classes for the GitLab client and resource reconcilers."""

from typing import Optional


class RemoteError(Exception):
    """Base exception for failures reported by the remote GitLab API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_text: Optional[str] = None,
    ) -> None:
        """Initialize remote error.

        Args:
            message: Error message
            status_code: HTTP status code if available
            response_text: Response body text if available
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_text = response_text
        # Filled in by the reconciler that was acting when the error surfaced
        self.operation: Optional[str] = None
        self.identity: Optional[str] = None
        self.resource_type: Optional[str] = None

    def annotate(
        self,
        operation: str,
        identity: Optional[str],
        resource_type: Optional[str] = None,
    ) -> "RemoteError":
        """Attach the reconciler operation context to this error.

        The first annotation wins so an error raised by a nested read keeps
        the context of the call that actually failed.
        """
        if self.operation is None:
            self.operation = operation
            self.identity = identity
            self.resource_type = resource_type
        return self

    def __str__(self) -> str:
        """String representation of the error."""
        parts = []
        if self.operation:
            target = self.resource_type or "resource"
            if self.identity:
                target = f"{target} {self.identity}"
            parts.append(f"{self.operation} {target} failed")
        parts.append(self.message)
        if self.status_code:
            parts.append(f"Status: {self.status_code}")
        if self.response_text:
            # Truncate response text for readability
            response_preview = self.response_text[:200]
            if len(self.response_text) > 200:
                response_preview += "..."
            parts.append(f"Response: {response_preview}")
        return " | ".join(parts)


class AuthenticationError(RemoteError):
    """Raised when authentication fails (401)."""
    pass


class AuthorizationError(RemoteError):
    """Raised when authorization fails (403)."""
    pass


class RateLimitError(RemoteError):
    """Raised when rate limit is exceeded (429)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_text: Optional[str] = None,
        retry_after: Optional[int] = None,
    ) -> None:
        """Initialize rate limit error.

        Args:
            message: Error message
            status_code: HTTP status code
            response_text: Response body text
            retry_after: Seconds to wait before retrying
        """
        super().__init__(message, status_code, response_text)
        self.retry_after = retry_after


class ClientError(RemoteError):
    """Raised for 4xx client errors."""
    pass


class RemoteNotFoundError(ClientError):
    """Raised when a requested remote entity does not exist (404)."""
    pass


class ConflictError(ClientError):
    """Raised when there's a conflict with the current remote state (409)."""
    pass


class ServerError(RemoteError):
    """Raised for 5xx server errors."""
    pass


class NetworkError(RemoteError):
    """Raised for network-related errors."""
    pass


class ProviderError(Exception):
    """Base exception for errors raised locally by the provider."""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        field: Optional[str] = None,
    ) -> None:
        """Initialize provider error.

        Args:
            message: Error message
            resource_type: Type of resource being reconciled
            field: Attribute the error relates to, if any
        """
        super().__init__(message)
        self.message = message
        self.resource_type = resource_type
        self.field = field


class MalformedIdentifierError(ProviderError):
    """Raised when a resource identity has the wrong number of parts."""
    pass


class InvalidIdentifierComponentError(ProviderError):
    """Raised when a part of a resource identity cannot be parsed."""
    pass


class InvalidVersionError(ProviderError):
    """Raised when a version string cannot be parsed."""
    pass


class UnsupportedFeatureError(ProviderError):
    """Raised when configuration uses something the remote version lacks."""
    pass


class MissingRequiredFieldError(ProviderError):
    """Raised when the remote version requires a field the configuration omits."""
    pass


class LocalResourceUnavailableError(ProviderError):
    """Raised when a local attachment (e.g. an avatar file) cannot be read."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        resource_type: Optional[str] = None,
    ) -> None:
        super().__init__(message, resource_type=resource_type, field="avatar")
        self.path = path


class UnexpectedRemoteValueError(ProviderError):
    """Raised when the remote reports a value the resource schema cannot hold."""
    pass


class ConfigurationError(ProviderError):
    """Raised when client or provider configuration is invalid."""
    pass


class StateError(ProviderError):
    """Error with persisted provider state or manifests."""
    pass
