"""Error taxonomy shared by the relay components.

Each failure class maps to one handling policy:

- SignatureError: the webhook request is rejected before parsing.
- PayloadError: the request is rejected (inbound) or the background unit
  of work is aborted (outbound responses with an unexpected shape).
- CredentialError: the current operation is aborted, nothing is cached.
- TransportError: an outbound call failed; logged and aborted, never retried.
- StoreError: the key-value backend failed.
"""

from typing import Optional


class RelayError(Exception):
    """Base class for all relay errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class SignatureError(RelayError):
    """Raised when a webhook delivery fails signature verification."""


class PayloadError(RelayError):
    """Raised when a payload cannot be parsed into the expected shape.

    Attributes:
        field: Dotted path of the offending field, if known.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class CredentialError(RelayError):
    """Raised when an installation token cannot be obtained.

    Attributes:
        original_error: The underlying exception, if any.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.original_error = original_error
        super().__init__(message)


class TransportError(RelayError):
    """Raised when an outbound GitHub API call fails.

    Attributes:
        status_code: HTTP status code from the response, if one arrived.
        response_body: Response body from the API, if one arrived.
        request_url: The URL that was requested.
        method: The HTTP method used.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
        method: Optional[str] = None,
    ):
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        self.method = method
        super().__init__(message)


class StoreError(RelayError):
    """Raised when the key-value backend fails.

    Attributes:
        original_error: The underlying exception, if any.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.original_error = original_error
        super().__init__(message)
