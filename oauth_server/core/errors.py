"""OAuth error taxonomy.

Every failure the provider raises on purpose is one of these classes.
The HTTP layer turns an OAuthError into the RFC 6749 section 5.2 JSON
body; the HTML login/consent flow never raises them for user mistakes,
it re-renders the page with an inline message instead.

Codes and tokens that are missing, expired or owned by another client
all raise InvalidGrantError, so callers cannot tell "never existed" from
"expired" apart by error code.
"""

from __future__ import annotations


class OAuthError(Exception):
    """Base class: an error with an OAuth error code and an HTTP status."""

    error_code = "server_error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_response_object(self) -> dict[str, str]:
        return {"error": self.error_code, "error_description": self.message}


class InvalidRequestError(OAuthError):
    error_code = "invalid_request"
    status_code = 400


class InvalidScopeError(InvalidRequestError):
    error_code = "invalid_scope"


class InvalidGrantError(InvalidRequestError):
    error_code = "invalid_grant"


class UnsupportedGrantTypeError(InvalidRequestError):
    error_code = "unsupported_grant_type"


class InvalidClientMetadataError(InvalidRequestError):
    error_code = "invalid_client_metadata"


class InvalidClientError(OAuthError):
    error_code = "invalid_client"
    status_code = 401


class InvalidTokenError(OAuthError):
    error_code = "invalid_token"
    status_code = 401


class AlreadyExistsError(Exception):
    """A row with the same natural key already exists (duplicate username/client)."""
