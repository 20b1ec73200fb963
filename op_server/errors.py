"""
Error taxonomy for the OpenID Provider.
OAuth-facing errors carry the RFC 6749 error code and HTTP status used when they are rendered as JSON.
"""


class OPError(Exception):
    """Base class. `error` is the OAuth error code, `description` is safe to show to clients."""

    error = "server_error"
    status_code = 500
    default_description = "An unexpected error occurred"

    def __init__(self, description: str | None = None):
        self.description = description or self.default_description
        super().__init__(self.description)


class ConfigurationError(OPError):
    """Malformed startup configuration (clients, JWKS, env). Process-fatal."""

    default_description = "Invalid configuration"

    def __init__(self, description: str | None = None, fields: list[str] | None = None):
        self.fields = list(fields or [])
        if fields and not description:
            description = "; ".join(self.fields)
        super().__init__(description)


class ValidationError(OPError):
    """Malformed input shape (uid, email, password). Stays within this service."""

    error = "invalid_request"
    status_code = 400
    default_description = "Malformed request"


class InvalidInteractionError(ValidationError):
    default_description = "Malformed interaction identifier"


class AuthenticationError(OPError):
    """Credential mismatch at login. Re-rendered, never redirected."""

    error = "access_denied"
    status_code = 401
    default_description = "Invalid email or password"


class AuthorizationError(OPError):
    """Valid credentials, but the account may not use OAuth."""

    error = "unauthorized_client"
    status_code = 403
    default_description = "Account is not authorized for this client"


class ProtocolError(OPError):
    error = "invalid_request"
    status_code = 400
    default_description = "Invalid request"


class InvalidRequest(ProtocolError):
    pass


class InvalidClient(ProtocolError):
    error = "invalid_client"
    status_code = 401
    default_description = "Client authentication failed"


class InvalidGrant(ProtocolError):
    error = "invalid_grant"
    default_description = "Grant is invalid, expired or revoked"


class UnauthorizedClient(ProtocolError):
    error = "unauthorized_client"
    default_description = "Client is not authorized to use this grant type"


class UnsupportedGrantType(ProtocolError):
    error = "unsupported_grant_type"
    default_description = "Unsupported grant type"


class UnsupportedResponseType(ProtocolError):
    error = "unsupported_response_type"
    default_description = "Unsupported response type"


class InvalidScope(ProtocolError):
    error = "invalid_scope"
    default_description = "Requested scope is invalid"


class InvalidTarget(ProtocolError):
    error = "invalid_target"
    default_description = "Requested resource indicator is invalid"


class InvalidToken(ProtocolError):
    error = "invalid_token"
    status_code = 401
    default_description = "Access token is invalid or expired"


class LoginRequired(ProtocolError):
    error = "login_required"
    default_description = "End-user authentication is required"


class ConsentRequired(ProtocolError):
    error = "consent_required"
    default_description = "End-user consent is required"


class InteractionNotFound(ProtocolError):
    """Interaction unknown, expired, already finished, or not bound to this browser."""

    default_description = "Interaction session not found or expired"
