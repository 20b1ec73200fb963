"""
Client authentication at the token endpoint. RFC 6749 §2.3.1.
Credentials via Authorization: Basic base64(client_id:client_secret) or client_id + client_secret in form.
Confidential clients must use the method they are registered with.
Clients registered with token_endpoint_auth_method=none are public and only identify themselves.
"""
import base64
import binascii
import logging
from urllib.parse import unquote_plus

from fastapi import Request

from op_server.clients import ClientDescriptor, ClientRegistry
from op_server.errors import InvalidClient
from op_server.security import sanitize_for_logging, timing_safe_equal

logger = logging.getLogger(__name__)


def _parse_basic(header_value: str) -> tuple[str, str] | None:
    """Parse 'Basic <base64(client_id:client_secret)>'. Returns (client_id, client_secret) or None."""
    if not header_value or not header_value.strip().lower().startswith("basic "):
        return None
    try:
        decoded = base64.b64decode(header_value.strip()[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    if ":" not in decoded:
        return None
    client_id, _, client_secret = decoded.partition(":")
    # Both halves are form-urlencoded before base64
    return unquote_plus(client_id), unquote_plus(client_secret)


def get_client_credentials_from_request(
    request: Request,
    client_id_form: str | None,
    client_secret_form: str | None,
) -> tuple[str | None, str | None, str | None]:
    """
    Get (client_id, client_secret, method) from Authorization Basic or from the form.
    method is the auth method the credentials arrived with, or None when no secret was sent.
    """
    auth_header = request.headers.get("Authorization")
    basic = _parse_basic(auth_header) if auth_header else None
    if basic:
        client_id, client_secret = basic
        if client_id_form and client_id_form != client_id:
            raise InvalidClient("client authentication failed: client_id mismatch between header and body")
        return client_id, client_secret, "client_secret_basic"
    if client_id_form and client_secret_form is not None:
        return client_id_form.strip(), client_secret_form, "client_secret_post"
    if client_id_form:
        return client_id_form.strip(), None, None
    return None, None, None


def authenticate_client(
    clients: ClientRegistry,
    request: Request,
    client_id_form: str | None,
    client_secret_form: str | None,
) -> ClientDescriptor:
    """
    Resolve and authenticate the client. Unknown clients and wrong or missing secrets for
    confidential clients raise InvalidClient (401).
    """
    client_id, client_secret, method = get_client_credentials_from_request(request, client_id_form, client_secret_form)
    if not client_id:
        raise InvalidClient("client authentication failed: client_id is required")
    client = clients.get(client_id)
    if client is None:
        logger.info("Token request from unknown client_id=%s", sanitize_for_logging(client_id))
        raise InvalidClient("client authentication failed: unknown client")
    if client.is_confidential:
        if client_secret is None or not timing_safe_equal(client_secret, client.client_secret or ""):
            logger.info("Client authentication failed for client_id=%s", client.client_id)
            raise InvalidClient("client authentication failed: invalid client credentials")
        if method != client.token_endpoint_auth_method:
            logger.info(
                "Client %s authenticated with %s but is registered for %s",
                client.client_id,
                method,
                client.token_endpoint_auth_method,
            )
            raise InvalidClient("client authentication failed: authentication method not registered for this client")
    return client
