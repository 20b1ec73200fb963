"""
Allow-list input validation for interaction routes.
"""
import re

import pydantic
from pydantic import BaseModel, Field

from op_server.errors import InvalidInteractionError, ValidationError

MAX_INTERACTION_UID_LENGTH = 100
MAX_EMAIL_LENGTH = 254
MAX_PASSWORD_LENGTH = 128

_UID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class LoginForm(BaseModel):
    email: str = Field(min_length=1, max_length=MAX_EMAIL_LENGTH, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(min_length=1, max_length=MAX_PASSWORD_LENGTH)


def validate_interaction_uid(uid: str | None) -> str:
    """Return uid if it is 1..100 chars of [A-Za-z0-9_-], else raise InvalidInteractionError."""
    if not uid or len(uid) > MAX_INTERACTION_UID_LENGTH or not _UID_PATTERN.match(uid):
        raise InvalidInteractionError()
    return uid


def parse_login_form(email: str, password: str) -> LoginForm:
    """Validate login field shapes. Email is normalized to lower case."""
    try:
        form = LoginForm(email=email.strip(), password=password)
    except pydantic.ValidationError:
        # Field names only; never echo the submitted password
        raise ValidationError("Enter a valid email address and password.")
    return LoginForm(email=form.email.lower(), password=form.password)
