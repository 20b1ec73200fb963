"""
Account store: in-memory accounts keyed by email and by subject id.
Built once at startup from OP_ACCOUNTS (JSON) or the default dev account.
"""
import logging
from collections.abc import Iterable
from dataclasses import dataclass

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from op_server.errors import ConfigurationError
from op_server.security import timing_safe_equal

logger = logging.getLogger(__name__)

# Compared against when the email is unknown, so lookups and mismatches cost the same
_DUMMY_PASSWORD = "dummy-password-for-timing"


@dataclass(frozen=True)
class Account:
    id: str
    email: str
    password: str
    display_name: str
    oauth_authorized: bool = True


DEFAULT_ACCOUNTS = (
    Account(
        id="user_123",
        email="user@example.test",
        password="passw0rd!",
        display_name="Dev User",
        oauth_authorized=True,
    ),
)


class AccountConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=254)
    password: str = Field(min_length=1, max_length=128)
    name: str = ""
    oauth_authorized: bool = True


class AccountStore:
    def __init__(self, accounts: Iterable[Account]):
        self._by_email: dict[str, Account] = {}
        self._by_id: dict[str, Account] = {}
        for account in accounts:
            self._by_email[account.email.lower()] = account
            self._by_id[account.id] = account

    @classmethod
    def from_json(cls, raw: str | None) -> "AccountStore":
        """Load accounts from a JSON array; None means the default dev account."""
        if raw is None:
            logger.info("Using default development account store")
            return cls(DEFAULT_ACCOUNTS)
        try:
            configs = pydantic.TypeAdapter(list[AccountConfig]).validate_json(raw)
        except pydantic.ValidationError as e:
            raise ConfigurationError(
                fields=[f"OP_ACCOUNTS.{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            )
        accounts = [
            Account(
                id=c.id,
                email=c.email.lower(),
                password=c.password,
                display_name=c.name,
                oauth_authorized=c.oauth_authorized,
            )
            for c in configs
        ]
        logger.info("Loaded %d account(s) from OP_ACCOUNTS", len(accounts))
        return cls(accounts)

    def __len__(self) -> int:
        return len(self._by_id)

    def find_by_email(self, email: str) -> Account | None:
        return self._by_email.get((email or "").strip().lower())

    def find_by_id(self, account_id: str) -> Account | None:
        return self._by_id.get(account_id)

    def authenticate(self, email: str, password: str) -> Account | None:
        """Return the account if email and password match; constant-time on the password."""
        account = self.find_by_email(email)
        expected = account.password if account else _DUMMY_PASSWORD
        matched = timing_safe_equal(password, expected)
        if account is None or not matched:
            return None
        return account

    def claims(self, account_id: str) -> dict:
        """
        Claims for a subject. Always succeeds: unknown subjects get {"sub": id} so the
        issuer can still answer for accounts whose backing record disappeared.
        """
        account = self._by_id.get(account_id)
        if account is None:
            return {"sub": account_id}
        claims = {"sub": account.id, "email": account.email}
        if account.display_name:
            claims["name"] = account.display_name
        return claims

