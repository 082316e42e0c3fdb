"""Identity resolution from the authenticating reverse proxy.

Sign-in and session cookies are handled by the identity provider in front
of this service. The proxy forwards the signed-in user as headers:

    X-Auth-User-Id     (required)
    X-Auth-User-Email
    X-Auth-User-Name

When ISUITE_PROXY_SECRET is set, the proxy must also send it in
X-Auth-Proxy-Secret; requests without a matching secret are treated as
anonymous so identity headers cannot be forged by clients that bypass the
proxy.
"""

from __future__ import annotations

import hmac
import logging
import os
from dataclasses import dataclass

from fastapi import Request

from src.errors.domain import UnauthorizedError

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-Auth-User-Id"
USER_EMAIL_HEADER = "X-Auth-User-Email"
USER_NAME_HEADER = "X-Auth-User-Name"
PROXY_SECRET_HEADER = "X-Auth-Proxy-Secret"

_MIN_PROXY_SECRET_LENGTH = 32


@dataclass(frozen=True)
class CurrentUser:
    """The signed-in user for a request."""

    id: str
    email: str | None = None
    name: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {"id": self.id, "email": self.email, "name": self.name}


def get_login_url() -> str:
    """Return where unauthenticated clients should be sent."""
    return os.environ.get("ISUITE_LOGIN_URL", "").strip() or "/login"


def get_expected_proxy_secret() -> str:
    """Return the configured proxy secret; empty string means not enforced."""
    return os.environ.get("ISUITE_PROXY_SECRET", "").strip()


def validate_proxy_secret_strength() -> None:
    """Validate the configured proxy secret at startup.

    Raises:
        ValueError: If ISUITE_PROXY_SECRET is set but shorter than 32 characters.
    """
    secret = get_expected_proxy_secret()
    if secret and len(secret) < _MIN_PROXY_SECRET_LENGTH:
        raise ValueError(
            f"ISUITE_PROXY_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_PROXY_SECRET_LENGTH} characters."
        )
    if not secret:
        logger.warning(
            "ISUITE_PROXY_SECRET is not set; identity headers are trusted as sent"
        )


def resolve_user(request: Request) -> CurrentUser | None:
    """Read the forwarded identity, or None when the request is anonymous."""
    expected = get_expected_proxy_secret()
    if expected:
        provided = request.headers.get(PROXY_SECRET_HEADER, "")
        if not provided or not hmac.compare_digest(provided, expected):
            return None

    user_id = request.headers.get(USER_ID_HEADER, "").strip()
    if not user_id:
        return None
    return CurrentUser(
        id=user_id,
        email=request.headers.get(USER_EMAIL_HEADER, "").strip() or None,
        name=request.headers.get(USER_NAME_HEADER, "").strip() or None,
    )


async def get_optional_user(request: Request) -> CurrentUser | None:
    """FastAPI dependency yielding the user or None."""
    return resolve_user(request)


async def get_current_user(request: Request) -> CurrentUser:
    """FastAPI dependency yielding the signed-in user.

    Raises:
        UnauthorizedError: No identity on the request.
    """
    user = resolve_user(request)
    if user is None:
        raise UnauthorizedError()
    return user
