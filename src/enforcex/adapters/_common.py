from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Tuple

import jwt

logger = logging.getLogger("enforcex.adapters")


class AuthType(str, Enum):
    BASIC = "basic"
    JWT = "jwt"


def _authorization(headers: Mapping[str, str]) -> str:
    return headers.get("authorization") or headers.get("Authorization") or ""


def get_user_name_basic(headers: Mapping[str, str]) -> str:
    """Username of an ``Authorization: Basic ...`` header, or ``""``."""
    scheme, _, credentials = _authorization(headers).partition(" ")
    if scheme.lower() != "basic" or not credentials:
        return ""
    try:
        decoded = base64.b64decode(credentials.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return ""
    username, sep, _ = decoded.partition(":")
    return username if sep else ""


def get_user_name_jwt(headers: Mapping[str, str]) -> str:
    """``sub`` claim of the bearer token, or ``""``.

    The token is only decoded; verifying it belongs to the authentication
    layer in front of this middleware.
    """
    value = _authorization(headers).strip()
    if value[:7].lower() == "bearer ":
        value = value[7:].strip()
    if not value:
        return ""
    try:
        claims = jwt.decode(value, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        logger.warning("ENFORCEX: token decode failed: %s", e)
        return ""
    sub = claims.get("sub")
    return sub if isinstance(sub, str) else ""


Skipper = Callable[[Any], bool]


def default_skipper(_request: Any) -> bool:
    return False


@dataclass(frozen=True)
class AdapterConfig:
    """How the HTTP adapter derives ``(subject, path, method)`` from a request."""

    auth_type: AuthType = AuthType.BASIC
    skipper: Skipper = default_skipper
    add_headers: bool = False

    def get_user_name(self, headers: Mapping[str, str]) -> str:
        if AuthType(self.auth_type) is AuthType.JWT:
            return get_user_name_jwt(headers)
        return get_user_name_basic(headers)

    def request_tuple(self, headers: Mapping[str, str], path: str, method: str) -> Tuple[str, str, str]:
        return (self.get_user_name(headers), path, method)


def deny_headers(decision: Any, add_headers: bool) -> dict[str, str]:
    if not add_headers:
        return {}
    headers: dict[str, str] = {}
    reason: Optional[str] = getattr(decision, "reason", None)
    if reason:
        headers["X-Enforcex-Reason"] = str(reason)
    rule = getattr(decision, "rule", None)
    if rule:
        headers["X-Enforcex-Rule"] = ",".join(rule)
    return headers


__all__ = [
    "AuthType",
    "AdapterConfig",
    "Skipper",
    "default_skipper",
    "get_user_name_basic",
    "get_user_name_jwt",
    "deny_headers",
]
