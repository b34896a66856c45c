"""Helpers for issuing and checking session tokens."""

from __future__ import annotations

import time
from functools import wraps
from typing import Any, Callable, Dict, Mapping, Optional

import jwt
from flask import current_app, request

from .audit_logger import get_audit_logger
from .errors import AuthenticationError, AuthorizationError


def _app_config() -> Mapping[str, Any]:
    return current_app.config.get("APP_CONFIG", {})


def issue_session_token(user_id: str, cfg: Mapping[str, Any]) -> str:
    """Issue a signed token whose subject is the user id."""
    now = int(time.time())
    ttl = int(cfg.get("SESSION_LIFETIME_HOURS", 24)) * 3600

    payload: Dict[str, Any] = {
        "iss": cfg.get("JWT_ISSUER") or "redpacket",
        "sub": user_id,
        "iat": now,
        "exp": now + ttl,
    }
    return jwt.encode(payload, str(cfg["JWT_SECRET"]), algorithm=cfg.get("JWT_ALGORITHM") or "HS256")


def decode_session_token(token: str, cfg: Mapping[str, Any]) -> Dict[str, Any]:
    try:
        return jwt.decode(
            token,
            str(cfg["JWT_SECRET"]),
            algorithms=[cfg.get("JWT_ALGORITHM") or "HS256"],
            issuer=cfg.get("JWT_ISSUER") or "redpacket",
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Session expired, please log in again") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError("Invalid session token") from exc


def _bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def token_required(resolve_user_id: Callable[..., Optional[str]]):
    """
    Require a session token for the acting user when REQUIRE_AUTH_TOKEN is on.

    ``resolve_user_id`` receives the view's keyword arguments and returns the
    user id the request acts for (from the path or the JSON body). With the
    flag off, requests are trusted as before.
    """

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            cfg = _app_config()
            if cfg.get("REQUIRE_AUTH_TOKEN"):
                token = _bearer_token()
                if not token:
                    raise AuthenticationError("Authentication required")
                claims = decode_session_token(token, cfg)
                acting_user = resolve_user_id(**kwargs)
                if acting_user is not None and claims.get("sub") != acting_user:
                    get_audit_logger().log_security_event(
                        "token_mismatch",
                        "medium",
                        {"subject": claims.get("sub"), "acting_user": acting_user, "path": request.path},
                    )
                    raise AuthorizationError("Token does not belong to this user")
            return view(*args, **kwargs)

        return wrapper

    return decorator


def body_field(name: str) -> Callable[..., Optional[str]]:
    """Resolver reading the acting user id from a JSON body field."""

    def _resolve(**_kwargs):
        data = request.get_json(silent=True) or {}
        value = data.get(name)
        return str(value) if value is not None else None

    return _resolve


def path_field(name: str) -> Callable[..., Optional[str]]:
    """Resolver reading the acting user id from a URL variable."""

    def _resolve(**kwargs):
        return kwargs.get(name)

    return _resolve


__all__ = ["issue_session_token", "decode_session_token", "token_required", "body_field", "path_field"]
