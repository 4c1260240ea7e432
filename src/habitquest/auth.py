from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol

import httpx

from habitquest.errors import DownstreamUnavailable, Unauthorized

logger = logging.getLogger(__name__)

SESSION_COOKIE = "sb-access-token"


class Authenticator(Protocol):
    def authenticate(self, headers: Mapping[str, str], cookies: Mapping[str, str]) -> str: ...


def extract_token(headers: Mapping[str, str], cookies: Mapping[str, str]) -> str | None:
    """Bearer token from ``Authorization``, else the session cookie."""
    header = headers.get("authorization") or headers.get("Authorization") or ""
    if header.startswith("Bearer "):
        token = header[len("Bearer ") :].strip()
        if token:
            return token
    cookie = cookies.get(SESSION_COOKIE)
    return cookie.strip() if cookie and cookie.strip() else None


class StaticTokenAuthenticator:
    def __init__(self, tokens: dict[str, str]) -> None:
        self.tokens = dict(tokens)

    def authenticate(self, headers: Mapping[str, str], cookies: Mapping[str, str]) -> str:
        token = extract_token(headers, cookies)
        if token is None or token not in self.tokens:
            raise Unauthorized("Unauthorized")
        return self.tokens[token]


class HttpAuthenticator:
    """Asks the auth provider who owns the token (``GET /auth/v1/user``)."""

    def __init__(self, base_url: str, api_key: str | None, timeout_seconds: float = 5.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    def authenticate(self, headers: Mapping[str, str], cookies: Mapping[str, str]) -> str:
        token = extract_token(headers, cookies)
        if token is None:
            raise Unauthorized("Unauthorized")

        request_headers = {"Authorization": f"Bearer {token}"}
        if self.api_key:
            request_headers["apikey"] = self.api_key
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                resp = client.get(f"{self.base_url}/auth/v1/user", headers=request_headers)
        except httpx.HTTPError as exc:
            logger.warning("Auth provider unreachable: %s", exc)
            raise DownstreamUnavailable("Authentication service unavailable") from exc

        if resp.status_code >= 500:
            logger.warning("Auth provider failed status=%s", resp.status_code)
            raise DownstreamUnavailable("Authentication service unavailable")
        if resp.status_code != 200:
            logger.warning("Auth provider rejected token status=%s", resp.status_code)
            raise Unauthorized("Unauthorized")
        try:
            payload = resp.json()
        except ValueError as exc:
            logger.warning("Auth provider returned an unreadable body: %s", exc)
            raise Unauthorized("Unauthorized") from exc

        user_id = payload.get("id") if isinstance(payload, dict) else None
        if not isinstance(user_id, str) or not user_id:
            raise Unauthorized("Unauthorized")
        return user_id
