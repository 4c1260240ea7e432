from __future__ import annotations

import httpx
import pytest

import habitquest.auth as auth
from habitquest.auth import HttpAuthenticator, StaticTokenAuthenticator, extract_token
from habitquest.errors import DownstreamUnavailable, Unauthorized


class _Resp:
    def __init__(self, status_code: int, data: object) -> None:
        self.status_code = status_code
        self._data = data

    def json(self) -> object:
        if isinstance(self._data, Exception):
            raise self._data
        return self._data


def _client_returning(resp: _Resp, seen: list[dict[str, object]]):
    class _Client:
        def __init__(self, *args, **kwargs) -> None:
            pass

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb) -> None:
            return None

        def get(self, url: str, headers: dict[str, str]) -> _Resp:
            seen.append({"url": url, "headers": headers})
            return resp

    return _Client


def test_bearer_header_wins_over_cookie() -> None:
    token = extract_token({"authorization": "Bearer abc"}, {"sb-access-token": "cookie"})
    assert token == "abc"


def test_cookie_is_used_without_header() -> None:
    assert extract_token({}, {"sb-access-token": " cookie "}) == "cookie"
    assert extract_token({"authorization": "Basic abc"}, {}) is None
    assert extract_token({"authorization": "Bearer "}, {}) is None


def test_static_authenticator() -> None:
    authenticator = StaticTokenAuthenticator({"tok": "u1"})

    assert authenticator.authenticate({"authorization": "Bearer tok"}, {}) == "u1"
    with pytest.raises(Unauthorized):
        authenticator.authenticate({"authorization": "Bearer other"}, {})
    with pytest.raises(Unauthorized):
        authenticator.authenticate({}, {})


def test_http_authenticator_resolves_user(monkeypatch) -> None:
    seen: list[dict[str, object]] = []
    monkeypatch.setattr(auth.httpx, "Client", _client_returning(_Resp(200, {"id": "user-123"}), seen))

    authenticator = HttpAuthenticator("https://auth.example.test/", "anon-key")
    user_id = authenticator.authenticate({"authorization": "Bearer tok"}, {})

    assert user_id == "user-123"
    assert seen[0]["url"] == "https://auth.example.test/auth/v1/user"
    assert seen[0]["headers"] == {"Authorization": "Bearer tok", "apikey": "anon-key"}


@pytest.mark.parametrize(
    "resp",
    [
        _Resp(401, {"message": "invalid token"}),
        _Resp(200, {"email": "no-id@example.test"}),
        _Resp(200, ValueError("not json")),
    ],
)
def test_http_authenticator_rejects(monkeypatch, resp: _Resp) -> None:
    monkeypatch.setattr(auth.httpx, "Client", _client_returning(resp, []))

    with pytest.raises(Unauthorized):
        HttpAuthenticator("https://auth.example.test", None).authenticate({"authorization": "Bearer tok"}, {})


def test_http_authenticator_transport_error_is_an_outage(monkeypatch) -> None:
    class _Client:
        def __init__(self, *args, **kwargs) -> None:
            pass

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb) -> None:
            return None

        def get(self, url: str, headers: dict[str, str]) -> _Resp:
            raise httpx.ReadTimeout("slow")

    monkeypatch.setattr(auth.httpx, "Client", _Client)

    with pytest.raises(DownstreamUnavailable) as excinfo:
        HttpAuthenticator("https://auth.example.test", None).authenticate({}, {"sb-access-token": "tok"})
    assert excinfo.value.is_retryable is True
    assert excinfo.value.status_code == 500


@pytest.mark.parametrize("status", [500, 502, 503])
def test_http_authenticator_provider_5xx_is_an_outage(monkeypatch, status: int) -> None:
    monkeypatch.setattr(auth.httpx, "Client", _client_returning(_Resp(status, {"message": "down"}), []))

    with pytest.raises(DownstreamUnavailable):
        HttpAuthenticator("https://auth.example.test", None).authenticate({"authorization": "Bearer tok"}, {})
