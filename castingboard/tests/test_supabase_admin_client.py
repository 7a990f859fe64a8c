from __future__ import annotations

from typing import Any, Dict, List

import pytest
import requests

from castingboard.identity import supabase_admin as admin


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, responses: Dict[str, List[FakeResponse]]) -> None:
        self.headers: Dict[str, str] = {}
        self.responses = responses
        self.calls: list[dict] = []

    def _next(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        return self.responses[method].pop(0)

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next("post", url, **kwargs)

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next("get", url, **kwargs)

    def delete(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next("delete", url, **kwargs)


def _client(session: FakeSession, **kwargs: Any) -> admin.SupabaseAuthAdminClient:
    return admin.SupabaseAuthAdminClient("https://proj.supabase.co/", "service-key", session=session, **kwargs)


def test_create_user_posts_payload_with_service_key_and_timeout() -> None:
    session = FakeSession({"post": [FakeResponse(200, {"id": "uid-1", "email": "a@x.com"})]})
    client = _client(session, timeout=4.5)

    user_id = client.create_user("a@x.com", "pw", email_confirm=True, user_metadata={"name": "A"})

    assert user_id == "uid-1"
    call = session.calls[0]
    assert call["url"] == "https://proj.supabase.co/auth/v1/admin/users"
    assert call["timeout"] == 4.5
    assert call["json"] == {
        "email": "a@x.com",
        "password": "pw",
        "email_confirm": True,
        "user_metadata": {"name": "A"},
    }
    assert session.headers["apikey"] == "service-key"
    assert session.headers["Authorization"] == "Bearer service-key"


def test_create_user_reads_nested_user_id() -> None:
    session = FakeSession({"post": [FakeResponse(200, {"user": {"id": "uid-2"}})]})
    assert _client(session).create_user("b@x.com", "pw") == "uid-2"


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(422, {"error_code": "email_exists", "msg": "A user with this email address has already been registered"}),
        FakeResponse(400, {"msg": "User already registered"}),
        FakeResponse(409, {"code": "user_already_exists"}),
    ],
)
def test_create_user_raises_identity_exists_on_conflict(response: FakeResponse) -> None:
    session = FakeSession({"post": [response]})
    with pytest.raises(admin.IdentityExistsError) as excinfo:
        _client(session).create_user("dup@x.com", "pw")
    assert excinfo.value.email == "dup@x.com"
    assert "dup@x.com" not in str(excinfo.value)


def test_create_user_propagates_other_http_errors() -> None:
    session = FakeSession({"post": [FakeResponse(500, {"msg": "boom"})]})
    with pytest.raises(requests.HTTPError):
        _client(session).create_user("a@x.com", "pw")


def test_find_user_id_pages_until_match() -> None:
    page1 = FakeResponse(200, {"users": [{"id": "u1", "email": "one@x.com"}, {"id": "u2", "email": "two@x.com"}]})
    page2 = FakeResponse(200, {"users": [{"id": "u3", "email": "Three@X.com"}]})
    session = FakeSession({"get": [page1, page2]})
    client = _client(session, page_size=2)

    assert client.find_user_id("three@x.com") == "u3"
    assert [c["params"]["page"] for c in session.calls] == [1, 2]
    assert all(c["params"]["per_page"] == 2 for c in session.calls)


def test_find_user_id_returns_none_after_last_page() -> None:
    session = FakeSession({"get": [FakeResponse(200, {"users": []})]})
    assert _client(session).find_user_id("nobody@x.com") is None


def test_delete_user_hits_user_url() -> None:
    session = FakeSession({"delete": [FakeResponse(200, {})]})
    _client(session, timeout=3).delete_user("uid-9")
    assert session.calls[0]["url"].endswith("/auth/v1/admin/users/uid-9")
    assert session.calls[0]["timeout"] == 3


def test_mask_email() -> None:
    assert admin.mask_email("alice@example.com") == "al***@example.com"
    assert admin.mask_email("broken") == "***"
