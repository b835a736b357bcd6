"""Mini-README: CSRF regression tests for the demo FastAPI app.

These tests drive the middleware end to end: tokens are issued on page
loads, spent once on mutating requests, and anything else is rejected with
HTTP 403.
"""

import re

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from tiny_csrf.dependencies import get_csrf_token
from tiny_csrf.exceptions import MissingCookieSupport
from tiny_csrf.guard import CsrfGuard
from tiny_csrf.main import app
from tiny_csrf.middleware import CsrfMiddleware

SECRET = "0123456789abcdef0123456789abcdef"
SERVICE_WORKER = "https://app.example/sw.js"


def _extract_csrf_token(html: str) -> str:
    """Read the CSRF hidden input from an HTML page."""
    match = re.search(r'name="_csrf"\s+value="([^"]+)"', html)
    assert match is not None
    return match.group(1)


def _token(client: TestClient) -> str:
    response = client.get("/")
    assert response.status_code == 200
    return _extract_csrf_token(response.text)


def test_form_page_issues_token_cookie() -> None:
    client = TestClient(app)

    response = client.get("/")

    assert response.status_code == 200
    token = _extract_csrf_token(response.text)
    assert len(token) == 36
    cookie = client.cookies.get("csrfToken")
    assert cookie
    assert token not in cookie
    header = response.headers["set-cookie"].lower()
    assert "httponly" in header
    assert "samesite=strict" in header


def test_reloading_page_reuses_token() -> None:
    client = TestClient(app)

    first = _token(client)
    second = client.get("/")

    assert _extract_csrf_token(second.text) == first
    assert "set-cookie" not in second.headers


def test_form_post_with_token_succeeds_once() -> None:
    client = TestClient(app)
    token = _token(client)

    response = client.post("/messages", data={"_csrf": token, "message": "hello"})
    replay = client.post("/messages", data={"_csrf": token, "message": "hello again"})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "message": "hello"}
    assert replay.status_code == 403
    assert "CSRF" in replay.text


def test_mutating_route_rejects_missing_token() -> None:
    client = TestClient(app)
    _token(client)

    response = client.post("/messages", data={"message": "hello"})

    assert response.status_code == 403
    assert "CSRF" in response.text


def test_mutating_route_rejects_request_without_cookie() -> None:
    client = TestClient(app)
    token = _token(client)
    client.cookies.clear()

    response = client.post("/messages", data={"_csrf": token, "message": "hello"})

    assert response.status_code == 403


def test_tampered_cookie_is_ignored_and_replaced() -> None:
    client = TestClient(app)
    token = _token(client)
    client.cookies.clear()
    client.cookies.set("csrfToken", "00" * 16 + ":" + "00" * 16)

    rejected = client.post("/messages", data={"_csrf": token, "message": "hello"})
    fresh = _token(client)

    assert rejected.status_code == 403
    assert fresh != token


def test_json_put_accepts_header_token() -> None:
    client = TestClient(app)
    token = _token(client)

    response = client.put("/profile", json={"display_name": "Ada"}, headers={"x-csrf-token": token})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "display_name": "Ada"}


def test_json_put_accepts_body_token() -> None:
    client = TestClient(app)
    token = _token(client)

    response = client.put("/profile", json={"display_name": "Ada", "_csrf": token})

    assert response.status_code == 200


def test_excluded_webhook_route_skips_validation() -> None:
    client = TestClient(app)

    response = client.post("/webhooks/github", json={"event": "push"})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "source": "github", "csrf_token_available": True}


def test_healthcheck_passes_through() -> None:
    response = TestClient(app).get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def _service_worker_app() -> FastAPI:
    guard = CsrfGuard(SECRET, excluded_urls=["/sw"], excluded_referers=[SERVICE_WORKER])
    sw_app = FastAPI()
    sw_app.add_middleware(CsrfMiddleware, guard=guard)

    @sw_app.get("/sw")
    def service_worker(csrf_token: str | None = Depends(get_csrf_token)):
        return {"csrf_token": csrf_token}

    return sw_app


def test_excluded_referer_gets_no_token_or_cookie() -> None:
    client = TestClient(_service_worker_app())

    response = client.get("/sw", headers={"referer": SERVICE_WORKER})

    assert response.json() == {"csrf_token": None}
    assert "set-cookie" not in response.headers


def test_other_referers_still_get_tokens() -> None:
    client = TestClient(_service_worker_app())

    response = client.get("/sw", headers={"referer": "https://app.example/"})

    assert len(response.json()["csrf_token"]) == 36
    assert "csrfToken=" in response.headers["set-cookie"]


def test_token_dependency_without_middleware_is_fatal() -> None:
    bare_app = FastAPI()

    @bare_app.get("/")
    def index(csrf_token: str | None = Depends(get_csrf_token)):
        return {"csrf_token": csrf_token}

    with pytest.raises(MissingCookieSupport):
        TestClient(bare_app).get("/")


def test_get_with_unparseable_multipart_body_is_not_parsed() -> None:
    """Passive requests never read the body, so a broken multipart payload is harmless."""
    client = TestClient(app)

    response = client.request("GET", "/", headers={"content-type": "multipart/form-data"}, content=b"garbage")

    assert response.status_code == 200


def test_post_with_multipart_missing_boundary_is_rejected() -> None:
    client = TestClient(app)
    _token(client)

    response = client.request(
        "POST", "/messages", headers={"content-type": "multipart/form-data"}, content=b"garbage"
    )

    assert response.status_code == 403
    assert "CSRF" in response.text


def test_multipart_post_with_token_and_file_succeeds() -> None:
    client = TestClient(app)
    token = _token(client)

    response = client.post(
        "/messages",
        data={"_csrf": token, "message": "with attachment"},
        files={"attachment": ("note.txt", b"hello", "text/plain")},
    )

    assert response.status_code == 200
    assert response.json()["message"] == "with attachment"


def test_cookies_are_not_signed_with_the_csrf_secret() -> None:
    guard = CsrfGuard(SECRET)
    middleware = CsrfMiddleware(FastAPI(), guard=guard)

    assert middleware.signing_key != guard.config.secret
    assert CsrfMiddleware(FastAPI(), guard=guard, signing_key="explicit").signing_key == "explicit"
