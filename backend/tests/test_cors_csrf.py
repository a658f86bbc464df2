from fastapi.testclient import TestClient

from api.main import app


client = TestClient(app)

PROXY_PAYLOAD = {"action": "get-sites"}


def test_preflight_allows_known_origin() -> None:
    response = client.options(
        "/api/jira/proxy",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "POST",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:5173"


def test_csrf_middleware_blocks_unknown_origin_with_cookie() -> None:
    response = client.post(
        "/api/jira/proxy",
        headers={"Origin": "https://evil.example", "Cookie": "session=abc"},
        json=PROXY_PAYLOAD,
    )

    assert response.status_code == 403
    assert response.json()["detail"] == "CSRF validation failed"


def test_csrf_middleware_allows_non_cookie_requests_from_unknown_origin() -> None:
    response = client.post(
        "/api/does-not-exist",
        headers={"Origin": "https://evil.example"},
        json={"payload": "ok"},
    )

    assert response.status_code == 404
