from __future__ import annotations

import contextlib
import sqlite3
import urllib.parse

from fastapi.testclient import TestClient

from portfolio.db import ContentStore


def _login(client: TestClient, provider, settings, email: str = "admin@example.com"):
    r = client.get("/auth/login", follow_redirects=False)
    assert r.status_code == 302
    query = dict(urllib.parse.parse_qsl(urllib.parse.urlsplit(r.headers["location"]).query))
    provider.claims = {
        "iss": settings.oauth_issuer,
        "aud": settings.oauth_client_id,
        "nonce": query["nonce"],
        "email": email,
        "email_verified": True,
    }
    return client.get(
        "/auth/callback",
        params={"code": "auth-code", "state": query["state"]},
        follow_redirects=False,
    )


def _csrf_token(client: TestClient) -> str:
    return client.get("/api/v1/auth/me").json()["csrf"]["token"]


def test_health_is_public(client: TestClient) -> None:
    r = client.get("/api/v1/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["projects"] == 1
    assert r.headers["x-request-id"].startswith("req_")


def test_login_redirects_to_provider_with_pkce(client: TestClient, settings) -> None:
    r = client.get("/auth/login", follow_redirects=False)
    assert r.status_code == 302
    location = r.headers["location"]
    assert location.startswith("https://issuer.test/authorize?")
    query = dict(urllib.parse.parse_qsl(urllib.parse.urlsplit(location).query))
    assert query["code_challenge_method"] == "S256"
    assert query["redirect_uri"] == settings.oauth_redirect_uri
    assert settings.session_cookie_name in r.headers["set-cookie"]


def test_admin_requires_login(client: TestClient) -> None:
    for path in ("/admin", "/admin/projects", "/admin/pages", "/admin/translations"):
        r = client.get(path, follow_redirects=False)
        assert r.status_code == 302, path
        assert r.headers["location"] == "/auth/login"


def test_full_login_flow_opens_admin(client: TestClient, provider, settings, store: ContentStore) -> None:
    r = client.get("/auth/login", follow_redirects=False)
    pre_login_cookie = client.cookies.get(settings.session_cookie_name)
    query = dict(urllib.parse.parse_qsl(urllib.parse.urlsplit(r.headers["location"]).query))
    provider.claims = {
        "iss": settings.oauth_issuer,
        "nonce": query["nonce"],
        "email": "admin@example.com",
        "email_verified": True,
    }

    r = client.get("/auth/callback", params={"code": "c", "state": query["state"]}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/admin/projects"
    assert client.cookies.get(settings.session_cookie_name) != pre_login_cookie

    r = client.get("/admin/projects")
    assert r.status_code == 200
    assert "Aurora Brand" in r.text
    assert 'name="_csrf"' in r.text

    r = client.get("/admin/projects", params={"locale": "tr"})
    assert "Aurora Marka" in r.text
    assert "Projeler" in r.text

    me = client.get("/api/v1/auth/me").json()
    assert me["authenticated"] is True
    assert me["user"]["email"] == "admin@example.com"

    events = [entry["event_type"] for entry in store.list_audit()]
    assert "auth.login.start" in events
    assert "auth.login.success" in events


def test_callback_without_login_is_rejected(client: TestClient) -> None:
    r = client.get("/auth/callback", params={"code": "c", "state": "s"})
    assert r.status_code == 400
    error = r.json()["error"]
    assert error["code"] == "missing_handshake"
    assert error["request_id"].startswith("req_")


def test_callback_state_mismatch(client: TestClient, provider) -> None:
    client.get("/auth/login", follow_redirects=False)
    r = client.get("/auth/callback", params={"code": "c", "state": "forged"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "state_mismatch"
    assert provider.posts == []

    # The handshake was used up by the failed attempt.
    r = client.get("/auth/callback", params={"code": "c", "state": "forged"})
    assert r.json()["error"]["code"] == "missing_handshake"


def test_callback_passes_provider_error_through(client: TestClient) -> None:
    client.get("/auth/login", follow_redirects=False)
    r = client.get("/auth/callback", params={"error": "access_denied", "error_description": "nope"})
    assert r.status_code == 400
    assert r.json() == {"error": "access_denied", "error_description": "nope"}


def test_unknown_user_is_forbidden(client: TestClient, provider, settings, store: ContentStore) -> None:
    r = _login(client, provider, settings, email="stranger@example.com")
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "unauthorized"
    assert client.get("/admin/projects", follow_redirects=False).status_code == 302
    denied = [e for e in store.list_audit() if e["event_type"] == "auth.login.denied"]
    assert denied and denied[0]["details"] == {"reason": "unauthorized"}


def test_save_project_requires_csrf(client: TestClient, provider, settings, store: ContentStore) -> None:
    _login(client, provider, settings)
    r = client.post("/admin/projects", data={"slug": "orange-site", "name_en": "Orange"}, follow_redirects=False)
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "invalid_csrf_token"
    assert store.get_project_by_slug("orange-site", "en") is None


def test_save_project(client: TestClient, provider, settings, store: ContentStore) -> None:
    _login(client, provider, settings)
    token = _csrf_token(client)
    form = {
        "_csrf": token,
        "slug": "orange-site",
        "status": "published",
        "tech": "FastAPI",
        "link": "https://orange.example",
        "name_en": "Orange",
        "name_tr": "Portakal",
        "name_de": "Orange DE",
        "description_en": "A warm site",
    }
    r = client.post("/admin/projects", data=form, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/admin/projects"

    client.post("/admin/projects", data=form, follow_redirects=False)
    assert store.count_rows("projects") == 2
    assert store.count_rows("project_translations") == 6
    saved = store.get_project_by_slug("orange-site", "tr")
    assert saved is not None and saved.translation is not None
    assert saved.translation.name == "Portakal"


def test_save_project_accepts_header_token(client: TestClient, provider, settings, store: ContentStore) -> None:
    _login(client, provider, settings)
    r = client.post(
        "/admin/projects",
        data={"slug": "via-header"},
        headers={"X-CSRF-Token": _csrf_token(client)},
        follow_redirects=False,
    )
    assert r.status_code == 302
    assert store.get_project_by_slug("via-header", "en") is not None


def test_invalid_project_form(client: TestClient, provider, settings) -> None:
    _login(client, provider, settings)
    r = client.post("/admin/projects", data={"_csrf": _csrf_token(client), "slug": "Not A Slug"})
    assert r.status_code == 400
    error = r.json()["error"]
    assert error["code"] == "invalid_form"
    assert error["details"]["errors"][0]["field"] == "slug"


def test_save_project_unauthenticated_redirects(client: TestClient, store: ContentStore) -> None:
    r = client.post("/admin/projects", data={"_csrf": "x", "slug": "sneaky"}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/auth/login"
    assert store.get_project_by_slug("sneaky", "en") is None


def test_save_page(client: TestClient, provider, settings, store: ContentStore) -> None:
    _login(client, provider, settings)
    r = client.post(
        "/admin/pages",
        data={
            "_csrf": _csrf_token(client),
            "slug": "contact",
            "published": "1",
            "heading_en": "Say hello",
            "body_en": "hello@orange.example",
        },
        follow_redirects=False,
    )
    assert r.status_code == 302
    page = store.get_page_by_slug("contact", "en")
    assert page is not None
    assert page.sections[0].heading == "Say hello"
    assert "Say hello" in client.get("/admin/pages").text


def test_translations_view_lists_missing_locales(client: TestClient, provider, settings) -> None:
    _login(client, provider, settings)
    client.post(
        "/admin/projects",
        data={"_csrf": _csrf_token(client), "slug": "partial"},
        follow_redirects=False,
    )
    r = client.get("/admin/translations")
    assert r.status_code == 200
    assert "aurora-brand" in r.text
    assert "partial" in r.text


def test_logout_destroys_session(client: TestClient, provider, settings, store: ContentStore) -> None:
    _login(client, provider, settings)
    token = _csrf_token(client)

    r = client.post("/auth/logout", data={"_csrf": "wrong"}, follow_redirects=False)
    assert r.status_code == 403

    r = client.post("/auth/logout", data={"_csrf": token}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/"
    assert store.count_rows("sessions") == 0
    assert client.get("/admin/projects", follow_redirects=False).status_code == 302
    assert client.get("/api/v1/auth/me").json()["authenticated"] is False


def test_robots_and_sitemap(client: TestClient) -> None:
    robots = client.get("/robots.txt")
    assert robots.status_code == 200
    assert "Sitemap: https://orange.example/sitemap.xml" in robots.text

    sitemap = client.get("/sitemap.xml")
    assert sitemap.status_code == 200
    assert sitemap.headers["content-type"].startswith("application/xml")
    assert "<loc>https://orange.example/tr/projects/aurora-brand/</loc>" in sitemap.text
    assert "<loc>https://orange.example/de/pages/about/</loc>" in sitemap.text


def test_logout_reports_failed_session_delete(client: TestClient, provider, settings, store: ContentStore, monkeypatch) -> None:
    import portfolio.sessions as sessions_module

    _login(client, provider, settings)
    token = _csrf_token(client)

    @contextlib.contextmanager
    def locked(con):
        raise sqlite3.OperationalError("database is locked")
        yield con

    monkeypatch.setattr(sessions_module, "write_transaction", locked)
    r = client.post("/auth/logout", data={"_csrf": token}, follow_redirects=False)

    assert r.status_code == 500
    assert r.json()["error"]["code"] == "session_destroy_failed"
    assert store.count_rows("sessions") == 1
    monkeypatch.undo()
    assert client.get("/api/v1/auth/me").json()["authenticated"] is True


def test_failed_project_write_is_a_generic_500(client: TestClient, provider, settings, store: ContentStore, monkeypatch) -> None:
    _login(client, provider, settings)
    token = _csrf_token(client)
    projects_before = store.count_rows("projects")
    translations_before = store.count_rows("project_translations")
    original = ContentStore._write_translation
    calls = {"n": 0}

    def fail_second(self, con, project_id, translation):
        calls["n"] += 1
        if calls["n"] == 2:
            raise sqlite3.OperationalError("disk I/O error at /var/lib/portfolio.sqlite3")
        return original(self, con, project_id, translation)

    monkeypatch.setattr(ContentStore, "_write_translation", fail_second)
    r = client.post(
        "/admin/projects",
        data={"_csrf": token, "slug": "half-saved", "name_en": "Half", "name_tr": "Yarım"},
        follow_redirects=False,
    )

    assert r.status_code == 500
    error = r.json()["error"]
    assert error["code"] == "write_failed"
    assert error["message"] == "Failed to save changes"
    assert "disk I/O" not in r.text
    assert store.count_rows("projects") == projects_before
    assert store.count_rows("project_translations") == translations_before
    assert store.get_project_by_slug("half-saved", "en") is None


def test_failed_page_write_is_a_generic_500(client: TestClient, provider, settings, store: ContentStore, monkeypatch) -> None:
    _login(client, provider, settings)
    token = _csrf_token(client)

    def broken_sections(self, con, page_id, sections):
        raise sqlite3.IntegrityError("UNIQUE constraint failed: page_sections.page_id")

    monkeypatch.setattr(ContentStore, "_replace_sections", broken_sections)
    r = client.post(
        "/admin/pages",
        data={"_csrf": token, "slug": "contact", "published": "1", "heading_en": "Hi"},
        follow_redirects=False,
    )

    assert r.status_code == 500
    assert r.json()["error"]["code"] == "write_failed"
    assert "UNIQUE" not in r.text
    assert store.get_page_by_slug("contact", "en") is None
    assert store.count_rows("pages") == 1


def test_callback_store_failure_still_consumes_handshake(client: TestClient, provider, settings, store: ContentStore, monkeypatch) -> None:
    tolerant = TestClient(client.app, raise_server_exceptions=False)
    r = tolerant.get("/auth/login", follow_redirects=False)
    query = dict(urllib.parse.parse_qsl(urllib.parse.urlsplit(r.headers["location"]).query))
    provider.claims = {
        "iss": settings.oauth_issuer,
        "nonce": query["nonce"],
        "email": "admin@example.com",
        "email_verified": True,
    }

    def unavailable(email):
        raise sqlite3.OperationalError("unable to open database file")

    monkeypatch.setattr(store, "get_user_by_email", unavailable)
    params = {"code": "c", "state": query["state"]}
    r = tolerant.get("/auth/callback", params=params, follow_redirects=False)
    assert r.status_code == 500
    assert r.json()["error"]["code"] == "internal_error"

    monkeypatch.undo()
    r = tolerant.get("/auth/callback", params=params, follow_redirects=False)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "missing_handshake"
