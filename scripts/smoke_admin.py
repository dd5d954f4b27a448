#!/usr/bin/env python3
import sys
import urllib.parse
from typing import Any, Dict, Iterable

import requests


def assert_status(response: requests.Response, expected: int | Iterable[int], label: str) -> None:
    expected_set = {expected} if isinstance(expected, int) else set(expected)
    if response.status_code not in expected_set:
        snippet = response.text[:500]
        raise AssertionError(
            f"{label} expected status {sorted(expected_set)}, got {response.status_code}. Body: {snippet}"
        )


def require_keys(obj: Dict[str, Any], keys, label: str) -> None:
    missing = [key for key in keys if key not in obj]
    if missing:
        raise AssertionError(f"{label} missing keys: {missing}")


def main():
    base_url = (sys.argv[1] if len(sys.argv) > 1 else "http://localhost:4321").rstrip("/")
    http = requests.Session()

    health = http.get(f"{base_url}/api/v1/health", timeout=10)
    assert_status(health, 200, "health")
    require_keys(health.json(), ["status", "db_path", "projects", "time_utc"], "health")

    for path in ("/admin", "/admin/projects", "/admin/pages", "/admin/translations"):
        r = http.get(f"{base_url}{path}", allow_redirects=False, timeout=10)
        assert_status(r, 302, f"anonymous {path}")
        if r.headers.get("location") != "/auth/login":
            raise AssertionError(f"anonymous {path} redirected to {r.headers.get('location')}")

    login = http.get(f"{base_url}/auth/login", allow_redirects=False, timeout=10)
    assert_status(login, 302, "login")
    query = dict(urllib.parse.parse_qsl(urllib.parse.urlsplit(login.headers["location"]).query))
    require_keys(query, ["client_id", "state", "nonce", "code_challenge", "redirect_uri"], "authorize url")
    if query.get("code_challenge_method") != "S256":
        raise AssertionError("authorize url is not using S256 PKCE")

    forged = http.get(f"{base_url}/auth/callback", params={"code": "x", "state": "forged"}, timeout=10)
    assert_status(forged, 400, "forged callback")

    me = http.get(f"{base_url}/api/v1/auth/me", timeout=10)
    assert_status(me, 200, "auth/me")
    me_json = me.json()
    if me_json.get("authenticated"):
        raise AssertionError("anonymous client reported as authenticated")

    blocked = http.post(f"{base_url}/auth/logout", data={}, allow_redirects=False, timeout=10)
    assert_status(blocked, 403, "logout without csrf")

    sitemap = http.get(f"{base_url}/sitemap.xml", timeout=10)
    assert_status(sitemap, 200, "sitemap")
    if "<urlset" not in sitemap.text:
        raise AssertionError("sitemap missing urlset")

    print("Admin smoke checks OK")


if __name__ == "__main__":
    main()
