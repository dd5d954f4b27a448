"""
Pytest config.

The ``portfolio`` package lives under ``srv/web`` without an ``__init__.py``, so the
tests pin that directory onto sys.path instead of relying on an editable install.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest


def _ensure_web_root_on_syspath() -> None:
    web_root = Path(__file__).resolve().parents[1] / "srv" / "web"
    web_root_str = str(web_root)
    if web_root_str not in sys.path:
        sys.path.insert(0, web_root_str)


_ensure_web_root_on_syspath()

from portfolio.config import Settings  # noqa: E402
from portfolio.db import ContentStore  # noqa: E402
from portfolio.oidc import OidcClient  # noqa: E402


ISSUER = "https://issuer.test"
ADMIN_EMAIL = "admin@example.com"
DISCOVERY_DOCUMENT = {
    "issuer": ISSUER,
    "authorization_endpoint": f"{ISSUER}/authorize",
    "token_endpoint": f"{ISSUER}/token",
    "jwks_uri": f"{ISSUER}/jwks",
}


class FakeResponse:
    def __init__(self, payload: Any, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code
        self.headers: Dict[str, str] = {"content-type": "application/json"}

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    @property
    def content(self) -> bytes:
        return json.dumps(self._payload).encode("utf-8")

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            import requests

            raise requests.HTTPError(f"status {self.status_code}")


class FakeProvider:
    """Stands in for ``requests.Session`` against a single identity provider.

    Unless ``id_token`` is set, the token endpoint hands back ``claims`` serialized
    as the id_token so the injected verifier can decode it without any signature
    work. ``jwks`` is served at the discovery document's ``jwks_uri``.
    """

    def __init__(self) -> None:
        self.discovery: Dict[str, Any] = dict(DISCOVERY_DOCUMENT)
        self.claims: Dict[str, Any] = {}
        self.id_token: Optional[str] = None
        self.jwks: Dict[str, Any] = {"keys": []}
        self.token_response: Optional[FakeResponse] = None
        self.gets: List[str] = []
        self.posts: List[Dict[str, Any]] = []
        self.requests: List[str] = []

    def respond_to_token_request(self, payload: Any, status_code: int = 200) -> None:
        self.token_response = FakeResponse(payload, status_code)

    def get(self, url: str, timeout: Any = None) -> FakeResponse:
        self.gets.append(url)
        return FakeResponse(self.discovery)

    def request(self, method: str, url: str, data=None, headers=None, timeout=None, **kwargs) -> FakeResponse:
        self.requests.append(url)
        if url == self.discovery.get("jwks_uri"):
            return FakeResponse(self.jwks)
        return FakeResponse({"error": "not_found"}, status_code=404)

    def post(self, url: str, data=None, auth=None, headers=None, timeout=None) -> FakeResponse:
        self.posts.append({"url": url, "data": dict(data or {}), "auth": auth})
        if self.token_response is not None:
            return self.token_response
        id_token = self.id_token or json.dumps(self.claims)
        return FakeResponse({"access_token": "at", "token_type": "Bearer", "id_token": id_token})


def decode_fake_id_token(raw: str, metadata: Any) -> Dict[str, Any]:
    return json.loads(raw)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        environment="test",
        session_secret="test-secret-key-for-testing-purposes-only",
        session_max_age_days=7,
        session_cookie_name="portfolio_session",
        cookie_secure=False,
        oauth_issuer=ISSUER,
        oauth_client_id="client-123",
        oauth_client_secret=None,
        oauth_redirect_uri="http://testserver/auth/callback",
        oauth_scopes=("openid", "profile", "email"),
        discovery_ttl_seconds=0,
        http_timeout_seconds=5,
        database_path=tmp_path / "portfolio.sqlite3",
        supported_locales=("en", "tr", "de"),
        default_locale="en",
        site_url="https://orange.example",
        site_name="Orange Spark",
        admin_emails=(ADMIN_EMAIL,),
        log_level="INFO",
    )


@pytest.fixture
def store(settings: Settings) -> ContentStore:
    return ContentStore(
        settings.database_path,
        locales=settings.supported_locales,
        admin_emails=settings.admin_emails,
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def oidc_client(settings: Settings, provider: FakeProvider) -> OidcClient:
    return OidcClient(settings, http=provider, id_token_verifier=decode_fake_id_token)


@pytest.fixture
def client(settings: Settings, store: ContentStore, oidc_client: OidcClient):
    from fastapi.testclient import TestClient

    from portfolio.main import create_app

    app = create_app(settings, store=store, oidc_client=oidc_client)
    return TestClient(app)
