from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
import time
import urllib.parse
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

import jwt
import requests
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token

from .config import Settings
from .db import User
from .errors import (
    AuthError,
    InvalidIdToken,
    MissingEmail,
    MissingHandshake,
    ProviderError,
    ProviderUnavailable,
    StateMismatch,
    Unauthorized,
)
from .sessions import PendingHandshake, Session, SessionUser


logger = logging.getLogger(__name__)

DISCOVERY_PATH = "/.well-known/openid-configuration"


@dataclass(frozen=True)
class ProviderMetadata:
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str


@dataclass(frozen=True)
class AuthResult:
    user: SessionUser
    claims: Dict[str, Any]


class UserDirectory(Protocol):
    def get_user_by_email(self, email: str) -> Optional[User]: ...


IdTokenVerifier = Callable[[str, ProviderMetadata], Dict[str, Any]]


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_code_verifier() -> str:
    # 64 url-safe characters, inside the 43..128 range RFC 7636 allows.
    return secrets.token_urlsafe(48)


def pkce_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return b64url(digest)


def _normalize_issuer(value: str) -> str:
    return (value or "").strip().rstrip("/")


class OidcClient:
    """Authorization-code + PKCE client for a single OpenID Connect issuer.

    Provider metadata is fetched from the issuer's discovery document. With
    ``discovery_ttl_seconds == 0`` it is fetched on every login attempt; a
    positive TTL keeps the last good document for that long.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        http: requests.Session | None = None,
        id_token_verifier: IdTokenVerifier | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.http = http or requests.Session()
        self._verify_signature = id_token_verifier or self._verify_with_google_auth
        self._clock = clock
        self._metadata: Optional[ProviderMetadata] = None
        self._fetched_at = 0.0

    @property
    def discovery_url(self) -> str:
        return _normalize_issuer(self.settings.oauth_issuer) + DISCOVERY_PATH

    def discover(self) -> ProviderMetadata:
        ttl = self.settings.discovery_ttl_seconds
        now = self._clock()
        if self._metadata is not None and ttl > 0 and now - self._fetched_at < ttl:
            return self._metadata

        try:
            r = self.http.get(self.discovery_url, timeout=self.settings.http_timeout_seconds)
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("OIDC discovery failed for %s: %s", self.discovery_url, exc)
            raise ProviderUnavailable() from exc
        if not isinstance(data, dict):
            raise ProviderUnavailable("Invalid OIDC discovery document")

        issuer = str(data.get("issuer") or "")
        if _normalize_issuer(issuer) != _normalize_issuer(self.settings.oauth_issuer):
            raise ProviderUnavailable("OIDC discovery issuer does not match configuration")
        metadata = ProviderMetadata(
            issuer=issuer,
            authorization_endpoint=str(data.get("authorization_endpoint") or ""),
            token_endpoint=str(data.get("token_endpoint") or ""),
            jwks_uri=str(data.get("jwks_uri") or ""),
        )
        if not metadata.authorization_endpoint or not metadata.token_endpoint or not metadata.jwks_uri:
            raise ProviderUnavailable("OIDC discovery missing authorization_endpoint/token_endpoint/jwks_uri")

        self._metadata = metadata
        self._fetched_at = now
        return metadata

    def begin_login(self, session: Session) -> str:
        """Store a fresh verifier/state/nonce on the session and return the authorization URL."""
        metadata = self.discover()
        handshake = PendingHandshake(
            code_verifier=generate_code_verifier(),
            state=secrets.token_urlsafe(32),
            nonce=secrets.token_urlsafe(32),
        )
        session.data.handshake = handshake

        params = {
            "client_id": self.settings.oauth_client_id,
            "response_type": "code",
            "redirect_uri": self.settings.oauth_redirect_uri,
            "scope": " ".join(self.settings.oauth_scopes),
            "state": handshake.state,
            "code_challenge": pkce_challenge(handshake.code_verifier),
            "code_challenge_method": "S256",
            "nonce": handshake.nonce,
        }
        separator = "&" if urllib.parse.urlsplit(metadata.authorization_endpoint).query else "?"
        return f"{metadata.authorization_endpoint}{separator}{urllib.parse.urlencode(params)}"

    def complete_login(
        self,
        session: Session,
        params: Mapping[str, str],
        users: UserDirectory,
    ) -> AuthResult:
        """Validate the callback, redeem the code and bind the matching user to the session.

        The pending handshake is consumed by any callback that finds one, whether
        or not the rest of the exchange succeeds.
        """
        handshake = session.data.handshake
        if handshake is None:
            raise MissingHandshake()
        session.data.handshake = None

        if params.get("error"):
            raise ProviderError(dict(params))
        if not hmac_equal(params.get("state") or "", handshake.state):
            raise StateMismatch()
        code = params.get("code") or ""
        if not code:
            raise AuthError("Missing authorization code")

        metadata = self.discover()
        tokens = self.exchange_code(metadata, code=code, code_verifier=handshake.code_verifier)
        raw_id_token = str(tokens.get("id_token") or "")
        if not raw_id_token:
            raise InvalidIdToken("Token response missing id_token")
        claims = self.validate_id_token(metadata, raw_id_token, expected_nonce=handshake.nonce)

        email = str(claims.get("email") or "").strip().lower()
        if not email:
            raise MissingEmail()
        user = users.get_user_by_email(email)
        if user is None:
            raise Unauthorized(details={"email": email})

        session_user = SessionUser(
            id=user.id,
            email=user.email,
            name=str(claims.get("name") or user.name or ""),
        )
        session.data.user = session_user
        return AuthResult(user=session_user, claims=claims)

    def exchange_code(self, metadata: ProviderMetadata, *, code: str, code_verifier: str) -> Dict[str, Any]:
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.settings.oauth_redirect_uri,
            "code_verifier": code_verifier,
        }
        auth = None
        if self.settings.oauth_client_secret:
            auth = (self.settings.oauth_client_id, self.settings.oauth_client_secret)
        else:
            payload["client_id"] = self.settings.oauth_client_id

        try:
            r = self.http.post(
                metadata.token_endpoint,
                data=payload,
                auth=auth,
                headers={"Accept": "application/json"},
                timeout=self.settings.http_timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.error("Token exchange request failed: %s", exc)
            raise ProviderUnavailable() from exc

        try:
            data = r.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("error"):
            raise ProviderError(data)
        if r.status_code >= 400 or not isinstance(data, dict):
            # Avoid leaking provider responses; keep the status only.
            raise AuthError(f"Token exchange failed (status={r.status_code})")
        return data

    def validate_id_token(
        self,
        metadata: ProviderMetadata,
        raw_id_token: str,
        *,
        expected_nonce: str,
    ) -> Dict[str, Any]:
        try:
            claims = self._verify_signature(raw_id_token, metadata)
        except (ValueError, jwt.PyJWTError, google_auth_exceptions.GoogleAuthError) as exc:
            logger.warning("ID token verification failed: %s", exc)
            raise InvalidIdToken() from exc
        if not isinstance(claims, dict):
            raise InvalidIdToken("Invalid ID token claims")

        if _normalize_issuer(str(claims.get("iss") or "")) != _normalize_issuer(metadata.issuer):
            raise InvalidIdToken("ID token issuer mismatch")
        if not hmac_equal(str(claims.get("nonce") or ""), expected_nonce):
            raise InvalidIdToken("Nonce mismatch")
        # Some providers omit email_verified; only an explicit false is rejected.
        if claims.get("email_verified") is False:
            raise InvalidIdToken("Email not verified")
        return claims

    def _verify_with_google_auth(self, raw_id_token: str, metadata: ProviderMetadata) -> Dict[str, Any]:
        request_adapter = google_requests.Request(session=self.http)
        return google_id_token.verify_token(
            raw_id_token,
            request_adapter,
            audience=self.settings.oauth_client_id,
            certs_url=metadata.jwks_uri,
            clock_skew_in_seconds=10,
        )


def hmac_equal(left: str, right: str) -> bool:
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))
