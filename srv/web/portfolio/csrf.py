from __future__ import annotations

import hashlib
import hmac
from typing import Any, Mapping, Optional

from .errors import InvalidCsrfToken
from .sessions import Session


CSRF_HEADER_NAME = "X-CSRF-Token"
CSRF_FORM_FIELDS = ("_csrf", "csrfToken")
SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}


class CsrfGuard:
    """Session-bound CSRF tokens: HMAC of the session identifier under the server secret.

    No cookie is involved. A token stays valid for as long as the session keeps
    its identifier, so it changes on login (the session id is regenerated) and
    on logout.
    """

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("CSRF secret must not be empty")
        self._key = secret.encode("utf-8")

    def token_for(self, session_identifier: str) -> str:
        message = f"csrf:{session_identifier}".encode("utf-8")
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    def issue(self, session: Session) -> str:
        return self.token_for(session.identifier)

    def validate(
        self,
        session: Session,
        *,
        method: str,
        headers: Mapping[str, str],
        form: Optional[Mapping[str, Any]] = None,
    ) -> None:
        if method.upper() in SAFE_METHODS:
            return
        supplied = extract_token(headers, form)
        if not supplied:
            raise InvalidCsrfToken("Missing CSRF token")
        if not hmac.compare_digest(supplied.encode("utf-8"), self.issue(session).encode("utf-8")):
            raise InvalidCsrfToken()


def extract_token(headers: Mapping[str, str], form: Optional[Mapping[str, Any]] = None) -> str:
    header_token = (headers.get(CSRF_HEADER_NAME.lower()) or headers.get(CSRF_HEADER_NAME) or "").strip()
    if header_token:
        return header_token
    if form is not None:
        for name in CSRF_FORM_FIELDS:
            value = form.get(name)
            if isinstance(value, str) and value:
                return value.strip()
    return ""
