from __future__ import annotations

import datetime as dt
import json
import logging
import secrets
import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import Response

from .config import Settings
from .db import ContentStore, parse_iso, to_iso, utc_now, write_transaction
from .errors import SessionDestroyFailed


logger = logging.getLogger(__name__)

ANONYMOUS_SESSION_ID = "anon"


@dataclass(frozen=True)
class PendingHandshake:
    """OIDC login in flight: written at login start, consumed by the callback."""

    code_verifier: str
    state: str
    nonce: str


@dataclass(frozen=True)
class SessionUser:
    id: str
    email: str
    name: str = ""


@dataclass
class SessionData:
    handshake: Optional[PendingHandshake] = None
    user: Optional[SessionUser] = None

    def is_empty(self) -> bool:
        return self.handshake is None and self.user is None

    def to_json(self) -> str:
        payload: Dict[str, Any] = {
            "handshake": asdict(self.handshake) if self.handshake else None,
            "user": asdict(self.user) if self.user else None,
        }
        return json.dumps(payload, separators=(",", ":"), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str | None) -> "SessionData":
        try:
            payload = json.loads(raw or "{}")
        except ValueError:
            return cls()
        if not isinstance(payload, dict):
            return cls()
        handshake = payload.get("handshake")
        user = payload.get("user")
        data = cls()
        if isinstance(handshake, dict) and all(handshake.get(k) for k in ("code_verifier", "state", "nonce")):
            data.handshake = PendingHandshake(
                code_verifier=str(handshake["code_verifier"]),
                state=str(handshake["state"]),
                nonce=str(handshake["nonce"]),
            )
        if isinstance(user, dict) and user.get("id") and user.get("email"):
            data.user = SessionUser(id=str(user["id"]), email=str(user["email"]), name=str(user.get("name") or ""))
        return data


@dataclass
class Session:
    session_id: Optional[str] = None
    data: SessionData = field(default_factory=SessionData)
    expires_at: Optional[str] = None

    @property
    def is_new(self) -> bool:
        return self.session_id is None

    @property
    def identifier(self) -> str:
        return self.session_id or ANONYMOUS_SESSION_ID

    @property
    def user(self) -> Optional[SessionUser]:
        return self.data.user


class SessionStore:
    def __init__(self, store: ContentStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings

    def load(self, request: Request) -> Session:
        session_id = request.cookies.get(self.settings.session_cookie_name)
        if not session_id:
            return Session()
        now = utc_now()
        with self.store.connection_scope() as con:
            row = con.execute(
                "SELECT session_id, data_json, expires_at FROM sessions WHERE session_id = ?",
                (session_id,),
            ).fetchone()
            if row is None:
                return Session()
            if now >= parse_iso(str(row["expires_at"])):
                with write_transaction(con):
                    con.execute("DELETE FROM sessions WHERE session_id = ?", (session_id,))
                return Session()
        return Session(
            session_id=str(row["session_id"]),
            data=SessionData.from_json(row["data_json"]),
            expires_at=str(row["expires_at"]),
        )

    def save(self, session: Session, response: Response | None = None) -> None:
        if session.is_new and session.data.is_empty():
            return
        now = utc_now()
        if session.session_id is None:
            session.session_id = secrets.token_urlsafe(48)
        session.expires_at = to_iso(now + dt.timedelta(days=self.settings.session_max_age_days))
        with self.store.connection_scope() as con:
            with write_transaction(con):
                con.execute(
                    """
INSERT INTO sessions(session_id, data_json, created_at, updated_at, expires_at)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(session_id) DO UPDATE SET
  data_json = excluded.data_json,
  updated_at = excluded.updated_at,
  expires_at = excluded.expires_at
                    """,
                    (session.session_id, session.data.to_json(), to_iso(now), to_iso(now), session.expires_at),
                )
        if response is not None:
            self.set_cookie(response, session.session_id)

    def regenerate(self, session: Session) -> None:
        old_id = session.session_id
        session.session_id = None
        if old_id is None:
            return
        with self.store.connection_scope() as con:
            with write_transaction(con):
                con.execute("DELETE FROM sessions WHERE session_id = ?", (old_id,))

    def destroy(self, session: Session, response: Response) -> None:
        if session.session_id is not None:
            try:
                with self.store.connection_scope() as con:
                    with write_transaction(con):
                        con.execute("DELETE FROM sessions WHERE session_id = ?", (session.session_id,))
            except sqlite3.Error as exc:
                logger.error("Session destroy failed: %s", exc)
                raise SessionDestroyFailed() from exc
        session.session_id = None
        session.data = SessionData()
        self.clear_cookie(response)

    def purge_expired(self) -> int:
        with self.store.connection_scope() as con:
            with write_transaction(con):
                cur = con.execute("DELETE FROM sessions WHERE expires_at <= ?", (to_iso(utc_now()),))
        return int(cur.rowcount or 0)

    def set_cookie(self, response: Response, session_id: str) -> None:
        response.set_cookie(
            key=self.settings.session_cookie_name,
            value=session_id,
            max_age=self.settings.session_max_age_seconds,
            secure=self.settings.cookie_secure,
            httponly=True,
            samesite="lax",
            path="/",
        )

    def clear_cookie(self, response: Response) -> None:
        response.delete_cookie(
            key=self.settings.session_cookie_name,
            path="/",
            secure=self.settings.cookie_secure,
            httponly=True,
            samesite="lax",
        )
