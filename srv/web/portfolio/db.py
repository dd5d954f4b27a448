from __future__ import annotations

import contextlib
import datetime as dt
import json
import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .errors import PersistenceError


logger = logging.getLogger(__name__)

PROJECT_STATUSES = ("published", "draft")
COUNTABLE_TABLES = {
    "users",
    "projects",
    "project_translations",
    "pages",
    "page_sections",
    "sessions",
    "audit_log",
}

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
  id TEXT PRIMARY KEY,
  email TEXT UNIQUE NOT NULL,
  name TEXT,
  created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS projects (
  id TEXT PRIMARY KEY,
  slug TEXT UNIQUE NOT NULL,
  status TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ('published', 'draft')),
  tech TEXT,
  link TEXT
);

CREATE TABLE IF NOT EXISTS project_translations (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  project_id TEXT NOT NULL,
  locale TEXT NOT NULL,
  name TEXT NOT NULL DEFAULT '',
  description TEXT NOT NULL DEFAULT '',
  hero_title TEXT,
  UNIQUE(project_id, locale),
  FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS pages (
  id TEXT PRIMARY KEY,
  slug TEXT UNIQUE NOT NULL,
  template TEXT NOT NULL DEFAULT 'generic',
  published INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS page_sections (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  page_id TEXT NOT NULL,
  locale TEXT NOT NULL,
  heading TEXT NOT NULL DEFAULT '',
  body TEXT NOT NULL DEFAULT '',
  position INTEGER NOT NULL DEFAULT 0,
  UNIQUE(page_id, locale, position),
  FOREIGN KEY (page_id) REFERENCES pages(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS sessions (
  session_id TEXT PRIMARY KEY,
  data_json TEXT NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  expires_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
  audit_id INTEGER PRIMARY KEY AUTOINCREMENT,
  actor_user_id TEXT,
  event_type TEXT NOT NULL,
  result TEXT NOT NULL,
  request_id TEXT,
  route TEXT,
  method TEXT,
  details_json TEXT,
  created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_translations_locale ON project_translations(locale);
CREATE INDEX IF NOT EXISTS idx_sections_page_locale ON page_sections(page_id, locale);
CREATE INDEX IF NOT EXISTS idx_sessions_expires_at ON sessions(expires_at);
CREATE INDEX IF NOT EXISTS idx_audit_created_at ON audit_log(created_at);
"""


@dataclass
class User:
    id: str
    email: str
    name: Optional[str] = None


@dataclass
class ProjectTranslation:
    locale: str
    name: str
    description: str
    hero_title: Optional[str] = None
    project_id: str = ""


@dataclass
class Project:
    slug: str
    status: str = "draft"
    tech: Optional[str] = None
    link: Optional[str] = None
    id: str = ""
    translation: Optional[ProjectTranslation] = None


@dataclass
class PageSection:
    locale: str
    heading: str
    body: str
    position: int = 0


@dataclass
class Page:
    slug: str
    template: str = "generic"
    published: bool = True
    id: str = ""
    sections: List[PageSection] = field(default_factory=list)


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def to_iso(value: dt.datetime) -> str:
    return value.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_iso(value: str) -> dt.datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return dt.datetime.fromisoformat(value)


def new_id() -> str:
    return str(uuid.uuid4())


SEED_PROJECT = Project(
    slug="aurora-brand",
    status="published",
    tech="FastAPI, SQLite, Tailwind",
    link="https://example.com",
)
SEED_PROJECT_TRANSLATIONS = {
    "en": ProjectTranslation(
        locale="en",
        name="Aurora Brand",
        description="Brand site with fast SSR and portable content.",
        hero_title="A warm, high-speed brand presence",
    ),
    "tr": ProjectTranslation(
        locale="tr",
        name="Aurora Marka",
        description="Hızlı SSR ve taşınabilir içerik ile marka sitesi.",
        hero_title="Sıcak ve hızlı bir marka deneyimi",
    ),
    "de": ProjectTranslation(
        locale="de",
        name="Aurora Marke",
        description="Markenauftritt mit schnellem SSR und portablen Inhalten.",
        hero_title="Ein warmer, schneller Markenauftritt",
    ),
}
SEED_PAGE = Page(slug="about", template="generic", published=True)
SEED_PAGE_SECTIONS = {
    "en": PageSection(
        locale="en",
        heading="Our promise",
        body="We keep content portable so you stay in control.",
    ),
    "tr": PageSection(
        locale="tr",
        heading="Sözümüz",
        body="İçeriği taşınabilir tutarak kontrol sizde kalır.",
    ),
    "de": PageSection(
        locale="de",
        heading="Unser Versprechen",
        body="Wir halten Inhalte portabel, damit du die Kontrolle behältst.",
    ),
}


@contextlib.contextmanager
def write_transaction(con: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    con.execute("BEGIN IMMEDIATE")
    try:
        yield con
    except BaseException:
        con.execute("ROLLBACK")
        raise
    else:
        con.execute("COMMIT")


class ContentStore:
    """SQLite-backed store for users, projects, pages, sessions and the audit log.

    Tables are created on first use; an empty store is seeded with one example
    project and one example page in every supported locale.
    """

    def __init__(
        self,
        path: Path | str,
        *,
        locales: Sequence[str] = ("en", "tr", "de"),
        admin_emails: Sequence[str] = (),
    ) -> None:
        self.path = Path(path)
        self.locales = tuple(locales)
        self.admin_emails = tuple(admin_emails)
        self._initialized = False
        self._init_lock = threading.Lock()

    def get_connection(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        con = sqlite3.connect(str(self.path), isolation_level=None)
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA busy_timeout = 5000")
        con.execute("PRAGMA foreign_keys = ON")
        con.execute("PRAGMA journal_mode = WAL")
        return con

    @contextlib.contextmanager
    def connection_scope(self) -> Iterator[sqlite3.Connection]:
        self.ensure_initialized()
        con = self.get_connection()
        try:
            yield con
        finally:
            con.close()

    def ensure_initialized(self) -> None:
        if self._initialized:
            return
        with self._init_lock:
            if self._initialized:
                return
            self.initialize()
            self._initialized = True

    def initialize(self) -> None:
        con = self.get_connection()
        try:
            con.executescript(SCHEMA)
            self._seed_users(con)
            self._seed_content(con)
        finally:
            con.close()

    def seed_if_empty(self) -> bool:
        self.ensure_initialized()
        con = self.get_connection()
        try:
            return self._seed_content(con)
        finally:
            con.close()

    def _seed_users(self, con: sqlite3.Connection) -> None:
        if not self.admin_emails:
            return
        with write_transaction(con):
            for email in self.admin_emails:
                con.execute(
                    "INSERT INTO users(id, email, name) VALUES (?, ?, NULL) ON CONFLICT(email) DO NOTHING",
                    (new_id(), email.strip().lower()),
                )

    def _seed_content(self, con: sqlite3.Connection) -> bool:
        # Count and insert under one write lock so two processes cannot both seed.
        with write_transaction(con):
            row = con.execute("SELECT COUNT(*) AS count FROM projects").fetchone()
            if int(row["count"]) > 0:
                return False
            project_id = self._write_project(con, SEED_PROJECT)
            for locale in self.locales:
                translation = SEED_PROJECT_TRANSLATIONS.get(locale)
                if translation is not None:
                    self._write_translation(con, project_id, translation)
            page_id = self._write_page(con, SEED_PAGE)
            self._replace_sections(
                con,
                page_id,
                [SEED_PAGE_SECTIONS[locale] for locale in self.locales if locale in SEED_PAGE_SECTIONS],
            )
        logger.info("Seeded empty store at %s", self.path)
        return True

    def _check_locale(self, locale: str) -> None:
        if locale not in self.locales:
            raise ValueError(f"Unsupported locale: {locale}")

    def _write_project(self, con: sqlite3.Connection, project: Project) -> str:
        con.execute(
            """
INSERT INTO projects(id, slug, status, tech, link)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(slug) DO UPDATE SET
  status = excluded.status,
  tech = excluded.tech,
  link = excluded.link
            """,
            (project.id or new_id(), project.slug, project.status, project.tech, project.link),
        )
        row = con.execute("SELECT id FROM projects WHERE slug = ?", (project.slug,)).fetchone()
        return str(row["id"])

    def _write_translation(self, con: sqlite3.Connection, project_id: str, translation: ProjectTranslation) -> None:
        con.execute(
            """
INSERT INTO project_translations(project_id, locale, name, description, hero_title)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(project_id, locale) DO UPDATE SET
  name = excluded.name,
  description = excluded.description,
  hero_title = excluded.hero_title
            """,
            (
                project_id,
                translation.locale,
                translation.name,
                translation.description,
                translation.hero_title,
            ),
        )

    def _write_page(self, con: sqlite3.Connection, page: Page) -> str:
        con.execute(
            """
INSERT INTO pages(id, slug, template, published)
VALUES (?, ?, ?, ?)
ON CONFLICT(slug) DO UPDATE SET
  template = excluded.template,
  published = excluded.published
            """,
            (page.id or new_id(), page.slug, page.template, 1 if page.published else 0),
        )
        row = con.execute("SELECT id FROM pages WHERE slug = ?", (page.slug,)).fetchone()
        return str(row["id"])

    def _replace_sections(self, con: sqlite3.Connection, page_id: str, sections: Sequence[PageSection]) -> None:
        for locale in sorted({section.locale for section in sections}):
            con.execute("DELETE FROM page_sections WHERE page_id = ? AND locale = ?", (page_id, locale))
        for section in sections:
            con.execute(
                """
INSERT INTO page_sections(page_id, locale, heading, body, position)
VALUES (?, ?, ?, ?, ?)
                """,
                (page_id, section.locale, section.heading, section.body, int(section.position)),
            )

    def upsert_project(self, project: Project, translations: Sequence[ProjectTranslation]) -> str:
        """Insert or update a project by slug and replace its per-locale translations.

        Everything happens in one transaction; on failure nothing is written and
        ``PersistenceError`` is raised. Returns the stable project id.
        """
        if project.status not in PROJECT_STATUSES:
            raise ValueError(f"Unsupported project status: {project.status}")
        for translation in translations:
            self._check_locale(translation.locale)
        with self.connection_scope() as con:
            try:
                with write_transaction(con):
                    project_id = self._write_project(con, project)
                    for translation in translations:
                        self._write_translation(con, project_id, translation)
            except sqlite3.Error as exc:
                logger.error("Project save failed for slug=%s: %s", project.slug, exc)
                raise PersistenceError(str(exc)) from exc
        return project_id

    def save_page(self, page: Page, sections: Sequence[PageSection]) -> str:
        """Upsert a page by slug and replace the section list of each submitted locale."""
        for section in sections:
            self._check_locale(section.locale)
        with self.connection_scope() as con:
            try:
                with write_transaction(con):
                    page_id = self._write_page(con, page)
                    self._replace_sections(con, page_id, sections)
            except sqlite3.Error as exc:
                logger.error("Page save failed for slug=%s: %s", page.slug, exc)
                raise PersistenceError(str(exc)) from exc
        return page_id

    def get_projects(self, locale: str) -> List[Project]:
        with self.connection_scope() as con:
            rows = con.execute("SELECT id, slug, status, tech, link FROM projects ORDER BY slug").fetchall()
            translation_rows = con.execute(
                """
SELECT project_id, locale, name, description, hero_title
FROM project_translations
WHERE locale = ?
                """,
                (locale,),
            ).fetchall()
        translations = {str(row["project_id"]): _translation_from_row(row) for row in translation_rows}
        projects = []
        for row in rows:
            project = _project_from_row(row)
            project.translation = translations.get(project.id)
            projects.append(project)
        return projects

    def get_project_by_slug(self, slug: str, locale: str) -> Optional[Project]:
        with self.connection_scope() as con:
            row = con.execute(
                "SELECT id, slug, status, tech, link FROM projects WHERE slug = ? LIMIT 1",
                (slug,),
            ).fetchone()
            if row is None:
                return None
            translation_row = con.execute(
                """
SELECT project_id, locale, name, description, hero_title
FROM project_translations
WHERE project_id = ? AND locale = ?
                """,
                (row["id"], locale),
            ).fetchone()
        project = _project_from_row(row)
        if translation_row is not None:
            project.translation = _translation_from_row(translation_row)
        return project

    def get_pages(self, locale: str) -> List[Page]:
        with self.connection_scope() as con:
            rows = con.execute("SELECT id, slug, template, published FROM pages ORDER BY slug").fetchall()
            section_rows = con.execute(
                """
SELECT page_id, locale, heading, body, position
FROM page_sections
WHERE locale = ?
ORDER BY page_id, position
                """,
                (locale,),
            ).fetchall()
        sections: Dict[str, List[PageSection]] = {}
        for row in section_rows:
            sections.setdefault(str(row["page_id"]), []).append(_section_from_row(row))
        pages = []
        for row in rows:
            page = _page_from_row(row)
            page.sections = sections.get(page.id, [])
            pages.append(page)
        return pages

    def get_page_by_slug(self, slug: str, locale: str) -> Optional[Page]:
        for page in self.get_pages(locale):
            if page.slug == slug:
                return page
        return None

    def translation_coverage(self) -> Dict[str, List[str]]:
        with self.connection_scope() as con:
            rows = con.execute(
                """
SELECT p.slug, t.locale
FROM projects p
LEFT JOIN project_translations t ON t.project_id = p.id
ORDER BY p.slug, t.locale
                """
            ).fetchall()
        coverage: Dict[str, List[str]] = {}
        for row in rows:
            locales = coverage.setdefault(str(row["slug"]), [])
            if row["locale"] is not None:
                locales.append(str(row["locale"]))
        return coverage

    def get_user_by_email(self, email: str) -> Optional[User]:
        email_norm = (email or "").strip().lower()
        if not email_norm:
            return None
        with self.connection_scope() as con:
            row = con.execute("SELECT id, email, name FROM users WHERE email = ?", (email_norm,)).fetchone()
        if row is None:
            return None
        return User(id=str(row["id"]), email=str(row["email"]), name=row["name"])

    def create_user(self, email: str, name: str | None = None) -> User:
        email_norm = (email or "").strip().lower()
        if not email_norm or "@" not in email_norm:
            raise ValueError(f"Invalid email: {email!r}")
        with self.connection_scope() as con:
            try:
                with write_transaction(con):
                    con.execute(
                        "INSERT INTO users(id, email, name) VALUES (?, ?, ?) ON CONFLICT(email) DO NOTHING",
                        (new_id(), email_norm, name),
                    )
            except sqlite3.Error as exc:
                raise PersistenceError(str(exc)) from exc
        user = self.get_user_by_email(email_norm)
        if user is None:
            raise PersistenceError(f"User {email_norm} was not created")
        return user

    def count_rows(self, table: str) -> int:
        if table not in COUNTABLE_TABLES:
            raise ValueError(f"Unknown table: {table}")
        with self.connection_scope() as con:
            row = con.execute(f"SELECT COUNT(*) AS count FROM {table}").fetchone()
        return int(row["count"])

    def record_audit(
        self,
        *,
        event_type: str,
        result: str,
        actor_user_id: str | None = None,
        request_id: str | None = None,
        route: str | None = None,
        method: str | None = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        with self.connection_scope() as con:
            with write_transaction(con):
                con.execute(
                    """
INSERT INTO audit_log(actor_user_id, event_type, result, request_id, route, method, details_json, created_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        actor_user_id,
                        event_type,
                        result,
                        request_id,
                        route,
                        method,
                        json.dumps(details or {}, separators=(",", ":"), sort_keys=True),
                        to_iso(utc_now()),
                    ),
                )

    def list_audit(self, limit: int = 100) -> List[Dict[str, Any]]:
        with self.connection_scope() as con:
            rows = con.execute(
                """
SELECT audit_id, actor_user_id, event_type, result, request_id, route, method, details_json, created_at
FROM audit_log
ORDER BY audit_id DESC
LIMIT ?
                """,
                (max(1, min(int(limit), 1000)),),
            ).fetchall()
        items = []
        for row in rows:
            item = dict(row)
            item["details"] = json.loads(item.pop("details_json") or "{}")
            items.append(item)
        return items


def _project_from_row(row: sqlite3.Row) -> Project:
    return Project(
        id=str(row["id"]),
        slug=str(row["slug"]),
        status=str(row["status"]),
        tech=row["tech"],
        link=row["link"],
    )


def _translation_from_row(row: sqlite3.Row) -> ProjectTranslation:
    return ProjectTranslation(
        project_id=str(row["project_id"]),
        locale=str(row["locale"]),
        name=str(row["name"]),
        description=str(row["description"]),
        hero_title=row["hero_title"],
    )


def _page_from_row(row: sqlite3.Row) -> Page:
    return Page(
        id=str(row["id"]),
        slug=str(row["slug"]),
        template=str(row["template"]),
        published=bool(row["published"]),
    )


def _section_from_row(row: sqlite3.Row) -> PageSection:
    return PageSection(
        locale=str(row["locale"]),
        heading=str(row["heading"]),
        body=str(row["body"]),
        position=int(row["position"]),
    )
