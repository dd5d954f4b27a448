from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse, Response
from starlette.datastructures import FormData
from starlette.exceptions import HTTPException

from . import views
from .config import Settings, configure_logging, load_env_file, load_settings, validate_settings
from .csrf import CSRF_HEADER_NAME, CsrfGuard
from .db import ContentStore, to_iso, utc_now
from .errors import AuthError, FormValidationError, LoginRequired, PersistenceError, ProviderError
from .forms import parse_page_form, parse_project_form
from .i18n import create_translator, resolve_locale
from .oidc import OidcClient
from .sessions import Session, SessionStore


logger = logging.getLogger(__name__)

LOGIN_PATH = "/auth/login"
LOGIN_SUCCESS_REDIRECT = "/admin/projects"


def _error_content(request: Request, code: str, message: str, details: Any = None) -> Dict[str, Any]:
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details if details is not None else {},
            "request_id": getattr(request.state, "request_id", None),
        }
    }


def get_store(request: Request) -> ContentStore:
    return request.app.state.store


def get_sessions(request: Request) -> SessionStore:
    return request.app.state.sessions


def get_csrf(request: Request) -> CsrfGuard:
    return request.app.state.csrf


def get_oidc(request: Request) -> OidcClient:
    return request.app.state.oidc


def get_session(request: Request, sessions: SessionStore = Depends(get_sessions)) -> Session:
    return sessions.load(request)


async def get_form(request: Request) -> FormData:
    return await request.form()


def audit_event(
    request: Request,
    *,
    event_type: str,
    result: str,
    actor_user_id: str | None = None,
    details: Dict[str, Any] | None = None,
) -> None:
    store: ContentStore = request.app.state.store
    try:
        store.record_audit(
            event_type=event_type,
            result=result,
            actor_user_id=actor_user_id,
            request_id=getattr(request.state, "request_id", None),
            route=str(request.url.path),
            method=request.method,
            details=details,
        )
    except Exception as exc:
        logger.warning("Audit write failed for %s: %s", event_type, exc)


def require_auth(request: Request, session: Session = Depends(get_session)) -> Session:
    if session.user is None:
        audit_event(request, event_type="auth.access.denied", result="deny", details={"reason": "unauthenticated"})
        raise LoginRequired()
    return session


def require_csrf(
    request: Request,
    session: Session = Depends(get_session),
    csrf: CsrfGuard = Depends(get_csrf),
    form: FormData = Depends(get_form),
) -> None:
    try:
        csrf.validate(session, method=request.method, headers=request.headers, form=form)
    except AuthError:
        actor = session.user.id if session.user else None
        audit_event(request, event_type="csrf.denied", result="deny", actor_user_id=actor)
        raise


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[ContentStore] = None,
    oidc_client: Optional[OidcClient] = None,
) -> FastAPI:
    if settings is None:
        load_env_file()
        settings = load_settings()
    configure_logging(settings)

    app = FastAPI(title=f"{settings.site_name} Admin", version="0.1")
    app.state.settings = settings
    app.state.store = store or ContentStore(
        settings.database_path,
        locales=settings.supported_locales,
        admin_emails=settings.admin_emails,
    )
    app.state.sessions = SessionStore(app.state.store, settings)
    app.state.csrf = CsrfGuard(settings.session_secret)
    app.state.oidc = oidc_client or OidcClient(settings)

    @app.on_event("startup")
    def startup_checks() -> None:
        validate_settings(settings)
        removed = app.state.sessions.purge_expired()
        if removed:
            logger.info("Purged %d expired sessions", removed)

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        request_id = f"req_{uuid.uuid4().hex[:12]}"
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response

    @app.exception_handler(LoginRequired)
    async def login_required_handler(request: Request, exc: LoginRequired):
        return RedirectResponse(url=LOGIN_PATH, status_code=302)

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        if isinstance(exc, ProviderError):
            return JSONResponse(status_code=exc.status_code, content=exc.payload)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_content(request, exc.code, exc.message, exc.details),
        )

    @app.exception_handler(FormValidationError)
    async def form_error_handler(request: Request, exc: FormValidationError):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_content(request, exc.code, str(exc), {"errors": exc.errors}),
        )

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_content(request, exc.code, exc.message),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        if isinstance(exc.detail, dict):
            code = exc.detail.get("code", "bad_request")
            message = exc.detail.get("message", "Bad request")
            details = exc.detail.get("details", {})
        else:
            code = exc.detail if isinstance(exc.detail, str) else "bad_request"
            message = exc.detail if isinstance(exc.detail, str) else "Bad request"
            details = {}
        return JSONResponse(status_code=exc.status_code, content=_error_content(request, code, message, details))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=_error_content(request, "internal_error", "Internal server error"),
        )

    @app.get("/auth/login")
    def auth_login(
        request: Request,
        session: Session = Depends(get_session),
        sessions: SessionStore = Depends(get_sessions),
        oidc: OidcClient = Depends(get_oidc),
    ):
        authorization_url = oidc.begin_login(session)
        response = RedirectResponse(url=authorization_url, status_code=302)
        sessions.save(session, response)
        audit_event(request, event_type="auth.login.start", result="success")
        return response

    @app.get("/auth/callback")
    def auth_callback(
        request: Request,
        session: Session = Depends(get_session),
        sessions: SessionStore = Depends(get_sessions),
        oidc: OidcClient = Depends(get_oidc),
        store: ContentStore = Depends(get_store),
    ):
        try:
            result = oidc.complete_login(session, request.query_params, store)
        except Exception as exc:
            # The handshake is already cleared in memory; persist that before reporting.
            sessions.save(session)
            reason = exc.code if isinstance(exc, AuthError) else "internal_error"
            audit_event(request, event_type="auth.login.denied", result="deny", details={"reason": reason})
            raise

        sessions.regenerate(session)
        response = RedirectResponse(url=LOGIN_SUCCESS_REDIRECT, status_code=302)
        sessions.save(session, response)
        audit_event(
            request,
            event_type="auth.login.success",
            result="success",
            actor_user_id=result.user.id,
            details={"email": result.user.email},
        )
        return response

    @app.post("/auth/logout", dependencies=[Depends(require_csrf)])
    def auth_logout(
        request: Request,
        session: Session = Depends(get_session),
        sessions: SessionStore = Depends(get_sessions),
    ):
        actor = session.user.id if session.user else None
        response = RedirectResponse(url="/", status_code=302)
        sessions.destroy(session, response)
        audit_event(request, event_type="auth.logout", result="success", actor_user_id=actor)
        return response

    @app.get("/api/v1/auth/me")
    def auth_me(session: Session = Depends(get_session), csrf: CsrfGuard = Depends(get_csrf)):
        payload: Dict[str, Any] = {
            "authenticated": session.user is not None,
            "csrf": {"header_name": CSRF_HEADER_NAME, "token": csrf.issue(session)},
        }
        if session.user is not None:
            payload["user"] = {"id": session.user.id, "email": session.user.email, "name": session.user.name}
        return payload

    @app.get("/api/v1/health")
    def health(store: ContentStore = Depends(get_store)):
        return {
            "status": "ok",
            "db_path": str(store.path),
            "projects": store.count_rows("projects"),
            "time_utc": to_iso(utc_now()),
        }

    def _render(title_key: str, locale: str, body_for, csrf_token: str) -> HTMLResponse:
        t = create_translator(locale)
        body = body_for(t)
        return HTMLResponse(
            views.admin_layout(
                site_name=settings.site_name,
                title=t(title_key),
                body=body,
                t=t,
                csrf_token=csrf_token,
                locale=locale,
            )
        )

    @app.get("/admin")
    def admin_root(session: Session = Depends(require_auth)):
        return RedirectResponse(url="/admin/projects", status_code=302)

    @app.get("/admin/projects", response_class=HTMLResponse)
    def admin_projects(
        locale: Optional[str] = Query(default=None),
        session: Session = Depends(require_auth),
        store: ContentStore = Depends(get_store),
        csrf: CsrfGuard = Depends(get_csrf),
    ):
        ui_locale = resolve_locale(locale, settings.supported_locales, settings.default_locale)
        projects = store.get_projects(ui_locale)
        token = csrf.issue(session)
        return _render(
            "admin.projects",
            ui_locale,
            lambda t: views.render_projects(projects, locales=settings.supported_locales, t=t, csrf_token=token),
            token,
        )

    @app.post("/admin/projects")
    def admin_projects_save(
        request: Request,
        session: Session = Depends(require_auth),
        _csrf: None = Depends(require_csrf),
        form: FormData = Depends(get_form),
        store: ContentStore = Depends(get_store),
    ):
        submission = parse_project_form(form, settings.supported_locales)
        project, translations = submission.to_records(settings.supported_locales)
        project_id = store.upsert_project(project, translations)
        audit_event(
            request,
            event_type="admin.project.save",
            result="success",
            actor_user_id=session.user.id,
            details={"slug": project.slug, "project_id": project_id},
        )
        return RedirectResponse(url="/admin/projects", status_code=302)

    @app.get("/admin/pages", response_class=HTMLResponse)
    def admin_pages(
        locale: Optional[str] = Query(default=None),
        session: Session = Depends(require_auth),
        store: ContentStore = Depends(get_store),
        csrf: CsrfGuard = Depends(get_csrf),
    ):
        ui_locale = resolve_locale(locale, settings.supported_locales, settings.default_locale)
        pages = store.get_pages(ui_locale)
        token = csrf.issue(session)
        return _render(
            "admin.pages",
            ui_locale,
            lambda t: views.render_pages(pages, locales=settings.supported_locales, t=t, csrf_token=token),
            token,
        )

    @app.post("/admin/pages")
    def admin_pages_save(
        request: Request,
        session: Session = Depends(require_auth),
        _csrf: None = Depends(require_csrf),
        form: FormData = Depends(get_form),
        store: ContentStore = Depends(get_store),
    ):
        submission = parse_page_form(form, settings.supported_locales)
        page, sections = submission.to_records(settings.supported_locales)
        page_id = store.save_page(page, sections)
        audit_event(
            request,
            event_type="admin.page.save",
            result="success",
            actor_user_id=session.user.id,
            details={"slug": page.slug, "page_id": page_id},
        )
        return RedirectResponse(url="/admin/pages", status_code=302)

    @app.get("/admin/translations", response_class=HTMLResponse)
    def admin_translations(
        locale: Optional[str] = Query(default=None),
        session: Session = Depends(require_auth),
        store: ContentStore = Depends(get_store),
        csrf: CsrfGuard = Depends(get_csrf),
    ):
        ui_locale = resolve_locale(locale, settings.supported_locales, settings.default_locale)
        coverage = store.translation_coverage()
        return _render(
            "admin.translations",
            ui_locale,
            lambda t: views.render_translations(coverage, locales=settings.supported_locales, t=t),
            csrf.issue(session),
        )

    @app.get("/robots.txt", response_class=PlainTextResponse)
    def robots():
        return PlainTextResponse(views.render_robots(settings.site_url))

    @app.get("/sitemap.xml")
    def sitemap(store: ContentStore = Depends(get_store)):
        base = settings.site_url
        urls = []
        for locale in settings.supported_locales:
            urls.append(f"{base}/{locale}/")
            urls.append(f"{base}/{locale}/projects/")
            urls.append(f"{base}/{locale}/pages/")
            urls.extend(f"{base}/{locale}/projects/{project.slug}/" for project in store.get_projects(locale))
            urls.extend(f"{base}/{locale}/pages/{page.slug}/" for page in store.get_pages(locale))
            urls.append(f"{base}/{locale}/about/")
            urls.append(f"{base}/{locale}/contact/")
        return Response(content=views.render_sitemap(urls), media_type="application/xml")

    return app


app = create_app()
