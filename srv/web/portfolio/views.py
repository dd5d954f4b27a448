from __future__ import annotations

import html
from typing import Callable, Dict, List, Sequence
from xml.sax.saxutils import escape as xml_escape

from .db import Page, Project


Translator = Callable[[str], str]


def _e(value: object) -> str:
    return html.escape("" if value is None else str(value), quote=True)


def _csrf_field(csrf_token: str) -> str:
    return f'<input type="hidden" name="_csrf" value="{_e(csrf_token)}">'


def admin_layout(*, site_name: str, title: str, body: str, t: Translator, csrf_token: str, locale: str) -> str:
    return f"""<!doctype html>
<html lang="{_e(locale)}">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <meta name="csrf-token" content="{_e(csrf_token)}" />
    <title>{_e(title)}</title>
    <style>
      :root {{ font-family: system-ui, -apple-system, sans-serif; background: #fffaf3; color: #2b190a; }}
      a {{ color: #c2410c; text-decoration: none; }}
      a:hover {{ text-decoration: underline; }}
      input, textarea, select, button {{ padding: 0.5rem 0.65rem; border-radius: 8px; border: 1px solid #f4d7bb; width: 100%; box-sizing: border-box; }}
      button {{ background: #f97316; color: white; border: none; cursor: pointer; }}
      button:hover {{ background: #c2410c; }}
      label {{ display: grid; gap: 0.35rem; font-weight: 600; }}
      fieldset {{ border: 1px solid #eee; border-radius: 12px; padding: 1rem; }}
      header {{ display: flex; align-items: center; justify-content: space-between; padding: 1rem; border-bottom: 1px solid #eee; }}
      nav {{ display: flex; gap: 1rem; align-items: center; }}
      nav button {{ background: none; border: 1px solid #ddd; padding: 0.35rem 0.75rem; color: #c2410c; width: auto; }}
      main {{ padding: 1.5rem; max-width: 960px; margin: 0 auto; display: grid; gap: 1rem; }}
      article {{ border: 1px solid #eee; padding: 1rem; border-radius: 12px; }}
      .row {{ display: flex; justify-content: space-between; align-items: center; }}
      .missing {{ color: #b91c1c; }}
    </style>
  </head>
  <body>
    <header>
      <div style="font-weight:700;">{_e(site_name)} – {_e(t("admin.title"))}</div>
      <nav>
        <a href="/admin/projects?locale={_e(locale)}">{_e(t("admin.projects"))}</a>
        <a href="/admin/pages?locale={_e(locale)}">{_e(t("admin.pages"))}</a>
        <a href="/admin/translations?locale={_e(locale)}">{_e(t("admin.translations"))}</a>
        <form method="post" action="/auth/logout">
          {_csrf_field(csrf_token)}
          <button type="submit">{_e(t("admin.logout"))}</button>
        </form>
      </nav>
    </header>
    <main>{body}</main>
  </body>
</html>
"""


def _locale_fieldsets(locales: Sequence[str], t: Translator, fields: Sequence[tuple[str, str, bool]]) -> str:
    parts = []
    for loc in locales:
        inputs = []
        for name, label_key, multiline in fields:
            field_name = f"{name}_{loc}"
            if multiline:
                control = f'<textarea name="{_e(field_name)}"></textarea>'
            else:
                control = f'<input name="{_e(field_name)}" />'
            inputs.append(f"<label>{_e(t(label_key))} {control}</label>")
        parts.append(
            f"""<fieldset>
          <legend>{_e(t("admin.locale"))}: {_e(loc.upper())}</legend>
          {"".join(inputs)}
        </fieldset>"""
        )
    return "".join(parts)


def render_projects(projects: List[Project], *, locales: Sequence[str], t: Translator, csrf_token: str) -> str:
    cards = "".join(
        f"""<article>
          <div class="row">
            <strong>{_e(p.translation.name if p.translation and p.translation.name else p.slug)}</strong>
            <small>{_e(t("admin.published") if p.status == "published" else t("admin.draft"))}</small>
          </div>
          <p>{_e(p.translation.description if p.translation else "")}</p>
          <small><code>{_e(p.slug)}</code></small>
        </article>"""
        for p in projects
    )
    fieldsets = _locale_fieldsets(
        locales,
        t,
        [
            ("name", "admin.name", False),
            ("description", "admin.description", True),
            ("hero", "admin.heroTitle", False),
        ],
    )
    return f"""
    <h1>{_e(t("admin.projects"))}</h1>
    <section style="display:grid;gap:1rem;">{cards}</section>
    <h2 style="margin-top:2rem;">{_e(t("admin.save"))} {_e(t("admin.projects"))}</h2>
    <form method="post" action="/admin/projects" style="display:grid;gap:1rem;">
      {_csrf_field(csrf_token)}
      <label>{_e(t("admin.slug"))} <input name="slug" required /></label>
      <label>{_e(t("admin.status"))}
        <select name="status">
          <option value="published">{_e(t("admin.published"))}</option>
          <option value="draft">{_e(t("admin.draft"))}</option>
        </select>
      </label>
      <label>{_e(t("admin.tech"))} <input name="tech" /></label>
      <label>{_e(t("admin.link"))} <input name="link" /></label>
      {fieldsets}
      <button type="submit">{_e(t("admin.save"))}</button>
    </form>
    """


def render_pages(pages: List[Page], *, locales: Sequence[str], t: Translator, csrf_token: str) -> str:
    cards = "".join(
        f"""<article>
          <strong>{_e(p.slug)}</strong> – {_e(t("admin.published") if p.published else t("admin.draft"))}
          {"".join(f"<p><em>{_e(s.heading)}</em></p>" for s in p.sections)}
        </article>"""
        for p in pages
    )
    fieldsets = _locale_fieldsets(
        locales,
        t,
        [("heading", "admin.heading", False), ("body", "admin.body", True)],
    )
    return f"""
    <h1>{_e(t("admin.pages"))}</h1>
    <section style="display:grid;gap:1rem;">{cards}</section>
    <h2 style="margin-top:2rem;">{_e(t("admin.save"))} {_e(t("admin.pages"))}</h2>
    <form method="post" action="/admin/pages" style="display:grid;gap:1rem;">
      {_csrf_field(csrf_token)}
      <label>{_e(t("admin.slug"))} <input name="slug" required /></label>
      <label>{_e(t("admin.status"))}
        <select name="published">
          <option value="1">{_e(t("admin.published"))}</option>
          <option value="0">{_e(t("admin.draft"))}</option>
        </select>
      </label>
      {fieldsets}
      <button type="submit">{_e(t("admin.save"))}</button>
    </form>
    """


def render_translations(coverage: Dict[str, List[str]], *, locales: Sequence[str], t: Translator) -> str:
    rows = []
    for slug, present in coverage.items():
        missing = [loc for loc in locales if loc not in present]
        missing_html = (
            f'<span class="missing">{_e(t("admin.missing"))}: {_e(", ".join(missing))}</span>' if missing else "✓"
        )
        rows.append(f"<li><code>{_e(slug)}</code> {_e(', '.join(present))} {missing_html}</li>")
    return f"""
    <h1>{_e(t("admin.translations"))}</h1>
    <p>{_e(t("admin.locale"))}: {_e(", ".join(locales))}</p>
    <p>{_e(t("admin.translationInfo"))}</p>
    <ul>{"".join(rows)}</ul>
    """


def render_sitemap(urls: List[str]) -> str:
    entries = "\n".join(f"  <url>\n    <loc>{xml_escape(url)}</loc>\n  </url>" for url in urls)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">\n'
        f"{entries}\n"
        "</urlset>\n"
    )


def render_robots(site_url: str) -> str:
    return f"User-agent: *\nAllow: /\nSitemap: {site_url}/sitemap.xml\n"
